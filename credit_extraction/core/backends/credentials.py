from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

TokenFetcher = Callable[[], Tuple[str, float]]


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float


class CredentialCache:
    """Owned, time-boxed cache for one vendor access token.

    ``fetch`` returns ``(token, ttl_seconds)``. A token is reused until
    ``skew_s`` before its expiry; ``invalidate`` drops it after the vendor
    rejects it. One cache belongs to one backend instance.
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        *,
        skew_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._skew_s = skew_s
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None

    def get(self) -> str:
        with self._lock:
            now = self._clock()
            cred = self._credential
            if cred is None or now >= cred.expires_at - self._skew_s:
                token, ttl = self._fetch()
                cred = Credential(token=token, expires_at=now + float(ttl))
                self._credential = cred
            return cred.token

    def invalidate(self) -> None:
        with self._lock:
            self._credential = None

    @property
    def expires_at(self) -> Optional[float]:
        cred = self._credential
        return cred.expires_at if cred else None
