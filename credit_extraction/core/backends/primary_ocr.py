"""Primary cloud OCR backend.

Upload is an asynchronous job: ``submit`` posts the PDF and returns a
:class:`JobHandle`; ``poll_status`` is called by the orchestrator at a fixed
interval until the job is done, failed, or the attempt budget runs out.
Access tokens come from an OAuth client-credentials exchange and are held in
the :class:`CredentialCache` owned by the backend instance.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import httpx

from credit_extraction.config import BackendSettings
from credit_extraction.core.errors import (
    BackendError,
    EMPTY_PAYLOAD,
    MALFORMED_RESPONSE,
    NOT_CONFIGURED,
    TIMEOUT,
    TRANSPORT_ERROR,
)
from credit_extraction.core.telemetry import emit

from .base import BackendOutput, JobHandle, PollResult, PollStatus, Submission, check_size
from .credentials import CredentialCache
from .structured import flatten_blocks

logger = logging.getLogger(__name__)

_DONE = {"done", "succeeded", "success", "completed"}
_FAILED = {"failed", "error", "cancelled"}
_RETRY_STATUSES = {429, 500, 502, 503, 504}


class PrimaryOCR:
    name = "primary_ocr"

    def __init__(
        self,
        settings: BackendSettings | None = None,
        *,
        credentials: CredentialCache | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or BackendSettings()
        self._client = client
        self._sleep = sleep
        self.credentials = credentials or CredentialCache(self._fetch_token)

    @contextmanager
    def _session(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self.settings.attempt_timeout_s) as cli:
            yield cli

    def _fetch_token(self) -> Tuple[str, float]:
        s = self.settings
        if not s.primary_client_id or not s.primary_client_secret:
            raise BackendError(
                NOT_CONFIGURED, "client credentials are not configured", method=self.name, transient=False
            )
        try:
            with self._session() as cli:
                resp = cli.post(
                    s.primary_token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": s.primary_client_id,
                        "client_secret": s.primary_client_secret,
                    },
                )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise BackendError(
                TRANSPORT_ERROR,
                f"token request rejected with HTTP {exc.response.status_code}",
                method=self.name,
                transient=exc.response.status_code >= 500,
            ) from None
        except httpx.HTTPError as exc:
            raise BackendError(
                TRANSPORT_ERROR, f"token request failed: {exc.__class__.__name__}", method=self.name
            ) from None
        except ValueError:
            raise BackendError(MALFORMED_RESPONSE, "token response is not JSON", method=self.name) from None
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise BackendError(MALFORMED_RESPONSE, "token response has no access_token", method=self.name)
        ttl = float(payload.get("expires_in") or 3600)
        logger.info("PRIMARY_OCR_TOKEN refreshed ttl_s=%d", int(ttl))
        return str(token), ttl

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authorised request, retrying 429/5xx with exponential backoff."""

        max_retries = self.settings.max_retries
        refreshed = False
        attempt = 0
        with self._session() as cli:
            while True:
                headers = {"Authorization": f"Bearer {self.credentials.get()}"}
                try:
                    resp = cli.request(method, url, headers=headers, **kwargs)
                except httpx.TimeoutException:
                    if attempt < max_retries:
                        self._backoff(attempt, "timeout")
                        attempt += 1
                        continue
                    raise BackendError(TIMEOUT, "request timed out", method=self.name) from None
                except httpx.HTTPError as exc:
                    if attempt < max_retries:
                        self._backoff(attempt, exc.__class__.__name__)
                        attempt += 1
                        continue
                    raise BackendError(
                        TRANSPORT_ERROR, f"request failed: {exc.__class__.__name__}", method=self.name
                    ) from None

                if resp.status_code == 401 and not refreshed:
                    self.credentials.invalidate()
                    refreshed = True
                    continue
                if resp.status_code in _RETRY_STATUSES:
                    if attempt < max_retries:
                        self._backoff(attempt, f"http_{resp.status_code}")
                        attempt += 1
                        continue
                    raise BackendError(
                        TRANSPORT_ERROR,
                        f"HTTP {resp.status_code} after {attempt + 1} attempts",
                        method=self.name,
                    )
                if resp.status_code >= 400:
                    raise BackendError(
                        TRANSPORT_ERROR,
                        f"HTTP {resp.status_code}",
                        method=self.name,
                        transient=False,
                    )
                return resp

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = float(2 ** attempt)
        emit("primary_ocr_retry", attempt=attempt + 1, reason=reason, delay_s=delay)
        logger.info("PRIMARY_OCR_RETRY attempt=%d reason=%s delay_s=%.1f", attempt + 1, reason, delay)
        self._sleep(delay)

    def _json(self, resp: httpx.Response) -> Dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            raise BackendError(MALFORMED_RESPONSE, "response is not JSON", method=self.name) from None
        if not isinstance(payload, dict):
            raise BackendError(MALFORMED_RESPONSE, "response is not an object", method=self.name)
        return payload

    def submit(self, data: bytes) -> Submission:
        check_size(self.name, data, self.settings.max_document_bytes)
        started = time.perf_counter()
        resp = self._request(
            "POST",
            f"{self.settings.primary_base_url}/jobs",
            files={"file": ("report.pdf", data, "application/pdf")},
        )
        payload = self._json(resp)

        # Small documents may be answered inline.
        if isinstance(payload.get("blocks"), list):
            text, structured = flatten_blocks(payload["blocks"])
            if not text.strip():
                raise BackendError(EMPTY_PAYLOAD, "inline result has no text", method=self.name)
            return BackendOutput(
                method=self.name,
                text=text,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                confidence=_mean_confidence(payload["blocks"]),
                has_structured_data=structured,
                metadata={"inline": True},
            )

        job_id = payload.get("job_id") or payload.get("id")
        if not job_id:
            raise BackendError(MALFORMED_RESPONSE, "job response has no job id", method=self.name)
        poll_url = resp.headers.get("location") or payload.get("poll_url")
        logger.info("PRIMARY_OCR_SUBMITTED job=%s bytes=%d", job_id, len(data))
        return JobHandle(method=self.name, job_id=str(job_id), poll_url=poll_url)

    def poll_status(self, handle: JobHandle) -> PollResult:
        url = handle.poll_url or f"{self.settings.primary_base_url}/jobs/{handle.job_id}"
        payload = self._json(self._request("GET", url))
        status = str(payload.get("status") or "").lower()
        if status in _FAILED:
            reason = str(payload.get("error") or payload.get("message") or "job failed")
            return PollResult(status=PollStatus.failed, reason=reason[:200])
        if status not in _DONE:
            return PollResult(status=PollStatus.in_progress)

        blocks = payload.get("blocks")
        if not isinstance(blocks, list):
            return PollResult(status=PollStatus.failed, reason="finished job has no blocks")
        text, structured = flatten_blocks(blocks)
        if not text.strip():
            return PollResult(status=PollStatus.failed, reason="finished job returned no text")
        return PollResult(
            status=PollStatus.done,
            text=text,
            has_structured_data=structured,
            confidence=_mean_confidence(blocks),
            metadata={"job_id": handle.job_id, "blocks": len(blocks)},
        )


def _mean_confidence(blocks: List[Mapping[str, Any]]) -> Optional[float]:
    """Mean ``Confidence`` of LINE blocks, rescaled from 0-100 to 0-1."""

    values = []
    for block in blocks:
        if str(block.get("BlockType") or "").upper() != "LINE":
            continue
        raw = block.get("Confidence")
        if isinstance(raw, (int, float)):
            values.append(float(raw))
    if not values:
        return None
    mean = sum(values) / len(values)
    if mean > 1.0:
        mean /= 100.0
    return round(max(0.0, min(1.0, mean)), 4)
