"""Secondary cloud OCR backend.

A synchronous upload: each configured endpoint is tried in order until one
answers with text. Vendors have shipped several response shapes over time,
so the text is looked up tolerantly (see :func:`find_text`).
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, List

import httpx

from credit_extraction.config import BackendSettings
from credit_extraction.core.errors import BackendError, NOT_CONFIGURED, TRANSPORT_ERROR

from .base import BackendOutput, SynchronousBackend, check_size

logger = logging.getLogger(__name__)

_TEXT_PATHS = (
    ("data", "raw_text"),
    ("raw_text",),
    ("data", "text"),
    ("text",),
    ("ocr_text",),
)
MIN_NESTED_STRING = 20


def _dig(payload: Any, path: tuple) -> Any:
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _nested_strings(node: Any, out: List[str]) -> None:
    if isinstance(node, str):
        if len(node.strip()) > MIN_NESTED_STRING:
            out.append(node.strip())
    elif isinstance(node, dict):
        for value in node.values():
            _nested_strings(value, out)
    elif isinstance(node, list):
        for value in node:
            _nested_strings(value, out)


def find_text(payload: Any) -> str:
    """Return the document text from a vendor payload, or ``""``."""

    for path in _TEXT_PATHS:
        value = _dig(payload, path)
        if isinstance(value, str) and value.strip():
            return value
    pages = _dig(payload, ("pages",)) or _dig(payload, ("data", "pages"))
    if isinstance(pages, list):
        texts = [p.get("text") for p in pages if isinstance(p, dict)]
        joined = "\n".join(t for t in texts if isinstance(t, str) and t.strip())
        if joined:
            return joined
    found: List[str] = []
    _nested_strings(payload, found)
    return "\n".join(found)


class SecondaryOCR(SynchronousBackend):
    name = "secondary_ocr"

    def __init__(self, settings: BackendSettings | None = None, *, client: httpx.Client | None = None) -> None:
        self.settings = settings or BackendSettings()
        self._client = client

    @contextmanager
    def _session(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
            return
        with httpx.Client(timeout=self.settings.attempt_timeout_s) as cli:
            yield cli

    def submit(self, data: bytes) -> BackendOutput:
        check_size(self.name, data, self.settings.max_document_bytes)
        api_key = self.settings.secondary_api_key
        if not api_key:
            raise BackendError(NOT_CONFIGURED, "api key is not configured", method=self.name, transient=False)
        endpoints = self.settings.secondary_endpoints
        if not endpoints:
            raise BackendError(NOT_CONFIGURED, "no endpoints configured", method=self.name, transient=False)

        reasons: List[str] = []
        started = time.perf_counter()
        with self._session() as cli:
            for endpoint in endpoints:
                path = httpx.URL(endpoint).path
                try:
                    resp = cli.post(
                        endpoint,
                        headers={"apikey": api_key},
                        files={"file": ("report.pdf", data, "application/pdf")},
                    )
                    resp.raise_for_status()
                    payload = resp.json()
                except httpx.HTTPStatusError as exc:
                    reasons.append(f"{path}: HTTP {exc.response.status_code}")
                    continue
                except httpx.TimeoutException:
                    reasons.append(f"{path}: timeout")
                    continue
                except httpx.HTTPError as exc:
                    reasons.append(f"{path}: {exc.__class__.__name__}")
                    continue
                except ValueError:
                    reasons.append(f"{path}: response is not JSON")
                    continue

                text = find_text(payload)
                if not text.strip():
                    reasons.append(f"{path}: no text in response")
                    continue
                logger.info("SECONDARY_OCR_OK endpoint=%s chars=%d", path, len(text))
                return BackendOutput(
                    method=self.name,
                    text=text,
                    processing_time_ms=int((time.perf_counter() - started) * 1000),
                    metadata={"endpoint": path, "endpoints_tried": len(reasons) + 1},
                )

        logger.warning("SECONDARY_OCR_FAILED reasons=%s", reasons)
        raise BackendError(TRANSPORT_ERROR, "; ".join(reasons), method=self.name)
