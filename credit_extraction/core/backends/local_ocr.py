from __future__ import annotations

import importlib
import logging
import threading
import time
from typing import Dict, List

from credit_extraction.config import BackendSettings
from credit_extraction.core.errors import BackendError, EMPTY_PAYLOAD, TIMEOUT

from .base import BackendOutput, SynchronousBackend, check_size

logger = logging.getLogger(__name__)


class LocalOCR(SynchronousBackend):
    """Tesseract over rasterised pages, run in a worker thread.

    Every page is rendered at 300 dpi with pdf2image and passed to
    pytesseract. The worker is joined with ``local_ocr_timeout_ms``; a worker
    still running after that is abandoned and the attempt fails.
    """

    name = "local_ocr"

    def __init__(self, settings: BackendSettings | None = None) -> None:
        self.settings = settings or BackendSettings()

    def submit(self, data: bytes) -> BackendOutput:
        check_size(self.name, data, self.settings.max_document_bytes)
        langs = list(self.settings.local_ocr_langs)
        result: Dict[str, object] = {"pages": [], "error": None}

        def worker() -> None:
            try:
                pyt = importlib.import_module("pytesseract")
                pdf2 = importlib.import_module("pdf2image")
                images = pdf2.convert_from_bytes(data, dpi=300)
                lang = "+".join(langs) if langs else "eng"
                pages: List[str] = []
                for image in images:
                    pages.append(pyt.image_to_string(image, lang=lang))
                result["pages"] = pages
            except Exception as exc:
                result["error"] = exc.__class__.__name__

        start = time.perf_counter()
        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        thread.join(self.settings.local_ocr_timeout_ms / 1000)
        duration_ms = int((time.perf_counter() - start) * 1000)
        if thread.is_alive():
            raise BackendError(
                TIMEOUT, f"local OCR exceeded {self.settings.local_ocr_timeout_ms} ms", method=self.name
            )
        if result["error"]:
            logger.warning("LOCAL_OCR_FAILED error=%s", result["error"])
            raise BackendError(
                EMPTY_PAYLOAD, f"local OCR failed: {result['error']}", method=self.name, transient=False
            )
        pages = [p for p in result["pages"] if isinstance(p, str) and p.strip()]  # type: ignore[union-attr]
        if not pages:
            raise BackendError(EMPTY_PAYLOAD, "local OCR found no text", method=self.name)
        return BackendOutput(
            method=self.name,
            text="\n".join(pages),
            processing_time_ms=duration_ms,
            metadata={"pages": len(pages), "langs": langs},
        )
