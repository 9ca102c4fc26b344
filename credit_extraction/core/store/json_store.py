"""JSON-file report store: one ``<document_id>.json`` per document."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, List

from pydantic import ValidationError

from credit_extraction.config import (
    DOCUMENT_UPLOAD_DIR,
    EXTRACTION_STORE_ATOMIC_WRITES,
    EXTRACTION_STORE_DIR,
    EXTRACTION_STORE_VALIDATE_ON_LOAD,
)
from credit_extraction.core.errors import IO_ERROR, NOT_FOUND, VALIDATION_FAILED, StoreError
from credit_extraction.core.telemetry import timed

from .base import ReportStore
from .models import ReportRecord

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


class JsonReportStore(ReportStore):
    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        upload_dir: str | os.PathLike | None = None,
        atomic_writes: bool = EXTRACTION_STORE_ATOMIC_WRITES,
        validate_on_load: bool = EXTRACTION_STORE_VALIDATE_ON_LOAD,
    ) -> None:
        self.base_dir = Path(base_dir or EXTRACTION_STORE_DIR)
        self.upload_dir = Path(upload_dir or DOCUMENT_UPLOAD_DIR)
        self.atomic_writes = atomic_writes
        self.validate_on_load = validate_on_load

    def _path(self, document_id: str) -> Path:
        if not _SAFE_ID_RE.match(document_id or "") or document_id.startswith("."):
            raise StoreError(VALIDATION_FAILED, "invalid document id", document_id=str(document_id))
        return self.base_dir / f"{document_id}.json"

    def document_ids(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    def download_bytes(self, path: str) -> bytes:
        """Read an uploaded file; ``path`` must stay inside ``upload_dir``."""
        root = self.upload_dir.resolve()
        target = (root / path).resolve()
        if not target.is_relative_to(root):
            raise StoreError(VALIDATION_FAILED, f"file path escapes the upload directory: {path}")
        try:
            with timed("extraction_store_download") as t:
                data = target.read_bytes()
                t.base["file_bytes"] = len(data)
                return data
        except FileNotFoundError:
            raise StoreError(NOT_FOUND, f"no file stored at {path}") from None
        except OSError as exc:
            raise StoreError(IO_ERROR, f"cannot read {path}: {exc.__class__.__name__}") from None

    def _exists(self, document_id: str) -> bool:
        return self._path(document_id).exists()

    def _load(self, document_id: str) -> ReportRecord:
        path = self._path(document_id)
        with timed("extraction_store_load", document_id=document_id) as t:
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    content = fh.read()
            except FileNotFoundError:
                raise StoreError(NOT_FOUND, "document not found", document_id=document_id) from None
            except OSError as exc:
                raise StoreError(IO_ERROR, str(exc), document_id=document_id) from exc

            try:
                if self.validate_on_load:
                    record = ReportRecord.model_validate_json(content)
                else:
                    data: Any = json.loads(content)
                    if not isinstance(data, dict):
                        raise TypeError("report JSON must be an object")
                    record = ReportRecord.model_validate(data)
            except json.JSONDecodeError as exc:
                raise StoreError(VALIDATION_FAILED, str(exc), document_id=document_id) from exc
            except (ValidationError, TypeError) as exc:
                raise StoreError(VALIDATION_FAILED, str(exc), document_id=document_id) from exc

            t.base["file_bytes"] = len(content)
            return record

    def _save(self, record: ReportRecord) -> None:
        document_id = record.document.id
        path = self._path(document_id)
        payload = json.dumps(record.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":"))

        with timed("extraction_store_save", document_id=document_id) as t:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreError(IO_ERROR, str(exc), document_id=document_id) from exc

            if self.atomic_writes:
                tmp = path.with_suffix(path.suffix + ".tmp")
                try:
                    with open(tmp, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.replace(tmp, path)
                except OSError as exc:
                    if tmp.exists():
                        tmp.unlink()
                    raise StoreError(IO_ERROR, str(exc), document_id=document_id) from exc
            else:
                try:
                    with open(path, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                except OSError as exc:
                    raise StoreError(IO_ERROR, str(exc), document_id=document_id) from exc

            t.base["file_bytes"] = len(payload)

    def _remove(self, document_id: str) -> None:
        try:
            self._path(document_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StoreError(IO_ERROR, str(exc), document_id=document_id) from exc
