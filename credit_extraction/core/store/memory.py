from __future__ import annotations

from typing import Dict, List

from credit_extraction.core.errors import NOT_FOUND, StoreError

from .base import ReportStore
from .models import ReportRecord


class InMemoryReportStore(ReportStore):
    """Process-local store with the same semantics as :class:`JsonReportStore`.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ReportRecord] = {}
        self._files: Dict[str, bytes] = {}

    def put_file(self, path: str, data: bytes) -> None:
        self._files[path] = bytes(data)

    def download_bytes(self, path: str) -> bytes:
        try:
            return self._files[path]
        except KeyError:
            raise StoreError(NOT_FOUND, f"no file stored at {path}") from None

    def document_ids(self) -> List[str]:
        return sorted(self._records)

    def _exists(self, document_id: str) -> bool:
        return document_id in self._records

    def _load(self, document_id: str) -> ReportRecord:
        record = self._records.get(document_id)
        if record is None:
            raise StoreError(NOT_FOUND, "document not found", document_id=document_id)
        return record.model_copy(deep=True)

    def _save(self, record: ReportRecord) -> None:
        self._records[record.document.id] = record.model_copy(deep=True)

    def _remove(self, document_id: str) -> None:
        record = self._records.pop(document_id, None)
        if record is not None:
            self._files.pop(record.document.file_path, None)
