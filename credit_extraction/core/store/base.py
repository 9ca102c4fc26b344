"""Document and record store contracts plus the shared implementation.

Both concrete stores keep one :class:`ReportRecord` per document and apply
every mutation as load, modify, save under :func:`document_lock`. A reader
therefore sees a record either before or after a write, never halfway.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from credit_extraction.core.errors import NOT_FOUND, VALIDATION_FAILED, StoreError
from credit_extraction.core.locks import document_lock
from credit_extraction.core.models import (
    ConsolidationMetadata,
    Document,
    EntityKind,
    ExtractionResult,
    ExtractionStatus,
    utcnow,
)
from credit_extraction.core.telemetry import emit

from .models import ReportRecord

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def download_bytes(self, path: str) -> bytes: ...

    def get_status(self, document_id: str) -> ExtractionStatus: ...

    def set_status(
        self, document_id: str, status: ExtractionStatus, errors: Optional[str] = None
    ) -> Document: ...

    def upsert_raw_text(self, document_id: str, text: Optional[str]) -> None: ...


class RecordStore(Protocol):
    def replace_entities(
        self, document_id: str, kind: EntityKind, entities: Sequence[Mapping[str, Any]]
    ) -> None: ...

    def delete_entities(self, document_id: str, kind: EntityKind) -> None: ...


def _emit_on_error(fn):
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        document_id = kwargs.get("document_id")
        if document_id is None and args:
            first = args[0]
            document_id = getattr(first, "document_id", None) or getattr(first, "id", first)
        try:
            return fn(self, *args, **kwargs)
        except StoreError as err:
            emit("extraction_store_error", document_id=document_id, code=err.code, where=fn.__name__)
            raise

    return wrapper


def _rows(entities: Iterable[Any]) -> List[Dict[str, Any]]:
    out = []
    for item in entities:
        out.append(item.model_dump(mode="json") if hasattr(item, "model_dump") else dict(item))
    return out


class ReportStore:
    """Store operations shared by the JSON and in-memory implementations."""

    def _load(self, document_id: str) -> ReportRecord:
        raise NotImplementedError

    def _save(self, record: ReportRecord) -> None:
        raise NotImplementedError

    def _remove(self, document_id: str) -> None:
        raise NotImplementedError

    def _exists(self, document_id: str) -> bool:
        raise NotImplementedError

    def download_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    def document_ids(self) -> List[str]:
        raise NotImplementedError

    # Documents --------------------------------------------------------------

    @_emit_on_error
    def create_document(self, document: Document) -> Document:
        with document_lock(document.id):
            if self._exists(document.id):
                raise StoreError(VALIDATION_FAILED, "document already exists", document_id=document.id)
            self._save(ReportRecord(document=document))
        return document

    @_emit_on_error
    def get_document(self, document_id: str) -> Document:
        with document_lock(document_id):
            return self._load(document_id).document

    def has_document(self, document_id: str) -> bool:
        with document_lock(document_id):
            return self._exists(document_id)

    @_emit_on_error
    def delete_document(self, document_id: str) -> None:
        with document_lock(document_id):
            if not self._exists(document_id):
                raise StoreError(NOT_FOUND, "document not found", document_id=document_id)
            self._remove(document_id)

    def get_status(self, document_id: str) -> ExtractionStatus:
        return self.get_document(document_id).extraction_status

    @_emit_on_error
    def set_status(
        self, document_id: str, status: ExtractionStatus, errors: Optional[str] = None
    ) -> Document:
        with document_lock(document_id):
            record = self._load(document_id)
            record.document.extraction_status = ExtractionStatus(status)
            record.document.processing_errors = errors
            record.document.updated_at = utcnow()
            self._save(record)
            return record.document

    @_emit_on_error
    def upsert_raw_text(self, document_id: str, text: Optional[str]) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            record.document.raw_text = text
            record.document.updated_at = utcnow()
            self._save(record)

    # Entities ---------------------------------------------------------------

    @_emit_on_error
    def replace_entities(
        self, document_id: str, kind: EntityKind, entities: Sequence[Any]
    ) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            record.entities[EntityKind(kind)] = _rows(entities)
            self._save(record)

    @_emit_on_error
    def delete_entities(self, document_id: str, kind: EntityKind) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            record.entities.pop(EntityKind(kind), None)
            self._save(record)

    @_emit_on_error
    def replace_all_entities(
        self,
        document_id: str,
        by_kind: Mapping[EntityKind, Sequence[Any]],
        *,
        run_id: Optional[str] = None,
    ) -> None:
        """Replace every entity kind in one write; kinds not given end up empty."""

        with document_lock(document_id):
            record = self._load(document_id)
            record.entities = {EntityKind(k): _rows(v) for k, v in by_kind.items()}
            record.entity_run_id = run_id
            self._save(record)

    @_emit_on_error
    def purge_entities(self, document_id: str) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            record.entities = {}
            record.entity_run_id = None
            self._save(record)

    @_emit_on_error
    def get_entities(self, document_id: str, kind: EntityKind) -> List[Dict[str, Any]]:
        with document_lock(document_id):
            return list(self._load(document_id).entities.get(EntityKind(kind), []))

    @_emit_on_error
    def get_all_entities(self, document_id: str) -> Dict[EntityKind, List[Dict[str, Any]]]:
        with document_lock(document_id):
            entities = self._load(document_id).entities
            return {kind: list(entities.get(kind, [])) for kind in EntityKind}

    @_emit_on_error
    def entity_run_id(self, document_id: str) -> Optional[str]:
        with document_lock(document_id):
            return self._load(document_id).entity_run_id

    # Results and consolidation ---------------------------------------------

    @_emit_on_error
    def add_results(self, document_id: str, results: Sequence[ExtractionResult]) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            for result in results:
                if result.document_id != document_id:
                    raise StoreError(
                        VALIDATION_FAILED, "result belongs to another document", document_id=document_id
                    )
            known = {r.id for r in record.results}
            record.results.extend(r for r in results if r.id not in known)
            self._save(record)

    @_emit_on_error
    def list_results(self, document_id: str) -> List[ExtractionResult]:
        with document_lock(document_id):
            return list(self._load(document_id).results)

    @_emit_on_error
    def get_consolidation(self, document_id: str) -> Optional[ConsolidationMetadata]:
        with document_lock(document_id):
            return self._load(document_id).consolidation

    @_emit_on_error
    def put_consolidation(self, metadata: ConsolidationMetadata) -> ConsolidationMetadata:
        with document_lock(metadata.document_id):
            record = self._load(metadata.document_id)
            record.consolidation = metadata
            self._save(record)
            return metadata

    @_emit_on_error
    def clear_consolidation(self, document_id: str) -> None:
        with document_lock(document_id):
            record = self._load(document_id)
            record.consolidation = None
            self._save(record)


__all__ = ["DocumentStore", "RecordStore", "ReportStore"]
