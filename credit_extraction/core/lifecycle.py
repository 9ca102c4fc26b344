"""Extraction status state machine and write-back to the report store.

``pending -> processing -> completed | failed``; ``failed -> processing`` is a
retry and ``completed -> processing`` needs ``force=True``. Both re-entries
purge previously derived entities and consolidation before the new run, so
stored entities always come from the latest completed extraction.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

from credit_extraction.config import CONSOLIDATION_DEFAULT_STRATEGY
from credit_extraction.config.flags import FLAGS
from credit_extraction.core.consolidation import ConsolidationEngine, rank_results
from credit_extraction.core.errors import (
    CANCELLED,
    INVALID_TRANSITION,
    NOT_FOUND,
    ExtractionError,
    InvalidTransition,
    StoreError,
    VALIDATION_FAILED,
)
from credit_extraction.core.extraction import EntityExtractor
from credit_extraction.core.locks import document_lock
from credit_extraction.core.models import (
    ConsolidationMetadata,
    ConsolidationOutcome,
    ConsolidationStrategy,
    Document,
    ExtractedEntities,
    ExtractionResult,
    ExtractionStatus,
)
from credit_extraction.core.orchestrator import ExtractionOrchestrator, ExtractionRun
from credit_extraction.core.store import ReportStore
from credit_extraction.core.telemetry import emit, timed

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ExtractionStatus, frozenset] = {
    ExtractionStatus.pending: frozenset({ExtractionStatus.processing}),
    ExtractionStatus.processing: frozenset({ExtractionStatus.completed, ExtractionStatus.failed}),
    ExtractionStatus.failed: frozenset({ExtractionStatus.processing}),
    ExtractionStatus.completed: frozenset(),
}

UNREADABLE_FILE_MESSAGE = "The uploaded file could not be read. Try uploading it again."
CANCELLED_MESSAGE = "Extraction was cancelled before it finished."
INTERNAL_ERROR_MESSAGE = "Extraction stopped because of an internal error. Try again later."


def can_transition(
    current: ExtractionStatus, target: ExtractionStatus, *, force: bool = False
) -> bool:
    if target in ALLOWED_TRANSITIONS[current]:
        return True
    return force and current is ExtractionStatus.completed and target is ExtractionStatus.processing


def latest_run(results: Sequence[ExtractionResult]) -> List[ExtractionResult]:
    """Results from the most recent extraction run, in stored order."""

    if not results:
        return []
    newest = max(results, key=lambda r: r.created_at)
    run_id = newest.extraction_metadata.get("run_id")
    if run_id is None:
        return list(results)
    return [r for r in results if r.extraction_metadata.get("run_id") == run_id]


class ReportLifecycleManager:
    def __init__(
        self,
        store: ReportStore,
        orchestrator: ExtractionOrchestrator | None = None,
        *,
        extractor: EntityExtractor | None = None,
        engine: ConsolidationEngine | None = None,
        strategy: ConsolidationStrategy | str = CONSOLIDATION_DEFAULT_STRATEGY,
        consolidate_multiple: bool = FLAGS.consolidate_multiple_results,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator or ExtractionOrchestrator()
        self.extractor = extractor or EntityExtractor()
        self.engine = engine or ConsolidationEngine(self.extractor)
        self.strategy = ConsolidationStrategy(strategy)
        self.consolidate_multiple = consolidate_multiple
        self._cancels: Dict[str, threading.Event] = {}
        self._cancels_lock = threading.Lock()

    # State machine ---------------------------------------------------------

    def transition(
        self,
        document_id: str,
        target: ExtractionStatus,
        *,
        errors: Optional[str] = None,
        force: bool = False,
    ) -> Document:
        target = ExtractionStatus(target)
        with document_lock(document_id):
            current = self.store.get_status(document_id)
            if not can_transition(current, target, force=force):
                raise InvalidTransition(
                    INVALID_TRANSITION,
                    f"cannot move from {current.value} to {target.value}",
                    current=current.value,
                    target=target.value,
                )
            document = self.store.set_status(document_id, target, errors)
        logger.info("STATUS doc=%s from=%s to=%s", document_id, current.value, target.value)
        emit("extraction_status", document_id=document_id, status=target.value, previous=current.value)
        return document

    def _begin(self, document_id: str, force: bool) -> Document:
        with document_lock(document_id):
            document = self.store.get_document(document_id)
            current = document.extraction_status
            if current in (ExtractionStatus.failed, ExtractionStatus.completed) and can_transition(
                current, ExtractionStatus.processing, force=force
            ):
                self.store.purge_entities(document_id)
                self.store.clear_consolidation(document_id)
                self.store.upsert_raw_text(document_id, None)
                logger.info("ENTITIES_PURGED doc=%s previous=%s", document_id, current.value)
            return self.transition(document_id, ExtractionStatus.processing, force=force)

    def _fail(self, document_id: str, message: str) -> Document:
        logger.warning("EXTRACT_FAILED doc=%s reason=%s", document_id, message)
        return self.transition(document_id, ExtractionStatus.failed, errors=message)

    # Processing -------------------------------------------------------------

    def process(self, document_id: str, *, force: bool = False) -> Document:
        """Run extraction for ``document_id`` and persist the outcome.

        Returns the document in its final state. A document deleted while the
        run is in flight raises the cancellation error instead.
        """

        document = self._begin(document_id, force)
        cancel = self._register(document_id)
        try:
            with timed("extraction_process", document_id=document_id) as t:
                try:
                    data = self.store.download_bytes(document.file_path)
                except StoreError as exc:
                    logger.warning("DOCUMENT_DOWNLOAD_FAILED doc=%s code=%s", document_id, exc.code)
                    t.base["status"] = ExtractionStatus.failed.value
                    return self._fail(document_id, UNREADABLE_FILE_MESSAGE)

                try:
                    run = self.orchestrator.run(document_id, data, cancel=cancel)
                except ExtractionError as exc:
                    if exc.code != CANCELLED:
                        raise
                    t.base["status"] = "cancelled"
                    if not self.store.has_document(document_id):
                        raise
                    return self._fail(document_id, CANCELLED_MESSAGE)

                result = self._finish(run)
                t.base["status"] = result.extraction_status.value
                return result
        except Exception as exc:
            if isinstance(exc, ExtractionError) and exc.code == CANCELLED:
                raise
            logger.exception("EXTRACT_CRASHED doc=%s", document_id)
            if self.store.has_document(document_id) and (
                self.store.get_status(document_id) is ExtractionStatus.processing
            ):
                self._fail(document_id, INTERNAL_ERROR_MESSAGE)
            raise
        finally:
            self._unregister(document_id, cancel)

    def _finish(self, run: ExtractionRun) -> Document:
        document_id = run.document_id
        with document_lock(document_id):
            if run.attempts:
                self.store.add_results(document_id, run.attempts)
            if not run.succeeded:
                return self._fail(document_id, run.exhausted_error().message)

            if self.consolidate_multiple and len(run.accepted) > 1:
                outcome = self.engine.consolidate(run.accepted, self.strategy)
                self.store.put_consolidation(outcome.metadata)
                entities = outcome.entities
                canonical = _result_for(run.accepted, outcome.metadata.primary_source)
            else:
                canonical = run.final
                entities = self.extractor.extract(canonical.extracted_text)

            self._write_entities(document_id, canonical, entities)
            return self.transition(document_id, ExtractionStatus.completed)

    def _write_entities(
        self, document_id: str, canonical: ExtractionResult, entities: ExtractedEntities
    ) -> None:
        self.store.upsert_raw_text(document_id, canonical.extracted_text)
        self.store.replace_all_entities(document_id, entities.by_kind(), run_id=canonical.id)
        logger.info(
            "ENTITIES_WRITTEN doc=%s source=%s accounts=%d inquiries=%d negatives=%d collections=%d",
            document_id,
            canonical.extraction_method,
            len(entities.accounts),
            len(entities.inquiries),
            len(entities.negative_items),
            len(entities.collections),
        )

    # Reconsolidation -------------------------------------------------------

    def reconsolidate(
        self,
        document_id: str,
        strategy: ConsolidationStrategy | str | None = None,
        *,
        all_runs: bool = False,
    ) -> ConsolidationOutcome:
        """Recompute consolidation and replace the canonical entities.

        Only results from the latest run are considered unless ``all_runs``.
        """

        strategy = ConsolidationStrategy(strategy or self.strategy)
        with document_lock(document_id):
            current = self.store.get_status(document_id)
            if current is not ExtractionStatus.completed:
                raise InvalidTransition(
                    INVALID_TRANSITION,
                    f"cannot reconsolidate a {current.value} document",
                    current=current.value,
                    target="reconsolidate",
                )
            results = self.store.list_results(document_id)
            if not all_runs:
                results = latest_run(results)
            outcome = self.engine.consolidate(results, strategy)
            self.store.put_consolidation(outcome.metadata)
            canonical = _result_for(
                [r for r in results if r.succeeded], outcome.metadata.primary_source
            )
            self._write_entities(document_id, canonical, outcome.entities)
        return outcome

    def replace_consolidation(self, metadata: ConsolidationMetadata) -> ConsolidationMetadata:
        """Store operator-supplied metadata, e.g. after confirming a manual review.

        The review flag cannot be cleared while the metadata itself still calls
        for review. Choosing a different primary source rewrites the raw text
        and entities from that source, preferring its result in the latest run.
        """

        document_id = metadata.document_id
        with document_lock(document_id):
            usable = [r for r in self.store.list_results(document_id) if r.succeeded]
            if metadata.primary_source not in {r.extraction_method for r in usable}:
                raise StoreError(
                    VALIDATION_FAILED,
                    f"unknown primary source {metadata.primary_source}",
                    document_id=document_id,
                )
            reasons = self.engine.review_reasons(
                metadata.confidence_level,
                metadata.conflict_count,
                metadata.consolidation_strategy,
            )
            if reasons and not metadata.requires_human_review:
                logger.info(
                    "CONSOLIDATION_REVIEW_KEPT doc=%s reasons=%s", document_id, "; ".join(reasons)
                )
                metadata = metadata.model_copy(update={"requires_human_review": True})

            previous = self.store.get_consolidation(document_id)
            if previous is None or previous.primary_source != metadata.primary_source:
                pool = [
                    r for r in latest_run(usable) if r.extraction_method == metadata.primary_source
                ]
                canonical = _result_for(pool or usable, metadata.primary_source)
                self._write_entities(
                    document_id, canonical, self.extractor.extract(canonical.extracted_text)
                )
            return self.store.put_consolidation(metadata)

    # Cancellation -----------------------------------------------------------

    def _register(self, document_id: str) -> threading.Event:
        event = threading.Event()
        with self._cancels_lock:
            self._cancels[document_id] = event
        return event

    def _unregister(self, document_id: str, event: threading.Event) -> None:
        with self._cancels_lock:
            if self._cancels.get(document_id) is event:
                del self._cancels[document_id]

    def cancel(self, document_id: str) -> bool:
        """Signal an in-flight run to stop; False when nothing is running."""

        with self._cancels_lock:
            event = self._cancels.get(document_id)
        if event is None:
            return False
        event.set()
        return True

    def delete_document(self, document_id: str) -> None:
        self.cancel(document_id)
        self.store.delete_document(document_id)
        logger.info("DOCUMENT_DELETED doc=%s", document_id)


def _result_for(results: Sequence[ExtractionResult], method: str) -> ExtractionResult:
    ranked = rank_results(results)
    for result in ranked:
        if result.extraction_method == method:
            return result
    if not ranked:
        raise StoreError(NOT_FOUND, "no usable extraction results")
    return ranked[0]
