"""Ordered-fallback extraction across backends.

Backends run one after another in priority order. Each attempt is bounded by
the per-attempt timeout and by what is left of the per-document ceiling;
job-based backends are polled at a fixed interval for a bounded number of
polls. A failed or rejected attempt is recorded and the next backend is
tried. When every backend fails the run ends in :class:`ExtractionExhausted`;
no text is ever synthesised in place of a real extraction.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from credit_extraction.config import (
    BackendSettings,
    EXTRACTION_DOCUMENT_TIMEOUT_S,
)
from credit_extraction.config.flags import FLAGS
from credit_extraction.core.backends import (
    BackendOutput,
    ExtractionBackend,
    JobHandle,
    PollStatus,
    build_backends,
)
from credit_extraction.core.errors import (
    BackendError,
    CANCELLED,
    ContentRejected,
    CONTENT_REJECTED,
    EXHAUSTED,
    ExtractionError,
    ExtractionExhausted,
    KIND_CONTENT,
    KIND_TRANSPORT,
    TIMEOUT,
    TRANSPORT_ERROR,
)
from credit_extraction.core.models import ExtractionResult, utcnow
from credit_extraction.core.telemetry import emit, timed
from credit_extraction.core.text import (
    assess_text_quality,
    quality_confidence,
    sanitize_text,
    word_count,
)
from credit_extraction.core.validation import ContentValidator

logger = logging.getLogger(__name__)

_JOIN_SLICE_S = 0.05

CONTENT_HEADLINE = (
    "The uploaded file did not contain readable credit report text. "
    "Try uploading a different file."
)
TRANSPORT_HEADLINE = "Text extraction services could not process the file right now. Try again later."


@dataclass(frozen=True)
class AttemptFailure:
    method: str
    kind: str
    reason: str


@dataclass
class ExtractionRun:
    """Everything one orchestrated run produced for a document."""

    document_id: str
    run_id: str = field(default_factory=lambda: uuid4().hex)
    attempts: List[ExtractionResult] = field(default_factory=list)
    accepted: List[ExtractionResult] = field(default_factory=list)
    failures: List[AttemptFailure] = field(default_factory=list)

    @property
    def final(self) -> Optional[ExtractionResult]:
        return self.accepted[0] if self.accepted else None

    @property
    def succeeded(self) -> bool:
        return bool(self.accepted)

    def exhausted_error(self) -> ExtractionExhausted:
        """Composite terminal error for a run where no backend was accepted."""

        all_content = bool(self.failures) and all(f.kind == KIND_CONTENT for f in self.failures)
        kind = KIND_CONTENT if all_content else KIND_TRANSPORT
        headline = CONTENT_HEADLINE if all_content else TRANSPORT_HEADLINE
        if self.failures:
            last = self.failures[-1]
            message = f"{headline} Last attempt ({last.method}): {last.reason}"
        else:
            message = f"{headline} No extraction backends are configured."
        return ExtractionExhausted(
            EXHAUSTED,
            message,
            kind=kind,
            reasons=[f"{f.method}: {f.reason}" for f in self.failures],
        )


class ExtractionOrchestrator:
    """Drive an ordered list of backends against one document."""

    def __init__(
        self,
        backends: Sequence[ExtractionBackend] | None = None,
        *,
        settings: BackendSettings | None = None,
        validator: ContentValidator | None = None,
        document_timeout_s: float = EXTRACTION_DOCUMENT_TIMEOUT_S,
        stop_at_first_accepted: bool = FLAGS.stop_at_first_accepted,
        record_failed_attempts: bool = FLAGS.record_failed_attempts,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or BackendSettings()
        self.backends = list(backends) if backends is not None else build_backends(settings=self.settings)
        self.validator = validator or ContentValidator()
        self.document_timeout_s = document_timeout_s
        self.stop_at_first_accepted = stop_at_first_accepted
        self.record_failed_attempts = record_failed_attempts
        self._clock = clock

    @property
    def methods(self) -> List[str]:
        return [b.name for b in self.backends]

    def extract(
        self, document_id: str, data: bytes, *, cancel: threading.Event | None = None
    ) -> ExtractionResult:
        """Return the accepted result or raise :class:`ExtractionExhausted`."""

        run = self.run(document_id, data, cancel=cancel)
        if run.final is None:
            raise run.exhausted_error()
        return run.final

    def run(
        self, document_id: str, data: bytes, *, cancel: threading.Event | None = None
    ) -> ExtractionRun:
        cancel = cancel or threading.Event()
        deadline = time.monotonic() + self.document_timeout_s
        run = ExtractionRun(document_id=document_id)

        for index, backend in enumerate(self.backends, start=1):
            if cancel.is_set():
                raise ExtractionError(CANCELLED, "extraction was cancelled")
            started = time.perf_counter()
            with timed("extraction_attempt", document_id=document_id, method=backend.name) as t:
                try:
                    output = self._attempt(backend, data, deadline, cancel)
                    text = sanitize_text(output.text)
                    outcome = self.validator.validate(text)
                    if not outcome.accepted:
                        raise ContentRejected(
                            CONTENT_REJECTED,
                            outcome.detail,
                            method=backend.name,
                            reason=outcome.reason or "",
                        )
                except ContentRejected as exc:
                    t.base["outcome"] = "rejected"
                    self._record_failure(run, backend.name, KIND_CONTENT, exc, started, index)
                    continue
                except BackendError as exc:
                    t.base["outcome"] = "failed"
                    self._record_failure(run, backend.name, KIND_TRANSPORT, exc, started, index)
                    continue
                except ExtractionError as exc:
                    if exc.code == CANCELLED:
                        logger.info("EXTRACT_CANCELLED doc=%s method=%s", document_id, backend.name)
                        raise
                    t.base["outcome"] = "failed"
                    self._record_failure(run, backend.name, KIND_TRANSPORT, exc, started, index)
                    continue
                t.base["outcome"] = "accepted"

            result = self._accepted_result(run, output, text, started, index)
            run.attempts.append(result)
            run.accepted.append(result)
            logger.info(
                "EXTRACT_ATTEMPT doc=%s method=%s ok=True chars=%d confidence=%.3f",
                document_id,
                backend.name,
                result.character_count,
                result.confidence_score,
            )
            if self.stop_at_first_accepted:
                break

        if not run.accepted:
            logger.warning(
                "EXTRACT_EXHAUSTED doc=%s attempts=%d kinds=%s",
                document_id,
                len(run.failures),
                sorted({f.kind for f in run.failures}),
            )
            emit("extraction_exhausted", document_id=document_id, attempts=len(run.failures))
        return run

    # Attempt execution -----------------------------------------------------

    def _attempt(
        self,
        backend: ExtractionBackend,
        data: bytes,
        deadline: float,
        cancel: threading.Event,
    ) -> BackendOutput:
        budget = min(self.settings.attempt_timeout_s, deadline - time.monotonic())
        if budget <= 0:
            raise BackendError(TIMEOUT, "document time budget exhausted", method=backend.name)

        stop = threading.Event()
        box: Dict[str, Any] = {}

        def worker() -> None:
            try:
                box["output"] = self._drive(backend, data, stop, cancel)
            except Exception as exc:
                box["error"] = exc

        thread = threading.Thread(target=worker, daemon=True, name=f"extract-{backend.name}")
        thread.start()
        limit = time.monotonic() + budget
        while thread.is_alive():
            if cancel.is_set():
                stop.set()
                raise ExtractionError(CANCELLED, "extraction was cancelled")
            remaining = limit - time.monotonic()
            if remaining <= 0:
                stop.set()
                raise BackendError(TIMEOUT, f"attempt exceeded {budget:.1f}s", method=backend.name)
            thread.join(min(_JOIN_SLICE_S, remaining))

        error = box.get("error")
        if isinstance(error, ExtractionError):
            raise error
        if error is not None:
            logger.debug("EXTRACT_BACKEND_CRASH method=%s", backend.name, exc_info=error)
            raise BackendError(
                TRANSPORT_ERROR, f"backend error: {error.__class__.__name__}", method=backend.name
            )
        return box["output"]

    def _drive(
        self,
        backend: ExtractionBackend,
        data: bytes,
        stop: threading.Event,
        cancel: threading.Event,
    ) -> BackendOutput:
        started = time.perf_counter()
        submission = backend.submit(data)
        if isinstance(submission, BackendOutput):
            return submission
        if not isinstance(submission, JobHandle):
            raise BackendError(TRANSPORT_ERROR, "backend returned neither text nor a job", method=backend.name)

        max_polls = self.settings.poll_max_attempts
        for poll in range(1, max_polls + 1):
            if stop.is_set() or cancel.is_set():
                raise ExtractionError(CANCELLED, "polling stopped")
            status = backend.poll_status(submission)
            if status.status is PollStatus.done:
                if not status.text.strip():
                    raise BackendError(TRANSPORT_ERROR, "job finished without text", method=backend.name)
                return BackendOutput(
                    method=backend.name,
                    text=status.text,
                    processing_time_ms=int((time.perf_counter() - started) * 1000),
                    confidence=status.confidence,
                    has_structured_data=status.has_structured_data,
                    metadata={**status.metadata, "polls": poll},
                )
            if status.status is PollStatus.failed:
                raise BackendError(TRANSPORT_ERROR, status.reason or "job failed", method=backend.name)
            if poll < max_polls and stop.wait(self.settings.poll_interval_s):
                raise ExtractionError(CANCELLED, "polling stopped")
        raise BackendError(
            TIMEOUT,
            f"job {submission.job_id} unfinished after {max_polls} polls",
            method=backend.name,
        )

    # Result rows ------------------------------------------------------------

    def _accepted_result(
        self,
        run: ExtractionRun,
        output: BackendOutput,
        text: str,
        started: float,
        index: int,
    ) -> ExtractionResult:
        elapsed = int((time.perf_counter() - started) * 1000)
        confidence = output.confidence
        if confidence is None:
            confidence = quality_confidence(text)
        metadata = dict(output.metadata)
        metadata.update(
            {
                "attempt": index,
                "run_id": run.run_id,
                "quality_score": round(assess_text_quality(text), 2),
            }
        )
        return ExtractionResult(
            document_id=run.document_id,
            extraction_method=output.method,
            extracted_text=text,
            confidence_score=max(0.0, min(1.0, float(confidence))),
            character_count=len(text),
            word_count=word_count(text),
            has_structured_data=output.has_structured_data,
            processing_time_ms=output.processing_time_ms or elapsed,
            extraction_metadata=metadata,
            created_at=self._clock(),
        )

    def _record_failure(
        self,
        run: ExtractionRun,
        method: str,
        kind: str,
        exc: ExtractionError,
        started: float,
        index: int,
    ) -> None:
        reason = exc.message
        run.failures.append(AttemptFailure(method=method, kind=kind, reason=reason))
        logger.warning(
            "EXTRACT_ATTEMPT doc=%s method=%s ok=False kind=%s code=%s reason=%s",
            run.document_id,
            method,
            kind,
            exc.code,
            reason,
        )
        if not self.record_failed_attempts:
            return
        metadata: Dict[str, Any] = {
            "error_message": reason,
            "error_code": exc.code,
            "error_kind": kind,
            "attempt": index,
            "run_id": run.run_id,
        }
        if isinstance(exc, ContentRejected):
            metadata["rejection_reason"] = exc.reason
        run.attempts.append(
            ExtractionResult(
                document_id=run.document_id,
                extraction_method=method,
                confidence_score=0.0,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                extraction_metadata=metadata,
                created_at=self._clock(),
            )
        )
