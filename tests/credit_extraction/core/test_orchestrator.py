import threading

import pytest

from credit_extraction.config import BackendSettings
from credit_extraction.core.errors import (
    BackendError,
    CANCELLED,
    ExtractionError,
    ExtractionExhausted,
    KIND_CONTENT,
    KIND_TRANSPORT,
    TIMEOUT,
    TRANSPORT_ERROR,
)
from credit_extraction.core.orchestrator import (
    CONTENT_HEADLINE,
    TRANSPORT_HEADLINE,
    ExtractionOrchestrator,
)


def _orchestrator(backends, settings, clock, **kwargs):
    kwargs.setdefault("stop_at_first_accepted", True)
    kwargs.setdefault("record_failed_attempts", True)
    return ExtractionOrchestrator(backends, settings=settings, clock=clock, **kwargs)


def test_falls_back_to_next_backend(fake_backend, fast_settings, clock, report_text):
    first = fake_backend("primary_ocr", error=BackendError(TRANSPORT_ERROR, "HTTP 503", method="primary_ocr"))
    second = fake_backend("secondary_ocr", report_text, confidence=0.88)
    third = fake_backend("heuristic_scan", report_text)

    run = _orchestrator([first, second, third], fast_settings, clock).run("doc-1", b"pdf")

    assert run.final.extraction_method == "secondary_ocr"
    assert run.final.confidence_score == 0.88
    assert [r.extraction_method for r in run.attempts] == ["primary_ocr", "secondary_ocr"]
    failed = run.attempts[0]
    assert failed.error_message == "HTTP 503"
    assert failed.extraction_metadata["error_kind"] == KIND_TRANSPORT
    assert failed.extracted_text == ""
    assert failed.confidence_score == 0.0
    assert third.calls == 0
    assert {r.extraction_metadata["run_id"] for r in run.attempts} == {run.run_id}


def test_rejected_content_falls_back_with_reason(fake_backend, fast_settings, clock, report_text):
    garbage = fake_backend("primary_ocr", "%PDF-1.4 1 0 obj << /Filter /FlateDecode >> stream " * 3)
    good = fake_backend("secondary_ocr", report_text)
    run = _orchestrator([garbage, good], fast_settings, clock).run("doc-1", b"pdf")
    assert run.final.extraction_method == "secondary_ocr"
    assert run.attempts[0].extraction_metadata["rejection_reason"] == "pdf_markers"
    assert run.attempts[0].extraction_metadata["error_kind"] == KIND_CONTENT


def test_quality_score_supplies_missing_confidence(fake_backend, fast_settings, clock, report_text):
    run = _orchestrator([fake_backend("heuristic_scan", report_text)], fast_settings, clock).run("doc-1", b"pdf")
    result = run.final
    assert 0.0 < result.confidence_score <= 1.0
    assert result.extraction_metadata["quality_score"] == pytest.approx(result.confidence_score * 100, abs=0.02)
    assert result.character_count == len(result.extracted_text)
    assert result.word_count == len(result.extracted_text.split())


def test_all_content_rejections_ask_for_a_different_file(fake_backend, fast_settings, clock):
    backends = [fake_backend("primary_ocr", "too short"), fake_backend("secondary_ocr", "tiny")]
    orchestrator = _orchestrator(backends, fast_settings, clock)
    with pytest.raises(ExtractionExhausted) as exc:
        orchestrator.extract("doc-1", b"pdf")
    assert exc.value.kind == KIND_CONTENT
    assert exc.value.message.startswith(CONTENT_HEADLINE)
    assert "Last attempt (secondary_ocr)" in exc.value.message
    assert len(exc.value.reasons) == 2


def test_any_transport_failure_asks_to_try_later(fake_backend, fast_settings, clock):
    backends = [
        fake_backend("primary_ocr", "too short"),
        fake_backend("secondary_ocr", error=BackendError(TRANSPORT_ERROR, "connect failed", method="secondary_ocr")),
    ]
    run = _orchestrator(backends, fast_settings, clock).run("doc-1", b"pdf")
    assert not run.succeeded
    assert all(not r.extracted_text for r in run.attempts)
    error = run.exhausted_error()
    assert error.kind == KIND_TRANSPORT
    assert error.message.startswith(TRANSPORT_HEADLINE)


def test_failed_attempts_can_be_left_out(fake_backend, fast_settings, clock, report_text):
    backends = [fake_backend("primary_ocr", "tiny"), fake_backend("secondary_ocr", report_text)]
    run = _orchestrator(backends, fast_settings, clock, record_failed_attempts=False).run("doc-1", b"pdf")
    assert [r.extraction_method for r in run.attempts] == ["secondary_ocr"]
    assert len(run.failures) == 1


def test_collects_every_accepted_result_when_not_stopping(fake_backend, fast_settings, clock, report_text):
    backends = [fake_backend("primary_ocr", report_text), fake_backend("secondary_ocr", report_text)]
    run = _orchestrator(backends, fast_settings, clock, stop_at_first_accepted=False).run("doc-1", b"pdf")
    assert [r.extraction_method for r in run.accepted] == ["primary_ocr", "secondary_ocr"]
    assert run.final.extraction_method == "primary_ocr"


def test_job_backend_is_polled_until_done(fake_job_backend, fast_settings, clock, report_text):
    backend = fake_job_backend("primary_ocr", report_text, pending_polls=2)
    run = _orchestrator([backend], fast_settings, clock).run("doc-1", b"pdf")
    assert run.final.extraction_metadata["polls"] == 3
    assert run.final.confidence_score == 0.93
    assert backend.polls == 3


def test_polling_gives_up_after_max_attempts(fake_job_backend, fast_settings, clock, report_text):
    backend = fake_job_backend("primary_ocr", report_text, pending_polls=10)
    run = _orchestrator([backend], fast_settings, clock).run("doc-1", b"pdf")
    assert not run.succeeded
    assert backend.polls == fast_settings.poll_max_attempts
    assert run.attempts[0].extraction_metadata["error_code"] == TIMEOUT


def test_failed_job_is_a_transport_failure(fake_job_backend, fast_settings, clock):
    backend = fake_job_backend("primary_ocr", "", fail_reason="unsupported format")
    run = _orchestrator([backend], fast_settings, clock).run("doc-1", b"pdf")
    assert run.failures[0].kind == KIND_TRANSPORT
    assert run.failures[0].reason == "unsupported format"


def test_slow_backend_times_out_and_next_runs(fake_backend, clock, report_text):
    gate = threading.Event()
    slow = fake_backend("primary_ocr", report_text, gate=gate)
    fast = fake_backend("secondary_ocr", report_text)
    settings = BackendSettings(attempt_timeout_s=0.2)
    try:
        run = _orchestrator([slow, fast], settings, clock).run("doc-1", b"pdf")
    finally:
        gate.set()
    assert run.final.extraction_method == "secondary_ocr"
    assert run.attempts[0].extraction_metadata["error_code"] == TIMEOUT


def test_document_deadline_bounds_later_attempts(fake_backend, clock, report_text):
    gate = threading.Event()
    backends = [fake_backend("primary_ocr", report_text, gate=gate), fake_backend("secondary_ocr", report_text)]
    settings = BackendSettings(attempt_timeout_s=5.0)
    try:
        run = _orchestrator(backends, settings, clock, document_timeout_s=0.2).run("doc-1", b"pdf")
    finally:
        gate.set()
    assert not run.succeeded
    assert [f.reason for f in run.failures][-1] == "document time budget exhausted"


def test_backend_crash_becomes_transport_failure(fake_backend, fast_settings, clock, report_text):
    crashing = fake_backend("primary_ocr", error=KeyError("blocks"))
    run = _orchestrator([crashing, fake_backend("secondary_ocr", report_text)], fast_settings, clock).run(
        "doc-1", b"pdf"
    )
    assert run.failures[0].reason == "backend error: KeyError"
    assert run.final.extraction_method == "secondary_ocr"


def test_cancel_stops_the_run(fake_backend, fast_settings, clock, report_text):
    cancel = threading.Event()
    cancel.set()
    backend = fake_backend("primary_ocr", report_text)
    with pytest.raises(ExtractionError) as exc:
        _orchestrator([backend], fast_settings, clock).run("doc-1", b"pdf", cancel=cancel)
    assert exc.value.code == CANCELLED
    assert backend.calls == 0


def test_cancel_interrupts_a_running_attempt(fake_backend, fast_settings, clock, report_text):
    gate = threading.Event()
    cancel = threading.Event()
    backend = fake_backend("primary_ocr", report_text, gate=gate)
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        with pytest.raises(ExtractionError) as exc:
            _orchestrator([backend], fast_settings, clock).run("doc-1", b"pdf", cancel=cancel)
    finally:
        gate.set()
        timer.cancel()
    assert exc.value.code == CANCELLED


def test_no_backends_is_an_explicit_failure(fast_settings, clock):
    run = _orchestrator([], fast_settings, clock).run("doc-1", b"pdf")
    assert run.attempts == []
    assert "No extraction backends" in run.exhausted_error().message
