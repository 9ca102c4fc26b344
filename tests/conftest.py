import threading
from datetime import datetime, timedelta, timezone

import pytest

from credit_extraction.config import BackendSettings
from credit_extraction.core import telemetry
from credit_extraction.core.backends import BackendOutput, JobHandle, PollResult, PollStatus
from credit_extraction.core.models import Document, ExtractionResult
from credit_extraction.core.store import InMemoryReportStore

REPORT_TEXT = (
    "Experian Credit Report\n"
    "Name: John Smith\n"
    "Date of Birth: 01/15/1980\n"
    "Current Balance: $1,250.00 Capital One Platinum\n"
    "Payment history and account review for this consumer.\n"
)

REPORT_TEXT_CHASE = (
    "Experian Credit Report\n"
    "Name: John Smith\n"
    "Date of Birth: 01/15/1980\n"
    "Chase Freedom Card $500.00\n"
    "Payment history and account review for this consumer.\n"
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend:
    """Synchronous backend returning canned text or raising a canned error."""

    def __init__(self, name, text=None, *, error=None, confidence=None, gate=None):
        self.name = name
        self.text = text
        self.error = error
        self.confidence = confidence
        self.gate = gate
        self.calls = 0

    def submit(self, data):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return BackendOutput(method=self.name, text=self.text, confidence=self.confidence)

    def poll_status(self, handle):
        raise AssertionError("synchronous backend polled")


class FakeJobBackend:
    """Job backend reporting ``in_progress`` for ``pending_polls`` polls."""

    def __init__(self, name, text, *, pending_polls=0, fail_reason=None):
        self.name = name
        self.text = text
        self.pending_polls = pending_polls
        self.fail_reason = fail_reason
        self.polls = 0

    def submit(self, data):
        return JobHandle(method=self.name, job_id="job-1")

    def poll_status(self, handle):
        self.polls += 1
        if self.fail_reason:
            return PollResult(status=PollStatus.failed, reason=self.fail_reason)
        if self.polls <= self.pending_polls:
            return PollResult(status=PollStatus.in_progress)
        return PollResult(status=PollStatus.done, text=self.text, confidence=0.93)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=BASE_TIME):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.now += timedelta(seconds=1)
            return self.now


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def fake_job_backend():
    return FakeJobBackend


@pytest.fixture
def fast_settings():
    return BackendSettings(
        attempt_timeout_s=2.0,
        poll_interval_s=0.0,
        poll_max_attempts=3,
        max_retries=2,
    )


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def report_text():
    return REPORT_TEXT


@pytest.fixture
def report_text_chase():
    return REPORT_TEXT_CHASE


@pytest.fixture
def memory_store():
    store = InMemoryReportStore()
    store.create_document(Document(id="doc-1", file_path="uploads/doc-1.pdf"))
    store.put_file("uploads/doc-1.pdf", b"%PDF-1.4 test document")
    return store


@pytest.fixture
def make_result():
    def _make(method, text, confidence, *, document_id="doc-1", minutes=0, **metadata):
        return ExtractionResult(
            document_id=document_id,
            extraction_method=method,
            extracted_text=text,
            confidence_score=confidence,
            character_count=len(text),
            word_count=len(text.split()),
            extraction_metadata=metadata,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )

    return _make


@pytest.fixture
def events():
    captured = []
    telemetry.set_emitter(lambda event, fields: captured.append((event, dict(fields))))
    yield captured
    telemetry.set_emitter(None)
