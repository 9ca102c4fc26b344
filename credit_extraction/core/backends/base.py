from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from credit_extraction.core.errors import BackendError, TRANSPORT_ERROR


class PollStatus(str, Enum):
    done = "done"
    in_progress = "in_progress"
    failed = "failed"


@dataclass(frozen=True)
class JobHandle:
    """Opaque reference to an asynchronous vendor job."""

    method: str
    job_id: str
    poll_url: Optional[str] = None


@dataclass(frozen=True)
class PollResult:
    status: PollStatus
    text: str = ""
    reason: str = ""
    has_structured_data: bool = False
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BackendOutput:
    """Raw text produced by one backend attempt."""

    method: str
    text: str
    processing_time_ms: int = 0
    confidence: Optional[float] = None
    has_structured_data: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


Submission = Union[JobHandle, BackendOutput]


class ExtractionBackend(Protocol):
    name: str

    def submit(self, data: bytes) -> Submission: ...

    def poll_status(self, handle: JobHandle) -> PollResult: ...


class SynchronousBackend:
    """Mixin for backends that answer ``submit`` with text directly."""

    name = "synchronous"

    def poll_status(self, handle: JobHandle) -> PollResult:
        raise BackendError(
            TRANSPORT_ERROR,
            f"{self.name} does not issue jobs",
            method=self.name,
            transient=False,
        )


def check_size(method: str, data: bytes, limit: int) -> None:
    if not data:
        raise BackendError(TRANSPORT_ERROR, "empty document", method=method, transient=False)
    if len(data) > limit:
        raise BackendError(
            TRANSPORT_ERROR,
            f"document is {len(data)} bytes, limit is {limit}",
            method=method,
            transient=False,
        )


__all__ = [
    "BackendOutput",
    "ExtractionBackend",
    "JobHandle",
    "PollResult",
    "PollStatus",
    "Submission",
    "SynchronousBackend",
    "check_size",
]
