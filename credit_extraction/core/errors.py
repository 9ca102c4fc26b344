from dataclasses import dataclass, field
from typing import List


@dataclass
class ExtractionError(Exception):
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass
class BackendError(ExtractionError):
    method: str = ""
    transient: bool = True


@dataclass
class ContentRejected(ExtractionError):
    method: str = ""
    reason: str = ""


@dataclass
class ExtractionExhausted(ExtractionError):
    kind: str = "transport"
    reasons: List[str] = field(default_factory=list)


@dataclass
class StoreError(ExtractionError):
    document_id: str = ""


@dataclass
class InvalidTransition(ExtractionError):
    current: str = ""
    target: str = ""


# Known error codes
NOT_FOUND = "NOT_FOUND"
VALIDATION_FAILED = "VALIDATION_FAILED"
IO_ERROR = "IO_ERROR"
TRANSPORT_ERROR = "TRANSPORT_ERROR"
TIMEOUT = "TIMEOUT"
EMPTY_PAYLOAD = "EMPTY_PAYLOAD"
MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
NOT_CONFIGURED = "NOT_CONFIGURED"
CANCELLED = "CANCELLED"
CONTENT_REJECTED = "CONTENT_REJECTED"
EXHAUSTED = "EXHAUSTED"
INVALID_TRANSITION = "INVALID_TRANSITION"

# Exhaustion kinds
KIND_TRANSPORT = "transport"
KIND_CONTENT = "content"


__all__ = [
    "ExtractionError",
    "BackendError",
    "ContentRejected",
    "ExtractionExhausted",
    "StoreError",
    "InvalidTransition",
    "NOT_FOUND",
    "VALIDATION_FAILED",
    "IO_ERROR",
    "TRANSPORT_ERROR",
    "TIMEOUT",
    "EMPTY_PAYLOAD",
    "MALFORMED_RESPONSE",
    "NOT_CONFIGURED",
    "CANCELLED",
    "CONTENT_REJECTED",
    "EXHAUSTED",
    "INVALID_TRANSITION",
    "KIND_TRANSPORT",
    "KIND_CONTENT",
]
