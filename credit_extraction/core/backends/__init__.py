from .base import (
    BackendOutput,
    ExtractionBackend,
    JobHandle,
    PollResult,
    PollStatus,
    Submission,
    SynchronousBackend,
)
from .credentials import CredentialCache
from .heuristic_scan import HeuristicScan
from .local_ocr import LocalOCR
from .primary_ocr import PrimaryOCR
from .registry import build_backends, get_backend
from .secondary_ocr import SecondaryOCR

__all__ = [
    "BackendOutput",
    "CredentialCache",
    "ExtractionBackend",
    "HeuristicScan",
    "JobHandle",
    "LocalOCR",
    "PollResult",
    "PollStatus",
    "PrimaryOCR",
    "SecondaryOCR",
    "Submission",
    "SynchronousBackend",
    "build_backends",
    "get_backend",
]
