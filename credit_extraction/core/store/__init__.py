from .base import DocumentStore, RecordStore, ReportStore
from .json_store import JsonReportStore
from .memory import InMemoryReportStore
from .models import ReportRecord

__all__ = [
    "DocumentStore",
    "InMemoryReportStore",
    "JsonReportStore",
    "RecordStore",
    "ReportRecord",
    "ReportStore",
]
