"""Structured extraction events.

Events are plain ``(name, fields)`` pairs handed to one process-wide emitter,
e.g. ``extraction_attempt`` with ``method``, ``outcome`` and ``duration_ms``.
Nothing is emitted until an emitter is installed with :func:`set_emitter`.
"""

from typing import Any, Callable, Mapping, Optional
import logging
import time

logger = logging.getLogger(__name__)

Emitter = Callable[[str, Mapping[str, Any]], None]

_emitter: Optional[Emitter] = None


def set_emitter(fn: Optional[Emitter]) -> None:
    global _emitter
    _emitter = fn


def get_emitter() -> Optional[Emitter]:
    return _emitter


def emit(event: str, **fields: Any) -> None:
    """Send ``event`` to the installed emitter; a failing emitter is only logged."""
    target = _emitter
    if target is None:
        return
    try:
        target(event, fields)
    except Exception:
        logger.debug("TELEMETRY_EMIT_FAILED event=%s", event, exc_info=True)


class timed:
    """Emit ``event`` with ``duration_ms`` and ``ok`` when the block exits.

    Fields put into ``base`` inside the block travel with the event, so a
    caller can attach sizes or outcomes it only learns while running.
    """

    def __init__(self, event: str, **base_fields: Any):
        self.event = event
        self.base = base_fields
        self.duration_ms = 0.0
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.duration_ms = round((time.perf_counter() - self._started) * 1000.0, 3)
        emit(self.event, duration_ms=self.duration_ms, ok=exc_type is None, **self.base)
