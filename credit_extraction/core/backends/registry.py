from __future__ import annotations

from typing import Callable, Dict, List, Sequence

from credit_extraction.config import BackendSettings, EXTRACTION_BACKENDS

from .base import ExtractionBackend
from .heuristic_scan import HeuristicScan
from .local_ocr import LocalOCR
from .primary_ocr import PrimaryOCR
from .secondary_ocr import SecondaryOCR

_FACTORIES: Dict[str, Callable[[BackendSettings], ExtractionBackend]] = {
    "primary_ocr": lambda s: PrimaryOCR(s),
    "secondary_ocr": lambda s: SecondaryOCR(s),
    "heuristic_scan": lambda s: HeuristicScan(s),
    "local_ocr": lambda s: LocalOCR(s),
}


def get_backend(name: str, settings: BackendSettings | None = None) -> ExtractionBackend:
    """Return an extraction backend implementation by name."""

    key = (name or "").strip().lower()
    factory = _FACTORIES.get(key)
    if factory is None:
        raise ValueError(f"Unsupported extraction backend: {name}")
    return factory(settings or BackendSettings())


def build_backends(
    names: Sequence[str] | None = None, settings: BackendSettings | None = None
) -> List[ExtractionBackend]:
    """Instantiate backends in priority order; defaults to ``EXTRACTION_BACKENDS``."""

    settings = settings or BackendSettings()
    return [get_backend(name, settings) for name in (names or EXTRACTION_BACKENDS)]
