from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from credit_extraction.core.models import ConsolidationMetadata, ExtractionResult
from credit_extraction.core.telemetry import emit


def _p95(values: List[float]) -> float:
    if not values:
        return 0.0
    values = sorted(values)
    idx = int(math.ceil(0.95 * len(values))) - 1
    return float(values[idx])


def _mean(values: List[float]) -> float:
    return round(sum(values) / len(values), 4) if values else 0.0


def extraction_summary(
    results: Iterable[ExtractionResult],
    metadata: Iterable[ConsolidationMetadata] = (),
    *,
    since: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Aggregate extraction and consolidation statistics.

    Parameters
    ----------
    results:
        Extraction attempts, successful or not, across any number of documents.
    metadata:
        Consolidation outcomes to summarise alongside the attempts.
    since:
        When given, only items created (or processed) at or after this
        moment are counted.
    """

    rows = [r for r in results if since is None or r.created_at >= since]
    consolidations = [m for m in metadata if since is None or m.processed_at >= since]

    methods: Dict[str, Dict[str, Any]] = {}
    for method in sorted({r.extraction_method for r in rows}):
        mine = [r for r in rows if r.extraction_method == method]
        ok = [r for r in mine if r.succeeded]
        times = [float(r.processing_time_ms) for r in mine]
        methods[method] = {
            "attempts": len(mine),
            "succeeded": len(ok),
            "failed": len(mine) - len(ok),
            "mean_confidence": _mean([r.confidence_score for r in ok]),
            "mean_processing_time_ms": _mean(times),
            "p95_processing_time_ms": _p95(times),
        }

    summary = {
        "total_results": len(rows),
        "documents": len({r.document_id for r in rows}),
        "methods": methods,
        "consolidation": {
            "count": len(consolidations),
            "mean_confidence": _mean([m.confidence_level for m in consolidations]),
            "requires_review": sum(1 for m in consolidations if m.requires_human_review),
            "total_conflicts": sum(m.conflict_count for m in consolidations),
            "strategies": {
                s: sum(1 for m in consolidations if m.consolidation_strategy.value == s)
                for s in sorted({m.consolidation_strategy.value for m in consolidations})
            },
        },
    }
    emit(
        "extraction_summary",
        total_results=summary["total_results"],
        documents=summary["documents"],
        consolidations=len(consolidations),
    )
    return summary
