"""Compare extraction results and elect one canonical entity set.

Entities are re-derived from each usable result's text, aligned into
families (see :mod:`.alignment`) and flattened to field paths such as
``personal_info.full_name`` or ``accounts[Chase Card|4321].current_balance``.
``compare`` reports agreement per field; ``consolidate`` applies a strategy.
Results are ranked by confidence, then recency, then method, so the outcome
never depends on the order the caller passes them in.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from credit_extraction.config import (
    ACCOUNT_MATCH_MIN_SCORE,
    CONSOLIDATION_CONFLICT_CAP,
    CONSOLIDATION_DEFAULT_STRATEGY,
    CONSOLIDATION_MAJORITY_CAP,
    CONSOLIDATION_REVIEW_THRESHOLD,
)
from credit_extraction.core.errors import ExtractionError, VALIDATION_FAILED
from credit_extraction.core.extraction import EntityExtractor
from credit_extraction.core.models import (
    Collection,
    ComparisonReport,
    ConsolidationMetadata,
    ConsolidationOutcome,
    ConsolidationStrategy,
    CreditAccount,
    CreditInquiry,
    ExtractedEntities,
    ExtractionResult,
    FieldDifference,
    NegativeItem,
    PersonalInformation,
)
from credit_extraction.core.telemetry import emit

from .alignment import PERSONAL, FamilyAligner, Snapshot, align

logger = logging.getLogger(__name__)

_ROW_MODELS = {
    "accounts": CreditAccount,
    "collections": Collection,
    "inquiries": CreditInquiry,
    "negative_items": NegativeItem,
}


def normalize_value(value: Any) -> Any:
    """Comparison key: case and spacing insensitive, money to cents."""

    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return round(float(value), 2)
    if isinstance(value, str):
        return " ".join(value.split()).casefold()
    return value


def rank_results(results: Sequence[ExtractionResult]) -> List[ExtractionResult]:
    """Highest confidence first; ties go to the most recent, then method and id."""

    return sorted(
        results,
        key=lambda r: (-r.confidence_score, -r.created_at.timestamp(), r.extraction_method, r.id),
    )


def _source_labels(ranked: Sequence[ExtractionResult]) -> List[str]:
    counts = Counter(r.extraction_method for r in ranked)
    return [
        r.extraction_method if counts[r.extraction_method] == 1 else f"{r.extraction_method}:{r.id[:8]}"
        for r in ranked
    ]


@dataclass
class _Prepared:
    ranked: List[ExtractionResult]
    labels: List[str]
    entities: List[ExtractedEntities]
    aligner: FamilyAligner
    snapshots: List[Snapshot]

    def confidence_of(self, label: str) -> float:
        return self.ranked[self.labels.index(label)].confidence_score

    def method_of(self, label: str) -> str:
        return self.ranked[self.labels.index(label)].extraction_method


class ConsolidationEngine:
    def __init__(
        self,
        extractor: EntityExtractor | None = None,
        *,
        review_threshold: float = CONSOLIDATION_REVIEW_THRESHOLD,
        conflict_cap: float = CONSOLIDATION_CONFLICT_CAP,
        majority_cap: float = CONSOLIDATION_MAJORITY_CAP,
        min_match_score: float = ACCOUNT_MATCH_MIN_SCORE,
    ) -> None:
        self.extractor = extractor or EntityExtractor()
        self.review_threshold = review_threshold
        self.conflict_cap = conflict_cap
        self.majority_cap = majority_cap
        self.min_match_score = min_match_score

    # Public API -------------------------------------------------------------

    def compare(self, results: Sequence[ExtractionResult]) -> ComparisonReport:
        return self._compare(self._prepare(results))

    def review_reasons(
        self, confidence: float, conflicts: int, strategy: ConsolidationStrategy
    ) -> List[str]:
        """Why a consolidation needs a human; empty when it does not."""
        review: List[str] = []
        if confidence < self.review_threshold:
            review.append(f"confidence {confidence:.2f} below {self.review_threshold:.2f}")
        if conflicts:
            review.append(f"{conflicts} conflicting field(s)")
        if strategy is ConsolidationStrategy.manual_review:
            review.append("manual review requested; primary source is provisional")
        return review

    def consolidate(
        self,
        results: Sequence[ExtractionResult],
        strategy: ConsolidationStrategy | str | None = None,
    ) -> ConsolidationOutcome:
        strategy = ConsolidationStrategy(strategy or CONSOLIDATION_DEFAULT_STRATEGY)
        prepared = self._prepare(results)
        comparison = self._compare(prepared)
        canonical = prepared.ranked[0]

        if strategy is ConsolidationStrategy.majority_vote:
            entities, field_sources = self._majority(prepared)
            primary_label = _most_frequent_source(field_sources, prepared.labels)
            primary = prepared.method_of(primary_label)
            mean = sum(r.confidence_score for r in prepared.ranked) / len(prepared.ranked)
            confidence = min(self.majority_cap, mean)
        else:
            entities = prepared.entities[0]
            field_sources = {name: prepared.labels[0] for name in prepared.snapshots[0].values}
            primary = canonical.extraction_method
            confidence = canonical.confidence_score

        conflicts = comparison.conflict_count
        if conflicts:
            confidence = min(confidence, self.conflict_cap)
        confidence = round(confidence, 4)

        review = self.review_reasons(confidence, conflicts, strategy)

        notes = [
            f"strategy={strategy.value}",
            f"sources={','.join(prepared.labels)}",
            f"primary={primary}",
        ]
        if review:
            notes.append("review: " + "; ".join(review))

        metadata = ConsolidationMetadata(
            document_id=canonical.document_id,
            primary_source=primary,
            confidence_level=confidence,
            consolidation_strategy=strategy,
            conflict_count=conflicts,
            requires_human_review=bool(review),
            field_sources=field_sources,
            consolidation_notes=" | ".join(notes),
            processed_at=max(r.created_at for r in prepared.ranked),
        )
        logger.info(
            "CONSOLIDATE doc=%s strategy=%s sources=%d primary=%s confidence=%.3f conflicts=%d review=%s",
            metadata.document_id,
            strategy.value,
            len(prepared.ranked),
            primary,
            confidence,
            conflicts,
            metadata.requires_human_review,
        )
        emit(
            "consolidation",
            document_id=metadata.document_id,
            strategy=strategy.value,
            conflicts=conflicts,
            confidence=confidence,
            review=metadata.requires_human_review,
        )
        return ConsolidationOutcome(metadata=metadata, entities=entities, comparison=comparison)

    # Internals --------------------------------------------------------------

    def _prepare(self, results: Sequence[ExtractionResult]) -> _Prepared:
        usable = [r for r in results if r.succeeded]
        if not usable:
            raise ExtractionError(VALIDATION_FAILED, "no usable extraction results to consolidate")
        documents = {r.document_id for r in usable}
        if len(documents) > 1:
            raise ExtractionError(VALIDATION_FAILED, "results belong to more than one document")

        ranked = rank_results(usable)
        labels = _source_labels(ranked)
        entities = [self.extractor.extract(r.extracted_text) for r in ranked]
        aligner, snapshots = align(list(zip(labels, entities)), self.min_match_score)
        return _Prepared(ranked, labels, entities, aligner, snapshots)

    def _compare(self, prepared: _Prepared) -> ComparisonReport:
        names = sorted({name for s in prepared.snapshots for name in s.values})
        report = ComparisonReport()
        for name in names:
            present = {s.source: s.values[name] for s in prepared.snapshots if name in s.values}
            if len({normalize_value(v) for v in present.values()}) <= 1:
                report.similarities.append(name)
                continue
            report.differences.append(
                FieldDifference(
                    field=name,
                    values=present,
                    confidences={src: prepared.confidence_of(src) for src in present},
                )
            )
        return report

    def _vote(self, name: str, prepared: _Prepared) -> Tuple[Any, str]:
        """Most common value for ``name``; ties go to the best-ranked source."""

        present = [(s.source, s.values[name]) for s in prepared.snapshots if name in s.values]
        counts = Counter(normalize_value(v) for _, v in present)
        best_count = max(counts.values())
        # ``present`` is in rank order, so the first tied value wins.
        for source, value in present:
            if counts[normalize_value(value)] == best_count:
                return value, source
        raise AssertionError("unreachable")

    def _majority(self, prepared: _Prepared) -> Tuple[ExtractedEntities, Dict[str, str]]:
        sources: Dict[str, str] = {}
        total = len(prepared.snapshots)
        canonical = prepared.labels[0]

        personal_names = sorted(
            {n for s in prepared.snapshots for n in s.values if n.startswith(f"{PERSONAL}.")}
        )
        personal: Dict[str, Any] = {}
        for name in personal_names:
            value, source = self._vote(name, prepared)
            personal[name.split(".", 1)[1]] = value
            sources[name] = source

        rows: Dict[str, List[Dict[str, Any]]] = {kind: [] for kind in _ROW_MODELS}
        for family in prepared.aligner.ordered_families():
            holders = [label for label in prepared.labels if label in family.members]
            held = len(holders) * 2
            if held < total or (held == total and canonical not in family.members):
                continue
            record = dict(family.members[holders[0]])
            for field_name in sorted({k for m in family.members.values() for k, v in m.items() if v is not None}):
                name = f"{family.key}.{field_name}"
                value, source = self._vote(name, prepared)
                record[field_name] = value
                sources[name] = source
            rows[family.kind].append(record)

        entities = ExtractedEntities(
            personal_info=PersonalInformation(**personal) if personal else None,
            **{kind: [model(**r) for r in rows[kind]] for kind, model in _ROW_MODELS.items()},
        )
        return entities, sources


def _most_frequent_source(field_sources: Dict[str, str], labels: Sequence[str]) -> str:
    if not field_sources:
        return labels[0]
    counts = Counter(field_sources.values())
    best = max(counts.values())
    return next(label for label in labels if counts.get(label) == best)


def consolidate(
    results: Sequence[ExtractionResult],
    strategy: ConsolidationStrategy | str | None = None,
) -> ConsolidationOutcome:
    return ConsolidationEngine().consolidate(results, strategy)


def compare(results: Sequence[ExtractionResult]) -> ComparisonReport:
    return ConsolidationEngine().compare(results)
