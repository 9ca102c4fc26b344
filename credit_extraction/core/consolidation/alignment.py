"""Align entity records from several extraction results into families.

Two results rarely spell a creditor identically ("Capital One" vs "CAPITAL ONE
PLATINUM"), so records are grouped with a fuzzy name match plus an exact
discriminator (account last four, inquiry date, negative type). Each family
gets a readable key such as ``accounts[Capital One|1234]`` that prefixes the
field names compared by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from credit_extraction.config import ACCOUNT_MATCH_MIN_SCORE
from credit_extraction.core.extraction.tokens import last4
from credit_extraction.core.models import ExtractedEntities

LIST_KINDS = ("accounts", "collections", "inquiries", "negative_items")
PERSONAL = "personal_info"


@dataclass(frozen=True)
class KindSpec:
    label: Callable[[Mapping[str, Any]], str]
    discriminator: Callable[[Mapping[str, Any]], str]
    # When False an empty discriminator matches anything.
    exact: bool


KIND_SPECS: Dict[str, KindSpec] = {
    "accounts": KindSpec(
        label=lambda r: str(r.get("creditor_name") or ""),
        discriminator=lambda r: last4(r.get("account_number")),
        exact=False,
    ),
    "collections": KindSpec(
        label=lambda r: str(r.get("collection_agency") or ""),
        discriminator=lambda r: last4(r.get("account_number")),
        exact=False,
    ),
    "inquiries": KindSpec(
        label=lambda r: str(r.get("inquirer_name") or ""),
        discriminator=lambda r: str(r.get("inquiry_date") or ""),
        exact=True,
    ),
    "negative_items": KindSpec(
        label=lambda r: str(r.get("description") or r.get("negative_type") or ""),
        discriminator=lambda r: str(r.get("negative_type") or ""),
        exact=True,
    ),
}


def name_score(a: str, b: str) -> float:
    """``WRatio`` similarity in ``[0, 100]`` on case-folded names."""

    return fuzz.WRatio(a.casefold(), b.casefold())


@dataclass
class Family:
    kind: str
    key: str
    label: str
    discriminator: str
    members: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class Snapshot:
    """One result's entities flattened to ``field -> value``."""

    source: str
    values: Dict[str, Any] = field(default_factory=dict)


class FamilyAligner:
    """Assign records from successive sources to shared families.

    Sources must be fed in a fixed order; the first record seen names the
    family. A source contributes at most one record per family.
    """

    def __init__(self, min_score: float = ACCOUNT_MATCH_MIN_SCORE) -> None:
        self.min_score = min_score
        self.families: Dict[str, List[Family]] = {kind: [] for kind in LIST_KINDS}
        self._keys: set[str] = set()

    def _new_key(self, kind: str, label: str, disc: str) -> str:
        base = f"{kind}[{label}|{disc}]"
        key = base
        n = 2
        while key in self._keys:
            key = f"{base}#{n}"
            n += 1
        self._keys.add(key)
        return key

    def _match(self, kind: str, label: str, disc: str, source: str) -> Optional[Family]:
        spec = KIND_SPECS[kind]
        best: Optional[Family] = None
        best_score = 0.0
        for family in self.families[kind]:
            if source in family.members:
                continue
            if spec.exact and disc != family.discriminator:
                continue
            if not spec.exact and disc and family.discriminator and disc != family.discriminator:
                continue
            score = name_score(label, family.label) if label and family.label else 0.0
            if score >= self.min_score and score > best_score:
                best, best_score = family, score
        return best

    def add(self, source: str, entities: ExtractedEntities) -> Snapshot:
        snapshot = Snapshot(source=source)
        if entities.personal_info is not None:
            for name, value in entities.personal_info.model_dump().items():
                if value is not None:
                    snapshot.values[f"{PERSONAL}.{name}"] = value

        for kind in LIST_KINDS:
            spec = KIND_SPECS[kind]
            for item in getattr(entities, kind):
                record = item.model_dump()
                label = spec.label(record)
                disc = spec.discriminator(record)
                family = self._match(kind, label, disc, source)
                if family is None:
                    family = Family(kind=kind, key=self._new_key(kind, label, disc), label=label, discriminator=disc)
                    self.families[kind].append(family)
                elif not family.discriminator and disc:
                    family.discriminator = disc
                family.members[source] = record
                for name, value in record.items():
                    if value is not None:
                        snapshot.values[f"{family.key}.{name}"] = value
        return snapshot

    def ordered_families(self) -> List[Family]:
        return [f for kind in LIST_KINDS for f in self.families[kind]]


def align(
    sources: Sequence[Tuple[str, ExtractedEntities]],
    min_score: float = ACCOUNT_MATCH_MIN_SCORE,
) -> Tuple[FamilyAligner, List[Snapshot]]:
    aligner = FamilyAligner(min_score)
    snapshots = [aligner.add(source, entities) for source, entities in sources]
    return aligner, snapshots
