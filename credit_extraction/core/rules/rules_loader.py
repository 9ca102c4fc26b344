"""Load and validate the extraction rules file."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Tuple

import yaml
from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

_RULES_PATH = Path(__file__).with_name("rules.yaml")
_SCHEMA_PATH = Path(__file__).with_name("rules_schema.yaml")

_RULES_CACHE: "Rules | None" = None


@dataclass(frozen=True)
class NegativeClass:
    """One negative-item class with its severity and keyword pattern."""

    type: str
    severity: int
    impact: str
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class Rules:
    min_length: int
    min_terms: int
    pdf_markers: Tuple[str, ...]
    credit_terms: Tuple[str, ...]
    quality_keywords: Tuple[str, ...]
    readable_min_ratio: float
    known_creditors: Tuple[str, ...]
    creditor_suffixes: Tuple[str, ...]
    account_type_rules: Tuple[Tuple[str, Tuple[str, ...]], ...]
    default_account_type: str
    negative_classes: Tuple[NegativeClass, ...]


def _build(data: Mapping[str, Any]) -> Rules:
    validator = data["validator"]
    quality = data["quality"]
    creditors = data["creditors"]
    account_types = data["account_types"]
    negatives = tuple(
        NegativeClass(
            type=item["type"],
            severity=int(item["severity"]),
            impact=item["impact"],
            pattern=re.compile(item["pattern"], re.I),
        )
        for item in data["negative_items"]
    )
    return Rules(
        min_length=int(validator["min_length"]),
        min_terms=int(validator["min_terms"]),
        pdf_markers=tuple(validator["pdf_markers"]),
        credit_terms=tuple(t.lower() for t in validator["credit_terms"]),
        quality_keywords=tuple(k.lower() for k in quality["keywords"]),
        readable_min_ratio=float(quality["readable_min_ratio"]),
        known_creditors=tuple(creditors["known"]),
        creditor_suffixes=tuple(creditors["suffixes"]),
        account_type_rules=tuple(
            (rule["type"], tuple(k.lower() for k in rule["keywords"]))
            for rule in account_types["rules"]
        ),
        default_account_type=account_types["default"],
        negative_classes=negatives,
    )


def load_rules(path: Path | None = None) -> Rules:
    """Load and return the extraction rules.

    The file is validated against ``rules_schema.yaml``; a ``ValueError`` is
    raised when it does not conform. The default file is cached after the
    first load.
    """

    global _RULES_CACHE
    if path is None and _RULES_CACHE is not None:
        return _RULES_CACHE

    source = path or _RULES_PATH
    data = yaml.safe_load(source.read_text(encoding="utf-8"))
    schema = yaml.safe_load(_SCHEMA_PATH.read_text(encoding="utf-8"))
    errors = sorted(Draft7Validator(schema).iter_errors(data), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.path) or "<root>"
        logger.error("RULES_INVALID path=%s where=%s error=%s", source, where, first.message)
        raise ValueError(f"invalid extraction rules at {where}: {first.message}")

    rules = _build(data)
    if path is None:
        _RULES_CACHE = rules
    return rules
