"""Heuristic quality scoring for extracted text.

The score starts from the readable-character ratio and keyword coverage,
adds a bonus for each kind of structured datum found (SSN, account, amount,
date) and is penalised when the text is dominated by symbols, which usually
means the backend returned encoded bytes rather than rendered text.
"""

from __future__ import annotations

import re

from credit_extraction.core.rules import load_rules

_QUALITY_READABLE_RE = re.compile(r"[a-zA-Z0-9\s.,!?;:\-()]")
_SPECIAL_RE = re.compile(r"[^\w\s.,!?;:\-()]")
_SSN_RE = re.compile(r"\d{3}-?\d{2}-?\d{4}")
_ACCOUNT_RE = re.compile(r"account|acct", re.I)
_AMOUNT_RE = re.compile(r"\$\d+|\d+\.\d{2}")
_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}|\d{2}-\d{2}-\d{4}")

MIN_SCORED_LENGTH = 100
STRUCTURE_BONUS = 7.5
SPECIAL_PENALTY = 20.0
SPECIAL_RATIO_LIMIT = 0.3


def assess_text_quality(text: str | None) -> float:
    """Return a quality score in ``[0, 100]``; short text scores zero."""

    if not text or len(text) < MIN_SCORED_LENGTH:
        return 0.0

    length = len(text)
    score = len(_QUALITY_READABLE_RE.findall(text)) / length * 40.0

    keywords = load_rules().quality_keywords
    lower = text.lower()
    found = sum(1 for keyword in keywords if keyword in lower)
    score += found / len(keywords) * 30.0

    for pattern in (_SSN_RE, _ACCOUNT_RE, _AMOUNT_RE, _DATE_RE):
        if pattern.search(text):
            score += STRUCTURE_BONUS

    if len(_SPECIAL_RE.findall(text)) / length > SPECIAL_RATIO_LIMIT:
        score -= SPECIAL_PENALTY

    return max(0.0, min(100.0, score))


def quality_confidence(text: str | None) -> float:
    """Quality score rescaled to a ``[0, 1]`` confidence."""

    return round(assess_text_quality(text) / 100.0, 4)
