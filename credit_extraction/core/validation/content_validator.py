"""Gate deciding whether extracted text plausibly is a credit report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from credit_extraction.core.rules import Rules, load_rules

REASON_TOO_SHORT = "too_short"
REASON_PDF_MARKERS = "pdf_markers"
REASON_INSUFFICIENT_TERMS = "insufficient_terms"


@dataclass(frozen=True)
class ValidationOutcome:
    accepted: bool
    reason: Optional[str] = None
    detail: str = ""
    terms_found: int = 0

    def __bool__(self) -> bool:
        return self.accepted


class ContentValidator:
    """Pure text classifier.

    Checks run in a fixed order: length, raw PDF-object markers, then the
    credit vocabulary count. A marker hit rejects the text whatever its
    vocabulary, because it means the backend returned PDF syntax.
    """

    def __init__(self, rules: Rules | None = None) -> None:
        self._rules = rules or load_rules()

    def validate(self, text: str | None) -> ValidationOutcome:
        rules = self._rules
        text = text or ""
        if len(text) < rules.min_length:
            return ValidationOutcome(
                accepted=False,
                reason=REASON_TOO_SHORT,
                detail=f"text length {len(text)} below {rules.min_length}",
            )

        markers = [m for m in rules.pdf_markers if m in text]
        if markers:
            return ValidationOutcome(
                accepted=False,
                reason=REASON_PDF_MARKERS,
                detail="raw PDF syntax found: " + ", ".join(markers[:3]),
            )

        lower = text.lower()
        found = sum(1 for term in rules.credit_terms if term in lower)
        if found < rules.min_terms:
            return ValidationOutcome(
                accepted=False,
                reason=REASON_INSUFFICIENT_TERMS,
                detail=f"{found} credit terms found, {rules.min_terms} required",
                terms_found=found,
            )

        return ValidationOutcome(accepted=True, terms_found=found)


def validate(text: str | None) -> ValidationOutcome:
    """Validate ``text`` with the default rules."""

    return ContentValidator().validate(text)
