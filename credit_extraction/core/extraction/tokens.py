"""Shared regex tokens and helpers for deterministic extractors."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

# Loose money token; strict validation happens in ``parse_amount``.
AMOUNT_RE = re.compile(r"\$?\s?\d[\d,]*(?:\.\d+)*")
_STRICT_AMOUNT_RE = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?$")

DATE_TOKEN = (
    r"(?:\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2}|\d{1,2}-\d{1,2}-\d{4}"
    r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4}"
    r"|\d{1,2}/\d{4})"
)
DATE_RE = re.compile(DATE_TOKEN)

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%b %d %Y",
    "%B %d %Y",
)

# Canonical account field synonyms, most specific first.
ACCOUNT_FIELD_MAP: dict[str, tuple[str, ...]] = {
    "creditor_name": (
        "creditor name",
        "creditor",
        "company name",
        "company",
        "subscriber",
        "furnisher",
        "lender",
        "account name",
    ),
    "account_number": (
        "account number",
        "account #",
        "acct #",
        "account no",
        "acct number",
        "account",
    ),
    "account_type": ("account type", "loan type", "type"),
    "current_balance": (
        "current balance",
        "balance owed",
        "amount owed",
        "balance",
    ),
    "credit_limit": ("credit limit", "limit"),
    "high_credit": ("high credit", "high balance"),
    "past_due_amount": ("past due amount", "amount past due", "past due"),
    "account_status": ("account status", "status"),
    "payment_status": ("payment status", "pay status", "current rating"),
    "date_opened": ("date opened", "open date", "opened"),
    "date_closed": ("date closed", "closed date", "closed"),
}

MONEY_FIELDS = frozenset({"current_balance", "credit_limit", "high_credit", "past_due_amount"})
DATE_FIELDS = frozenset({"date_opened", "date_closed"})


def normalize_label(label: str) -> str:
    """Lower-case a source label and collapse punctuation and whitespace."""

    label = label.strip().strip(":").lower()
    label = re.sub(r"(?<=\w)#", " #", label)
    return re.sub(r"[_\s]+", " ", label).strip()


def parse_amount(text: str | None) -> Optional[float]:
    """Parse a money string such as ``$1,250.00``.

    Currency symbols, whitespace and thousands separators are stripped. A
    value that is present but malformed returns ``None`` rather than ``0`` so
    callers can tell an unreadable balance from a zero balance.
    """

    if text is None:
        return None
    raw = text.strip().replace("$", "").replace(" ", "")
    if raw.startswith("(") and raw.endswith(")"):
        raw = raw[1:-1]
    if not raw or not _STRICT_AMOUNT_RE.match(raw):
        return None
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def normalize_date(text: str | None) -> Optional[str]:
    """Return an ISO ``YYYY-MM-DD`` date, ``YYYY-MM`` for month-only input, or ``None``."""

    if not text:
        return None
    raw = re.sub(r"[,.]", " ", text.strip())
    raw = re.sub(r"\s+", " ", raw)
    if raw.lower().startswith("sept"):
        raw = "Sep" + raw[4:]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.strptime(raw, "%m/%Y").strftime("%Y-%m")
    except ValueError:
        return None


def mask_account_number(value: str | None) -> Optional[str]:
    """Normalise masking characters to ``*`` and drop separators."""

    if not value:
        return None
    cleaned = re.sub(r"[\s\-]", "", value.strip())
    cleaned = re.sub(r"[Xx]", "*", cleaned)
    if not re.search(r"\d", cleaned) and "*" not in cleaned:
        return None
    return cleaned or None


def last4(account_number: str | None) -> str:
    digits = re.sub(r"\D", "", account_number or "")
    return digits[-4:]


def clean_name(value: str | None) -> Optional[str]:
    if not value:
        return None
    value = re.sub(r"\s+", " ", value).strip(" \t:,-")
    return value or None
