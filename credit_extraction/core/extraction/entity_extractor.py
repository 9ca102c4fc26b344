"""Convert raw report text into typed candidate entities.

Every field is produced by an ordered list of rules; each rule couples a
pattern with the function that maps its match to a value, and the first rule
yielding a non-null value wins. Rules that cannot parse their match return
``None`` so the field is simply left out.

Text coming from structured backends carries ``KV:`` and ``TABLE <n>:``
prefixes (see :mod:`credit_extraction.core.backends.structured`); those lines
are parsed as labelled records and mapped onto canonical fields through
:data:`~credit_extraction.core.extraction.tokens.ACCOUNT_FIELD_MAP`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import ValidationError

from credit_extraction.core.models import (
    Collection,
    CreditAccount,
    CreditInquiry,
    ExtractedEntities,
    NegativeItem,
    PersonalInformation,
)
from credit_extraction.core.rules import NegativeClass, Rules, load_rules
from credit_extraction.core.text import sanitize_text

from .tokens import (
    ACCOUNT_FIELD_MAP,
    AMOUNT_RE,
    DATE_FIELDS,
    DATE_RE,
    DATE_TOKEN,
    MONEY_FIELDS,
    clean_name,
    last4,
    mask_account_number,
    normalize_date,
    normalize_label,
    parse_amount,
)

logger = logging.getLogger(__name__)

Mapper = Callable[[re.Match], Optional[Any]]


@dataclass(frozen=True)
class FieldRule:
    """Pattern for one canonical field plus the function mapping its match."""

    field: str
    pattern: re.Pattern[str]
    mapper: Mapper


# Personal information -------------------------------------------------------

_NAME_WORDS = r"[A-Z][A-Za-z'\-]+(?:[ \t]+[A-Z][A-Za-z'\-.]*){1,3}"
_STREET = (
    r"(?i:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Lane|Ln|Boulevard|Blvd|Court|Ct"
    r"|Way|Place|Pl|Circle|Cir|Parkway|Pkwy|Highway|Hwy|Terrace|Ter)"
)
_NOT_PERSON_PREFIX = re.compile(r"(?i:creditor|company|account|file|inquirer|business)\s*$")
_NOT_PERSON_VALUE = {"not reported", "none", "unknown", "date of", "on file"}
_ADDRESS_TAIL = re.compile(r"\s+(?i:phone|telephone|ssn|dob|date\s+of\s+birth|name)\b.*$")


def _person_name(m: re.Match) -> Optional[str]:
    line_start = m.string.rfind("\n", 0, m.start()) + 1
    if _NOT_PERSON_PREFIX.search(m.string[line_start : m.start()]):
        return None
    value = clean_name(m.group("value"))
    if not value or value.lower() in _NOT_PERSON_VALUE:
        return None
    return value


def _date_value(m: re.Match) -> Optional[str]:
    return normalize_date(m.group("value"))


def _ssn_masked(m: re.Match) -> Optional[str]:
    digits = re.sub(r"\D", "", m.group("value"))
    return f"XXX-XX-{digits[-4:]}" if len(digits) >= 4 else None


def _address(m: re.Match) -> Optional[str]:
    value = _ADDRESS_TAIL.sub("", m.group("value"))
    value = clean_name(value)
    if not value or len(value) < 6:
        return None
    return value[:160]


def _phone(m: re.Match) -> Optional[str]:
    digits = re.sub(r"\D", "", m.group("value"))
    if len(digits) != 10:
        return None
    return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"


_SSN_LABEL = r"(?i:ssn|social\s+security(?:\s+number)?)"

PERSONAL_RULES: Tuple[FieldRule, ...] = (
    FieldRule(
        "full_name",
        re.compile(
            rf"(?<![A-Za-z])(?i:consumer\s+name|full\s+name|name)[ \t]*:?[ \t]*(?P<value>{_NAME_WORDS})"
        ),
        _person_name,
    ),
    FieldRule(
        "full_name",
        re.compile(rf"(?i:report\s+for|prepared\s+for|consumer)[ \t]*:?[ \t]*(?P<value>{_NAME_WORDS})"),
        _person_name,
    ),
    FieldRule(
        "date_of_birth",
        re.compile(
            rf"(?i:date\s+of\s+birth|birth\s+date|dob|born)[ \t]*:?[ \t]*(?P<value>{DATE_TOKEN})"
        ),
        _date_value,
    ),
    FieldRule(
        "ssn_partial",
        re.compile(
            rf"{_SSN_LABEL}[ \t]*[:#]?[ \t]*(?P<value>(?:XXX|xxx|\*\*\*)-?(?:XX|xx|\*\*)-?\d{{4}})"
        ),
        _ssn_masked,
    ),
    FieldRule(
        "ssn_partial",
        re.compile(rf"{_SSN_LABEL}[ \t]*[:#]?[ \t]*(?P<value>\d{{3}}-?\d{{2}}-?\d{{4}})\b"),
        _ssn_masked,
    ),
    FieldRule(
        "ssn_partial",
        re.compile(
            rf"{_SSN_LABEL}[ \t]*(?i:ending\s+in|last\s+4)[ \t]*[:#]?[ \t]*(?P<value>\d{{4}})\b"
        ),
        _ssn_masked,
    ),
    FieldRule(
        "current_address",
        re.compile(
            rf"(?i:current\s+address|address|residence)[ \t]*:?[ \t]*"
            rf"(?P<value>\d+[^\n]*?\b{_STREET}\b\.?[^\n]*)"
        ),
        _address,
    ),
    FieldRule(
        "current_address",
        re.compile(r"(?i:current\s+address|address)[ \t]*:[ \t]*(?P<value>\d+[A-Za-z0-9 ,.#\-]{5,})"),
        _address,
    ),
    FieldRule(
        "phone_number",
        re.compile(
            r"(?i:phone(?:\s+number)?|telephone|tel)[ \t]*[:#]?[ \t]*"
            r"(?P<value>\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})\b"
        ),
        _phone,
    ),
)

PERSONAL_FIELDS = ("full_name", "date_of_birth", "ssn_partial", "current_address", "phone_number")


def first_value(rules: Sequence[FieldRule], field: str, text: str) -> Optional[Any]:
    """Evaluate ``rules`` for ``field`` in order and return the first non-null value."""

    for rule in rules:
        if rule.field != field:
            continue
        for match in rule.pattern.finditer(text):
            value = rule.mapper(match)
            if value is not None:
                return value
    return None


def map_fields(
    record: Mapping[str, Any], synonyms: Mapping[str, Sequence[str]]
) -> Dict[str, Any]:
    """Map a source record onto canonical fields.

    ``record`` keys are normalised with :func:`normalize_label`; for each
    canonical field the synonyms are tried in order and the first non-empty
    value wins.
    """

    normalized = {normalize_label(str(k)): v for k, v in record.items()}
    out: Dict[str, Any] = {}
    for canonical, names in synonyms.items():
        for name in names:
            value = normalized.get(name)
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            out[canonical] = value.strip() if isinstance(value, str) else value
            break
    return out


# Line helpers ---------------------------------------------------------------

_LABEL_LINE_RE = re.compile(
    r"^(?:KV:\s*)?(?P<label>[A-Za-z][A-Za-z #/&'.()\-]{0,40}?)\s*:\s*(?P<value>\S.*)$"
)
_TABLE_LINE_RE = re.compile(r"^TABLE\s+(?P<table>\d+):\s*(?P<cells>.*)$")
_HEADER_WORDS_RE = re.compile(r"^[A-Z][A-Z &/\-]{2,60}$")
_INQUIRY_HEADER_RE = re.compile(
    r"^(?i:(?:hard|soft|regular|promotional|credit|account\s+review)\s+)?(?i:inquir(?:y|ies))(?:[ \t]+\w+){0,3}$"
)
_NEGATED_RE = re.compile(
    r"\b(?i:no|none|zero|never)\s+(?:\w+\s+){0,2}(?i:collections?|bankruptc\w*|judge?ments?|liens?|late|charge)"
)

_CREDITOR_KEYS = frozenset(ACCOUNT_FIELD_MAP["creditor_name"])
_COLLECTION_KEYS = ("collection agency", "collector", "agency")

_STOP_WORDS = (
    r"(?i:account|acct|balance|limit|status|current|credit\s+limit|high|past|payment|"
    r"opened|date|type|amount|original|reported|open|closed)\b"
)
_TRAILING_WORDS = rf"(?:[ \t]+(?!{_STOP_WORDS})[A-Z][A-Za-z&'.\-]*){{0,4}}"
_AGENCY_RE = re.compile(
    r"(?P<agency>[A-Z][A-Za-z0-9&'.\-]*(?:[ \t]+[A-Z][A-Za-z0-9&'.\-]*){0,4}?[ \t]+"
    r"(?i:collections?|recovery|receivables|asset\s+management|credit\s+management|"
    r"portfolio\s+recovery|collection\s+services))\b"
)
_LABELED_AGENCY_RE = re.compile(
    r"(?i:collection\s+agency|collector)[ \t]*:[ \t]*(?P<agency>[^\n$:]+?)"
    r"(?=[ \t]+\$|[ \t]+(?i:amount|original|balance|status)\b|$)"
)
_ORIGINAL_CREDITOR_RE = re.compile(
    r"(?i:original\s+creditor|orig\.?\s+creditor)[ \t]*:?[ \t]*(?P<value>[A-Za-z0-9&'.\- ]+?)"
    r"(?=[ \t]+(?i:amount|balance|status|date|account)\b|[$,;]|$)"
)

_BALANCE_RE = re.compile(
    r"(?i:current\s+balance|balance\s+owed|amount\s+owed|balance)[ \t]*:?[ \t]*(?P<amount>\$?\s?\d[\d,]*(?:\.\d+)*)"
)
_LIMIT_RE = re.compile(
    r"(?i:credit\s+limit|limit)[ \t]*:?[ \t]*(?P<amount>\$?\s?\d[\d,]*(?:\.\d+)*)"
)
_HIGH_CREDIT_RE = re.compile(
    r"(?i:high\s+credit|high\s+balance)[ \t]*:?[ \t]*(?P<amount>\$?\s?\d[\d,]*(?:\.\d+)*)"
)
_PAST_DUE_RE = re.compile(
    r"(?i:past\s+due(?:\s+amount)?|amount\s+past\s+due)[ \t]*:?[ \t]*(?P<amount>\$\s?\d[\d,]*(?:\.\d+)*)"
)
_ACCOUNT_NUMBER_RE = re.compile(
    r"(?i:account|acct)(?:[ \t]*(?i:number|no\.?|#))?[ \t]*[:#][ \t]*(?P<number>[A-Za-z0-9*\-]{4,})"
)
_MASKED_NUMBER_RE = re.compile(r"(?P<number>\*{2,}\d{2,4}|\d{4}[Xx*]{4,}\d{4}|[Xx]{2,}\d{4})")
_STATUS_RE = re.compile(
    r"(?i:account\s+status|status)[ \t]*:?[ \t]*(?P<status>(?i:open|closed|current|paid|past\s+due|"
    r"charge[\s-]?off|charged\s+off|collection|transferred|delinquent|never\s+late))"
)
_PAYMENT_STATUS_RE = re.compile(
    r"(?i:payment\s+status|pay\s+status)[ \t]*:?[ \t]*(?P<status>[A-Za-z0-9 \-]+?)(?=[ \t]{2,}|[,;]|$)"
)
_OPENED_RE = re.compile(rf"(?i:date\s+opened|opened)[ \t]*:?[ \t]*(?P<date>{DATE_TOKEN})")
_CLOSED_RE = re.compile(rf"(?i:date\s+closed|closed\s+date)[ \t]*:?[ \t]*(?P<date>{DATE_TOKEN})")
_UNLABELED_AMOUNT_RE = re.compile(r"[^$\n]*?\$\s?(?P<amount>\d[\d,]*(?:\.\d+)*)")
_NEGATIVE_STATUS_RE = re.compile(
    r"(?i:past\s+due|delinquent|collection|charge[\s-]?off|charged\s+off|late|repossess|foreclos)"
)

_INQUIRY_NAME = r"[A-Z][A-Za-z0-9&'.\-]*(?:[ \t]+[A-Z0-9&][A-Za-z0-9&'.\-]*){0,5}?"
_INQUIRY_KIND_WORDS = r"(?i:hard|soft|inquiry|credit\s+check|application|promotional|account\s+review|pull)"
_SOFT_RE = re.compile(
    r"(?i:soft|promotional|prescreen|account\s+review|consumer\s+disclosure|pre-?approv)"
)
_NOT_INQUIRER_RE = re.compile(r"(?i:date|birth|dob|opened|closed|reported|updated|born|since)")


def _first_amount(text: str | None) -> Optional[float]:
    """Parse the first money token in ``text``; unparsable tokens yield ``None``."""

    if not text:
        return None
    m = AMOUNT_RE.search(text)
    if not m:
        return None
    return parse_amount(m.group())


def _first_date(text: str) -> Optional[str]:
    m = DATE_RE.search(text)
    return normalize_date(m.group()) if m else None


def is_header(line: str) -> bool:
    """True for short all-caps section titles such as ``CREDIT INQUIRIES``."""

    if len(line.split()) > 6:
        return False
    return bool(_HEADER_WORDS_RE.match(line))


def _build_creditor_re(rules: Rules) -> re.Pattern[str]:
    known = "|".join(
        re.escape(name).replace(r"\ ", r"\s+")
        for name in sorted(rules.known_creditors, key=len, reverse=True)
    )
    suffixes = "|".join(re.escape(s) for s in rules.creditor_suffixes)
    return re.compile(
        rf"(?P<known>\b(?i:{known})\b{_TRAILING_WORDS})"
        rf"|(?P<suffixed>\b[A-Z][A-Za-z&'.\-]*(?:[ \t]+[A-Z][A-Za-z&'.\-]*){{0,4}}?[ \t]+(?i:{suffixes})\b)"
    )


@dataclass(frozen=True)
class AccountShape:
    """Inline account shape: applies to one line after a creditor anchor."""

    name: str
    mapper: Callable[[str, str, int], Optional[Dict[str, Any]]]


def _labeled_fields(line: str, creditor: str, anchor_end: int) -> Optional[Dict[str, Any]]:
    fields: Dict[str, Any] = {}
    for key, pattern in (
        ("current_balance", _BALANCE_RE),
        ("credit_limit", _LIMIT_RE),
        ("high_credit", _HIGH_CREDIT_RE),
        ("past_due_amount", _PAST_DUE_RE),
    ):
        m = pattern.search(line)
        if m:
            fields[key] = parse_amount(m.group("amount"))
    m = _ACCOUNT_NUMBER_RE.search(line)
    if m:
        fields["account_number"] = mask_account_number(m.group("number"))
    if not any(v is not None for v in fields.values()) and not any(
        p.search(line) for p in (_BALANCE_RE, _LIMIT_RE)
    ):
        return None
    return fields


def _creditor_then_amount(line: str, creditor: str, anchor_end: int) -> Optional[Dict[str, Any]]:
    m = _UNLABELED_AMOUNT_RE.match(line, anchor_end)
    if not m:
        return None
    return {"current_balance": parse_amount(m.group("amount"))}


def _creditor_masked_number(line: str, creditor: str, anchor_end: int) -> Optional[Dict[str, Any]]:
    m = _MASKED_NUMBER_RE.search(line, anchor_end)
    if not m:
        return None
    return {"account_number": mask_account_number(m.group("number"))}


ACCOUNT_SHAPES: Tuple[AccountShape, ...] = (
    AccountShape("labeled", _labeled_fields),
    AccountShape("creditor_amount", _creditor_then_amount),
    AccountShape("masked_number", _creditor_masked_number),
)


@dataclass(frozen=True)
class InquiryShape:
    name: str
    pattern: re.Pattern[str]
    section_only: bool


INQUIRY_SHAPES: Tuple[InquiryShape, ...] = (
    InquiryShape(
        "name_date_type",
        re.compile(
            rf"^(?P<name>{_INQUIRY_NAME})[ \t]+(?:(?i:on|dated?)[ \t]+)?(?P<date>{DATE_TOKEN})"
            r"[ \t]+(?P<kind>[A-Za-z][A-Za-z \t/\-]*)$"
        ),
        False,
    ),
    InquiryShape(
        "date_name_type",
        re.compile(
            rf"^(?P<date>{DATE_TOKEN})[ \t]+(?:-[ \t]+)?(?P<name>{_INQUIRY_NAME})"
            rf"(?:[ \t]+(?:-[ \t]+)?(?P<kind>{_INQUIRY_KIND_WORDS}[A-Za-z \t/\-]*))?$"
        ),
        False,
    ),
    InquiryShape(
        "name_date",
        re.compile(rf"^(?P<name>{_INQUIRY_NAME})[ \t]+(?P<date>{DATE_TOKEN})$"),
        True,
    ),
)


class EntityExtractor:
    """Deterministic pattern-based entity extraction.

    ``extract`` is pure: the same text always yields the same entities in the
    same order.
    """

    def __init__(self, rules: Rules | None = None) -> None:
        self._rules = rules or load_rules()
        self._creditor_re = _build_creditor_re(self._rules)

    # Public API -------------------------------------------------------------

    def extract(self, text: str | None) -> ExtractedEntities:
        clean = sanitize_text(text)
        lines = clean.split("\n") if clean else []
        plain = "\n".join(_strip_prefix(line) for line in lines)

        consumed: Set[int] = set()
        accounts: List[CreditAccount] = []
        collections: List[Collection] = []
        negatives: List[NegativeItem] = []

        for record, indices in self._structured_records(lines):
            agency = map_fields(record, {"agency": _COLLECTION_KEYS}).get("agency")
            fields = map_fields(record, ACCOUNT_FIELD_MAP)
            if not agency and _AGENCY_RE.search(str(fields.get("creditor_name", ""))):
                agency = fields["creditor_name"]
            if agency:
                collection = self._collection_from_record(agency, record)
                if collection is not None:
                    collections.append(collection)
                    consumed.update(indices)
                continue
            account = self._account_from_fields(fields)
            if account is not None:
                accounts.append(account)
                consumed.update(indices)
                if account.is_negative:
                    negatives.append(self._negative_for_account(account))

        inquiries = self._extract_inquiries(lines)
        consumed.update(idx for idx, _ in inquiries)

        for idx, line in enumerate(lines):
            if idx in consumed or line.startswith("TABLE "):
                continue
            text_line = _strip_prefix(line)
            if is_header(text_line):
                continue
            collection = self._collection_from_line(text_line)
            if collection is not None:
                collections.append(collection)
                consumed.add(idx)
                continue
            account = self._account_from_line(text_line)
            if account is not None:
                accounts.append(account)
                consumed.add(idx)
                if account.is_negative:
                    negatives.append(self._negative_for_account(account))
                    continue
            item = self._negative_from_line(text_line)
            if item is not None:
                negatives.append(item)

        negatives.extend(self._negative_for_collection(c) for c in collections)

        entities = ExtractedEntities(
            personal_info=self._extract_personal(plain),
            accounts=_dedupe_accounts(accounts),
            inquiries=[inq for _, inq in inquiries],
            negative_items=_dedupe_negatives(negatives),
            collections=_dedupe_collections(collections),
        )
        logger.debug(
            "ENTITY_EXTRACT chars=%d accounts=%d inquiries=%d negatives=%d collections=%d",
            len(clean),
            len(entities.accounts),
            len(entities.inquiries),
            len(entities.negative_items),
            len(entities.collections),
        )
        return entities

    def infer_account_type(self, creditor_name: str) -> str:
        lower = creditor_name.lower()
        for account_type, keywords in self._rules.account_type_rules:
            for keyword in keywords:
                if re.search(rf"\b{re.escape(keyword)}\b", lower):
                    return account_type
        return self._rules.default_account_type

    def classify_negative(self, text: str) -> Optional[NegativeClass]:
        for negative_class in self._rules.negative_classes:
            if negative_class.pattern.search(text):
                return negative_class
        return None

    # Personal information ---------------------------------------------------

    def _extract_personal(self, text: str) -> Optional[PersonalInformation]:
        values = {field: first_value(PERSONAL_RULES, field, text) for field in PERSONAL_FIELDS}
        if not any(values.values()):
            return None
        return PersonalInformation(**values)

    # Structured records -----------------------------------------------------

    def _structured_records(
        self, lines: Sequence[str]
    ) -> Iterator[Tuple[Dict[str, str], List[int]]]:
        yield from _table_records(lines)
        yield from _label_records(
            lines, breaks=lambda label: self._creditor_re.search(label) is not None
        )

    # Accounts ---------------------------------------------------------------

    def _find_creditor(self, line: str) -> Optional[Tuple[str, int]]:
        best: Optional[re.Match] = None
        for m in self._creditor_re.finditer(line):
            if best is None or m.group("known") and not best.group("known"):
                best = m
            if best.group("known"):
                break
        if best is None:
            return None
        name = clean_name(best.group())
        if not name:
            return None
        return name, best.end()

    def _account_from_line(self, line: str) -> Optional[CreditAccount]:
        anchor = self._find_creditor(line)
        if anchor is None:
            return None
        creditor, anchor_end = anchor
        for shape in ACCOUNT_SHAPES:
            fields = shape.mapper(line, creditor, anchor_end)
            if fields is None:
                continue
            fields["creditor_name"] = creditor
            status = _STATUS_RE.search(line)
            if status:
                fields["account_status"] = clean_name(status.group("status")).title()
            payment = _PAYMENT_STATUS_RE.search(line)
            if payment:
                fields["payment_status"] = clean_name(payment.group("status"))
            opened = _OPENED_RE.search(line)
            if opened:
                fields["date_opened"] = normalize_date(opened.group("date"))
            closed = _CLOSED_RE.search(line)
            if closed:
                fields["date_closed"] = normalize_date(closed.group("date"))
            return self._build_account(fields, shape=shape.name)
        return None

    def _account_from_fields(self, fields: Mapping[str, Any]) -> Optional[CreditAccount]:
        creditor = clean_name(str(fields.get("creditor_name") or ""))
        if not creditor:
            return None
        out: Dict[str, Any] = {"creditor_name": creditor}
        for key, value in fields.items():
            if key == "creditor_name":
                continue
            if key in MONEY_FIELDS:
                out[key] = _first_amount(str(value))
            elif key in DATE_FIELDS:
                out[key] = normalize_date(str(value))
            elif key == "account_number":
                out[key] = mask_account_number(str(value))
            else:
                out[key] = clean_name(str(value))
        if len([v for k, v in fields.items() if k != "creditor_name"]) == 0:
            return None
        return self._build_account(out, shape="record")

    def _build_account(self, fields: Dict[str, Any], *, shape: str) -> Optional[CreditAccount]:
        creditor = fields["creditor_name"]
        if not fields.get("account_type"):
            fields["account_type"] = self.infer_account_type(creditor)
        statuses = " ".join(
            str(fields.get(k) or "") for k in ("account_status", "payment_status")
        )
        fields["is_negative"] = bool(_NEGATIVE_STATUS_RE.search(statuses))
        try:
            return CreditAccount(**{k: v for k, v in fields.items() if v is not None})
        except ValidationError as exc:
            logger.debug("ENTITY_ACCOUNT_SKIPPED shape=%s errors=%d", shape, exc.error_count())
            return None

    # Collections and negative items ----------------------------------------

    def _collection_from_line(self, line: str) -> Optional[Collection]:
        if _NEGATED_RE.search(line):
            return None
        m = _LABELED_AGENCY_RE.search(line) or _AGENCY_RE.search(line)
        if not m:
            return None
        if "$" not in line and not re.search(r"(?i:collection)", line):
            return None
        agency = clean_name(m.group("agency"))
        if not agency:
            return None
        tail = line[m.end():]
        amount_match = _UNLABELED_AMOUNT_RE.match(line, m.end())
        original = _ORIGINAL_CREDITOR_RE.search(line)
        account = _ACCOUNT_NUMBER_RE.search(line) or _MASKED_NUMBER_RE.search(tail)
        assigned = re.search(
            rf"(?i:date\s+assigned|assigned|placed|opened)[ \t]*:?[ \t]*(?P<date>{DATE_TOKEN})", line
        )
        status = re.search(r"(?i:status)[ \t]*:?[ \t]*(?P<status>(?i:open|closed|paid|unpaid|settled|disputed))", line)
        return _safe_collection(
            collection_agency=agency,
            original_creditor=clean_name(original.group("value")) if original else None,
            account_number=mask_account_number(account.group("number")) if account else None,
            amount=parse_amount(amount_match.group("amount")) if amount_match else None,
            date_assigned=normalize_date(assigned.group("date")) if assigned else None,
            status=status.group("status").title() if status else None,
        )

    def _collection_from_record(self, agency: str, record: Mapping[str, str]) -> Optional[Collection]:
        fields = map_fields(
            record,
            {
                "original_creditor": ("original creditor", "orig creditor", "orig. creditor"),
                "account_number": ACCOUNT_FIELD_MAP["account_number"],
                "amount": ("amount", "balance", "current balance", "balance owed"),
                "date_assigned": ("date assigned", "assigned", "date placed", "date opened"),
                "status": ("status", "account status"),
            },
        )
        return _safe_collection(
            collection_agency=clean_name(agency) or agency,
            original_creditor=clean_name(fields.get("original_creditor")),
            account_number=mask_account_number(fields.get("account_number")),
            amount=_first_amount(fields.get("amount")),
            date_assigned=normalize_date(fields.get("date_assigned")),
            status=clean_name(fields.get("status")),
        )

    def _negative_for_collection(self, collection: Collection) -> NegativeItem:
        negative_class = next(
            (c for c in self._rules.negative_classes if c.type == "Collection"), None
        )
        description = collection.collection_agency
        if collection.original_creditor:
            description += f" - original creditor {collection.original_creditor}"
        return NegativeItem(
            negative_type="Collection",
            description=description,
            amount=collection.amount,
            date_occurred=collection.date_assigned,
            severity_score=negative_class.severity if negative_class else 6,
            impact=negative_class.impact if negative_class else "high",
        )

    def _negative_for_account(self, account: CreditAccount) -> NegativeItem:
        status = " ".join(
            s for s in (account.account_status, account.payment_status) if s
        )
        negative_class = self.classify_negative(status) or next(
            (c for c in self._rules.negative_classes if c.type == "Late Payment"), None
        )
        amount = account.past_due_amount
        if amount is None:
            amount = account.current_balance
        return NegativeItem(
            negative_type=negative_class.type if negative_class else "Late Payment",
            description=f"{account.creditor_name} - {status}" if status else account.creditor_name,
            amount=amount,
            date_occurred=account.date_closed or account.date_opened,
            severity_score=negative_class.severity if negative_class else 3,
            impact=negative_class.impact if negative_class else "medium",
        )

    def _negative_from_line(self, line: str) -> Optional[NegativeItem]:
        if not line or is_header(line) or _NEGATED_RE.search(line):
            return None
        negative_class = self.classify_negative(line)
        if negative_class is None:
            return None
        try:
            return NegativeItem(
                negative_type=negative_class.type,
                description=line[:200],
                amount=_first_amount(line) if "$" in line else None,
                date_occurred=_first_date(line),
                severity_score=negative_class.severity,
                impact=negative_class.impact,
            )
        except ValidationError as exc:
            logger.debug("ENTITY_NEGATIVE_SKIPPED errors=%d", exc.error_count())
            return None

    # Inquiries --------------------------------------------------------------

    def _extract_inquiries(self, lines: Sequence[str]) -> List[Tuple[int, CreditInquiry]]:
        found: List[Tuple[int, CreditInquiry]] = []
        seen: Set[Tuple[str, Optional[str]]] = set()
        in_section = False
        for idx, raw in enumerate(lines):
            line = _strip_prefix(raw)
            if _INQUIRY_HEADER_RE.match(line) or (is_header(line) and "INQUIR" in line.upper()):
                in_section = True
                continue
            if is_header(line):
                in_section = False
                continue
            inquiry = self._inquiry_from_line(line, in_section)
            if inquiry is None:
                continue
            key = (inquiry.inquirer_name.lower(), inquiry.inquiry_date)
            if key in seen:
                continue
            seen.add(key)
            found.append((idx, inquiry))
        return found

    def _inquiry_from_line(self, line: str, in_section: bool) -> Optional[CreditInquiry]:
        if "$" in line:
            return None
        for shape in INQUIRY_SHAPES:
            if shape.section_only and not in_section:
                continue
            m = shape.pattern.match(line)
            if not m:
                continue
            kind = m.groupdict().get("kind") or ""
            if not in_section and not re.search(_INQUIRY_KIND_WORDS, kind):
                continue
            name = clean_name(m.group("name"))
            if not name or _NOT_INQUIRER_RE.search(name):
                continue
            try:
                return CreditInquiry(
                    inquirer_name=name,
                    inquiry_date=normalize_date(m.group("date")),
                    inquiry_type="soft" if _SOFT_RE.search(kind) else "hard",
                )
            except ValidationError:
                continue
        return None


def _strip_prefix(line: str) -> str:
    if line.startswith("KV:"):
        return line[3:].strip()
    return line


def _table_records(lines: Sequence[str]) -> Iterator[Tuple[Dict[str, str], List[int]]]:
    headers: Dict[str, List[str]] = {}
    for idx, line in enumerate(lines):
        m = _TABLE_LINE_RE.match(line)
        if not m:
            continue
        cells = [c.strip() for c in m.group("cells").split("|")]
        table = m.group("table")
        if table not in headers:
            headers[table] = [normalize_label(c) for c in cells]
            continue
        record = {h: c for h, c in zip(headers[table], cells) if h and c}
        if record:
            yield record, [idx]


def _label_records(
    lines: Sequence[str], *, breaks: Callable[[str], bool] | None = None
) -> Iterator[Tuple[Dict[str, str], List[int]]]:
    """Group consecutive ``Label: value`` lines into records.

    A record is yielded only when it names a creditor or collection agency.
    A new creditor label starts a new record; ``breaks`` marks labels that
    are really inline prose (for example ``Capital One Card Account``).
    """

    record: Dict[str, str] = {}
    indices: List[int] = []

    def _has_subject(rec: Mapping[str, str]) -> bool:
        return any(k in _CREDITOR_KEYS or k in _COLLECTION_KEYS for k in rec)

    for idx, line in enumerate(lines):
        m = _LABEL_LINE_RE.match(line) if not line.startswith("TABLE ") else None
        if m and breaks is not None and breaks(m.group("label")):
            m = None
        if not m:
            if _has_subject(record):
                yield record, indices
            record, indices = {}, []
            continue
        key = normalize_label(m.group("label"))
        starts_subject = key in _CREDITOR_KEYS or key in _COLLECTION_KEYS
        if starts_subject and _has_subject(record):
            yield record, indices
            record, indices = {}, []
        if starts_subject:
            # Lines before the subject belong to whatever preceded it.
            record, indices = {}, []
        record.setdefault(key, m.group("value").strip())
        indices.append(idx)
    if _has_subject(record):
        yield record, indices


def _safe_collection(**fields: Any) -> Optional[Collection]:
    try:
        return Collection(**fields)
    except ValidationError as exc:
        logger.debug("ENTITY_COLLECTION_SKIPPED errors=%d", exc.error_count())
        return None


def _dedupe_accounts(accounts: Sequence[CreditAccount]) -> List[CreditAccount]:
    seen: Set[Tuple[str, str, Optional[float]]] = set()
    out: List[CreditAccount] = []
    for account in accounts:
        key = (account.creditor_name.lower(), last4(account.account_number), account.current_balance)
        if key in seen:
            continue
        seen.add(key)
        out.append(account)
    return out


def _dedupe_collections(collections: Sequence[Collection]) -> List[Collection]:
    seen: Set[Tuple[str, Optional[float]]] = set()
    out: List[Collection] = []
    for item in collections:
        key = (item.collection_agency.lower(), item.amount)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _dedupe_negatives(items: Sequence[NegativeItem]) -> List[NegativeItem]:
    seen: Set[Tuple[str, str]] = set()
    out: List[NegativeItem] = []
    for item in items:
        key = (item.negative_type, (item.description or "").lower())
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def extract_entities(text: str | None) -> ExtractedEntities:
    """Extract entities from ``text`` with the default rules."""

    return EntityExtractor().extract(text)
