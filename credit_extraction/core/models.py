from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, ConfigDict, confloat, conint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class ConsolidationStrategy(str, Enum):
    highest_confidence = "highest_confidence"
    majority_vote = "majority_vote"
    manual_review = "manual_review"


class EntityKind(str, Enum):
    personal_information = "personal_information"
    credit_accounts = "credit_accounts"
    credit_inquiries = "credit_inquiries"
    negative_items = "negative_items"
    collections = "collections"


class Document(BaseModel):
    id: str
    file_path: str
    owner_id: Optional[str] = None
    bureau: Optional[str] = None
    raw_text: Optional[str] = None
    extraction_status: ExtractionStatus = ExtractionStatus.pending
    processing_errors: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExtractionResult(BaseModel):
    """One backend attempt against one document. Never mutated once stored."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    document_id: str
    extraction_method: str
    extracted_text: str = ""
    confidence_score: confloat(ge=0.0, le=1.0) = 0.0
    character_count: conint(ge=0) = 0
    word_count: conint(ge=0) = 0
    has_structured_data: bool = False
    processing_time_ms: conint(ge=0) = 0
    extraction_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def error_message(self) -> Optional[str]:
        value = self.extraction_metadata.get("error_message")
        return str(value) if value else None

    @property
    def succeeded(self) -> bool:
        return self.error_message is None and bool(self.extracted_text)


class PersonalInformation(BaseModel):
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    ssn_partial: Optional[str] = None
    current_address: Optional[str] = None
    phone_number: Optional[str] = None


class CreditAccount(BaseModel):
    creditor_name: str
    account_number: Optional[str] = None
    account_type: Optional[str] = None
    current_balance: Optional[float] = None
    credit_limit: Optional[float] = None
    high_credit: Optional[float] = None
    past_due_amount: Optional[float] = None
    account_status: Optional[str] = None
    payment_status: Optional[str] = None
    date_opened: Optional[str] = None
    date_closed: Optional[str] = None
    is_negative: bool = False


class CreditInquiry(BaseModel):
    inquirer_name: str
    inquiry_date: Optional[str] = None
    inquiry_type: str = "hard"


class NegativeItem(BaseModel):
    negative_type: str
    description: Optional[str] = None
    amount: Optional[float] = None
    date_occurred: Optional[str] = None
    severity_score: conint(ge=1, le=10) = 5
    impact: Optional[str] = None
    dispute_eligible: bool = True


class Collection(BaseModel):
    collection_agency: str
    original_creditor: Optional[str] = None
    account_number: Optional[str] = None
    amount: Optional[float] = None
    date_assigned: Optional[str] = None
    status: Optional[str] = None


class ExtractedEntities(BaseModel):
    """Structured entities derived from one extraction pass."""

    personal_info: Optional[PersonalInformation] = None
    accounts: List[CreditAccount] = Field(default_factory=list)
    inquiries: List[CreditInquiry] = Field(default_factory=list)
    negative_items: List[NegativeItem] = Field(default_factory=list)
    collections: List[Collection] = Field(default_factory=list)

    def by_kind(self) -> Dict[EntityKind, List[Dict[str, Any]]]:
        """Return store-ready rows keyed by entity kind."""

        personal = [self.personal_info.model_dump()] if self.personal_info else []
        return {
            EntityKind.personal_information: personal,
            EntityKind.credit_accounts: [a.model_dump() for a in self.accounts],
            EntityKind.credit_inquiries: [i.model_dump() for i in self.inquiries],
            EntityKind.negative_items: [n.model_dump() for n in self.negative_items],
            EntityKind.collections: [c.model_dump() for c in self.collections],
        }

    @classmethod
    def from_kinds(cls, rows: Dict[EntityKind, List[Dict[str, Any]]]) -> "ExtractedEntities":
        personal = rows.get(EntityKind.personal_information) or []
        return cls(
            personal_info=PersonalInformation(**personal[0]) if personal else None,
            accounts=[CreditAccount(**r) for r in rows.get(EntityKind.credit_accounts, [])],
            inquiries=[CreditInquiry(**r) for r in rows.get(EntityKind.credit_inquiries, [])],
            negative_items=[NegativeItem(**r) for r in rows.get(EntityKind.negative_items, [])],
            collections=[Collection(**r) for r in rows.get(EntityKind.collections, [])],
        )

    def is_empty(self) -> bool:
        return not (
            self.personal_info
            or self.accounts
            or self.inquiries
            or self.negative_items
            or self.collections
        )


class FieldDifference(BaseModel):
    field: str
    values: Dict[str, Any]
    confidences: Dict[str, float]


class ComparisonReport(BaseModel):
    similarities: List[str] = Field(default_factory=list)
    differences: List[FieldDifference] = Field(default_factory=list)

    @property
    def conflict_count(self) -> int:
        return len(self.differences)


class ConsolidationMetadata(BaseModel):
    document_id: str
    primary_source: str
    confidence_level: confloat(ge=0.0, le=1.0)
    consolidation_strategy: ConsolidationStrategy
    conflict_count: conint(ge=0) = 0
    requires_human_review: bool = False
    field_sources: Dict[str, str] = Field(default_factory=dict)
    consolidation_notes: Optional[str] = None
    processed_at: datetime


class ConsolidationOutcome(BaseModel):
    metadata: ConsolidationMetadata
    entities: ExtractedEntities
    comparison: ComparisonReport


__all__ = [
    "Collection",
    "ComparisonReport",
    "ConsolidationMetadata",
    "ConsolidationOutcome",
    "ConsolidationStrategy",
    "CreditAccount",
    "CreditInquiry",
    "Document",
    "EntityKind",
    "ExtractedEntities",
    "ExtractionResult",
    "ExtractionStatus",
    "FieldDifference",
    "NegativeItem",
    "PersonalInformation",
    "utcnow",
]
