from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from credit_extraction.core.models import (
    ConsolidationMetadata,
    Document,
    EntityKind,
    ExtractionResult,
)


class ReportRecord(BaseModel):
    """Everything persisted for one document, stored as a single unit."""

    document: Document
    results: List[ExtractionResult] = Field(default_factory=list)
    consolidation: Optional[ConsolidationMetadata] = None
    entities: Dict[EntityKind, List[Dict[str, Any]]] = Field(default_factory=dict)
    entity_run_id: Optional[str] = None
