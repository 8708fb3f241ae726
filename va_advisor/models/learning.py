"""Insight and learning-event models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class LearningEventType(str, Enum):
    PATTERN_DETECTED = "PATTERN_DETECTED"
    OPTIMIZATION_FOUND = "OPTIMIZATION_FOUND"
    INSIGHT_GENERATED = "INSIGHT_GENERATED"
    INCONSISTENCY_FIXED = "INCONSISTENCY_FIXED"
    KNOWLEDGE_EXPANDED = "KNOWLEDGE_EXPANDED"


class SourceType(str, Enum):
    """What produced the insights behind a learning event."""

    JOB_DESCRIPTION = "JOB_DESCRIPTION"
    SOP_GENERATION = "SOP_GENERATION"
    CHAT_CONVERSATION = "CHAT_CONVERSATION"
    INITIAL_ONBOARDING = "INITIAL_ONBOARDING"
    MANUAL_UPDATE = "MANUAL_UPDATE"
    FILE_UPLOAD = "FILE_UPLOAD"
    AI_ENRICHMENT = "AI_ENRICHMENT"


class InsightCategory(str, Enum):
    """Closed set of insight categories."""

    BUSINESS_CONTEXT = "business_context"
    WORKFLOW_PATTERNS = "workflow_patterns"
    PROCESS_OPTIMIZATION = "process_optimization"
    SERVICE_PATTERNS = "service_patterns"
    RISK_MANAGEMENT = "risk_management"
    SERVICE_PREFERENCES = "service_preferences"
    SKILL_REQUIREMENTS = "skill_requirements"
    HIRING_PATTERNS = "hiring_patterns"
    WORKFLOW_NEEDS = "workflow_needs"


class ExtractedInsight(BaseModel):
    """A fact worth remembering, not yet persisted."""

    insight: str = Field(..., min_length=1)
    category: InsightCategory
    event_type: LearningEventType
    confidence: int = Field(..., ge=0, le=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LearningEvent(BaseModel):
    """Persisted insight; the mutation log of the KB's semi-structured fields."""

    id: str
    knowledge_base_id: str
    event_type: LearningEventType
    insight: str
    category: str
    confidence: int
    source_type: Optional[SourceType] = None
    source_ids: list[str] = Field(default_factory=list)
    triggered_by: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    applied: bool = False
    applied_at: Optional[datetime] = None
    applied_to_fields: list[str] = Field(default_factory=list)
    created_at: datetime
    restored_at: Optional[datetime] = None


class CreateEventsResult(BaseModel):
    success: bool
    events_created: int = 0
    event_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ApplyEventsResult(BaseModel):
    success: bool
    events_applied: int = 0
    events_skipped: int = 0
    fields_updated: list[str] = Field(default_factory=list)
    enrichment_version: int = 0
    knowledge_base_version: Optional[int] = None
    errors: list[str] = Field(default_factory=list)


class RestoreEventResult(BaseModel):
    event_id: str
    field: Optional[str] = None
    restored_value: Any = None
    knowledge_base_version: int
