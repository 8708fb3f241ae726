"""Saved analyses, refinement and download request/response models."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Saved analyses
# =============================================================================


class SavedAnalysis(BaseModel):
    """A persisted analysis; refinements form a chain under the root row."""

    id: str
    organization_id: str
    created_by: Optional[str] = None
    title: str
    intake_data: dict[str, Any] = Field(default_factory=dict)
    analysis: dict[str, Any] = Field(default_factory=dict)
    is_finalized: bool = False
    finalized_at: Optional[datetime] = None
    parent_analysis_id: Optional[str] = None
    version_number: int = 1
    knowledge_base_id: Optional[str] = None
    knowledge_base_version: Optional[int] = None
    knowledge_base_snapshot: Optional[dict[str, Any]] = None
    refinement_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _embedded_refinement_count(cls, data: Any) -> Any:
        # PostgREST returns embedded counts as [{"count": n}]
        if isinstance(data, dict) and "refinement_messages" in data:
            embedded = data.get("refinement_messages") or []
            count = embedded[0].get("count", 0) if embedded else 0
            data = {**data, "refinement_count": count}
        return data

    @property
    def chain_root_id(self) -> str:
        return self.parent_analysis_id or self.id


class SaveAnalysisRequest(BaseModel):
    """Request body for saving an analysis result."""

    title: str = Field(..., min_length=1)
    intake_data: dict[str, Any]
    analysis: dict[str, Any]

    @field_validator("analysis")
    @classmethod
    def _has_package(cls, v: dict) -> dict:
        if not v.get("preview") and not v.get("full_package"):
            raise ValueError("analysis must contain preview or full_package")
        return v


class SavedAnalysisList(BaseModel):
    analyses: list[SavedAnalysis]
    total: int
    page: int
    limit: int
    total_pages: int


# =============================================================================
# Refinement
# =============================================================================


class RefineRequest(BaseModel):
    """Request body for PATCH /api/jd/analyze."""

    analysis_id: str = ""
    feedback: str = ""
    refinement_areas: list[str] = Field(default_factory=list)


class ClarificationQuestion(BaseModel):
    question: str = ""
    why: str = ""


class FeedbackValidation(BaseModel):
    """Verdict of the feedback-quality check run before refining."""

    is_valid: bool = True
    quality_score: Optional[float] = None
    feedback_type: str = "substantive"
    concerns: list[str] = Field(default_factory=list)
    actionable_points: list[str] = Field(default_factory=list)
    clarification_needed: list[ClarificationQuestion] = Field(default_factory=list)
    recommendation: Literal["proceed", "request_clarification", "reject"] = "proceed"

    @field_validator("recommendation", mode="before")
    @classmethod
    def _normalize_recommendation(cls, v: Any) -> str:
        text = str(v or "proceed").strip().lower()
        return text if text in ("proceed", "request_clarification", "reject") else "proceed"

    @field_validator("concerns", "actionable_points", mode="before")
    @classmethod
    def _string_list(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item]

    @field_validator("clarification_needed", mode="before")
    @classmethod
    def _questions(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [item if isinstance(item, dict) else {"question": str(item)} for item in v]


class RefinementMessage(BaseModel):
    id: Optional[str] = None
    analysis_id: str
    role: Literal["user", "assistant"]
    content: str
    changed_sections: list[str] = Field(default_factory=list)
    sequence_number: int
    created_at: Optional[datetime] = None


class ChangeMade(BaseModel):
    section: str
    change_description: str


class RefineResponse(BaseModel):
    status: Literal["success"] = "success"
    refined_package: dict[str, Any]
    iteration: int
    changes_made: list[ChangeMade]
    message: str
    new_analysis_id: str


class ClarificationResponse(BaseModel):
    status: Literal["clarification_needed"] = "clarification_needed"
    message: str = "Your feedback needs more detail. Please clarify:"
    questions: list[ClarificationQuestion] = Field(default_factory=list)
    quality_score: Optional[float] = None


# =============================================================================
# Download
# =============================================================================


class DownloadRequest(BaseModel):
    """Request body for rendering an analysis to PDF."""

    title: str = "Job Description Analysis"
    analysis: dict[str, Any]
    intake_data: dict[str, Any] = Field(default_factory=dict)
