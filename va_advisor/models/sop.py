"""SOP generation, versioning and download request/response models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Generation
# =============================================================================

REQUIRED_FIELDS = {
    "sop_title": "SOP Title",
    "process_overview": "Process Overview",
    "primary_role": "Primary Role",
    "main_steps": "Main Steps",
    "tools_used": "Tools Used",
    "frequency": "Frequency",
    "trigger": "Process Trigger",
    "success_criteria": "Success Criteria",
}


class SOPFormData(BaseModel):
    """Process description the SOP is written from.

    Every field is optional at parse time so a missing one can be reported
    by name; see :meth:`missing_field`.
    """

    sop_title: str = ""
    process_overview: str = ""
    primary_role: str = ""
    main_steps: str = ""
    tools_used: str = ""
    frequency: str = ""
    trigger: str = ""
    success_criteria: str = ""

    department: Optional[str] = None
    estimated_time: Optional[str] = None
    decision_points: Optional[str] = None
    common_mistakes: Optional[str] = None
    required_resources: Optional[str] = None
    supporting_roles: Optional[str] = None
    quality_standards: Optional[str] = None
    compliance_requirements: Optional[str] = None
    related_processes: Optional[str] = None
    tips_best_practices: Optional[str] = None
    additional_context: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, v: Any) -> Any:
        if isinstance(v, list):
            v = ", ".join(str(item) for item in v if item)
        return v.strip() if isinstance(v, str) else v

    def missing_field(self, title_only: bool = False) -> Optional[str]:
        """Label of the first blank required field, or ``None``."""
        fields = ["sop_title"] if title_only else list(REQUIRED_FIELDS)
        for name in fields:
            if not getattr(self, name):
                return REQUIRED_FIELDS[name]
        return None


class GenerateSOPRequest(BaseModel):
    """Request body for POST /api/sop/generate.

    ``existing_sop_html`` skips generation and only saves the given HTML.
    ``save_as_draft`` wins over ``save_and_publish`` when both are set.
    """

    form_data: SOPFormData
    job_analysis_id: Optional[str] = None
    existing_sop_html: Optional[str] = None
    save_as_draft: bool = False
    save_and_publish: bool = False
    sop_id: Optional[str] = None

    @property
    def should_save(self) -> bool:
        return self.save_as_draft or self.save_and_publish


class GenerationMetadata(BaseModel):
    title: str
    generated_at: datetime
    version_number: Optional[int] = None
    knowledge_base_used: bool = False
    truncated: bool = False
    model: Optional[str] = None


class GenerateSOPResponse(BaseModel):
    success: bool = True
    sop_html: str
    sop_markdown: Optional[str] = None
    sop_id: Optional[str] = None
    is_draft: bool = True
    metadata: GenerationMetadata


# =============================================================================
# Saved SOPs
# =============================================================================


class SOPContent(BaseModel):
    markdown: Optional[str] = None
    html: str = ""
    version: str = "1.0"
    generated_at: Optional[datetime] = None
    last_edited_at: Optional[datetime] = None


class SavedSOP(BaseModel):
    """A persisted SOP; every version of a chain points at the root row."""

    id: str
    organization_id: str
    created_by: Optional[str] = None
    title: str
    content: SOPContent = Field(default_factory=SOPContent)
    intake_data: dict[str, Any] = Field(default_factory=dict)
    knowledge_base_version: Optional[int] = None
    knowledge_base_snapshot: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    version_number: int = 1
    root_sop_id: Optional[str] = None
    is_current_version: bool = False
    is_draft: bool = False
    version_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @field_validator("metadata", "intake_data", mode="before")
    @classmethod
    def _object(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}

    @property
    def chain_root_id(self) -> str:
        return self.root_sop_id or self.id


class SavedSOPList(BaseModel):
    sops: list[SavedSOP]
    total: int
    page: int
    limit: int
    total_pages: int


class SOPGroup(BaseModel):
    """All versions of one SOP chain, newest first."""

    root_sop_id: str
    title: str
    current_version: SavedSOP
    versions: list[SavedSOP]
    version_count: int
    most_recent_version_date: Optional[datetime] = None
    oldest_version_date: Optional[datetime] = None


class SOPGroupList(BaseModel):
    groups: list[SOPGroup]
    total: int
    page: int
    limit: int
    total_pages: int


# =============================================================================
# Editing and versions
# =============================================================================


class UpdateSOPRequest(BaseModel):
    """Request body for POST /api/sop/update: edited markdown becomes a new version."""

    sop_id: str = Field(..., min_length=1)
    sop_content: str = Field(..., min_length=1)
    review_with_ai: bool = False


class SOPReviewSuggestion(BaseModel):
    type: str = "clarity"
    original: str = ""
    suggested: str = ""
    reason: str = ""


class SOPReview(BaseModel):
    suggestions: list[SOPReviewSuggestion] = Field(default_factory=list)
    reviewed: bool = True


class UpdateSOPResponse(BaseModel):
    success: bool = True
    sop: SavedSOP
    sop_html: str
    ai_review: Optional[SOPReview] = None


class SOPVersionSummary(BaseModel):
    id: str
    version_number: int
    is_current_version: bool
    is_draft: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_sop(cls, sop: SavedSOP) -> "SOPVersionSummary":
        return cls(
            id=sop.id,
            version_number=sop.version_number,
            is_current_version=sop.is_current_version,
            is_draft=sop.is_draft,
            created_by=sop.created_by,
            created_at=sop.version_created_at or sop.created_at,
            metadata=sop.metadata,
        )


class SOPVersionHistory(BaseModel):
    root_sop_id: str
    title: str
    current_version_id: Optional[str] = None
    versions: list[SOPVersionSummary]


class RestoreSOPResponse(BaseModel):
    success: bool = True
    message: str
    sop: SavedSOP
    already_current: bool = False


class SOPDownloadRequest(BaseModel):
    """Request body for POST /api/sop/download; content may be HTML or markdown."""

    sop_content: str = ""
    title: str = "Standard Operating Procedure"
