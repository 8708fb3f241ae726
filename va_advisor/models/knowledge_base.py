"""Organization knowledge base models."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Fields the merger may write as whole values (as opposed to the
# extracted_knowledge bag and the tool stack, which are merged)
SCALAR_FIELDS = (
    "business_name",
    "website",
    "industry",
    "industry_other",
    "what_you_sell",
    "monthly_revenue",
    "team_size",
    "primary_goal",
    "biggest_bottleneck",
    "ideal_customer",
    "top_objection",
    "core_offer",
    "customer_journey",
    "primary_crm",
    "default_time_zone",
    "booking_link",
    "support_email",
    "brand_voice_style",
    "risk_boldness",
    "voice_example_good",
    "voice_examples_avoid",
    "content_links",
    "regulated_industry",
    "forbidden_words",
    "disclaimers",
    "default_management_style",
    "default_english_level",
    "pipeline_stages",
    "email_sign_off",
)


class KnowledgeBase(BaseModel):
    """
    Per-organization business profile enriched by learning events.

    ``version`` and ``enrichment_version`` only ever increase; every
    merger write is guarded by a compare-and-swap on ``version``.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    organization_id: str

    # Core identity
    business_name: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    industry_other: Optional[str] = None
    what_you_sell: Optional[str] = None

    # Business context
    monthly_revenue: Optional[str] = None
    team_size: Optional[str] = None
    primary_goal: Optional[str] = None
    biggest_bottleneck: Optional[str] = None

    # Customer and market
    ideal_customer: Optional[str] = None
    top_objection: Optional[str] = None
    core_offer: Optional[str] = None
    customer_journey: Optional[str] = None

    # Operations and tools
    tool_stack: list[str] = Field(default_factory=list)
    primary_crm: Optional[str] = None
    default_time_zone: Optional[str] = None
    booking_link: Optional[str] = None
    support_email: Optional[str] = None

    # Brand and voice
    brand_voice_style: Optional[str] = None
    risk_boldness: Optional[str] = None
    voice_example_good: Optional[str] = None
    voice_examples_avoid: Optional[str] = None
    content_links: Optional[str] = None

    # Compliance
    is_regulated: Optional[bool] = None
    regulated_industry: Optional[str] = None
    forbidden_words: Optional[str] = None
    disclaimers: Optional[str] = None

    # HR defaults
    default_weekly_hours: Optional[str] = None
    default_management_style: Optional[str] = None
    default_english_level: Optional[str] = None

    # Additional context
    pipeline_stages: Optional[str] = None
    email_sign_off: Optional[str] = None

    # Semi-structured bag: pain points, company stages, field history, ...
    extracted_knowledge: dict[str, Any] = Field(default_factory=dict)

    # Versioning
    version: int = 1
    enrichment_version: int = 0
    last_enriched_at: Optional[datetime] = None
    last_edited_by: Optional[str] = None
    last_edited_at: Optional[datetime] = None

    @field_validator("tool_stack", mode="before")
    @classmethod
    def _tool_stack(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item]

    @field_validator("extracted_knowledge", mode="before")
    @classmethod
    def _extracted_knowledge(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}

    def field_value(self, field: str) -> Any:
        return getattr(self, field, None)

    def snapshot(self) -> dict:
        """All non-JSON fields, recorded alongside an analysis as an audit trail."""
        data = self.model_dump(
            mode="json",
            exclude={"id", "organization_id", "extracted_knowledge"},
        )
        data["snapshot_at"] = datetime.now(timezone.utc).isoformat()
        return data


class KnowledgeBaseUsage(BaseModel):
    """Which KB version informed an analysis run."""

    used: bool = False
    version: Optional[int] = None
    snapshot: Optional[dict[str, Any]] = None
    organization_id: Optional[str] = None
