"""Client intake form and website-context models."""

import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TASKS = 5


def normalize_tasks(value: Any) -> list[str]:
    """Trim tasks, drop empties, keep at most five."""
    if isinstance(value, list):
        tasks = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return tasks[:MAX_TASKS]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def normalize_string_list(value: Any) -> list[str]:
    """Accept a list or a comma-separated string."""
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if isinstance(value, str) and value.strip():
        return [item.strip() for item in value.split(",") if item.strip()]
    return []


class Brand(BaseModel):
    """Client brand block of the intake form."""

    model_config = ConfigDict(extra="allow")

    name: str = ""


class WebsiteContent(BaseModel):
    """Structured summary of the client's website."""

    hero: Optional[str] = None
    about: Optional[str] = None
    services: list[str] = Field(default_factory=list)
    company_info: dict[str, Any] = Field(default_factory=dict)
    team: list[str] = Field(default_factory=list)
    values: list[str] = Field(default_factory=list)
    contact: dict[str, Any] = Field(default_factory=dict)
    testimonials: list[str] = Field(default_factory=list)
    full_text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class IntakeForm(BaseModel):
    """
    Client-submitted questionnaire driving one analysis.

    Normalization happens on validation so downstream stages can rely on
    list-typed ``tasks_top5``/``tools``/``requirements``, a numeric
    ``weekly_hours`` and a boolean ``client_facing``. Unknown keys are
    preserved and forwarded to the prompts.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    brand: Brand = Field(default_factory=Brand)
    website: Optional[str] = None
    business_goal: Optional[str] = None
    outcome_90d: Optional[str] = None
    tasks_top5: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    weekly_hours: float = 0
    timezone: Optional[str] = None
    client_facing: bool = False
    tools: list[str] = Field(default_factory=list)
    english_level: Optional[str] = None
    management_style: Optional[str] = None
    reporting_expectations: Optional[str] = None
    security_needs: Optional[str] = None
    deal_breakers: Optional[str] = None
    nice_to_have_skills: Optional[str] = None
    existing_sops: bool = False

    @field_validator("tasks_top5", mode="before")
    @classmethod
    def _normalize_tasks(cls, v: Any) -> list[str]:
        return normalize_tasks(v)

    @field_validator("tools", "requirements", mode="before")
    @classmethod
    def _normalize_lists(cls, v: Any) -> list[str]:
        return normalize_string_list(v)

    @field_validator("weekly_hours", mode="before")
    @classmethod
    def _coerce_hours(cls, v: Any) -> float:
        try:
            hours = float(v)
        except (TypeError, ValueError):
            return 0
        return 0 if math.isnan(hours) else hours

    @field_validator("client_facing", "existing_sops", mode="before")
    @classmethod
    def _coerce_bool(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("yes", "true", "1", "y")
        return bool(v)

    @field_validator("brand", mode="before")
    @classmethod
    def _coerce_brand(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"name": v}
        return v or {}

    @property
    def is_valid(self) -> bool:
        """A brand name and at least one task are required."""
        return bool(self.brand.name.strip()) and len(self.tasks_top5) > 0

    def prompt_payload(self) -> dict:
        """Intake as sent to the LLM (website content is passed separately)."""
        return self.model_dump(mode="json", exclude_none=True)
