"""Insights from a saved SOP.

Read straight from the process description the SOP was written from:
tools, the recurring process itself, its failure points, the owning role
and compliance requirements. No LLM call is involved.
"""

import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from va_advisor.models.learning import ExtractedInsight, InsightCategory, LearningEventType
from va_advisor.models.sop import SOPFormData
from va_advisor.services.insights import constants as c

logger = logging.getLogger(__name__)

MIN_DETAIL_LENGTH = 10

_TOOL_SEPARATORS = re.compile(r"[,;\n/]|\band\b|&")


def _insight(
    text: str,
    category: InsightCategory,
    event_type: LearningEventType,
    confidence: int,
    /,
    **metadata: Any,
) -> ExtractedInsight:
    return ExtractedInsight(
        insight=text,
        category=category,
        event_type=event_type,
        confidence=confidence,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def split_tools(text: str) -> list[str]:
    """"HubSpot, Slack and Google Docs" -> ["HubSpot", "Slack", "Google Docs"]."""
    tools: list[str] = []
    for part in _TOOL_SEPARATORS.split(text or ""):
        name = part.strip(" -*\t.")
        if name and name.lower() not in (t.lower() for t in tools):
            tools.append(name)
    return tools


def _detailed(value: Optional[str]) -> bool:
    return bool(value) and len(value) >= MIN_DETAIL_LENGTH


def extract_from_form(form: SOPFormData, title: Optional[str] = None) -> list[ExtractedInsight]:
    title = title or form.sop_title or "Untitled SOP"
    insights: list[ExtractedInsight] = []

    tools = split_tools(form.tools_used)
    if tools:
        insights.append(
            _insight(
                f"Tools used in {title}: {', '.join(tools)}",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                c.SOP_TOOLS_CONFIDENCE,
                source_section="sop.tools_used",
                tools=tools,
            )
        )

    if form.frequency or form.trigger:
        details = ", ".join(
            part
            for part in (form.frequency, f"triggered by {form.trigger}" if form.trigger else "")
            if part
        )
        insights.append(
            _insight(
                f"Recurring process documented: {title} ({details})",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                c.SOP_RECURRING_PROCESS_CONFIDENCE,
                source_section="sop.process",
                cluster_name=title,
                workflow_type=form.department or None,
                frequency=form.frequency or None,
                trigger=form.trigger or None,
            )
        )

    if _detailed(form.common_mistakes):
        insights.append(
            _insight(
                f"Failure points in {title}: {form.common_mistakes}",
                InsightCategory.PROCESS_OPTIMIZATION,
                LearningEventType.OPTIMIZATION_FOUND,
                c.SOP_PAIN_POINT_CONFIDENCE,
                source_section="sop.common_mistakes",
                pain_point=form.common_mistakes,
            )
        )

    if form.primary_role:
        insights.append(
            _insight(
                f"Process owned by role: {form.primary_role} ({title})",
                InsightCategory.HIRING_PATTERNS,
                LearningEventType.INSIGHT_GENERATED,
                c.SOP_ROLE_CONFIDENCE,
                source_section="sop.primary_role",
                evidence=form.supporting_roles or None,
            )
        )

    if _detailed(form.compliance_requirements):
        insights.append(
            _insight(
                f"Compliance requirement in {title}: {form.compliance_requirements}",
                InsightCategory.RISK_MANAGEMENT,
                LearningEventType.INSIGHT_GENERATED,
                c.SOP_COMPLIANCE_CONFIDENCE,
                source_section="sop.compliance_requirements",
                risk=form.compliance_requirements,
                category="compliance",
            )
        )

    return insights


def extract_from_sop(sop: dict) -> list[ExtractedInsight]:
    """Insights from an enrichment payload ``{"title", "form_data"}``."""
    try:
        form = SOPFormData.model_validate(sop.get("form_data") or {})
    except ValidationError as e:
        logger.info(f"Skipping SOP insight extraction: {e.error_count()} validation errors")
        return []
    return extract_from_form(form, sop.get("title"))
