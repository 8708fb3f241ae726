"""Knowledge-base context block prepended to stage prompts."""

from typing import Optional

from va_advisor.models.knowledge_base import KnowledgeBase


def format_knowledge_base_context(kb: Optional[KnowledgeBase]) -> str:
    """Render the populated KB fields; empty string without a KB."""
    if kb is None:
        return ""

    lines = [
        "ORGANIZATION KNOWLEDGE BASE CONTEXT:",
        "Use this existing knowledge about the organization to personalize the analysis:",
    ]
    if kb.business_name:
        lines.append(f"- Business Name: {kb.business_name}")
    if kb.industry:
        other = f" ({kb.industry_other})" if kb.industry_other else ""
        lines.append(f"- Industry: {kb.industry}{other}")
    if kb.what_you_sell:
        lines.append(f"- What They Sell: {kb.what_you_sell}")
    if kb.ideal_customer:
        lines.append(f"- Ideal Customer: {kb.ideal_customer}")
    if kb.tool_stack:
        lines.append(f"- Existing Tools: {', '.join(kb.tool_stack)}")
    if kb.primary_crm:
        lines.append(f"- Primary CRM: {kb.primary_crm}")
    if kb.default_weekly_hours:
        lines.append(f"- Default Weekly Hours: {kb.default_weekly_hours}")
    if kb.default_management_style:
        lines.append(f"- Default Management Style: {kb.default_management_style}")
    if kb.brand_voice_style:
        lines.append(f"- Brand Voice Style: {kb.brand_voice_style}")
    if kb.biggest_bottleneck:
        lines.append(f"- Known Bottleneck: {kb.biggest_bottleneck}")

    lines.append(
        "\nWhen analyzing, consider how this role fits with their existing tools, "
        "processes, and business context."
    )
    lines.append(
        "If intake data conflicts with knowledge base, note the discrepancy but "
        "prioritize intake data for this specific role."
    )
    return "\n".join(lines)
