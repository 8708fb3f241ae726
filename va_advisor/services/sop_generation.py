"""SOP generation, HTML conversion and AI review.

The generator writes a five-tier markdown SOP from a process description,
optionally tailored by a saved job analysis and the organization's
knowledge base. Markdown is converted to HTML with Python-Markdown; when
that output does not look like HTML the LLM converts it instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import markdown

from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.sop import SOPFormData, SOPReviewSuggestion
from va_advisor.services.llm import LLMClient, LLMError
from va_advisor.services.llm.base_extractor import BaseLLMExtractor
from va_advisor.services.pdf_report import role_title

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.7
GENERATION_MAX_TOKENS = 8000
HTML_CONVERSION_MAX_TOKENS = 16000

TRUNCATION_NOTE = (
    "\n\n[Note: This SOP may have been truncated. "
    "Consider refining specific sections if needed.]"
)

SYSTEM_PROMPT = """You write Standard Operating Procedures that a virtual assistant can follow
without asking questions. Every SOP uses the same five tiers, in this order:

1. Control block: title, owner role, version, last reviewed date, process frequency
   and estimated time to complete.
2. Purpose and boundaries: what success looks like, what is explicitly out of scope,
   and the prerequisites (access, tools, documents) needed before starting.
3. Procedure: the triggers that start the process, then numbered steps. Each step
   lists its inputs, the actions to take, the expected output, a quality gate the
   performer checks before moving on, and when to escalate and to whom.
4. Measurement and recovery: KPIs with targets, plus a failure playbook covering the
   common mistakes and how to recover from each.
5. Maintenance: when and how the SOP is reviewed, and which steps are candidates for
   automation with the tools already in use.

Write in plain, direct language. Use the organization's tools and terminology where
given. Use markdown headings, numbered lists, bullet lists and tables. Return the
markdown document only, without code fences or commentary."""

HTML_CONVERSION_PROMPT = """Convert the markdown document you are given into clean,
semantic HTML. Keep every piece of content exactly as written. Use h1-h6, p, ul, ol,
li, table, thead, tbody, tr, th, td, strong, em, code, pre, blockquote and a tags.
Return only the HTML fragment: no doctype, html, head or body tags, and no code
fences or explanations."""

REVIEW_PROMPT = """You are an editor reviewing a Standard Operating Procedure after a
human edited it. Suggest only changes that genuinely improve it, looking at:
- grammar: spelling, typos and grammatical errors
- clarity: instructions that are ambiguous or hard to follow
- consistency: terminology, formatting and style
- completeness: unfinished thoughts or missing information
- tone: language that is not professional

Respond with JSON: {"suggestions": [{"type": "grammar|clarity|consistency|completeness|tone",
"original": "exact text to change", "suggested": "improved text",
"reason": "why the change helps"}]}. Return {"suggestions": []} when nothing needs changing."""

_OPTIONAL_SECTIONS = (
    ("decision_points", "Decision Points & Variations"),
    ("common_mistakes", "Common Mistakes & Failure Points"),
    ("required_resources", "Required Resources & Documents"),
    ("supporting_roles", "Supporting Roles & Stakeholders"),
    ("quality_standards", "Quality Standards"),
    ("compliance_requirements", "Compliance & Safety Requirements"),
    ("related_processes", "Related Processes"),
    ("tips_best_practices", "Tips & Best Practices"),
    ("additional_context", "Additional Context"),
)

_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


class SOPGenerationError(Exception):
    pass


@dataclass
class GeneratedSOP:
    markdown: str
    html: str
    truncated: bool
    model: str


# ------------------------------------------------------------------
# Prompt
# ------------------------------------------------------------------


def _bullets(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return [f"- {item}" for item in items if item]


def _job_analysis_section(analysis: dict, intake_data: dict) -> list[str]:
    preview = analysis.get("preview") or {}
    structure = (analysis.get("full_package") or {}).get("service_structure") or {}
    role = structure.get("dedicated_va_role") or {}
    title = role_title(analysis)
    service_type = (
        preview.get("service_type") or structure.get("service_type") or "Virtual Assistant"
    )

    lines = [
        "",
        "## Linked Job Description Analysis",
        "This SOP is for the role defined in the following job analysis.",
        "",
        f"**Role Title**: {title}",
        f"**Service Type**: {service_type}",
    ]
    brand = (intake_data.get("brand") or {}).get("name")
    if brand:
        lines.append(f"**Business Name**: {brand}")
    if preview.get("primary_outcome"):
        lines.append(f"**Primary Outcome**: {preview['primary_outcome']}")

    tasks = (role.get("task_allocation") or {}).get("from_intake") or role.get("recurring_tasks")
    if tasks:
        lines.extend(["", "**Key Tasks & Responsibilities**:", *_bullets(tasks)])

    skills = role.get("skill_requirements") or {}
    if skills.get("required"):
        lines.append(f"**Required Skills**: {', '.join(skills['required'])}")
    if skills.get("nice_to_have"):
        lines.append(f"**Nice-to-Have Skills**: {', '.join(skills['nice_to_have'])}")

    hours = preview.get("hours_per_week") or role.get("hours_per_week") or intake_data.get(
        "weekly_hours"
    )
    if hours:
        lines.append(f"**Hours per Week**: {hours}")
    tools = intake_data.get("tools")
    if isinstance(tools, list):
        tools = ", ".join(str(t) for t in tools if t)
    if tools:
        lines.append(f"**Tools/Software**: {tools}")

    interaction = role.get("interaction_model") or {}
    if interaction.get("reports_to"):
        lines.append(f"**Reports To**: {interaction['reports_to']}")
    if role.get("core_responsibility"):
        lines.append(f"**Core Responsibility**: {role['core_responsibility']}")

    lines.append(
        f"\nTailor the SOP to the {title} role using the tasks and requirements above."
    )
    return lines


def _organization_section(kb: KnowledgeBase) -> list[str]:
    lines = ["", "## Organization Context"]
    if kb.business_name:
        lines.append(f"**Business Name**: {kb.business_name}")
    if kb.website:
        lines.append(f"**Website**: {kb.website}")
    if kb.industry:
        other = ""
        if kb.industry_other and kb.industry.lower() == "other":
            other = f" - {kb.industry_other}"
        lines.append(f"**Industry**: {kb.industry}{other}")
    if kb.tool_stack:
        lines.append(f"**Organization's Primary Tools**: {', '.join(kb.tool_stack)}")
    if kb.primary_crm:
        lines.append(f"**Primary CRM/Platform**: {kb.primary_crm}")
    if kb.default_management_style:
        lines.append(f"**Management Style**: {kb.default_management_style}")
    if kb.default_time_zone:
        lines.append(f"**Default Timezone**: {kb.default_time_zone}")
    if kb.is_regulated:
        industry = f" ({kb.regulated_industry})" if kb.regulated_industry else ""
        lines.append(f"**Regulated Industry**: Yes{industry}")
    if kb.brand_voice_style:
        lines.append(f"**Brand Voice**: {kb.brand_voice_style}")
    if kb.forbidden_words:
        lines.append(f"**Words to Avoid**: {kb.forbidden_words}")
    if kb.disclaimers:
        lines.append(f"**Required Disclaimers**: {kb.disclaimers}")
    lines.append(
        "\nUse the organization's tools, terminology and compliance needs throughout the SOP."
    )
    return lines


def build_user_prompt(
    form: SOPFormData,
    knowledge_base: Optional[KnowledgeBase] = None,
    job_analysis: Optional[dict] = None,
    job_intake: Optional[dict] = None,
) -> str:
    """User message for the generator.

    Args:
        form: The process description.
        knowledge_base: Organization context, when the org has one.
        job_analysis: A saved analysis body (``preview``/``full_package``)
            the SOP is written for.
        job_intake: The intake form behind ``job_analysis``.
    """
    lines = [
        "# SOP Generation Request",
        "",
        "## Process Information",
        f"**SOP Title**: {form.sop_title}",
        f"**Process Overview**: {form.process_overview}",
        f"**Primary Role/Performer**: {form.primary_role}",
        "**Main Steps** (outline from the requester):",
        form.main_steps,
        f"**Tools/Software Used**: {form.tools_used}",
        f"**Frequency**: {form.frequency}",
        f"**Process Trigger**: {form.trigger}",
        f"**Success Criteria**: {form.success_criteria}",
    ]
    if form.department:
        lines.append(f"**Department/Team**: {form.department}")
    if form.estimated_time:
        lines.append(f"**Estimated Time to Complete**: {form.estimated_time}")

    for name, heading in _OPTIONAL_SECTIONS:
        value = getattr(form, name)
        if value:
            lines.extend(["", f"## {heading}", value])

    if job_analysis:
        lines.extend(_job_analysis_section(job_analysis, job_intake or {}))
    if knowledge_base is not None:
        lines.extend(_organization_section(knowledge_base))

    return "\n".join(lines)


# ------------------------------------------------------------------
# Markdown -> HTML
# ------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Drop a fence wrapping the whole response (```markdown ... ```)."""
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def markdown_to_html(text: str) -> str:
    return markdown.markdown(text, extensions=["tables", "sane_lists", "fenced_code"])


def looks_like_html(html: str) -> bool:
    """Reject conversions that are empty, tagless or still markdown."""
    trimmed = html.strip()
    if not trimmed or "<" not in trimmed:
        return False
    if "```" in trimmed and "<code>" not in trimmed:
        return False
    # Whole document swallowed by a single code block
    if trimmed.startswith("<pre>") and not any(t in trimmed for t in ("<h", "<p>", "<ul>")):
        return False
    return True


async def convert_to_html(text: str, llm: LLMClient) -> str:
    """Markdown to HTML, falling back to the LLM when the library output is unusable.

    Raises:
        SOPGenerationError: Neither conversion produced HTML.
    """
    html = markdown_to_html(text)
    if looks_like_html(html):
        return html

    logger.warning("Markdown conversion produced no usable HTML, converting with the LLM")
    try:
        html = await llm.complete_text(
            HTML_CONVERSION_PROMPT,
            text,
            temperature=0,
            max_tokens=HTML_CONVERSION_MAX_TOKENS,
            model=llm.extraction_model,
        )
    except LLMError as e:
        raise SOPGenerationError(f"Failed to convert markdown to HTML: {e}") from e

    html = strip_code_fences(html)
    if not looks_like_html(html):
        raise SOPGenerationError("HTML conversion failed: output is not valid HTML")
    return html


# ------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------


class SOPGenerator:
    """Writes an SOP in markdown and renders it to HTML."""

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def generate(
        self,
        form: SOPFormData,
        knowledge_base: Optional[KnowledgeBase] = None,
        job_analysis: Optional[dict] = None,
        job_intake: Optional[dict] = None,
    ) -> GeneratedSOP:
        """
        Raises:
            LLMError: The provider call failed.
            SOPGenerationError: Empty response or no usable HTML.
        """
        prompt = build_user_prompt(form, knowledge_base, job_analysis, job_intake)
        completion = await self.llm.complete(
            SYSTEM_PROMPT,
            prompt,
            temperature=GENERATION_TEMPERATURE,
            max_tokens=GENERATION_MAX_TOKENS,
            json_mode=False,
        )
        text = strip_code_fences(completion.text or "")
        if not text:
            raise SOPGenerationError("The model returned an empty SOP")
        if completion.truncated:
            logger.warning(f"SOP '{form.sop_title}' hit the token limit")
            text += TRUNCATION_NOTE

        html = await convert_to_html(text, self.llm)
        logger.info(f"Generated SOP '{form.sop_title}' ({len(text)} chars markdown)")
        return GeneratedSOP(
            markdown=text, html=html, truncated=completion.truncated, model=completion.model
        )


class SOPReviewer(BaseLLMExtractor):
    """Suggests edits to a human-edited SOP; returns no suggestions on failure."""

    SYSTEM_PROMPT = REVIEW_PROMPT
    TEMPERATURE = 0.3

    def _prepare_content(self, source: str, **kwargs: Any) -> str:
        return f"Review this edited SOP and suggest improvements:\n\n{source}"

    def _parse_result(self, data: Any, source: str, **kwargs: Any) -> list[SOPReviewSuggestion]:
        suggestions = data.get("suggestions") if isinstance(data, dict) else data
        if not isinstance(suggestions, list):
            return []
        return [
            SOPReviewSuggestion.model_validate(item)
            for item in suggestions
            if isinstance(item, dict) and item.get("suggested")
        ]

    def _empty_result(self) -> list[SOPReviewSuggestion]:
        return []

    def _should_skip(self, source: str, **kwargs: Any) -> bool:
        return not source or not source.strip()
