"""Conversational refinement of a saved analysis.

A refinement runs in two LLM calls. The first grades the client's
feedback and may reject it or ask for clarification. The second
rewrites the whole package with the prior refinement messages as history.
The result is stored as the next version in the analysis chain.
"""

import json
import logging
from typing import Any, Optional, Union

from pydantic import ValidationError

from va_advisor.models.analysis import (
    ChangeMade,
    ClarificationResponse,
    FeedbackValidation,
    RefineResponse,
    RefinementMessage,
    SavedAnalysis,
)
from va_advisor.services.analysis_store import AnalysisStore
from va_advisor.services.llm import LLMClient, extract_json_from_response
from va_advisor.services.pipeline import clean_team_support_areas

logger = logging.getLogger(__name__)

FEEDBACK_TEMPERATURE = 0.2
FEEDBACK_MAX_TOKENS = 1000
REFINE_TEMPERATURE = 0.7
REFINE_MAX_TOKENS = 16000

TRUNCATED_MESSAGE = (
    "The analysis is too large to refine in one pass. "
    "Please try refining smaller sections at a time."
)

AREA_LABELS = {
    "service_type": "Service Type",
    "role_title": "Role Title",
    "responsibilities": "Responsibilities",
    "kpis": "KPIs",
    "hours": "Weekly Hours",
    "tools": "Tools Required",
    "timeline": "Timeline & Onboarding",
    "team_support": "Team Support Areas",
    "outcomes": "90-Day Outcomes",
}


class FeedbackRejectedError(Exception):
    """The feedback was graded as spam or irrelevant."""

    def __init__(self, validation: FeedbackValidation) -> None:
        self.validation = validation
        super().__init__(f"Feedback rejected ({validation.feedback_type})")

    @property
    def message(self) -> str:
        if self.validation.feedback_type == "spam":
            return "Please provide meaningful feedback about the analysis."
        return (
            "The feedback provided doesn't appear to be relevant to this analysis. "
            "Please provide specific concerns or changes you'd like to see."
        )

    def to_dict(self) -> dict:
        return {
            "error": "Invalid feedback",
            "feedback_type": self.validation.feedback_type,
            "concerns": self.validation.concerns,
            "message": self.message,
        }


class RefinementError(Exception):
    """The refinement call failed or returned an unusable package."""


class MissingPackageError(Exception):
    """The saved analysis holds no full package to refine."""


# ------------------------------------------------------------------
# Prompts
# ------------------------------------------------------------------

FEEDBACK_SYSTEM = "You are a feedback quality validator."


def _dig(data: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
    return data


def build_feedback_prompt(feedback: str, refinement_areas: list[str], package: dict) -> str:
    service_type = (
        _dig(package, "executive_summary", "service_recommendation", "type")
        or _dig(package, "service_structure", "service_type")
        or "Unknown"
    )
    role = (
        _dig(package, "detailed_specifications", "core_va_jd", "title")
        or _dig(package, "detailed_specifications", "title")
        or _dig(package, "service_structure", "core_va_role", "title")
        or _dig(package, "detailed_specifications", "projects", 0, "project_name")
        or "Unknown"
    )
    return f"""You are a feedback quality validator. Assess if the provided feedback is actionable and relevant.

ORIGINAL PACKAGE CONTEXT:
Service Type: {service_type}
Role: {role}

CLIENT FEEDBACK:
"{feedback}"

REFINEMENT AREAS REQUESTED:
{json.dumps(refinement_areas, indent=2)}

Assess the feedback quality and respond with JSON:

{{
  "is_valid": true or false,
  "quality_score": 1-10,
  "feedback_type": "substantive | vague | irrelevant | spam",
  "concerns": [
    "Specific issues with the feedback if any"
  ],
  "actionable_points": [
    "Extract specific, actionable points from the feedback"
  ],
  "clarification_needed": [
    {{
      "question": "What to ask client for clarity",
      "why": "Why this matters for refinement"
    }}
  ],
  "recommendation": "proceed | request_clarification | reject"
}}

VALIDATION RULES:
- "test", gibberish, or single-word inputs = INVALID (spam)
- Vague statements without context = request_clarification
- Specific concerns or requested changes = VALID (proceed)
- Feedback unrelated to the package = INVALID (irrelevant)"""


def build_refinement_system_prompt(
    analysis: dict, intake_data: dict, *, agency_name: str
) -> str:
    return f"""You are an expert job description refinement assistant for {agency_name}. You help refine job descriptions based on conversational feedback.

# Current Analysis State
{json.dumps(analysis, indent=2)}

# Original Intake Data (for reference)
{json.dumps(intake_data, indent=2)}

# Your Role
- Listen to the user's refinement requests in natural conversation
- Make ONLY the changes they request
- Maintain all other content exactly as is
- Ensure changes are consistent across related sections
- Return the COMPLETE updated analysis as valid JSON

# Rules for Changes
1. **Removal requests**: If user says "remove X" or "don't need X", remove ALL references from:
   - responsibilities
   - skills
   - tools
   - sample_week
   - kpis (if relevant)

2. **Optional/Nice-to-have**: If user says "make X optional" or "nice to have", update language:
   - Example: "Proficient in X (nice to have)"
   - Example: "Bonus: Experience with X"

3. **Emphasis changes**: If user says "focus more on Y", increase prominence of Y in:
   - core_outcomes
   - responsibilities
   - skills
   - sample_week

4. **Additions**: If user says "add Z", integrate it naturally into relevant sections

5. **Hour/service changes**: If user changes hours or service type, update:
   - roles[].hours_per_week
   - split_table[].hrs
   - service_recommendation if needed

6. **Maintain consistency**: Changes should cascade logically
   - If responsibilities change, skills might need adjustment
   - If tools are removed, remove them from sample_week too
   - Keep personality traits aligned with the actual role duties

# Response Format
Return ONLY valid JSON in the SAME structure as the current analysis:
{{
  "preview": {{...}},
  "full_package": {{
    "service_structure": {{...}},
    "executive_summary": {{...}},
    "detailed_specifications": {{...}},
    "role_architecture": {{...}},
    "implementation_plan": {{...}},
    "risk_management": {{...}},
    "questions_for_you": [...],
    "validation_report": {{...}},
    "appendix": {{...}}
  }},
  "metadata": {{...}}
}}

Maintain the exact same structure, only modifying the fields that need to be changed based on the user's feedback.

CRITICAL: Return the COMPLETE analysis JSON. Do not truncate any sections."""


def build_refinement_message(
    refinement_areas: list[str], feedback: str, validation: FeedbackValidation
) -> str:
    areas = ", ".join(AREA_LABELS.get(area, area) for area in refinement_areas)
    points = "\n".join(validation.actionable_points) if validation.actionable_points else feedback
    return f"Please refine the following areas: {areas}.\n\nFeedback: {points}"


# ------------------------------------------------------------------
# Change detection
# ------------------------------------------------------------------


def identify_changes(old: Any, new: Any) -> list[str]:
    """Dotted paths under ``new`` whose values differ from ``old``.

    Lists compare as a whole. Keys only present in ``old`` are ignored.
    """
    changes: list[str] = []

    def compare(a: Any, b: Any, path: str) -> None:
        if a is b or (a == b and type(a) is type(b)):
            return
        if a is None or b is None:
            if path:
                changes.append(path)
            return
        if isinstance(b, list):
            if not isinstance(a, list) or json.dumps(a, sort_keys=True) != json.dumps(
                b, sort_keys=True
            ):
                changes.append(path)
            return
        if isinstance(b, dict):
            for key, value in b.items():
                child = f"{path}.{key}" if path else key
                compare(a.get(key) if isinstance(a, dict) else None, value, child)
            return
        if path:
            changes.append(path)

    compare(old, new, "")
    return deduplicate_paths(changes)


def deduplicate_paths(paths: list[str]) -> list[str]:
    """Drop paths whose parent path is already listed."""
    kept: list[str] = []
    for path in sorted(paths, key=len):
        if not any(path.startswith(f"{parent}.") for parent in kept):
            kept.append(path)
    return kept


def summarize_changes(paths: list[str]) -> list[ChangeMade]:
    return [
        ChangeMade(
            section=path.split(".")[0].replace("_", " "),
            change_description=f"Updated {path}",
        )
        for path in paths
    ]


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


class RefinementService:
    """Validate feedback, refine the package and store the new version."""

    def __init__(self, llm: LLMClient, store: AnalysisStore, *, agency_name: str) -> None:
        self.llm = llm
        self.store = store
        self.agency_name = agency_name

    async def validate_feedback(
        self, feedback: str, refinement_areas: list[str], package: dict
    ) -> FeedbackValidation:
        data = await self.llm.complete_json(
            FEEDBACK_SYSTEM,
            build_feedback_prompt(feedback, refinement_areas, package),
            temperature=FEEDBACK_TEMPERATURE,
            max_tokens=FEEDBACK_MAX_TOKENS,
        )
        if not isinstance(data, dict):
            data = {}
        try:
            return FeedbackValidation.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Unreadable feedback validation, proceeding: {e.error_count()} errors")
            return FeedbackValidation()

    async def refine(
        self,
        analysis: SavedAnalysis,
        feedback: str,
        refinement_areas: list[str],
        *,
        user_id: Optional[str] = None,
    ) -> Union[RefineResponse, ClarificationResponse]:
        """Refine ``analysis`` and store the result as the next chain version.

        Raises:
            MissingPackageError: The analysis has no ``full_package``.
            FeedbackRejectedError: The feedback was graded as reject.
            RefinementError: The refinement call returned nothing usable.
            LLMError: On provider failures.
        """
        package = analysis.analysis.get("full_package")
        if not package:
            raise MissingPackageError("Original package not found in analysis")

        validation = await self.validate_feedback(feedback, refinement_areas, package)
        if validation.recommendation == "reject":
            raise FeedbackRejectedError(validation)
        if validation.recommendation == "request_clarification":
            return ClarificationResponse(
                questions=validation.clarification_needed,
                quality_score=validation.quality_score,
            )
        logger.info(
            f"Feedback accepted for {analysis.id}: score={validation.quality_score}, "
            f"type={validation.feedback_type}"
        )

        root_id = analysis.chain_root_id
        prior = await self.store.list_refinements(root_id)
        message = build_refinement_message(refinement_areas, feedback, validation)

        completion = await self.llm.complete(
            build_refinement_system_prompt(
                analysis.analysis, analysis.intake_data, agency_name=self.agency_name
            ),
            message,
            temperature=REFINE_TEMPERATURE,
            max_tokens=REFINE_MAX_TOKENS,
            history=[{"role": m.role, "content": m.content} for m in prior],
        )
        if completion.truncated:
            logger.error(f"Refinement of {analysis.id} hit the token limit")
            raise RefinementError(TRUNCATED_MESSAGE)

        refined = self._parse_package(completion.text)
        refined = clean_team_support_areas(refined)
        changed = identify_changes(analysis.analysis, refined)

        version = await self.store.latest_version_number(root_id) + 1
        sequence = len(prior) + 1
        await self.store.add_refinements(
            [
                RefinementMessage(
                    analysis_id=root_id,
                    role="user",
                    content=message,
                    sequence_number=sequence,
                ),
                RefinementMessage(
                    analysis_id=root_id,
                    role="assistant",
                    content=completion.text,
                    changed_sections=changed,
                    sequence_number=sequence + 1,
                ),
            ]
        )
        saved = await self.store.create(
            analysis.organization_id,
            user_id,
            analysis.title,
            analysis.intake_data,
            refined,
            parent_analysis_id=root_id,
            version_number=version,
            knowledge_base_id=analysis.knowledge_base_id,
        )
        logger.info(f"Refined {analysis.id} into {saved.id} (v{version}, {len(changed)} changes)")

        return RefineResponse(
            refined_package=refined,
            iteration=version,
            changes_made=summarize_changes(changed),
            message=f"Analysis refined successfully! (Version {version})",
            new_analysis_id=saved.id,
        )

    @staticmethod
    def _parse_package(text: str) -> dict:
        try:
            refined = extract_json_from_response(text)
        except json.JSONDecodeError as e:
            raise RefinementError(f"Failed to parse refinement response: {e}") from e
        if not isinstance(refined, dict) or not (
            refined.get("preview") or refined.get("full_package")
        ):
            raise RefinementError(
                "Refinement response doesn't contain the expected analysis structure."
            )
        return refined
