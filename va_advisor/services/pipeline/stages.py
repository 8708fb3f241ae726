"""LLM-backed pipeline stages.

Each stage renders one prompt, makes one JSON-mode call and validates the
response against its result model. Stages never retry: a provider error
becomes an :class:`AnalysisFailure` and a malformed response a
:class:`ParseError`, either of which aborts the run.
"""

import json
import logging
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from va_advisor.models.intake import IntakeForm, WebsiteContent
from va_advisor.models.pipeline import (
    Architecture,
    ClassificationResult,
    DedicatedArchitecture,
    DiscoveryResult,
    JobDescription,
    ProjectsArchitecture,
    ProjectSpecifications,
    ServiceType,
    Specification,
    UnicornArchitecture,
    UnicornSpecification,
    ValidationResult,
)
from va_advisor.services.llm.client import LLMClient
from va_advisor.services.llm.errors import LLMError
from va_advisor.services.pipeline import prompts
from va_advisor.services.pipeline.errors import AnalysisFailure, ParseError

logger = logging.getLogger(__name__)

_architecture_adapter: TypeAdapter = TypeAdapter(Architecture)


def _summarize_validation_error(e: ValidationError) -> str:
    parts = []
    for error in e.errors()[:5]:
        location = ".".join(str(p) for p in error["loc"]) or "<root>"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _dump(model: Any) -> Any:
    if hasattr(model, "model_dump"):
        return model.model_dump(mode="json")
    return model


class BaseStage:
    """One prompt, one call, one validated result."""

    NAME: str = "stage"
    SYSTEM_PROMPT: str = ""
    TEMPERATURE: float = 0.3
    MAX_TOKENS: int = 2500

    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def _complete(self, prompt: str) -> Any:
        try:
            return await self.llm.complete_json(
                self.SYSTEM_PROMPT,
                prompt,
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except LLMError as e:
            logger.error(f"{self.NAME} stage failed: {e}")
            raise AnalysisFailure.from_llm_error(self.NAME, e) from e
        except json.JSONDecodeError as e:
            logger.error(f"{self.NAME} stage returned invalid JSON: {e}")
            raise ParseError(self.NAME, f"Invalid JSON: {e}") from e

    def _validate(self, model: Any, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ParseError(self.NAME, f"Expected a JSON object, got {type(data).__name__}")
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(data)
            return model.model_validate(data)
        except ValidationError as e:
            details = _summarize_validation_error(e)
            logger.error(f"{self.NAME} stage response failed validation: {details}")
            raise ParseError(self.NAME, details) from e


class DiscoveryStage(BaseStage):
    NAME = "discovery"
    SYSTEM_PROMPT = prompts.DISCOVERY_SYSTEM
    TEMPERATURE = 0.3
    MAX_TOKENS = 2500

    async def run(
        self,
        intake: IntakeForm,
        *,
        kb_context: str = "",
        website: Optional[WebsiteContent] = None,
        sop_text: Optional[str] = None,
    ) -> DiscoveryResult:
        prompt = prompts.build_discovery_prompt(
            intake.prompt_payload(),
            kb_context=kb_context,
            website=website,
            sop_text=sop_text,
        )
        data = await self._complete(prompt)
        result = self._validate(DiscoveryResult, data)
        if not sop_text:
            # Without an SOP the model invents SOP insights
            result.sop_insights = None
        return result


class ClassificationStage(BaseStage):
    NAME = "classification"
    SYSTEM_PROMPT = prompts.CLASSIFICATION_SYSTEM
    TEMPERATURE = 0.3
    MAX_TOKENS = 2500

    async def run(
        self,
        intake: IntakeForm,
        discovery: DiscoveryResult,
        *,
        kb_context: str = "",
        hard_rule_verdict: Optional[ServiceType] = None,
    ) -> ClassificationResult:
        prompt = prompts.build_classification_prompt(
            intake.prompt_payload(),
            _dump(discovery),
            kb_context=kb_context,
            hard_rule_verdict=hard_rule_verdict,
        )
        data = await self._complete(prompt)
        result = self._validate(ClassificationResult, data)
        result.hard_rule_verdict = hard_rule_verdict
        if hard_rule_verdict is not None and hard_rule_verdict != result.service_type:
            logger.info(
                f"Classification chose {result.service_type.value} over rule hint "
                f"{hard_rule_verdict.value}"
            )
        return result


class ArchitectureStage(BaseStage):
    NAME = "architecture"
    SYSTEM_PROMPT = prompts.ARCHITECTURE_SYSTEM
    TEMPERATURE = 0.5
    MAX_TOKENS = 3000

    async def run(
        self,
        intake: IntakeForm,
        discovery: DiscoveryResult,
        classification: ClassificationResult,
        *,
        kb_context: str = "",
    ) -> Architecture:
        service_type = classification.service_type
        prompt = prompts.build_architecture_prompt(
            intake.prompt_payload(),
            _dump(discovery),
            _dump(classification.service_type_analysis),
            service_type,
            weekly_hours=intake.weekly_hours,
            kb_context=kb_context,
        )
        data = await self._complete(prompt)
        if isinstance(data, dict):
            # The classified type decides the shape, whatever the model echoed
            data = {**data, "service_type": service_type.value}
            if service_type == ServiceType.DEDICATED_VA:
                data.pop("team_support_areas", None)
        return self._validate(_architecture_adapter, data)


class JobDescriptionStage(BaseStage):
    NAME = "specification"
    SYSTEM_PROMPT = prompts.JD_SYSTEM
    TEMPERATURE = 0.6
    MAX_TOKENS = 3500

    async def run(
        self, role: dict, discovery: DiscoveryResult, intake: IntakeForm
    ) -> JobDescription:
        prompt = prompts.build_jd_prompt(role, _dump(discovery), intake.prompt_payload())
        data = await self._complete(prompt)
        return self._validate(JobDescription, data)


class ProjectSpecsStage(BaseStage):
    NAME = "specification"
    SYSTEM_PROMPT = prompts.PROJECT_SPECS_SYSTEM
    TEMPERATURE = 0.5
    MAX_TOKENS = 3000

    async def run(
        self, projects: list[dict], discovery: DiscoveryResult, intake: IntakeForm
    ) -> ProjectSpecifications:
        prompt = prompts.build_project_specs_prompt(
            projects, _dump(discovery), intake.prompt_payload()
        )
        data = await self._complete(prompt)
        return self._validate(ProjectSpecifications, data)


class SpecificationStage:
    """Picks the specification call(s) for the architecture's service type."""

    NAME = "specification"

    def __init__(self, llm: LLMClient) -> None:
        self.jd = JobDescriptionStage(llm)
        self.projects = ProjectSpecsStage(llm)

    async def run(
        self, architecture: Architecture, discovery: DiscoveryResult, intake: IntakeForm
    ) -> Specification:
        if isinstance(architecture, DedicatedArchitecture):
            return await self.jd.run(_dump(architecture.dedicated_va_role), discovery, intake)

        if isinstance(architecture, ProjectsArchitecture):
            return await self.projects.run(
                [_dump(p) for p in architecture.projects], discovery, intake
            )

        if isinstance(architecture, UnicornArchitecture):
            core_jd = await self.jd.run(_dump(architecture.core_va_role), discovery, intake)
            return UnicornSpecification(
                core_va_jd=core_jd,
                team_support_specs=architecture.team_support_areas,
            )

        raise ParseError(self.NAME, f"Unsupported architecture: {type(architecture).__name__}")


class ValidationStage(BaseStage):
    NAME = "validation"
    SYSTEM_PROMPT = prompts.VALIDATION_SYSTEM
    TEMPERATURE = 0.3
    MAX_TOKENS = 2500

    async def run(
        self,
        service_type: ServiceType,
        architecture: Architecture,
        specification: Specification,
        discovery: DiscoveryResult,
        intake: IntakeForm,
    ) -> ValidationResult:
        prompt = prompts.build_validation_prompt(
            service_type,
            _dump(architecture),
            _dump(specification),
            _dump(discovery),
            intake.prompt_payload(),
        )
        data = await self._complete(prompt)
        return self._validate(ValidationResult, data)
