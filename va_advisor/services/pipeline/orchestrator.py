"""Six-stage analysis pipeline.

Discovery → Classification → Architecture → Specification → Validation
→ Assembly, strictly in order. :meth:`AnalysisPipeline.stream` yields a
:class:`StageProgress` before each stage and the :class:`PipelineResult`
last; any stage failure raises :class:`AnalysisFailure` and no later
stage runs.
"""

import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Optional, Union

from va_advisor.models.intake import IntakeForm, WebsiteContent
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.pipeline import PipelineResult
from va_advisor.services.llm.client import LLMClient
from va_advisor.services.pipeline import assembly, hard_rules
from va_advisor.services.pipeline.errors import AnalysisFailure, ParseError
from va_advisor.services.pipeline.kb_context import format_knowledge_base_context
from va_advisor.services.pipeline.stages import (
    ArchitectureStage,
    ClassificationStage,
    DiscoveryStage,
    SpecificationStage,
    ValidationStage,
)

logger = logging.getLogger(__name__)


@dataclass
class StageProgress:
    stage: str
    message: str

    def to_event(self) -> dict:
        return {"type": "progress", "message": self.message}


PipelineEvent = Union[StageProgress, PipelineResult]


class AnalysisPipeline:
    """Runs one intake form through every stage."""

    def __init__(self, llm: LLMClient, *, agency_name: str) -> None:
        self.agency_name = agency_name
        self.discovery = DiscoveryStage(llm)
        self.classification = ClassificationStage(llm)
        self.architecture = ArchitectureStage(llm)
        self.specification = SpecificationStage(llm)
        self.validation = ValidationStage(llm)

    async def stream(
        self,
        intake: IntakeForm,
        *,
        knowledge_base: Optional[KnowledgeBase] = None,
        website: Optional[WebsiteContent] = None,
        sop_text: Optional[str] = None,
    ) -> AsyncGenerator[PipelineEvent, None]:
        """Yield progress before each stage, then the assembled result.

        Raises:
            AnalysisFailure: When a stage call fails or returns a response
                that cannot be parsed into its result model.
        """
        try:
            async for event in self._stages(intake, knowledge_base, website, sop_text):
                yield event
        except ParseError as e:
            raise AnalysisFailure.from_parse_error(e) from e

    async def run(
        self,
        intake: IntakeForm,
        *,
        knowledge_base: Optional[KnowledgeBase] = None,
        website: Optional[WebsiteContent] = None,
        sop_text: Optional[str] = None,
    ) -> PipelineResult:
        result = None
        async for event in self.stream(
            intake, knowledge_base=knowledge_base, website=website, sop_text=sop_text
        ):
            if isinstance(event, PipelineResult):
                result = event
        return result

    async def _stages(
        self,
        intake: IntakeForm,
        knowledge_base: Optional[KnowledgeBase],
        website: Optional[WebsiteContent],
        sop_text: Optional[str],
    ) -> AsyncGenerator[PipelineEvent, None]:
        kb_context = format_knowledge_base_context(knowledge_base)

        yield StageProgress("discovery", "Stage 1: Running deep discovery...")
        discovery = await self.discovery.run(
            intake, kb_context=kb_context, website=website, sop_text=sop_text
        )

        yield StageProgress("classification", "Stage 1.5: Classifying service type...")
        verdict = hard_rules.evaluate(intake, discovery)
        classification = await self.classification.run(
            intake, discovery, kb_context=kb_context, hard_rule_verdict=verdict
        )
        service_type = classification.service_type
        logger.info(
            f"Classified {intake.brand.name!r} as {service_type.value} "
            f"(rule hint: {verdict.value if verdict else 'none'})"
        )

        yield StageProgress(
            "architecture",
            f"Stage 2: Designing role architecture for {service_type.value}...",
        )
        architecture = await self.architecture.run(
            intake, discovery, classification, kb_context=kb_context
        )

        yield StageProgress("specification", "Stage 3: Generating detailed specifications...")
        specification = await self.specification.run(architecture, discovery, intake)

        yield StageProgress("validation", "Stage 4: Validating and analyzing risks...")
        validation = await self.validation.run(
            service_type, architecture, specification, discovery, intake
        )

        yield StageProgress("assembly", "Stage 5: Assembling client package...")
        package = assembly.assemble_package(
            discovery,
            classification,
            architecture,
            specification,
            validation,
            intake,
            agency_name=self.agency_name,
        )
        preview = assembly.build_preview(
            package, discovery, classification, architecture, validation, intake
        )
        metadata = assembly.build_metadata(
            discovery, classification, validation, sop_processed=bool(sop_text)
        )

        yield PipelineResult(
            discovery=discovery,
            classification=classification,
            architecture=architecture,
            specification=specification,
            validation=validation,
            package=package,
            preview=preview,
            metadata=metadata,
        )
