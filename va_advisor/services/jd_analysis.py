"""JD analysis request handling.

Wraps :class:`AnalysisPipeline` with everything around it: the
organization's knowledge base, website summarization, SOP extraction,
and the newline-delimited JSON stream the client reads.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from va_advisor.models.intake import IntakeForm, WebsiteContent
from va_advisor.models.knowledge_base import KnowledgeBase, KnowledgeBaseUsage
from va_advisor.models.pipeline import PipelineResult
from va_advisor.services.document_text_extractor import (
    DocumentExtractionError,
    DocumentTextExtractor,
)
from va_advisor.services.insights import extract_from_pipeline_result
from va_advisor.services.knowledge_base_store import KnowledgeBaseStore
from va_advisor.services.llm import LLMClient, LLMError
from va_advisor.services.pipeline import (
    AnalysisFailure,
    AnalysisPipeline,
    StageProgress,
    clean_team_support_areas,
)
from va_advisor.services.website_summarizer import summarize_website

logger = logging.getLogger(__name__)

SOP_ERROR = "Failed to parse the SOP file."


@dataclass
class SOPUpload:
    content: bytes
    filename: str
    content_type: Optional[str] = None


def _ndjson(event: dict) -> str:
    """Format a single stream line."""
    return json.dumps(event) + "\n"


def _progress(message: str) -> str:
    return _ndjson({"type": "progress", "message": message})


def _error(error: str, details: str, user_message: Optional[str] = None) -> str:
    event = {"type": "error", "error": error, "details": details}
    if user_message:
        event["userMessage"] = user_message
    return _ndjson(event)


def knowledge_base_usage(
    kb: Optional[KnowledgeBase], organization_id: Optional[str]
) -> KnowledgeBaseUsage:
    if kb is None:
        return KnowledgeBaseUsage(organization_id=organization_id)
    return KnowledgeBaseUsage(
        used=True,
        version=kb.version,
        snapshot=kb.snapshot(),
        organization_id=organization_id or kb.organization_id,
    )


def build_result_payload(result: PipelineResult, usage: KnowledgeBaseUsage) -> dict:
    """The ``data`` of the terminal ``result`` line."""
    payload = clean_team_support_areas(result.to_response())
    payload["knowledgeBase"] = {
        "used": usage.used,
        "version": usage.version,
        "snapshot": usage.snapshot,
        "organizationId": usage.organization_id,
    }
    insights = extract_from_pipeline_result(result)
    if insights:
        payload["extractedInsights"] = [i.model_dump(mode="json") for i in insights]
    return payload


class JDAnalysisService:
    """Streams one analysis run as NDJSON lines."""

    def __init__(
        self,
        llm: LLMClient,
        kb_store: Optional[KnowledgeBaseStore],
        *,
        agency_name: str,
        extractor: Optional[DocumentTextExtractor] = None,
    ) -> None:
        self.llm = llm
        self.kb_store = kb_store
        self.pipeline = AnalysisPipeline(llm, agency_name=agency_name)
        self.extractor = extractor or DocumentTextExtractor()

    async def load_knowledge_base(self, organization_id: Optional[str]) -> Optional[KnowledgeBase]:
        """The organization's KB, or ``None``; lookup failures never fail the run."""
        if not organization_id or self.kb_store is None:
            return None
        try:
            kb = await self.kb_store.get_for_organization(organization_id)
        except Exception as e:
            logger.error(f"Knowledge base lookup failed for org {organization_id}: {e}")
            return None
        if kb is not None:
            logger.info(f"Using KB {kb.id} v{kb.version} for org {organization_id}")
        return kb

    async def stream(
        self,
        intake: IntakeForm,
        *,
        organization_id: Optional[str] = None,
        sop: Optional[SOPUpload] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield progress lines, then exactly one ``result`` or ``error`` line."""
        kb = await self.load_knowledge_base(organization_id)
        usage = knowledge_base_usage(kb, organization_id)

        website: Optional[WebsiteContent] = None
        if intake.website:
            yield _progress("Extracting company information from website...")
            website = await summarize_website(intake.website, self.llm)

        sop_text: Optional[str] = None
        if sop is not None:
            yield _progress("Processing SOP file...")
            try:
                extracted = await asyncio.to_thread(
                    self.extractor.extract_text, sop.content, sop.filename, sop.content_type
                )
            except DocumentExtractionError as e:
                logger.warning(f"SOP extraction failed for {sop.filename} ({e.reason.value}): {e}")
                yield _error(SOP_ERROR, str(e))
                return
            sop_text = extracted.text

        try:
            async for event in self.pipeline.stream(
                intake, knowledge_base=kb, website=website, sop_text=sop_text
            ):
                if isinstance(event, StageProgress):
                    yield _ndjson(event.to_event())
                else:
                    yield _ndjson({"type": "result", "data": build_result_payload(event, usage)})
        except AnalysisFailure as e:
            logger.error(f"Analysis failed at {e.stage}: {e.error} ({e.details})")
            yield _error(e.error, e.details, e.user_message)
        except LLMError as e:
            logger.error(f"Analysis failed: {e.error} ({e.details})")
            yield _error(e.error, e.details, e.user_message)
        except Exception as e:
            logger.exception(f"Unexpected analysis failure for {intake.brand.name!r}")
            unknown = LLMError.from_exception(e)
            yield _error(unknown.error, unknown.details, unknown.user_message)
