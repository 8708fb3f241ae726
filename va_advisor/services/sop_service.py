"""SOP workflows: generate and save, edit, restore.

Publishing makes the new row the chain's only current version. Edits and
restores never modify an existing version; each one appends the next
``version_number`` to the chain. Saved SOPs feed the knowledge base
through the enrichment worker.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from va_advisor.models.knowledge_base import KnowledgeBase, KnowledgeBaseUsage
from va_advisor.models.learning import SourceType
from va_advisor.models.sop import (
    GenerateSOPRequest,
    GenerateSOPResponse,
    GenerationMetadata,
    RestoreSOPResponse,
    SavedSOP,
    SOPReview,
    SOPVersionHistory,
    SOPVersionSummary,
    UpdateSOPRequest,
    UpdateSOPResponse,
)
from va_advisor.services.analysis_store import (
    AnalysisAccessError,
    AnalysisNotFoundError,
    AnalysisStore,
)
from va_advisor.services.enrichment_worker import EnrichmentRequest, EnrichmentWorker
from va_advisor.services.jd_analysis import knowledge_base_usage
from va_advisor.services.knowledge_base_store import KnowledgeBaseStore
from va_advisor.services.llm import LLMClient
from va_advisor.services.sop_generation import (
    GENERATION_MAX_TOKENS,
    GENERATION_TEMPERATURE,
    GeneratedSOP,
    SOPGenerator,
    SOPReviewer,
    convert_to_html,
)
from va_advisor.services.sop_store import SOPNotFoundError, SOPStore

logger = logging.getLogger(__name__)


class SOPStateError(Exception):
    """The SOP cannot take part in the requested version operation."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SOPService:
    def __init__(
        self,
        llm: Optional[LLMClient],
        store: SOPStore,
        kb_store: KnowledgeBaseStore,
        worker: EnrichmentWorker,
        analysis_store: Optional[AnalysisStore] = None,
    ) -> None:
        self.llm = llm
        self.store = store
        self.kb_store = kb_store
        self.worker = worker
        self.analysis_store = analysis_store

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def _knowledge_base(self, organization_id: str) -> Optional[KnowledgeBase]:
        try:
            return await self.kb_store.get_for_organization(organization_id)
        except Exception as e:
            logger.error(f"KB lookup failed for org {organization_id}, continuing without KB: {e}")
            return None

    async def _job_analysis(
        self, analysis_id: Optional[str], organization_id: str
    ) -> tuple[Optional[dict], Optional[dict]]:
        if not analysis_id or self.analysis_store is None:
            return None, None
        try:
            saved = await self.analysis_store.get_owned(analysis_id, organization_id)
        except (AnalysisNotFoundError, AnalysisAccessError) as e:
            logger.warning(f"Ignoring job analysis {analysis_id} for SOP generation: {e}")
            return None, None
        return saved.analysis, saved.intake_data

    def _publish_insights(
        self,
        kb: Optional[KnowledgeBase],
        sop: SavedSOP,
        form_data: dict[str, Any],
        user_id: Optional[str],
    ) -> None:
        if kb is None:
            return
        self.worker.publish(
            EnrichmentRequest(
                source_type=SourceType.SOP_GENERATION,
                source_id=sop.id,
                knowledge_base_id=kb.id,
                triggered_by=user_id,
                payload={"sop": {"title": sop.title, "form_data": form_data}},
            )
        )

    # ------------------------------------------------------------------
    # Generate
    # ------------------------------------------------------------------

    async def generate(
        self, request: GenerateSOPRequest, organization_id: str, user_id: str
    ) -> GenerateSOPResponse:
        """Generate an SOP and, when asked to, save it as a draft or published version.

        Raises:
            LLMError: The generation call failed.
            SOPGenerationError: No usable SOP or HTML came back.
        """
        form = request.form_data
        kb = await self._knowledge_base(organization_id)

        generated: Optional[GeneratedSOP] = None
        if request.existing_sop_html and request.existing_sop_html.strip():
            html = request.existing_sop_html
        else:
            analysis, intake = await self._job_analysis(request.job_analysis_id, organization_id)
            generated = await SOPGenerator(self.llm).generate(form, kb, analysis, intake)
            html = generated.html

        metadata = GenerationMetadata(
            title=form.sop_title,
            generated_at=datetime.now(timezone.utc),
            knowledge_base_used=kb is not None,
            truncated=generated.truncated if generated else False,
            model=generated.model if generated else None,
        )
        response = GenerateSOPResponse(
            sop_html=html,
            sop_markdown=generated.markdown if generated else None,
            metadata=metadata,
        )
        if not request.should_save:
            return response

        content = {
            "markdown": generated.markdown if generated else None,
            "html": html,
            "version": "1.0",
            "generated_at": metadata.generated_at.isoformat(),
        }
        row_metadata = {
            "model": metadata.model,
            "temperature": GENERATION_TEMPERATURE,
            "max_tokens": GENERATION_MAX_TOKENS,
            "truncated": metadata.truncated,
            "knowledge_base_used": kb is not None,
            "knowledge_base_version": kb.version if kb else None,
            "job_analysis_id": request.job_analysis_id,
            "generated_at": metadata.generated_at.isoformat(),
        }
        usage = knowledge_base_usage(kb, organization_id)
        form_data = form.model_dump()

        if request.save_as_draft:
            sop = await self._save_draft(
                request.sop_id,
                organization_id,
                user_id,
                form.sop_title,
                content,
                form_data,
                row_metadata,
                usage,
            )
        else:
            sop = await self._publish(
                organization_id, user_id, form.sop_title, content, form_data, row_metadata, usage
            )

        if generated is not None:
            self._publish_insights(kb, sop, form_data, user_id)

        metadata.version_number = sop.version_number
        return response.model_copy(
            update={"sop_id": sop.id, "is_draft": sop.is_draft, "metadata": metadata}
        )

    async def _save_draft(
        self,
        sop_id: Optional[str],
        organization_id: str,
        user_id: str,
        title: str,
        content: dict,
        form_data: dict,
        metadata: dict,
        usage: KnowledgeBaseUsage,
    ) -> SavedSOP:
        if sop_id:
            try:
                existing = await self.store.get_owned(sop_id, organization_id)
                if existing.is_draft:
                    changes: dict[str, Any] = {
                        "title": title,
                        "content": content,
                        "intake_data": form_data,
                        "metadata": metadata,
                    }
                    if usage.used:
                        changes["knowledge_base_version"] = usage.version
                        changes["knowledge_base_snapshot"] = usage.snapshot
                    return await self.store.update_draft(sop_id, changes)
            except SOPNotFoundError:
                logger.info(f"Draft {sop_id} no longer exists, saving a new draft")

        return await self.store.create(
            organization_id,
            user_id,
            title,
            content,
            intake_data=form_data,
            metadata=metadata,
            knowledge_base=usage,
            is_draft=True,
        )

    async def _publish(
        self,
        organization_id: str,
        user_id: str,
        title: str,
        content: dict,
        form_data: dict,
        metadata: dict,
        usage: KnowledgeBaseUsage,
    ) -> SavedSOP:
        # Publishing under an existing title continues that chain
        latest = await self.store.latest_published(organization_id, title)
        await self.store.unset_current_by_title(organization_id, title)
        return await self.store.create(
            organization_id,
            user_id,
            title,
            content,
            intake_data=form_data,
            metadata=metadata,
            knowledge_base=usage,
            version_number=latest.version_number + 1 if latest else 1,
            root_sop_id=latest.chain_root_id if latest else None,
            is_current_version=True,
        )

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    async def update(
        self, request: UpdateSOPRequest, organization_id: str, user_id: str
    ) -> UpdateSOPResponse:
        """Save edited markdown as the chain's next, current version.

        Raises:
            SOPNotFoundError, SOPAccessError: Unknown or foreign SOP.
            SOPGenerationError: The markdown could not be converted to HTML.
        """
        existing = await self.store.get_owned(request.sop_id, organization_id)

        review = None
        if request.review_with_ai:
            suggestions = await SOPReviewer(self.llm).extract(request.sop_content)
            review = SOPReview(suggestions=suggestions)

        html = await convert_to_html(request.sop_content, self.llm)

        root_id = existing.chain_root_id
        next_version = await self.store.latest_version_number(root_id) + 1
        now = _now()
        edit_history = list(existing.metadata.get("edit_history") or [])
        edit_history.append(
            {
                "version": next_version,
                "edited_by": user_id,
                "edited_at": now,
                "changes_summary": f"Updated SOP content (version {next_version})",
            }
        )
        generated_at = existing.content.generated_at
        content = {
            "markdown": request.sop_content,
            "html": html,
            "version": str(next_version),
            "generated_at": generated_at.isoformat() if generated_at else now,
            "last_edited_at": now,
        }
        metadata = {
            **existing.metadata,
            "last_edited_by": user_id,
            "last_edited_at": now,
            "edit_history": edit_history,
            "ai_reviewed": request.review_with_ai,
            "ai_review_suggestions_count": len(review.suggestions) if review else 0,
        }

        await self.store.unset_current_in_chain(root_id)
        sop = await self.store.create(
            organization_id,
            user_id,
            existing.title,
            content,
            intake_data=existing.intake_data,
            metadata=metadata,
            knowledge_base=_carried_usage(existing),
            version_number=next_version,
            root_sop_id=root_id,
            is_current_version=True,
        )
        logger.info(f"SOP {root_id} edited into v{next_version} by {user_id}")

        self._publish_insights(
            await self._knowledge_base(organization_id), sop, existing.intake_data, user_id
        )
        return UpdateSOPResponse(sop=sop, sop_html=html, ai_review=review)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def versions(self, sop_id: str, organization_id: str) -> SOPVersionHistory:
        sop = await self.store.get_owned(sop_id, organization_id)
        versions = await self.store.versions(sop.chain_root_id) or [sop]
        current = next((v for v in versions if v.is_current_version), None)
        return SOPVersionHistory(
            root_sop_id=sop.chain_root_id,
            title=(current or versions[0]).title,
            current_version_id=current.id if current else None,
            versions=[SOPVersionSummary.from_sop(v) for v in versions],
        )

    async def restore(
        self, sop_id: str, organization_id: str, user_id: str
    ) -> RestoreSOPResponse:
        """Copy an earlier version into a new current version.

        Raises:
            SOPNotFoundError, SOPAccessError: Unknown or foreign SOP.
            SOPStateError: ``sop_id`` is a draft.
        """
        version = await self.store.get_owned(sop_id, organization_id)
        if version.is_draft:
            raise SOPStateError("Drafts have no version history to restore.")
        if version.is_current_version:
            return RestoreSOPResponse(
                message="This version is already the current version.",
                sop=version,
                already_current=True,
            )

        root_id = version.chain_root_id
        next_version = await self.store.latest_version_number(root_id) + 1
        content = version.content.model_dump(mode="json")
        content["version"] = str(next_version)
        metadata = {
            **version.metadata,
            "restored_from_version": version.version_number,
            "restored_from_id": version.id,
            "restored_at": _now(),
            "restored_by": user_id,
        }

        await self.store.unset_current_in_chain(root_id)
        restored = await self.store.create(
            organization_id,
            user_id,
            version.title,
            content,
            intake_data=version.intake_data,
            metadata=metadata,
            knowledge_base=_carried_usage(version),
            version_number=next_version,
            root_sop_id=root_id,
            is_current_version=True,
        )
        logger.info(f"Restored SOP {root_id} v{version.version_number} as v{next_version}")
        return RestoreSOPResponse(
            message=(
                f"Version {version.version_number} has been restored "
                f"as version {next_version}."
            ),
            sop=restored,
        )


def _carried_usage(sop: SavedSOP) -> KnowledgeBaseUsage:
    """KB provenance of ``sop``, copied onto versions derived from it."""
    return KnowledgeBaseUsage(
        used=sop.knowledge_base_version is not None,
        version=sop.knowledge_base_version,
        snapshot=sop.knowledge_base_snapshot,
        organization_id=sop.organization_id,
    )
