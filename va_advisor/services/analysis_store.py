"""Saved-analysis persistence (Supabase).

Refinements never overwrite a saved analysis: each one is a new row whose
``parent_analysis_id`` points at the chain root, with the next
``version_number``. Refinement messages hang off the chain root so the
conversation carries across versions.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import AsyncClient

from va_advisor.models.analysis import RefinementMessage, SavedAnalysis, SavedAnalysisList
from va_advisor.models.knowledge_base import KnowledgeBaseUsage

logger = logging.getLogger(__name__)

SAVED_ANALYSES_TABLE = "saved_analyses"
REFINEMENT_MESSAGES_TABLE = "refinement_messages"

_LIST_COLUMNS = "*, refinement_messages(count)"


class AnalysisNotFoundError(Exception):
    pass


class AnalysisAccessError(Exception):
    """The analysis belongs to another organization."""


class AnalysisStore:
    """CRUD for ``saved_analyses`` and ``refinement_messages``."""

    def __init__(self, supabase: AsyncClient) -> None:
        self.supabase = supabase

    # ------------------------------------------------------------------
    # Saved analyses
    # ------------------------------------------------------------------

    async def create(
        self,
        organization_id: str,
        user_id: Optional[str],
        title: str,
        intake_data: dict[str, Any],
        analysis: dict[str, Any],
        *,
        parent_analysis_id: Optional[str] = None,
        version_number: int = 1,
        knowledge_base_id: Optional[str] = None,
        knowledge_base: Optional[KnowledgeBaseUsage] = None,
    ) -> SavedAnalysis:
        row: dict[str, Any] = {
            "organization_id": organization_id,
            "created_by": user_id,
            "title": title,
            "intake_data": intake_data,
            "analysis": analysis,
            "parent_analysis_id": parent_analysis_id,
            "version_number": version_number,
            "knowledge_base_id": knowledge_base_id,
        }
        if knowledge_base is not None and knowledge_base.used:
            row["knowledge_base_version"] = knowledge_base.version
            row["knowledge_base_snapshot"] = knowledge_base.snapshot

        result = await self.supabase.table(SAVED_ANALYSES_TABLE).insert(row).execute()
        saved = SavedAnalysis.model_validate(result.data[0])
        logger.info(
            f"Saved analysis {saved.id} (v{saved.version_number}) for org {organization_id}"
        )
        return saved

    async def get(self, analysis_id: str) -> SavedAnalysis:
        result = await (
            self.supabase.table(SAVED_ANALYSES_TABLE)
            .select(_LIST_COLUMNS)
            .eq("id", analysis_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        return SavedAnalysis.model_validate(result.data[0])

    async def get_owned(self, analysis_id: str, organization_id: str) -> SavedAnalysis:
        """Fetch an analysis and check it belongs to ``organization_id``.

        Raises:
            AnalysisNotFoundError: No such analysis.
            AnalysisAccessError: It belongs to another organization.
        """
        analysis = await self.get(analysis_id)
        if analysis.organization_id != organization_id:
            raise AnalysisAccessError(
                f"Analysis {analysis_id} does not belong to org {organization_id}"
            )
        return analysis

    async def list_latest(
        self,
        organization_id: str,
        *,
        page: int = 1,
        limit: int = 50,
        finalized: Optional[bool] = None,
    ) -> SavedAnalysisList:
        """Newest version of each chain, newest chain first, paginated."""
        query = (
            self.supabase.table(SAVED_ANALYSES_TABLE)
            .select(_LIST_COLUMNS)
            .eq("organization_id", organization_id)
        )
        if finalized is not None:
            query = query.eq("is_finalized", finalized)
        result = await query.order("created_at", desc=True).execute()

        latest: dict[str, SavedAnalysis] = {}
        for row in result.data or []:
            analysis = SavedAnalysis.model_validate(row)
            current = latest.get(analysis.chain_root_id)
            if current is None or analysis.version_number > current.version_number:
                latest[analysis.chain_root_id] = analysis

        min_date = datetime.min.replace(tzinfo=timezone.utc)
        analyses = sorted(
            latest.values(), key=lambda a: a.created_at or min_date, reverse=True
        )
        total = len(analyses)
        start = (page - 1) * limit
        return SavedAnalysisList(
            analyses=analyses[start : start + limit],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    async def delete(self, analysis_id: str) -> None:
        await self.supabase.table(SAVED_ANALYSES_TABLE).delete().eq("id", analysis_id).execute()
        logger.info(f"Deleted analysis {analysis_id}")

    async def finalize(self, analysis_id: str) -> SavedAnalysis:
        result = await (
            self.supabase.table(SAVED_ANALYSES_TABLE)
            .update(
                {
                    "is_finalized": True,
                    "finalized_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", analysis_id)
            .execute()
        )
        if not result.data:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        return SavedAnalysis.model_validate(result.data[0])

    async def latest_version_number(self, root_id: str) -> int:
        """Highest version in the chain rooted at ``root_id``."""
        result = await (
            self.supabase.table(SAVED_ANALYSES_TABLE)
            .select("version_number")
            .or_(f"id.eq.{root_id},parent_analysis_id.eq.{root_id}")
            .order("version_number", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return 1
        return int(result.data[0].get("version_number") or 1)

    # ------------------------------------------------------------------
    # Refinement messages
    # ------------------------------------------------------------------

    async def list_refinements(self, analysis_id: str) -> list[RefinementMessage]:
        result = await (
            self.supabase.table(REFINEMENT_MESSAGES_TABLE)
            .select("*")
            .eq("analysis_id", analysis_id)
            .order("sequence_number")
            .execute()
        )
        return [RefinementMessage.model_validate(row) for row in result.data or []]

    async def add_refinements(self, messages: list[RefinementMessage]) -> None:
        if not messages:
            return
        rows = [m.model_dump(mode="json", exclude={"id", "created_at"}) for m in messages]
        await self.supabase.table(REFINEMENT_MESSAGES_TABLE).insert(rows).execute()
