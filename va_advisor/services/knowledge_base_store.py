"""Knowledge-base persistence (Supabase).

All writes that change ``version`` go through the
``apply_knowledge_base_patch`` database function, which applies the patch
and updates the referenced learning events in one transaction, guarded by
``version = expected_version``.
"""

import logging
from typing import Any, Optional

from supabase import AsyncClient

from va_advisor.models.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

KNOWLEDGE_BASES_TABLE = "knowledge_bases"
APPLY_PATCH_FUNCTION = "apply_knowledge_base_patch"


class KnowledgeBaseConflictError(Exception):
    """Raised when a compare-and-swap loses against a concurrent writer."""

    def __init__(self, knowledge_base_id: str, expected_version: int):
        super().__init__(
            f"Knowledge base {knowledge_base_id} changed since version {expected_version}"
        )
        self.knowledge_base_id = knowledge_base_id
        self.expected_version = expected_version


class KnowledgeBaseNotFoundError(Exception):
    pass


class KnowledgeBaseStore:
    """Reads and version-guarded writes of ``knowledge_bases`` rows."""

    def __init__(self, supabase: AsyncClient) -> None:
        self.supabase = supabase

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, knowledge_base_id: str) -> KnowledgeBase:
        result = await (
            self.supabase.table(KNOWLEDGE_BASES_TABLE)
            .select("*")
            .eq("id", knowledge_base_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise KnowledgeBaseNotFoundError(f"Knowledge base {knowledge_base_id} not found")
        return KnowledgeBase.model_validate(result.data[0])

    async def get_for_organization(self, organization_id: str) -> Optional[KnowledgeBase]:
        result = await (
            self.supabase.table(KNOWLEDGE_BASES_TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return KnowledgeBase.model_validate(result.data[0])

    # ------------------------------------------------------------------
    # Version-guarded writes
    # ------------------------------------------------------------------

    async def compare_and_swap(
        self,
        knowledge_base_id: str,
        expected_version: int,
        patch: dict[str, Any],
        *,
        applied_fields: Optional[dict[str, list[str]]] = None,
        restored_event_ids: Optional[list[str]] = None,
        bump_enrichment: bool = True,
    ) -> KnowledgeBase:
        """Apply ``patch`` if the row is still at ``expected_version``.

        Args:
            knowledge_base_id: Target row.
            expected_version: Version the patch was computed against.
            patch: Column values to write.
            applied_fields: Learning events to mark applied, mapped to the
                dotted field paths each one touched.
            restored_event_ids: Learning events to mark restored (and
                un-applied).
            bump_enrichment: Also increment ``enrichment_version`` and
                stamp ``last_enriched_at``.

        Returns:
            The updated knowledge base.

        Raises:
            KnowledgeBaseConflictError: Another writer got there first.
        """
        result = await self.supabase.rpc(
            APPLY_PATCH_FUNCTION,
            {
                "p_knowledge_base_id": knowledge_base_id,
                "p_expected_version": expected_version,
                "p_patch": patch,
                "p_applied_fields": applied_fields or {},
                "p_restored_event_ids": restored_event_ids or [],
                "p_bump_enrichment": bump_enrichment,
            },
        ).execute()

        rows = result.data
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            logger.info(
                f"Version conflict on knowledge base {knowledge_base_id} "
                f"(expected v{expected_version})"
            )
            raise KnowledgeBaseConflictError(knowledge_base_id, expected_version)
        return KnowledgeBase.model_validate(rows[0])
