"""Saved-SOP persistence (Supabase).

Published SOPs form version chains: every row carries ``root_sop_id``
(the first version points at itself) and at most one row per chain has
``is_current_version`` set. Drafts are unversioned and never current.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from supabase import AsyncClient

from va_advisor.models.knowledge_base import KnowledgeBaseUsage
from va_advisor.models.sop import SavedSOP, SavedSOPList, SOPGroup, SOPGroupList

logger = logging.getLogger(__name__)

SOPS_TABLE = "sops"

SortOrder = Literal["recent", "oldest"]


class SOPNotFoundError(Exception):
    pass


class SOPAccessError(Exception):
    """The SOP belongs to another organization."""


def _page(items: list, page: int, limit: int) -> tuple[list, int, int]:
    total = len(items)
    start = (page - 1) * limit
    return items[start : start + limit], total, math.ceil(total / limit) if limit else 0


def _timestamp(sop: SavedSOP) -> datetime:
    return sop.version_created_at or sop.created_at or datetime.min.replace(tzinfo=timezone.utc)


class SOPStore:
    """CRUD and version bookkeeping for ``sops``."""

    def __init__(self, supabase: AsyncClient) -> None:
        self.supabase = supabase

    async def create(
        self,
        organization_id: str,
        user_id: Optional[str],
        title: str,
        content: dict[str, Any],
        *,
        intake_data: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        knowledge_base: Optional[KnowledgeBaseUsage] = None,
        version_number: int = 1,
        root_sop_id: Optional[str] = None,
        is_current_version: bool = False,
        is_draft: bool = False,
    ) -> SavedSOP:
        """Insert one SOP row; a row without ``root_sop_id`` starts its own chain."""
        row: dict[str, Any] = {
            "organization_id": organization_id,
            "created_by": user_id,
            "title": title,
            "content": content,
            "intake_data": intake_data or {},
            "metadata": metadata or {},
            "version_number": version_number,
            "root_sop_id": root_sop_id,
            "is_current_version": is_current_version,
            "is_draft": is_draft,
            "version_created_at": datetime.now(timezone.utc).isoformat(),
        }
        if knowledge_base is not None and knowledge_base.used:
            row["knowledge_base_version"] = knowledge_base.version
            row["knowledge_base_snapshot"] = knowledge_base.snapshot

        result = await self.supabase.table(SOPS_TABLE).insert(row).execute()
        sop = SavedSOP.model_validate(result.data[0])

        if root_sop_id is None:
            await (
                self.supabase.table(SOPS_TABLE)
                .update({"root_sop_id": sop.id})
                .eq("id", sop.id)
                .execute()
            )
            sop = sop.model_copy(update={"root_sop_id": sop.id})

        logger.info(f"Saved SOP {sop.id} (v{sop.version_number}) for org {organization_id}")
        return sop

    async def get(self, sop_id: str) -> SavedSOP:
        result = await (
            self.supabase.table(SOPS_TABLE).select("*").eq("id", sop_id).limit(1).execute()
        )
        if not result.data:
            raise SOPNotFoundError(f"SOP {sop_id} not found")
        return SavedSOP.model_validate(result.data[0])

    async def get_owned(self, sop_id: str, organization_id: str) -> SavedSOP:
        """Fetch an SOP and check it belongs to ``organization_id``.

        Raises:
            SOPNotFoundError: No such SOP.
            SOPAccessError: It belongs to another organization.
        """
        sop = await self.get(sop_id)
        if sop.organization_id != organization_id:
            raise SOPAccessError(f"SOP {sop_id} does not belong to org {organization_id}")
        return sop

    async def update_draft(self, sop_id: str, changes: dict[str, Any]) -> SavedSOP:
        result = await (
            self.supabase.table(SOPS_TABLE)
            .update(changes)
            .eq("id", sop_id)
            .eq("is_draft", True)
            .execute()
        )
        if not result.data:
            raise SOPNotFoundError(f"Draft SOP {sop_id} not found")
        return SavedSOP.model_validate(result.data[0])

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def latest_published(self, organization_id: str, title: str) -> Optional[SavedSOP]:
        """Highest published version carrying ``title``."""
        result = await (
            self.supabase.table(SOPS_TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .eq("title", title)
            .eq("is_draft", False)
            .order("version_number", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return SavedSOP.model_validate(result.data[0])

    async def latest_version_number(self, root_id: str) -> int:
        result = await (
            self.supabase.table(SOPS_TABLE)
            .select("version_number")
            .eq("root_sop_id", root_id)
            .order("version_number", desc=True)
            .limit(1)
            .execute()
        )
        if not result.data:
            return 1
        return int(result.data[0].get("version_number") or 1)

    async def versions(self, root_id: str) -> list[SavedSOP]:
        """Every version of a chain, newest first."""
        result = await (
            self.supabase.table(SOPS_TABLE)
            .select("*")
            .eq("root_sop_id", root_id)
            .order("version_number", desc=True)
            .execute()
        )
        return [SavedSOP.model_validate(row) for row in result.data or []]

    async def unset_current_by_title(self, organization_id: str, title: str) -> None:
        await (
            self.supabase.table(SOPS_TABLE)
            .update({"is_current_version": False})
            .eq("organization_id", organization_id)
            .eq("title", title)
            .eq("is_draft", False)
            .eq("is_current_version", True)
            .execute()
        )

    async def unset_current_in_chain(self, root_id: str) -> None:
        await (
            self.supabase.table(SOPS_TABLE)
            .update({"is_current_version": False})
            .eq("root_sop_id", root_id)
            .eq("is_current_version", True)
            .execute()
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def _fetch(self, organization_id: str, current_only: bool, sort: SortOrder) -> list:
        query = self.supabase.table(SOPS_TABLE).select("*").eq("organization_id", organization_id)
        if current_only:
            # Drafts are never current but still belong in the default list
            query = query.or_("is_current_version.eq.true,is_draft.eq.true")
        result = await query.order("created_at", desc=sort == "recent").execute()
        return [SavedSOP.model_validate(row) for row in result.data or []]

    async def list_sops(
        self,
        organization_id: str,
        *,
        page: int = 1,
        limit: int = 50,
        include_all_versions: bool = False,
        sort: SortOrder = "recent",
    ) -> SavedSOPList:
        """Current versions and drafts, or every row with ``include_all_versions``."""
        sops = await self._fetch(organization_id, not include_all_versions, sort)
        items, total, total_pages = _page(sops, page, limit)
        return SavedSOPList(
            sops=items, total=total, page=page, limit=limit, total_pages=total_pages
        )

    async def list_grouped(
        self,
        organization_id: str,
        *,
        page: int = 1,
        limit: int = 50,
        sort: SortOrder = "recent",
    ) -> SOPGroupList:
        """One group per chain, paginated after grouping."""
        chains: dict[str, list[SavedSOP]] = {}
        for sop in await self._fetch(organization_id, False, sort):
            chains.setdefault(sop.chain_root_id, []).append(sop)

        groups = []
        for root_id, versions in chains.items():
            versions.sort(key=lambda s: s.version_number, reverse=True)
            current = next((s for s in versions if s.is_current_version), versions[0])
            dates = [_timestamp(s) for s in versions]
            groups.append(
                SOPGroup(
                    root_sop_id=root_id,
                    title=current.title,
                    current_version=current,
                    versions=versions,
                    version_count=len(versions),
                    most_recent_version_date=max(dates),
                    oldest_version_date=min(dates),
                )
            )

        if sort == "recent":
            groups.sort(key=lambda g: g.most_recent_version_date, reverse=True)
        else:
            groups.sort(key=lambda g: g.oldest_version_date)

        items, total, total_pages = _page(groups, page, limit)
        return SOPGroupList(
            groups=items, total=total, page=page, limit=limit, total_pages=total_pages
        )
