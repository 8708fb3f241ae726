"""Learning-event persistence (Supabase ``learning_events`` table)."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from supabase import AsyncClient

from va_advisor.models.learning import (
    CreateEventsResult,
    ExtractedInsight,
    LearningEvent,
    SourceType,
)
from va_advisor.services.learning.similarity import is_similar

logger = logging.getLogger(__name__)

LEARNING_EVENTS_TABLE = "learning_events"
DEFAULT_CONFIDENCE = 70


def clamp_confidence(value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_CONFIDENCE
    return max(1, min(100, int(value)))


class LearningEventStore:
    """Create, page and list learning events for a knowledge base."""

    def __init__(
        self,
        supabase: AsyncClient,
        duplicate_window_days: int = 30,
        similarity_threshold: float = 0.85,
    ) -> None:
        self.supabase = supabase
        self.duplicate_window_days = duplicate_window_days
        self.similarity_threshold = similarity_threshold

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_events(
        self,
        knowledge_base_id: Optional[str],
        source_type: SourceType,
        source_id: Optional[str],
        insights: Sequence[ExtractedInsight],
        triggered_by: Optional[str] = None,
    ) -> CreateEventsResult:
        """Persist ``insights`` as unapplied learning events.

        An insight is skipped when a recent event of the same category
        (or an earlier insight in this batch) is similar to it.
        """
        if not knowledge_base_id or not source_id or not insights:
            return CreateEventsResult(
                success=False,
                errors=["Missing required parameters: knowledgeBaseId, sourceId, or insights"],
            )

        errors: list[str] = []
        try:
            recent = await self._recent_insights(knowledge_base_id)
        except Exception as e:
            # Dedupe is best effort; a failed lookup must not block creation
            logger.warning(f"Duplicate lookup failed for KB {knowledge_base_id}: {e}")
            recent = []

        rows: list[dict[str, Any]] = []
        for insight in insights:
            category = insight.category.value
            if self._is_duplicate(insight.insight, category, recent):
                errors.append(f"Skipped duplicate insight: {insight.insight[:50]}...")
                continue

            recent.append((category, insight.insight))
            rows.append(
                {
                    "knowledge_base_id": knowledge_base_id,
                    "event_type": insight.event_type.value,
                    "insight": insight.insight,
                    "category": category,
                    "confidence": clamp_confidence(insight.confidence),
                    "source_type": source_type.value,
                    "source_ids": [source_id],
                    "triggered_by": triggered_by,
                    "metadata": insight.metadata,
                    "applied": False,
                }
            )

        if not rows:
            return CreateEventsResult(
                success=False,
                errors=errors or ["No valid insights to create"],
            )

        try:
            result = await self.supabase.table(LEARNING_EVENTS_TABLE).insert(rows).execute()
        except Exception as e:
            logger.error(f"Failed to insert learning events for KB {knowledge_base_id}: {e}")
            return CreateEventsResult(success=False, errors=[*errors, f"Database error: {e}"])

        event_ids = [row["id"] for row in result.data or []]
        logger.info(
            f"Created {len(event_ids)} learning events for KB {knowledge_base_id} "
            f"from {source_type.value} ({len(errors)} skipped)"
        )
        return CreateEventsResult(
            success=True,
            events_created=len(event_ids),
            event_ids=event_ids,
            errors=errors,
        )

    async def _recent_insights(self, knowledge_base_id: str) -> list[tuple[str, str]]:
        since = datetime.now(timezone.utc) - timedelta(days=self.duplicate_window_days)
        result = await (
            self.supabase.table(LEARNING_EVENTS_TABLE)
            .select("insight, category")
            .eq("knowledge_base_id", knowledge_base_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return [(row["category"], row["insight"]) for row in result.data or []]

    def _is_duplicate(self, text: str, category: str, recent: list[tuple[str, str]]) -> bool:
        return any(
            cat == category and is_similar(text, existing, self.similarity_threshold)
            for cat, existing in recent
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def fetch_unapplied(
        self,
        knowledge_base_id: str,
        min_confidence: int,
        batch_size: int = 100,
    ) -> list[list[LearningEvent]]:
        """All pending events, oldest first, split into batches.

        Restored events are never picked up again automatically.
        """
        batches: list[list[LearningEvent]] = []
        offset = 0
        while True:
            result = await (
                self.supabase.table(LEARNING_EVENTS_TABLE)
                .select("*")
                .eq("knowledge_base_id", knowledge_base_id)
                .eq("applied", False)
                .is_("restored_at", "null")
                .gte("confidence", min_confidence)
                .order("created_at")
                .order("id")
                .range(offset, offset + batch_size - 1)
                .execute()
            )
            rows = result.data or []
            if not rows:
                break
            batches.append([LearningEvent.model_validate(row) for row in rows])
            if len(rows) < batch_size:
                break
            offset += batch_size
        return batches

    async def list_events(
        self,
        knowledge_base_id: str,
        applied: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LearningEvent]:
        query = (
            self.supabase.table(LEARNING_EVENTS_TABLE)
            .select("*")
            .eq("knowledge_base_id", knowledge_base_id)
        )
        if applied is not None:
            query = query.eq("applied", applied)
        result = await (
            query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        )
        return [LearningEvent.model_validate(row) for row in result.data or []]

    async def get_event(self, event_id: str) -> Optional[LearningEvent]:
        result = await (
            self.supabase.table(LEARNING_EVENTS_TABLE)
            .select("*")
            .eq("id", event_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return LearningEvent.model_validate(result.data[0])
