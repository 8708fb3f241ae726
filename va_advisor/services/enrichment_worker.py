"""Background knowledge-base enrichment.

Request handlers publish an :class:`EnrichmentRequest` and return
immediately. A single worker task, started in the app lifespan, runs
extract → create events → apply for each request. Failures are logged
and never reach the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from va_advisor.config import get_settings
from va_advisor.db.supabase import get_async_supabase_client_async
from va_advisor.models.learning import ApplyEventsResult, ExtractedInsight, SourceType
from va_advisor.services.insights import (
    ConversationExchange,
    ConversationInsightExtractor,
    extract_conversation_insights,
    extract_from_analysis,
    extract_from_sop,
)
from va_advisor.services.knowledge_base_store import KnowledgeBaseStore
from va_advisor.services.learning import KnowledgeBaseMerger, LearningEventStore
from va_advisor.services.learning.decay import DecayConfig
from va_advisor.services.llm import get_llm_client

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentRequest:
    """Work item: learn from one analysis, SOP or chat exchange.

    ``payload`` holds ``{"analysis": {...}}`` for JD analyses,
    ``{"sop": {"title", "form_data"}}`` for SOPs and
    ``{"user_message", "assistant_message", "history"}`` for chat.
    """

    source_type: SourceType
    source_id: str
    knowledge_base_id: str
    triggered_by: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)


class EnrichmentWorker:
    """Consumes enrichment requests from an in-process queue."""

    def __init__(self, queue_size: int = 500) -> None:
        self.queue: asyncio.Queue[EnrichmentRequest] = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="enrichment-worker")
            logger.info("Enrichment worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Enrichment worker stopped ({self.queue.qsize()} requests dropped)")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def publish(self, request: EnrichmentRequest) -> bool:
        """Queue a request without waiting. Returns False when the queue is full."""
        try:
            self.queue.put_nowait(request)
        except asyncio.QueueFull:
            logger.warning(
                f"Enrichment queue full, dropping {request.source_type.value} "
                f"request {request.source_id}"
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued request has been processed."""
        await self.queue.join()

    async def _run(self) -> None:
        while True:
            request = await self.queue.get()
            try:
                await self.process(request)
            except Exception as e:
                logger.error(
                    f"Enrichment failed for {request.source_type.value} {request.source_id} "
                    f"(KB {request.knowledge_base_id}): {e}"
                )
            finally:
                self.queue.task_done()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(self, request: EnrichmentRequest) -> Optional[ApplyEventsResult]:
        settings = get_settings()
        supabase = await get_async_supabase_client_async()
        kb_store = KnowledgeBaseStore(supabase)
        event_store = LearningEventStore(
            supabase,
            duplicate_window_days=settings.learning_duplicate_window_days,
            similarity_threshold=settings.learning_similarity_threshold,
        )

        insights = await self._extract(request, kb_store)
        if not insights:
            logger.info(f"No insights from {request.source_type.value} {request.source_id}")
            return None

        created = await event_store.create_events(
            request.knowledge_base_id,
            request.source_type,
            request.source_id,
            insights,
            triggered_by=request.triggered_by,
        )
        if not created.success:
            logger.info(f"No learning events created for {request.source_id}: {created.errors}")
            return None

        merger = KnowledgeBaseMerger(
            kb_store,
            event_store,
            min_confidence=settings.learning_min_confidence,
            batch_size=settings.learning_batch_size,
            decay_config=DecayConfig.from_settings(settings),
        )
        return await merger.apply(request.knowledge_base_id)

    async def _extract(
        self, request: EnrichmentRequest, kb_store: KnowledgeBaseStore
    ) -> list[ExtractedInsight]:
        if request.source_type == SourceType.JOB_DESCRIPTION:
            return extract_from_analysis(request.payload.get("analysis") or {})

        if request.source_type == SourceType.SOP_GENERATION:
            return extract_from_sop(request.payload.get("sop") or {})

        if request.source_type == SourceType.CHAT_CONVERSATION:
            exchange = ConversationExchange(
                user_message=request.payload.get("user_message", ""),
                assistant_message=request.payload.get("assistant_message", ""),
                history=request.payload.get("history") or [],
            )
            llm = get_llm_client()
            extractor = ConversationInsightExtractor(llm, model=llm.extraction_model)
            knowledge_base = await kb_store.get_by_id(request.knowledge_base_id)
            return await extract_conversation_insights(extractor, exchange, knowledge_base)

        logger.warning(f"No insight extractor for source type {request.source_type.value}")
        return []


# Singleton
_worker: EnrichmentWorker | None = None


def get_enrichment_worker() -> EnrichmentWorker:
    global _worker
    if _worker is None:
        _worker = EnrichmentWorker(queue_size=get_settings().enrichment_queue_size)
    return _worker


def reset_enrichment_worker() -> None:
    """Reset the worker for testing."""
    global _worker
    _worker = None
