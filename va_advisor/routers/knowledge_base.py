"""Organization knowledge base router: profile, chat and learning events."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from va_advisor.auth.dependencies import get_current_user, require_organization_id
from va_advisor.config import get_settings
from va_advisor.db.supabase import get_async_supabase_client_async
from va_advisor.models.chat import (
    ChatMessage,
    ChatReply,
    Conversation,
    CreateConversationRequest,
    SendMessageRequest,
)
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import ApplyEventsResult, LearningEvent, RestoreEventResult
from va_advisor.services.enrichment_worker import get_enrichment_worker
from va_advisor.services.kb_chat import ConversationNotFoundError, KnowledgeBaseChat
from va_advisor.services.knowledge_base_store import (
    KnowledgeBaseConflictError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseStore,
)
from va_advisor.services.learning import (
    KnowledgeBaseMerger,
    LearningEventNotFoundError,
    LearningEventStateError,
    LearningEventStore,
)
from va_advisor.services.learning.decay import DecayConfig
from va_advisor.services.llm import LLMError, get_llm_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge-base", tags=["knowledge-base"])


async def _knowledge_base(kb_store: KnowledgeBaseStore, organization_id: str) -> KnowledgeBase:
    kb = await kb_store.get_for_organization(organization_id)
    if kb is None:
        raise HTTPException(status_code=404, detail="Knowledge base not found.")
    return kb


def _merger(supabase) -> KnowledgeBaseMerger:
    settings = get_settings()
    return KnowledgeBaseMerger(
        KnowledgeBaseStore(supabase),
        LearningEventStore(
            supabase,
            duplicate_window_days=settings.learning_duplicate_window_days,
            similarity_threshold=settings.learning_similarity_threshold,
        ),
        min_confidence=settings.learning_min_confidence,
        batch_size=settings.learning_batch_size,
        decay_config=DecayConfig.from_settings(settings),
    )


async def _chat() -> KnowledgeBaseChat:
    settings = get_settings()
    return KnowledgeBaseChat(
        await get_async_supabase_client_async(),
        get_llm_client(),
        get_enrichment_worker(),
        max_history=settings.chat_max_history,
        max_response_tokens=settings.chat_max_response_tokens,
    )


@router.get("")
async def get_knowledge_base(
    organization_id: str = Depends(require_organization_id),
) -> KnowledgeBase:
    supabase = await get_async_supabase_client_async()
    return await _knowledge_base(KnowledgeBaseStore(supabase), organization_id)


# ------------------------------------------------------------------
# Chat
# ------------------------------------------------------------------


@router.get("/conversations")
async def list_conversations(
    organization_id: str = Depends(require_organization_id),
) -> list[Conversation]:
    chat = await _chat()
    return await chat.list_conversations(organization_id)


@router.post("/conversations", status_code=201)
async def create_conversation(
    request: CreateConversationRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> Conversation:
    chat = await _chat()
    kb = await _knowledge_base(KnowledgeBaseStore(chat.supabase), organization_id)
    return await chat.create_conversation(kb, current_user["user_id"], request.title)


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    organization_id: str = Depends(require_organization_id),
) -> list[ChatMessage]:
    chat = await _chat()
    try:
        await chat.get_conversation(conversation_id, organization_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found or access denied.")
    return await chat.list_messages(conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=None)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    current_user: dict = Depends(get_current_user),
    organization_id: str = Depends(require_organization_id),
) -> ChatReply | JSONResponse:
    """
    Answer one chat message from the knowledge base.

    The exchange is queued for insight extraction; the reply never waits
    for it.
    """
    try:
        chat = await _chat()
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())

    try:
        conversation = await chat.get_conversation(conversation_id, organization_id)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found or access denied.")
    try:
        kb = await KnowledgeBaseStore(chat.supabase).get_by_id(conversation.knowledge_base_id)
    except KnowledgeBaseNotFoundError:
        raise HTTPException(status_code=404, detail="Knowledge base not found.")

    try:
        return await chat.send_message(
            conversation, kb, request.content, user_id=current_user["user_id"]
        )
    except LLMError as e:
        return JSONResponse(status_code=500, content=e.to_dict())


# ------------------------------------------------------------------
# Learning events
# ------------------------------------------------------------------


@router.get("/learning-events")
async def list_learning_events(
    applied: Optional[bool] = Query(None, description="Filter by applied state"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    organization_id: str = Depends(require_organization_id),
) -> list[LearningEvent]:
    supabase = await get_async_supabase_client_async()
    kb = await _knowledge_base(KnowledgeBaseStore(supabase), organization_id)
    merger = _merger(supabase)
    return await merger.event_store.list_events(kb.id, applied=applied, limit=limit, offset=offset)


@router.post("/learning-events/apply")
async def apply_learning_events(
    min_confidence: Optional[int] = Query(None, ge=1, le=100),
    organization_id: str = Depends(require_organization_id),
) -> ApplyEventsResult:
    """Merge pending learning events into the knowledge base now."""
    supabase = await get_async_supabase_client_async()
    kb = await _knowledge_base(KnowledgeBaseStore(supabase), organization_id)
    return await _merger(supabase).apply(kb.id, min_confidence=min_confidence)


@router.post("/learning-events/{event_id}/restore")
async def restore_learning_event(
    event_id: str,
    organization_id: str = Depends(require_organization_id),
) -> RestoreEventResult:
    """Revert an applied event and exclude it from future merges."""
    supabase = await get_async_supabase_client_async()
    kb = await _knowledge_base(KnowledgeBaseStore(supabase), organization_id)
    try:
        return await _merger(supabase).restore(kb.id, event_id)
    except LearningEventNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LearningEventStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except KnowledgeBaseConflictError as e:
        logger.error(f"Restore of {event_id} lost the version race: {e}")
        raise HTTPException(status_code=409, detail="Knowledge base changed, please retry")
