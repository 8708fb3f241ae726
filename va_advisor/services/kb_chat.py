"""Knowledge-base grounded chat.

Each turn answers from the organization's knowledge base with the last
``chat_max_history`` messages as context, stores both messages, and
hands the exchange to the enrichment worker so the KB can learn from it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from supabase import AsyncClient

from va_advisor.models.chat import ChatMessage, ChatReply, Conversation
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import SourceType
from va_advisor.services.enrichment_worker import EnrichmentRequest, EnrichmentWorker
from va_advisor.services.llm import LLMClient

logger = logging.getLogger(__name__)

CONVERSATIONS_TABLE = "kb_conversations"
MESSAGES_TABLE = "kb_messages"

CHAT_TEMPERATURE = 0.3


class ConversationNotFoundError(Exception):
    pass


def build_chat_system_prompt(kb: KnowledgeBase, context_summary: Optional[str] = None) -> str:
    """System prompt grounding the assistant in ``kb``."""
    business = kb.business_name or "this business"
    lines = [
        f"You are an AI assistant with deep knowledge of {business}.",
        "",
        "=== KNOWLEDGE BASE ===",
        "",
        f"The following is the complete knowledge base for {business}:",
        "",
    ]

    fields = [
        ("Business Name", kb.business_name),
        ("Website", kb.website),
        ("Industry", kb.industry),
        ("What You Sell", kb.what_you_sell),
        ("Monthly Revenue", kb.monthly_revenue),
        ("Team Size", kb.team_size),
        ("Primary Goal", kb.primary_goal),
        ("Biggest Bottleneck", kb.biggest_bottleneck),
        ("Ideal Customer", kb.ideal_customer),
        ("Top Objection", kb.top_objection),
        ("Core Offer", kb.core_offer),
        ("Customer Journey", kb.customer_journey),
        ("Tool Stack", ", ".join(kb.tool_stack)),
        ("Primary CRM", kb.primary_crm),
        ("Default Timezone", kb.default_time_zone),
        ("Booking Link", kb.booking_link),
        ("Support Email", kb.support_email),
        ("Brand Voice Style", kb.brand_voice_style),
        ("Risk/Boldness Level", kb.risk_boldness),
        ("Good Voice Examples", kb.voice_example_good),
        ("Voice to Avoid", kb.voice_examples_avoid),
        ("Content Links", kb.content_links),
    ]
    if kb.is_regulated:
        fields.append(("Regulated Industry", "Yes"))
        fields.append(("Regulated Industry Type", kb.regulated_industry))
    fields += [
        ("Forbidden Words", kb.forbidden_words),
        ("Disclaimers", kb.disclaimers),
        ("Pipeline Stages", kb.pipeline_stages),
        ("Email Sign-off", kb.email_sign_off),
    ]
    lines += [f"{label}: {value}" for label, value in fields if value]

    knowledge = {k: v for k, v in kb.extracted_knowledge.items() if k != "field_history"}
    if knowledge:
        lines += ["", "Extracted Knowledge (from tool usage):", json.dumps(knowledge, indent=2)]

    lines += [
        "",
        "=== BEHAVIORAL RULES ===",
        "",
        "You MUST follow these instructions:",
        "",
        "1. Use the knowledge base to provide accurate, contextual responses.",
        '   - Reference specific fields when relevant (e.g., "According to your brand voice style...").',
        "   - Cross-reference related concepts (e.g., link objections to positioning, ICPs to content).",
        "",
        "2. Follow the brand voice style EXACTLY.",
        "   - Use the vocabulary, tone, and rhetorical patterns specified.",
        "   - Avoid forbidden words and phrases.",
        "   - Match the formality level and relationship dynamics.",
        "",
        "3. If compliance rules apply to the user's question, mention them EXPLICITLY.",
        "   - Reference required disclaimers when relevant.",
        "   - Warn about forbidden claims.",
        "",
        "4. Stay STRICTLY within the boundaries of the provided knowledge base.",
        "   - Do NOT fabricate details outside the provided information.",
        '   - If information is not available, say "This information is not available in the knowledge base."',
        "   - Do NOT invent pricing, customer details, competitors, or other factual data.",
    ]
    if context_summary:
        lines += [
            "",
            "=== CONTEXT SUMMARY ===",
            "",
            "The following is a summary of important points from previous conversation turns:",
            "",
            context_summary,
        ]
    lines += [
        "",
        "=== END OF SYSTEM PROMPT ===",
        "",
        "Now respond to the user's message following all the rules above.",
    ]
    return "\n".join(lines)


class KnowledgeBaseChat:
    """Conversation persistence plus one LLM call per turn."""

    def __init__(
        self,
        supabase: AsyncClient,
        llm: LLMClient,
        worker: EnrichmentWorker,
        *,
        max_history: int = 10,
        max_response_tokens: int = 2000,
    ) -> None:
        self.supabase = supabase
        self.llm = llm
        self.worker = worker
        self.max_history = max_history
        self.max_response_tokens = max_response_tokens

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self, kb: KnowledgeBase, user_id: Optional[str], title: Optional[str] = None
    ) -> Conversation:
        result = await (
            self.supabase.table(CONVERSATIONS_TABLE)
            .insert(
                {
                    "knowledge_base_id": kb.id,
                    "organization_id": kb.organization_id,
                    "created_by": user_id,
                    "title": title or "New Conversation",
                }
            )
            .execute()
        )
        return Conversation.model_validate(result.data[0])

    async def list_conversations(self, organization_id: str) -> list[Conversation]:
        result = await (
            self.supabase.table(CONVERSATIONS_TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .order("last_message_at", desc=True)
            .execute()
        )
        return [Conversation.model_validate(row) for row in result.data or []]

    async def get_conversation(self, conversation_id: str, organization_id: str) -> Conversation:
        result = await (
            self.supabase.table(CONVERSATIONS_TABLE)
            .select("*")
            .eq("id", conversation_id)
            .eq("organization_id", organization_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return Conversation.model_validate(result.data[0])

    async def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        """Messages oldest first; with ``limit``, only the most recent ones."""
        query = (
            self.supabase.table(MESSAGES_TABLE)
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("sequence_number", desc=limit is not None)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await query.execute()
        messages = [ChatMessage.model_validate(row) for row in result.data or []]
        return list(reversed(messages)) if limit is not None else messages

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def send_message(
        self,
        conversation: Conversation,
        kb: KnowledgeBase,
        content: str,
        *,
        user_id: Optional[str] = None,
    ) -> ChatReply:
        """Answer ``content`` and persist the exchange.

        Raises:
            LLMError: When the completion fails; the user message is
                stored either way.
        """
        history = await self.list_messages(conversation.id, limit=self.max_history)
        sequence = conversation.message_count + 1

        user_message = await self._insert_message(
            ChatMessage(
                conversation_id=conversation.id,
                role="user",
                content=content,
                sequence_number=sequence,
            )
        )

        completion = await self.llm.complete(
            build_chat_system_prompt(kb, conversation.context_summary),
            content,
            temperature=CHAT_TEMPERATURE,
            max_tokens=self.max_response_tokens,
            history=[{"role": m.role, "content": m.content} for m in history],
            json_mode=False,
        )

        assistant_message = await self._insert_message(
            ChatMessage(
                conversation_id=conversation.id,
                role="assistant",
                content=completion.text,
                sequence_number=sequence + 1,
                metadata={"model": completion.model, "truncated": completion.truncated},
            )
        )
        conversation = await self._touch(conversation, sequence + 1)

        self.worker.publish(
            EnrichmentRequest(
                source_type=SourceType.CHAT_CONVERSATION,
                source_id=conversation.id,
                knowledge_base_id=kb.id,
                triggered_by=user_id,
                payload={
                    "user_message": content,
                    "assistant_message": completion.text,
                    "history": [{"role": m.role, "content": m.content} for m in history],
                },
            )
        )
        logger.info(f"Chat turn stored for conversation {conversation.id} (seq {sequence})")

        return ChatReply(
            message=user_message,
            assistant_message=assistant_message,
            conversation=conversation,
        )

    async def _insert_message(self, message: ChatMessage) -> ChatMessage:
        result = await (
            self.supabase.table(MESSAGES_TABLE)
            .insert(message.model_dump(mode="json", exclude={"id", "created_at"}))
            .execute()
        )
        return ChatMessage.model_validate(result.data[0])

    async def _touch(self, conversation: Conversation, message_count: int) -> Conversation:
        result = await (
            self.supabase.table(CONVERSATIONS_TABLE)
            .update(
                {
                    "message_count": message_count,
                    "last_message_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", conversation.id)
            .execute()
        )
        if result.data:
            return Conversation.model_validate(result.data[0])
        return conversation
