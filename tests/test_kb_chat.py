"""Tests for knowledge-base chat."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from va_advisor.models.chat import Conversation
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import SourceType
from va_advisor.services.kb_chat import (
    ConversationNotFoundError,
    KnowledgeBaseChat,
    build_chat_system_prompt,
)
from va_advisor.services.llm import LLMCompletion, LLMError, LLMErrorKind


def _make_kb(**fields) -> KnowledgeBase:
    data = {
        "id": "kb-1",
        "organization_id": "org-1",
        "business_name": "Acme Coaching",
        "tool_stack": ["HubSpot", "Slack"],
    }
    data.update(fields)
    return KnowledgeBase(**data)


def _message_row(seq: int, role: str, content: str) -> dict:
    return {
        "id": f"msg-{seq}",
        "conversation_id": "conv-1",
        "role": role,
        "content": content,
        "sequence_number": seq,
    }


def _conversation(**fields) -> Conversation:
    data = {
        "id": "conv-1",
        "knowledge_base_id": "kb-1",
        "organization_id": "org-1",
        "message_count": 2,
    }
    data.update(fields)
    return Conversation(**data)


def _make_chat(make_query, conversations, messages, llm=None):
    supabase = MagicMock()
    supabase.table.side_effect = lambda name: {
        "kb_conversations": conversations,
        "kb_messages": messages,
    }[name]
    if llm is None:
        llm = MagicMock()
        llm.complete = AsyncMock(
            return_value=LLMCompletion(text="Your CRM is HubSpot.", model="claude-sonnet")
        )
    worker = MagicMock()
    worker.publish.return_value = True
    return KnowledgeBaseChat(supabase, llm, worker, max_history=4), llm, worker


# ── System prompt ────────────────────────────────────────────────────


class TestSystemPrompt:
    def test_populated_fields_only(self):
        prompt = build_chat_system_prompt(_make_kb())
        assert "Business Name: Acme Coaching" in prompt
        assert "Tool Stack: HubSpot, Slack" in prompt
        assert "Website:" not in prompt
        assert "Regulated Industry" not in prompt

    def test_extracted_knowledge_without_history(self):
        kb = _make_kb(
            extracted_knowledge={
                "pain_points": ["Late invoices"],
                "field_history": {"biggest_bottleneck": []},
            }
        )
        prompt = build_chat_system_prompt(kb)
        assert "Late invoices" in prompt
        assert "field_history" not in prompt

    def test_regulated_and_summary(self):
        prompt = build_chat_system_prompt(
            _make_kb(is_regulated=True, regulated_industry="Finance"), "Asked about pricing"
        )
        assert "Regulated Industry Type: Finance" in prompt
        assert "=== CONTEXT SUMMARY ===" in prompt
        assert "Asked about pricing" in prompt

    def test_missing_business_name(self):
        prompt = build_chat_system_prompt(_make_kb(business_name=None))
        assert prompt.startswith("You are an AI assistant with deep knowledge of this business.")


# ── Conversations ────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestKnowledgeBaseChat:
    async def test_create_conversation_defaults_title(self, make_query):
        conversations = make_query([_conversation().model_dump(mode="json")])
        chat, _, _ = _make_chat(make_query, conversations, make_query())

        conversation = await chat.create_conversation(_make_kb(), "user-1")

        assert conversation.title == "New Conversation"
        row = conversations.insert.call_args.args[0]
        assert row["title"] == "New Conversation"
        assert row["organization_id"] == "org-1"
        assert row["created_by"] == "user-1"

    async def test_get_conversation_scoped_to_organization(self, make_query):
        conversations = make_query([])
        chat, _, _ = _make_chat(make_query, conversations, make_query())

        with pytest.raises(ConversationNotFoundError):
            await chat.get_conversation("conv-1", "org-2")
        conversations.eq.assert_any_call("organization_id", "org-2")

    async def test_recent_messages_are_returned_oldest_first(self, make_query):
        messages = make_query([_message_row(4, "assistant", "b"), _message_row(3, "user", "a")])
        chat, _, _ = _make_chat(make_query, make_query(), messages)

        result = await chat.list_messages("conv-1", limit=2)

        assert [m.sequence_number for m in result] == [3, 4]
        messages.order.assert_called_with("sequence_number", desc=True)

    async def test_send_message(self, make_query):
        messages = make_query()
        messages.execute.side_effect = [
            MagicMock(data=[_message_row(2, "assistant", "Hi"), _message_row(1, "user", "Hello")]),
            MagicMock(data=[_message_row(3, "user", "Which CRM do we use?")]),
            MagicMock(data=[_message_row(4, "assistant", "Your CRM is HubSpot.")]),
        ]
        conversations = make_query([_conversation(message_count=4).model_dump(mode="json")])
        chat, llm, worker = _make_chat(make_query, conversations, messages)

        reply = await chat.send_message(
            _conversation(), _make_kb(), "Which CRM do we use?", user_id="user-1"
        )

        assert reply.message.sequence_number == 3
        assert reply.assistant_message.content == "Your CRM is HubSpot."
        assert reply.conversation.message_count == 4

        kwargs = llm.complete.call_args.kwargs
        assert kwargs["json_mode"] is False
        assert kwargs["history"] == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi"},
        ]
        messages.limit.assert_called_with(4)

        update = conversations.update.call_args.args[0]
        assert update["message_count"] == 4

        request = worker.publish.call_args.args[0]
        assert request.source_type == SourceType.CHAT_CONVERSATION
        assert request.source_id == "conv-1"
        assert request.knowledge_base_id == "kb-1"
        assert request.triggered_by == "user-1"
        assert request.payload["assistant_message"] == "Your CRM is HubSpot."

    async def test_llm_failure_keeps_user_message(self, make_query):
        messages = make_query()
        messages.execute.side_effect = [
            MagicMock(data=[]),
            MagicMock(data=[_message_row(1, "user", "Hello")]),
        ]
        llm = MagicMock()
        llm.complete = AsyncMock(side_effect=LLMError(LLMErrorKind.SERVER, "500"))
        chat, _, worker = _make_chat(make_query, make_query(), messages, llm=llm)

        with pytest.raises(LLMError):
            await chat.send_message(_conversation(message_count=0), _make_kb(), "Hello")

        assert messages.insert.call_count == 1
        worker.publish.assert_not_called()
