"""Knowledge-base chat models."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Conversation(BaseModel):
    id: str
    knowledge_base_id: str
    organization_id: str
    created_by: Optional[str] = None
    title: str = "New Conversation"
    message_count: int = 0
    context_summary: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ChatMessage(BaseModel):
    id: Optional[str] = None
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    sequence_number: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message content is required.")
        return v


class ChatReply(BaseModel):
    """Response body for a chat turn."""

    message: ChatMessage
    assistant_message: ChatMessage
    conversation: Conversation
