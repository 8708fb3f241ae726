"""Insight extraction from analyses, SOPs and chat exchanges."""

from va_advisor.services.insights.analysis import (
    extract_from_analysis,
    extract_from_pipeline_result,
)
from va_advisor.services.insights.conversation import (
    ConversationExchange,
    ConversationInsightExtractor,
    extract_conversation_insights,
    is_trivial_message,
    keyword_insights,
)
from va_advisor.services.insights.sop import extract_from_form, extract_from_sop

__all__ = [
    "ConversationExchange",
    "ConversationInsightExtractor",
    "extract_conversation_insights",
    "extract_from_analysis",
    "extract_from_form",
    "extract_from_pipeline_result",
    "extract_from_sop",
    "is_trivial_message",
    "keyword_insights",
]
