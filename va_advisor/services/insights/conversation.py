"""Insights from a knowledge-base chat exchange.

The primary path is one LLM call returning a fixed JSON shape; when it
yields nothing usable a keyword scan of the exchange is used instead.
Trivial messages ("thanks", "ok", anything under 20 characters) are
ignored outright.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import ExtractedInsight, InsightCategory, LearningEventType
from va_advisor.services.insights import constants as c
from va_advisor.services.llm.base_extractor import BaseLLMExtractor

logger = logging.getLogger(__name__)

MIN_MESSAGE_LENGTH = 20
HISTORY_MESSAGES = 5
HISTORY_MESSAGE_CHARS = 500

_TRIVIAL_PATTERNS = (
    re.compile(
        r"^(thanks?|thank you|thx|ty|ok|okay|got it|sure|yep|yes|no|nope|bye|goodbye|hi|hello|hey)$",
        re.IGNORECASE,
    ),
    re.compile(r"^(thanks?|thank you|thx|ty)\s*(!|\.|$)", re.IGNORECASE),
)

_QUESTION_PATTERN = re.compile(
    r"(?:what|how|when|where|why|who|can you|do you know|tell me about)\s+(.+?)(?:\?|$)",
    re.IGNORECASE,
)
_PAIN_POINT_PATTERN = re.compile(
    r"(?:struggling|problem|issue|challenge|difficulty|pain|frustrated|stuck|blocked|can't|unable to)"
    r"\s+(.+?)(?:\.|$)",
    re.IGNORECASE,
)
_COMMAND_OPENERS = re.compile(r"^(?:help|what|how|when|where|why|who|can|do|is|are|will)")
_TOPIC_PATTERNS = (
    (re.compile(r"(?:brand voice|voice style|tone)", re.IGNORECASE), "brand_voice_style"),
    (re.compile(r"(?:ideal customer|target audience|icp)", re.IGNORECASE), "ideal_customer"),
    (re.compile(r"(?:core offer|main offer|primary offer)", re.IGNORECASE), "core_offer"),
    (re.compile(r"(?:top objection|main objection|common objection)", re.IGNORECASE), "top_objection"),
    (re.compile(r"(?:bottleneck|blocker|challenge)", re.IGNORECASE), "biggest_bottleneck"),
    (re.compile(r"(?:tool|software|crm|platform)", re.IGNORECASE), "tool_stack"),
)

_COMPANY_STAGES = {"startup", "growth", "established"}

SYSTEM_PROMPT = """You are an insight extraction specialist. Analyze conversation exchanges and extract structured insights that could enrich a business knowledge base.

Extract insights in these categories:
1. **Business Context**: New bottlenecks, goals, pain points, company stage changes, growth indicators
2. **Process/Workflow**: New tools mentioned, SOP updates, process changes, workflow improvements
3. **Customer/Market**: New objections, customer feedback, market insights, target audience updates
4. **Knowledge Gaps**: Questions asked that indicate missing information in knowledge base
5. **Compliance/Regulatory**: New compliance requirements, regulatory mentions, forbidden words/claims

Return JSON with this structure:
{
  "business_context": {
    "bottleneck": "New bottleneck mentioned (if any)",
    "pain_point": "Pain point mentioned (if any)",
    "growth_indicator": "Growth indicator mentioned (if any)",
    "company_stage": "Company stage mentioned (if any: startup/growth/established)"
  },
  "process_optimization": {
    "new_tool": "New tool mentioned (if any)",
    "process_change": "Process change mentioned (if any)",
    "documentation_gap": "Documentation gap identified (if any)"
  },
  "customer_market": {
    "new_objection": "New objection mentioned (if any)",
    "customer_feedback": "Customer feedback shared (if any)",
    "market_insight": "Market insight mentioned (if any)"
  },
  "knowledge_gap": {
    "question_asked": "Question that indicates missing KB information (if any)",
    "missing_info": "Type of information missing (if any)"
  },
  "compliance": {
    "regulatory_mention": "Regulatory/compliance mention (if any)",
    "forbidden_claim": "Forbidden claim mentioned (if any)"
  },
  "confidence": 0-100,
  "has_insights": true/false
}

"confidence" is your overall confidence in the extraction quality; "has_insights" says whether meaningful insights were found.

Only extract insights that are:
- Explicitly stated or clearly implied
- New information not already in the knowledge base
- Actionable or informative
- High confidence (avoid speculation)

If no meaningful insights found, return: {"has_insights": false, "confidence": 0}"""


@dataclass
class ConversationExchange:
    """One user message, the assistant's reply and the preceding messages."""

    user_message: str
    assistant_message: str
    history: list[dict] = field(default_factory=list)


def is_trivial_message(message: str) -> bool:
    text = (message or "").strip()
    if len(text) < MIN_MESSAGE_LENGTH:
        return True
    lowered = text.lower()
    return any(pattern.search(lowered) for pattern in _TRIVIAL_PATTERNS)


def _long_enough(value: Any, minimum: int = 10) -> bool:
    return isinstance(value, str) and len(value.strip()) > minimum


def _section(data: dict, key: str) -> dict:
    # Models sometimes answer a section with a bare string such as "none"
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _insight(
    text: str,
    category: InsightCategory,
    event_type: LearningEventType,
    confidence: int,
    **metadata: Any,
) -> ExtractedInsight:
    return ExtractedInsight(
        insight=text,
        category=category,
        event_type=event_type,
        confidence=max(0, min(100, int(confidence))),
        metadata=metadata,
    )


# ------------------------------------------------------------------
# Structured (LLM) extraction
# ------------------------------------------------------------------


def insights_from_structured(data: dict) -> list[ExtractedInsight]:
    """Turn the extraction JSON into insights.

    Confidence starts from the model's self-reported value and is boosted
    for the fields that matter most to the knowledge base.
    """
    base = data.get("confidence")
    base = int(base) if isinstance(base, (int, float)) and base else c.CONVERSATION_BASE_CONFIDENCE
    insights: list[ExtractedInsight] = []

    bc = _section(data, "business_context")
    section = "conversation.structured_insights.business_context"
    if _long_enough(bc.get("bottleneck")):
        insights.append(
            _insight(
                f"Bottleneck identified: {bc['bottleneck']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 5, 90),
                bottleneck=bc["bottleneck"],
                source_section=section,
            )
        )
    if _long_enough(bc.get("pain_point")):
        insights.append(
            _insight(
                f"Pain point identified: {bc['pain_point']}",
                InsightCategory.PROCESS_OPTIMIZATION,
                LearningEventType.OPTIMIZATION_FOUND,
                min(base + 3, 88),
                pain_point=bc["pain_point"],
                source_section=section,
            )
        )
    if _long_enough(bc.get("growth_indicator")):
        insights.append(
            _insight(
                f"Growth indicator: {bc['growth_indicator']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                base,
                growth_indicators=bc["growth_indicator"],
                source_section=section,
            )
        )
    stage = str(bc.get("company_stage") or "").strip().lower()
    if stage in _COMPANY_STAGES:
        insights.append(
            _insight(
                f"Company stage: {stage}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 5, 90),
                company_stage=stage,
                source_section=section,
            )
        )

    po = _section(data, "process_optimization")
    section = "conversation.structured_insights.process_optimization"
    if _long_enough(po.get("new_tool"), 3):
        insights.append(
            _insight(
                f"New tool mentioned: {po['new_tool']}",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                base,
                new_tool=po["new_tool"],
                source_section=section,
            )
        )
    if _long_enough(po.get("process_change")):
        insights.append(
            _insight(
                f"Process change mentioned: {po['process_change']}",
                InsightCategory.PROCESS_OPTIMIZATION,
                LearningEventType.OPTIMIZATION_FOUND,
                base,
                process_change=po["process_change"],
                source_section=section,
            )
        )
    if _long_enough(po.get("documentation_gap")):
        insights.append(
            _insight(
                f"Documentation gap: {po['documentation_gap']}",
                InsightCategory.PROCESS_OPTIMIZATION,
                LearningEventType.OPTIMIZATION_FOUND,
                base,
                documentation_gap=po["documentation_gap"],
                source_section=section,
            )
        )

    cm = _section(data, "customer_market")
    section = "conversation.structured_insights.customer_market"
    if _long_enough(cm.get("new_objection")):
        insights.append(
            _insight(
                f"New objection identified: {cm['new_objection']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 5, 90),
                objection=cm["new_objection"],
                source_section=section,
            )
        )
    if _long_enough(cm.get("customer_feedback")):
        insights.append(
            _insight(
                f"Customer feedback: {cm['customer_feedback']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                base,
                customer_feedback=cm["customer_feedback"],
                source_section=section,
            )
        )
    if _long_enough(cm.get("market_insight")):
        insights.append(
            _insight(
                f"Market insight: {cm['market_insight']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                base,
                market_insight=cm["market_insight"],
                source_section=section,
            )
        )

    kg = _section(data, "knowledge_gap")
    if _long_enough(kg.get("question_asked")):
        insights.append(
            _insight(
                f"Knowledge gap identified: {kg['question_asked']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 2, 85),
                question=kg["question_asked"],
                missing_info=kg.get("missing_info") or "unknown",
                source_section="conversation.structured_insights.knowledge_gap",
            )
        )

    comp = _section(data, "compliance")
    section = "conversation.structured_insights.compliance"
    if _long_enough(comp.get("regulatory_mention")):
        insights.append(
            _insight(
                f"Regulatory mention: {comp['regulatory_mention']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 5, 90),
                regulatory_mention=comp["regulatory_mention"],
                source_section=section,
            )
        )
    if _long_enough(comp.get("forbidden_claim")):
        insights.append(
            _insight(
                f"Forbidden claim mentioned: {comp['forbidden_claim']}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                min(base + 3, 88),
                forbidden_claim=comp["forbidden_claim"],
                source_section=section,
            )
        )

    return insights


class ConversationInsightExtractor(BaseLLMExtractor):
    """LLM pass over one chat exchange."""

    SYSTEM_PROMPT = SYSTEM_PROMPT
    TEMPERATURE = 0.2

    def _should_skip(self, source: ConversationExchange, **kwargs: Any) -> bool:
        if is_trivial_message(source.user_message):
            logger.debug("Skipping trivial message for insight extraction")
            return True
        return False

    def _prepare_content(
        self,
        source: ConversationExchange,
        knowledge_base: Optional[KnowledgeBase] = None,
        **kwargs: Any,
    ) -> str:
        recent = [
            {"role": m.get("role"), "content": str(m.get("content", ""))[:HISTORY_MESSAGE_CHARS]}
            for m in source.history[-HISTORY_MESSAGES:]
        ]
        parts = [
            "Analyze this conversation exchange:",
            "",
            "CURRENT EXCHANGE:",
            f"User: {source.user_message}",
            f"Assistant: {source.assistant_message}",
            "",
        ]
        if recent:
            parts.append(f"RECENT CONTEXT (last {len(recent)} messages):")
            parts.append(json.dumps(recent, indent=2))
            parts.append("")

        kb = knowledge_base
        parts.extend(
            [
                "CURRENT KNOWLEDGE BASE (for reference - don't extract if already present):",
                f"- Business Name: {(kb and kb.business_name) or 'Not set'}",
                f"- Industry: {(kb and kb.industry) or 'Not set'}",
                f"- Biggest Bottleneck: {(kb and kb.biggest_bottleneck) or 'Not set'}",
                f"- Top Objection: {(kb and kb.top_objection) or 'Not set'}",
                f"- Core Offer: {(kb and kb.core_offer) or 'Not set'}",
                f"- Tools: {(kb and ', '.join(kb.tool_stack)) or 'Not set'}",
                "",
                "Extract structured insights that would enrich the knowledge base. "
                "Focus on NEW information not already present.",
            ]
        )
        return "\n".join(parts)

    def _parse_result(self, data: Any, source: ConversationExchange, **kwargs: Any) -> list:
        if not isinstance(data, dict):
            raise ValueError("Extraction response is not a JSON object")
        confidence = data.get("confidence") or 0
        if not data.get("has_insights") or confidence < c.CONVERSATION_MIN_CONFIDENCE:
            logger.info(f"No meaningful insights found (confidence: {confidence})")
            return []
        return insights_from_structured(data)

    def _empty_result(self) -> list:
        return []

    def _max_tokens(self) -> int:
        return 1000


# ------------------------------------------------------------------
# Keyword fallback
# ------------------------------------------------------------------


def keyword_insights(exchange: ConversationExchange) -> list[ExtractedInsight]:
    """Pattern-based insights used when the LLM pass yields nothing."""
    insights: list[ExtractedInsight] = []
    user_message = exchange.user_message or ""

    if user_message:
        for match in _QUESTION_PATTERN.finditer(user_message):
            question = match.group(1).strip()
            if len(question) > 10:
                insights.append(
                    _insight(
                        f"User asked about: {question}",
                        InsightCategory.BUSINESS_CONTEXT,
                        LearningEventType.INSIGHT_GENERATED,
                        c.USER_QUESTION_CONFIDENCE,
                        source_section="conversation.user_message",
                        question=question,
                        type="information_request",
                    )
                )

        for match in _PAIN_POINT_PATTERN.finditer(user_message):
            pain_point = match.group(1).strip()
            if len(pain_point) > 10:
                insights.append(
                    _insight(
                        f"Pain point mentioned: {pain_point}",
                        InsightCategory.PROCESS_OPTIMIZATION,
                        LearningEventType.OPTIMIZATION_FOUND,
                        c.USER_PAIN_POINT_CONFIDENCE,
                        source_section="conversation.user_message",
                        pain_point=pain_point,
                    )
                )

        lowered = user_message.lower()
        if "?" not in lowered and len(lowered) > 20:
            if not lowered.startswith("/") and not _COMMAND_OPENERS.match(lowered):
                preview = user_message[:100] + ("..." if len(user_message) > 100 else "")
                insights.append(
                    _insight(
                        f"New information shared: {preview}",
                        InsightCategory.BUSINESS_CONTEXT,
                        LearningEventType.INSIGHT_GENERATED,
                        c.USER_INFORMATION_CONFIDENCE,
                        source_section="conversation.user_message",
                        information=user_message,
                        type="user_provided_info",
                    )
                )

    if exchange.assistant_message:
        for pattern, kb_field in _TOPIC_PATTERNS:
            if pattern.search(exchange.assistant_message):
                insights.append(
                    _insight(
                        f"Conversation discussed: {kb_field}",
                        InsightCategory.BUSINESS_CONTEXT,
                        LearningEventType.PATTERN_DETECTED,
                        c.TOPIC_DISCUSSED_CONFIDENCE,
                        source_section="conversation.assistant_message",
                        discussed_field=kb_field,
                        type="topic_discussed",
                    )
                )

    return insights


async def extract_conversation_insights(
    extractor: ConversationInsightExtractor,
    exchange: ConversationExchange,
    knowledge_base: Optional[KnowledgeBase] = None,
) -> list[ExtractedInsight]:
    """LLM extraction with keyword fallback; trivial exchanges yield nothing."""
    if is_trivial_message(exchange.user_message):
        return []
    insights = await extractor.extract(exchange, knowledge_base=knowledge_base)
    if insights:
        return insights
    return keyword_insights(exchange)
