"""Processing priority for learning events."""

from enum import IntEnum
from typing import Any, Optional, Sequence, TypeVar

from va_advisor.models.learning import LearningEvent, LearningEventType, SourceType

E = TypeVar("E", bound=LearningEvent)

_IMPORTANT_CATEGORIES = {"business_context", "process_optimization", "risk_management"}
_IMPORTANT_EVENT_TYPES = {
    LearningEventType.INSIGHT_GENERATED,
    LearningEventType.OPTIMIZATION_FOUND,
}
_HIGH_VALUE_SOURCES = {SourceType.JOB_DESCRIPTION, SourceType.CHAT_CONVERSATION}


class EventPriority(IntEnum):
    """Lower value is processed first."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


def calculate_event_priority(
    confidence: int,
    category: str,
    event_type: LearningEventType,
    source_type: Optional[SourceType] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> EventPriority:
    metadata = metadata or {}

    if confidence >= 90:
        if (
            category == "risk_management"
            or (category == "business_context" and metadata.get("bottleneck"))
            or event_type == LearningEventType.INCONSISTENCY_FIXED
        ):
            return EventPriority.CRITICAL
        if source_type in _HIGH_VALUE_SOURCES:
            return EventPriority.HIGH

    if confidence >= 85:
        if category in _IMPORTANT_CATEGORIES or event_type in _IMPORTANT_EVENT_TYPES:
            return EventPriority.HIGH

    if confidence >= 80:
        return EventPriority.MEDIUM

    return EventPriority.LOW


def event_priority(event: LearningEvent) -> EventPriority:
    return calculate_event_priority(
        event.confidence,
        event.category,
        event.event_type,
        event.source_type,
        event.metadata,
    )


def sort_events_by_priority(events: Sequence[E]) -> list[E]:
    """Critical first, then by confidence (highest first). Stable otherwise."""
    return sorted(events, key=lambda e: (event_priority(e), -e.confidence))
