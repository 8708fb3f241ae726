"""Learning events: persistence, decay, priority and merging into the KB."""

from va_advisor.services.learning.event_store import LearningEventStore
from va_advisor.services.learning.merger import (
    KnowledgeBaseMerger,
    LearningEventNotFoundError,
    LearningEventStateError,
    plan_merge,
)

__all__ = [
    "KnowledgeBaseMerger",
    "LearningEventNotFoundError",
    "LearningEventStateError",
    "LearningEventStore",
    "plan_merge",
]
