from va_advisor.models.intake import IntakeForm, WebsiteContent
from va_advisor.models.knowledge_base import KnowledgeBase, KnowledgeBaseUsage
from va_advisor.models.learning import (
    ApplyEventsResult,
    CreateEventsResult,
    ExtractedInsight,
    InsightCategory,
    LearningEvent,
    LearningEventType,
    RestoreEventResult,
    SourceType,
)
from va_advisor.models.pipeline import (
    AnalysisMetadata,
    ClassificationResult,
    ClientPackage,
    DiscoveryResult,
    PipelineResult,
    Preview,
    ServiceType,
    ValidationResult,
)

__all__ = [
    # Intake models
    "IntakeForm",
    "WebsiteContent",
    # Knowledge base models
    "KnowledgeBase",
    "KnowledgeBaseUsage",
    # Learning models
    "ApplyEventsResult",
    "CreateEventsResult",
    "ExtractedInsight",
    "InsightCategory",
    "LearningEvent",
    "LearningEventType",
    "RestoreEventResult",
    "SourceType",
    # Pipeline models
    "AnalysisMetadata",
    "ClassificationResult",
    "ClientPackage",
    "DiscoveryResult",
    "PipelineResult",
    "Preview",
    "ServiceType",
    "ValidationResult",
]
