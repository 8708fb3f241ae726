"""Intake-to-recommendation analysis pipeline."""

from va_advisor.services.pipeline.assembly import clean_team_support_areas
from va_advisor.services.pipeline.errors import AnalysisFailure, ParseError
from va_advisor.services.pipeline.hard_rules import apply_hard_rules
from va_advisor.services.pipeline.kb_context import format_knowledge_base_context
from va_advisor.services.pipeline.orchestrator import (
    AnalysisPipeline,
    PipelineEvent,
    StageProgress,
)

__all__ = [
    "AnalysisFailure",
    "AnalysisPipeline",
    "ParseError",
    "PipelineEvent",
    "StageProgress",
    "apply_hard_rules",
    "clean_team_support_areas",
    "format_knowledge_base_context",
]
