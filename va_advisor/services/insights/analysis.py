"""Insights from a completed JD analysis.

A deterministic walk over the stage outputs: every populated field of
interest becomes one insight with the fixed confidence from
:mod:`va_advisor.services.insights.constants`.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from va_advisor.models.learning import ExtractedInsight, InsightCategory, LearningEventType
from va_advisor.models.pipeline import (
    ClassificationResult,
    DiscoveryResult,
    PipelineResult,
    ValidationResult,
)
from va_advisor.services.insights import constants as c

logger = logging.getLogger(__name__)


def _insight(
    text: str,
    category: InsightCategory,
    event_type: LearningEventType,
    confidence: int,
    /,
    **metadata: Any,
) -> ExtractedInsight:
    return ExtractedInsight(
        insight=text,
        category=category,
        event_type=event_type,
        confidence=confidence,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def _format_score(score: float) -> str:
    return f"{score:g}"


# ------------------------------------------------------------------
# Per-stage walkers
# ------------------------------------------------------------------


def _from_discovery(discovery: DiscoveryResult) -> list[ExtractedInsight]:
    insights: list[ExtractedInsight] = []
    bc = discovery.business_context
    section = "discovery.business_context"

    insights.append(
        _insight(
            f"Company stage identified: {bc.company_stage.value}",
            InsightCategory.BUSINESS_CONTEXT,
            LearningEventType.INSIGHT_GENERATED,
            c.COMPANY_STAGE_CONFIDENCE,
            source_section=section,
            company_stage=bc.company_stage.value,
        )
    )
    if bc.primary_bottleneck:
        insights.append(
            _insight(
                f"Primary bottleneck identified: {bc.primary_bottleneck}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                c.BOTTLENECK_CONFIDENCE,
                source_section=section,
                bottleneck=bc.primary_bottleneck,
            )
        )
    if bc.growth_indicators:
        insights.append(
            _insight(
                f"Growth indicators: {bc.growth_indicators}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                c.GROWTH_INDICATORS_CONFIDENCE,
                source_section=section,
                growth_indicators=bc.growth_indicators,
            )
        )
    if bc.hidden_complexity:
        insights.append(
            _insight(
                f"Hidden complexity identified: {bc.hidden_complexity}",
                InsightCategory.BUSINESS_CONTEXT,
                LearningEventType.INSIGHT_GENERATED,
                c.HIDDEN_COMPLEXITY_CONFIDENCE,
                source_section=section,
                hidden_complexity=bc.hidden_complexity,
            )
        )

    ta = discovery.task_analysis
    for index, cluster in enumerate(ta.task_clusters):
        if not cluster.cluster_name:
            continue
        insights.append(
            _insight(
                f"Task cluster identified: {cluster.cluster_name} "
                f"({len(cluster.tasks)} tasks, {cluster.workflow_type} workflow)",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                c.TASK_CLUSTER_CONFIDENCE,
                source_section="discovery.task_analysis.task_clusters",
                cluster_index=index,
                cluster_name=cluster.cluster_name,
                workflow_type=cluster.workflow_type,
                complexity_score=cluster.complexity_score,
                estimated_hours=cluster.estimated_hours_weekly,
            )
        )
    for need in ta.implicit_needs:
        insights.append(
            _insight(
                f"Implicit need identified: {need}",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                c.IMPLICIT_NEED_CONFIDENCE,
                source_section="discovery.task_analysis.implicit_needs",
                implicit_need=need,
            )
        )

    skills = ta.skill_requirements
    total_skills = len(skills.technical) + len(skills.soft) + len(skills.domain)
    if total_skills:
        insights.append(
            _insight(
                f"Skill requirements identified: {total_skills} total skills "
                f"({len(skills.technical)} technical, {len(skills.soft)} soft, "
                f"{len(skills.domain)} domain)",
                InsightCategory.WORKFLOW_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                c.SKILL_SUMMARY_CONFIDENCE,
                source_section="discovery.task_analysis.skill_requirements",
                skill_counts={
                    "technical": len(skills.technical),
                    "soft": len(skills.soft),
                    "domain": len(skills.domain),
                },
            )
        )

    sop = discovery.sop_insights
    if sop is not None:
        if sop.process_complexity:
            insights.append(
                _insight(
                    f"SOP process complexity: {sop.process_complexity}",
                    InsightCategory.PROCESS_OPTIMIZATION,
                    LearningEventType.OPTIMIZATION_FOUND,
                    c.PROCESS_COMPLEXITY_CONFIDENCE,
                    source_section="discovery.sop_insights",
                    process_complexity=sop.process_complexity,
                )
            )
        for pain_point in sop.pain_points:
            insights.append(
                _insight(
                    f"Process pain point identified: {pain_point}",
                    InsightCategory.PROCESS_OPTIMIZATION,
                    LearningEventType.OPTIMIZATION_FOUND,
                    c.PAIN_POINT_CONFIDENCE,
                    source_section="discovery.sop_insights.pain_points",
                    pain_point=pain_point,
                )
            )
        for gap in sop.documentation_gaps:
            insights.append(
                _insight(
                    f"Documentation gap identified: {gap}",
                    InsightCategory.PROCESS_OPTIMIZATION,
                    LearningEventType.OPTIMIZATION_FOUND,
                    c.DOCUMENTATION_GAP_CONFIDENCE,
                    source_section="discovery.sop_insights.documentation_gaps",
                    documentation_gap=gap,
                )
            )

    return insights


def _from_classification(classification: ClassificationResult) -> list[ExtractedInsight]:
    insights: list[ExtractedInsight] = []
    sta = classification.service_type_analysis
    level = sta.confidence.value if sta.confidence else None

    insights.append(
        _insight(
            f"Service type recommendation: {sta.recommended_service.value} "
            f"(confidence: {level or 'unknown'})",
            InsightCategory.SERVICE_PATTERNS,
            LearningEventType.PATTERN_DETECTED,
            c.SERVICE_RECOMMENDATION_CONFIDENCE.get(
                level, c.SERVICE_RECOMMENDATION_DEFAULT_CONFIDENCE
            ),
            source_section="service_type_analysis",
            recommended_service=sta.recommended_service.value,
            confidence=level,
            decision_logic=sta.decision_logic or None,
        )
    )

    for service_key in ("dedicated_va", "projects_on_demand", "unicorn_va"):
        fit = getattr(sta.service_fit_scores, service_key)
        if not fit.score:
            continue
        if fit.score >= 8:
            confidence = c.FIT_SCORE_HIGH_CONFIDENCE
        elif fit.score >= 6:
            confidence = c.FIT_SCORE_MEDIUM_CONFIDENCE
        else:
            confidence = c.FIT_SCORE_LOW_CONFIDENCE
        insights.append(
            _insight(
                f"Service fit score for {service_key}: {_format_score(fit.score)}/10",
                InsightCategory.SERVICE_PATTERNS,
                LearningEventType.PATTERN_DETECTED,
                confidence,
                source_section="service_type_analysis.service_fit_scores",
                service_type=service_key,
                score=fit.score,
            )
        )

    return insights


def _from_validation(validation: ValidationResult) -> list[ExtractedInsight]:
    insights: list[ExtractedInsight] = []

    for risk in validation.risk_analysis:
        if not risk.risk:
            continue
        if risk.severity == "high":
            insights.append(
                _insight(
                    f"High-severity risk identified: {risk.risk} (category: {risk.category})",
                    InsightCategory.RISK_MANAGEMENT,
                    LearningEventType.INCONSISTENCY_FIXED,
                    c.HIGH_SEVERITY_RISK_CONFIDENCE,
                    source_section="validation.risk_analysis",
                    risk=risk.risk,
                    severity=risk.severity,
                    category=risk.category,
                    likelihood=risk.likelihood,
                    impact=risk.impact,
                )
            )
        else:
            insights.append(
                _insight(
                    f"Risk identified: {risk.risk} ({risk.severity} severity)",
                    InsightCategory.RISK_MANAGEMENT,
                    LearningEventType.INSIGHT_GENERATED,
                    c.RISK_CONFIDENCE,
                    source_section="validation.risk_analysis",
                    risk=risk.risk,
                    severity=risk.severity,
                    category=risk.category,
                )
            )

    for assumption in validation.assumptions_to_validate:
        if assumption.criticality != "high" or not assumption.assumption:
            continue
        insights.append(
            _insight(
                f"Critical assumption requiring validation: {assumption.assumption}",
                InsightCategory.RISK_MANAGEMENT,
                LearningEventType.INSIGHT_GENERATED,
                c.CRITICAL_ASSUMPTION_CONFIDENCE,
                source_section="validation.assumptions_to_validate",
                criticality=assumption.criticality,
                validation_method=assumption.validation_method,
            )
        )

    for flag in validation.red_flags:
        if not flag.flag:
            continue
        insights.append(
            _insight(
                f"Red flag identified: {flag.flag}",
                InsightCategory.RISK_MANAGEMENT,
                LearningEventType.INCONSISTENCY_FIXED,
                c.RED_FLAG_CONFIDENCE,
                source_section="validation.red_flags",
                risk=flag.flag,
                evidence=flag.evidence,
                recommendation=flag.recommendation,
            )
        )

    return insights


# ------------------------------------------------------------------
# Entry points
# ------------------------------------------------------------------


def extract_from_stages(
    discovery: Optional[DiscoveryResult],
    classification: Optional[ClassificationResult],
    validation: Optional[ValidationResult],
) -> list[ExtractedInsight]:
    insights: list[ExtractedInsight] = []
    if discovery is not None:
        insights.extend(_from_discovery(discovery))
    if classification is not None:
        insights.extend(_from_classification(classification))
    if validation is not None:
        insights.extend(_from_validation(validation))
    return insights


def extract_from_pipeline_result(result: PipelineResult) -> list[ExtractedInsight]:
    return extract_from_stages(result.discovery, result.classification, result.validation)


def _parse_section(model: type, data: Any, name: str):
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.info(f"Skipping {name} for insight extraction: {e.error_count()} validation errors")
        return None


def extract_from_analysis(analysis: dict) -> list[ExtractedInsight]:
    """Insights from a stored ``{preview, full_package, metadata}`` body.

    Sections that no longer validate are skipped; the rest still yield
    insights.
    """
    if not isinstance(analysis, dict):
        return []
    package = analysis.get("full_package") or analysis
    appendix = package.get("appendix") or {}
    risk_management = package.get("risk_management") or {}

    discovery = _parse_section(DiscoveryResult, appendix.get("discovery_insights"), "discovery")
    classification = _parse_section(
        ClassificationResult, appendix.get("service_classification_details"), "classification"
    )
    validation = _parse_section(
        ValidationResult,
        {
            "risk_analysis": risk_management.get("risks") or [],
            "assumptions_to_validate": risk_management.get("assumptions") or [],
            "red_flags": risk_management.get("red_flags") or [],
        },
        "validation",
    )
    return extract_from_stages(discovery, classification, validation)
