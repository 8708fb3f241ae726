"""Stage 5: client package assembly.

Pure data transformation over the stage 1-4 outputs; no LLM call.
"""

import copy
from typing import Any, Optional

from va_advisor.models.intake import IntakeForm
from va_advisor.models.pipeline import (
    AnalysisMetadata,
    Architecture,
    ClassificationResult,
    ClientPackage,
    DedicatedArchitecture,
    DiscoveryResult,
    JobDescription,
    Preview,
    ProjectsArchitecture,
    ProjectSpecifications,
    ServiceType,
    Specification,
    UnicornArchitecture,
    UnicornSpecification,
    ValidationResult,
)

STAGES_COMPLETED = [
    "Discovery",
    "Service Classification",
    "Architecture",
    "Specification Generation",
    "Validation",
]

_EM_DASH = "\u2014"


def _dump(model: Any) -> Any:
    if hasattr(model, "model_dump"):
        return model.model_dump(mode="json")
    return model


def _text_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


# ------------------------------------------------------------------
# Executive summary
# ------------------------------------------------------------------


def generate_executive_summary(discovery: DiscoveryResult, intake: IntakeForm) -> dict:
    context = discovery.business_context
    clusters = discovery.task_analysis.task_clusters
    sop = discovery.sop_insights

    if sop is not None:
        sop_status = {
            "has_sops": True,
            "pain_points": sop.pain_points,
            "documentation_gaps": sop.documentation_gaps,
            "summary": (
                f"Based on their SOP documentation, we've identified {len(sop.pain_points)} "
                f"process pain points and {len(sop.documentation_gaps)} documentation gaps "
                "that need addressing."
            ),
        }
    else:
        sop_status = {
            "has_sops": False,
            "pain_points": [],
            "documentation_gaps": [],
            "summary": (
                "No existing SOPs were provided, suggesting documentation will be a "
                "Day 1 priority."
            ),
        }

    return {
        "company_stage": context.company_stage.value,
        "outcome_90d": intake.outcome_90d or "",
        "primary_bottleneck": context.primary_bottleneck,
        "workflow_analysis": (
            f"Our analysis reveals {len(clusters)} distinct workflow clusters across "
            f"{len(intake.tasks_top5)} key tasks, with hidden complexity around "
            f"{context.hidden_complexity or 'workflow coordination'}."
        ),
        "sop_status": sop_status,
        "role_recommendation": (
            "The service structure we're recommending is designed specifically to unblock "
            f"{context.primary_bottleneck} while building sustainable systems for "
            f"{context.growth_indicators}."
        ),
    }


# ------------------------------------------------------------------
# Implementation plan
# ------------------------------------------------------------------


def generate_next_steps(
    validation: ValidationResult,
    discovery: DiscoveryResult,
    service_type: ServiceType,
    agency_name: str,
) -> list[dict]:
    steps = [
        {
            "step": "Review and approve service structure",
            "owner": "Client",
            "timeline": "Next 2 days",
            "output": f"Confirmed {service_type.value} engagement",
        },
        {
            "step": "Answer clarifying questions",
            "owner": "Client",
            "timeline": "Next 3 days",
            "output": f"{len(discovery.context_gaps)} questions answered",
        },
    ]

    missing_tools = validation.consistency_checks.tool_alignment.missing_from_specs
    if missing_tools:
        steps.append(
            {
                "step": "Clarify tool access and training",
                "owner": "Client",
                "timeline": "Before engagement starts",
                "output": "Confirmed: " + ", ".join(missing_tools),
            }
        )

    if discovery.sop_insights is not None and discovery.sop_insights.documentation_gaps:
        steps.append(
            {
                "step": "Document critical workflows",
                "owner": "Client",
                "timeline": "Week 1 of engagement",
                "output": ", ".join(discovery.sop_insights.documentation_gaps[:3]) + " documented",
            }
        )

    if service_type == ServiceType.PROJECTS_ON_DEMAND:
        steps.extend(
            [
                {
                    "step": "Prioritize and schedule projects",
                    "owner": f"Client + {agency_name}",
                    "timeline": "Within 48h of approval",
                    "output": "Project execution timeline confirmed",
                },
                {
                    "step": "Assign specialist resources",
                    "owner": agency_name,
                    "timeline": "Before each project kickoff",
                    "output": "Project teams confirmed",
                },
            ]
        )
    else:
        steps.extend(
            [
                {
                    "step": "Post role(s) and begin sourcing",
                    "owner": agency_name,
                    "timeline": "Within 48h of approval",
                    "output": "Active candidate pipeline",
                },
                {
                    "step": "Set up KPI tracking infrastructure",
                    "owner": "Client + VA",
                    "timeline": "Week 1 of onboarding",
                    "output": "Dashboard/tracking system live",
                },
            ]
        )

    return steps


def _first_task(jd: JobDescription) -> str:
    if jd.responsibilities and jd.responsibilities[0].details:
        first = jd.responsibilities[0].details[0].split(_EM_DASH)[0].strip()
        if first:
            return first
    return "Initial project"


def generate_onboarding_roadmap(specification: Specification) -> dict:
    if isinstance(specification, ProjectSpecifications):
        return {
            "week_1": {},
            "week_2": {},
            "week_3_4": {},
            "project_kickoff": {
                "All Projects": [
                    "Confirm project scope and deliverables with client",
                    "Verify access to required tools and resources",
                    "Establish communication protocol and milestone review schedule",
                ]
            },
            "execution_phase": {
                "All Projects": [
                    "Regular progress updates at defined milestones",
                    "Client review and feedback on deliverables",
                    "Adjust timeline if dependencies surface",
                ]
            },
            "completion": {
                "All Projects": [
                    "Final deliverable submission with documentation",
                    "Client acceptance and sign-off",
                    "Post-project review and lessons learned",
                ]
            },
        }

    if isinstance(specification, UnicornSpecification):
        jd = specification.core_va_jd
        return {
            "week_1": {
                jd.title: [
                    f"Grant access to: {', '.join(t.tool for t in jd.tools)}",
                    "Introduce team support structure and request process",
                    f"Complete setup: {', '.join(jd.communication_structure.tools)}",
                ]
            },
            "week_2": {
                jd.title: [
                    "Shadow core workflows",
                    f"First hands-on task: {_first_task(jd)}",
                    "Submit first team support request for specialized task",
                ]
            },
            "week_3_4": {
                jd.title: [
                    "Take ownership of core recurring work",
                    "Establish rhythm with team specialists",
                    "30-day check-in on core outcomes and team utilization",
                ]
            },
        }

    jd = specification
    first_category = jd.responsibilities[0].category if jd.responsibilities else ""
    return {
        "week_1": {
            jd.title: [
                f"Grant access to: {', '.join(t.tool for t in jd.tools)}",
                f"Share SOPs for: {first_category or 'core workflows'}",
                f"Complete setup: {', '.join(jd.communication_structure.tools)}",
            ]
        },
        "week_2": {
            jd.title: [
                "Shadow existing workflows and document understanding",
                f"First hands-on task: {_first_task(jd)}",
                f"Establish {jd.communication_structure.weekly_sync} cadence",
            ]
        },
        "week_3_4": {
            jd.title: [
                f"Take ownership of: {jd.primary_outcome}",
                f"Begin tracking: {', '.join(k.metric for k in jd.kpis[:2])}",
                "30-day check-in against success indicators",
            ]
        },
    }


def generate_milestones(service_type: ServiceType, specification: Specification) -> dict:
    if service_type == ServiceType.DEDICATED_VA:
        return {
            "week_2": "Initial setup and tool access complete",
            "week_4": "First workflow/deliverable shipped",
            "week_8": "Independent execution on core responsibilities",
            "week_12": "90-day outcomes on track",
        }

    if service_type == ServiceType.PROJECTS_ON_DEMAND:
        milestones = {}
        projects = (
            specification.projects
            if isinstance(specification, ProjectSpecifications)
            else []
        )
        for index, project in enumerate(projects, start=1):
            milestones[f"project_{index}_kickoff"] = (
                f"{project.project_name}: Scope confirmed, resources allocated"
            )
            milestones[f"project_{index}_completion"] = (
                f"{project.project_name}: All deliverables accepted"
            )
        return milestones

    return {
        "week_2": "Core VA onboarded, team access established",
        "week_4": "First core workflow delivered + first team request completed",
        "week_8": "Core VA independent, team support rhythm established",
        "week_12": "90-day outcomes on track with balanced VA/team utilization",
    }


def generate_monitoring_plan(validation: ValidationResult) -> dict:
    return {
        "high_priority_risks": [
            {
                "risk": r.risk,
                "check_in": "Weekly during first month",
                "watch_for": r.early_warning_signs,
            }
            for r in validation.risk_analysis
            if r.severity == "high"
        ],
        "quality_checks": [
            {
                "checkpoint": "Week 2",
                "assess": [
                    "Are KPIs being tracked?",
                    "Is communication rhythm working?",
                    "Any tool access issues?",
                ],
            },
            {
                "checkpoint": "Week 4",
                "assess": [
                    "Is work progressing independently?",
                    "Are outcomes on track?",
                    "Any scope creep?",
                ],
            },
            {
                "checkpoint": "Week 8",
                "assess": ["Will we hit 90-day targets?", "Should structure adjust?"],
            },
        ],
        "adjustment_triggers": [
            {"trigger": a.assumption, "action": a.if_wrong}
            for a in validation.assumptions_to_validate
            if a.criticality == "high"
        ],
    }


# ------------------------------------------------------------------
# Package, preview, metadata
# ------------------------------------------------------------------


def assemble_package(
    discovery: DiscoveryResult,
    classification: ClassificationResult,
    architecture: Architecture,
    specification: Specification,
    validation: ValidationResult,
    intake: IntakeForm,
    *,
    agency_name: str,
) -> ClientPackage:
    sta = classification.service_type_analysis
    service_type = classification.service_type

    service_structure = _dump(architecture)
    if service_type == ServiceType.DEDICATED_VA:
        service_structure.pop("team_support_areas", None)

    fit_scores = sta.service_fit_scores
    return ClientPackage(
        executive_summary={
            "what_you_told_us": generate_executive_summary(discovery, intake),
            "service_recommendation": {
                "type": service_type.value,
                "confidence": sta.confidence.value if sta.confidence else None,
                "reasoning": sta.decision_logic,
                "why_not_others": {
                    "dedicated_va": _dump(fit_scores.dedicated_va),
                    "projects_on_demand": _dump(fit_scores.projects_on_demand),
                    "unicorn_va": _dump(fit_scores.unicorn_va),
                },
            },
            "key_insights": discovery.task_analysis.implicit_needs[:3],
        },
        service_structure=service_structure,
        detailed_specifications=_dump(specification),
        implementation_plan={
            "immediate_next_steps": generate_next_steps(
                validation, discovery, service_type, agency_name
            ),
            "onboarding_roadmap": generate_onboarding_roadmap(specification),
            "success_milestones": generate_milestones(service_type, specification),
        },
        risk_management={
            "risks": [_dump(r) for r in validation.risk_analysis],
            "assumptions": [_dump(a) for a in validation.assumptions_to_validate],
            "red_flags": [_dump(f) for f in validation.red_flags],
            "monitoring_plan": generate_monitoring_plan(validation),
        },
        questions_for_you=[
            *(_dump(g) for g in discovery.context_gaps),
            *(_dump(q) for q in sta.client_validation_questions),
        ],
        validation_report={
            "consistency_checks": _dump(validation.consistency_checks),
            "quality_scores": _dump(validation.quality_assessment),
            "service_type_validation": validation.service_type_validation,
        },
        appendix={
            "discovery_insights": _dump(discovery),
            "service_classification_details": _dump(classification),
            "measurement_recommendations": _dump(discovery.measurement_capability),
        },
    )


def build_preview(
    package: ClientPackage,
    discovery: DiscoveryResult,
    classification: ClassificationResult,
    architecture: Architecture,
    validation: ValidationResult,
    intake: IntakeForm,
) -> Preview:
    sta = classification.service_type_analysis
    preview = Preview(
        summary=package.executive_summary["what_you_told_us"],
        primary_outcome=intake.outcome_90d,
        service_type=classification.service_type,
        service_confidence=sta.confidence,
        service_reasoning=sta.decision_logic,
        confidence=validation.quality_assessment.overall_confidence,
        key_risks=[r.risk for r in validation.risk_analysis if r.severity == "high"][:3],
        critical_questions=[
            *(g.question for g in discovery.context_gaps[:2]),
            *(q.question for q in sta.client_validation_questions[:1]),
        ],
    )

    if isinstance(architecture, DedicatedArchitecture):
        preview.role_title = architecture.dedicated_va_role.title
        preview.hours_per_week = architecture.dedicated_va_role.hours_per_week
    elif isinstance(architecture, ProjectsArchitecture):
        preview.project_count = len(architecture.projects)
        preview.total_hours = _text_or_none(architecture.total_investment.get("hours"))
        preview.estimated_timeline = _text_or_none(architecture.total_investment.get("timeline"))
    elif isinstance(architecture, UnicornArchitecture):
        preview.core_va_title = architecture.core_va_role.title
        preview.core_va_hours = architecture.core_va_role.hours_per_week
        preview.team_support_areas = len(architecture.team_support_areas)

    return preview


def build_metadata(
    discovery: DiscoveryResult,
    classification: ClassificationResult,
    validation: ValidationResult,
    *,
    sop_processed: bool,
) -> AnalysisMetadata:
    return AnalysisMetadata(
        stages_completed=list(STAGES_COMPLETED),
        service_type=classification.service_type,
        service_classification_scores=_dump(
            classification.service_type_analysis.service_fit_scores
        ),
        hard_rule_verdict=classification.hard_rule_verdict,
        sop_processed=sop_processed,
        discovery_insights_count=len(discovery.task_analysis.task_clusters),
        risks_identified=len(validation.risk_analysis),
        quality_scores=_dump(validation.quality_assessment),
    )


def _service_type_of(analysis: dict) -> Optional[str]:
    preview = analysis.get("preview") or {}
    package = analysis.get("full_package") or {}
    structure = package.get("service_structure") or {}
    recommendation = (package.get("executive_summary") or {}).get("service_recommendation") or {}
    return (
        preview.get("service_type")
        or structure.get("service_type")
        or recommendation.get("type")
    )


def clean_team_support_areas(analysis: dict) -> dict:
    """Strip team-support fields from a Dedicated VA response body.

    Returns a cleaned deep copy; other service types are returned as-is.
    """
    if not analysis or _service_type_of(analysis) != ServiceType.DEDICATED_VA.value:
        return analysis

    cleaned = copy.deepcopy(analysis)
    preview = cleaned.get("preview")
    if isinstance(preview, dict):
        preview.pop("team_support_areas", None)
    package = cleaned.get("full_package")
    if isinstance(package, dict):
        package.pop("team_support_areas", None)
        structure = package.get("service_structure")
        if isinstance(structure, dict):
            structure.pop("team_support_areas", None)
    return cleaned
