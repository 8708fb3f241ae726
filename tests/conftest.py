"""Shared fixtures: environment defaults, stage payloads and Supabase query mocks."""

import copy
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")

from va_advisor.models.intake import IntakeForm  # noqa: E402
from va_advisor.models.pipeline import (  # noqa: E402
    ClassificationResult,
    DedicatedArchitecture,
    DiscoveryResult,
    JobDescription,
    PipelineResult,
    ValidationResult,
)
from va_advisor.services.pipeline import assembly  # noqa: E402

INTAKE = {
    "brand": {"name": "Acme Coaching"},
    "website": None,
    "business_goal": "Free the founder from client admin",
    "outcome_90d": "Onboarding runs without the founder",
    "tasks_top5": ["Send welcome packets", "Schedule kickoff calls", "Triage inbox"],
    "requirements": "Detail oriented, Strong English",
    "weekly_hours": "20",
    "timezone": "US Eastern",
    "client_facing": "yes",
    "tools": ["HubSpot", "Slack"],
}

DISCOVERY = {
    "business_context": {
        "company_stage": "Growth",
        "primary_bottleneck": "Founder handles all client onboarding",
        "hidden_complexity": "CRM data is split across tools",
        "growth_indicators": "Doubling client count this year",
    },
    "task_analysis": {
        "task_clusters": [
            {
                "cluster_name": "Client onboarding",
                "tasks": ["Send welcome packets", "Schedule kickoff calls"],
                "workflow_type": "admin",
                "complexity_score": 5,
                "estimated_hours_weekly": 12,
            },
            {
                "cluster_name": "Inbox management",
                "tasks": ["Triage inbox"],
                "workflow_type": "admin",
                "complexity_score": "3/10",
                "estimated_hours_weekly": 8,
            },
        ],
        "skill_requirements": {
            "technical": ["HubSpot"],
            "soft": ["Communication"],
            "domain": [],
        },
        "implicit_needs": ["Documented onboarding checklist"],
    },
    "sop_insights": {
        "process_complexity": "Moderate",
        "pain_points": ["Welcome packets sent late"],
        "documentation_gaps": ["Kickoff call script"],
    },
    "context_gaps": [
        {
            "question": "Who owns the CRM today?",
            "why_it_matters": "Defines access needs",
            "assumption_if_unanswered": "The founder",
        }
    ],
    "measurement_capability": {"current_tracking": ["Spreadsheet"]},
}

CLASSIFICATION = {
    "service_type_analysis": {
        "recommended_service": "Dedicated VA",
        "confidence": "high",
        "service_fit_scores": {
            "dedicated_va": {"score": 9, "why_fits": ["Recurring admin"]},
            "projects_on_demand": {"score": 4, "why_doesnt": ["Work is ongoing"]},
            "unicorn_va": {"score": "6.5"},
        },
        "decision_logic": "Recurring admin work in a single domain",
        "client_validation_questions": [{"question": "Is 20 hours enough?"}],
    }
}

ARCHITECTURE = {
    # The model echoes the wrong type; the classified type wins
    "service_type": "Unicorn VA Service",
    "dedicated_va_role": {
        "title": "Client Operations VA",
        "hours_per_week": 20,
        "core_responsibility": "Own client onboarding",
    },
    "team_support_areas": [{"skill_category": "Design"}],
    "pros": ["Single point of contact"],
}

JOB_DESCRIPTION = {
    "title": "Client Operations VA",
    "hours_per_week": 20,
    "mission_statement": "Make onboarding effortless",
    "primary_outcome": "Onboarding runs without the founder",
    "responsibilities": [
        {"category": "Onboarding", "details": ["Send welcome packets — within 24h"]}
    ],
    "tools": [{"tool": "HubSpot", "use_case": "CRM"}],
    "kpis": [{"metric": "Days to onboard", "target": "2"}],
    "communication_structure": {"weekly_sync": "Monday sync", "tools": ["Slack"]},
}

VALIDATION = {
    "consistency_checks": {"tool_alignment": {"missing_from_specs": ["Calendly"]}},
    "risk_analysis": [
        {
            "risk": "Founder may not delegate",
            "category": "adoption",
            "severity": "High",
            "likelihood": "Medium",
            "impact": "Slow ramp",
            "early_warning_signs": ["Founder redoes tasks"],
        },
        {"risk": "Tool sprawl", "category": "operations", "severity": "low"},
    ],
    "assumptions_to_validate": [
        {
            "assumption": "HubSpot is the system of record",
            "criticality": "High",
            "validation_method": "Ask the founder",
            "if_wrong": "Re-scope tool training",
        }
    ],
    "red_flags": [
        {"flag": "No written process", "evidence": "No SOPs", "recommendation": "Document first"}
    ],
    "quality_assessment": {"specificity": 8, "overall_confidence": "High"},
}


@pytest.fixture
def stage_payloads() -> dict:
    """Fresh copies of one LLM response per stage."""
    return copy.deepcopy(
        {
            "discovery": DISCOVERY,
            "classification": CLASSIFICATION,
            "architecture": ARCHITECTURE,
            "specification": JOB_DESCRIPTION,
            "validation": VALIDATION,
        }
    )


@pytest.fixture
def intake_payload() -> dict:
    """Raw intake form as the client posts it."""
    return copy.deepcopy(INTAKE)


@pytest.fixture
def intake(intake_payload) -> IntakeForm:
    return IntakeForm.model_validate(intake_payload)


@pytest.fixture
def pipeline_result(intake, stage_payloads) -> PipelineResult:
    """A fully assembled Dedicated VA result, built without any LLM call."""
    discovery = DiscoveryResult.model_validate(stage_payloads["discovery"])
    classification = ClassificationResult.model_validate(stage_payloads["classification"])
    architecture = DedicatedArchitecture.model_validate(
        {**stage_payloads["architecture"], "service_type": "Dedicated VA"}
    )
    specification = JobDescription.model_validate(stage_payloads["specification"])
    validation = ValidationResult.model_validate(stage_payloads["validation"])

    package = assembly.assemble_package(
        discovery,
        classification,
        architecture,
        specification,
        validation,
        intake,
        agency_name="Test Agency",
    )
    return PipelineResult(
        discovery=discovery,
        classification=classification,
        architecture=architecture,
        specification=specification,
        validation=validation,
        package=package,
        preview=assembly.build_preview(
            package, discovery, classification, architecture, validation, intake
        ),
        metadata=assembly.build_metadata(
            discovery, classification, validation, sop_processed=True
        ),
    )


@pytest.fixture
def make_query():
    """Build a chainable Supabase query whose ``execute()`` returns ``data``."""

    def _make(data=None) -> MagicMock:
        query = MagicMock()
        for name in (
            "select",
            "insert",
            "update",
            "delete",
            "eq",
            "gte",
            "is_",
            "or_",
            "order",
            "range",
            "limit",
        ):
            getattr(query, name).return_value = query
        query.execute = AsyncMock(return_value=MagicMock(data=data))
        return query

    return _make
