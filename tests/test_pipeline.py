"""Tests for the intake model and the six-stage analysis pipeline."""

import copy
from unittest.mock import AsyncMock, MagicMock

import pytest

from va_advisor.models.intake import IntakeForm
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.pipeline import (
    DedicatedArchitecture,
    DiscoveryResult,
    PipelineResult,
    ProjectsArchitecture,
    ServiceType,
    UnicornSpecification,
)
from va_advisor.services.llm import LLMError, LLMErrorKind
from va_advisor.services.pipeline import (
    AnalysisFailure,
    AnalysisPipeline,
    StageProgress,
    apply_hard_rules,
    clean_team_support_areas,
    format_knowledge_base_context,
)
from va_advisor.services.pipeline.hard_rules import derive_inputs


def _make_llm(*responses) -> MagicMock:
    llm = MagicMock()
    llm.complete_json = AsyncMock(side_effect=list(responses))
    return llm


def _in_order(payloads: dict) -> list:
    return [
        payloads["discovery"],
        payloads["classification"],
        payloads["architecture"],
        payloads["specification"],
        payloads["validation"],
    ]


async def _collect(pipeline: AnalysisPipeline, intake: IntakeForm, **kwargs) -> list:
    return [event async for event in pipeline.stream(intake, **kwargs)]


# ── Intake ───────────────────────────────────────────────────────────


class TestIntakeForm:
    def test_normalizes_loose_input(self, intake):
        assert intake.weekly_hours == 20
        assert intake.client_facing is True
        assert intake.requirements == ["Detail oriented", "Strong English"]
        assert intake.is_valid

    def test_tasks_are_trimmed_and_capped(self):
        form = IntakeForm.model_validate(
            {"brand": "Acme", "tasks_top5": [" a ", "", "b", "c", "d", "e", "f"]}
        )
        assert form.brand.name == "Acme"
        assert form.tasks_top5 == ["a", "b", "c", "d", "e"]

    def test_unparseable_hours_become_zero(self):
        form = IntakeForm.model_validate({"brand": {"name": "X"}, "weekly_hours": "lots"})
        assert form.weekly_hours == 0

    def test_missing_brand_or_tasks_is_invalid(self):
        assert not IntakeForm.model_validate({"tasks_top5": ["Inbox"]}).is_valid
        assert not IntakeForm.model_validate({"brand": {"name": "Acme"}}).is_valid

    def test_unknown_keys_reach_the_prompt(self):
        form = IntakeForm.model_validate({"brand": {"name": "A"}, "budget": "2k"})
        assert form.prompt_payload()["budget"] == "2k"


# ── Hard rules ───────────────────────────────────────────────────────


class TestHardRules:
    def test_no_hours_is_projects(self):
        assert apply_hard_rules(0, False, False, 1, 1.0, False) == ServiceType.PROJECTS_ON_DEMAND

    def test_one_time_is_projects(self):
        assert apply_hard_rules(20, False, True, 1, 1.0, False) == ServiceType.PROJECTS_ON_DEMAND

    def test_recurring_narrow_skills_is_dedicated(self):
        assert apply_hard_rules(20, True, False, 3, 0.5, False) == ServiceType.DEDICATED_VA

    def test_dominant_role_with_specialists_is_unicorn(self):
        assert apply_hard_rules(30, True, False, 5, 0.7, True) == ServiceType.UNICORN_VA

    def test_no_rule_fires(self):
        assert apply_hard_rules(30, True, False, 5, 0.4, True) is None

    def test_one_time_language_is_detected(self, stage_payloads):
        form = IntakeForm.model_validate(
            {"brand": "Acme", "tasks_top5": ["One-time website migration"], "weekly_hours": 10}
        )
        discovery = DiscoveryResult.model_validate(stage_payloads["discovery"])
        inputs = derive_inputs(form, discovery)
        assert inputs.one_time is True
        assert inputs.recurring is False
        assert inputs.dominant_share == pytest.approx(0.6)


# ── Knowledge base context ───────────────────────────────────────────


class TestKnowledgeBaseContext:
    def test_no_knowledge_base(self):
        assert format_knowledge_base_context(None) == ""

    def test_populated_fields_only(self):
        kb = KnowledgeBase(
            id="kb-1",
            organization_id="org-1",
            business_name="Acme Coaching",
            tool_stack=["HubSpot", "Slack"],
        )
        context = format_knowledge_base_context(kb)
        assert "- Business Name: Acme Coaching" in context
        assert "- Existing Tools: HubSpot, Slack" in context
        assert "Industry" not in context


# ── Pipeline ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestAnalysisPipeline:
    async def test_dedicated_run_emits_progress_then_result(self, intake, stage_payloads):
        llm = _make_llm(*_in_order(stage_payloads))
        events = await _collect(AnalysisPipeline(llm, agency_name="Test Agency"), intake)

        progress = [e for e in events if isinstance(e, StageProgress)]
        assert [p.stage for p in progress] == [
            "discovery",
            "classification",
            "architecture",
            "specification",
            "validation",
            "assembly",
        ]
        assert progress[2].message == (
            "Stage 2: Designing role architecture for Dedicated VA..."
        )
        assert progress[0].to_event() == {
            "type": "progress",
            "message": "Stage 1: Running deep discovery...",
        }

        result = events[-1]
        assert isinstance(result, PipelineResult)
        assert result.service_type == ServiceType.DEDICATED_VA
        assert result.classification.hard_rule_verdict == ServiceType.DEDICATED_VA
        assert isinstance(result.architecture, DedicatedArchitecture)
        assert llm.complete_json.call_count == 5

    async def test_dedicated_package_shape(self, intake, stage_payloads):
        llm = _make_llm(*_in_order(stage_payloads))
        result = await AnalysisPipeline(llm, agency_name="Test Agency").run(intake)

        assert "team_support_areas" not in result.package.service_structure
        assert result.preview.role_title == "Client Operations VA"
        assert result.preview.hours_per_week == 20
        assert result.preview.key_risks == ["Founder may not delegate"]

        steps = [s["step"] for s in result.package.implementation_plan["immediate_next_steps"]]
        assert "Clarify tool access and training" in steps
        assert "Post role(s) and begin sourcing" in steps

        roadmap = result.package.implementation_plan["onboarding_roadmap"]
        assert "First hands-on task: Send welcome packets" in roadmap["week_2"][
            "Client Operations VA"
        ]

    async def test_sop_insights_dropped_without_sop(self, intake, stage_payloads):
        llm = _make_llm(*_in_order(stage_payloads))
        result = await AnalysisPipeline(llm, agency_name="A").run(intake)

        assert result.discovery.sop_insights is None
        assert result.metadata.sop_processed is False
        sop_status = result.package.executive_summary["what_you_told_us"]["sop_status"]
        assert sop_status["has_sops"] is False

    async def test_sop_text_reaches_discovery_prompt(self, intake, stage_payloads):
        llm = _make_llm(*_in_order(stage_payloads))
        result = await AnalysisPipeline(llm, agency_name="A").run(
            intake, sop_text="Step 1: send the welcome packet"
        )

        discovery_prompt = llm.complete_json.call_args_list[0].args[1]
        assert "Step 1: send the welcome packet" in discovery_prompt
        assert result.discovery.sop_insights.pain_points == ["Welcome packets sent late"]
        assert result.metadata.sop_processed is True

    async def test_knowledge_base_context_in_every_stage_prompt(self, intake, stage_payloads):
        kb = KnowledgeBase(id="kb-1", organization_id="org-1", primary_crm="HubSpot")
        llm = _make_llm(*_in_order(stage_payloads))
        await AnalysisPipeline(llm, agency_name="A").run(intake, knowledge_base=kb)

        for call in llm.complete_json.call_args_list[:3]:
            assert "- Primary CRM: HubSpot" in call.args[1]

    async def test_projects_on_demand(self, intake, stage_payloads):
        stage_payloads["classification"]["service_type_analysis"]["recommended_service"] = (
            "Projects on Demand"
        )
        stage_payloads["architecture"] = {
            "projects": [{"project_name": "Website refresh", "estimated_hours": "40 hours"}],
            "total_investment": {"hours": 40, "timeline": "6 weeks"},
        }
        stage_payloads["specification"] = {"projects": [{"project_name": "Website refresh"}]}
        llm = _make_llm(*_in_order(stage_payloads))

        result = await AnalysisPipeline(llm, agency_name="A").run(intake)

        assert isinstance(result.architecture, ProjectsArchitecture)
        assert result.preview.project_count == 1
        assert result.preview.total_hours == "40"
        assert result.preview.estimated_timeline == "6 weeks"
        milestones = result.package.implementation_plan["success_milestones"]
        assert milestones["project_1_kickoff"].startswith("Website refresh")

    async def test_recommendation_type_follows_classification(self, intake, stage_payloads):
        stage_payloads["classification"]["service_type_analysis"]["recommended_service"] = (
            "Projects on Demand"
        )
        stage_payloads["architecture"] = {
            "projects": [{"project_name": "Website refresh", "estimated_hours": "40 hours"}],
            "total_investment": {"hours": 40, "timeline": "6 weeks"},
        }
        stage_payloads["specification"] = {"projects": [{"project_name": "Website refresh"}]}
        llm = _make_llm(*_in_order(stage_payloads))

        result = await AnalysisPipeline(llm, agency_name="A").run(intake)

        recommended = result.classification.service_type_analysis.recommended_service
        response = result.to_response()
        summary = response["full_package"]["executive_summary"]
        assert summary["service_recommendation"]["type"] == recommended.value
        assert summary["service_recommendation"]["type"] == "Projects on Demand"
        assert response["preview"]["service_type"] == recommended.value

    async def test_unicorn_reuses_team_support_areas(self, intake, stage_payloads):
        stage_payloads["classification"]["service_type_analysis"]["recommended_service"] = (
            "Unicorn VA Service"
        )
        stage_payloads["architecture"] = {
            "core_va_role": {"title": "Core Ops VA", "hours_per_week": 30},
            "team_support_areas": [
                {"skill_category": "Design", "estimated_hours_monthly": 10}
            ],
        }
        llm = _make_llm(*_in_order(stage_payloads))

        result = await AnalysisPipeline(llm, agency_name="A").run(intake)

        assert isinstance(result.specification, UnicornSpecification)
        assert result.specification.team_support_specs[0].skill_category == "Design"
        assert result.preview.core_va_title == "Core Ops VA"
        assert result.preview.team_support_areas == 1
        assert llm.complete_json.call_count == 5

    async def test_llm_failure_aborts_later_stages(self, intake, stage_payloads):
        llm = _make_llm(
            stage_payloads["discovery"], LLMError(LLMErrorKind.RATE_LIMIT, "429")
        )
        pipeline = AnalysisPipeline(llm, agency_name="A")

        with pytest.raises(AnalysisFailure) as exc_info:
            await _collect(pipeline, intake)

        assert exc_info.value.stage == "classification"
        assert exc_info.value.error == "Rate limit exceeded"
        assert llm.complete_json.call_count == 2

    async def test_invalid_company_stage_is_parse_error(self, intake, stage_payloads):
        stage_payloads["discovery"]["business_context"]["company_stage"] = "enterprise"
        llm = _make_llm(stage_payloads["discovery"])

        with pytest.raises(AnalysisFailure) as exc_info:
            await AnalysisPipeline(llm, agency_name="A").run(intake)

        failure = exc_info.value
        assert failure.stage == "discovery"
        assert failure.error == "Failed to parse analysis results"
        assert "company_stage" in failure.details

    async def test_non_object_response_is_parse_error(self, intake, stage_payloads):
        llm = _make_llm(stage_payloads["discovery"], ["not", "an", "object"])

        with pytest.raises(AnalysisFailure) as exc_info:
            await AnalysisPipeline(llm, agency_name="A").run(intake)
        assert exc_info.value.stage == "classification"

    async def test_projects_without_projects_is_parse_error(self, intake, stage_payloads):
        stage_payloads["classification"]["service_type_analysis"]["recommended_service"] = (
            "projects"
        )
        llm = _make_llm(
            stage_payloads["discovery"], stage_payloads["classification"], {"projects": []}
        )

        with pytest.raises(AnalysisFailure) as exc_info:
            await AnalysisPipeline(llm, agency_name="A").run(intake)
        assert exc_info.value.stage == "architecture"


# ── Team support cleanup ─────────────────────────────────────────────


class TestCleanTeamSupportAreas:
    def test_dedicated_fields_removed_without_mutating_input(self):
        analysis = {
            "preview": {"service_type": "Dedicated VA", "team_support_areas": 2},
            "full_package": {
                "team_support_areas": [],
                "service_structure": {"team_support_areas": [{"skill_category": "x"}]},
            },
        }
        original = copy.deepcopy(analysis)

        cleaned = clean_team_support_areas(analysis)

        assert "team_support_areas" not in cleaned["preview"]
        assert "team_support_areas" not in cleaned["full_package"]
        assert "team_support_areas" not in cleaned["full_package"]["service_structure"]
        assert analysis == original

    def test_unicorn_untouched(self):
        analysis = {"preview": {"service_type": "Unicorn VA Service", "team_support_areas": 2}}
        assert clean_team_support_areas(analysis) is analysis

    def test_service_type_read_from_package(self):
        analysis = {
            "full_package": {
                "service_structure": {"service_type": "Dedicated VA", "team_support_areas": []}
            }
        }
        cleaned = clean_team_support_areas(analysis)
        assert "team_support_areas" not in cleaned["full_package"]["service_structure"]
