"""Tests for feedback validation and analysis refinement."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from va_advisor.models.analysis import (
    ClarificationResponse,
    FeedbackValidation,
    RefinementMessage,
    RefineResponse,
    SavedAnalysis,
)
from va_advisor.services.llm import LLMCompletion
from va_advisor.services.refinement import (
    FeedbackRejectedError,
    MissingPackageError,
    RefinementError,
    RefinementService,
    build_feedback_prompt,
    build_refinement_message,
    deduplicate_paths,
    identify_changes,
)

ORIGINAL = {
    "preview": {"summary": "Ops support", "hours": 20},
    "full_package": {
        "executive_summary": {"service_recommendation": {"type": "Dedicated VA"}},
        "detailed_specifications": {"title": "Client Operations VA", "tools": ["HubSpot"]},
    },
}

REFINED = {
    "preview": {"summary": "Ops and inbox support", "hours": 20},
    "full_package": {
        "executive_summary": {"service_recommendation": {"type": "Dedicated VA"}},
        "detailed_specifications": {
            "title": "Client Operations VA",
            "tools": ["HubSpot", "Calendly"],
        },
        "team_support_areas": [{"area": "Design"}],
    },
}

PROCEED = {
    "is_valid": True,
    "quality_score": 8,
    "feedback_type": "substantive",
    "actionable_points": ["Add Calendly to the tool list"],
    "recommendation": "proceed",
}


def _make_analysis(**overrides) -> SavedAnalysis:
    data = {
        "id": "an-2",
        "organization_id": "org-1",
        "title": "Ops VA",
        "intake_data": {"brand": {"name": "Acme Coaching"}},
        "analysis": ORIGINAL,
        "parent_analysis_id": "an-1",
        "version_number": 2,
        "knowledge_base_id": "kb-1",
    }
    data.update(overrides)
    return SavedAnalysis(**data)


def _make_service(validation=PROCEED, refined_text=None, truncated=False):
    llm = MagicMock()
    llm.complete_json = AsyncMock(return_value=validation)
    llm.complete = AsyncMock(
        return_value=LLMCompletion(
            text=refined_text if refined_text is not None else json.dumps(REFINED),
            model="claude-sonnet",
            truncated=truncated,
        )
    )
    store = MagicMock()
    store.list_refinements = AsyncMock(
        return_value=[
            RefinementMessage(
                analysis_id="an-1", role="user", content="Earlier", sequence_number=1
            ),
            RefinementMessage(
                analysis_id="an-1", role="assistant", content="{}", sequence_number=2
            ),
        ]
    )
    store.latest_version_number = AsyncMock(return_value=2)
    store.add_refinements = AsyncMock()
    store.create = AsyncMock(
        return_value=_make_analysis(id="an-3", version_number=3, analysis=REFINED)
    )
    return RefinementService(llm, store, agency_name="Test Agency"), llm, store


# ── Change detection ─────────────────────────────────────────────────


class TestIdentifyChanges:
    def test_reports_changed_leaves_and_whole_lists(self):
        changes = identify_changes(ORIGINAL, REFINED)
        assert set(changes) == {
            "preview.summary",
            "full_package.detailed_specifications.tools",
            "full_package.team_support_areas",
        }

    def test_identical(self):
        assert identify_changes(ORIGINAL, json.loads(json.dumps(ORIGINAL))) == []

    def test_removed_keys_are_ignored(self):
        assert identify_changes({"a": 1, "b": 2}, {"a": 1}) == []

    def test_deduplicate_paths(self):
        assert deduplicate_paths(["a.b", "a", "c.d", "ab"]) == ["a", "ab", "c.d"]


class TestPrompts:
    def test_feedback_prompt_names_service_and_role(self):
        prompt = build_feedback_prompt(
            "More inbox work", ["responsibilities"], ORIGINAL["full_package"]
        )
        assert "Service Type: Dedicated VA" in prompt
        assert "Role: Client Operations VA" in prompt

    def test_feedback_prompt_defaults(self):
        assert "Role: Unknown" in build_feedback_prompt("x", [], {})

    def test_refinement_message_uses_labels_and_points(self):
        message = build_refinement_message(
            ["tools", "kpis", "custom"], "raw", FeedbackValidation.model_validate(PROCEED)
        )
        assert message.startswith(
            "Please refine the following areas: Tools Required, KPIs, custom."
        )
        assert message.endswith("Feedback: Add Calendly to the tool list")

    def test_refinement_message_falls_back_to_feedback(self):
        message = build_refinement_message([], "Add Calendly", FeedbackValidation())
        assert message.endswith("Feedback: Add Calendly")


# ── Service ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestRefinementService:
    async def test_refine_stores_next_version(self):
        service, llm, store = _make_service()

        result = await service.refine(
            _make_analysis(), "Please add Calendly", ["tools"], user_id="user-1"
        )

        assert isinstance(result, RefineResponse)
        assert result.iteration == 3
        assert result.new_analysis_id == "an-3"
        assert result.message == "Analysis refined successfully! (Version 3)"
        # Team support areas are stripped from Dedicated VA packages
        assert "team_support_areas" not in result.refined_package["full_package"]

        store.list_refinements.assert_awaited_once_with("an-1")
        history = llm.complete.call_args.kwargs["history"]
        assert [m["role"] for m in history] == ["user", "assistant"]

        user_msg, assistant_msg = store.add_refinements.call_args.args[0]
        assert (user_msg.sequence_number, assistant_msg.sequence_number) == (3, 4)
        assert assistant_msg.analysis_id == "an-1"
        assert "full_package.detailed_specifications.tools" in assistant_msg.changed_sections

        args, kwargs = store.create.call_args
        assert args[:3] == ("org-1", "user-1", "Ops VA")
        assert kwargs["parent_analysis_id"] == "an-1"
        assert kwargs["version_number"] == 3
        assert kwargs["knowledge_base_id"] == "kb-1"

    async def test_clarification_skips_refinement(self):
        service, llm, store = _make_service(
            validation={
                "quality_score": 4,
                "feedback_type": "vague",
                "clarification_needed": [{"question": "Which tools?", "why": "Scope"}],
                "recommendation": "request_clarification",
            }
        )

        result = await service.refine(_make_analysis(), "make it better", ["tools"])

        assert isinstance(result, ClarificationResponse)
        assert result.questions[0].question == "Which tools?"
        assert result.quality_score == 4
        llm.complete.assert_not_called()
        store.create.assert_not_called()

    async def test_rejected_feedback(self):
        service, _, store = _make_service(
            validation={"feedback_type": "spam", "recommendation": "reject"}
        )

        with pytest.raises(FeedbackRejectedError) as exc_info:
            await service.refine(_make_analysis(), "test", [])

        body = exc_info.value.to_dict()
        assert body["error"] == "Invalid feedback"
        assert body["message"] == "Please provide meaningful feedback about the analysis."
        store.create.assert_not_called()

    async def test_unreadable_validation_proceeds(self):
        service, llm, _ = _make_service(validation=["not", "an", "object"])

        result = await service.refine(_make_analysis(), "Please add Calendly", ["tools"])

        assert isinstance(result, RefineResponse)
        llm.complete.assert_awaited_once()

    async def test_truncated_response(self):
        service, _, store = _make_service(truncated=True)

        with pytest.raises(RefinementError, match="too large"):
            await service.refine(_make_analysis(), "Please add Calendly", ["tools"])
        store.create.assert_not_called()

    async def test_response_without_package(self):
        service, _, _ = _make_service(refined_text='{"answer": "done"}')

        with pytest.raises(RefinementError, match="expected analysis structure"):
            await service.refine(_make_analysis(), "Please add Calendly", ["tools"])

    async def test_unparseable_response(self):
        service, _, _ = _make_service(refined_text="I could not do that")

        with pytest.raises(RefinementError, match="Failed to parse"):
            await service.refine(_make_analysis(), "Please add Calendly", ["tools"])

    async def test_missing_package(self):
        service, llm, _ = _make_service()

        with pytest.raises(MissingPackageError):
            await service.refine(_make_analysis(analysis={"preview": {}}), "x", [])
        llm.complete_json.assert_not_called()
