"""Tests for SOP generation, storage, versioning and insights."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from va_advisor.models.analysis import SavedAnalysis
from va_advisor.models.knowledge_base import KnowledgeBase
from va_advisor.models.learning import InsightCategory, LearningEvent, SourceType
from va_advisor.models.sop import (
    GenerateSOPRequest,
    SavedSOP,
    SOPFormData,
    UpdateSOPRequest,
)
from va_advisor.services.analysis_store import AnalysisNotFoundError
from va_advisor.services.document_text_extractor import DocumentTextExtractor
from va_advisor.services.insights import extract_from_form, extract_from_sop
from va_advisor.services.insights.sop import split_tools
from va_advisor.services.learning.field_mapping import map_event_to_field
from va_advisor.services.llm import LLMCompletion, LLMError, LLMErrorKind
from va_advisor.services.pdf_report import render_sop_pdf, sop_filename
from va_advisor.services.sop_generation import (
    TRUNCATION_NOTE,
    SOPGenerationError,
    SOPGenerator,
    SOPReviewer,
    build_user_prompt,
    convert_to_html,
    looks_like_html,
    markdown_to_html,
    strip_code_fences,
)
from va_advisor.services.sop_service import SOPService, SOPStateError
from va_advisor.services.sop_store import SOPNotFoundError, SOPStore

FORM = {
    "sop_title": "Client Onboarding",
    "process_overview": "Welcome a newly signed client and get them ready for kickoff",
    "primary_role": "Client Success VA",
    "main_steps": "1. Send welcome email\n2. Create CRM record\n3. Book kickoff call",
    "tools_used": "HubSpot, Slack and Google Docs",
    "frequency": "Per new client",
    "trigger": "Signed contract",
    "success_criteria": "Kickoff booked within 48 hours",
}

SOP_MARKDOWN = (
    "# Client Onboarding\n\n"
    "## Procedure\n\n"
    "1. Send welcome email\n"
    "2. Book kickoff call\n\n"
    "| KPI | Target |\n|---|---|\n| Time to kickoff | 48 hours |\n"
)


def _form(**overrides) -> SOPFormData:
    return SOPFormData.model_validate({**FORM, **overrides})


def _sop(**overrides) -> SavedSOP:
    data = {
        "id": "sop-1",
        "organization_id": "org-1",
        "created_by": "user-1",
        "title": "Client Onboarding",
        "content": {"markdown": SOP_MARKDOWN, "html": "<h1>Client Onboarding</h1>"},
        "intake_data": FORM,
        "version_number": 1,
        "root_sop_id": "sop-1",
        "is_current_version": True,
    }
    data.update(overrides)
    return SavedSOP.model_validate(data)


def _row(sop_id: str, created_at: str, root=None, version=1, current=False, draft=False) -> dict:
    return {
        "id": sop_id,
        "organization_id": "org-1",
        "title": f"SOP {root or sop_id}",
        "content": {"html": "<p>x</p>"},
        "version_number": version,
        "root_sop_id": root or sop_id,
        "is_current_version": current,
        "is_draft": draft,
        "created_at": created_at,
    }


def _make_store(query) -> SOPStore:
    supabase = MagicMock()
    supabase.table.return_value = query
    return SOPStore(supabase)


def _llm(text: str = SOP_MARKDOWN, truncated: bool = False) -> MagicMock:
    llm = MagicMock(extraction_model="claude-haiku")
    llm.complete = AsyncMock(
        return_value=LLMCompletion(text=text, model="claude-sonnet", truncated=truncated)
    )
    llm.complete_text = AsyncMock()
    llm.complete_json = AsyncMock(return_value={"suggestions": []})
    return llm


# ── Form ─────────────────────────────────────────────────────────────


class TestSOPFormData:
    def test_first_missing_field_is_reported_by_label(self):
        form = _form(main_steps="  ", frequency="")
        assert form.missing_field() == "Main Steps"

    def test_title_only(self):
        form = SOPFormData(sop_title="Client Onboarding")
        assert form.missing_field() == "Process Overview"
        assert form.missing_field(title_only=True) is None
        assert SOPFormData().missing_field(title_only=True) == "SOP Title"

    def test_list_values_are_joined(self):
        assert _form(tools_used=["HubSpot", "Slack"]).tools_used == "HubSpot, Slack"

    def test_should_save(self):
        assert not GenerateSOPRequest(form_data=FORM).should_save
        assert GenerateSOPRequest(form_data=FORM, save_as_draft=True).should_save


# ── Prompt ───────────────────────────────────────────────────────────


class TestBuildUserPrompt:
    def test_process_information(self):
        prompt = build_user_prompt(_form(department="Client Success"))

        assert "**SOP Title**: Client Onboarding" in prompt
        assert "**Process Trigger**: Signed contract" in prompt
        assert "**Department/Team**: Client Success" in prompt
        assert "2. Create CRM record" in prompt
        assert "## Organization Context" not in prompt
        assert "## Linked Job Description Analysis" not in prompt

    def test_only_populated_optional_sections(self):
        prompt = build_user_prompt(_form(common_mistakes="Kickoff booked before payment"))

        assert "## Common Mistakes & Failure Points\nKickoff booked before payment" in prompt
        assert "## Tips & Best Practices" not in prompt

    def test_organization_context(self):
        kb = KnowledgeBase(
            id="kb-1",
            organization_id="org-1",
            business_name="Acme Coaching",
            industry="Other",
            industry_other="Executive coaching",
            tool_stack=["HubSpot", "Slack"],
            is_regulated=True,
            regulated_industry="Finance",
        )

        prompt = build_user_prompt(_form(), knowledge_base=kb)

        assert "**Business Name**: Acme Coaching" in prompt
        assert "**Industry**: Other - Executive coaching" in prompt
        assert "**Organization's Primary Tools**: HubSpot, Slack" in prompt
        assert "**Regulated Industry**: Yes (Finance)" in prompt

    def test_linked_job_analysis(self, pipeline_result):
        prompt = build_user_prompt(
            _form(),
            job_analysis=pipeline_result.to_response(),
            job_intake={"brand": {"name": "Acme Coaching"}, "tools": ["HubSpot", "Slack"]},
        )

        assert "## Linked Job Description Analysis" in prompt
        assert "**Role Title**: Client Operations VA" in prompt
        assert "**Service Type**: Dedicated VA" in prompt
        assert "**Tools/Software**: HubSpot, Slack" in prompt


# ── Markdown to HTML ─────────────────────────────────────────────────


class TestHtmlConversion:
    def test_strip_code_fences(self):
        assert strip_code_fences("```markdown\n# Title\n```") == "# Title"
        assert strip_code_fences("# Title") == "# Title"

    def test_markdown_to_html(self):
        html = markdown_to_html(SOP_MARKDOWN)

        assert "<h1>Client Onboarding</h1>" in html
        assert "<ol>" in html
        assert "<table>" in html

    @pytest.mark.parametrize(
        "html, expected",
        [
            ("<h1>Title</h1>", True),
            ("", False),
            ("plain text", False),
            ("<p>```still markdown```</p>", False),
            ("<pre><code># Title</code></pre>", False),
        ],
    )
    def test_looks_like_html(self, html, expected):
        assert looks_like_html(html) is expected


@pytest.mark.asyncio
class TestConvertToHtml:
    async def test_library_output_is_used(self):
        llm = _llm()
        html = await convert_to_html(SOP_MARKDOWN, llm)

        assert "<h2>Procedure</h2>" in html
        llm.complete_text.assert_not_called()

    async def test_fenced_document_falls_back_to_llm(self):
        llm = _llm()
        llm.complete_text.return_value = "```html\n<h1>Client Onboarding</h1>\n```"

        html = await convert_to_html("```markdown\n# Client Onboarding\n```", llm)

        assert html == "<h1>Client Onboarding</h1>"
        assert llm.complete_text.call_args.kwargs["model"] == "claude-haiku"
        assert llm.complete_text.call_args.kwargs["temperature"] == 0

    async def test_both_conversions_failing(self):
        llm = _llm()
        llm.complete_text.side_effect = LLMError(LLMErrorKind.SERVER, "503")

        with pytest.raises(SOPGenerationError):
            await convert_to_html("```markdown\n# Client Onboarding\n```", llm)


# ── Generator and reviewer ───────────────────────────────────────────


@pytest.mark.asyncio
class TestSOPGenerator:
    async def test_generate(self):
        llm = _llm(text=f"```markdown\n{SOP_MARKDOWN}```")

        result = await SOPGenerator(llm).generate(_form())

        assert result.markdown.startswith("# Client Onboarding")
        assert "<h1>Client Onboarding</h1>" in result.html
        assert result.model == "claude-sonnet"
        assert not result.truncated
        kwargs = llm.complete.call_args.kwargs
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 8000
        assert kwargs["json_mode"] is False

    async def test_truncated_response_is_flagged(self):
        result = await SOPGenerator(_llm(truncated=True)).generate(_form())

        assert result.truncated
        assert result.markdown.endswith(TRUNCATION_NOTE)
        assert "may have been truncated" in result.html

    async def test_empty_response(self):
        with pytest.raises(SOPGenerationError):
            await SOPGenerator(_llm(text="  ")).generate(_form())

    async def test_provider_errors_propagate(self):
        llm = _llm()
        llm.complete.side_effect = LLMError(LLMErrorKind.RATE_LIMIT, "429")

        with pytest.raises(LLMError):
            await SOPGenerator(llm).generate(_form())


@pytest.mark.asyncio
class TestSOPReviewer:
    async def test_suggestions_without_replacement_are_dropped(self):
        llm = _llm()
        llm.complete_json.return_value = {
            "suggestions": [
                {"type": "grammar", "original": "teh", "suggested": "the", "reason": "Typo"},
                {"type": "tone", "original": "ASAP"},
            ]
        }

        suggestions = await SOPReviewer(llm).extract("Send teh welcome email ASAP")

        assert [(s.type, s.suggested) for s in suggestions] == [("grammar", "the")]
        assert llm.complete_json.call_args.kwargs["temperature"] == 0.3

    async def test_failure_yields_no_suggestions(self):
        llm = _llm()
        llm.complete_json.side_effect = ValueError("no JSON")

        assert await SOPReviewer(llm).extract("Send the welcome email") == []

    async def test_blank_content_is_skipped(self):
        llm = _llm()

        assert await SOPReviewer(llm).extract("   ") == []
        llm.complete_json.assert_not_called()


# ── Store ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestSOPStore:
    async def test_create_starts_a_chain(self, make_query):
        query = make_query([{**_row("sop-1", "2026-05-01T00:00:00+00:00"), "root_sop_id": None}])

        sop = await _make_store(query).create(
            "org-1", "user-1", "Client Onboarding", {"html": "<p>x</p>"}, is_current_version=True
        )

        assert sop.root_sop_id == "sop-1"
        query.update.assert_called_once_with({"root_sop_id": "sop-1"})
        row = query.insert.call_args.args[0]
        assert row["is_current_version"] is True
        assert row["version_number"] == 1

    async def test_create_in_existing_chain(self, make_query):
        query = make_query([_row("sop-3", "2026-05-03T00:00:00+00:00", root="sop-1", version=3)])

        sop = await _make_store(query).create(
            "org-1", "user-1", "Client Onboarding", {}, version_number=3, root_sop_id="sop-1"
        )

        assert sop.chain_root_id == "sop-1"
        query.update.assert_not_called()

    async def test_default_list_holds_current_versions_and_drafts(self, make_query):
        query = make_query([_row(f"s{i}", f"2026-05-0{i}T00:00:00+00:00") for i in range(1, 6)])

        result = await _make_store(query).list_sops("org-1", page=2, limit=2)

        assert [s.id for s in result.sops] == ["s3", "s4"]
        assert result.total == 5
        assert result.total_pages == 3
        query.or_.assert_called_once_with("is_current_version.eq.true,is_draft.eq.true")

    async def test_all_versions(self, make_query):
        query = make_query([])

        await _make_store(query).list_sops("org-1", include_all_versions=True, sort="oldest")

        query.or_.assert_not_called()
        query.order.assert_called_with("created_at", desc=False)

    @pytest.mark.parametrize(
        "sort, expected",
        [("recent", ["d1", "a1", "b1"]), ("oldest", ["a1", "b1", "d1"])],
    )
    async def test_grouped_by_chain(self, make_query, sort, expected):
        query = make_query(
            [
                _row("d1", "2026-05-04T00:00:00+00:00", draft=True),
                _row("a2", "2026-05-03T00:00:00+00:00", root="a1", version=2, current=True),
                _row("b1", "2026-05-02T00:00:00+00:00", current=True),
                _row("a1", "2026-05-01T00:00:00+00:00", root="a1"),
            ]
        )

        result = await _make_store(query).list_grouped("org-1", sort=sort)

        assert [g.root_sop_id for g in result.groups] == expected
        chain = next(g for g in result.groups if g.root_sop_id == "a1")
        assert chain.current_version.id == "a2"
        assert [v.id for v in chain.versions] == ["a2", "a1"]
        assert chain.version_count == 2
        assert chain.oldest_version_date == datetime(2026, 5, 1, tzinfo=timezone.utc)

    async def test_update_of_missing_draft(self, make_query):
        with pytest.raises(SOPNotFoundError):
            await _make_store(make_query([])).update_draft("sop-9", {"title": "x"})

    async def test_latest_version_of_empty_chain(self, make_query):
        assert await _make_store(make_query([])).latest_version_number("sop-1") == 1


# ── Service ──────────────────────────────────────────────────────────


def _created(*args, **kwargs) -> SavedSOP:
    return _sop(
        id="sop-new",
        version_number=kwargs.get("version_number", 1),
        root_sop_id=kwargs.get("root_sop_id") or "sop-new",
        is_current_version=kwargs.get("is_current_version", False),
        is_draft=kwargs.get("is_draft", False),
    )


def _make_service(llm=None, kb=None, analysis=None):
    store = MagicMock()
    store.create = AsyncMock(side_effect=_created)
    store.latest_published = AsyncMock(return_value=None)
    store.unset_current_by_title = AsyncMock()
    store.unset_current_in_chain = AsyncMock()
    store.latest_version_number = AsyncMock(return_value=3)
    kb_store = MagicMock()
    kb_store.get_for_organization = AsyncMock(return_value=kb)
    analysis_store = MagicMock()
    if analysis is None:
        analysis_store.get_owned = AsyncMock(side_effect=AnalysisNotFoundError("an-9"))
    else:
        analysis_store.get_owned = AsyncMock(return_value=analysis)
    worker = MagicMock()
    service = SOPService(llm or _llm(), store, kb_store, worker, analysis_store=analysis_store)
    return service, store, worker


KB = KnowledgeBase(id="kb-1", organization_id="org-1", business_name="Acme Coaching", version=7)


@pytest.mark.asyncio
class TestGenerate:
    async def test_preview_only_saves_nothing(self):
        service, store, worker = _make_service(kb=KB)

        response = await service.generate(
            GenerateSOPRequest(form_data=FORM), "org-1", "user-1"
        )

        assert response.sop_id is None
        assert response.is_draft
        assert response.metadata.knowledge_base_used
        assert "<h1>Client Onboarding</h1>" in response.sop_html
        store.create.assert_not_called()
        worker.publish.assert_not_called()

    async def test_publish_continues_the_title_chain(self):
        service, store, worker = _make_service(kb=KB)
        store.latest_published.return_value = _sop(id="sop-2", version_number=2)

        response = await service.generate(
            GenerateSOPRequest(form_data=FORM, save_and_publish=True), "org-1", "user-1"
        )

        store.unset_current_by_title.assert_awaited_once_with("org-1", "Client Onboarding")
        kwargs = store.create.call_args.kwargs
        assert kwargs["version_number"] == 3
        assert kwargs["root_sop_id"] == "sop-1"
        assert kwargs["is_current_version"] is True
        assert kwargs["knowledge_base"].version == 7
        assert store.create.call_args.args[3]["markdown"].startswith("# Client Onboarding")
        assert response.sop_id == "sop-new"
        assert response.metadata.version_number == 3
        assert not response.is_draft

        request = worker.publish.call_args.args[0]
        assert request.source_type == SourceType.SOP_GENERATION
        assert request.source_id == "sop-new"
        assert request.knowledge_base_id == "kb-1"
        assert request.payload["sop"]["form_data"]["tools_used"] == FORM["tools_used"]

    async def test_first_publish_starts_a_chain(self):
        service, store, _ = _make_service()

        await service.generate(
            GenerateSOPRequest(form_data=FORM, save_and_publish=True), "org-1", "user-1"
        )

        assert store.create.call_args.kwargs["version_number"] == 1
        assert store.create.call_args.kwargs["root_sop_id"] is None

    async def test_draft_wins_over_publish(self):
        service, store, _ = _make_service()

        response = await service.generate(
            GenerateSOPRequest(form_data=FORM, save_as_draft=True, save_and_publish=True),
            "org-1",
            "user-1",
        )

        assert store.create.call_args.kwargs["is_draft"] is True
        assert response.is_draft
        store.unset_current_by_title.assert_not_called()

    async def test_saving_an_existing_draft_updates_it(self):
        service, store, _ = _make_service()
        store.get_owned = AsyncMock(return_value=_sop(id="sop-d", is_draft=True))
        store.update_draft = AsyncMock(return_value=_sop(id="sop-d", is_draft=True))

        response = await service.generate(
            GenerateSOPRequest(form_data=FORM, save_as_draft=True, sop_id="sop-d"),
            "org-1",
            "user-1",
        )

        assert response.sop_id == "sop-d"
        sop_id, changes = store.update_draft.call_args.args
        assert sop_id == "sop-d"
        assert changes["title"] == "Client Onboarding"
        store.create.assert_not_called()

    async def test_existing_html_is_saved_without_generation(self):
        llm = _llm()
        service, store, worker = _make_service(llm=llm, kb=KB)

        response = await service.generate(
            GenerateSOPRequest(
                form_data={"sop_title": "Client Onboarding"},
                existing_sop_html="<h1>From chat</h1>",
                save_as_draft=True,
            ),
            "org-1",
            "user-1",
        )

        assert response.sop_html == "<h1>From chat</h1>"
        assert response.sop_markdown is None
        llm.complete.assert_not_called()
        store.create.assert_awaited_once()
        worker.publish.assert_not_called()

    async def test_linked_job_analysis_shapes_the_prompt(self, pipeline_result):
        llm = _llm()
        analysis = SavedAnalysis(
            id="an-1",
            organization_id="org-1",
            title="Ops VA",
            intake_data={"brand": {"name": "Acme Coaching"}},
            analysis=pipeline_result.to_response(),
        )
        service, _, _ = _make_service(llm=llm, analysis=analysis)

        await service.generate(
            GenerateSOPRequest(form_data=FORM, job_analysis_id="an-1"), "org-1", "user-1"
        )

        prompt = llm.complete.call_args.args[1]
        assert "**Role Title**: Client Operations VA" in prompt
        assert "**Business Name**: Acme Coaching" in prompt

    async def test_missing_job_analysis_is_ignored(self):
        llm = _llm()
        service, _, _ = _make_service(llm=llm)

        await service.generate(
            GenerateSOPRequest(form_data=FORM, job_analysis_id="an-9"), "org-1", "user-1"
        )

        assert "Linked Job Description Analysis" not in llm.complete.call_args.args[1]

    async def test_knowledge_base_lookup_failure(self):
        service, store, worker = _make_service()
        service.kb_store.get_for_organization.side_effect = RuntimeError("connection reset")

        response = await service.generate(
            GenerateSOPRequest(form_data=FORM, save_and_publish=True), "org-1", "user-1"
        )

        assert not response.metadata.knowledge_base_used
        assert response.sop_id == "sop-new"
        worker.publish.assert_not_called()


@pytest.mark.asyncio
class TestUpdate:
    async def test_edit_becomes_next_current_version(self):
        service, store, worker = _make_service(kb=KB)
        store.get_owned = AsyncMock(
            return_value=_sop(
                id="sop-2",
                version_number=2,
                knowledge_base_version=5,
                metadata={"edit_history": [{"version": 2}]},
            )
        )

        response = await service.update(
            UpdateSOPRequest(sop_id="sop-2", sop_content=SOP_MARKDOWN), "org-1", "user-2"
        )

        store.unset_current_in_chain.assert_awaited_once_with("sop-1")
        args, kwargs = store.create.call_args
        assert args[3]["markdown"] == SOP_MARKDOWN
        assert args[3]["version"] == "4"
        assert kwargs["version_number"] == 4
        assert kwargs["root_sop_id"] == "sop-1"
        assert kwargs["is_current_version"] is True
        assert kwargs["knowledge_base"].version == 5
        assert [e["version"] for e in kwargs["metadata"]["edit_history"]] == [2, 4]
        assert kwargs["metadata"]["last_edited_by"] == "user-2"
        assert "<h1>Client Onboarding</h1>" in response.sop_html
        assert response.ai_review is None
        assert worker.publish.call_args.args[0].source_type == SourceType.SOP_GENERATION

    async def test_ai_review(self):
        llm = _llm()
        llm.complete_json.return_value = {
            "suggestions": [{"type": "clarity", "original": "x", "suggested": "y", "reason": "z"}]
        }
        service, store, _ = _make_service(llm=llm)
        store.get_owned = AsyncMock(return_value=_sop())

        response = await service.update(
            UpdateSOPRequest(sop_id="sop-1", sop_content=SOP_MARKDOWN, review_with_ai=True),
            "org-1",
            "user-1",
        )

        assert response.ai_review.reviewed
        assert response.ai_review.suggestions[0].suggested == "y"
        assert store.create.call_args.kwargs["metadata"]["ai_review_suggestions_count"] == 1


@pytest.mark.asyncio
class TestVersions:
    async def test_restore_copies_into_new_version(self):
        service, store, _ = _make_service()
        store.get_owned = AsyncMock(
            return_value=_sop(id="sop-1", version_number=1, is_current_version=False)
        )

        response = await service.restore("sop-1", "org-1", "user-1")

        assert response.message == "Version 1 has been restored as version 4."
        assert not response.already_current
        store.unset_current_in_chain.assert_awaited_once_with("sop-1")
        args, kwargs = store.create.call_args
        assert args[3]["html"] == "<h1>Client Onboarding</h1>"
        assert args[3]["version"] == "4"
        assert kwargs["version_number"] == 4
        assert kwargs["metadata"]["restored_from_version"] == 1
        assert kwargs["metadata"]["restored_by"] == "user-1"

    async def test_restore_current_version_is_a_no_op(self):
        service, store, _ = _make_service()
        store.get_owned = AsyncMock(return_value=_sop())

        response = await service.restore("sop-1", "org-1", "user-1")

        assert response.already_current
        assert response.message == "This version is already the current version."
        store.create.assert_not_called()

    async def test_drafts_cannot_be_restored(self):
        service, store, _ = _make_service()
        store.get_owned = AsyncMock(
            return_value=_sop(is_draft=True, is_current_version=False)
        )

        with pytest.raises(SOPStateError):
            await service.restore("sop-1", "org-1", "user-1")

    async def test_history(self):
        service, store, _ = _make_service()
        store.get_owned = AsyncMock(return_value=_sop(id="sop-1"))
        store.versions = AsyncMock(
            return_value=[
                _sop(id="sop-3", version_number=3, is_current_version=False),
                _sop(id="sop-2", version_number=2, is_current_version=True),
                _sop(id="sop-1", version_number=1, is_current_version=False),
            ]
        )

        history = await service.versions("sop-1", "org-1")

        assert history.root_sop_id == "sop-1"
        assert history.current_version_id == "sop-2"
        assert [v.version_number for v in history.versions] == [3, 2, 1]
        store.versions.assert_awaited_once_with("sop-1")


# ── Insights ─────────────────────────────────────────────────────────


class TestSOPInsights:
    def test_split_tools(self):
        assert split_tools("HubSpot, Slack and Google Docs") == ["HubSpot", "Slack", "Google Docs"]
        assert split_tools("Zapier & Make\n- Notion / notion") == ["Zapier", "Make", "Notion"]
        assert split_tools("") == []

    def test_form_insights(self):
        insights = extract_from_form(
            _form(
                common_mistakes="Kickoff booked before payment clears",
                compliance_requirements="Client contracts stored for seven years",
            )
        )

        by_section = {i.metadata["source_section"]: i for i in insights}
        assert set(by_section) == {
            "sop.tools_used",
            "sop.process",
            "sop.common_mistakes",
            "sop.primary_role",
            "sop.compliance_requirements",
        }
        assert by_section["sop.tools_used"].metadata["tools"] == ["HubSpot", "Slack", "Google Docs"]
        assert by_section["sop.process"].metadata["cluster_name"] == "Client Onboarding"
        assert by_section["sop.common_mistakes"].category == InsightCategory.PROCESS_OPTIMIZATION
        assert by_section["sop.compliance_requirements"].metadata["category"] == "compliance"

    def test_short_details_are_skipped(self):
        insights = extract_from_form(_form(common_mistakes="None", compliance_requirements="N/A"))
        sections = {i.metadata["source_section"] for i in insights}
        assert "sop.common_mistakes" not in sections
        assert "sop.compliance_requirements" not in sections

    def test_tools_land_in_tool_stack(self):
        insight = extract_from_form(_form())[0]
        event = LearningEvent(
            id="evt-1",
            knowledge_base_id="kb-1",
            event_type=insight.event_type,
            insight=insight.insight,
            category=insight.category.value,
            confidence=insight.confidence,
            metadata=insight.metadata,
            created_at=datetime.now(timezone.utc),
        )
        kb = KnowledgeBase(id="kb-1", organization_id="org-1", tool_stack=["Hubspot"])

        mapping = map_event_to_field(event, kb)

        assert mapping.field == "tool_stack"
        assert mapping.value == ["Hubspot", "Slack", "Google Docs"]

    def test_recurring_process_lands_in_task_clusters(self):
        insight = next(
            i for i in extract_from_form(_form()) if i.metadata.get("cluster_name")
        )
        event = LearningEvent(
            id="evt-2",
            knowledge_base_id="kb-1",
            event_type=insight.event_type,
            insight=insight.insight,
            category=insight.category.value,
            confidence=insight.confidence,
            metadata=insight.metadata,
            created_at=datetime.now(timezone.utc),
        )

        mapping = map_event_to_field(event, KnowledgeBase(id="kb-1", organization_id="org-1"))

        assert mapping.key == "task_clusters"
        assert mapping.value[0]["name"] == "Client Onboarding"

    def test_payload_title_wins(self):
        insights = extract_from_sop({"title": "Onboarding v2", "form_data": FORM})
        assert insights[0].insight.startswith("Tools used in Onboarding v2")

    def test_empty_payload(self):
        assert extract_from_sop({}) == []


# ── PDF ──────────────────────────────────────────────────────────────


class TestSOPPdf:
    def test_filename(self):
        assert sop_filename("Client Onboarding / v2", on=date(2026, 5, 1)) == (
            "Client_Onboarding___v2_2026-05-01.pdf"
        )

    def test_render_keeps_headings_steps_and_tables(self):
        html = markdown_to_html(SOP_MARKDOWN + "\n- Parent\n    - Child step\n")

        pdf = render_sop_pdf(html, "Client Onboarding")

        assert pdf.startswith(b"%PDF")
        text = DocumentTextExtractor().extract_text(pdf, "sop.pdf").text
        assert "Procedure" in text
        assert "1. Send welcome email" in text
        assert "2. Book kickoff call" in text
        assert "Time to kickoff | 48 hours" in text
        assert "Child step" in text
        assert text.count("Child step") == 1

    def test_render_plain_text(self):
        pdf = render_sop_pdf("Just a sentence with no markup", "Notes")
        text = DocumentTextExtractor().extract_text(pdf, "sop.pdf").text
        assert "Just a sentence with no markup" in text
