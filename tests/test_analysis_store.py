"""Tests for saved-analysis persistence."""

from unittest.mock import MagicMock

import pytest

from va_advisor.models.analysis import RefinementMessage
from va_advisor.models.knowledge_base import KnowledgeBaseUsage
from va_advisor.services.analysis_store import (
    AnalysisAccessError,
    AnalysisNotFoundError,
    AnalysisStore,
)


def _row(analysis_id: str, created_at: str, parent=None, version=1, org="org-1") -> dict:
    return {
        "id": analysis_id,
        "organization_id": org,
        "title": f"Analysis {analysis_id}",
        "intake_data": {},
        "analysis": {"preview": {}},
        "parent_analysis_id": parent,
        "version_number": version,
        "created_at": created_at,
        "refinement_messages": [{"count": 2}] if parent else [],
    }


def _make_store(query) -> AnalysisStore:
    supabase = MagicMock()
    supabase.table.return_value = query
    return AnalysisStore(supabase)


@pytest.mark.asyncio
class TestAnalysisStore:
    async def test_list_latest_collapses_chains(self, make_query):
        query = make_query(
            [
                _row("b2", "2026-05-04T00:00:00+00:00", parent="b1", version=2),
                _row("c1", "2026-05-03T00:00:00+00:00"),
                _row("a3", "2026-05-02T12:00:00+00:00", parent="a1", version=3),
                _row("b1", "2026-05-02T00:00:00+00:00"),
                _row("a2", "2026-05-01T12:00:00+00:00", parent="a1", version=2),
                _row("a1", "2026-05-01T00:00:00+00:00"),
            ]
        )

        result = await _make_store(query).list_latest("org-1")

        assert [a.id for a in result.analyses] == ["b2", "c1", "a3"]
        assert result.total == 3
        assert result.total_pages == 1
        assert result.analyses[0].refinement_count == 2
        query.select.assert_called_with("*, refinement_messages(count)")

    async def test_list_latest_paginates(self, make_query):
        rows = [_row(f"r{i}", f"2026-05-{10 + i:02d}T00:00:00+00:00") for i in range(5)]
        query = make_query(rows)

        result = await _make_store(query).list_latest("org-1", page=2, limit=2, finalized=True)

        assert [a.id for a in result.analyses] == ["r2", "r1"]
        assert result.total == 5
        assert result.total_pages == 3
        query.eq.assert_any_call("is_finalized", True)

    async def test_get_missing(self, make_query):
        with pytest.raises(AnalysisNotFoundError):
            await _make_store(make_query([])).get("missing")

    async def test_get_owned_checks_organization(self, make_query):
        store = _make_store(make_query([_row("a1", "2026-05-01T00:00:00+00:00", org="org-2")]))

        with pytest.raises(AnalysisAccessError):
            await store.get_owned("a1", "org-1")

    async def test_create_records_knowledge_base_usage(self, make_query):
        query = make_query([_row("a1", "2026-05-01T00:00:00+00:00")])
        usage = KnowledgeBaseUsage(used=True, version=4, snapshot={"business_name": "Acme"})

        saved = await _make_store(query).create(
            "org-1", "user-1", "Ops VA", {}, {"preview": {}}, knowledge_base_id="kb-1",
            knowledge_base=usage,
        )

        assert saved.id == "a1"
        row = query.insert.call_args.args[0]
        assert row["knowledge_base_version"] == 4
        assert row["knowledge_base_snapshot"] == {"business_name": "Acme"}
        assert row["version_number"] == 1

    async def test_latest_version_number(self, make_query):
        query = make_query([{"version_number": 4}])
        assert await _make_store(query).latest_version_number("a1") == 4
        query.or_.assert_called_with("id.eq.a1,parent_analysis_id.eq.a1")

    async def test_latest_version_number_defaults_to_one(self, make_query):
        assert await _make_store(make_query([])).latest_version_number("a1") == 1

    async def test_finalize_missing(self, make_query):
        with pytest.raises(AnalysisNotFoundError):
            await _make_store(make_query([])).finalize("missing")

    async def test_add_refinements(self, make_query):
        query = make_query([])
        await _make_store(query).add_refinements(
            [RefinementMessage(analysis_id="a1", role="user", content="Hi", sequence_number=1)]
        )

        rows = query.insert.call_args.args[0]
        assert rows == [
            {
                "analysis_id": "a1",
                "role": "user",
                "content": "Hi",
                "changed_sections": [],
                "sequence_number": 1,
            }
        ]

    async def test_add_no_refinements(self, make_query):
        query = make_query([])
        await _make_store(query).add_refinements([])
        query.insert.assert_not_called()
