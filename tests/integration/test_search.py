"""
Integration tests for hybrid search.

Tests cover:
- Typo-tolerant matching through trigrams
- Full-text hits outranking fuzzy-only hits
- Workspace isolation, pagination and kind filters
- Index maintenance on update and delete
"""

import pytest

from backend.taskdeck_server.authz import Role
from backend.taskdeck_server.errors import ValidationError
from backend.taskdeck_server.models import SearchKind


class TestRanking:
    """Tests for scoring and ordering of hits."""

    @pytest.mark.asyncio
    async def test_typo_query_finds_task(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Urgent Fix Needed"})
        await core.tasks.create(ws.id, owner, {"title": "Water the plants"})

        page = await core.search.search(ws.id, owner, {"query": "urgnt fix"})

        assert page.total == 1
        hit = page.hits[0]
        assert hit.entity_id == task.id
        assert hit.kind == SearchKind.TASK
        assert hit.trigram_score == pytest.approx(0.8)
        assert hit.lexical_score == 0.0
        assert hit.snippet == "<<Urgent>> <<Fix>> Needed"

    @pytest.mark.asyncio
    async def test_typo_query_finds_document(self, core, make_workspace):
        ws, owner = await make_workspace()
        doc = await core.documents.create(ws.id, owner, {"title": "Urgent Fix Needed"})
        exact = await core.documents.create(
            ws.id, owner, {"title": "Incident notes", "content": "urgent escalation path"}
        )

        fuzzy = await core.search.search(ws.id, owner, {"query": "urgnt fix"})
        assert fuzzy.hits[0].entity_id == doc.id
        assert fuzzy.hits[0].kind == SearchKind.DOCUMENT
        assert fuzzy.hits[0].trigram_score == pytest.approx(0.8)

        ranked = await core.search.search(ws.id, owner, {"query": "urgent"})
        assert {h.entity_id for h in ranked.hits} == {doc.id, exact.id}
        assert all(h.lexical_score > 0 for h in ranked.hits)

    @pytest.mark.asyncio
    async def test_lexical_hit_outranks_fuzzy(self, core, make_workspace):
        ws, owner = await make_workspace()
        fuzzy = await core.tasks.create(ws.id, owner, {"title": "Urgen backlog"})
        exact = await core.tasks.create(ws.id, owner, {"title": "Urgent Fix Needed"})

        page = await core.search.search(ws.id, owner, {"query": "urgent"})

        assert [h.entity_id for h in page.hits] == [exact.id, fuzzy.id]
        assert page.hits[0].score > 1.0
        assert page.hits[1].score < 1.0
        assert page.hits[0].lexical_score > 0

    @pytest.mark.asyncio
    async def test_body_match(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(
            ws.id,
            owner,
            {"title": "Release", "description": "Rotate the database credentials"},
        )

        page = await core.search.search(ws.id, owner, {"query": "credentials"})

        assert [h.entity_id for h in page.hits] == [task.id]
        assert "<<credentials>>" in page.hits[0].snippet

    @pytest.mark.asyncio
    async def test_unrelated_query(self, core, make_workspace):
        ws, owner = await make_workspace()
        await core.tasks.create(ws.id, owner, {"title": "Urgent Fix Needed"})

        page = await core.search.search(ws.id, owner, {"query": "zebra"})

        assert page.total == 0
        assert page.hits == []

    @pytest.mark.asyncio
    async def test_empty_query(self, core, make_workspace):
        ws, owner = await make_workspace()
        await core.tasks.create(ws.id, owner, {"title": "Anything"})

        page = await core.search.search(ws.id, owner, {"query": "   "})

        assert page.total == 0
        assert not page.has_more


class TestScope:
    """Tests for isolation, filters and pagination."""

    @pytest.mark.asyncio
    async def test_workspace_isolation(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        await core.tasks.create(other.id, other_owner, {"title": "Urgent Fix Needed"})
        await core.documents.create(other.id, other_owner, {"title": "Urgent runbook"})

        page = await core.search.search(ws.id, owner, {"query": "urgent"})

        assert page.total == 0

    @pytest.mark.asyncio
    async def test_pagination(self, core, make_workspace):
        ws, owner = await make_workspace()
        ids = set()
        for n in range(1, 6):
            ids.add((await core.tasks.create(ws.id, owner, {"title": f"Deploy service {n}"})).id)

        seen = []
        for page_number, expected in ((1, 2), (2, 2), (3, 1)):
            page = await core.search.search(
                ws.id, owner, {"query": "deploy", "page": page_number, "limit": 2}
            )
            assert page.total == 5
            assert len(page.hits) == expected
            assert page.has_more == (page_number < 3)
            seen.extend(h.entity_id for h in page.hits)

        assert len(seen) == 5
        assert set(seen) == ids

    @pytest.mark.asyncio
    async def test_limit_capped(self, core, make_workspace):
        ws, owner = await make_workspace()
        page = await core.search.search(ws.id, owner, {"query": "x", "limit": 10_000})
        assert page.limit == core.config.search.max_limit

    @pytest.mark.asyncio
    async def test_invalid_page(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.search.search(ws.id, owner, {"query": "x", "page": 0})

    @pytest.mark.asyncio
    async def test_kind_filter_and_comment_title(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Fix pipeline"})
        comment = await core.comments.create(
            ws.id, task.id, owner, {"content": "Deploy broke on staging again"}
        )
        await core.documents.create(ws.id, owner, {"title": "Staging environment"})

        page = await core.search.search(
            ws.id, owner, {"query": "staging", "kinds": ["comment"]}
        )

        assert page.total == 1
        hit = page.hits[0]
        assert hit.kind == SearchKind.COMMENT
        assert hit.entity_id == comment.id
        assert hit.task_id == task.id
        assert hit.title == "Fix pipeline"
        assert "<<staging>>" in hit.snippet

        every_kind = await core.search.search(ws.id, owner, {"query": "staging"})
        assert {h.kind for h in every_kind.hits} == {SearchKind.COMMENT, SearchKind.DOCUMENT}

    @pytest.mark.asyncio
    async def test_reader_can_search(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        reader = await add_member(ws, owner, "user-reader", Role.READER)
        await core.tasks.create(ws.id, owner, {"title": "Quarterly report"})

        page = await core.search.search(ws.id, reader, {"query": "quarterly"})

        assert page.total == 1


class TestIndexMaintenance:
    """Tests that writes keep the index current."""

    @pytest.mark.asyncio
    async def test_deleted_task_disappears(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Quarterly report"})
        await core.comments.create(ws.id, task.id, owner, {"content": "quarterly numbers attached"})

        await core.tasks.delete(ws.id, task.id, owner)

        page = await core.search.search(ws.id, owner, {"query": "quarterly"})
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_task_retitle_reindexes(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Quarterly report"})

        await core.tasks.update(ws.id, task.id, owner, {"title": "Annual summary"})

        assert (await core.search.search(ws.id, owner, {"query": "quarterly"})).total == 0
        assert (await core.search.search(ws.id, owner, {"query": "annual"})).total == 1

    @pytest.mark.asyncio
    async def test_document_update_reindexes(self, core, make_workspace):
        ws, owner = await make_workspace()
        doc = await core.documents.create(
            ws.id, owner, {"title": "Draft", "content": "nothing here yet"}
        )

        await core.documents.update(ws.id, doc.id, owner, {"content": "kubernetes rollout plan"})

        page = await core.search.search(
            ws.id, owner, {"query": "kubernetes", "kinds": ["document"]}
        )
        assert [h.entity_id for h in page.hits] == [doc.id]
        assert page.hits[0].title == "Draft"
        assert page.hits[0].snippet == "<<kubernetes>> rollout plan"

    @pytest.mark.asyncio
    async def test_rebuild_restores_entries(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Quarterly report"})
        with core.db.transaction() as conn:
            conn.execute("DELETE FROM search_trigrams")
            conn.execute("DELETE FROM search_entries")
        assert (await core.search.search(ws.id, owner, {"query": "quarterly"})).total == 0

        with core.db.transaction() as conn:
            written = core.index.rebuild(conn, ws.id)

        assert written == 1
        page = await core.search.search(ws.id, owner, {"query": "quarterly"})
        assert [h.entity_id for h in page.hits] == [task.id]
