"""
Integration tests for tasks and the records hanging off them.

Tests cover:
- completed_at bookkeeping across status changes
- Assignee membership
- Listing filters and ordering
- Comments, tags, document links and the activity feed
"""

from datetime import date

import pytest

from backend.taskdeck_server.authz import Role
from backend.taskdeck_server.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from backend.taskdeck_server.models import Priority


async def _board(core, ws, actor):
    todo, doing, done = await core.statuses.list_statuses(ws.id, actor)
    return todo, doing, done


class TestCompletion:
    """Tests for completed_at transitions."""

    @pytest.mark.asyncio
    async def test_move_into_done_stamps(self, core, make_workspace):
        ws, owner = await make_workspace()
        todo, _, done = await _board(core, ws, owner)
        task = await core.tasks.create(ws.id, owner, {"title": "Ship it"})
        assert task.completed_at is None

        moved = await core.tasks.move(ws.id, task.id, owner, {"status_id": done.id, "position": 0})
        assert moved.completed_at is not None

        back = await core.tasks.move(ws.id, task.id, owner, {"status_id": todo.id, "position": 0})
        assert back.completed_at is None

    @pytest.mark.asyncio
    async def test_create_in_done(self, core, make_workspace):
        ws, owner = await make_workspace()
        _, _, done = await _board(core, ws, owner)
        task = await core.tasks.create(ws.id, owner, {"title": "Already done", "status_id": done.id})
        assert task.completed_at is not None

    @pytest.mark.asyncio
    async def test_done_to_done_keeps_stamp(self, core, make_workspace):
        ws, owner = await make_workspace()
        _, _, done = await _board(core, ws, owner)
        archived = await core.statuses.create(ws.id, owner, {"name": "Archived", "is_done": True})
        task = await core.tasks.create(ws.id, owner, {"title": "Old", "status_id": done.id})

        moved = await core.tasks.move(ws.id, task.id, owner, {"status_id": archived.id, "position": 0})

        assert moved.completed_at == task.completed_at

    @pytest.mark.asyncio
    async def test_update_status_id(self, core, make_workspace):
        ws, owner = await make_workspace()
        _, doing, done = await _board(core, ws, owner)
        await core.tasks.create(ws.id, owner, {"title": "Existing", "status_id": done.id})
        task = await core.tasks.create(ws.id, owner, {"title": "Ship it"})

        updated = await core.tasks.update(ws.id, task.id, owner, {"status_id": done.id})

        assert updated.status_id == done.id
        assert updated.completed_at is not None
        titles = [t.title for t in await core.tasks.list_tasks(ws.id, owner, {"status_id": done.id})]
        assert titles == ["Existing", "Ship it"]

        reopened = await core.tasks.update(ws.id, task.id, owner, {"status_id": doing.id})
        assert reopened.completed_at is None

    @pytest.mark.asyncio
    async def test_flipping_status_done_flag(self, core, make_workspace):
        ws, owner = await make_workspace()
        _, doing, _ = await _board(core, ws, owner)
        task = await core.tasks.create(ws.id, owner, {"title": "Review", "status_id": doing.id})

        await core.statuses.update(ws.id, doing.id, owner, {"is_done": True})
        assert (await core.tasks.get(ws.id, task.id, owner)).completed_at is not None

        await core.statuses.update(ws.id, doing.id, owner, {"is_done": False})
        assert (await core.tasks.get(ws.id, task.id, owner)).completed_at is None


class TestTaskFields:
    """Tests for create, update and delete."""

    @pytest.mark.asyncio
    async def test_create_with_fields(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(
            ws.id,
            owner,
            {
                "title": "  Plan launch  ",
                "priority": "high",
                "due_date": "2026-03-01",
                "time_estimate_minutes": 90,
                "external_refs": {"github": "org/repo#12"},
            },
        )

        stored = await core.tasks.get(ws.id, task.id, owner)
        assert stored.title == "Plan launch"
        assert stored.priority == Priority.HIGH
        assert stored.due_date == date(2026, 3, 1)
        assert stored.time_estimate_minutes == 90
        assert stored.external_refs == {"github": "org/repo#12"}
        assert stored.created_by == owner.user_id

    @pytest.mark.asyncio
    async def test_blank_title(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.tasks.create(ws.id, owner, {"title": "   "})

    @pytest.mark.asyncio
    async def test_update_clears_optional_fields(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(
            ws.id, owner, {"title": "Plan", "priority": "low", "description": "draft"}
        )

        updated = await core.tasks.update(ws.id, task.id, owner, {"priority": None})

        assert updated.priority is None
        assert updated.description == "draft"

    @pytest.mark.asyncio
    async def test_assignee_must_be_member(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        editor = await add_member(ws, owner, "user-editor", Role.EDITOR)

        with pytest.raises(ValidationError):
            await core.tasks.create(ws.id, owner, {"title": "x", "assigned_to": "user-stranger"})

        task = await core.tasks.create(ws.id, owner, {"title": "x", "assigned_to": editor.user_id})
        assert task.assigned_to == editor.user_id

        with pytest.raises(ValidationError):
            await core.tasks.update(ws.id, task.id, owner, {"assigned_to": "user-stranger"})

    @pytest.mark.asyncio
    async def test_status_from_other_workspace(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        foreign, _, _ = await _board(core, other, other_owner)

        with pytest.raises(NotFoundError):
            await core.tasks.create(ws.id, owner, {"title": "x", "status_id": foreign.id})

    @pytest.mark.asyncio
    async def test_reader_is_read_only(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        reader = await add_member(ws, owner, "user-reader", Role.READER)
        task = await core.tasks.create(ws.id, owner, {"title": "x"})

        assert (await core.tasks.get(ws.id, task.id, reader)).title == "x"
        with pytest.raises(ForbiddenError):
            await core.tasks.create(ws.id, reader, {"title": "y"})
        with pytest.raises(ForbiddenError):
            await core.tasks.update(ws.id, task.id, reader, {"title": "y"})
        with pytest.raises(ForbiddenError):
            await core.tasks.delete(ws.id, task.id, reader)

    @pytest.mark.asyncio
    async def test_delete_cascades(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Doomed"})
        doc = await core.documents.create(ws.id, owner, {"title": "Spec"})
        tag = await core.tags.create(ws.id, owner, {"name": "bug"})
        await core.tags.set_task_tags(ws.id, task.id, owner, [tag.id])
        await core.links.link(ws.id, task.id, doc.id, owner)
        await core.comments.create(ws.id, task.id, owner, {"content": "note"})

        await core.tasks.delete(ws.id, task.id, owner)

        with pytest.raises(NotFoundError):
            await core.tasks.get(ws.id, task.id, owner)
        assert await core.links.tasks_for_document(ws.id, doc.id, owner) == []
        assert [t.name for t in await core.tags.list_tags(ws.id, owner)] == ["bug"]
        with core.db.connect() as conn:
            for table in ("task_comments", "task_tags", "task_document_links"):
                assert conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE task_id = ?", (task.id,)
                ).fetchone()[0] == 0, table


class TestListTasks:
    """Tests for filtering and ordering."""

    @pytest.mark.asyncio
    async def test_filters(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        editor = await add_member(ws, owner, "user-editor", Role.EDITOR)
        _, doing, _ = await _board(core, ws, owner)
        await core.tasks.create(ws.id, owner, {"title": "Alpha", "priority": "high"})
        await core.tasks.create(
            ws.id,
            owner,
            {
                "title": "Beta",
                "status_id": doing.id,
                "assigned_to": editor.user_id,
                "due_date": "2026-01-10",
            },
        )
        await core.tasks.create(ws.id, owner, {"title": "Gamma alpha", "due_date": "2026-02-10"})

        async def titles(**filters):
            return [t.title for t in await core.tasks.list_tasks(ws.id, owner, filters)]

        assert await titles() == ["Alpha", "Gamma alpha", "Beta"]
        assert await titles(status_id=doing.id) == ["Beta"]
        assert await titles(priority="high") == ["Alpha"]
        assert await titles(assigned_to=editor.user_id) == ["Beta"]
        assert await titles(text="ALPHA") == ["Alpha", "Gamma alpha"]
        assert await titles(due_after="2026-02-01") == ["Gamma alpha"]
        assert await titles(due_before="2026-02-01") == ["Beta"]

    @pytest.mark.asyncio
    async def test_ordering_and_pages(self, core, make_workspace):
        ws, owner = await make_workspace()
        for title, priority in (("b", "low"), ("a", "highest"), ("c", None)):
            await core.tasks.create(ws.id, owner, {"title": title, "priority": priority})

        by_title = await core.tasks.list_tasks(ws.id, owner, {"order_by": "title"})
        assert [t.title for t in by_title] == ["a", "b", "c"]

        by_priority = await core.tasks.list_tasks(
            ws.id, owner, {"order_by": "priority", "descending": True}
        )
        assert [t.title for t in by_priority] == ["a", "b", "c"]

        page_two = await core.tasks.list_tasks(
            ws.id, owner, {"order_by": "title", "page": 2, "limit": 2}
        )
        assert [t.title for t in page_two] == ["c"]

    @pytest.mark.asyncio
    async def test_isolation(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        await core.tasks.create(other.id, other_owner, {"title": "Theirs"})

        assert await core.tasks.list_tasks(ws.id, owner) == []


class TestComments:
    """Tests for comment authorship rules."""

    @pytest.mark.asyncio
    async def test_authorship(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        author = await add_member(ws, owner, "user-author", Role.EDITOR)
        other_editor = await add_member(ws, owner, "user-editor", Role.EDITOR)
        admin = await add_member(ws, owner, "user-admin", Role.ADMIN)
        task = await core.tasks.create(ws.id, owner, {"title": "Discuss"})
        comment = await core.comments.create(ws.id, task.id, author, {"content": "first"})

        edited = await core.comments.update(ws.id, comment.id, author, {"content": "first!"})
        assert edited.content == "first!"

        with pytest.raises(ForbiddenError):
            await core.comments.update(ws.id, comment.id, other_editor, {"content": "mine"})
        with pytest.raises(ForbiddenError):
            await core.comments.delete(ws.id, comment.id, other_editor)
        with pytest.raises(ForbiddenError):
            await core.comments.update(ws.id, comment.id, admin, {"content": "moderated"})

        await core.comments.delete(ws.id, comment.id, admin)
        assert await core.comments.list_comments(ws.id, task.id, owner) == []

    @pytest.mark.asyncio
    async def test_author_deletes_own(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        author = await add_member(ws, owner, "user-author", Role.EDITOR)
        task = await core.tasks.create(ws.id, owner, {"title": "Discuss"})
        comment = await core.comments.create(ws.id, task.id, author, {"content": "oops"})

        await core.comments.delete(ws.id, comment.id, author)

        assert await core.comments.list_comments(ws.id, task.id, author) == []

    @pytest.mark.asyncio
    async def test_reader_cannot_comment(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        reader = await add_member(ws, owner, "user-reader", Role.READER)
        task = await core.tasks.create(ws.id, owner, {"title": "Discuss"})

        with pytest.raises(ForbiddenError):
            await core.comments.create(ws.id, task.id, reader, {"content": "hi"})

    @pytest.mark.asyncio
    async def test_list_in_order(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Discuss"})
        for text in ("one", "two", "three"):
            await core.comments.create(ws.id, task.id, owner, {"content": text})

        comments = await core.comments.list_comments(ws.id, task.id, owner)

        assert sorted(c.content for c in comments) == ["one", "three", "two"]
        assert all(c.task_id == task.id for c in comments)

    @pytest.mark.asyncio
    async def test_comment_on_foreign_task(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        task = await core.tasks.create(other.id, other_owner, {"title": "Theirs"})

        with pytest.raises(NotFoundError):
            await core.comments.create(ws.id, task.id, owner, {"content": "hi"})


class TestTagsAndLinks:
    """Tests for tags and task-document links."""

    @pytest.mark.asyncio
    async def test_tags(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Tagged"})
        bug = await core.tags.create(ws.id, owner, {"name": "bug", "color": "#FF0000"})
        ui = await core.tags.create(ws.id, owner, {"name": "ui"})

        with pytest.raises(ConflictError):
            await core.tags.create(ws.id, owner, {"name": "bug"})

        await core.tags.set_task_tags(ws.id, task.id, owner, [ui.id, bug.id, ui.id])
        assert [t.name for t in await core.tags.get_task_tags(ws.id, task.id, owner)] == ["bug", "ui"]

        await core.tags.update(ws.id, ui.id, owner, {"name": "frontend"})
        await core.tags.delete(ws.id, bug.id, owner)
        assert [t.name for t in await core.tags.get_task_tags(ws.id, task.id, owner)] == ["frontend"]

        await core.tags.set_task_tags(ws.id, task.id, owner, [])
        assert await core.tags.get_task_tags(ws.id, task.id, owner) == []

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, core, make_workspace):
        ws, owner = await make_workspace()
        await core.tags.create(ws.id, owner, {"name": "bug"})
        ui = await core.tags.create(ws.id, owner, {"name": "ui"})
        with pytest.raises(ConflictError):
            await core.tags.update(ws.id, ui.id, owner, {"name": "bug"})

    @pytest.mark.asyncio
    async def test_foreign_tag(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        task = await core.tasks.create(ws.id, owner, {"title": "Tagged"})
        foreign = await core.tags.create(other.id, other_owner, {"name": "bug"})

        with pytest.raises(NotFoundError):
            await core.tags.set_task_tags(ws.id, task.id, owner, [foreign.id])

    @pytest.mark.asyncio
    async def test_links(self, core, make_workspace):
        ws, owner = await make_workspace()
        task = await core.tasks.create(ws.id, owner, {"title": "Implement"})
        spec = await core.documents.create(ws.id, owner, {"title": "Design"})
        notes = await core.documents.create(ws.id, owner, {"title": "Notes"})

        await core.links.link(ws.id, task.id, spec.id, owner)
        await core.links.link(ws.id, task.id, spec.id, owner)
        await core.links.link(ws.id, task.id, notes.id, owner)

        docs = await core.links.documents_for_task(ws.id, task.id, owner)
        assert [d.title for d in docs] == ["Design", "Notes"]
        assert [t.id for t in await core.links.tasks_for_document(ws.id, spec.id, owner)] == [task.id]

        await core.links.unlink(ws.id, task.id, spec.id, owner)
        with pytest.raises(NotFoundError):
            await core.links.unlink(ws.id, task.id, spec.id, owner)

    @pytest.mark.asyncio
    async def test_cross_workspace_link(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        task = await core.tasks.create(ws.id, owner, {"title": "Implement"})
        doc = await core.documents.create(other.id, other_owner, {"title": "Secret"})

        with pytest.raises(NotFoundError):
            await core.links.link(ws.id, task.id, doc.id, owner)


class TestActivity:
    """Tests for the activity feed."""

    @pytest.mark.asyncio
    async def test_feed(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        reader = await add_member(ws, owner, "user-reader", Role.READER)
        task = await core.tasks.create(ws.id, owner, {"title": "Track me"})
        _, doing, _ = await _board(core, ws, owner)
        await core.tasks.move(ws.id, task.id, owner, {"status_id": doing.id, "position": 0})

        entries = await core.activity.list_recent(ws.id, reader, entity_id=task.id)

        assert [e.action for e in entries] == ["moved", "created"]
        assert entries[0].changes["to"] == doing.id
        assert all(e.user_id == owner.user_id for e in entries)

        recent = await core.activity.list_recent(ws.id, reader, limit=2)
        assert len(recent) == 2
        assert recent[0].entity_id == task.id

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_entry(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.tasks.create(ws.id, owner, {"title": "x", "assigned_to": "user-stranger"})

        entries = await core.activity.list_recent(ws.id, owner)
        assert all(e.entity_type != "task" for e in entries)

    @pytest.mark.asyncio
    async def test_limit_bounds(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.activity.list_recent(ws.id, owner, limit=0)
        with pytest.raises(ValidationError):
            await core.activity.list_recent(ws.id, owner, limit=201)
