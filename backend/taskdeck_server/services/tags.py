"""
Tag operations. Tag names are unique within a workspace.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..errors import ConflictError, NotFoundError
from ..models import Tag, new_id, now_ms
from ..requests import CreateTagRequest, UpdateTagRequest, parse
from ..store.database import Database
from .tasks import get_task

logger = logging.getLogger(__name__)


def get_tag(conn: sqlite3.Connection, workspace_id: str, tag_id: str) -> Tag:
    row = conn.execute(
        "SELECT * FROM tags WHERE id = ? AND workspace_id = ?", (tag_id, workspace_id)
    ).fetchone()
    if row is None:
        raise NotFoundError("Tag", tag_id)
    return Tag.from_row(row)


def _ensure_name_free(
    conn: sqlite3.Connection, workspace_id: str, name: str, except_id: str | None = None
) -> None:
    row = conn.execute(
        "SELECT id FROM tags WHERE workspace_id = ? AND name = ?", (workspace_id, name)
    ).fetchone()
    if row is not None and row["id"] != except_id:
        raise ConflictError(
            f"A tag named '{name}' already exists",
            details={"workspace_id": workspace_id, "name": name},
        )


class TagService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_tags(self, workspace_id: str, actor: Actor) -> list[Tag]:
        actor.require(Action.VIEW_TAG)
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tags WHERE workspace_id = ? ORDER BY name", (workspace_id,)
            ).fetchall()
        return [Tag.from_row(row) for row in rows]

    async def create(
        self,
        workspace_id: str,
        actor: Actor,
        request: CreateTagRequest | dict[str, Any],
    ) -> Tag:
        actor.require(Action.MANAGE_TAGS)
        req = parse(CreateTagRequest, request)
        tag = Tag(
            id=new_id(),
            workspace_id=workspace_id,
            name=req.name,
            color=req.color,
            created_at=now_ms(),
        )

        with self.db.transaction() as conn:
            _ensure_name_free(conn, workspace_id, tag.name)
            conn.execute(
                """
                INSERT INTO tags (id, workspace_id, name, color, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (tag.id, workspace_id, tag.name, tag.color, tag.created_at),
            )
            record_activity(
                conn, workspace_id, actor.user_id, "tag", tag.id, "created", {"name": tag.name}
            )

        return tag

    async def update(
        self,
        workspace_id: str,
        tag_id: str,
        actor: Actor,
        request: UpdateTagRequest | dict[str, Any],
    ) -> Tag:
        actor.require(Action.MANAGE_TAGS)
        req = parse(UpdateTagRequest, request)
        fields = req.model_dump(exclude_unset=True)

        with self.db.transaction() as conn:
            tag = get_tag(conn, workspace_id, tag_id)
            if fields.get("name") is not None:
                _ensure_name_free(conn, workspace_id, fields["name"], except_id=tag_id)
                tag.name = fields["name"]
            if "color" in fields:
                tag.color = fields["color"]
            conn.execute(
                "UPDATE tags SET name = ?, color = ? WHERE id = ?",
                (tag.name, tag.color, tag_id),
            )
            record_activity(conn, workspace_id, actor.user_id, "tag", tag_id, "updated", fields)

        return tag

    async def delete(self, workspace_id: str, tag_id: str, actor: Actor) -> None:
        actor.require(Action.MANAGE_TAGS)
        with self.db.transaction() as conn:
            get_tag(conn, workspace_id, tag_id)
            conn.execute("DELETE FROM task_tags WHERE tag_id = ?", (tag_id,))
            conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
            record_activity(conn, workspace_id, actor.user_id, "tag", tag_id, "deleted")

    async def set_task_tags(
        self,
        workspace_id: str,
        task_id: str,
        actor: Actor,
        tag_ids: list[str],
    ) -> list[Tag]:
        """Replace a task's tag set."""
        actor.require(Action.EDIT_TASK)
        wanted = list(dict.fromkeys(tag_ids))

        with self.db.transaction() as conn:
            get_task(conn, workspace_id, task_id)
            tags = [get_tag(conn, workspace_id, tag_id) for tag_id in wanted]
            conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
            conn.executemany(
                "INSERT INTO task_tags (task_id, tag_id) VALUES (?, ?)",
                [(task_id, tag.id) for tag in tags],
            )
            record_activity(
                conn, workspace_id, actor.user_id, "task", task_id, "tags_set", {"tags": wanted}
            )

        logger.debug(
            "Set task tags",
            extra={"workspace_id": workspace_id, "task_id": task_id, "tags": len(tags)},
        )
        return sorted(tags, key=lambda tag: tag.name)

    async def get_task_tags(self, workspace_id: str, task_id: str, actor: Actor) -> list[Tag]:
        actor.require(Action.VIEW_TAG)
        with self.db.connect() as conn:
            get_task(conn, workspace_id, task_id)
            rows = conn.execute(
                """
                SELECT g.* FROM tags g
                JOIN task_tags tt ON tt.tag_id = g.id
                WHERE tt.task_id = ? AND g.workspace_id = ?
                ORDER BY g.name
                """,
                (task_id, workspace_id),
            ).fetchall()
        return [Tag.from_row(row) for row in rows]
