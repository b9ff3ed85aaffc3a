"""
Task comment operations.

Only the author may edit a comment. The author or an admin may delete it.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..errors import ForbiddenError, NotFoundError
from ..models import Comment, SearchKind, new_id, now_ms
from ..requests import CommentRequest, parse
from ..search.index import SearchIndex
from ..store.database import Database
from .tasks import get_task

logger = logging.getLogger(__name__)


def get_comment(conn: sqlite3.Connection, workspace_id: str, comment_id: str) -> Comment:
    row = conn.execute(
        """
        SELECT c.* FROM task_comments c
        JOIN tasks t ON t.id = c.task_id
        WHERE c.id = ? AND t.workspace_id = ?
        """,
        (comment_id, workspace_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Comment", comment_id)
    return Comment.from_row(row)


class CommentService:
    def __init__(self, db: Database, index: SearchIndex | None = None) -> None:
        self.db = db
        self.index = index or SearchIndex()

    async def list_comments(self, workspace_id: str, task_id: str, actor: Actor) -> list[Comment]:
        actor.require(Action.VIEW_COMMENT)
        with self.db.connect() as conn:
            get_task(conn, workspace_id, task_id)
            rows = conn.execute(
                "SELECT * FROM task_comments WHERE task_id = ? ORDER BY created_at, id",
                (task_id,),
            ).fetchall()
        return [Comment.from_row(row) for row in rows]

    async def create(
        self,
        workspace_id: str,
        task_id: str,
        actor: Actor,
        request: CommentRequest | dict[str, Any],
    ) -> Comment:
        actor.require(Action.CREATE_COMMENT)
        req = parse(CommentRequest, request)
        now = now_ms()
        comment = Comment(
            id=new_id(),
            task_id=task_id,
            user_id=actor.user_id,
            content=req.content,
            created_at=now,
            updated_at=now,
        )

        with self.db.transaction() as conn:
            get_task(conn, workspace_id, task_id)
            conn.execute(
                """
                INSERT INTO task_comments (id, task_id, user_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (comment.id, task_id, actor.user_id, comment.content, now, now),
            )
            self.index.upsert(
                conn, workspace_id, SearchKind.COMMENT, comment.id, "", comment.content, task_id=task_id
            )
            record_activity(conn, workspace_id, actor.user_id, "comment", comment.id, "created")

        logger.debug(
            "Created comment",
            extra={"workspace_id": workspace_id, "task_id": task_id, "comment_id": comment.id},
        )
        return comment

    async def update(
        self,
        workspace_id: str,
        comment_id: str,
        actor: Actor,
        request: CommentRequest | dict[str, Any],
    ) -> Comment:
        """Edit a comment's content.

        Raises:
            ForbiddenError: If the actor is not the author
        """
        actor.require(Action.EDIT_COMMENT)
        req = parse(CommentRequest, request)

        with self.db.transaction() as conn:
            comment = get_comment(conn, workspace_id, comment_id)
            if comment.user_id != actor.user_id:
                raise ForbiddenError(
                    actor.role.value,
                    Action.EDIT_COMMENT.value,
                    "only the author may edit a comment",
                )
            comment.content = req.content
            comment.updated_at = now_ms()
            conn.execute(
                "UPDATE task_comments SET content = ?, updated_at = ? WHERE id = ?",
                (comment.content, comment.updated_at, comment_id),
            )
            self.index.upsert(
                conn,
                workspace_id,
                SearchKind.COMMENT,
                comment_id,
                "",
                comment.content,
                task_id=comment.task_id,
            )
            record_activity(conn, workspace_id, actor.user_id, "comment", comment_id, "updated")

        return comment

    async def delete(self, workspace_id: str, comment_id: str, actor: Actor) -> None:
        """Delete a comment as its author, or as a moderator.

        Raises:
            ForbiddenError: If the actor is neither author nor moderator
        """
        actor.require(Action.DELETE_OWN_COMMENT)
        with self.db.transaction() as conn:
            comment = get_comment(conn, workspace_id, comment_id)
            if comment.user_id != actor.user_id:
                actor.require(Action.MODERATE_COMMENTS)

            conn.execute("DELETE FROM task_comments WHERE id = ?", (comment_id,))
            self.index.remove(conn, SearchKind.COMMENT, [comment_id])
            record_activity(conn, workspace_id, actor.user_id, "comment", comment_id, "deleted")

        logger.debug(
            "Deleted comment",
            extra={
                "workspace_id": workspace_id,
                "comment_id": comment_id,
                "moderated": comment.user_id != actor.user_id,
            },
        )
