"""
Task-document links. Both ends must belong to the same workspace.
"""

from __future__ import annotations

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..errors import NotFoundError
from ..models import Document, Task, TaskDocumentLink, now_ms
from ..store.database import Database
from .tasks import get_task


class LinkService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def link(
        self, workspace_id: str, task_id: str, document_id: str, actor: Actor
    ) -> TaskDocumentLink:
        """Link a task to a document. Linking twice is a no-op."""
        actor.require(Action.LINK_DOCUMENT)
        now = now_ms()
        with self.db.transaction() as conn:
            get_task(conn, workspace_id, task_id)
            if not conn.execute(
                "SELECT 1 FROM documents WHERE id = ? AND workspace_id = ?",
                (document_id, workspace_id),
            ).fetchone():
                raise NotFoundError("Document", document_id)

            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO task_document_links (task_id, document_id, created_by, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (task_id, document_id, actor.user_id, now),
            )
            if cursor.rowcount:
                record_activity(
                    conn,
                    workspace_id,
                    actor.user_id,
                    "task",
                    task_id,
                    "document_linked",
                    {"document_id": document_id},
                )
            row = conn.execute(
                "SELECT * FROM task_document_links WHERE task_id = ? AND document_id = ?",
                (task_id, document_id),
            ).fetchone()

        return TaskDocumentLink(
            task_id=row["task_id"],
            document_id=row["document_id"],
            created_at=row["created_at"],
            created_by=row["created_by"],
        )

    async def unlink(self, workspace_id: str, task_id: str, document_id: str, actor: Actor) -> None:
        actor.require(Action.LINK_DOCUMENT)
        with self.db.transaction() as conn:
            get_task(conn, workspace_id, task_id)
            cursor = conn.execute(
                "DELETE FROM task_document_links WHERE task_id = ? AND document_id = ?",
                (task_id, document_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Link", f"{task_id}/{document_id}")
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "task",
                task_id,
                "document_unlinked",
                {"document_id": document_id},
            )

    async def documents_for_task(self, workspace_id: str, task_id: str, actor: Actor) -> list[Document]:
        actor.require(Action.VIEW_DOCUMENT)
        with self.db.connect() as conn:
            get_task(conn, workspace_id, task_id)
            rows = conn.execute(
                """
                SELECT d.* FROM documents d
                JOIN task_document_links l ON l.document_id = d.id
                WHERE l.task_id = ? AND d.workspace_id = ?
                ORDER BY d.path
                """,
                (task_id, workspace_id),
            ).fetchall()
        return [Document.from_row(row) for row in rows]

    async def tasks_for_document(self, workspace_id: str, document_id: str, actor: Actor) -> list[Task]:
        actor.require(Action.VIEW_TASK)
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM tasks t
                JOIN task_document_links l ON l.task_id = t.id
                WHERE l.document_id = ? AND t.workspace_id = ?
                ORDER BY t.created_at, t.id
                """,
                (document_id, workspace_id),
            ).fetchall()
        return [Task.from_row(row) for row in rows]
