"""
Kanban status operations.

Statuses are an ordered collection per workspace with dense positions
0..n-1. Every write that changes the set of positions runs through the
ordering engine so the collection is re-densified in the same transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Status, new_id, now_ms
from ..ordering.engine import OrderedCollection, OrderingEngine
from ..requests import CreateStatusRequest, UpdateStatusRequest, parse
from ..slugs import slugify
from ..store.database import Database

logger = logging.getLogger(__name__)

# (name, slug, color, is_done) seeded into every new workspace
DEFAULT_STATUSES: tuple[tuple[str, str, str, bool], ...] = (
    ("To Do", "todo", "#6B7280", False),
    ("In Progress", "in-progress", "#3B82F6", False),
    ("Done", "done", "#10B981", True),
)


def get_status(conn: sqlite3.Connection, workspace_id: str, status_id: str) -> Status:
    row = conn.execute(
        "SELECT * FROM task_statuses WHERE id = ? AND workspace_id = ?",
        (status_id, workspace_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Status", status_id)
    return Status.from_row(row)


def seed_default_statuses(conn: sqlite3.Connection, workspace_id: str) -> list[Status]:
    """Insert the default columns into an empty workspace."""
    now = now_ms()
    statuses = []
    for position, (name, slug, color, is_done) in enumerate(DEFAULT_STATUSES):
        status = Status(
            id=new_id(),
            workspace_id=workspace_id,
            name=name,
            slug=slug,
            position=position,
            color=color,
            is_done=is_done,
            created_at=now,
        )
        conn.execute(
            """
            INSERT INTO task_statuses (id, workspace_id, name, slug, color, position,
                                       is_done, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (status.id, workspace_id, name, slug, color, position, int(is_done), now),
        )
        statuses.append(status)
    return statuses


class StatusService:
    """CRUD and reordering of kanban columns."""

    def __init__(self, db: Database, ordering: OrderingEngine) -> None:
        self.db = db
        self.ordering = ordering

    async def list_statuses(self, workspace_id: str, actor: Actor) -> list[Status]:
        actor.require(Action.VIEW_STATUS)
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM task_statuses WHERE workspace_id = ? ORDER BY position",
                (workspace_id,),
            ).fetchall()
        return [Status.from_row(row) for row in rows]

    async def get(self, workspace_id: str, status_id: str, actor: Actor) -> Status:
        actor.require(Action.VIEW_STATUS)
        with self.db.connect() as conn:
            return get_status(conn, workspace_id, status_id)

    async def create(
        self,
        workspace_id: str,
        actor: Actor,
        request: CreateStatusRequest | dict[str, Any],
    ) -> Status:
        """Append a column to the board.

        Raises:
            ConflictError: If a column with the same slug exists
        """
        actor.require(Action.CREATE_STATUS)
        req = parse(CreateStatusRequest, request)
        slug = slugify(req.name)
        if not slug:
            raise ValidationError("Status name must contain letters or digits", field_name="name")

        def write(conn: sqlite3.Connection) -> Status:
            if conn.execute(
                "SELECT 1 FROM task_statuses WHERE workspace_id = ? AND slug = ?",
                (workspace_id, slug),
            ).fetchone():
                raise ConflictError(
                    f"A status with slug '{slug}' already exists",
                    details={"workspace_id": workspace_id, "slug": slug},
                )

            position = self.ordering.insert_at(conn, OrderedCollection.statuses(workspace_id))
            status = Status(
                id=new_id(),
                workspace_id=workspace_id,
                name=req.name,
                slug=slug,
                position=position,
                color=req.color,
                is_done=req.is_done,
                created_at=now_ms(),
            )
            conn.execute(
                """
                INSERT INTO task_statuses (id, workspace_id, name, slug, color, position,
                                           is_done, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    status.id,
                    workspace_id,
                    status.name,
                    slug,
                    status.color,
                    position,
                    int(status.is_done),
                    status.created_at,
                ),
            )
            record_activity(
                conn, workspace_id, actor.user_id, "status", status.id, "created", {"name": req.name}
            )
            return status

        return await self.ordering.run(write, description="create status")

    async def update(
        self,
        workspace_id: str,
        status_id: str,
        actor: Actor,
        request: UpdateStatusRequest | dict[str, Any],
    ) -> Status:
        """Rename, recolor or flip the done flag of a column.

        Flipping is_done stamps or clears completed_at on the column's tasks.
        """
        actor.require(Action.EDIT_STATUS)
        req = parse(UpdateStatusRequest, request)
        fields = req.model_dump(exclude_unset=True)

        with self.db.transaction() as conn:
            status = get_status(conn, workspace_id, status_id)
            now = now_ms()

            if "name" in fields and fields["name"] is not None:
                status.name = fields["name"]
            if "color" in fields:
                status.color = fields["color"]
            if fields.get("is_done") is not None and fields["is_done"] != status.is_done:
                status.is_done = fields["is_done"]
                if status.is_done:
                    conn.execute(
                        """
                        UPDATE tasks SET completed_at = ?
                        WHERE status_id = ? AND completed_at IS NULL
                        """,
                        (now, status_id),
                    )
                else:
                    conn.execute(
                        "UPDATE tasks SET completed_at = NULL WHERE status_id = ?",
                        (status_id,),
                    )

            conn.execute(
                "UPDATE task_statuses SET name = ?, color = ?, is_done = ? WHERE id = ?",
                (status.name, status.color, int(status.is_done), status_id),
            )
            record_activity(conn, workspace_id, actor.user_id, "status", status_id, "updated", fields)

        return status

    async def delete(self, workspace_id: str, status_id: str, actor: Actor) -> None:
        """Remove an empty column and close the gap it leaves.

        Raises:
            ConflictError: If tasks remain in the column
        """
        actor.require(Action.DELETE_STATUS)

        def write(conn: sqlite3.Connection) -> None:
            get_status(conn, workspace_id, status_id)
            remaining = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE status_id = ?", (status_id,)
            ).fetchone()[0]
            if remaining:
                raise ConflictError(
                    "Cannot delete a status that still holds tasks; move or delete them first",
                    details={"status_id": status_id, "tasks": remaining},
                )
            conn.execute("DELETE FROM task_statuses WHERE id = ?", (status_id,))
            self.ordering.rebalance(conn, OrderedCollection.statuses(workspace_id))
            record_activity(conn, workspace_id, actor.user_id, "status", status_id, "deleted")

        await self.ordering.run(write, description="delete status")
        logger.info(
            "Deleted status",
            extra={"workspace_id": workspace_id, "status_id": status_id},
        )

    async def reorder(self, workspace_id: str, actor: Actor, status_ids: list[str]) -> list[Status]:
        """Apply an explicit column order.

        Raises:
            ValidationError: If status_ids is not a permutation of the columns
        """
        actor.require(Action.REORDER_STATUSES)

        def write(conn: sqlite3.Connection) -> None:
            self.ordering.reorder(conn, OrderedCollection.statuses(workspace_id), status_ids)
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "workspace",
                workspace_id,
                "statuses_reordered",
                {"order": status_ids},
            )

        await self.ordering.run(write, description="reorder statuses")
        return await self.list_statuses(workspace_id, actor)
