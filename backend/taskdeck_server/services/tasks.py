"""
Task operations.

Tasks are ordered within their status by the ordering engine. Moving a task
between statuses is a single ordering transaction that also maintains
completed_at: stamped when the task enters a done status, cleared when it
leaves one.

Invariants:
    - A task's status belongs to the task's workspace
    - assigned_to, when set, is a member of the task's workspace
    - Task title and description are indexed for search in the same
      transaction as the write
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..errors import NotFoundError, ValidationError
from ..models import SearchKind, Status, Task, new_id, now_ms
from ..ordering.engine import OrderedCollection, OrderingEngine
from ..requests import (
    CreateTaskRequest,
    ListTasksRequest,
    MoveTaskRequest,
    UpdateTaskRequest,
    parse,
)
from ..search.index import SearchIndex
from ..store.database import Database
from .statuses import get_status

logger = logging.getLogger(__name__)

_PRIORITY_RANK = """CASE t.priority
    WHEN 'lowest' THEN 0 WHEN 'low' THEN 1 WHEN 'medium' THEN 2
    WHEN 'high' THEN 3 WHEN 'highest' THEN 4 END"""

_ORDERINGS = {
    "position": "s.position {dir}, t.position {dir}",
    "created_at": "t.created_at {dir}",
    "updated_at": "t.updated_at {dir}",
    "due_date": "t.due_date IS NULL, t.due_date {dir}",
    "priority": f"{_PRIORITY_RANK} IS NULL, {_PRIORITY_RANK} {{dir}}",
    "title": "t.title COLLATE NOCASE {dir}",
}


def get_task(conn: sqlite3.Connection, workspace_id: str, task_id: str) -> Task:
    row = conn.execute(
        "SELECT * FROM tasks WHERE id = ? AND workspace_id = ?",
        (task_id, workspace_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Task", task_id)
    return Task.from_row(row)


def require_member(conn: sqlite3.Connection, workspace_id: str, user_id: str) -> None:
    """Reject assignees outside the workspace."""
    if not conn.execute(
        "SELECT 1 FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
        (workspace_id, user_id),
    ).fetchone():
        raise ValidationError(
            "Assignee must be a member of the workspace", field_name="assigned_to"
        )


def completion_after_move(task: Task, source: Status, destination: Status, now: int) -> int | None:
    if not destination.is_done:
        return None
    if not source.is_done or task.completed_at is None:
        return now
    return task.completed_at


class TaskService:
    """Kanban task operations."""

    def __init__(self, db: Database, ordering: OrderingEngine, index: SearchIndex | None = None) -> None:
        self.db = db
        self.ordering = ordering
        self.index = index or SearchIndex()

    def column(self, status_id: str) -> OrderedCollection:
        return OrderedCollection.tasks(status_id, stride=self.ordering.config.stride)

    async def list_tasks(
        self,
        workspace_id: str,
        actor: Actor,
        request: ListTasksRequest | dict[str, Any] | None = None,
    ) -> list[Task]:
        """Filtered, ordered and paginated tasks of a workspace."""
        actor.require(Action.VIEW_TASK)
        req = parse(ListTasksRequest, request or {})

        sql = """
            SELECT t.* FROM tasks t
            JOIN task_statuses s ON s.id = t.status_id
            WHERE t.workspace_id = ?
        """
        params: list[Any] = [workspace_id]

        if req.status_id is not None:
            sql += " AND t.status_id = ?"
            params.append(req.status_id)
        if req.priority is not None:
            sql += " AND t.priority = ?"
            params.append(req.priority.value)
        if req.assigned_to is not None:
            sql += " AND t.assigned_to = ?"
            params.append(req.assigned_to)
        if req.due_after is not None:
            sql += " AND t.due_date >= ?"
            params.append(req.due_after.isoformat())
        if req.due_before is not None:
            sql += " AND t.due_date <= ?"
            params.append(req.due_before.isoformat())
        if req.text:
            sql += " AND instr(lower(t.title), lower(?)) > 0"
            params.append(req.text)

        direction = "DESC" if req.descending else "ASC"
        sql += f" ORDER BY {_ORDERINGS[req.order_by].format(dir=direction)}, t.id LIMIT ? OFFSET ?"
        params.extend([req.limit, (req.page - 1) * req.limit])

        with self.db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Task.from_row(row) for row in rows]

    async def get(self, workspace_id: str, task_id: str, actor: Actor) -> Task:
        actor.require(Action.VIEW_TASK)
        with self.db.connect() as conn:
            return get_task(conn, workspace_id, task_id)

    async def create(
        self,
        workspace_id: str,
        actor: Actor,
        request: CreateTaskRequest | dict[str, Any],
    ) -> Task:
        """Create a task in a column, between anchors or at the end.

        Raises:
            NotFoundError: If the status is not in the workspace
            ValidationError: If the assignee is not a member, an anchor is
                not in the column, or the workspace has no columns
        """
        actor.require(Action.CREATE_TASK)
        req = parse(CreateTaskRequest, request)

        def write(conn: sqlite3.Connection) -> Task:
            status = self._target_status(conn, workspace_id, req.status_id)
            if req.assigned_to is not None:
                require_member(conn, workspace_id, req.assigned_to)

            position = self.ordering.insert_at(
                conn, self.column(status.id), req.before_id, req.after_id
            )
            now = now_ms()
            task = Task(
                id=new_id(),
                workspace_id=workspace_id,
                status_id=status.id,
                title=req.title,
                position=position,
                created_by=actor.user_id,
                description=req.description,
                priority=req.priority,
                due_date=req.due_date,
                time_estimate_minutes=req.time_estimate_minutes,
                assigned_to=req.assigned_to,
                external_refs=req.external_refs,
                created_at=now,
                updated_at=now,
                completed_at=now if status.is_done else None,
            )
            conn.execute(
                """
                INSERT INTO tasks (id, workspace_id, status_id, title, description, priority,
                                   due_date, time_estimate_minutes, position, created_by,
                                   assigned_to, external_refs_json, created_at, updated_at,
                                   completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    workspace_id,
                    status.id,
                    task.title,
                    task.description,
                    task.priority.value if task.priority else None,
                    task.due_date.isoformat() if task.due_date else None,
                    task.time_estimate_minutes,
                    position,
                    actor.user_id,
                    task.assigned_to,
                    json.dumps(task.external_refs),
                    now,
                    now,
                    task.completed_at,
                ),
            )
            self.index.upsert(conn, workspace_id, SearchKind.TASK, task.id, task.title, task.description)
            record_activity(
                conn, workspace_id, actor.user_id, "task", task.id, "created", {"title": task.title}
            )
            return task

        task = await self.ordering.run(write, description="create task")
        logger.debug(
            "Created task",
            extra={"workspace_id": workspace_id, "task_id": task.id, "position": task.position},
        )
        return task

    async def update(
        self,
        workspace_id: str,
        task_id: str,
        actor: Actor,
        request: UpdateTaskRequest | dict[str, Any],
    ) -> Task:
        """Patch a task. A new status_id appends the task to that column."""
        actor.require(Action.EDIT_TASK)
        req = parse(UpdateTaskRequest, request)
        fields = req.model_dump(exclude_unset=True)

        def write(conn: sqlite3.Connection) -> Task:
            task = get_task(conn, workspace_id, task_id)
            now = now_ms()

            if "status_id" in fields and fields["status_id"] != task.status_id:
                source = get_status(conn, workspace_id, task.status_id)
                destination = get_status(conn, workspace_id, fields["status_id"])
                self.ordering.move(
                    conn, task_id, self.column(source.id), self.column(destination.id)
                )
                task.completed_at = completion_after_move(task, source, destination, now)

            if fields.get("assigned_to") is not None:
                require_member(conn, workspace_id, fields["assigned_to"])

            for name in (
                "title",
                "description",
                "priority",
                "due_date",
                "time_estimate_minutes",
                "assigned_to",
                "external_refs",
            ):
                if name in fields:
                    setattr(task, name, getattr(req, name))
            task.updated_at = now

            conn.execute(
                """
                UPDATE tasks SET title = ?, description = ?, priority = ?, due_date = ?,
                                 time_estimate_minutes = ?, assigned_to = ?,
                                 external_refs_json = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    task.title,
                    task.description,
                    task.priority.value if task.priority else None,
                    task.due_date.isoformat() if task.due_date else None,
                    task.time_estimate_minutes,
                    task.assigned_to,
                    json.dumps(task.external_refs),
                    task.completed_at,
                    now,
                    task_id,
                ),
            )
            if "title" in fields or "description" in fields:
                self.index.upsert(
                    conn, workspace_id, SearchKind.TASK, task_id, task.title, task.description
                )
            record_activity(conn, workspace_id, actor.user_id, "task", task_id, "updated", fields)
            return get_task(conn, workspace_id, task_id)

        return await self.ordering.run(write, description="update task")

    async def move(
        self,
        workspace_id: str,
        task_id: str,
        actor: Actor,
        request: MoveTaskRequest | dict[str, Any],
    ) -> Task:
        """Move a task to index ``position`` of a (possibly different) column.

        The index counts the destination's tasks without the moving one and
        is clamped to the end of the column. Without a position the task
        goes to the end.
        """
        actor.require(Action.MOVE_TASK)
        req = parse(MoveTaskRequest, request)

        def write(conn: sqlite3.Connection) -> Task:
            task = get_task(conn, workspace_id, task_id)
            source = get_status(conn, workspace_id, task.status_id)
            destination = get_status(conn, workspace_id, req.status_id)
            target = self.column(destination.id)

            siblings = [
                item_id for item_id, _ in self.ordering.members(conn, target, exclude_id=task_id)
            ]
            if req.position is None:
                index = len(siblings)
            else:
                index = min(req.position, len(siblings))
            before_id = siblings[index - 1] if index > 0 else None
            after_id = siblings[index] if index < len(siblings) else None

            position = self.ordering.move(
                conn, task_id, self.column(source.id), target, before_id, after_id
            )
            now = now_ms()
            conn.execute(
                "UPDATE tasks SET completed_at = ?, updated_at = ? WHERE id = ?",
                (completion_after_move(task, source, destination, now), now, task_id),
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "task",
                task_id,
                "moved",
                {"from": source.id, "to": destination.id, "position": position},
            )
            return get_task(conn, workspace_id, task_id)

        return await self.ordering.run(write, description="move task")

    async def delete(self, workspace_id: str, task_id: str, actor: Actor) -> None:
        """Delete a task with its comments, tags, links and search entries."""
        actor.require(Action.DELETE_TASK)
        with self.db.transaction() as conn:
            task = get_task(conn, workspace_id, task_id)
            conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
            conn.execute("DELETE FROM task_document_links WHERE task_id = ?", (task_id,))
            conn.execute("DELETE FROM task_comments WHERE task_id = ?", (task_id,))
            self.index.remove_task(conn, task_id)
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            record_activity(
                conn, workspace_id, actor.user_id, "task", task_id, "deleted", {"title": task.title}
            )

        logger.debug("Deleted task", extra={"workspace_id": workspace_id, "task_id": task_id})

    def _target_status(
        self, conn: sqlite3.Connection, workspace_id: str, status_id: str | None
    ) -> Status:
        if status_id is not None:
            return get_status(conn, workspace_id, status_id)
        row = conn.execute(
            "SELECT * FROM task_statuses WHERE workspace_id = ? ORDER BY position LIMIT 1",
            (workspace_id,),
        ).fetchone()
        if row is None:
            raise ValidationError("Workspace has no statuses", field_name="status_id")
        return Status.from_row(row)
