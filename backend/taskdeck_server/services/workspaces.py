"""
Workspace operations.

Creating a workspace makes the creator its owner and seeds the default
kanban columns in the same transaction. Each user who owns workspaces has
exactly one default workspace; the partial unique index on
workspaces(owner_id) WHERE is_default = 1 backs the checks made here.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor, Role
from ..errors import ConflictError, NotFoundError
from ..models import Workspace, new_id, now_ms
from ..requests import CreateWorkspaceRequest, UpdateWorkspaceRequest, parse
from ..search.index import SearchIndex
from ..slugs import workspace_slug
from ..store.database import Database
from .statuses import seed_default_statuses

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_NAME = "Personal"

# Child tables first; foreign keys are enforced and nothing cascades
_WORKSPACE_CASCADE = (
    """
    DELETE FROM task_document_links
    WHERE task_id IN (SELECT id FROM tasks WHERE workspace_id = :ws)
       OR document_id IN (SELECT id FROM documents WHERE workspace_id = :ws)
    """,
    "DELETE FROM task_tags WHERE task_id IN (SELECT id FROM tasks WHERE workspace_id = :ws)",
    "DELETE FROM task_comments WHERE task_id IN (SELECT id FROM tasks WHERE workspace_id = :ws)",
    "DELETE FROM tasks WHERE workspace_id = :ws",
    "DELETE FROM tags WHERE workspace_id = :ws",
    "DELETE FROM documents WHERE workspace_id = :ws",
    "DELETE FROM task_statuses WHERE workspace_id = :ws",
    "DELETE FROM workspace_invites WHERE workspace_id = :ws",
    "DELETE FROM activity_log WHERE workspace_id = :ws",
    "DELETE FROM workspace_members WHERE workspace_id = :ws",
    "DELETE FROM workspaces WHERE id = :ws",
)


def get_workspace(conn: sqlite3.Connection, workspace_id: str) -> Workspace:
    row = conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
    if row is None:
        raise NotFoundError("Workspace", workspace_id)
    return Workspace.from_row(row)


class WorkspaceService:
    """Create, update and delete workspaces."""

    def __init__(self, db: Database, index: SearchIndex | None = None) -> None:
        self.db = db
        self.index = index or SearchIndex()

    async def create(
        self,
        owner_id: str,
        request: CreateWorkspaceRequest | dict[str, Any],
        is_default: bool = False,
    ) -> Workspace:
        """Create a workspace owned by owner_id.

        Raises:
            ConflictError: If is_default is set and the owner already has a default
        """
        req = parse(CreateWorkspaceRequest, request)
        now = now_ms()
        workspace_id = new_id()
        workspace = Workspace(
            id=workspace_id,
            name=req.name,
            slug=workspace_slug(req.name, workspace_id),
            owner_id=owner_id,
            description=req.description,
            settings=req.settings,
            is_default=is_default,
            created_at=now,
            updated_at=now,
        )

        with self.db.transaction() as conn:
            has_default = self._default_row(conn, owner_id) is not None
            if is_default and has_default:
                raise ConflictError(
                    "User already has a default workspace", details={"owner_id": owner_id}
                )
            # An owner's first workspace becomes their default
            is_default = workspace.is_default = not has_default

            conn.execute(
                """
                INSERT INTO workspaces (id, name, slug, description, owner_id, settings_json,
                                        is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    workspace.id,
                    workspace.name,
                    workspace.slug,
                    workspace.description,
                    owner_id,
                    json.dumps(workspace.settings),
                    int(is_default),
                    now,
                    now,
                ),
            )
            conn.execute(
                """
                INSERT INTO workspace_members (workspace_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                """,
                (workspace.id, owner_id, Role.OWNER.value, now),
            )
            seed_default_statuses(conn, workspace.id)
            record_activity(
                conn, workspace.id, owner_id, "workspace", workspace.id, "created", {"name": req.name}
            )

        logger.info(
            "Created workspace",
            extra={"workspace_id": workspace.id, "owner_id": owner_id, "is_default": is_default},
        )
        return workspace

    async def ensure_default(self, user_id: str) -> Workspace:
        """Return the user's default workspace, creating it on first use."""
        with self.db.connect() as conn:
            row = self._default_row(conn, user_id)
        if row is not None:
            return Workspace.from_row(row)
        return await self.create(user_id, {"name": DEFAULT_WORKSPACE_NAME}, is_default=True)

    async def list_for_user(self, user_id: str) -> list[tuple[Workspace, Role]]:
        """Workspaces the user belongs to with their role, default first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT w.*, m.role AS member_role FROM workspaces w
                JOIN workspace_members m ON m.workspace_id = w.id
                WHERE m.user_id = ?
                ORDER BY (w.owner_id = ? AND w.is_default = 1) DESC, w.name, w.id
                """,
                (user_id, user_id),
            ).fetchall()
        return [(Workspace.from_row(row), Role(row["member_role"])) for row in rows]

    async def get(self, workspace_id: str, actor: Actor) -> Workspace:
        actor.require(Action.VIEW_WORKSPACE)
        with self.db.connect() as conn:
            return get_workspace(conn, workspace_id)

    async def update(
        self,
        workspace_id: str,
        actor: Actor,
        request: UpdateWorkspaceRequest | dict[str, Any],
    ) -> Workspace:
        """Update name, description or settings. The slug never changes."""
        actor.require(Action.UPDATE_WORKSPACE)
        req = parse(UpdateWorkspaceRequest, request)
        fields = req.model_dump(exclude_unset=True)

        with self.db.transaction() as conn:
            workspace = get_workspace(conn, workspace_id)
            if fields.get("name") is not None:
                workspace.name = fields["name"]
            if "description" in fields:
                workspace.description = fields["description"]
            if fields.get("settings") is not None:
                workspace.settings = fields["settings"]
            workspace.updated_at = now_ms()

            conn.execute(
                """
                UPDATE workspaces SET name = ?, description = ?, settings_json = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    workspace.name,
                    workspace.description,
                    json.dumps(workspace.settings),
                    workspace.updated_at,
                    workspace_id,
                ),
            )
            record_activity(
                conn, workspace_id, actor.user_id, "workspace", workspace_id, "updated", fields
            )

        return workspace

    async def set_default(self, workspace_id: str, actor: Actor) -> Workspace:
        """Make an owned workspace the owner's default."""
        actor.require(Action.SET_DEFAULT_WORKSPACE)
        with self.db.transaction() as conn:
            workspace = get_workspace(conn, workspace_id)
            conn.execute(
                "UPDATE workspaces SET is_default = 0 WHERE owner_id = ? AND is_default = 1",
                (workspace.owner_id,),
            )
            conn.execute("UPDATE workspaces SET is_default = 1 WHERE id = ?", (workspace_id,))
            record_activity(conn, workspace_id, actor.user_id, "workspace", workspace_id, "set_default")
        workspace.is_default = True
        return workspace

    async def delete(self, workspace_id: str, actor: Actor) -> None:
        """Delete a workspace and every row it owns.

        Raises:
            ConflictError: If it is the owner's default workspace
        """
        actor.require(Action.DELETE_WORKSPACE)
        with self.db.transaction() as conn:
            workspace = get_workspace(conn, workspace_id)
            if workspace.is_default:
                raise ConflictError(
                    "The default workspace cannot be deleted",
                    details={"workspace_id": workspace_id},
                )
            self.index.remove_workspace(conn, workspace_id)
            for statement in _WORKSPACE_CASCADE:
                conn.execute(statement, {"ws": workspace_id})

        logger.info("Deleted workspace", extra={"workspace_id": workspace_id})

    def _default_row(self, conn: sqlite3.Connection, owner_id: str) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT * FROM workspaces WHERE owner_id = ? AND is_default = 1", (owner_id,)
        ).fetchone()
