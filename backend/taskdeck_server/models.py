"""
Domain records for Taskdeck.

Rows are read out of SQLite and converted into these dataclasses by the
``from_row`` constructors; nothing here touches storage on its own.

Timestamps are Unix milliseconds. JSON columns (settings, external refs,
activity changes) are decoded into plain dicts.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from .authz.roles import Role


def now_ms() -> int:
    """Current time in Unix milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid.uuid4())


class Priority(Enum):
    """Task priority, ordered lowest to highest."""

    LOWEST = "lowest"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"

    @property
    def rank(self) -> int:
        return list(Priority).index(self)


class InviteStatus(Enum):
    """Derived invitation state. Expiry is never stored."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class SearchKind(Enum):
    """Searchable entity kinds."""

    TASK = "task"
    DOCUMENT = "document"
    COMMENT = "comment"


@dataclass
class Workspace:
    """A tenant: every other record belongs to exactly one workspace."""

    id: str
    name: str
    slug: str
    owner_id: str
    description: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    is_default: bool = False
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Workspace:
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            owner_id=row["owner_id"],
            description=row["description"],
            settings=json.loads(row["settings_json"]),
            is_default=bool(row["is_default"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Member:
    """A (workspace, user) pair with exactly one role."""

    workspace_id: str
    user_id: str
    role: Role
    joined_at: int
    invited_by: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Member:
        return cls(
            workspace_id=row["workspace_id"],
            user_id=row["user_id"],
            role=Role(row["role"]),
            joined_at=row["joined_at"],
            invited_by=row["invited_by"],
        )


@dataclass
class Invitation:
    """An offer of membership, redeemed once by its opaque token.

    Attributes:
        id: Invitation identifier
        workspace_id: Workspace the invitation grants access to
        email: Invitee email, lowercased
        role: Role granted on acceptance
        token: Opaque single-use token
        invited_by: User who created the invitation
        expires_at: Expiry timestamp (Unix ms)
        accepted_at: Acceptance timestamp, None while unused
        accepted_by: User who accepted
        created_at: Creation timestamp (Unix ms)
    """

    id: str
    workspace_id: str
    email: str
    role: Role
    token: str
    invited_by: str
    expires_at: int
    created_at: int
    accepted_at: int | None = None
    accepted_by: str | None = None

    def status(self, now: int | None = None) -> InviteStatus:
        if self.accepted_at is not None:
            return InviteStatus.ACCEPTED
        if (now if now is not None else now_ms()) > self.expires_at:
            return InviteStatus.EXPIRED
        return InviteStatus.PENDING

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Invitation:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            email=row["email"],
            role=Role(row["role"]),
            token=row["token"],
            invited_by=row["invited_by"],
            expires_at=row["expires_at"],
            created_at=row["created_at"],
            accepted_at=row["accepted_at"],
            accepted_by=row["accepted_by"],
        )


@dataclass
class Status:
    """A kanban column. Positions are dense within the workspace."""

    id: str
    workspace_id: str
    name: str
    slug: str
    position: int
    color: str | None = None
    is_done: bool = False
    created_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Status:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            slug=row["slug"],
            position=row["position"],
            color=row["color"],
            is_done=bool(row["is_done"]),
            created_at=row["created_at"],
        )


@dataclass
class Task:
    """A kanban card. Positions are unique within the status, not dense."""

    id: str
    workspace_id: str
    status_id: str
    title: str
    position: int
    created_by: str
    description: str | None = None
    priority: Priority | None = None
    due_date: date | None = None
    time_estimate_minutes: int | None = None
    assigned_to: str | None = None
    external_refs: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0
    completed_at: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Task:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            status_id=row["status_id"],
            title=row["title"],
            position=row["position"],
            created_by=row["created_by"],
            description=row["description"],
            priority=Priority(row["priority"]) if row["priority"] else None,
            due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
            time_estimate_minutes=row["time_estimate_minutes"],
            assigned_to=row["assigned_to"],
            external_refs=json.loads(row["external_refs_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )


@dataclass
class Comment:
    id: str
    task_id: str
    user_id: str
    content: str
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Comment:
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            content=row["content"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Tag:
    id: str
    workspace_id: str
    name: str
    color: str | None = None
    created_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Tag:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            color=row["color"],
            created_at=row["created_at"],
        )


@dataclass
class Document:
    """A knowledge-base page placed in the tree by its materialized path.

    Attributes:
        path: Dot-separated labels of the ancestor chain, ending in slug
        parent_path: Path of the parent, '' for roots
        position: Order among siblings sharing parent_path
    """

    id: str
    workspace_id: str
    path: str
    parent_path: str
    position: int
    title: str
    slug: str
    created_by: str
    parent_id: str | None = None
    content: str = ""
    created_at: int = 0
    updated_at: int = 0

    @property
    def depth(self) -> int:
        return self.path.count(".") + 1

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Document:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            path=row["path"],
            parent_path=row["parent_path"],
            position=row["position"],
            title=row["title"],
            slug=row["slug"],
            created_by=row["created_by"],
            parent_id=row["parent_id"],
            content=row["content"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class DocumentTree:
    """Documents grouped by parent path, each group in sibling order.

    The root group is keyed by ''.
    """

    children: dict[str, list[Document]] = field(default_factory=dict)

    def roots(self) -> list[Document]:
        return self.children.get("", [])

    def children_of(self, path: str) -> list[Document]:
        return self.children.get(path, [])


@dataclass
class TaskDocumentLink:
    task_id: str
    document_id: str
    created_at: int
    created_by: str | None = None


@dataclass
class ActivityEntry:
    """One audited mutation, written in the mutation's transaction."""

    id: str
    workspace_id: str
    user_id: str
    entity_type: str
    entity_id: str
    action: str
    changes: dict[str, Any]
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ActivityEntry:
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            action=row["action"],
            changes=json.loads(row["changes_json"]),
            created_at=row["created_at"],
        )


@dataclass
class SearchHit:
    """A ranked search result.

    Attributes:
        kind: Entity kind
        entity_id: Entity identifier
        title: Title of the entity (the parent task's title for comments)
        snippet: Excerpt with matches wrapped in <<...>>
        score: Combined ranking score
        lexical_score: Normalised full-text relevance, 0 when no lexical hit
        trigram_score: Best trigram similarity over title and body
        task_id: Owning task for comments
    """

    kind: SearchKind
    entity_id: str
    title: str
    snippet: str
    score: float
    lexical_score: float = 0.0
    trigram_score: float = 0.0
    task_id: str | None = None


@dataclass
class SearchPage:
    hits: list[SearchHit]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total
