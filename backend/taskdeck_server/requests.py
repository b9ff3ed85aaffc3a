"""
Operation payloads for Taskdeck.

Every service operation that accepts caller input validates it through one
of these pydantic models before touching storage. Services accept either a
model instance or a plain dict; parse() converts pydantic's errors into
ValidationError so callers see a single error hierarchy.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .authz.roles import Role
from .errors import ValidationError
from .models import Priority, SearchKind

RequestT = TypeVar("RequestT", bound=BaseModel)

_COLOR = r"^#[0-9A-Fa-f]{6}$"


def parse(model: type[RequestT], payload: RequestT | dict[str, Any]) -> RequestT:
    """Validate a payload into a request model.

    Raises:
        ValidationError: If the payload does not fit the model
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        first = e.errors()[0]["loc"] if e.errors() else ()
        raise ValidationError(
            f"Invalid {model.__name__}: {'; '.join(errors)}",
            field_name=str(first[0]) if first else None,
            errors=errors,
        ) from e


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# =============================================================================
# Workspaces
# =============================================================================


class CreateWorkspaceRequest(_Request):
    """Create a workspace owned by the caller."""

    name: str = Field(..., min_length=1, max_length=100, description="Workspace name")
    description: str | None = Field(None, max_length=2000)
    settings: dict[str, Any] = Field(default_factory=dict, description="Open-ended settings")


class UpdateWorkspaceRequest(_Request):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=2000)
    settings: dict[str, Any] | None = None


# =============================================================================
# Statuses
# =============================================================================


class CreateStatusRequest(_Request):
    name: str = Field(..., min_length=1, max_length=50, description="Column name")
    color: str | None = Field(None, pattern=_COLOR)
    is_done: bool = False


class UpdateStatusRequest(_Request):
    name: str | None = Field(None, min_length=1, max_length=50)
    color: str | None = Field(None, pattern=_COLOR)
    is_done: bool | None = None


# =============================================================================
# Tasks
# =============================================================================


class CreateTaskRequest(_Request):
    """Create a task, appended to its column unless anchors are given."""

    title: str = Field(..., min_length=1, max_length=500, description="Task title")
    description: str | None = None
    status_id: str | None = Field(None, description="Column; the first column when omitted")
    priority: Priority | None = None
    due_date: date | None = None
    time_estimate_minutes: int | None = Field(None, ge=0)
    assigned_to: str | None = None
    external_refs: dict[str, Any] = Field(default_factory=dict)
    before_id: str | None = Field(None, description="Task that should precede the new one")
    after_id: str | None = Field(None, description="Task that should follow the new one")


class UpdateTaskRequest(_Request):
    """Partial task update. Fields explicitly set to None are cleared."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    status_id: str | None = None
    priority: Priority | None = None
    due_date: date | None = None
    time_estimate_minutes: int | None = Field(None, ge=0)
    assigned_to: str | None = None
    external_refs: dict[str, Any] | None = None

    @field_validator("title", "status_id", "external_refs")
    @classmethod
    def _not_clearable(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("cannot be cleared")
        return value


TaskOrdering = Literal["position", "created_at", "updated_at", "due_date", "priority", "title"]


class ListTasksRequest(_Request):
    status_id: str | None = None
    priority: Priority | None = None
    assigned_to: str | None = None
    due_after: date | None = None
    due_before: date | None = None
    text: str | None = Field(None, max_length=200, description="Substring of title")
    order_by: TaskOrdering = "position"
    descending: bool = False
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=200)


class MoveTaskRequest(_Request):
    status_id: str = Field(..., description="Destination column")
    position: int | None = Field(
        None, ge=0, description="Index within the destination column; the end when omitted"
    )


# =============================================================================
# Comments and tags
# =============================================================================


class CommentRequest(_Request):
    content: str = Field(..., min_length=1, max_length=10000)


class CreateTagRequest(_Request):
    name: str = Field(..., min_length=1, max_length=50)
    color: str | None = Field(None, pattern=_COLOR)


class UpdateTagRequest(_Request):
    name: str | None = Field(None, min_length=1, max_length=50)
    color: str | None = Field(None, pattern=_COLOR)


# =============================================================================
# Documents
# =============================================================================


class CreateDocumentRequest(_Request):
    title: str = Field(..., min_length=1, max_length=200)
    parent_id: str | None = None
    content: str = ""
    slug: str | None = Field(None, description="Explicit path label")
    before_id: str | None = None
    after_id: str | None = None


class UpdateDocumentRequest(_Request):
    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = None


class MoveDocumentRequest(_Request):
    new_parent_id: str | None = Field(None, description="New parent, None for the root")
    before_id: str | None = None
    after_id: str | None = None


# =============================================================================
# Members and invitations
# =============================================================================


class CreateInviteRequest(_Request):
    email: EmailStr
    role: Role = Role.READER

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class ChangeRoleRequest(_Request):
    role: Role


# =============================================================================
# Search
# =============================================================================


class SearchRequest(_Request):
    query: str = Field(..., max_length=500)
    kinds: list[SearchKind] | None = None
    page: int = Field(1, ge=1)
    limit: int | None = Field(None, ge=1)
