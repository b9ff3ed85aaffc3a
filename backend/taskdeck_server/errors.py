"""
Error types for Taskdeck Server.

This module defines all exception types raised by the core:
- TaskdeckError: Base exception
- ForbiddenError: Authorization denial for a (role, action) pair
- NotFoundError: Entity or token absent, or outside the caller's workspace
- ConflictError: Ordering contention or duplicate unique key
- InvalidTransitionError: Lifecycle or hierarchy move that is not allowed
- ValidationError: Malformed input, caught before storage access

Invariants:
    - All errors inherit from TaskdeckError
    - NotFoundError never reveals whether a row exists in another workspace
    - Only ConflictError is worth retrying
"""

from __future__ import annotations

from typing import Any


class TaskdeckError(Exception):
    """Base exception for all Taskdeck errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TASKDECK_ERROR"
        self.details = details or {}


class ForbiddenError(TaskdeckError):
    """Actor's role does not permit the action.

    Attributes:
        role: Role that was evaluated
        action: Action that was denied
    """

    def __init__(self, role: str, action: str, reason: str | None = None) -> None:
        msg = reason or f"Role '{role}' may not perform '{action}'"
        super().__init__(
            msg,
            code="FORBIDDEN",
            details={"role": role, "action": action},
        )
        self.role = role
        self.action = action


class NotFoundError(TaskdeckError):
    """Resource not found.

    Raised when:
    - Entity doesn't exist
    - Entity belongs to another workspace
    - Invitation token is unknown
    """

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(TaskdeckError):
    """Write collided with existing state.

    Raised when:
    - Ordering contention outlasts the retry budget
    - A unique key (slug, path, tag name, pending invite) already exists
    - A status still holds tasks
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFLICT", details=details)


class InvalidTransitionError(TaskdeckError):
    """Requested state change is not allowed from the current state."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="INVALID_TRANSITION", details=details)


class ValidationError(TaskdeckError):
    """Input validation failed.

    Raised when:
    - Required field is missing or blank
    - Field value has wrong type or range
    - A referenced anchor or status is not part of the target collection
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class PathCollision(ConflictError):
    """A document already occupies the target path or slug."""

    def __init__(self, workspace_id: str, path: str, slug: str | None = None) -> None:
        super().__init__(
            f"A document with path '{path}' already exists",
            details={"workspace_id": workspace_id, "path": path, "slug": slug},
        )
        self.path = path
        self.slug = slug


class CyclicMove(InvalidTransitionError):
    """Moving a document under itself or one of its descendants."""

    def __init__(self, document_id: str, new_parent_id: str) -> None:
        super().__init__(
            "Cannot move a document into itself or its own descendant",
            details={"document_id": document_id, "new_parent_id": new_parent_id},
        )
        self.document_id = document_id
        self.new_parent_id = new_parent_id


class DuplicatePendingInvite(ConflictError):
    """An unexpired invitation for the same email already exists."""

    def __init__(self, workspace_id: str, email: str) -> None:
        super().__init__(
            f"A pending invitation for {email} already exists",
            details={"workspace_id": workspace_id, "email": email},
        )
        self.email = email


class InviteNotFound(NotFoundError):
    """Invitation token is unknown."""

    def __init__(self) -> None:
        # The token itself is a credential and is never echoed back.
        super().__init__("Invitation", "<token>")


class InviteExpired(InvalidTransitionError):
    """Invitation expired before it was accepted."""

    def __init__(self, invite_id: str) -> None:
        super().__init__("Invitation has expired", details={"invite_id": invite_id})
        self.invite_id = invite_id


class InviteAlreadyAccepted(InvalidTransitionError):
    """Invitation token was already used."""

    def __init__(self, invite_id: str) -> None:
        super().__init__(
            "Invitation has already been accepted", details={"invite_id": invite_id}
        )
        self.invite_id = invite_id
