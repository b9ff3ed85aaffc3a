"""
Role-based authorization for Taskdeck.

This module is the single source of truth for who may do what:
- Role: totally ordered reader < editor < admin < owner
- Action: tagged enumeration of every gated operation
- ACTION_MIN_ROLE: pure lookup table of minimum roles
- authorize(): (role, action) -> Allow | Deny

Invariants:
    - authorize() never touches storage
    - Every Action has exactly one minimum role
    - Owner is allowed every action
    - Reader is allowed only view actions
    - Role checks are performed before data access

How to change safely:
    - New actions must be added to ACTION_MIN_ROLE (the module fails to import otherwise)
    - Lowering a minimum role widens access; review with the integrity tests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import ForbiddenError

logger = logging.getLogger(__name__)


class Role(Enum):
    """Workspace member roles, ordered from least to most privileged."""

    READER = "reader"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_ROLE_RANK = {
    Role.READER: 0,
    Role.EDITOR: 1,
    Role.ADMIN: 2,
    Role.OWNER: 3,
}


class Action(Enum):
    """Every operation the core gates on role."""

    # Views
    VIEW_WORKSPACE = "view-workspace"
    VIEW_TASK = "view-task"
    VIEW_STATUS = "view-status"
    VIEW_DOCUMENT = "view-document"
    VIEW_COMMENT = "view-comment"
    VIEW_TAG = "view-tag"
    VIEW_MEMBERS = "view-members"
    VIEW_ACTIVITY = "view-activity"
    SEARCH = "search"
    LEAVE_WORKSPACE = "leave-workspace"

    # Editing
    CREATE_TASK = "create-task"
    EDIT_TASK = "edit-task"
    MOVE_TASK = "move-task"
    DELETE_TASK = "delete-task"
    CREATE_STATUS = "create-status"
    EDIT_STATUS = "edit-status"
    REORDER_STATUSES = "reorder-statuses"
    CREATE_COMMENT = "create-comment"
    EDIT_COMMENT = "edit-comment"
    DELETE_OWN_COMMENT = "delete-own-comment"
    MANAGE_TAGS = "manage-tags"
    CREATE_DOCUMENT = "create-document"
    EDIT_DOCUMENT = "edit-document"
    MOVE_DOCUMENT = "move-document"
    DELETE_DOCUMENT = "delete-document"
    LINK_DOCUMENT = "link-document"

    # Administration
    DELETE_STATUS = "delete-status"
    MODERATE_COMMENTS = "moderate-comments"
    UPDATE_WORKSPACE = "update-workspace"
    MANAGE_MEMBERS = "manage-members"
    INVITE_MEMBER = "invite-member"
    CHANGE_ROLE = "change-role"
    MANAGE_INTEGRATIONS = "manage-integrations"
    SET_DEFAULT_WORKSPACE = "set-default-workspace"
    DELETE_WORKSPACE = "delete-workspace"


ACTION_MIN_ROLE: dict[Action, Role] = {
    Action.VIEW_WORKSPACE: Role.READER,
    Action.VIEW_TASK: Role.READER,
    Action.VIEW_STATUS: Role.READER,
    Action.VIEW_DOCUMENT: Role.READER,
    Action.VIEW_COMMENT: Role.READER,
    Action.VIEW_TAG: Role.READER,
    Action.VIEW_MEMBERS: Role.READER,
    Action.VIEW_ACTIVITY: Role.READER,
    Action.SEARCH: Role.READER,
    Action.LEAVE_WORKSPACE: Role.READER,
    Action.CREATE_TASK: Role.EDITOR,
    Action.EDIT_TASK: Role.EDITOR,
    Action.MOVE_TASK: Role.EDITOR,
    Action.DELETE_TASK: Role.EDITOR,
    Action.CREATE_STATUS: Role.EDITOR,
    Action.EDIT_STATUS: Role.EDITOR,
    Action.REORDER_STATUSES: Role.EDITOR,
    Action.CREATE_COMMENT: Role.EDITOR,
    Action.EDIT_COMMENT: Role.EDITOR,
    Action.DELETE_OWN_COMMENT: Role.EDITOR,
    Action.MANAGE_TAGS: Role.EDITOR,
    Action.CREATE_DOCUMENT: Role.EDITOR,
    Action.EDIT_DOCUMENT: Role.EDITOR,
    Action.MOVE_DOCUMENT: Role.EDITOR,
    Action.DELETE_DOCUMENT: Role.EDITOR,
    Action.LINK_DOCUMENT: Role.EDITOR,
    Action.DELETE_STATUS: Role.ADMIN,
    Action.MODERATE_COMMENTS: Role.ADMIN,
    Action.UPDATE_WORKSPACE: Role.ADMIN,
    Action.MANAGE_MEMBERS: Role.ADMIN,
    Action.INVITE_MEMBER: Role.ADMIN,
    Action.CHANGE_ROLE: Role.ADMIN,
    Action.MANAGE_INTEGRATIONS: Role.ADMIN,
    Action.SET_DEFAULT_WORKSPACE: Role.OWNER,
    Action.DELETE_WORKSPACE: Role.OWNER,
}

_missing = set(Action) - set(ACTION_MIN_ROLE)
if _missing:
    raise RuntimeError(f"Actions without a minimum role: {sorted(a.value for a in _missing)}")


@dataclass(frozen=True)
class Allow:
    """Positive authorization decision."""

    action: Action

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    """Negative authorization decision.

    Attributes:
        action: Action that was evaluated
        reason: Human-readable explanation
    """

    action: Action
    reason: str

    @property
    def allowed(self) -> bool:
        return False


Decision = Allow | Deny


def parse_role(value: str | Role) -> Role:
    """Parse a role name.

    Raises:
        ValueError: If the name is not a known role
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(value.strip().lower())
    except ValueError:
        valid = [r.value for r in Role]
        raise ValueError(f"Invalid role '{value}', must be one of {valid}") from None


def authorize(role: Role, action: Action) -> Decision:
    """Decide whether a role may perform an action.

    Example:
        >>> authorize(Role.EDITOR, Action.MOVE_TASK).allowed
        True
        >>> authorize(Role.READER, Action.CREATE_TASK).reason
        "role 'reader' is below 'editor' required for 'create-task'"
    """
    required = ACTION_MIN_ROLE[action]
    if role >= required:
        return Allow(action)
    return Deny(
        action,
        f"role '{role.value}' is below '{required.value}' required for '{action.value}'",
    )


def require(role: Role, action: Action) -> None:
    """Authorize or raise.

    Raises:
        ForbiddenError: If the role is below the action's minimum
    """
    decision = authorize(role, action)
    if isinstance(decision, Deny):
        logger.debug(
            "Authorization denied",
            extra={"role": role.value, "action": action.value},
        )
        raise ForbiddenError(role.value, action.value, decision.reason)


def authorize_role_change(actor_role: Role, current_role: Role, new_role: Role) -> Decision:
    """Decide whether an actor may change a member from one role to another.

    Rules on top of CHANGE_ROLE:
        - The owner's membership is immutable
        - Only an owner may grant the owner role
        - A non-owner cannot change members at or above their own role,
          nor grant a role above their own
    """
    base = authorize(actor_role, Action.CHANGE_ROLE)
    if isinstance(base, Deny):
        return base

    if current_role == Role.OWNER:
        return Deny(Action.CHANGE_ROLE, "the owner's role cannot be changed")

    if new_role == Role.OWNER and actor_role != Role.OWNER:
        return Deny(Action.CHANGE_ROLE, "only the owner may grant the owner role")

    if actor_role != Role.OWNER:
        if current_role >= actor_role:
            return Deny(
                Action.CHANGE_ROLE,
                f"role '{actor_role.value}' cannot change a member with role "
                f"'{current_role.value}'",
            )
        if new_role > actor_role:
            return Deny(
                Action.CHANGE_ROLE,
                f"role '{actor_role.value}' cannot grant '{new_role.value}'",
            )

    return Allow(Action.CHANGE_ROLE)


def require_role_change(actor_role: Role, current_role: Role, new_role: Role) -> None:
    """Authorize a role change or raise ForbiddenError."""
    decision = authorize_role_change(actor_role, current_role, new_role)
    if isinstance(decision, Deny):
        raise ForbiddenError(actor_role.value, Action.CHANGE_ROLE.value, decision.reason)


def can_grant(actor_role: Role, role: Role) -> bool:
    """Whether an inviter may offer a role (never owner, never above their own)."""
    return role != Role.OWNER and role <= actor_role


@dataclass(frozen=True)
class Actor:
    """A user acting inside one workspace with an already-resolved role."""

    user_id: str
    role: Role

    def can(self, action: Action) -> bool:
        return authorize(self.role, action).allowed

    def require(self, action: Action) -> None:
        require(self.role, action)
