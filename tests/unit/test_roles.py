"""
Unit tests for role-based authorization.

Tests cover:
- Role ordering
- Action decision table
- Monotonicity of permissions
- Role change rules
"""

import pytest

from backend.taskdeck_server.authz import (
    ACTION_MIN_ROLE,
    Action,
    Actor,
    Allow,
    Deny,
    Role,
    authorize,
    authorize_role_change,
    can_grant,
    parse_role,
    require,
)
from backend.taskdeck_server.errors import ForbiddenError

READER_ACTIONS = {
    Action.VIEW_WORKSPACE,
    Action.VIEW_TASK,
    Action.VIEW_STATUS,
    Action.VIEW_DOCUMENT,
    Action.VIEW_COMMENT,
    Action.VIEW_TAG,
    Action.VIEW_MEMBERS,
    Action.VIEW_ACTIVITY,
    Action.SEARCH,
    Action.LEAVE_WORKSPACE,
}


class TestRoleOrdering:
    """Tests for Role comparison."""

    def test_total_order(self):
        assert Role.READER < Role.EDITOR < Role.ADMIN < Role.OWNER

    def test_sorted(self):
        assert sorted([Role.OWNER, Role.READER, Role.ADMIN, Role.EDITOR]) == [
            Role.READER,
            Role.EDITOR,
            Role.ADMIN,
            Role.OWNER,
        ]

    def test_parse_role(self):
        assert parse_role(" Editor ") == Role.EDITOR
        assert parse_role(Role.ADMIN) == Role.ADMIN

    def test_parse_role_invalid(self):
        with pytest.raises(ValueError, match="Invalid role"):
            parse_role("superuser")


class TestDecisionTable:
    """Tests for authorize()."""

    def test_every_action_has_minimum(self):
        assert set(ACTION_MIN_ROLE) == set(Action)

    def test_reader_only_views_and_leaves(self):
        allowed = {a for a in Action if authorize(Role.READER, a).allowed}
        assert allowed == READER_ACTIONS

    def test_owner_allowed_everything(self):
        assert all(authorize(Role.OWNER, a).allowed for a in Action)

    @pytest.mark.parametrize(
        "action,role",
        [
            (Action.LEAVE_WORKSPACE, Role.READER),
            (Action.CREATE_TASK, Role.EDITOR),
            (Action.MOVE_DOCUMENT, Role.EDITOR),
            (Action.DELETE_STATUS, Role.ADMIN),
            (Action.INVITE_MEMBER, Role.ADMIN),
            (Action.MODERATE_COMMENTS, Role.ADMIN),
            (Action.DELETE_WORKSPACE, Role.OWNER),
        ],
    )
    def test_minimum_roles(self, action, role):
        assert ACTION_MIN_ROLE[action] == role

    def test_monotonic(self):
        """A role allowed an action implies every higher role is allowed it."""
        roles = sorted(Role)
        for action in Action:
            decisions = [authorize(role, action).allowed for role in roles]
            first = decisions.index(True)
            assert all(decisions[first:])
            assert not any(decisions[:first])

    def test_deny_carries_reason(self):
        decision = authorize(Role.READER, Action.CREATE_TASK)
        assert isinstance(decision, Deny)
        assert "editor" in decision.reason

    def test_allow(self):
        assert authorize(Role.EDITOR, Action.MOVE_TASK) == Allow(Action.MOVE_TASK)

    def test_require_raises_forbidden(self):
        with pytest.raises(ForbiddenError) as exc_info:
            require(Role.EDITOR, Action.DELETE_WORKSPACE)
        assert exc_info.value.role == "editor"
        assert exc_info.value.action == "delete-workspace"
        assert exc_info.value.code == "FORBIDDEN"

    def test_actor(self):
        actor = Actor("u1", Role.ADMIN)
        assert actor.can(Action.INVITE_MEMBER)
        assert not actor.can(Action.DELETE_WORKSPACE)
        actor.require(Action.MANAGE_MEMBERS)


class TestRoleChange:
    """Tests for authorize_role_change()."""

    def test_owner_row_immutable(self):
        assert not authorize_role_change(Role.OWNER, Role.OWNER, Role.ADMIN).allowed

    def test_editor_cannot_change_roles(self):
        assert not authorize_role_change(Role.EDITOR, Role.READER, Role.EDITOR).allowed

    def test_admin_changes_lower_roles(self):
        assert authorize_role_change(Role.ADMIN, Role.EDITOR, Role.READER).allowed
        assert authorize_role_change(Role.ADMIN, Role.READER, Role.ADMIN).allowed

    def test_admin_cannot_touch_peer(self):
        assert not authorize_role_change(Role.ADMIN, Role.ADMIN, Role.READER).allowed

    def test_only_owner_grants_owner(self):
        assert not authorize_role_change(Role.ADMIN, Role.EDITOR, Role.OWNER).allowed
        assert authorize_role_change(Role.OWNER, Role.EDITOR, Role.OWNER).allowed

    def test_can_grant(self):
        assert can_grant(Role.ADMIN, Role.ADMIN)
        assert can_grant(Role.OWNER, Role.EDITOR)
        assert not can_grant(Role.OWNER, Role.OWNER)
        assert not can_grant(Role.EDITOR, Role.ADMIN)
