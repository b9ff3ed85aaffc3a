"""
Authorization module for Taskdeck.

Roles, the action catalog and the pure decision table. Nothing in this
package reads storage; callers resolve the actor's role first.
"""

from .roles import (
    ACTION_MIN_ROLE,
    Action,
    Actor,
    Allow,
    Decision,
    Deny,
    Role,
    authorize,
    authorize_role_change,
    can_grant,
    parse_role,
    require,
    require_role_change,
)

__all__ = [
    "ACTION_MIN_ROLE",
    "Action",
    "Actor",
    "Allow",
    "Decision",
    "Deny",
    "Role",
    "authorize",
    "authorize_role_change",
    "can_grant",
    "parse_role",
    "require",
    "require_role_change",
]
