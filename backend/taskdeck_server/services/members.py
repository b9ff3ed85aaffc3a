"""
Membership operations: resolving actors, roles, removal and invitations.
"""

from __future__ import annotations

import logging
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor, Role, require_role_change
from ..errors import ForbiddenError, InvalidTransitionError, NotFoundError
from ..invites.lifecycle import InvitationLifecycle
from ..models import Invitation, Member
from ..requests import ChangeRoleRequest, CreateInviteRequest, parse
from ..store.database import Database

logger = logging.getLogger(__name__)


class MembershipService:
    """Members of a workspace and the invitations that create them."""

    def __init__(self, db: Database, invites: InvitationLifecycle) -> None:
        self.db = db
        self.invites = invites

    async def resolve_actor(self, workspace_id: str, user_id: str) -> Actor:
        """Turn a user into an Actor for one workspace.

        Raises:
            NotFoundError: If the user is not a member. Non-members cannot
                tell a missing workspace from one they don't belong to.
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT role FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            ).fetchone()
        if row is None:
            raise NotFoundError("Workspace", workspace_id)
        return Actor(user_id=user_id, role=Role(row["role"]))

    async def list_members(self, workspace_id: str, actor: Actor) -> list[Member]:
        actor.require(Action.VIEW_MEMBERS)
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workspace_members WHERE workspace_id = ?
                ORDER BY CASE role
                    WHEN 'owner' THEN 0 WHEN 'admin' THEN 1 WHEN 'editor' THEN 2 ELSE 3
                END, joined_at, user_id
                """,
                (workspace_id,),
            ).fetchall()
        return [Member.from_row(row) for row in rows]

    async def change_role(
        self,
        workspace_id: str,
        actor: Actor,
        user_id: str,
        request: ChangeRoleRequest | dict[str, Any],
    ) -> Member:
        """Change a member's role.

        Raises:
            ForbiddenError: If the actor may not make this change
            InvalidTransitionError: If the change would transfer ownership
        """
        actor.require(Action.CHANGE_ROLE)
        req = parse(ChangeRoleRequest, request)

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            ).fetchone()
            if row is None:
                raise NotFoundError("Member", user_id)
            member = Member.from_row(row)

            require_role_change(actor.role, member.role, req.role)
            if req.role == Role.OWNER:
                raise InvalidTransitionError(
                    "Ownership transfer is not supported",
                    details={"workspace_id": workspace_id, "user_id": user_id},
                )

            conn.execute(
                "UPDATE workspace_members SET role = ? WHERE workspace_id = ? AND user_id = ?",
                (req.role.value, workspace_id, user_id),
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "member",
                user_id,
                "role_changed",
                {"from": member.role.value, "to": req.role.value},
            )

        logger.info(
            "Changed member role",
            extra={
                "workspace_id": workspace_id,
                "user_id": user_id,
                "old_role": member.role.value,
                "new_role": req.role.value,
            },
        )
        member.role = req.role
        return member

    async def remove_member(self, workspace_id: str, actor: Actor, user_id: str) -> None:
        """Remove a member, or let a member leave.

        The member's task assignments are cleared in the same transaction.

        Raises:
            InvalidTransitionError: If the member is the owner
            ForbiddenError: If the actor outranks neither the member nor is them
        """
        leaving = user_id == actor.user_id
        actor.require(Action.LEAVE_WORKSPACE if leaving else Action.MANAGE_MEMBERS)

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            ).fetchone()
            if row is None:
                raise NotFoundError("Member", user_id)
            member = Member.from_row(row)

            if member.role == Role.OWNER:
                raise InvalidTransitionError(
                    "The owner cannot leave or be removed from the workspace",
                    details={"workspace_id": workspace_id},
                )
            if not leaving and actor.role != Role.OWNER and member.role >= actor.role:
                raise ForbiddenError(
                    actor.role.value,
                    Action.MANAGE_MEMBERS.value,
                    f"role '{actor.role.value}' cannot remove a member with role "
                    f"'{member.role.value}'",
                )

            conn.execute(
                """
                UPDATE tasks SET assigned_to = NULL
                WHERE workspace_id = ? AND assigned_to = ?
                """,
                (workspace_id, user_id),
            )
            conn.execute(
                "DELETE FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "member",
                user_id,
                "left" if leaving else "removed",
            )

        logger.info(
            "Removed member",
            extra={"workspace_id": workspace_id, "user_id": user_id, "leaving": leaving},
        )

    # -------------------------------------------------------------------------
    # Invitations
    # -------------------------------------------------------------------------

    async def create_invite(
        self,
        workspace_id: str,
        actor: Actor,
        request: CreateInviteRequest | dict[str, Any],
    ) -> Invitation:
        return await self.invites.create(workspace_id, request, actor)

    async def get_invite(self, token: str) -> Invitation:
        return await self.invites.get_by_token(token)

    async def accept_invite(self, token: str, user_id: str) -> Member:
        return await self.invites.accept(token, user_id)

    async def list_pending_invites(self, workspace_id: str, actor: Actor) -> list[Invitation]:
        return await self.invites.list_pending(workspace_id, actor)

    async def revoke_invite(self, workspace_id: str, actor: Actor, invite_id: str) -> None:
        await self.invites.revoke(workspace_id, invite_id, actor)
