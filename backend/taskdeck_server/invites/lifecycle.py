"""
Invitation lifecycle for Taskdeck.

States:
    pending  -> accepted   (terminal, stored as accepted_at)
    pending  -> expired    (terminal, derived from now > expires_at)

Invariants:
    - Tokens are unguessable (secrets.token_urlsafe) and unique
    - At most one unexpired, unaccepted invitation per (workspace, email)
    - Accepting stamps accepted_at and inserts the membership in one
      transaction; the stamp is guarded by accepted_at IS NULL so a second
      acceptance fails without mutating anything
    - An invitation never grants owner, nor a role above the inviter's

How to change safely:
    - Never log or echo tokens
    - Keep expiry derived; do not add a stored "expired" state
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor, Role, can_grant
from ..config import InviteConfig
from ..errors import (
    ConflictError,
    DuplicatePendingInvite,
    ForbiddenError,
    InviteAlreadyAccepted,
    InviteExpired,
    InviteNotFound,
    NotFoundError,
    ValidationError,
)
from ..models import Invitation, InviteStatus, Member, new_id, now_ms
from ..requests import CreateInviteRequest, parse
from ..store.database import Database

logger = logging.getLogger(__name__)

_HOUR_MS = 3600 * 1000


class InvitationLifecycle:
    """Creates, redeems and revokes workspace invitations.

    Example:
        >>> invites = InvitationLifecycle(db)
        >>> invite = await invites.create(ws_id, {"email": "a@b.io", "role": "editor"}, admin)
        >>> member = await invites.accept(invite.token, "user-42")
        >>> member.role
        <Role.EDITOR: 'editor'>
    """

    def __init__(self, db: Database, config: InviteConfig | None = None) -> None:
        self.db = db
        self.config = config or InviteConfig()

    async def create(
        self,
        workspace_id: str,
        request: CreateInviteRequest | dict[str, Any],
        inviter: Actor,
    ) -> Invitation:
        """Invite an email address into a workspace.

        Raises:
            ForbiddenError: If the inviter may not invite, or not at this role
            ValidationError: If the email is malformed or the role is owner
            DuplicatePendingInvite: If a live invitation already exists
        """
        inviter.require(Action.INVITE_MEMBER)
        req = parse(CreateInviteRequest, request)

        if req.role == Role.OWNER:
            raise ValidationError("Invitations cannot grant the owner role", field_name="role")
        if not can_grant(inviter.role, req.role):
            raise ForbiddenError(
                inviter.role.value,
                Action.INVITE_MEMBER.value,
                f"role '{inviter.role.value}' cannot invite as '{req.role.value}'",
            )

        now = now_ms()
        invitation = Invitation(
            id=new_id(),
            workspace_id=workspace_id,
            email=req.email,
            role=req.role,
            token=secrets.token_urlsafe(self.config.token_bytes),
            invited_by=inviter.user_id,
            expires_at=now + self.config.ttl_hours * _HOUR_MS,
            created_at=now,
        )

        with self.db.transaction() as conn:
            if not conn.execute("SELECT 1 FROM workspaces WHERE id = ?", (workspace_id,)).fetchone():
                raise NotFoundError("Workspace", workspace_id)

            pending = conn.execute(
                """
                SELECT 1 FROM workspace_invites
                WHERE workspace_id = ? AND email = ? AND accepted_at IS NULL AND expires_at >= ?
                """,
                (workspace_id, req.email, now),
            ).fetchone()
            if pending:
                raise DuplicatePendingInvite(workspace_id, req.email)

            conn.execute(
                """
                INSERT INTO workspace_invites (id, workspace_id, email, role, token,
                                               invited_by, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invitation.id,
                    workspace_id,
                    invitation.email,
                    invitation.role.value,
                    invitation.token,
                    inviter.user_id,
                    invitation.expires_at,
                    now,
                ),
            )
            record_activity(
                conn,
                workspace_id,
                inviter.user_id,
                "invite",
                invitation.id,
                "created",
                {"email": invitation.email, "role": invitation.role.value},
            )

        logger.info(
            "Created invitation",
            extra={
                "workspace_id": workspace_id,
                "invite_id": invitation.id,
                "role": invitation.role.value,
            },
        )
        return invitation

    async def get_by_token(self, token: str) -> Invitation:
        """Look up an invitation by its token.

        Raises:
            InviteNotFound: If the token is unknown
        """
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM workspace_invites WHERE token = ?", (token,)
            ).fetchone()
        if row is None:
            raise InviteNotFound()
        return Invitation.from_row(row)

    async def accept(self, token: str, user_id: str) -> Member:
        """Redeem an invitation, creating the membership.

        Raises:
            InviteNotFound: If the token is unknown
            InviteAlreadyAccepted: If the token was already used
            InviteExpired: If the invitation expired
            ConflictError: If the user is already a member
        """
        now = now_ms()

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM workspace_invites WHERE token = ?", (token,)
            ).fetchone()
            if row is None:
                raise InviteNotFound()
            invitation = Invitation.from_row(row)

            status = invitation.status(now)
            if status == InviteStatus.ACCEPTED:
                raise InviteAlreadyAccepted(invitation.id)
            if status == InviteStatus.EXPIRED:
                raise InviteExpired(invitation.id)

            if conn.execute(
                "SELECT 1 FROM workspace_members WHERE workspace_id = ? AND user_id = ?",
                (invitation.workspace_id, user_id),
            ).fetchone():
                raise ConflictError(
                    "User is already a member of this workspace",
                    details={"workspace_id": invitation.workspace_id, "user_id": user_id},
                )

            cursor = conn.execute(
                """
                UPDATE workspace_invites SET accepted_at = ?, accepted_by = ?
                WHERE id = ? AND accepted_at IS NULL
                """,
                (now, user_id, invitation.id),
            )
            if cursor.rowcount != 1:
                raise InviteAlreadyAccepted(invitation.id)

            conn.execute(
                """
                INSERT INTO workspace_members (workspace_id, user_id, role, invited_by, joined_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (invitation.workspace_id, user_id, invitation.role.value, invitation.invited_by, now),
            )
            record_activity(
                conn,
                invitation.workspace_id,
                user_id,
                "member",
                user_id,
                "joined",
                {"invite_id": invitation.id, "role": invitation.role.value},
            )

        logger.info(
            "Accepted invitation",
            extra={
                "workspace_id": invitation.workspace_id,
                "invite_id": invitation.id,
                "user_id": user_id,
            },
        )
        return Member(
            workspace_id=invitation.workspace_id,
            user_id=user_id,
            role=invitation.role,
            joined_at=now,
            invited_by=invitation.invited_by,
        )

    async def list_pending(self, workspace_id: str, actor: Actor) -> list[Invitation]:
        """Unaccepted, unexpired invitations of a workspace, newest first."""
        actor.require(Action.INVITE_MEMBER)
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM workspace_invites
                WHERE workspace_id = ? AND accepted_at IS NULL AND expires_at >= ?
                ORDER BY created_at DESC
                """,
                (workspace_id, now_ms()),
            ).fetchall()
        return [Invitation.from_row(row) for row in rows]

    async def revoke(self, workspace_id: str, invite_id: str, actor: Actor) -> None:
        """Withdraw an invitation that has not been accepted.

        Raises:
            NotFoundError: If the invitation is not in the workspace
            InviteAlreadyAccepted: If it was already redeemed
        """
        actor.require(Action.INVITE_MEMBER)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM workspace_invites WHERE id = ? AND workspace_id = ?",
                (invite_id, workspace_id),
            ).fetchone()
            if row is None:
                raise NotFoundError("Invitation", invite_id)
            if row["accepted_at"] is not None:
                raise InviteAlreadyAccepted(invite_id)

            conn.execute("DELETE FROM workspace_invites WHERE id = ?", (invite_id,))
            record_activity(conn, workspace_id, actor.user_id, "invite", invite_id, "revoked")

        logger.info(
            "Revoked invitation",
            extra={"workspace_id": workspace_id, "invite_id": invite_id},
        )
