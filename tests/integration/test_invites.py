"""
Integration tests for the invitation lifecycle.
"""

import pytest

from backend.taskdeck_server.authz import Role
from backend.taskdeck_server.errors import (
    ConflictError,
    DuplicatePendingInvite,
    ForbiddenError,
    InviteAlreadyAccepted,
    InviteExpired,
    InviteNotFound,
    NotFoundError,
    ValidationError,
)
from backend.taskdeck_server.models import InviteStatus, now_ms


class TestCreateInvite:
    """Tests for issuing invitations."""

    @pytest.mark.asyncio
    async def test_create(self, core, make_workspace):
        ws, owner = await make_workspace()

        invite = await core.members.create_invite(
            ws.id, owner, {"email": " Alice@Example.COM ", "role": "editor"}
        )

        assert invite.email == "alice@example.com"
        assert invite.role == Role.EDITOR
        assert invite.invited_by == owner.user_id
        assert len(invite.token) >= 32
        assert invite.status() == InviteStatus.PENDING
        assert invite.expires_at > now_ms()

    @pytest.mark.asyncio
    async def test_tokens_unique(self, core, make_workspace):
        ws, owner = await make_workspace()
        tokens = {
            (await core.members.create_invite(ws.id, owner, {"email": f"u{i}@example.com"})).token
            for i in range(10)
        }
        assert len(tokens) == 10

    @pytest.mark.asyncio
    async def test_duplicate_pending_ignores_case(self, core, make_workspace):
        ws, owner = await make_workspace()
        await core.members.create_invite(ws.id, owner, {"email": "alice@example.com"})

        with pytest.raises(DuplicatePendingInvite):
            await core.members.create_invite(ws.id, owner, {"email": "ALICE@example.com"})

    @pytest.mark.asyncio
    async def test_same_email_other_workspace(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        await core.members.create_invite(ws.id, owner, {"email": "alice@example.com"})

        invite = await core.members.create_invite(other.id, other_owner, {"email": "alice@example.com"})

        assert invite.workspace_id == other.id

    @pytest.mark.asyncio
    async def test_owner_role_rejected(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.members.create_invite(ws.id, owner, {"email": "a@example.com", "role": "owner"})

    @pytest.mark.asyncio
    async def test_malformed_email(self, core, make_workspace):
        ws, owner = await make_workspace()
        with pytest.raises(ValidationError):
            await core.members.create_invite(ws.id, owner, {"email": "not-an-email"})

    @pytest.mark.asyncio
    async def test_editor_cannot_invite(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        editor = await add_member(ws, owner, "user-editor", Role.EDITOR)
        with pytest.raises(ForbiddenError):
            await core.members.create_invite(ws.id, editor, {"email": "a@example.com"})

    @pytest.mark.asyncio
    async def test_admin_invites_up_to_admin(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        admin = await add_member(ws, owner, "user-admin", Role.ADMIN)

        invite = await core.members.create_invite(
            ws.id, admin, {"email": "b@example.com", "role": "admin"}
        )

        assert invite.role == Role.ADMIN


class TestAcceptInvite:
    """Tests for redeeming invitations."""

    @pytest.mark.asyncio
    async def test_accept_creates_member(self, core, make_workspace):
        ws, owner = await make_workspace()
        invite = await core.members.create_invite(
            ws.id, owner, {"email": "alice@example.com", "role": "editor"}
        )

        member = await core.members.accept_invite(invite.token, "user-alice")

        assert member.role == Role.EDITOR
        assert member.invited_by == owner.user_id
        actor = await core.members.resolve_actor(ws.id, "user-alice")
        assert actor.role == Role.EDITOR
        stored = await core.members.get_invite(invite.token)
        assert stored.status() == InviteStatus.ACCEPTED
        assert stored.accepted_by == "user-alice"

    @pytest.mark.asyncio
    async def test_single_use(self, core, make_workspace):
        ws, owner = await make_workspace()
        invite = await core.members.create_invite(ws.id, owner, {"email": "alice@example.com"})
        await core.members.accept_invite(invite.token, "user-alice")

        with pytest.raises(InviteAlreadyAccepted):
            await core.members.accept_invite(invite.token, "user-bob")

        with pytest.raises(NotFoundError):
            await core.members.resolve_actor(ws.id, "user-bob")

    @pytest.mark.asyncio
    async def test_expired(self, core, make_workspace):
        ws, owner = await make_workspace()
        invite = await core.members.create_invite(ws.id, owner, {"email": "alice@example.com"})
        with core.db.transaction() as conn:
            conn.execute(
                "UPDATE workspace_invites SET expires_at = ? WHERE id = ?",
                (now_ms() - 1000, invite.id),
            )

        with pytest.raises(InviteExpired):
            await core.members.accept_invite(invite.token, "user-alice")

        assert (await core.members.get_invite(invite.token)).status() == InviteStatus.EXPIRED
        assert await core.members.list_pending_invites(ws.id, owner) == []
        # An expired invitation no longer blocks a fresh one
        fresh = await core.members.create_invite(ws.id, owner, {"email": "alice@example.com"})
        assert fresh.token != invite.token

    @pytest.mark.asyncio
    async def test_unknown_token(self, core, make_workspace):
        await make_workspace()
        with pytest.raises(InviteNotFound):
            await core.members.accept_invite("no-such-token", "user-alice")
        with pytest.raises(InviteNotFound):
            await core.members.get_invite("no-such-token")

    @pytest.mark.asyncio
    async def test_existing_member(self, core, make_workspace, add_member):
        ws, owner = await make_workspace()
        await add_member(ws, owner, "user-alice", Role.READER)
        invite = await core.members.create_invite(
            ws.id, owner, {"email": "alice.work@example.com", "role": "admin"}
        )

        with pytest.raises(ConflictError):
            await core.members.accept_invite(invite.token, "user-alice")

        assert (await core.members.resolve_actor(ws.id, "user-alice")).role == Role.READER
        assert (await core.members.get_invite(invite.token)).status() == InviteStatus.PENDING


class TestManageInvites:
    """Tests for listing and revoking."""

    @pytest.mark.asyncio
    async def test_list_pending(self, core, make_workspace):
        ws, owner = await make_workspace()
        first = await core.members.create_invite(ws.id, owner, {"email": "a@example.com"})
        second = await core.members.create_invite(ws.id, owner, {"email": "b@example.com"})
        accepted = await core.members.create_invite(ws.id, owner, {"email": "c@example.com"})
        await core.members.accept_invite(accepted.token, "user-c")

        pending = await core.members.list_pending_invites(ws.id, owner)

        assert {i.id for i in pending} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_revoke(self, core, make_workspace):
        ws, owner = await make_workspace()
        invite = await core.members.create_invite(ws.id, owner, {"email": "a@example.com"})

        await core.members.revoke_invite(ws.id, owner, invite.id)

        with pytest.raises(InviteNotFound):
            await core.members.accept_invite(invite.token, "user-a")
        assert await core.members.list_pending_invites(ws.id, owner) == []

    @pytest.mark.asyncio
    async def test_revoke_accepted(self, core, make_workspace):
        ws, owner = await make_workspace()
        invite = await core.members.create_invite(ws.id, owner, {"email": "a@example.com"})
        await core.members.accept_invite(invite.token, "user-a")

        with pytest.raises(InviteAlreadyAccepted):
            await core.members.revoke_invite(ws.id, owner, invite.id)

    @pytest.mark.asyncio
    async def test_revoke_from_other_workspace(self, core, make_workspace):
        ws, owner = await make_workspace()
        other, other_owner = await make_workspace(owner_id="user-other", name="Other")
        invite = await core.members.create_invite(other.id, other_owner, {"email": "a@example.com"})

        with pytest.raises(NotFoundError):
            await core.members.revoke_invite(ws.id, owner, invite.id)
