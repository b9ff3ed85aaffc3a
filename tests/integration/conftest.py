"""
Shared fixtures for SQLite-backed integration tests.

Fixtures are synchronous; tests call the async factories they return.
"""

import tempfile

import pytest

from backend.taskdeck_server.authz import Actor, Role
from backend.taskdeck_server.config import OrderingConfig, ServerConfig, StorageConfig
from backend.taskdeck_server.core import TaskdeckCore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def core(data_dir):
    """Core over a fresh database (schema created by the factories below)."""
    config = ServerConfig(
        storage=StorageConfig(data_dir=data_dir, wal_mode=False),
        ordering=OrderingConfig(retry_delay_ms=0),
    )
    return TaskdeckCore.from_config(config)


@pytest.fixture
def make_workspace(core):
    """Factory creating a workspace and returning (workspace, owner actor)."""

    async def create(owner_id="user-owner", name="Acme"):
        await core.initialize()
        workspace = await core.workspaces.create(owner_id, {"name": name})
        return workspace, Actor(owner_id, Role.OWNER)

    return create


@pytest.fixture
def add_member(core):
    """Factory adding a member through the invitation flow."""

    async def add(workspace, inviter, user_id, role):
        invite = await core.members.create_invite(
            workspace.id, inviter, {"email": f"{user_id}@example.com", "role": role.value}
        )
        member = await core.members.accept_invite(invite.token, user_id)
        return Actor(member.user_id, member.role)

    return add
