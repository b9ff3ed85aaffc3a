"""
Administration CLI for Taskdeck.

Usage:
    taskdeck-admin init
    taskdeck-admin check [--workspace-id WS]
    taskdeck-admin rebalance --status-id STATUS
    taskdeck-admin reindex --workspace-id WS

Configuration comes from the same environment variables as the server;
--data-dir overrides DATA_DIR.

Invariants:
    - Integrity violations cause a non-zero exit code
    - Every command is safe to run repeatedly

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys

from ..config import ServerConfig
from ..core import TaskdeckCore
from ..errors import NotFoundError
from ..integrity import IntegrityReport
from ..logging_setup import setup_logging
from ..ordering.engine import OrderedCollection

logger = logging.getLogger(__name__)


class AdminCLI:
    """Offline administration commands over a Taskdeck database.

    Example:
        >>> cli = AdminCLI(core)
        >>> report = await cli.check()
        >>> report.ok
        True
    """

    def __init__(self, core: TaskdeckCore) -> None:
        self.core = core

    async def init(self) -> None:
        """Create the schema if it does not exist."""
        await self.core.initialize()

    async def check(self, workspace_id: str | None = None) -> IntegrityReport:
        """Run the integrity checker."""
        return await self.core.integrity_checker().check(workspace_id)

    async def rebalance(self, status_id: str) -> list[tuple[str, int]]:
        """Re-space the tasks of one status.

        Raises:
            NotFoundError: If the status does not exist
        """
        with self.core.db.connect() as conn:
            if not conn.execute("SELECT 1 FROM task_statuses WHERE id = ?", (status_id,)).fetchone():
                raise NotFoundError("Status", status_id)
        collection = OrderedCollection.tasks(status_id, self.core.config.ordering.stride)
        return await self.core.ordering.respace(collection)

    async def reindex(self, workspace_id: str) -> int:
        """Rebuild every search entry of a workspace.

        Returns:
            Number of entries written
        """
        with self.core.db.transaction() as conn:
            if not conn.execute("SELECT 1 FROM workspaces WHERE id = ?", (workspace_id,)).fetchone():
                raise NotFoundError("Workspace", workspace_id)
            return self.core.index.rebuild(conn, workspace_id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Taskdeck administration tool")
    parser.add_argument("--data-dir", help="Database directory (default: $DATA_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init command
    subparsers.add_parser("init", help="Create the database schema")

    # check command
    check_parser = subparsers.add_parser("check", help="Verify data-model invariants")
    check_parser.add_argument("--workspace-id", help="Check a single workspace")

    # rebalance command
    rebalance_parser = subparsers.add_parser("rebalance", help="Re-space a kanban column")
    rebalance_parser.add_argument("--status-id", required=True, help="Status to re-space")

    # reindex command
    reindex_parser = subparsers.add_parser("reindex", help="Rebuild search entries")
    reindex_parser.add_argument("--workspace-id", required=True, help="Workspace to reindex")

    return parser


def load_config(data_dir: str | None = None) -> ServerConfig:
    config = ServerConfig.from_env()
    if data_dir:
        config.storage = dataclasses.replace(config.storage, data_dir=data_dir)
    return config


async def run(args: argparse.Namespace, config: ServerConfig) -> int:
    """Execute a parsed command and return the process exit code."""
    core = TaskdeckCore.from_config(config)
    cli = AdminCLI(core)
    logger.info("Running admin command", extra={"command": args.command})

    if args.command == "init":
        await cli.init()
        print(f"Database ready at {core.db.path}")
        return 0

    if not core.db.exists():
        print(f"No database at {core.db.path}; run 'taskdeck-admin init' first", file=sys.stderr)
        return 2

    try:
        if args.command == "check":
            report = await cli.check(args.workspace_id)
            if report.ok:
                print(f"Integrity check passed ({report.workspaces_checked} workspace(s))")
                return 0
            print(f"Integrity check FAILED with {len(report.violations)} violation(s):")
            for violation in report.violations:
                print(f"  - {violation}")
            return 1

        if args.command == "rebalance":
            positions = await cli.rebalance(args.status_id)
            print(f"Rebalanced {len(positions)} task(s) in status {args.status_id}")
            return 0

        if args.command == "reindex":
            count = await cli.reindex(args.workspace_id)
            print(f"Reindexed {count} search entries in workspace {args.workspace_id}")
            return 0
    except NotFoundError as e:
        print(e.message, file=sys.stderr)
        return 2

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.data_dir)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config)
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
