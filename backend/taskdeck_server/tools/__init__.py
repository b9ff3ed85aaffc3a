"""
CLI tools for Taskdeck administration.

This module provides command-line tools for:
- init: Create the database schema
- check: Verify data-model invariants
- rebalance: Re-space a kanban column
- reindex: Rebuild a workspace's search entries

Invariants:
    - Tools work offline (no running server required)
    - Operations are idempotent
"""

from .admin_cli import AdminCLI

__all__ = ["AdminCLI"]
