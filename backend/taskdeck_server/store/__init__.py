"""
Storage module for Taskdeck.

One SQLite database holds every workspace; tenant isolation is a
workspace_id filter on every query.

Invariants:
    - Connections are opened per operation
    - Writes run inside BEGIN IMMEDIATE transactions
"""

from .database import Database

__all__ = ["Database"]
