"""
Activity log writes and reads.

record_activity() runs on the mutation's own connection so an entry exists
exactly when the change it describes committed.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from .models import ActivityEntry, new_id, now_ms


def record_activity(
    conn: sqlite3.Connection,
    workspace_id: str,
    user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    changes: dict[str, Any] | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO activity_log (id, workspace_id, user_id, entity_type, entity_id,
                                  action, changes_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            new_id(),
            workspace_id,
            user_id,
            entity_type,
            entity_id,
            action,
            json.dumps(changes or {}, default=str),
            now_ms(),
        ),
    )


def recent_activity(
    conn: sqlite3.Connection,
    workspace_id: str,
    limit: int = 50,
    entity_id: str | None = None,
) -> list[ActivityEntry]:
    sql = "SELECT * FROM activity_log WHERE workspace_id = ?"
    params: list[Any] = [workspace_id]
    if entity_id is not None:
        sql += " AND entity_id = ?"
        params.append(entity_id)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
    params.append(limit)
    return [ActivityEntry.from_row(row) for row in conn.execute(sql, params)]
