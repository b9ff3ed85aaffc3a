"""
Search index maintenance.

Every searchable entity (task, document, comment) has one row in
search_entries. The FTS5 table follows it through triggers; the trigram table
is written here. All methods run on the caller's connection so index updates
commit or roll back with the mutation that caused them.

Invariants:
    - (kind, entity_id) identifies exactly one entry
    - An entry's trigrams are replaced wholesale on every upsert
    - Entries carry workspace_id so every search filters before ranking

How to change safely:
    - Adding a searchable kind requires the CHECK constraint in the schema,
      SearchKind, and a branch in rebuild()
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from ..models import SearchKind, now_ms
from .trigrams import trigrams

logger = logging.getLogger(__name__)


class SearchIndex:
    """Writes search_entries and search_trigrams rows."""

    def upsert(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        kind: SearchKind,
        entity_id: str,
        title: str,
        body: str | None,
        task_id: str | None = None,
    ) -> None:
        body = body or ""
        row = conn.execute(
            """
            INSERT INTO search_entries (workspace_id, kind, entity_id, task_id,
                                        title, body, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (kind, entity_id) DO UPDATE SET
                workspace_id = excluded.workspace_id,
                task_id = excluded.task_id,
                title = excluded.title,
                body = excluded.body,
                updated_at = excluded.updated_at
            RETURNING id
            """,
            (workspace_id, kind.value, entity_id, task_id, title, body, now_ms()),
        ).fetchone()
        entry_id = row["id"]

        conn.execute("DELETE FROM search_trigrams WHERE entry_id = ?", (entry_id,))
        conn.executemany(
            """
            INSERT INTO search_trigrams (entry_id, workspace_id, field, trigram)
            VALUES (?, ?, ?, ?)
            """,
            [(entry_id, workspace_id, "title", gram) for gram in trigrams(title)]
            + [(entry_id, workspace_id, "body", gram) for gram in trigrams(body)],
        )

    def remove(self, conn: sqlite3.Connection, kind: SearchKind, entity_ids: Iterable[str]) -> int:
        """Drop entries for the given entities. Returns the number removed."""
        removed = 0
        for entity_id in entity_ids:
            conn.execute(
                """
                DELETE FROM search_trigrams WHERE entry_id IN (
                    SELECT id FROM search_entries WHERE kind = ? AND entity_id = ?
                )
                """,
                (kind.value, entity_id),
            )
            cursor = conn.execute(
                "DELETE FROM search_entries WHERE kind = ? AND entity_id = ?",
                (kind.value, entity_id),
            )
            removed += cursor.rowcount
        return removed

    def remove_task(self, conn: sqlite3.Connection, task_id: str) -> None:
        """Drop a task's entry and the entries of its comments."""
        conn.execute(
            """
            DELETE FROM search_trigrams WHERE entry_id IN (
                SELECT id FROM search_entries
                WHERE (kind = 'task' AND entity_id = ?) OR (kind = 'comment' AND task_id = ?)
            )
            """,
            (task_id, task_id),
        )
        conn.execute(
            """
            DELETE FROM search_entries
            WHERE (kind = 'task' AND entity_id = ?) OR (kind = 'comment' AND task_id = ?)
            """,
            (task_id, task_id),
        )

    def remove_workspace(self, conn: sqlite3.Connection, workspace_id: str) -> None:
        conn.execute("DELETE FROM search_trigrams WHERE workspace_id = ?", (workspace_id,))
        conn.execute("DELETE FROM search_entries WHERE workspace_id = ?", (workspace_id,))

    def rebuild(self, conn: sqlite3.Connection, workspace_id: str) -> int:
        """Recreate every entry of a workspace from the source tables.

        Returns:
            Number of entries written
        """
        self.remove_workspace(conn, workspace_id)
        count = 0

        for row in conn.execute(
            "SELECT id, title, description FROM tasks WHERE workspace_id = ?",
            (workspace_id,),
        ).fetchall():
            self.upsert(conn, workspace_id, SearchKind.TASK, row["id"], row["title"], row["description"])
            count += 1

        for row in conn.execute(
            "SELECT id, title, content FROM documents WHERE workspace_id = ?",
            (workspace_id,),
        ).fetchall():
            self.upsert(conn, workspace_id, SearchKind.DOCUMENT, row["id"], row["title"], row["content"])
            count += 1

        for row in conn.execute(
            """
            SELECT c.id, c.task_id, c.content FROM task_comments c
            JOIN tasks t ON t.id = c.task_id
            WHERE t.workspace_id = ?
            """,
            (workspace_id,),
        ).fetchall():
            self.upsert(
                conn,
                workspace_id,
                SearchKind.COMMENT,
                row["id"],
                "",
                row["content"],
                task_id=row["task_id"],
            )
            count += 1

        logger.info(
            "Rebuilt search index",
            extra={"workspace_id": workspace_id, "entries": count},
        )
        return count
