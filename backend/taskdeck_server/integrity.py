"""
Invariant verifier for a live Taskdeck database.

Reads every workspace (or one) and reports rows that break the data model's
invariants. Nothing here writes.

Checks:
    - task_positions:    task positions unique within a status, status in
                         the task's workspace
    - status_density:    status positions are exactly 0..n-1
    - document_paths:    path = parent path + one label, parent_path and
                         slug agree with path
    - document_cycles:   following parent_id never revisits a document
    - workspace_owner:   exactly one owner member, matching owner_id
    - default_workspace: exactly one default per owning user
    - assignees:         assigned_to is a member of the task's workspace

How to change safely:
    - Add a check as a _check_* method and list it in CHECKS
    - Keep checks read-only; repairs belong to the admin CLI
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from .hierarchy.paths import child_path, label_of
from .store.database import Database

logger = logging.getLogger(__name__)

CHECKS = (
    "task_positions",
    "status_density",
    "document_paths",
    "document_cycles",
    "workspace_owner",
    "default_workspace",
    "assignees",
)


@dataclass(frozen=True)
class Violation:
    """One broken invariant."""

    check: str
    entity_id: str
    message: str

    def __str__(self) -> str:
        return f"[{self.check}] {self.entity_id}: {self.message}"


@dataclass
class IntegrityReport:
    workspaces_checked: int = 0
    violations: list[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


class IntegrityChecker:
    """Runs every check in CHECKS over the database.

    Example:
        >>> report = await IntegrityChecker(db).check()
        >>> report.ok
        True
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def check(self, workspace_id: str | None = None) -> IntegrityReport:
        """Check one workspace, or all of them."""
        report = IntegrityReport()
        with self.db.connect() as conn:
            if workspace_id is None:
                ids = [row["id"] for row in conn.execute("SELECT id FROM workspaces ORDER BY id")]
            else:
                ids = [workspace_id]

            for ws in ids:
                for name in CHECKS:
                    if name == "default_workspace":
                        continue
                    checker = getattr(self, f"_check_{name}")
                    report.violations.extend(checker(conn, ws))
            report.workspaces_checked = len(ids)

            if workspace_id is None:
                report.violations.extend(self._check_default_workspace(conn))

        log = logger.warning if report.violations else logger.info
        log(
            "Integrity check finished",
            extra={
                "workspaces": report.workspaces_checked,
                "violations": len(report.violations),
            },
        )
        return report

    # -------------------------------------------------------------------------
    # Ordering
    # -------------------------------------------------------------------------

    def _check_task_positions(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        violations = []
        for row in conn.execute(
            """
            SELECT status_id, position, COUNT(*) AS n FROM tasks
            WHERE workspace_id = ?
            GROUP BY status_id, position HAVING n > 1
            """,
            (ws,),
        ):
            violations.append(
                Violation(
                    "task_positions",
                    row["status_id"],
                    f"{row['n']} tasks share position {row['position']}",
                )
            )
        for row in conn.execute(
            """
            SELECT t.id FROM tasks t
            LEFT JOIN task_statuses s ON s.id = t.status_id AND s.workspace_id = t.workspace_id
            WHERE t.workspace_id = ? AND s.id IS NULL
            """,
            (ws,),
        ):
            violations.append(
                Violation("task_positions", row["id"], "status belongs to another workspace")
            )
        return violations

    def _check_status_density(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        positions = [
            row["position"]
            for row in conn.execute(
                "SELECT position FROM task_statuses WHERE workspace_id = ? ORDER BY position",
                (ws,),
            )
        ]
        if positions != list(range(len(positions))):
            return [Violation("status_density", ws, f"status positions are {positions}")]
        return []

    # -------------------------------------------------------------------------
    # Hierarchy
    # -------------------------------------------------------------------------

    def _check_document_paths(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        rows = conn.execute(
            "SELECT id, parent_id, path, parent_path, slug FROM documents WHERE workspace_id = ?",
            (ws,),
        ).fetchall()
        paths = {row["id"]: row["path"] for row in rows}

        violations = []
        for row in rows:
            doc_id, path = row["id"], row["path"]
            if row["parent_id"] is None:
                expected_parent = ""
            elif row["parent_id"] not in paths:
                violations.append(
                    Violation("document_paths", doc_id, "parent is missing or in another workspace")
                )
                continue
            else:
                expected_parent = paths[row["parent_id"]]

            if row["parent_path"] != expected_parent:
                violations.append(
                    Violation(
                        "document_paths",
                        doc_id,
                        f"parent_path {row['parent_path']!r} != parent's path {expected_parent!r}",
                    )
                )
            label = label_of(path)
            if path != child_path(expected_parent, label):
                violations.append(
                    Violation(
                        "document_paths",
                        doc_id,
                        f"path {path!r} is not one label below {expected_parent!r}",
                    )
                )
            if row["slug"] != label:
                violations.append(
                    Violation("document_paths", doc_id, f"slug {row['slug']!r} != label {label!r}")
                )
        return violations

    def _check_document_cycles(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        parents = {
            row["id"]: row["parent_id"]
            for row in conn.execute(
                "SELECT id, parent_id FROM documents WHERE workspace_id = ?", (ws,)
            )
        }
        violations = []
        for doc_id in parents:
            seen = {doc_id}
            current = parents[doc_id]
            while current is not None:
                if current in seen:
                    violations.append(
                        Violation("document_cycles", doc_id, "document is its own ancestor")
                    )
                    break
                seen.add(current)
                current = parents.get(current)
        return violations

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def _check_workspace_owner(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        owners = [
            row["user_id"]
            for row in conn.execute(
                "SELECT user_id FROM workspace_members WHERE workspace_id = ? AND role = 'owner'",
                (ws,),
            )
        ]
        row = conn.execute("SELECT owner_id FROM workspaces WHERE id = ?", (ws,)).fetchone()
        if row is None:
            return [Violation("workspace_owner", ws, "workspace does not exist")]
        if owners != [row["owner_id"]]:
            return [
                Violation(
                    "workspace_owner",
                    ws,
                    f"owner members {owners} do not match owner_id {row['owner_id']!r}",
                )
            ]
        return []

    def _check_default_workspace(self, conn: sqlite3.Connection) -> list[Violation]:
        violations = []
        for row in conn.execute(
            """
            SELECT owner_id, SUM(is_default) AS defaults FROM workspaces
            GROUP BY owner_id HAVING defaults != 1
            """
        ):
            violations.append(
                Violation(
                    "default_workspace",
                    row["owner_id"],
                    f"owner has {row['defaults']} default workspaces",
                )
            )
        return violations

    def _check_assignees(self, conn: sqlite3.Connection, ws: str) -> list[Violation]:
        return [
            Violation("assignees", row["id"], f"assignee {row['assigned_to']!r} is not a member")
            for row in conn.execute(
                """
                SELECT t.id, t.assigned_to FROM tasks t
                LEFT JOIN workspace_members m
                    ON m.workspace_id = t.workspace_id AND m.user_id = t.assigned_to
                WHERE t.workspace_id = ? AND t.assigned_to IS NOT NULL AND m.user_id IS NULL
                """,
                (ws,),
            )
        ]
