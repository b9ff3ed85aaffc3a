"""
SQLite database for Taskdeck.

A single database file holds every workspace. All tenant-owned tables carry
workspace_id (directly or through their parent row) and every query filters
on it.

Invariants:
    - One connection per operation; SQLite handles concurrency via WAL mode
    - Every write runs inside one BEGIN IMMEDIATE transaction
    - A failed transaction is rolled back before the error propagates
    - Uniqueness of positions, paths and slugs is backed by unique indexes
      as well as by the engines' own checks
    - The FTS table is kept in sync with search_entries by triggers

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Bump SCHEMA_VERSION when adding tables
    - Never enable ON DELETE CASCADE; cascades are explicit in the engines

Table schema:
    workspaces:          id, name, slug (unique), owner_id, settings_json,
                         is_default (one per owner), timestamps
    workspace_members:   (workspace_id, user_id), role, invited_by, joined_at
    workspace_invites:   id, workspace_id, email, role, token (unique),
                         expires_at, accepted_at, accepted_by
    task_statuses:       id, workspace_id, slug, position (unique per workspace)
    tasks:               id, workspace_id, status_id, position (unique per status)
    task_comments:       id, task_id, user_id, content
    tags / task_tags:    workspace-unique tag names, many-to-many with tasks
    documents:           id, workspace_id, path, parent_path, position
                         (unique per parent_path), slug
    task_document_links: (task_id, document_id)
    activity_log:        audited mutations
    search_entries:      one row per searchable entity (kind, entity_id)
    search_fts:          FTS5 over search_entries(title, body)
    search_trigrams:     trigram index over search_entries
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import StorageConfig

logger = logging.getLogger(__name__)


class Database:
    """Shared SQLite database for all workspaces.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> db = Database("/var/lib/taskdeck")
        >>> await db.initialize()
        >>> with db.transaction() as conn:
        ...     conn.execute("UPDATE tasks SET title = ? WHERE id = ?", (title, task_id))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        database_file: str = "taskdeck.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            data_dir: Directory for the SQLite database file
            database_file: File name inside data_dir
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / database_file
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: StorageConfig) -> Database:
        return cls(
            data_dir=config.data_dir,
            database_file=config.database_file,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection in autocommit mode.

        Yields:
            SQLite connection
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one write transaction.

        The block either commits as a whole or is rolled back and the
        exception re-raised.
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self.connect() as conn:
                self._create_schema(conn)
        logger.info("Initialized database", extra={"path": str(self.path)})

    def exists(self) -> bool:
        return self.path.exists()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Workspaces
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                slug TEXT NOT NULL UNIQUE,
                description TEXT,
                owner_id TEXT NOT NULL,
                settings_json TEXT NOT NULL DEFAULT '{}',
                is_default INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_workspaces_owner ON workspaces(owner_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_workspaces_one_default
                ON workspaces(owner_id) WHERE is_default = 1;

            -- Members
            CREATE TABLE IF NOT EXISTS workspace_members (
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                user_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('owner', 'admin', 'editor', 'reader')),
                invited_by TEXT,
                joined_at INTEGER NOT NULL,
                PRIMARY KEY (workspace_id, user_id)
            );

            CREATE INDEX IF NOT EXISTS idx_members_user ON workspace_members(user_id);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_members_one_owner
                ON workspace_members(workspace_id) WHERE role = 'owner';

            -- Invitations
            CREATE TABLE IF NOT EXISTS workspace_invites (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                email TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('admin', 'editor', 'reader')),
                token TEXT NOT NULL UNIQUE,
                invited_by TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                accepted_at INTEGER,
                accepted_by TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_invites_email
                ON workspace_invites(workspace_id, email);

            -- Kanban statuses
            CREATE TABLE IF NOT EXISTS task_statuses (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                name TEXT NOT NULL,
                slug TEXT NOT NULL,
                color TEXT,
                position INTEGER NOT NULL,
                is_done INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                UNIQUE (workspace_id, slug),
                UNIQUE (workspace_id, position)
            );

            -- Tasks
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                status_id TEXT NOT NULL REFERENCES task_statuses(id),
                title TEXT NOT NULL,
                description TEXT,
                priority TEXT CHECK (
                    priority IS NULL
                    OR priority IN ('lowest', 'low', 'medium', 'high', 'highest')
                ),
                due_date TEXT,
                time_estimate_minutes INTEGER,
                position INTEGER NOT NULL,
                created_by TEXT NOT NULL,
                assigned_to TEXT,
                external_refs_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                completed_at INTEGER,
                UNIQUE (status_id, position)
            );

            CREATE INDEX IF NOT EXISTS idx_tasks_workspace
                ON tasks(workspace_id, status_id, position);
            CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(workspace_id, assigned_to);

            -- Comments
            CREATE TABLE IF NOT EXISTS task_comments (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL REFERENCES tasks(id),
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_comments_task ON task_comments(task_id, created_at);

            -- Tags
            CREATE TABLE IF NOT EXISTS tags (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                name TEXT NOT NULL,
                color TEXT,
                created_at INTEGER NOT NULL,
                UNIQUE (workspace_id, name)
            );

            CREATE TABLE IF NOT EXISTS task_tags (
                task_id TEXT NOT NULL REFERENCES tasks(id),
                tag_id TEXT NOT NULL REFERENCES tags(id),
                PRIMARY KEY (task_id, tag_id)
            );

            CREATE INDEX IF NOT EXISTS idx_task_tags_tag ON task_tags(tag_id);

            -- Documents
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                parent_id TEXT REFERENCES documents(id),
                path TEXT NOT NULL,
                parent_path TEXT NOT NULL DEFAULT '',
                position INTEGER NOT NULL,
                title TEXT NOT NULL,
                slug TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                UNIQUE (workspace_id, path),
                UNIQUE (workspace_id, slug),
                UNIQUE (workspace_id, parent_path, position)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents(parent_id);

            -- Task-document links
            CREATE TABLE IF NOT EXISTS task_document_links (
                task_id TEXT NOT NULL REFERENCES tasks(id),
                document_id TEXT NOT NULL REFERENCES documents(id),
                created_by TEXT,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (task_id, document_id)
            );

            CREATE INDEX IF NOT EXISTS idx_links_document ON task_document_links(document_id);

            -- Activity log
            CREATE TABLE IF NOT EXISTS activity_log (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                user_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                action TEXT NOT NULL,
                changes_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_activity_workspace
                ON activity_log(workspace_id, created_at DESC);

            -- Search entries, one per searchable entity
            CREATE TABLE IF NOT EXISTS search_entries (
                id INTEGER PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('task', 'document', 'comment')),
                entity_id TEXT NOT NULL,
                task_id TEXT,
                title TEXT NOT NULL DEFAULT '',
                body TEXT NOT NULL DEFAULT '',
                updated_at INTEGER NOT NULL,
                UNIQUE (kind, entity_id)
            );

            CREATE INDEX IF NOT EXISTS idx_search_workspace
                ON search_entries(workspace_id, kind);

            -- FTS5 virtual table for lexical relevance
            CREATE VIRTUAL TABLE IF NOT EXISTS search_fts USING fts5(
                title,
                body,
                content='search_entries',
                content_rowid='id',
                tokenize='porter unicode61'
            );

            -- Triggers to keep FTS in sync
            CREATE TRIGGER IF NOT EXISTS search_entries_ai AFTER INSERT ON search_entries BEGIN
                INSERT INTO search_fts(rowid, title, body)
                VALUES (new.id, new.title, new.body);
            END;

            CREATE TRIGGER IF NOT EXISTS search_entries_ad AFTER DELETE ON search_entries BEGIN
                INSERT INTO search_fts(search_fts, rowid, title, body)
                VALUES('delete', old.id, old.title, old.body);
            END;

            CREATE TRIGGER IF NOT EXISTS search_entries_au AFTER UPDATE ON search_entries BEGIN
                INSERT INTO search_fts(search_fts, rowid, title, body)
                VALUES('delete', old.id, old.title, old.body);
                INSERT INTO search_fts(rowid, title, body)
                VALUES (new.id, new.title, new.body);
            END;

            -- Trigram index over search entry fields
            CREATE TABLE IF NOT EXISTS search_trigrams (
                entry_id INTEGER NOT NULL,
                workspace_id TEXT NOT NULL,
                field TEXT NOT NULL CHECK (field IN ('title', 'body')),
                trigram TEXT NOT NULL,
                PRIMARY KEY (entry_id, field, trigram)
            );

            CREATE INDEX IF NOT EXISTS idx_trigrams_lookup
                ON search_trigrams(workspace_id, trigram);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)
