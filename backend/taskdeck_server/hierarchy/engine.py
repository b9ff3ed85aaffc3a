"""
Hierarchy engine for the document tree.

Documents are stored with their full materialized path. Subtree queries are
range scans on the (workspace_id, path) index; no parent/child graph is ever
loaded into memory.

Invariants:
    - path == parent.path + "." + slug, or slug for roots
    - parent_path == parent.path, or '' for roots
    - (workspace, path) and (workspace, slug) are unique
    - No document is its own ancestor; moves into the own subtree are rejected
    - Deleting a document removes its whole subtree, the subtree's task links
      and search entries in the caller's transaction
    - Sibling order is owned by the ordering engine, keyed by parent_path

How to change safely:
    - Path rewrites must touch the document and all descendants in one
      transaction
    - Keep labels free of '.' (see paths.slugify_label)
"""

from __future__ import annotations

import logging
import sqlite3

from ..errors import CyclicMove, NotFoundError, PathCollision
from ..models import Document, SearchKind, new_id, now_ms
from ..ordering.engine import OrderedCollection, OrderingEngine
from ..search.index import SearchIndex
from .paths import (
    child_path,
    descendant_range,
    is_descendant_or_self,
    slugify_label,
    validate_label,
)

logger = logging.getLogger(__name__)


class HierarchyEngine:
    """Create, move and delete documents by materialized path.

    All methods take a connection with an open transaction. Writes that
    allocate sibling positions should run under OrderingEngine.run so
    position races are retried.
    """

    def __init__(self, ordering: OrderingEngine, index: SearchIndex | None = None) -> None:
        self.ordering = ordering
        self.index = index or SearchIndex()

    def siblings(self, workspace_id: str, parent_path: str) -> OrderedCollection:
        return OrderedCollection.documents(
            workspace_id, parent_path, stride=self.ordering.config.stride
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, conn: sqlite3.Connection, workspace_id: str, document_id: str) -> Document:
        """Fetch a document of a workspace.

        Raises:
            NotFoundError: If absent or owned by another workspace
        """
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ? AND workspace_id = ?",
            (document_id, workspace_id),
        ).fetchone()
        if row is None:
            raise NotFoundError("Document", document_id)
        return Document.from_row(row)

    def children_of(self, conn: sqlite3.Connection, workspace_id: str, path: str) -> list[Document]:
        """Direct children of a path ('' for roots) in sibling order."""
        rows = conn.execute(
            """
            SELECT * FROM documents
            WHERE workspace_id = ? AND parent_path = ?
            ORDER BY position
            """,
            (workspace_id, path),
        ).fetchall()
        return [Document.from_row(row) for row in rows]

    def subtree_of(self, conn: sqlite3.Connection, workspace_id: str, path: str) -> list[Document]:
        """A document and all of its descendants, ordered by path."""
        low, high = descendant_range(path)
        rows = conn.execute(
            """
            SELECT * FROM documents
            WHERE workspace_id = ? AND (path = ? OR (path >= ? AND path < ?))
            ORDER BY path
            """,
            (workspace_id, path, low, high),
        ).fetchall()
        return [Document.from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        title: str,
        created_by: str,
        parent_id: str | None = None,
        content: str = "",
        slug: str | None = None,
        before_id: str | None = None,
        after_id: str | None = None,
    ) -> Document:
        """Insert a document under a parent (or at the root).

        Args:
            conn: Connection with an open transaction
            workspace_id: Owning workspace
            title: Document title; the label is derived from it unless slug is given
            created_by: Creating user
            parent_id: Parent document, None for a root document
            content: Document body
            slug: Explicit label, used to disambiguate colliding titles
            before_id: Sibling that should precede the new document
            after_id: Sibling that should follow the new document

        Returns:
            The created document

        Raises:
            NotFoundError: If the parent is not in the workspace
            PathCollision: If the path or slug is already taken
        """
        parent_path = ""
        if parent_id is not None:
            parent_path = self.get(conn, workspace_id, parent_id).path

        label = validate_label(slug) if slug is not None else slugify_label(title)
        path = child_path(parent_path, label)

        taken = conn.execute(
            "SELECT 1 FROM documents WHERE workspace_id = ? AND (path = ? OR slug = ?)",
            (workspace_id, path, label),
        ).fetchone()
        if taken:
            raise PathCollision(workspace_id, path, label)

        position = self.ordering.insert_at(
            conn, self.siblings(workspace_id, parent_path), before_id, after_id
        )

        now = now_ms()
        document = Document(
            id=new_id(),
            workspace_id=workspace_id,
            path=path,
            parent_path=parent_path,
            position=position,
            title=title,
            slug=label,
            created_by=created_by,
            parent_id=parent_id,
            content=content,
            created_at=now,
            updated_at=now,
        )

        try:
            conn.execute(
                """
                INSERT INTO documents (id, workspace_id, parent_id, path, parent_path,
                                       position, title, slug, content, created_by,
                                       created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    workspace_id,
                    parent_id,
                    path,
                    parent_path,
                    position,
                    title,
                    label,
                    content,
                    created_by,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as e:
            if "documents.path" in str(e) or "documents.slug" in str(e):
                raise PathCollision(workspace_id, path, label) from e
            raise

        self.index.upsert(conn, workspace_id, SearchKind.DOCUMENT, document.id, title, content)

        logger.debug(
            "Created document",
            extra={"workspace_id": workspace_id, "document_id": document.id, "path": path},
        )
        return document

    def move(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        document_id: str,
        new_parent_id: str | None,
        before_id: str | None = None,
        after_id: str | None = None,
    ) -> Document:
        """Reparent a document, rewriting its subtree's paths.

        Moving within the same parent only changes sibling order.

        Raises:
            NotFoundError: If either document is not in the workspace
            CyclicMove: If the new parent is the document or a descendant
            PathCollision: If the destination path is taken
        """
        document = self.get(conn, workspace_id, document_id)

        new_parent_path = ""
        if new_parent_id is not None:
            new_parent = self.get(conn, workspace_id, new_parent_id)
            if is_descendant_or_self(new_parent.path, document.path):
                raise CyclicMove(document_id, new_parent_id)
            new_parent_path = new_parent.path

        source = self.siblings(workspace_id, document.parent_path)
        destination = self.siblings(workspace_id, new_parent_path)
        now = now_ms()

        if new_parent_path == document.parent_path:
            self.ordering.move(conn, document_id, source, destination, before_id, after_id)
            conn.execute("UPDATE documents SET updated_at = ? WHERE id = ?", (now, document_id))
            return self.get(conn, workspace_id, document_id)

        old_path = document.path
        new_path = child_path(new_parent_path, document.slug)
        if conn.execute(
            "SELECT 1 FROM documents WHERE workspace_id = ? AND path = ?",
            (workspace_id, new_path),
        ).fetchone():
            raise PathCollision(workspace_id, new_path, document.slug)

        low, high = descendant_range(old_path)
        cursor = conn.execute(
            """
            UPDATE documents
            SET path = ? || substr(path, ?),
                parent_path = ? || substr(parent_path, ?)
            WHERE workspace_id = ? AND path >= ? AND path < ?
            """,
            (
                new_path,
                len(old_path) + 1,
                new_path,
                len(old_path) + 1,
                workspace_id,
                low,
                high,
            ),
        )
        descendants = cursor.rowcount

        self.ordering.move(conn, document_id, source, destination, before_id, after_id)
        conn.execute(
            "UPDATE documents SET path = ?, parent_id = ?, updated_at = ? WHERE id = ?",
            (new_path, new_parent_id, now, document_id),
        )

        logger.info(
            "Moved document subtree",
            extra={
                "workspace_id": workspace_id,
                "document_id": document_id,
                "old_path": old_path,
                "new_path": new_path,
                "descendants": descendants,
            },
        )
        return self.get(conn, workspace_id, document_id)

    def delete(self, conn: sqlite3.Connection, workspace_id: str, document_id: str) -> list[str]:
        """Delete a document with its whole subtree.

        Returns:
            Ids of every deleted document
        """
        document = self.get(conn, workspace_id, document_id)
        low, high = descendant_range(document.path)
        subtree = "workspace_id = ? AND (path = ? OR (path >= ? AND path < ?))"
        params = (workspace_id, document.path, low, high)

        ids = [
            row["id"]
            for row in conn.execute(f"SELECT id FROM documents WHERE {subtree}", params)
        ]

        links = conn.execute(
            f"""
            DELETE FROM task_document_links
            WHERE document_id IN (SELECT id FROM documents WHERE {subtree})
            """,
            params,
        ).rowcount
        self.index.remove(conn, SearchKind.DOCUMENT, ids)
        conn.execute(f"DELETE FROM documents WHERE {subtree}", params)

        logger.info(
            "Deleted document subtree",
            extra={
                "workspace_id": workspace_id,
                "document_id": document_id,
                "documents": len(ids),
                "links": links,
            },
        )
        return ids
