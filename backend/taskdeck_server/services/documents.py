"""
Knowledge-base document operations, delegating tree structure to the
hierarchy engine.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..activity import record_activity
from ..authz.roles import Action, Actor
from ..hierarchy.engine import HierarchyEngine
from ..models import Document, DocumentTree, SearchKind, now_ms
from ..requests import CreateDocumentRequest, MoveDocumentRequest, UpdateDocumentRequest, parse
from ..store.database import Database

logger = logging.getLogger(__name__)


class DocumentService:
    """Document CRUD, moves and tree listing."""

    def __init__(self, db: Database, hierarchy: HierarchyEngine) -> None:
        self.db = db
        self.hierarchy = hierarchy

    async def list_tree(self, workspace_id: str, actor: Actor) -> DocumentTree:
        """Every document grouped by parent path, each group in sibling order."""
        actor.require(Action.VIEW_DOCUMENT)
        tree = DocumentTree()
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM documents WHERE workspace_id = ?
                ORDER BY parent_path, position
                """,
                (workspace_id,),
            ).fetchall()
        for row in rows:
            document = Document.from_row(row)
            tree.children.setdefault(document.parent_path, []).append(document)
        return tree

    async def get(self, workspace_id: str, document_id: str, actor: Actor) -> Document:
        actor.require(Action.VIEW_DOCUMENT)
        with self.db.connect() as conn:
            return self.hierarchy.get(conn, workspace_id, document_id)

    async def children(self, workspace_id: str, actor: Actor, path: str = "") -> list[Document]:
        actor.require(Action.VIEW_DOCUMENT)
        with self.db.connect() as conn:
            return self.hierarchy.children_of(conn, workspace_id, path)

    async def subtree(self, workspace_id: str, document_id: str, actor: Actor) -> list[Document]:
        actor.require(Action.VIEW_DOCUMENT)
        with self.db.connect() as conn:
            document = self.hierarchy.get(conn, workspace_id, document_id)
            return self.hierarchy.subtree_of(conn, workspace_id, document.path)

    async def create(
        self,
        workspace_id: str,
        actor: Actor,
        request: CreateDocumentRequest | dict[str, Any],
    ) -> Document:
        """Create a document under parent_id, or at the root.

        Raises:
            PathCollision: If the derived path or slug is taken; pass an
                explicit slug to disambiguate
        """
        actor.require(Action.CREATE_DOCUMENT)
        req = parse(CreateDocumentRequest, request)

        def write(conn: sqlite3.Connection) -> Document:
            document = self.hierarchy.create(
                conn,
                workspace_id,
                title=req.title,
                created_by=actor.user_id,
                parent_id=req.parent_id,
                content=req.content,
                slug=req.slug,
                before_id=req.before_id,
                after_id=req.after_id,
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "document",
                document.id,
                "created",
                {"path": document.path},
            )
            return document

        return await self.hierarchy.ordering.run(write, description="create document")

    async def update(
        self,
        workspace_id: str,
        document_id: str,
        actor: Actor,
        request: UpdateDocumentRequest | dict[str, Any],
    ) -> Document:
        """Change title or content. The path and slug stay as created."""
        actor.require(Action.EDIT_DOCUMENT)
        req = parse(UpdateDocumentRequest, request)
        fields = req.model_dump(exclude_unset=True)

        with self.db.transaction() as conn:
            document = self.hierarchy.get(conn, workspace_id, document_id)
            if fields.get("title") is not None:
                document.title = fields["title"]
            if fields.get("content") is not None:
                document.content = fields["content"]
            document.updated_at = now_ms()

            conn.execute(
                "UPDATE documents SET title = ?, content = ?, updated_at = ? WHERE id = ?",
                (document.title, document.content, document.updated_at, document_id),
            )
            self.hierarchy.index.upsert(
                conn, workspace_id, SearchKind.DOCUMENT, document_id, document.title, document.content
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "document",
                document_id,
                "updated",
                {"fields": sorted(fields)},
            )

        logger.debug(
            "Updated document",
            extra={"workspace_id": workspace_id, "document_id": document_id},
        )
        return document

    async def move(
        self,
        workspace_id: str,
        document_id: str,
        actor: Actor,
        request: MoveDocumentRequest | dict[str, Any],
    ) -> Document:
        """Reparent a document (None for root), optionally between siblings.

        Raises:
            CyclicMove: If the new parent lies in the document's own subtree
        """
        actor.require(Action.MOVE_DOCUMENT)
        req = parse(MoveDocumentRequest, request)

        def write(conn: sqlite3.Connection) -> Document:
            document = self.hierarchy.move(
                conn,
                workspace_id,
                document_id,
                req.new_parent_id,
                before_id=req.before_id,
                after_id=req.after_id,
            )
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "document",
                document_id,
                "moved",
                {"path": document.path},
            )
            return document

        return await self.hierarchy.ordering.run(write, description="move document")

    async def delete(self, workspace_id: str, document_id: str, actor: Actor) -> list[str]:
        """Delete a document and its subtree. Returns the deleted ids."""
        actor.require(Action.DELETE_DOCUMENT)
        with self.db.transaction() as conn:
            deleted = self.hierarchy.delete(conn, workspace_id, document_id)
            record_activity(
                conn,
                workspace_id,
                actor.user_id,
                "document",
                document_id,
                "deleted",
                {"documents": len(deleted)},
            )
        return deleted
