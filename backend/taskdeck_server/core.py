"""
Taskdeck core - wiring of engines and services.

This module assembles every component over one database:
- Ordering engine (positions, retries)
- Hierarchy engine (document paths)
- Search index and search engine
- Invitation lifecycle
- Workspace services built on top of them

An API layer constructs one TaskdeckCore at startup and calls its services.

Invariants:
    - All components share one Database handle
    - The schema is created before any service is used
    - Engines are shared between services, never duplicated

How to change safely:
    - Add new services here and in services/__init__.py
    - Keep construction free of I/O; do I/O in initialize()
"""

from __future__ import annotations

import logging

from .config import ServerConfig
from .hierarchy.engine import HierarchyEngine
from .integrity import IntegrityChecker
from .invites.lifecycle import InvitationLifecycle
from .ordering.engine import OrderingEngine
from .search.engine import SearchEngine
from .search.index import SearchIndex
from .services import (
    ActivityService,
    CommentService,
    DocumentService,
    LinkService,
    MembershipService,
    SearchService,
    StatusService,
    TagService,
    TaskService,
    WorkspaceService,
)
from .store.database import Database

logger = logging.getLogger(__name__)


class TaskdeckCore:
    """Container for every Taskdeck component.

    Attributes:
        config: Server configuration
        db: Shared database
        ordering: Ordering engine
        index: Search index writer
        hierarchy: Document hierarchy engine
        search_engine: Hybrid search engine
        invites: Invitation lifecycle

    Example:
        >>> core = TaskdeckCore.from_config(ServerConfig.from_env())
        >>> await core.initialize()
        >>> workspace = await core.workspaces.ensure_default("user-1")
    """

    def __init__(self, db: Database, config: ServerConfig | None = None) -> None:
        self.config = config or ServerConfig()
        self.db = db

        self.ordering = OrderingEngine(db, self.config.ordering)
        self.index = SearchIndex()
        self.hierarchy = HierarchyEngine(self.ordering, self.index)
        self.search_engine = SearchEngine(db, self.config.search)
        self.invites = InvitationLifecycle(db, self.config.invites)

        self.workspaces = WorkspaceService(db, self.index)
        self.members = MembershipService(db, self.invites)
        self.statuses = StatusService(db, self.ordering)
        self.tasks = TaskService(db, self.ordering, self.index)
        self.comments = CommentService(db, self.index)
        self.tags = TagService(db)
        self.documents = DocumentService(db, self.hierarchy)
        self.links = LinkService(db)
        self.search = SearchService(self.search_engine)
        self.activity = ActivityService(db)

    @classmethod
    def from_config(cls, config: ServerConfig) -> TaskdeckCore:
        return cls(Database.from_config(config.storage), config)

    async def initialize(self) -> None:
        """Create the schema if needed."""
        await self.db.initialize()
        logger.info("Taskdeck core ready", extra={"database_path": str(self.db.path)})

    def integrity_checker(self) -> IntegrityChecker:
        return IntegrityChecker(self.db)
