"""
Workspace operations for Taskdeck.

Every service method takes the workspace id and an Actor, authorizes the
action, then performs its reads and writes in one transaction.
"""

from .activity import ActivityService
from .comments import CommentService
from .documents import DocumentService
from .links import LinkService
from .members import MembershipService
from .search import SearchService
from .statuses import StatusService, seed_default_statuses
from .tags import TagService
from .tasks import TaskService
from .workspaces import WorkspaceService

__all__ = [
    "ActivityService",
    "CommentService",
    "DocumentService",
    "LinkService",
    "MembershipService",
    "SearchService",
    "StatusService",
    "TagService",
    "TaskService",
    "WorkspaceService",
    "seed_default_statuses",
]
