"""Activity feed operation."""

from __future__ import annotations

from ..activity import recent_activity
from ..authz.roles import Action, Actor
from ..errors import ValidationError
from ..models import ActivityEntry
from ..store.database import Database

MAX_ACTIVITY = 200


class ActivityService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_recent(
        self,
        workspace_id: str,
        actor: Actor,
        limit: int = 50,
        entity_id: str | None = None,
    ) -> list[ActivityEntry]:
        """Newest activity first, optionally for a single entity."""
        actor.require(Action.VIEW_ACTIVITY)
        if not 1 <= limit <= MAX_ACTIVITY:
            raise ValidationError(f"limit must be within 1..{MAX_ACTIVITY}", field_name="limit")
        with self.db.connect() as conn:
            return recent_activity(conn, workspace_id, limit=limit, entity_id=entity_id)
