"""Search operation."""

from __future__ import annotations

from typing import Any

from ..authz.roles import Action, Actor
from ..models import SearchPage
from ..requests import SearchRequest, parse
from ..search.engine import SearchEngine


class SearchService:
    def __init__(self, engine: SearchEngine) -> None:
        self.engine = engine

    async def search(
        self,
        workspace_id: str,
        actor: Actor,
        request: SearchRequest | dict[str, Any],
    ) -> SearchPage:
        """Ranked, paginated search of one workspace."""
        actor.require(Action.SEARCH)
        req = parse(SearchRequest, request)
        return await self.engine.search(
            workspace_id,
            req.query,
            kinds=req.kinds,
            page=req.page,
            limit=req.limit,
        )
