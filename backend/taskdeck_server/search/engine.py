"""
Hybrid search for Taskdeck.

Two signals are computed per candidate entry:
- lexical: FTS5 bm25 relevance of the query's words (all must match)
- trigram: fraction of the query's trigrams present in title or body

Combined score:
    lexical hit       lexical_base + lexical_weight * lex + trigram_weight * trgm
    trigram-only hit  trigram_weight * trgm

with lex normalised to (0, 1). Since trigram_weight <= lexical_base (checked
by ServerConfig.validate), any lexical hit outranks any trigram-only hit.

Invariants:
    - Candidates are restricted to one workspace inside the SQL, before scoring
    - Results are sorted by score descending, then entity id ascending
    - total counts every candidate, not only the returned page
    - Searching never writes

How to change safely:
    - Weight changes are configuration; keep the lexical floor above the
      largest trigram-only score
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass

from ..config import SearchConfig
from ..errors import ValidationError
from ..models import SearchHit, SearchKind, SearchPage
from ..store.database import Database
from .trigrams import similarity, trigrams, words

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 160
HIGHLIGHT_OPEN = "<<"
HIGHLIGHT_CLOSE = ">>"

# Keeps IN (...) lists under SQLite's variable limit
_CHUNK = 500

_TOKENS = re.compile(r"[^\W_]+")


@dataclass
class _Candidate:
    entry_id: int
    lexical: float = 0.0
    trigram: float = 0.0
    lexical_hit: bool = False


class SearchEngine:
    """Ranks tasks, documents and comments of one workspace against a query.

    Example:
        >>> engine = SearchEngine(db)
        >>> page = await engine.search(workspace_id, "urgnt fix")
        >>> page.hits[0].title
        'Urgent Fix Needed'
    """

    def __init__(self, db: Database, config: SearchConfig | None = None) -> None:
        self.db = db
        self.config = config or SearchConfig()

    async def search(
        self,
        workspace_id: str,
        query: str,
        kinds: Iterable[SearchKind] | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> SearchPage:
        """Search one workspace.

        Args:
            workspace_id: Workspace to search
            query: Free text
            kinds: Entity kinds to include (all when None)
            page: 1-based page number
            limit: Page size, capped at SearchConfig.max_limit

        Returns:
            One page of ranked hits
        """
        if page < 1:
            raise ValidationError("page must be at least 1", field_name="page")
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1", field_name="limit")
        limit = min(limit or self.config.default_limit, self.config.max_limit)

        selected = list(dict.fromkeys(kinds)) if kinds is not None else list(SearchKind)
        query = query.strip()
        if not query or not selected:
            return SearchPage(hits=[], total=0, page=page, limit=limit)

        with self.db.connect() as conn:
            candidates: dict[int, _Candidate] = {}
            self._lexical(conn, workspace_id, query, selected, candidates)
            self._trigram(conn, workspace_id, query, selected, candidates)

            scored = [
                (self._score(c), c)
                for c in candidates.values()
                if c.lexical_hit or c.trigram >= self.config.trigram_threshold
            ]
            entries = self._load_entries(conn, [c.entry_id for _, c in scored])

        ranked = sorted(scored, key=lambda pair: (-pair[0], entries[pair[1].entry_id]["entity_id"]))
        offset = (page - 1) * limit
        query_words = words(query)

        hits = [
            self._to_hit(entries[c.entry_id], c, score, query_words)
            for score, c in ranked[offset : offset + limit]
        ]

        logger.debug(
            "Search executed",
            extra={
                "workspace_id": workspace_id,
                "kinds": [k.value for k in selected],
                "candidates": len(ranked),
                "page": page,
            },
        )

        return SearchPage(hits=hits, total=len(ranked), page=page, limit=limit)

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def _lexical(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        query: str,
        kinds: list[SearchKind],
        candidates: dict[int, _Candidate],
    ) -> None:
        tokens = words(query)
        if not tokens:
            return

        match = " AND ".join(f'"{token}"' for token in tokens)
        placeholders = ",".join("?" * len(kinds))
        try:
            rows = conn.execute(
                f"""
                SELECT e.id, bm25(search_fts) AS rank
                FROM search_fts
                JOIN search_entries e ON e.id = search_fts.rowid
                WHERE search_fts MATCH ?
                  AND e.workspace_id = ?
                  AND e.kind IN ({placeholders})
                """,
                [match, workspace_id, *(k.value for k in kinds)],
            ).fetchall()
        except sqlite3.OperationalError as e:
            if "fts5" not in str(e).lower():
                raise
            logger.warning(f"FTS query error: {e}")
            return

        for row in rows:
            # bm25() is negative; more negative means more relevant
            relevance = max(-row["rank"], 0.0)
            candidate = candidates.setdefault(row["id"], _Candidate(row["id"]))
            candidate.lexical_hit = True
            candidate.lexical = relevance / (1.0 + relevance)

    def _trigram(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        query: str,
        kinds: list[SearchKind],
        candidates: dict[int, _Candidate],
    ) -> None:
        query_grams = sorted(trigrams(query))
        if not query_grams:
            return

        gram_marks = ",".join("?" * len(query_grams))
        kind_marks = ",".join("?" * len(kinds))
        rows = conn.execute(
            f"""
            SELECT t.entry_id, t.field, COUNT(*) AS shared
            FROM search_trigrams t
            JOIN search_entries e ON e.id = t.entry_id
            WHERE t.workspace_id = ?
              AND t.trigram IN ({gram_marks})
              AND e.kind IN ({kind_marks})
            GROUP BY t.entry_id, t.field
            """,
            [workspace_id, *query_grams, *(k.value for k in kinds)],
        ).fetchall()

        for row in rows:
            score = row["shared"] / len(query_grams)
            candidate = candidates.setdefault(row["entry_id"], _Candidate(row["entry_id"]))
            candidate.trigram = max(candidate.trigram, score)

    def _score(self, candidate: _Candidate) -> float:
        fuzzy = self.config.trigram_weight * candidate.trigram
        if candidate.lexical_hit:
            return self.config.lexical_base + self.config.lexical_weight * candidate.lexical + fuzzy
        return fuzzy

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _load_entries(
        self, conn: sqlite3.Connection, entry_ids: list[int]
    ) -> dict[int, sqlite3.Row]:
        entries: dict[int, sqlite3.Row] = {}
        for start in range(0, len(entry_ids), _CHUNK):
            chunk = entry_ids[start : start + _CHUNK]
            placeholders = ",".join("?" * len(chunk))
            for row in conn.execute(
                f"""
                SELECT e.*, t.title AS task_title
                FROM search_entries e
                LEFT JOIN tasks t ON t.id = e.task_id
                WHERE e.id IN ({placeholders})
                """,
                chunk,
            ):
                entries[row["id"]] = row
        return entries

    def _to_hit(
        self,
        row: sqlite3.Row,
        candidate: _Candidate,
        score: float,
        query_words: list[str],
    ) -> SearchHit:
        kind = SearchKind(row["kind"])
        title = row["task_title"] if kind == SearchKind.COMMENT else row["title"]

        threshold = self.config.trigram_threshold
        if kind != SearchKind.COMMENT and _has_match(row["title"], query_words, threshold):
            snippet = highlight(row["title"], query_words, threshold)
        else:
            snippet = highlight(row["body"], query_words, threshold)

        return SearchHit(
            kind=kind,
            entity_id=row["entity_id"],
            title=title or "",
            snippet=snippet,
            score=round(score, 6),
            lexical_score=round(candidate.lexical, 6),
            trigram_score=round(candidate.trigram, 6),
            task_id=row["task_id"],
        )


def _token_matches(token: str, query_words: list[str], threshold: float) -> bool:
    lowered = token.lower()
    return any(
        word in lowered or similarity(word, lowered) >= max(threshold, 0.5)
        for word in query_words
    )


def _has_match(text: str, query_words: list[str], threshold: float) -> bool:
    return any(_token_matches(m.group(), query_words, threshold) for m in _TOKENS.finditer(text))


def highlight(
    text: str,
    query_words: list[str],
    threshold: float = 0.3,
    width: int = SNIPPET_CHARS,
) -> str:
    """Excerpt of text around the first match with matches wrapped in <<...>>.

    Example:
        >>> highlight("Urgent Fix Needed", ["urgnt", "fix"])
        '<<Urgent>> <<Fix>> Needed'
    """
    matches = [m for m in _TOKENS.finditer(text) if _token_matches(m.group(), query_words, threshold)]
    if not matches:
        return text[:width] + ("..." if len(text) > width else "")

    start = max(0, matches[0].start() - width // 4)
    end = min(len(text), start + width)

    pieces = ["..."] if start > 0 else []
    cursor = start
    for m in matches:
        if m.start() < cursor or m.end() > end:
            continue
        pieces.append(text[cursor : m.start()])
        pieces.append(f"{HIGHLIGHT_OPEN}{m.group()}{HIGHLIGHT_CLOSE}")
        cursor = m.end()
    pieces.append(text[cursor:end])
    if end < len(text):
        pieces.append("...")
    return "".join(pieces)
