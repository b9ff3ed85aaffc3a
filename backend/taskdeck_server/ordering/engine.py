"""
Ordering engine for Taskdeck.

Maintains integer positions for linearly ordered collections:
- tasks within a status (gapped, stride 1000)
- statuses within a workspace (dense, 0..n-1)
- documents within a parent path (gapped, stride 1000)

Invariants:
    - Positions are unique within a collection (backed by a unique index)
    - An insert lands strictly between its neighbours when an integer gap
      exists; otherwise the collection is re-spaced once and the slot reserved
    - Rebalance preserves relative order
    - A cross-collection move is one transaction: the item is in exactly one
      collection before and after
    - Position collisions are retried in a fresh transaction, bounded by
      OrderingConfig.max_retries, then surfaced as ConflictError

How to change safely:
    - Keep the two-phase rebalance; a single-pass UPDATE trips the unique index
    - PARKED_POSITION and temporary positions must stay below any origin
    - New collection kinds need a table entry in _TABLES
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..config import OrderingConfig
from ..errors import ConflictError, ValidationError
from ..store.database import Database

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Position an item holds while it is being moved
PARKED_POSITION = -(2**31)

_TABLES = frozenset({"tasks", "task_statuses", "documents"})


@dataclass(frozen=True)
class OrderedCollection:
    """A set of rows ordered by their position column.

    Attributes:
        table: Table holding the rows
        scope: Column/value pairs selecting the collection
        stride: Spacing between positions after a rebalance
        origin: Position of the first item after a rebalance
    """

    table: str
    scope: tuple[tuple[str, Any], ...]
    stride: int = 1000
    origin: int = 1000

    def __post_init__(self) -> None:
        if self.table not in _TABLES:
            raise ValueError(f"Not an ordered table: {self.table}")

    @classmethod
    def tasks(cls, status_id: str, stride: int = 1000) -> OrderedCollection:
        return cls("tasks", (("status_id", status_id),), stride=stride, origin=stride)

    @classmethod
    def statuses(cls, workspace_id: str) -> OrderedCollection:
        return cls("task_statuses", (("workspace_id", workspace_id),), stride=1, origin=0)

    @classmethod
    def documents(
        cls, workspace_id: str, parent_path: str, stride: int = 1000
    ) -> OrderedCollection:
        return cls(
            "documents",
            (("workspace_id", workspace_id), ("parent_path", parent_path)),
            stride=stride,
            origin=stride,
        )

    def where(self) -> tuple[str, list[Any]]:
        clause = " AND ".join(f"{column} = ?" for column, _ in self.scope)
        return clause, [value for _, value in self.scope]


# =============================================================================
# Position arithmetic
# =============================================================================


def slot_index(ids: list[str], before_id: str | None, after_id: str | None) -> int:
    """Index at which a new item goes, given its intended neighbours.

    ``before_id`` is the item that should precede the new one and
    ``after_id`` the item that should follow it. When both are given but no
    longer adjacent, the new item goes directly after ``before_id``.

    Raises:
        ValidationError: If an anchor is not part of the collection
    """
    if before_id is not None:
        if before_id not in ids:
            raise ValidationError("Anchor is not in the collection", field_name="before_id")
        if after_id is not None and after_id not in ids:
            raise ValidationError("Anchor is not in the collection", field_name="after_id")
        return ids.index(before_id) + 1
    if after_id is not None:
        if after_id not in ids:
            raise ValidationError("Anchor is not in the collection", field_name="after_id")
        return ids.index(after_id)
    return len(ids)


def position_between(positions: list[int], index: int, stride: int, origin: int) -> int | None:
    """Pick a position for slot ``index`` of an ordered position list.

    Returns None when the neighbours are adjacent and a rebalance is needed.

    Example:
        >>> position_between([1000, 2000], 1, 1000, 1000)
        1500
        >>> position_between([1000, 2000], 2, 1000, 1000)
        3000
        >>> position_between([1000, 1001], 1, 1000, 1000) is None
        True
    """
    lo = positions[index - 1] if index > 0 else origin - stride
    hi = positions[index] if index < len(positions) else None
    if hi is None:
        return lo + stride
    if hi - lo > 1:
        return (lo + hi) // 2
    return None


def spaced_positions(count: int, stride: int, origin: int) -> list[int]:
    """Evenly spaced positions for a collection of ``count`` items."""
    return [origin + k * stride for k in range(count)]


# =============================================================================
# Engine
# =============================================================================


class OrderingEngine:
    """Assigns and repairs positions inside ordered collections.

    The synchronous methods take an open connection and expect to run inside
    a transaction owned by the caller; run() provides that transaction and
    the bounded retry.

    Example:
        >>> engine = OrderingEngine(db)
        >>> coll = OrderedCollection.tasks(status_id)
        >>> def insert(conn):
        ...     pos = engine.insert_at(conn, coll, before_id=a, after_id=b)
        ...     conn.execute("INSERT INTO tasks (...) VALUES (...)", (..., pos))
        >>> await engine.run(insert, description="create task")
    """

    def __init__(self, db: Database, config: OrderingConfig | None = None) -> None:
        self.db = db
        self.config = config or OrderingConfig()

    # -------------------------------------------------------------------------
    # Transaction + retry
    # -------------------------------------------------------------------------

    async def run(
        self,
        operation: Callable[[sqlite3.Connection], T],
        description: str = "ordering write",
    ) -> T:
        """Run an ordering write in its own transaction, retrying contention.

        Each attempt re-reads the neighbour set, so a retry observes the
        positions written by whoever won the race.

        Raises:
            ConflictError: If every attempt collided
        """
        attempts = self.config.max_retries
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                with self.db.transaction() as conn:
                    return operation(conn)
            except (sqlite3.IntegrityError, sqlite3.OperationalError) as e:
                if not is_contention(e):
                    raise
                last_error = e
                logger.warning(
                    "Ordering write contended",
                    extra={
                        "operation": description,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error": str(e),
                    },
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.retry_delay_ms / 1000.0)

        raise ConflictError(
            f"Could not complete {description} after {attempts} attempts",
            details={"operation": description, "error": str(last_error)},
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def members(
        self,
        conn: sqlite3.Connection,
        collection: OrderedCollection,
        exclude_id: str | None = None,
    ) -> list[tuple[str, int]]:
        """(id, position) pairs of a collection in order."""
        clause, params = collection.where()
        sql = f"SELECT id, position FROM {collection.table} WHERE {clause}"
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY position"
        return [(row["id"], row["position"]) for row in conn.execute(sql, params)]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert_at(
        self,
        conn: sqlite3.Connection,
        collection: OrderedCollection,
        before_id: str | None = None,
        after_id: str | None = None,
        exclude_id: str | None = None,
    ) -> int:
        """Find the position for a new item between two anchors.

        The caller writes the row with the returned position in the same
        transaction. The collection may be re-spaced as a side effect.

        Args:
            conn: Connection with an open transaction
            collection: Target collection
            before_id: Item that should precede the new one
            after_id: Item that should follow the new one
            exclude_id: Item to leave out of the neighbour set (a moving item)

        Returns:
            Free position for the new item
        """
        current = self.members(conn, collection, exclude_id=exclude_id)
        ids = [item_id for item_id, _ in current]
        index = slot_index(ids, before_id, after_id)

        position = position_between(
            [pos for _, pos in current], index, collection.stride, collection.origin
        )
        if position is not None:
            return position

        return self._respace(conn, collection, ids, reserve_at=index)

    def move(
        self,
        conn: sqlite3.Connection,
        item_id: str,
        source: OrderedCollection,
        destination: OrderedCollection,
        before_id: str | None = None,
        after_id: str | None = None,
    ) -> int:
        """Move an item into a (possibly different) collection.

        The item is parked outside the position range first so it never
        blocks its own destination slot.

        Returns:
            The item's new position
        """
        if source.table != destination.table:
            raise ValueError("Cannot move items between tables")

        clause, params = source.where()
        cursor = conn.execute(
            f"UPDATE {source.table} SET position = ? WHERE id = ? AND {clause}",
            [PARKED_POSITION, item_id, *params],
        )
        if cursor.rowcount != 1:
            raise ValidationError("Item is not in the source collection", field_name="id")

        position = self.insert_at(conn, destination, before_id, after_id, exclude_id=item_id)

        assignments = ", ".join(f"{column} = ?" for column, _ in destination.scope)
        conn.execute(
            f"UPDATE {destination.table} SET {assignments}, position = ? WHERE id = ?",
            [*(value for _, value in destination.scope), position, item_id],
        )

        logger.debug(
            "Moved ordered item",
            extra={
                "table": destination.table,
                "item_id": item_id,
                "position": position,
            },
        )
        return position

    def rebalance(
        self,
        conn: sqlite3.Connection,
        collection: OrderedCollection,
    ) -> list[tuple[str, int]]:
        """Re-space a collection to origin + k * stride, keeping its order."""
        ids = [item_id for item_id, _ in self.members(conn, collection)]
        self._respace(conn, collection, ids)
        return self.members(conn, collection)

    def reorder(
        self,
        conn: sqlite3.Connection,
        collection: OrderedCollection,
        ordered_ids: list[str],
    ) -> None:
        """Apply an explicit order to a whole collection.

        Raises:
            ValidationError: If ordered_ids is not a permutation of the collection
        """
        current = {item_id for item_id, _ in self.members(conn, collection)}
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != current:
            raise ValidationError(
                "Order must list every item of the collection exactly once",
                field_name="ids",
            )
        self._respace(conn, collection, ordered_ids)

    async def respace(self, collection: OrderedCollection) -> list[tuple[str, int]]:
        """Re-space a collection in its own transaction."""
        return await self.run(
            lambda conn: self.rebalance(conn, collection),
            description=f"rebalance {collection.table}",
        )

    def _respace(
        self,
        conn: sqlite3.Connection,
        collection: OrderedCollection,
        ordered_ids: list[str],
        reserve_at: int | None = None,
    ) -> int:
        """Two-phase rewrite of every position in a collection.

        Phase one moves every row to a distinct negative position so phase
        two can assign final positions without tripping the unique index.

        Returns:
            The reserved position when reserve_at is given, else the next
            free position after the last item
        """
        slots = len(ordered_ids) + (1 if reserve_at is not None else 0)
        final = spaced_positions(slots, collection.stride, collection.origin)
        reserved = final.pop(reserve_at) if reserve_at is not None else None

        for temp, item_id in enumerate(ordered_ids, start=1):
            conn.execute(
                f"UPDATE {collection.table} SET position = ? WHERE id = ?",
                (-temp, item_id),
            )
        for position, item_id in zip(final, ordered_ids):
            conn.execute(
                f"UPDATE {collection.table} SET position = ? WHERE id = ?",
                (position, item_id),
            )

        logger.info(
            "Rebalanced collection",
            extra={
                "table": collection.table,
                "scope": dict(collection.scope),
                "count": len(ordered_ids),
                "reserved_slot": reserve_at,
            },
        )

        if reserved is not None:
            return reserved
        return collection.origin + len(ordered_ids) * collection.stride


def is_contention(error: Exception) -> bool:
    """Whether a sqlite error is a retryable ordering race."""
    message = str(error).lower()
    if isinstance(error, sqlite3.IntegrityError):
        return "unique" in message and ".position" in message
    if isinstance(error, sqlite3.OperationalError):
        return "locked" in message or "busy" in message
    return False
