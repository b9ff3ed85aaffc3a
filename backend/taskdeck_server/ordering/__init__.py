"""
Ordering module for Taskdeck.

Keeps tasks within a status, statuses within a workspace and documents
within a parent in a strict total order of unique integer positions.

Invariants:
    - Positions are unique within a collection
    - Statuses are dense (0..n-1)
    - Contended writes are retried, then reported as a conflict
"""

from .engine import (
    PARKED_POSITION,
    OrderedCollection,
    OrderingEngine,
    is_contention,
    position_between,
    slot_index,
    spaced_positions,
)

__all__ = [
    "PARKED_POSITION",
    "OrderedCollection",
    "OrderingEngine",
    "is_contention",
    "position_between",
    "slot_index",
    "spaced_positions",
]
