"""
Taskdeck Server - workspace data-access and integrity layer.

This package implements the core of a self-hosted task and knowledge-base
service built on:
- Workspaces with role-constrained members
- Kanban statuses and tasks kept in strict order
- A document tree stored as materialized paths
- Hybrid search fusing full-text relevance with trigram similarity

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │   Caller    │────▶│   Services   │────▶│  Authorization   │
    │ (API layer) │     │ (operations) │     │  (pure lookup)   │
    └─────────────┘     └──────┬───────┘     └──────────────────┘
                               │
            ┌──────────────────┼──────────────────┐
            ▼                  ▼                  ▼
       ┌──────────┐      ┌───────────┐      ┌──────────┐
       │ Ordering │      │ Hierarchy │      │  Search  │
       │  Engine  │      │  Engine   │      │  Index   │
       └────┬─────┘      └─────┬─────┘      └────┬─────┘
            └──────────────────┼─────────────────┘
                               ▼
                        ┌─────────────┐
                        │   SQLite    │
                        │ (WAL mode)  │
                        └─────────────┘

Invariants:
    - Every mutation is authorized before storage is touched
    - Every mutation runs in a single transaction
    - Positions are unique within their collection
    - A document's path is its parent's path plus one label
    - Rows of one workspace are never visible through another

How to change safely:
    - Add new actions to the authorization table with an explicit minimum role
    - Keep search index writes in the same transaction as the entity write
    - Run the integrity checker after schema changes
"""

from ._version import __version__

__all__ = ["__version__"]
