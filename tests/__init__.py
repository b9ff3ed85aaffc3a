"""
Taskdeck Test Suite.

This package contains:
- unit/: Unit tests (pure functions, request models, configuration)
- integration/: Integration tests (services over a temporary SQLite file)
"""
