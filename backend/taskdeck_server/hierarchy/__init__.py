"""
Hierarchy module for Taskdeck.

Documents form a forest stored as materialized dot-separated paths, which
makes subtree queries a single range scan.
"""

from .engine import HierarchyEngine
from .paths import (
    SEPARATOR,
    child_path,
    descendant_range,
    is_descendant_or_self,
    label_of,
    parent_of,
    slugify_label,
    validate_label,
)

__all__ = [
    "SEPARATOR",
    "HierarchyEngine",
    "child_path",
    "descendant_range",
    "is_descendant_or_self",
    "label_of",
    "parent_of",
    "slugify_label",
    "validate_label",
]
