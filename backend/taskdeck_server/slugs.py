"""URL slugs for workspaces and statuses."""

from __future__ import annotations

import re

_NON_WORD = re.compile(r"[\W_]+")


def slugify(text: str, separator: str = "-") -> str:
    """Lowercase text with every run of non-alphanumerics collapsed.

    Example:
        >>> slugify("In Progress")
        'in-progress'
        >>> slugify("  Q3 / Planning ")
        'q3-planning'
    """
    return _NON_WORD.sub(separator, text.lower()).strip(separator)


def workspace_slug(name: str, workspace_id: str) -> str:
    """Globally unique workspace slug: the slugified name plus an id prefix."""
    base = slugify(name) or "workspace"
    return f"{base}-{workspace_id[:8]}"
