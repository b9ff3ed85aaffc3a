"""
Materialized path algebra for the document tree.

A path is a dot-separated sequence of labels mirroring the ancestor chain,
e.g. ``engineering.runbooks.deploys``. Labels are restricted to
``[a-z0-9_]`` so '.' never appears inside one.

Everything here is pure string manipulation; storage lives in engine.py.
"""

from __future__ import annotations

import re
import unicodedata

from ..errors import ValidationError

SEPARATOR = "."

# Upper bound of the half-open range holding every descendant of a path.
# '/' sorts immediately after '.' in ASCII.
_RANGE_END = "/"

_LABEL_RUNS = re.compile(r"[^a-z0-9]+")
_LABEL = re.compile(r"[a-z0-9_]+")


def slugify_label(title: str) -> str:
    """Derive a path label from a title.

    Example:
        >>> slugify_label("Getting Started!")
        'getting_started'
        >>> slugify_label("Café  Notes")
        'cafe_notes'

    Raises:
        ValidationError: If nothing usable remains
    """
    folded = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    label = _LABEL_RUNS.sub("_", folded.lower()).strip("_")
    if not label:
        raise ValidationError(
            f"Title '{title}' does not produce a usable path label", field_name="title"
        )
    return label


def validate_label(label: str) -> str:
    """Check that a caller-supplied label is already in canonical form."""
    if not _LABEL.fullmatch(label):
        raise ValidationError(
            f"Invalid label '{label}': use lowercase letters, digits and '_'",
            field_name="slug",
        )
    return label


def child_path(parent_path: str, label: str) -> str:
    """Path of a child with the given label. An empty parent means root."""
    return f"{parent_path}{SEPARATOR}{label}" if parent_path else label


def parent_of(path: str) -> str:
    """Parent path, '' for roots."""
    head, sep, _ = path.rpartition(SEPARATOR)
    return head if sep else ""


def label_of(path: str) -> str:
    return path.rpartition(SEPARATOR)[2]


def is_descendant_or_self(candidate: str, ancestor: str) -> bool:
    """Whether ``candidate`` lies in the subtree rooted at ``ancestor``.

    This is the cycle test for moves and needs only the two full paths.
    """
    return candidate == ancestor or candidate.startswith(ancestor + SEPARATOR)


def descendant_range(path: str) -> tuple[str, str]:
    """Half-open [low, high) range of every strict descendant of ``path``."""
    return path + SEPARATOR, path + _RANGE_END

