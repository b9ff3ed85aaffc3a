"""
Trigram extraction and similarity.

Trigrams follow the pg_trgm convention: text is lowercased, split into
alphanumeric words, and each word is padded with two blanks in front and one
behind before taking every three-character window. "fix" yields
``{"  f", " fi", "fix", "ix "}``.

Similarity is the fraction of the query's trigrams present in the field, so a
short query matched inside a long document still scores high.
"""

from __future__ import annotations

import re

_WORDS = re.compile(r"[^\W_]+")


def words(text: str) -> list[str]:
    """Lowercased alphanumeric words of a text."""
    return _WORDS.findall(text.lower())


def trigrams(text: str) -> set[str]:
    """Set of padded word trigrams of a text.

    Example:
        >>> sorted(trigrams("Fix"))
        ['  f', ' fi', 'fix', 'ix ']
    """
    grams: set[str] = set()
    for word in words(text):
        padded = f"  {word} "
        grams.update(padded[i : i + 3] for i in range(len(padded) - 2))
    return grams


def similarity(query: str, text: str) -> float:
    """Fraction of the query's trigrams found in text, in [0, 1].

    Example:
        >>> similarity("urgnt fix", "Urgent Fix Needed")
        0.8
    """
    query_grams = trigrams(query)
    if not query_grams:
        return 0.0
    return len(query_grams & trigrams(text)) / len(query_grams)
