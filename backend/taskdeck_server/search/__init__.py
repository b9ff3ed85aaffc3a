"""
Search module for Taskdeck.

Hybrid search over tasks, documents and comments:
- FTS5 (porter stemming) for lexical relevance
- Trigram similarity for typo tolerance

Invariants:
    - Results never cross workspaces
    - A lexical hit always outranks a trigram-only hit
    - Ordering is deterministic (score, then entity id)
"""

from .engine import SearchEngine, highlight
from .index import SearchIndex
from .trigrams import similarity, trigrams, words

__all__ = ["SearchEngine", "SearchIndex", "highlight", "similarity", "trigrams", "words"]
