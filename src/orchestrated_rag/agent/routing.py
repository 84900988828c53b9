"""Simple-vs-compound routing decision.

A query goes through decomposition only when it is long, looks like a
comparison or explanation request (or is simply wordy), and the index is
big enough for several independent searches to pay off.
"""

from __future__ import annotations

import re

from orchestrated_rag.agent.state import QueryRoute

MIN_COMPOUND_LENGTH = 50
MIN_COMPOUND_WORDS = 8
MIN_INDEX_CHUNKS = 10

SIGNAL_WORDS: tuple[str, ...] = (
    "compare",
    "difference",
    "vs",
    "versus",
    "which",
    "how",
    "what are",
    "explain",
)

_SIGNAL_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in SIGNAL_WORDS) + r")",
    re.IGNORECASE,
)


def has_signal_word(query: str) -> bool:
    return _SIGNAL_PATTERN.search(query) is not None


def is_compound_query(query: str) -> bool:
    """Whether *query* warrants decomposition, ignoring index size."""
    if len(query) <= MIN_COMPOUND_LENGTH:
        return False
    return has_signal_word(query) or len(query.split()) > MIN_COMPOUND_WORDS


def route_query(query: str, chunk_count: int) -> QueryRoute:
    """Pick the path for *query* given the number of indexed chunks."""
    if is_compound_query(query) and chunk_count > MIN_INDEX_CHUNKS:
        return QueryRoute.COMPOUND
    return QueryRoute.SIMPLE
