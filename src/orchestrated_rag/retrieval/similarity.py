"""Vector similarity helpers."""

from __future__ import annotations

import math
from collections.abc import Sequence

from orchestrated_rag.errors import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)``.

    Raises :class:`DimensionMismatch` when the vectors differ in length.
    Returns ``0.0`` when either vector has zero norm.
    """
    if len(a) != len(b):
        raise DimensionMismatch(expected=len(b), actual=len(a))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    # Clamp float rounding on (near-)identical vectors.
    return min(1.0, dot / (math.sqrt(norm_a) * math.sqrt(norm_b)))
