"""
Ranking helpers shared by every merge stage.

Scores are clamped to [0, 1] and ordering is score-descending with the
identifier as tie-breaker, so pagination over equal scores is reproducible.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from typing import TypeVar

T = TypeVar("T")

__all__ = ["clamp_score", "rank"]


def clamp_score(value: float) -> float:
    """Clamp a score into [0, 1]; NaN collapses to 0."""
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))


def rank(
    items: Iterable[T],
    score: Callable[[T], float],
    identity: Callable[[T], str],
    limit: int | None = None,
) -> list[T]:
    """Sort by score descending then identity ascending, optionally truncated."""
    ordered = sorted(items, key=lambda item: (-score(item), identity(item)))
    if limit is not None and limit >= 0:
        return ordered[:limit]
    return ordered
