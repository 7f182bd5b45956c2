"""
Search-space narrowing policy.

A rich cell (novel results at or above the volume threshold) is worth a
narrower filter step at the same region; a sparse or blocked cell moves on
to the next region. Keywords are the outer dimension.
"""

from __future__ import annotations

from dataclasses import dataclass

from jobharvest.core.config.search_space import SearchSpace

from .state import Cursor


@dataclass(frozen=True)
class CellOutcome:
    """What the traversal policy needs to know about a finished cell."""

    novel: int
    blocked: bool = False

    def is_rich(self, threshold: int) -> bool:
        return not self.blocked and self.novel >= threshold


def advance(
    cursor: Cursor,
    space: SearchSpace,
    outcome: CellOutcome,
    volume_threshold: int,
) -> Cursor | None:
    """Return the next cell to visit, or None when the space is exhausted."""
    n_keywords, n_regions, n_steps = space.shape

    if outcome.is_rich(volume_threshold) and cursor.step_index + 1 < n_steps:
        return Cursor(cursor.keyword_index, cursor.region_index, cursor.step_index + 1)

    if cursor.region_index + 1 < n_regions:
        return Cursor(cursor.keyword_index, cursor.region_index + 1, 0)

    if cursor.keyword_index + 1 < n_keywords:
        return Cursor(cursor.keyword_index + 1, 0, 0)

    return None

