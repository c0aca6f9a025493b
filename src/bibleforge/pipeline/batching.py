"""Batch sizing and partitioning for sequential entity expansion.

Batches bound how much consistency context accumulates between pauses;
entries inside a batch are still expanded one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Sequence

Item = TypeVar("Item")


@dataclass(frozen=True)
class BatchSizing:
    """Batch size as an explicit function of roster size.

    Rosters larger than ``large_threshold`` use ``large_size``; rosters
    larger than ``medium_threshold`` use ``medium_size``; anything smaller
    is expanded as a single batch.
    """

    large_threshold: int = 10
    large_size: int = 6
    medium_threshold: int = 5
    medium_size: int = 5

    def __call__(self, roster_size: int) -> int:
        if roster_size > self.large_threshold:
            return max(1, self.large_size)
        if roster_size > self.medium_threshold:
            return max(1, self.medium_size)
        return max(1, roster_size)


def batch_size_for(roster_size: int, sizing: BatchSizing | None = None) -> int:
    """Return the batch size for a roster of ``roster_size`` entries."""
    return (sizing or BatchSizing())(roster_size)


def partition(items: Sequence[Item], size: int) -> list[list[Item]]:
    """Split ``items`` into consecutive chunks of at most ``size``.

    Args:
        items: Sequence to split, order preserved.
        size: Maximum chunk length, must be positive.

    Returns:
        List of chunks; empty when ``items`` is empty.

    Raises:
        ValueError: If ``size`` is not positive.
    """
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]
