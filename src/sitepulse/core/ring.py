"""
Bounded, single-writer history of recent snapshots.

The ring keeps the most recent ``capacity`` items in arrival order and evicts
the oldest automatically once full. There is exactly one writer (the sampler)
and any number of readers; readers always receive an immutable tuple so they
can iterate without observing a concurrent append.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class HistoryRing(Generic[T]):
    """FIFO ring buffer with a fixed capacity.

    Attributes
    ----------
    capacity : int
        Maximum number of retained items.
    """

    __slots__ = ("capacity", "_items")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)

    def append(self, item: T) -> None:
        """Append ``item``, evicting the oldest entry when at capacity."""
        self._items.append(item)

    def snapshot(self) -> tuple[T, ...]:
        """Return the retained items, oldest first."""
        return tuple(self._items)

    def latest(self) -> T | None:
        return self._items[-1] if self._items else None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())


__all__ = ["HistoryRing"]
