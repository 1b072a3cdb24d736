"""Tests for the bounded History Ring."""

from __future__ import annotations

import pytest

from sitepulse.core.ring import HistoryRing


def test_ring_keeps_the_most_recent_items() -> None:
    """Capacity 3, appends A..D: the oldest entry is evicted."""
    ring: HistoryRing[str] = HistoryRing(3)
    for item in ("A", "B", "C", "D"):
        ring.append(item)

    assert ring.snapshot() == ("B", "C", "D")
    assert ring.latest() == "D"
    assert len(ring) == 3


@pytest.mark.parametrize("appends", [0, 1, 5, 12])  # type: ignore[misc]
def test_ring_length_is_min_of_appends_and_capacity(appends: int) -> None:
    ring: HistoryRing[int] = HistoryRing(5)
    for i in range(appends):
        ring.append(i)

    assert len(ring) == min(appends, 5)
    assert list(ring) == list(range(max(0, appends - 5), appends))


def test_snapshot_is_detached_from_later_appends() -> None:
    """Readers get an immutable copy; later appends do not change it."""
    ring: HistoryRing[int] = HistoryRing(2)
    ring.append(1)
    view = ring.snapshot()
    ring.append(2)
    ring.append(3)

    assert view == (1,)
    assert ring.snapshot() == (2, 3)


def test_empty_ring_has_no_latest() -> None:
    assert HistoryRing[int](4).latest() is None


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        HistoryRing(0)
