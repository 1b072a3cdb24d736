"""
Tests for the in-memory Position Relay.

Scenarios
---------
1. **Fan-out**: every subscriber on a topic gets exactly one copy.
2. **No-echo**: the sender's own subscription is skipped.
3. **Topic isolation**: other topics see nothing.
4. **Resume**: a marker replays the retained gap in order, without
   duplicates; expired events are gone.
5. **Teardown**: unsubscribe is idempotent, the cancellation signal ends
   iteration, and a full queue drops instead of blocking.
"""

from __future__ import annotations

import asyncio

import pytest

from sitepulse.core.contracts.position import PositionEvent
from sitepulse.core.relay import PositionRelay, RelayedEvent, Subscription
from tests.fakes import FakeClock


def _event(sender: str, x: float = 0.0, y: float = 0.0) -> PositionEvent:
    return PositionEvent(id=sender, x=float(x), y=float(y))


def _drain(subscription: Subscription) -> list[RelayedEvent]:
    """Collect everything already queued without awaiting."""
    out: list[RelayedEvent] = []
    while True:
        try:
            item = subscription._queue.get_nowait()
        except asyncio.QueueEmpty:
            return out
        if item is not None:
            out.append(item)


async def _next(subscription: Subscription) -> RelayedEvent:
    return await asyncio.wait_for(subscription.__anext__(), timeout=1.0)


@pytest.mark.asyncio  # type: ignore[misc]
async def test_fan_out_delivers_one_copy_each() -> None:
    relay = PositionRelay()
    subs = [relay.subscribe("cursors", subscriber_id=f"s{i}") for i in range(4)]

    relay.publish("cursors", _event("X", 1, 2), sender_id="X")

    for sub in subs:
        received = _drain(sub)
        assert [r.event for r in received] == [_event("X", 1, 2)]
    assert relay.subscriber_count("cursors") == 4


@pytest.mark.asyncio  # type: ignore[misc]
async def test_no_echo_scenario() -> None:
    """S1 belongs to sender X, S2 to someone else; only S2 sees X's event."""
    relay = PositionRelay()
    s1 = relay.subscribe("pos", subscriber_id="X")
    s2 = relay.subscribe("pos", subscriber_id="Y")

    relay.publish("pos", PositionEvent(id="X", x=5.0, y=9.0), sender_id="X")

    assert [r.event.to_wire() for r in _drain(s2)] == [{"id": "X", "x": 5.0, "y": 9.0}]
    assert _drain(s1) == []


@pytest.mark.asyncio  # type: ignore[misc]
async def test_echo_mode_includes_sender() -> None:
    relay = PositionRelay(echo=True)
    s1 = relay.subscribe("pos", subscriber_id="X")

    relay.publish("pos", _event("X"), sender_id="X")
    assert len(_drain(s1)) == 1


@pytest.mark.asyncio  # type: ignore[misc]
async def test_topics_are_isolated() -> None:
    relay = PositionRelay()
    cursors = relay.subscribe("cursors", subscriber_id="a")
    other = relay.subscribe("other", subscriber_id="b")

    relay.publish("cursors", _event("X"), sender_id="X")

    assert len(_drain(cursors)) == 1
    assert _drain(other) == []
    assert relay.last_seq("other") == 0


@pytest.mark.asyncio  # type: ignore[misc]
async def test_sequence_numbers_increase_per_topic() -> None:
    relay = PositionRelay()
    seqs = [relay.publish("cursors", _event("X"), sender_id="X").seq for _ in range(3)]
    other = relay.publish("other", _event("X"), sender_id="X").seq

    assert seqs == [1, 2, 3]
    assert other == 1


@pytest.mark.asyncio  # type: ignore[misc]
async def test_per_sender_order_is_preserved() -> None:
    relay = PositionRelay()
    sub = relay.subscribe("cursors", subscriber_id="watcher")
    for i in range(5):
        relay.publish("cursors", _event("A", x=i), sender_id="A")
        relay.publish("cursors", _event("B", x=i), sender_id="B")

    received = _drain(sub)
    assert [r.event.x for r in received if r.sender_id == "A"] == [0, 1, 2, 3, 4]
    assert [r.event.x for r in received if r.sender_id == "B"] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_iteration_yields_published_events() -> None:
    relay = PositionRelay()
    sub = relay.subscribe("cursors", subscriber_id="watcher")

    waiter = asyncio.ensure_future(_next(sub))
    await asyncio.sleep(0)
    relay.publish("cursors", _event("X", 3, 4), sender_id="X")

    relayed = await waiter
    assert relayed.event == _event("X", 3, 4)
    assert sub.last_seq == relayed.seq


# --------------------------------------------------------------------------- #
# Resume
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio  # type: ignore[misc]
async def test_resume_within_window_replays_gap_in_order(clock: FakeClock) -> None:
    relay = PositionRelay(retention_seconds=120, clock=clock)
    first = relay.subscribe("cursors", subscriber_id="viewer")
    relay.publish("cursors", _event("X", 1), sender_id="X")
    seen = _drain(first)
    marker = seen[-1].seq
    first.close()

    clock.advance(10)
    for x in (2, 3, 4):
        relay.publish("cursors", _event("X", x), sender_id="X")

    resumed = relay.subscribe("cursors", subscriber_id="viewer", last_event_id=marker)
    relay.publish("cursors", _event("X", 5), sender_id="X")

    assert [r.event.x for r in _drain(resumed)] == [2, 3, 4, 5]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_resume_skips_own_events() -> None:
    relay = PositionRelay()
    relay.publish("cursors", _event("me", 1), sender_id="me")
    relay.publish("cursors", _event("X", 2), sender_id="X")

    resumed = relay.subscribe("cursors", subscriber_id="me", last_event_id=0)
    assert [r.sender_id for r in _drain(resumed)] == ["X"]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_resume_after_window_gets_no_expired_events(clock: FakeClock) -> None:
    relay = PositionRelay(retention_seconds=120, clock=clock)
    for x in (1, 2):
        relay.publish("cursors", _event("X", x), sender_id="X")

    clock.advance(121)
    relay.publish("cursors", _event("X", 3), sender_id="X")
    resumed = relay.subscribe("cursors", subscriber_id="viewer", last_event_id=0)

    assert [r.event.x for r in _drain(resumed)] == [3]
    assert [r.seq for r in relay.buffered("cursors")] == [3]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_buffer_is_capped_by_count() -> None:
    relay = PositionRelay(max_buffered=3)
    for x in range(5):
        relay.publish("cursors", _event("X", x), sender_id="X")

    assert [r.seq for r in relay.buffered("cursors")] == [3, 4, 5]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_resume_disabled_ignores_marker() -> None:
    relay = PositionRelay(resume_enabled=False)
    relay.publish("cursors", _event("X"), sender_id="X")

    resumed = relay.subscribe("cursors", subscriber_id="viewer", last_event_id=0)
    assert _drain(resumed) == []
    assert relay.buffered("cursors") == ()


# --------------------------------------------------------------------------- #
# Teardown & backpressure
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio  # type: ignore[misc]
async def test_unsubscribe_is_idempotent_and_stops_delivery() -> None:
    relay = PositionRelay()
    sub = relay.subscribe("cursors", subscriber_id="viewer")
    relay.publish("cursors", _event("X", 1), sender_id="X")

    relay.unsubscribe(sub)
    relay.unsubscribe(sub)
    relay.publish("cursors", _event("X", 2), sender_id="X")

    assert sub.closed
    assert relay.subscriber_count() == 0
    # Already-queued events stay readable, then iteration ends.
    assert (await _next(sub)).event.x == 1
    with pytest.raises(StopAsyncIteration):
        await _next(sub)


@pytest.mark.asyncio  # type: ignore[misc]
async def test_signal_cancels_pending_iteration() -> None:
    relay = PositionRelay()
    stop = asyncio.Event()
    sub = relay.subscribe("cursors", subscriber_id="viewer", signal=stop)

    async def consume() -> list[RelayedEvent]:
        return [item async for item in sub]

    task = asyncio.ensure_future(consume())
    await asyncio.sleep(0)
    stop.set()

    assert await asyncio.wait_for(task, timeout=1.0) == []
    assert sub.closed
    assert relay.subscriber_count() == 0


@pytest.mark.asyncio  # type: ignore[misc]
async def test_cancelled_subscription_is_torn_down_on_publish() -> None:
    relay = PositionRelay()
    stop = asyncio.Event()
    dead = relay.subscribe("cursors", subscriber_id="gone", signal=stop)
    alive = relay.subscribe("cursors", subscriber_id="here")
    stop.set()

    relay.publish("cursors", _event("X"), sender_id="X")

    assert dead.closed
    assert relay.subscriber_count("cursors") == 1
    assert len(_drain(alive)) == 1


@pytest.mark.asyncio  # type: ignore[misc]
async def test_full_queue_drops_instead_of_blocking() -> None:
    relay = PositionRelay(queue_maxsize=2)
    slow = relay.subscribe("cursors", subscriber_id="slow")
    for x in range(5):
        relay.publish("cursors", _event("X", x), sender_id="X")

    assert slow.pending() == 2
    assert slow.dropped == 3
    assert relay.dropped == 3
    assert not slow.closed
    assert [r.event.x for r in _drain(slow)] == [0, 1]


@pytest.mark.asyncio  # type: ignore[misc]
async def test_long_replay_does_not_crowd_out_live_events() -> None:
    """Replayed events sit outside the cap: live traffic still gets `queue_maxsize` slots."""
    relay = PositionRelay(queue_maxsize=2)
    for x in range(3):
        relay.publish("cursors", _event("A", x), sender_id="A")

    late = relay.subscribe("cursors", subscriber_id="B", last_event_id=0)
    for x in (99, 100, 101):
        relay.publish("cursors", _event("A", x), sender_id="A")

    assert late.dropped == 1
    received = [(await _next(late)).event.x for _ in range(5)]
    assert received == [0, 1, 2, 99, 100]

    # Backlog consumed: the live cap applies on its own again.
    for x in (7, 8, 9):
        relay.publish("cursors", _event("A", x), sender_id="A")
    assert late.pending() == 2
    assert late.dropped == 2


def test_new_subscription_starts_at_current_seq() -> None:
    relay = PositionRelay()
    for x in range(3):
        relay.publish("cursors", _event("A", x), sender_id="A")

    assert relay.subscribe("cursors", subscriber_id="fresh").last_seq == 3
    assert relay.subscribe("cursors", subscriber_id="A", last_event_id=1).last_seq == 3, (
        "only own events were missed, so nothing is owed"
    )
    assert relay.subscribe("cursors", subscriber_id="B", last_event_id=1).last_seq == 1


@pytest.mark.asyncio  # type: ignore[misc]
async def test_close_tears_down_everything() -> None:
    relay = PositionRelay()
    subs = [relay.subscribe(topic, subscriber_id="s") for topic in ("a", "b", "b")]

    relay.close()

    assert relay.subscriber_count() == 0
    assert all(sub.closed for sub in subs)


@pytest.mark.asyncio  # type: ignore[misc]
async def test_subscription_context_manager_unsubscribes() -> None:
    relay = PositionRelay()
    async with relay.subscribe("cursors", subscriber_id="s") as sub:
        assert relay.subscriber_count() == 1
    assert sub.closed
    assert relay.subscriber_count() == 0


def test_retention_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PositionRelay(retention_seconds=0)
