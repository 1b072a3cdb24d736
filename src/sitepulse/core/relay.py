"""
In-memory publish/subscribe relay for cursor position events.

Model
-----
- A **topic** is a named channel (the gateway uses a single ``"cursors"``).
- :meth:`PositionRelay.publish` stamps each event with a per-topic sequence
  number (``seq``), appends it to the topic's resume buffer and hands it to
  every live subscription on the topic except the sender's own (no-echo).
- :meth:`PositionRelay.subscribe` returns a :class:`Subscription`, an async
  iterator of :class:`RelayedEvent`. Passing ``last_event_id`` replays the
  buffered events newer than that marker before any live event.

Concurrency
-----------
Everything runs on one event loop. ``subscribe``, ``publish`` and
``unsubscribe`` never await, so a subscription is either fully registered
(replay queued *and* member of the subscriber set) or not registered at all
when ``publish`` walks the set. ``publish`` iterates over a copy of the set,
so a subscription removed mid-fan-out does not disturb the others.

Ordering: each subscription owns a FIFO queue and events are enqueued in
publish order, which preserves every sender's own order end to end.

Backpressure
------------
A subscription holding ``queue_maxsize`` undelivered live events drops new ones
(counted in ``Subscription.dropped`` and ``PositionRelay.dropped``) instead of
blocking the publisher. Events replayed on resume do not count against that
cap, so a long replay never costs the live events right behind it. A
subscription that is closed, cancelled or raises on delivery is torn down as
if it had unsubscribed.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from sitepulse.core.contracts.position import PositionEvent
from sitepulse.core.settings import get_logger

logger = get_logger(__name__)

CURSOR_TOPIC = "cursors"


@dataclass(frozen=True, slots=True)
class RelayedEvent:
    """A published event as seen by subscribers.

    Attributes
    ----------
    seq : int
        Per-topic, strictly increasing sequence number; also the resume marker.
    topic : str
        Topic the event was published to.
    sender_id : str | None
        Identity of the publishing connection (used for the no-echo rule).
    event : PositionEvent
        The validated payload.
    published_at : float
        Relay clock reading at publish time (monotonic seconds by default).
    """

    seq: int
    topic: str
    sender_id: str | None
    event: PositionEvent
    published_at: float


class Subscription:
    """Live binding between one consumer and one topic.

    Iterate with ``async for relayed in subscription``. Iteration ends after
    :meth:`close` (once already-queued events are drained) or as soon as the
    cancellation ``signal`` passed at subscribe time is set.
    """

    def __init__(
        self,
        relay: PositionRelay,
        topic: str,
        *,
        subscriber_id: str | None,
        signal: asyncio.Event | None,
        maxsize: int,
    ) -> None:
        self.topic = topic
        self.subscriber_id = subscriber_id
        # Seq of the last event consumed, or the point the queue starts after.
        self.last_seq = 0
        self.dropped = 0
        self._relay = relay
        self._signal = signal
        self._maxsize = maxsize
        self._backlog = 0
        # Unbounded so the close sentinel always fits; the cap is enforced in _offer.
        self._queue: asyncio.Queue[RelayedEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._signal is not None and self._signal.is_set()

    def pending(self) -> int:
        """Number of events queued but not yet consumed."""
        return self._queue.qsize() - (1 if self._closed and self._queue.qsize() else 0)

    def close(self) -> None:
        """Unsubscribe from the relay (idempotent)."""
        self._relay.unsubscribe(self)

    # --------------------------- relay-side hooks ----------------------------

    def _enqueue(self, relayed: RelayedEvent) -> None:
        """Queue a replayed event, outside the live cap."""
        self._backlog += 1
        self._queue.put_nowait(relayed)

    def _offer(self, relayed: RelayedEvent) -> bool:
        """Queue a live event. Returns False when the subscription is dead."""
        if self._closed or self.cancelled:
            return False
        if self._queue.qsize() - self._backlog >= self._maxsize:
            self.dropped += 1
            self._relay.dropped += 1
            return True
        self._queue.put_nowait(relayed)
        return True

    def _shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    # ------------------------------ iteration --------------------------------

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> RelayedEvent:
        if self.cancelled:
            self.close()
            raise StopAsyncIteration
        if self._closed and self._queue.empty():
            raise StopAsyncIteration

        item = await self._next_item()
        if item is None:
            raise StopAsyncIteration
        if self._backlog:
            self._backlog -= 1
        self.last_seq = item.seq
        return item

    async def _next_item(self) -> RelayedEvent | None:
        if self._signal is None:
            return await self._queue.get()

        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._signal.wait())
        try:
            done, _ = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (getter, stopper):
                if not fut.done():
                    fut.cancel()

        # An item already taken off the queue is handed out; the signal is
        # honoured on the next call.
        if getter in done:
            return getter.result()
        self.close()
        return None

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class PositionRelay:
    """Topic-keyed fan-out of :class:`PositionEvent` with a resume buffer.

    Parameters
    ----------
    retention_seconds:
        How long a published event stays replayable.
    max_buffered:
        Hard cap on buffered events per topic, regardless of age.
    queue_maxsize:
        Per-subscription cap on undelivered events.
    resume_enabled:
        When False nothing is buffered and ``last_event_id`` is ignored.
    echo:
        When True the sender also receives its own events.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        retention_seconds: float = 120.0,
        max_buffered: int = 4096,
        queue_maxsize: int = 256,
        resume_enabled: bool = True,
        echo: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self.retention_seconds = retention_seconds
        self.max_buffered = max_buffered
        self.queue_maxsize = queue_maxsize
        self.resume_enabled = resume_enabled
        self.echo = echo
        self.dropped = 0
        self._clock = clock
        self._subscribers: dict[str, set[Subscription]] = {}
        self._buffers: dict[str, deque[RelayedEvent]] = {}
        self._seq: dict[str, int] = {}

    # -------------------------------- subscribe ------------------------------

    def subscribe(
        self,
        topic: str,
        *,
        subscriber_id: str | None = None,
        last_event_id: int | None = None,
        signal: asyncio.Event | None = None,
    ) -> Subscription:
        """Register a subscription on ``topic``.

        With ``last_event_id`` the still-retained events newer than that
        marker are queued first (oldest first), followed by live events.
        The new subscription's ``last_seq`` is the seq its queue starts
        after: the marker when something was replayed, otherwise the topic's
        current seq. It is a valid resume marker even if nothing is consumed.
        """
        subscription = Subscription(
            self,
            topic,
            subscriber_id=subscriber_id,
            signal=signal,
            maxsize=self.queue_maxsize,
        )
        marker = self.last_seq(topic)
        if last_event_id is not None and self.resume_enabled:
            for relayed in self.buffered(topic):
                if relayed.seq > last_event_id and self._deliverable(subscription, relayed):
                    subscription._enqueue(relayed)
            if subscription._backlog:
                marker = last_event_id
        subscription.last_seq = marker
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug(
            "Subscribed %s to %r (resume from %s)", subscriber_id, topic, last_event_id
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivery to ``subscription``. Safe to call repeatedly."""
        members = self._subscribers.get(subscription.topic)
        if members is not None:
            members.discard(subscription)
            if not members:
                del self._subscribers[subscription.topic]
        subscription._shutdown()

    # --------------------------------- publish -------------------------------

    def publish(
        self, topic: str, event: PositionEvent, *, sender_id: str | None = None
    ) -> RelayedEvent:
        """Fan ``event`` out to the topic's subscribers and buffer it for resume."""
        now = self._clock()
        seq = self._seq.get(topic, 0) + 1
        self._seq[topic] = seq
        relayed = RelayedEvent(
            seq=seq, topic=topic, sender_id=sender_id, event=event, published_at=now
        )

        if self.resume_enabled:
            buffer = self._buffers.get(topic)
            if buffer is None:
                buffer = self._buffers[topic] = deque(maxlen=self.max_buffered)
            buffer.append(relayed)
            self._prune(topic, now)

        for subscription in list(self._subscribers.get(topic, ())):
            if not self._deliverable(subscription, relayed):
                continue
            try:
                alive = subscription._offer(relayed)
            except Exception:
                logger.warning("Delivery to %s failed", subscription.subscriber_id, exc_info=True)
                alive = False
            if not alive:
                self.unsubscribe(subscription)
        return relayed

    # --------------------------------- queries -------------------------------

    def buffered(self, topic: str) -> tuple[RelayedEvent, ...]:
        """Events of ``topic`` still inside the retention window, oldest first."""
        self._prune(topic, self._clock())
        return tuple(self._buffers.get(topic, ()))

    def last_seq(self, topic: str) -> int:
        return self._seq.get(topic, 0)

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscribers.get(topic, ()))
        return sum(len(members) for members in self._subscribers.values())

    def close(self) -> None:
        """Tear down every subscription (application shutdown)."""
        for members in list(self._subscribers.values()):
            for subscription in list(members):
                self.unsubscribe(subscription)

    # --------------------------------- helpers -------------------------------

    def _deliverable(self, subscription: Subscription, relayed: RelayedEvent) -> bool:
        if self.echo or relayed.sender_id is None:
            return True
        return subscription.subscriber_id != relayed.sender_id

    def _prune(self, topic: str, now: float) -> None:
        buffer = self._buffers.get(topic)
        if not buffer:
            return
        cutoff = now - self.retention_seconds
        while buffer and buffer[0].published_at < cutoff:
            buffer.popleft()


__all__ = ["CURSOR_TOPIC", "PositionRelay", "RelayedEvent", "Subscription"]
