"""
Snapshot Sampler: one metrics snapshot per tick, plus a bounded history.

Responsibilities
----------------
- **Sample**: merge host counters, runtime connection counts and every
  external producer's latest fragment into one frozen :class:`Snapshot`.
- **Record**: push the snapshot into the :class:`HistoryRing` and make it the
  new ``latest``.
- **Tick**: re-sample on a fixed cadence from an asyncio task; wake any
  stream waiting for the next tick.

Ownership
---------
The sampler is the only writer of ``latest`` and of the ring. Everything else
(HTTP handlers, the SSE stream, the CLI) reads through :meth:`get_latest`,
:meth:`get_history` and :meth:`wait_for_tick`. An instance is created by the
app factory and stored on ``app.state``; tests build their own with fake
counters and producers.

Fault isolation
---------------
A producer that raises or hands back something that does not validate against
its model is replaced by its last good fragment (or ``None``) for that tick;
the fault is logged and the tick completes.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol

from pydantic import BaseModel

from sitepulse import __version__
from sitepulse.core.contracts.snapshot import Snapshot
from sitepulse.core.counters import CounterReading, HostCounters
from sitepulse.core.ring import HistoryRing
from sitepulse.core.settings import get_logger

if TYPE_CHECKING:
    from sitepulse.producers.base import SnapshotProducer

logger = get_logger(__name__)

DEFAULT_HISTORY_SIZE = 84


class RuntimeCounts(NamedTuple):
    """Connection gauges supplied by the gateway at sample time."""

    pending_connections: int = 0
    pending_requests: int = 0
    pending_websockets: int = 0
    subscriber_count: int = 0


class CounterSource(Protocol):
    def read(self) -> CounterReading: ...


class SnapshotSampler:
    """Single-writer owner of the latest snapshot and the history ring."""

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_HISTORY_SIZE,
        producers: Sequence[SnapshotProducer] = (),
        counters: CounterSource | None = None,
        runtime_counts: Callable[[], RuntimeCounts] | None = None,
        clock: Callable[[], float] = time.time,
        app_version: str = __version__,
    ) -> None:
        self._ring: HistoryRing[Snapshot] = HistoryRing(capacity)
        self._producers = tuple(producers)
        self._counters = counters
        self._runtime_counts = runtime_counts or RuntimeCounts
        self._clock = clock
        self._app_version = app_version
        self._last_good: dict[str, dict[str, Any] | None] = {}

        self._latest = Snapshot.initial(
            timestamp=self._now_ms(),
            app_version=app_version,
            external={p.name: None for p in self._producers},
        )
        self._tick = 0
        self._tick_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._interval: float | None = None

    # ------------------------------- Accessors -------------------------------

    @property
    def tick(self) -> int:
        """Number of snapshots recorded so far."""
        return self._tick

    @property
    def interval(self) -> float | None:
        """Tick interval in seconds, or ``None`` before :meth:`start`."""
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def capacity(self) -> int:
        return self._ring.capacity

    def get_latest(self) -> Snapshot:
        """Most recent snapshot (the all-zero initial one before the first tick)."""
        return self._latest

    def get_history(self) -> tuple[Snapshot, ...]:
        """Retained snapshots, oldest first."""
        return self._ring.snapshot()

    # ------------------------------- Sampling --------------------------------

    def sample(self) -> Snapshot:
        """Capture one snapshot, record it and return it."""
        reading = self._read_counters()
        counts = self._read_runtime_counts()
        external = {producer.name: self._collect(producer) for producer in self._producers}

        snapshot = Snapshot(
            timestamp=self._now_ms(),
            app_version=self._app_version,
            uptime_seconds=reading.uptime_seconds,
            cpu_count=reading.cpu_count,
            cpu_usage_percent=reading.cpu_usage_percent,
            load_average=reading.load_average,
            memory_rss_mb=reading.memory_rss_mb,
            memory_vms_mb=reading.memory_vms_mb,
            system_memory_total_mb=reading.system_memory_total_mb,
            system_memory_free_mb=reading.system_memory_free_mb,
            system_memory_used_percent=reading.system_memory_used_percent,
            pending_connections=max(0, counts.pending_connections),
            pending_requests=max(0, counts.pending_requests),
            pending_websockets=max(0, counts.pending_websockets),
            subscriber_count=max(0, counts.subscriber_count),
            external=external,
        )
        self._record(snapshot)
        return snapshot

    def _record(self, snapshot: Snapshot) -> None:
        self._latest = snapshot
        self._ring.append(snapshot)
        self._tick += 1
        event, self._tick_event = self._tick_event, None
        if event is not None:
            event.set()

    def _read_counters(self) -> CounterReading:
        if self._counters is None:
            self._counters = HostCounters()
        try:
            return self._counters.read()
        except Exception:
            logger.warning("Host counter read failed; reporting zeros", exc_info=True)
            return CounterReading()

    def _read_runtime_counts(self) -> RuntimeCounts:
        try:
            return self._runtime_counts()
        except Exception:
            logger.warning("Runtime connection counts unavailable", exc_info=True)
            return RuntimeCounts()

    def _collect(self, producer: SnapshotProducer) -> dict[str, Any] | None:
        name = producer.name
        try:
            value = producer.get_latest()
            if value is None:
                return None
            fragment: BaseModel = (
                value if isinstance(value, producer.model) else producer.model.model_validate(value)
            )
        except Exception:
            logger.warning(
                "Producer %r failed; keeping its previous value", name, exc_info=True
            )
            return self._last_good.get(name)

        wire = fragment.model_dump(mode="json", by_alias=True)
        self._last_good[name] = wire
        return wire

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # -------------------------------- Ticking --------------------------------

    def start(self, tick_interval: float) -> None:
        """Sample now, then every ``tick_interval`` seconds. Idempotent.

        Must be called from a running event loop; a missing loop raises
        ``RuntimeError`` which aborts application startup.
        """
        if self.is_running:
            return
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")

        loop = asyncio.get_running_loop()
        self._interval = tick_interval
        for producer in self._producers:
            starter = getattr(producer, "start", None)
            if callable(starter):
                starter()
        self.sample()
        self._task = loop.create_task(self._run(tick_interval), name="snapshot-sampler")
        logger.info("Snapshot sampler started (every %.2fs)", tick_interval)

    async def stop(self) -> None:
        """Cancel the tick task and stop the producers' pollers."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for producer in self._producers:
            stopper = getattr(producer, "stop", None)
            if callable(stopper):
                await stopper()

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sample()
            except Exception:
                logger.exception("Snapshot tick failed")

    async def wait_for_tick(self, after: int) -> tuple[int, Snapshot]:
        """Suspend until a tick newer than ``after`` exists; return ``(tick, latest)``.

        When several ticks happened meanwhile only the newest is returned, so a
        slow reader never sees the same snapshot twice or out of order.
        """
        while self._tick <= after:
            if self._tick_event is None:
                self._tick_event = asyncio.Event()
            await self._tick_event.wait()
        return self._tick, self._latest


__all__ = ["CounterSource", "RuntimeCounts", "SnapshotSampler"]
