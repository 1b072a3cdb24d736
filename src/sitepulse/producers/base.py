"""
Producer contract, poll policy and the generic polling scheduler.

External producers (GitHub, Spotify, the usage-sync store) each keep a cached
fragment and refresh it in the background. The sampler only ever calls
``get_latest()``, which must return immediately and must not raise for "no
data yet" or "not configured"; those are ordinary values.

Back-off is a policy object rather than ad hoc timer juggling inside each
poller: ``refresh()`` returns the interval it wants (or ``None`` for the
default) and raises :class:`RateLimited` when the remote side asks it to slow
down. :class:`PollingScheduler` turns that into sleeps, so the back-off rules
are testable without a network.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, runtime_checkable

from pydantic import BaseModel

from sitepulse.core.settings import get_logger

logger = get_logger(__name__)


class RateLimited(Exception):
    """Raised by a refresh when the remote API rate-limits us."""

    def __init__(self, retry_after: float | None = None) -> None:
        super().__init__(f"rate limited (retry after {retry_after}s)")
        self.retry_after = retry_after


@runtime_checkable
class SnapshotProducer(Protocol):
    """What the sampler needs from a producer."""

    name: str
    model: type[BaseModel]

    def get_latest(self) -> Any: ...


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Polling cadence for one producer.

    Attributes
    ----------
    interval : float
        Default seconds between refreshes.
    rate_limit_fallback : float
        Back-off used when a rate-limit response carries no usable hint.
    error_interval : float | None
        Seconds to wait after an unexpected failure (defaults to ``interval``).
    """

    interval: float
    rate_limit_fallback: float
    error_interval: float | None = None

    def backoff_on_rate_limit(self, retry_after: float | None) -> float:
        """Seconds to wait after a rate-limit response."""
        if retry_after is not None and math.isfinite(retry_after) and retry_after > 0:
            return float(retry_after)
        return self.rate_limit_fallback

    def after_error(self) -> float:
        return self.error_interval if self.error_interval is not None else self.interval

    def next_interval(self, requested: float | None) -> float:
        """Interval after a successful refresh that may have asked for its own delay."""
        if requested is None or not math.isfinite(requested) or requested <= 0:
            return self.interval
        return requested


class PollingScheduler:
    """Runs an async ``refresh`` forever, sleeping as the policy dictates."""

    def __init__(
        self,
        name: str,
        refresh: Callable[[], Awaitable[float | None]],
        policy: PollPolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.policy = policy
        self._refresh = refresh
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin polling on the running loop. Idempotent."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"poller-{self.name}"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self) -> float:
        """Refresh once and return the delay before the next refresh."""
        try:
            requested = await self._refresh()
        except RateLimited as exc:
            delay = self.policy.backoff_on_rate_limit(exc.retry_after)
            logger.warning("[%s] Rate limited. Backing off for %.0fs.", self.name, delay)
            return delay
        except Exception:
            logger.exception("[%s] Refresh failed", self.name)
            return self.policy.after_error()
        return self.policy.next_interval(requested)

    async def _run(self) -> None:
        while True:
            delay = await self.run_once()
            await self._sleep(delay)


class PollingProducer(ABC):
    """Base class for producers that refresh a cached fragment on a schedule."""

    name: ClassVar[str]
    model: ClassVar[type[BaseModel]]
    policy: ClassVar[PollPolicy]

    def __init__(self) -> None:
        self.scheduler = PollingScheduler(self.name, self.refresh, self.policy)

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    @abstractmethod
    def get_latest(self) -> BaseModel | None:
        """Return the cached fragment without blocking."""

    @abstractmethod
    async def refresh(self) -> float | None:
        """Fetch fresh data; return a custom next interval or ``None``."""


__all__ = [
    "PollPolicy",
    "PollingProducer",
    "PollingScheduler",
    "RateLimited",
    "SnapshotProducer",
]
