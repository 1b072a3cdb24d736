"""
Server-Sent Events framing and the per-connection snapshot stream.

Wire format
-----------
Each tick is one ``stats`` event whose ``data`` line is the snapshot JSON::

    id: 42
    event: stats
    data: {"timestamp": 1700000000000, "cpuUsagePercent": 3.1, ...}

When no tick arrives within the heartbeat interval a comment line
(``: keepalive``) is sent so proxies keep the connection open.

Lifecycle
---------
:func:`snapshot_events` emits the current snapshot immediately, then waits on
the sampler for each new tick. It holds no timer of its own: the only
suspension is :meth:`SnapshotSampler.wait_for_tick`, which is cancelled with
the response task when the client goes away.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sitepulse.core.sampler import SnapshotSampler

STATS_EVENT = "stats"
RETRY_MS = 3000


@dataclass
class SSEMessage:
    """Server-Sent Event message."""

    event: str | None
    data: Any
    id: str | None = None
    retry: int | None = None

    def serialize(self) -> str:
        """Serialize to SSE format."""
        lines: list[str] = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.event:
            lines.append(f"event: {self.event}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")

        # Data can be multiline - each line needs 'data:' prefix
        for line in json.dumps(self.data, separators=(",", ":")).split("\n"):
            lines.append(f"data: {line}")

        lines.append("")
        return "\n".join(lines) + "\n"


def heartbeat() -> str:
    return ": keepalive\n\n"


async def snapshot_events(
    sampler: SnapshotSampler,
    *,
    heartbeat_seconds: float,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """Yield serialized ``stats`` events: the latest snapshot, then one per tick."""
    tick = sampler.tick
    yield SSEMessage(
        event=STATS_EVENT,
        data=sampler.get_latest().to_wire(),
        id=str(tick),
        retry=RETRY_MS,
    ).serialize()

    while True:
        try:
            tick, snapshot = await asyncio.wait_for(
                sampler.wait_for_tick(tick), timeout=heartbeat_seconds
            )
        except TimeoutError:
            if is_disconnected is not None and await is_disconnected():
                return
            yield heartbeat()
            continue

        if is_disconnected is not None and await is_disconnected():
            return
        yield SSEMessage(event=STATS_EVENT, data=snapshot.to_wire(), id=str(tick)).serialize()


__all__ = ["SSEMessage", "heartbeat", "snapshot_events"]
