"""Snapshot: one point-in-time metrics record.

A snapshot is produced only by :class:`sitepulse.core.sampler.SnapshotSampler`
and is frozen once built. Numeric gauges are constrained at the model level
(non-negative, percentages in [0, 100]) so an out-of-range counter fails loudly
in tests instead of leaking to clients; the counter layer clamps readings
before they get here.

External fragments
------------------
`external` maps a producer name (``"spotify"``, ``"github"``, ``"codex"``) to
that producer's JSON fragment, or ``None`` while the producer has nothing yet.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from .base import CamelModel, NonNegativeFloat, NonNegativeInt, Percent


class Snapshot(CamelModel):
    """Immutable metrics record taken at one instant."""

    timestamp: NonNegativeInt = Field(description="Capture time, epoch milliseconds")
    app_version: str = Field(default="0.0.0")
    uptime_seconds: NonNegativeInt = 0
    cpu_count: NonNegativeInt = 0
    cpu_usage_percent: Percent = 0.0
    load_average: tuple[NonNegativeFloat, NonNegativeFloat, NonNegativeFloat] = (0.0, 0.0, 0.0)
    memory_rss_mb: NonNegativeFloat = 0.0
    memory_vms_mb: NonNegativeFloat = 0.0
    system_memory_total_mb: NonNegativeFloat = 0.0
    system_memory_free_mb: NonNegativeFloat = 0.0
    system_memory_used_percent: Percent = 0.0
    # Connection gauges: streams + sockets, then each kind, then relay subscribers.
    pending_connections: NonNegativeInt = 0
    pending_requests: NonNegativeInt = 0
    pending_websockets: NonNegativeInt = Field(default=0, alias="pendingWebSockets")
    subscriber_count: NonNegativeInt = 0
    external: dict[str, dict[str, Any] | None] = Field(default_factory=dict)

    @classmethod
    def initial(
        cls,
        *,
        timestamp: int,
        app_version: str,
        external: dict[str, dict[str, Any] | None] | None = None,
    ) -> Snapshot:
        """All-zero snapshot served before the first sampler tick."""
        return cls(timestamp=timestamp, app_version=app_version, external=external or {})


__all__ = ["Snapshot"]
