"""Local process / host resource counters backed by psutil.

Each gauge is read independently: if one read fails (permission error inside a
container, a platform without the counter, ...) that gauge reports ``0`` and
the others are unaffected. Readings are clamped into their natural range so a
snapshot can always be built from them.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import psutil

from sitepulse.core.settings import get_logger

logger = get_logger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class CounterReading:
    """One set of host gauges."""

    uptime_seconds: int = 0
    cpu_count: int = 0
    cpu_usage_percent: float = 0.0
    load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
    memory_rss_mb: float = 0.0
    memory_vms_mb: float = 0.0
    system_memory_total_mb: float = 0.0
    system_memory_free_mb: float = 0.0
    system_memory_used_percent: float = 0.0


def _clamp_percent(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 2)


def _mb(value: float) -> float:
    return round(max(0.0, value) / MB, 2)


def _load(value: float) -> float:
    return round(value, 2) if math.isfinite(value) and value > 0 else 0.0


class HostCounters:
    """Reads CPU, memory and uptime gauges for the current process.

    CPU usage is the process CPU time consumed since the previous read,
    normalized by the number of logical CPUs (so a fully busy single-core
    process on a 4-core host reads 25%). The first read after construction
    primes psutil and reports 0.

    Virtual size (``memory_vms_mb``) stands in for a managed-heap total: it is
    the address space the interpreter has reserved, RSS being the part in use.
    """

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()
        self._cpu_count = max(1, psutil.cpu_count() or 1)
        self._started_at = self._safe("create_time", self._process.create_time, time.time())
        # Prime the CPU counter so the first real read covers one interval.
        self._safe("cpu_percent", self._process.cpu_percent, 0.0)

    def read(self) -> CounterReading:
        cpu = self._safe("cpu_percent", self._process.cpu_percent, 0.0) / self._cpu_count
        rss = self._safe("memory_info.rss", lambda: float(self._process.memory_info().rss), 0.0)
        vms = self._safe("memory_info.vms", lambda: float(self._process.memory_info().vms), 0.0)
        total = self._safe(
            "virtual_memory.total", lambda: float(psutil.virtual_memory().total), 0.0
        )
        free = self._safe(
            "virtual_memory.available", lambda: float(psutil.virtual_memory().available), 0.0
        )
        system = self._safe("virtual_memory", lambda: float(psutil.virtual_memory().percent), 0.0)
        uptime = max(0.0, time.time() - self._started_at)
        return CounterReading(
            uptime_seconds=int(uptime),
            cpu_count=self._cpu_count,
            cpu_usage_percent=_clamp_percent(cpu),
            load_average=self._load_average(),
            memory_rss_mb=_mb(rss),
            memory_vms_mb=_mb(vms),
            system_memory_total_mb=_mb(total),
            system_memory_free_mb=_mb(free),
            system_memory_used_percent=_clamp_percent(system),
        )

    def _load_average(self) -> tuple[float, float, float]:
        """1, 5 and 15 minute load averages; zeros where the platform has none."""
        try:
            one, five, fifteen = psutil.getloadavg()
        except Exception:
            logger.debug("Counter getloadavg unavailable; reporting 0", exc_info=True)
            return (0.0, 0.0, 0.0)
        return (_load(one), _load(five), _load(fifteen))

    @staticmethod
    def _safe(name: str, read: Callable[[], float], fallback: float) -> float:
        try:
            value = float(read())
        except Exception:
            logger.debug("Counter %s unavailable; reporting %s", name, fallback, exc_info=True)
            return fallback
        if not math.isfinite(value):
            return fallback
        return value


__all__ = ["CounterReading", "HostCounters"]
