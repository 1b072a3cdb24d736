"""File-backed store for token usage pushed by the local usage-sync job.

The sync job POSTs a :class:`CodexUsageSyncPayload` to the gateway, which
calls :meth:`CodexUsageStore.persist`; the payload is written to disk
atomically (temp file + ``os.replace``) so a crash never leaves a truncated
file behind. The store also re-reads the file every 30 seconds (only when its
mtime changed), so a file dropped in place by other means is picked up.

Staleness is computed at read time: a snapshot is stale when no payload exists
or when the payload is older than ``stale_after_minutes``.
"""

from __future__ import annotations

import asyncio
import os
import secrets
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from sitepulse.core.contracts.producers import CodexUsageSnapshot, CodexUsageSyncPayload
from sitepulse.core.settings import get_logger
from sitepulse.producers.base import PollingProducer, PollPolicy

logger = get_logger(__name__)


class CodexUsageStore(PollingProducer):
    """Caches the latest usage payload and exposes it as :class:`CodexUsageSnapshot`."""

    name = "codex"
    model = CodexUsageSnapshot
    policy = PollPolicy(interval=30.0, rate_limit_fallback=30.0)

    def __init__(
        self,
        path: Path,
        *,
        stale_after_minutes: float = 180.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self.path = Path(path)
        self._stale_after_ms = int(stale_after_minutes * 60_000)
        self._clock = clock
        self._payload: CodexUsageSyncPayload | None = None
        self._mtime: float | None = None
        self._write_lock = asyncio.Lock()

    def get_latest(self) -> CodexUsageSnapshot:
        if self._payload is None:
            return CodexUsageSnapshot.empty()
        return CodexUsageSnapshot.from_payload(
            self._payload,
            now_ms=int(self._clock() * 1000),
            stale_after_ms=self._stale_after_ms,
        )

    async def refresh(self, force: bool = False) -> float | None:
        """Reload the usage file if it changed (or unconditionally with ``force``)."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            self._payload = None
            self._mtime = None
            return None

        if not force and mtime == self._mtime:
            return None

        raw = await asyncio.to_thread(self.path.read_text, "utf-8")
        try:
            payload = CodexUsageSyncPayload.model_validate_json(raw)
        except ValidationError:
            logger.error("[codex] Ignoring invalid usage file payload at %s", self.path)
            return None

        self._payload = payload
        self._mtime = mtime
        return None

    async def persist(self, payload: CodexUsageSyncPayload) -> CodexUsageSnapshot:
        """Write ``payload`` to disk atomically and make it the current value."""
        async with self._write_lock:
            await asyncio.to_thread(self._write_atomic, payload)
            self._payload = payload
            self._mtime = None
            await self.refresh(force=True)
        return self.get_latest()

    def _write_atomic(self, payload: CodexUsageSyncPayload) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(
            f"{self.path.name}.{secrets.token_hex(4)}.{int(self._clock() * 1000)}.tmp"
        )
        try:
            tmp.write_text(payload.model_dump_json(by_alias=True, indent=2) + "\n", "utf-8")
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise


__all__ = ["CodexUsageStore"]
