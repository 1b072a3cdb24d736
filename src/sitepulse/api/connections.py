"""
Connection lifecycle bookkeeping for the streaming gateway.

Every long-lived connection (an SSE snapshot stream or a position WebSocket)
walks the same state machine::

    CONNECTING -> OPEN -> CLOSED
    CONNECTING ---------> CLOSED

CLOSED is terminal. :meth:`ConnectionTracker.track` is a context manager, so
the transition to CLOSED (and the removal from the live set that feeds the
``pendingConnections`` gauge) happens in a ``finally`` block however the
handler exits.

This module also keeps :class:`ResumeCursors`: the last relay sequence number
delivered to each cursor identity, so a browser that reconnects inside the
retention window resumes without gaps even when it does not send a marker.
"""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from sitepulse.core.settings import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.CONNECTING: frozenset({ConnectionState.OPEN, ConnectionState.CLOSED}),
    ConnectionState.OPEN: frozenset({ConnectionState.CLOSED}),
    ConnectionState.CLOSED: frozenset(),
}


@dataclass
class Connection:
    """One tracked connection."""

    kind: str
    identity: str | None = None
    state: ConnectionState = ConnectionState.CONNECTING
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def advance(self, target: ConnectionState) -> None:
        """Move to ``target``; closing an already-closed connection is a no-op."""
        if target is self.state is ConnectionState.CLOSED:
            return
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"illegal transition {self.state.value} -> {target.value}")
        self.state = target


class ConnectionTracker:
    """Registry of live connections, grouped by kind (``"stream"``, ``"live"``)."""

    def __init__(self) -> None:
        self._live: dict[str, Connection] = {}

    @contextmanager
    def track(self, kind: str, identity: str | None = None) -> Iterator[Connection]:
        connection = Connection(kind=kind, identity=identity)
        self._live[connection.connection_id] = connection
        logger.debug("%s connection %s connecting", kind, connection.connection_id)
        try:
            yield connection
        finally:
            connection.advance(ConnectionState.CLOSED)
            self._live.pop(connection.connection_id, None)
            logger.debug("%s connection %s closed", kind, connection.connection_id)

    def count(self, kind: str | None = None) -> int:
        if kind is None:
            return len(self._live)
        return sum(1 for c in self._live.values() if c.kind == kind)


class ResumeCursors:
    """Last delivered sequence number per identity, forgotten after ``retention_seconds``."""

    def __init__(
        self,
        retention_seconds: float,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention_seconds = retention_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[int, float]] = OrderedDict()

    def remember(self, identity: str, seq: int) -> None:
        self._entries[identity] = (seq, self._clock())
        self._entries.move_to_end(identity)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def recall(self, identity: str) -> int | None:
        entry = self._entries.get(identity)
        if entry is None:
            return None
        seq, seen_at = entry
        if self._clock() - seen_at > self.retention_seconds:
            del self._entries[identity]
            return None
        return seq

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["Connection", "ConnectionState", "ConnectionTracker", "ResumeCursors"]
