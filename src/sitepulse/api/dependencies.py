"""FastAPI dependencies resolving the process-scoped services from ``app.state``.

The app factory owns the sampler, relay and trackers; handlers never import
module-level singletons, so tests can build an app around fakes.
"""

from __future__ import annotations

from starlette.requests import HTTPConnection

from sitepulse.api.connections import ConnectionTracker, ResumeCursors
from sitepulse.core.relay import PositionRelay
from sitepulse.core.sampler import SnapshotSampler
from sitepulse.core.settings import Settings
from sitepulse.producers.codex_usage import CodexUsageStore


def get_settings(conn: HTTPConnection) -> Settings:
    settings: Settings = conn.app.state.settings
    return settings


def get_sampler(conn: HTTPConnection) -> SnapshotSampler:
    sampler: SnapshotSampler = conn.app.state.sampler
    return sampler


def get_relay(conn: HTTPConnection) -> PositionRelay:
    relay: PositionRelay = conn.app.state.relay
    return relay


def get_tracker(conn: HTTPConnection) -> ConnectionTracker:
    tracker: ConnectionTracker = conn.app.state.tracker
    return tracker


def get_resume_cursors(conn: HTTPConnection) -> ResumeCursors:
    cursors: ResumeCursors = conn.app.state.resume_cursors
    return cursors


def get_codex_store(conn: HTTPConnection) -> CodexUsageStore | None:
    store: CodexUsageStore | None = conn.app.state.codex_store
    return store


__all__ = [
    "get_codex_store",
    "get_relay",
    "get_resume_cursors",
    "get_sampler",
    "get_settings",
    "get_tracker",
]
