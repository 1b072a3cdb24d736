"""Wire contracts shared by the sampler, the relay and the HTTP gateway."""

from __future__ import annotations

from .position import PositionEvent, parse_position
from .producers import (
    CodexUsageDay,
    CodexUsageSnapshot,
    CodexUsageSyncPayload,
    GitHubCommitStats,
    SpotifyNowPlaying,
)
from .snapshot import Snapshot

__all__ = [
    "CodexUsageDay",
    "CodexUsageSnapshot",
    "CodexUsageSyncPayload",
    "GitHubCommitStats",
    "PositionEvent",
    "Snapshot",
    "SpotifyNowPlaying",
    "parse_position",
]
