"""Fragments supplied by the external snapshot producers.

Each producer publishes exactly one of these models through its
``get_latest()`` accessor. Every model has an "empty" constructor so a
producer that is not configured (missing credentials, no sync file yet) still
returns a well-formed value instead of raising.

Codex usage
-----------
`CodexUsageSyncPayload` is what the local usage-sync job POSTs (and what is
stored on disk). `CodexUsageSnapshot` is the trimmed, staleness-annotated view
that ends up inside a :class:`~sitepulse.core.contracts.snapshot.Snapshot`.
"""

from __future__ import annotations

from datetime import date, timedelta

from pydantic import Field

from .base import CamelModel, NonNegativeInt

MAX_DAILY_POINTS = 30


class SpotifyNowPlaying(CamelModel):
    """Current Spotify playback state."""

    is_configured: bool
    is_playing: bool = False
    track_id: str | None = None
    track_name: str | None = None
    artist_names: list[str] = Field(default_factory=list)
    album_name: str | None = None
    track_url: str | None = None
    progress_ms: NonNegativeInt = 0
    duration_ms: NonNegativeInt = 0
    fetched_at: NonNegativeInt = 0

    @classmethod
    def empty(cls, *, is_configured: bool, fetched_at: int = 0) -> SpotifyNowPlaying:
        return cls(is_configured=is_configured, fetched_at=fetched_at)


class GitHubCommitStats(CamelModel):
    """Commit counts for one GitHub user: year to date plus the last seven days."""

    is_configured: bool
    username: str
    year: int
    commits_year_to_date: NonNegativeInt = 0
    commits_last7_days: list[NonNegativeInt] = Field(default_factory=lambda: [0] * 7)
    commits_last7_day_labels: list[str] = Field(default_factory=lambda: ["--/--"] * 7)
    fetched_at: NonNegativeInt = 0

    @classmethod
    def empty(cls, username: str, *, today: date, fetched_at: int = 0) -> GitHubCommitStats:
        return cls(
            is_configured=bool(username),
            username=username,
            year=today.year,
            fetched_at=fetched_at,
        )


class CodexUsageDay(CamelModel):
    """Token usage for a single day."""

    input_tokens: NonNegativeInt = 0
    cached_input_tokens: NonNegativeInt = 0
    output_tokens: NonNegativeInt = 0
    reasoning_output_tokens: NonNegativeInt = 0
    total_tokens: NonNegativeInt = 0


class CodexUsageTotals(CamelModel):
    total_tokens: NonNegativeInt = 0


class CodexUsageDailySummary(CamelModel):
    total_tokens: NonNegativeInt = 0


class CodexUsageSyncPayload(CamelModel):
    """Body accepted by the usage-sync ingest endpoint."""

    generated_at: NonNegativeInt
    daily: list[CodexUsageDay]
    totals: CodexUsageTotals | None = None


class CodexUsageSnapshot(CamelModel):
    """Usage view embedded in snapshots."""

    generated_at: NonNegativeInt | None = None
    is_stale: bool = True
    latest_day: CodexUsageDay | None = None
    totals: CodexUsageTotals | None = None
    daily: list[CodexUsageDailySummary] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> CodexUsageSnapshot:
        return cls()

    @classmethod
    def from_payload(
        cls, payload: CodexUsageSyncPayload, *, now_ms: int, stale_after_ms: int
    ) -> CodexUsageSnapshot:
        """Trim to the newest daily points and derive totals / staleness."""
        daily = payload.daily[-MAX_DAILY_POINTS:]
        totals = payload.totals
        if totals is None and daily:
            totals = CodexUsageTotals(total_tokens=sum(d.total_tokens for d in daily))
        return cls(
            generated_at=payload.generated_at,
            is_stale=now_ms - payload.generated_at > stale_after_ms,
            latest_day=daily[-1] if daily else None,
            totals=totals,
            daily=[CodexUsageDailySummary(total_tokens=d.total_tokens) for d in daily],
        )


def last_seven_days(today: date) -> list[date]:
    """Return the seven calendar days ending at `today`, oldest first."""
    return [today - timedelta(days=offset) for offset in range(6, -1, -1)]


__all__ = [
    "MAX_DAILY_POINTS",
    "CodexUsageDailySummary",
    "CodexUsageDay",
    "CodexUsageSnapshot",
    "CodexUsageSyncPayload",
    "CodexUsageTotals",
    "GitHubCommitStats",
    "SpotifyNowPlaying",
    "last_seven_days",
]
