"""External snapshot producers.

Each producer owns one fragment of a snapshot (``spotify``, ``github``,
``codex``) and refreshes it in the background; the sampler only reads the
cached value.
"""

from __future__ import annotations

from sitepulse.core.settings import Settings

from .base import PollingProducer, PollingScheduler, PollPolicy, RateLimited, SnapshotProducer
from .codex_usage import CodexUsageStore
from .github import GitHubCommitProducer
from .spotify import SpotifyNowPlayingProducer


def build_default_producers(settings: Settings) -> list[PollingProducer]:
    """Instantiate the standard producer set from configuration."""
    return [
        SpotifyNowPlayingProducer(
            settings.spotify_client_id,
            settings.spotify_client_secret,
            settings.spotify_refresh_token,
        ),
        GitHubCommitProducer(settings.github_username, settings.github_token),
        CodexUsageStore(
            settings.codex_usage_file,
            stale_after_minutes=settings.codex_stale_after_minutes,
        ),
    ]


__all__ = [
    "CodexUsageStore",
    "GitHubCommitProducer",
    "PollPolicy",
    "PollingProducer",
    "PollingScheduler",
    "RateLimited",
    "SnapshotProducer",
    "SpotifyNowPlayingProducer",
    "build_default_producers",
]
