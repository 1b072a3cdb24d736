"""Centralized application configuration using Pydantic Settings (v2).

This module exposes a single, cached `settings` instance that reads from:
- Real environment variables (highest precedence)
- `.env` files at the repository root: .env, .env.local, .env.dev/.env.test/.env.prod

Every knob carries a safe default so the sampler, relay and gateway run with
zero configuration. Values are read once at startup; tests rebuild them with
`load_settings.cache_clear()`.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["dev", "test", "prod"]
LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseSettings):
    """Typed application configuration loaded from env and `.env` files.

    Attributes
    ----------
    environment : EnvName
        Runtime environment flag; maps from `SITEPULSE_ENV`.
    log_level : LogLevelName
        Global log level string; maps from `LOG_LEVEL`.
    sample_interval_seconds : float
        Sampler tick; also the cadence of the snapshot stream.
    history_size : int
        Capacity of the snapshot history ring.
    resume_retention_seconds : float
        How long published cursor events stay replayable after a reconnect.
    """

    environment: EnvName = Field(default="dev", alias="SITEPULSE_ENV")
    log_level: LogLevelName = Field(default="INFO", alias="LOG_LEVEL")

    # Snapshot sampler / stream
    sample_interval_seconds: float = Field(
        default=1.5, gt=0, alias="STATS_SAMPLE_INTERVAL_SECONDS"
    )
    history_size: int = Field(default=84, ge=1, alias="STATS_HISTORY_SIZE")
    heartbeat_seconds: float = Field(default=15.0, gt=0, alias="STATS_HEARTBEAT_SECONDS")

    # Position relay
    resume_enabled: bool = Field(default=True, alias="CURSOR_RESUME_ENABLED")
    resume_retention_seconds: float = Field(
        default=120.0, gt=0, alias="CURSOR_RESUME_RETENTION_SECONDS"
    )
    resume_max_events: int = Field(default=4096, ge=1, alias="CURSOR_RESUME_MAX_EVENTS")
    queue_maxsize: int = Field(default=256, ge=1, alias="CURSOR_QUEUE_MAXSIZE")
    cursor_cookie_name: str = Field(default="cursor_id", alias="CURSOR_COOKIE_NAME")

    # External producers
    producers_enabled: bool = Field(default=True, alias="PRODUCERS_ENABLED")
    github_username: str | None = Field(default=None, alias="GITHUB_USERNAME")
    github_token: str | None = Field(default=None, alias="GITHUB_TOKEN")
    spotify_client_id: str | None = Field(default=None, alias="SPOTIFY_CLIENT_ID")
    spotify_client_secret: str | None = Field(default=None, alias="SPOTIFY_CLIENT_SECRET")
    spotify_refresh_token: str | None = Field(default=None, alias="SPOTIFY_REFRESH_TOKEN")
    codex_usage_file: Path = Field(
        default=Path("runtime") / "codex" / "codex-usage.json", alias="CODEX_USAGE_FILE"
    )
    codex_stale_after_minutes: float = Field(
        default=180.0, gt=0, alias="CODEX_STALE_AFTER_MINUTES"
    )
    codex_sync_token: str | None = Field(default=None, alias="CODEX_SYNC_TOKEN")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local", ".env.dev", ".env.test", ".env.prod"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_dev(self) -> bool:
        """Return True if running in the development environment."""
        return self.environment == "dev"

    @property
    def is_test(self) -> bool:
        """Return True if running in the test environment."""
        return self.environment == "test"

    @property
    def is_prod(self) -> bool:
        """Return True if running in the production environment."""
        return self.environment == "prod"

    def log_level_numeric(self) -> int:
        """Return the numeric logging level corresponding to `self.log_level`."""
        return getattr(logging, self.log_level, logging.INFO)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Create and cache a `Settings` instance.

    We keep this behind an LRU cache so tests can force a rebuild via
    `load_settings.cache_clear()` after mutating `os.environ`.
    """
    os.environ.setdefault("SITEPULSE_ENV", "dev")
    return Settings()


# Export a ready-to-use singleton (import-time read of env / .env files).
settings: Settings = load_settings()


def get_logger(name: str = "sitepulse") -> logging.Logger:
    """Return a process-global logger configured to the current `LOG_LEVEL`."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        logger.addHandler(handler)
    logger.setLevel(load_settings().log_level_numeric())
    logger.propagate = False
    return logger
