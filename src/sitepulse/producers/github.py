"""GitHub commit-count producer.

Queries the commit search API for one author: commits since January 1st and
one count per day for the last seven days. Results refresh every 30 minutes.
A 403 with ``x-ratelimit-remaining: 0`` or a 429 raises :class:`RateLimited`
with the delay until ``x-ratelimit-reset`` (falling back to 15 minutes).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import date

import httpx

from sitepulse.core.contracts.producers import GitHubCommitStats, last_seven_days
from sitepulse.core.settings import get_logger
from sitepulse.producers.base import PollingProducer, PollPolicy, RateLimited

logger = get_logger(__name__)

SEARCH_ENDPOINT = "https://api.github.com/search/commits"
USER_AGENT = "sitepulse-telemetry"


def rate_limit_delay(reset_header: str | None, now: float) -> float | None:
    """Seconds until the ``x-ratelimit-reset`` epoch, or ``None`` if unusable."""
    try:
        reset_at = int(reset_header or "")
    except ValueError:
        return None
    now_s = int(now)
    if reset_at > now_s:
        return float(reset_at - now_s + 1)
    return None


class GitHubCommitProducer(PollingProducer):
    """Caches :class:`GitHubCommitStats` for ``username``."""

    name = "github"
    model = GitHubCommitStats
    policy = PollPolicy(interval=30 * 60, rate_limit_fallback=15 * 60, error_interval=15 * 60)

    def __init__(
        self,
        username: str | None,
        token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        today: Callable[[], date] = date.today,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self.username = (username or "").strip()
        self._token = (token or "").strip() or None
        self._client = client
        self._owns_client = client is None
        self._today = today
        self._clock = clock
        self._latest = GitHubCommitStats.empty(self.username, today=today())

    def get_latest(self) -> GitHubCommitStats:
        return self._latest

    def start(self) -> None:
        if not self.username:
            logger.info("GitHub username not configured; commit stats disabled")
            return
        super().start()

    async def stop(self) -> None:
        await super().stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def refresh(self) -> float | None:
        today = self._today()
        if not self.username:
            self._latest = GitHubCommitStats.empty("", today=today, fetched_at=self._now_ms())
            return None

        days = last_seven_days(today)
        ranges = [(date(today.year, 1, 1), today)] + [(day, day) for day in days]
        try:
            counts = await asyncio.gather(*(self._count(start, end) for start, end in ranges))
        except (httpx.HTTPError, ValueError):
            logger.error("[github] Failed to refresh commit stats", exc_info=True)
            self._latest = GitHubCommitStats(
                is_configured=True,
                username=self.username,
                year=today.year,
                fetched_at=self._now_ms(),
            )
            return self.policy.after_error()

        year_to_date, *last_week = counts
        self._latest = GitHubCommitStats(
            is_configured=True,
            username=self.username,
            year=today.year,
            commits_year_to_date=year_to_date,
            commits_last7_days=last_week,
            commits_last7_day_labels=[day.strftime("%m/%d") for day in days],
            fetched_at=self._now_ms(),
        )
        return None

    async def _count(self, start: date, end: date) -> int:
        headers = {
            "accept": "application/vnd.github.cloak-preview+json",
            "user-agent": USER_AGENT,
        }
        if self._token:
            headers["authorization"] = f"Bearer {self._token}"
        params = {
            "q": f"author:{self.username} author-date:{start.isoformat()}..{end.isoformat()}",
            "per_page": "1",
        }

        response = await self._http().get(SEARCH_ENDPOINT, params=params, headers=headers)
        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimited(
                rate_limit_delay(response.headers.get("x-ratelimit-reset"), self._clock())
            )
        response.raise_for_status()

        total = response.json().get("total_count")
        return total if isinstance(total, int) and total >= 0 else 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


__all__ = ["GitHubCommitProducer", "rate_limit_delay"]
