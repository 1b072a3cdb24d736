"""Spotify "now playing" producer.

Uses the refresh-token flow to obtain short-lived access tokens (cached until
one minute before expiry) and polls the currently-playing endpoint: every 2.5s
while music plays, every 15s otherwise. A 429 backs off for ``retry-after``
seconds (30s when the header is missing). Without credentials the producer
never polls and reports ``isConfigured: false``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from sitepulse.core.contracts.producers import SpotifyNowPlaying
from sitepulse.core.settings import get_logger
from sitepulse.producers.base import PollingProducer, PollPolicy, RateLimited

logger = get_logger(__name__)

TOKEN_ENDPOINT = "https://accounts.spotify.com/api/token"
NOW_PLAYING_ENDPOINT = "https://api.spotify.com/v1/me/player/currently-playing"
ACTIVE_POLL_SECONDS = 2.5
IDLE_POLL_SECONDS = 15.0
TOKEN_EXPIRY_MARGIN_SECONDS = 60.0


class SpotifyError(Exception):
    """Unexpected response from the Spotify API."""


@dataclass(slots=True)
class _CachedToken:
    access_token: str
    expires_at: float


def parse_retry_after(value: str | None) -> float | None:
    try:
        seconds = int(value or "")
    except ValueError:
        return None
    return float(seconds) if seconds > 0 else None


class SpotifyNowPlayingProducer(PollingProducer):
    """Caches :class:`SpotifyNowPlaying` for the account behind the refresh token."""

    name = "spotify"
    model = SpotifyNowPlaying
    policy = PollPolicy(interval=IDLE_POLL_SECONDS, rate_limit_fallback=30.0)

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__()
        self._client_id = client_id or ""
        self._client_secret = client_secret or ""
        self._refresh_token = refresh_token or ""
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._token: _CachedToken | None = None
        self._latest = SpotifyNowPlaying.empty(is_configured=self.configured)

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._refresh_token)

    def get_latest(self) -> SpotifyNowPlaying:
        return self._latest

    def start(self) -> None:
        if not self.configured:
            self._latest = SpotifyNowPlaying.empty(is_configured=False)
            logger.info("Spotify credentials not configured; now-playing disabled")
            return
        super().start()

    async def stop(self) -> None:
        await super().stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def refresh(self) -> float | None:
        if not self.configured:
            self._latest = SpotifyNowPlaying.empty(is_configured=False)
            return IDLE_POLL_SECONDS

        try:
            token = await self._access_token()
            self._latest = await self._now_playing(token)
        except (httpx.HTTPError, SpotifyError, KeyError, TypeError, ValueError):
            logger.error("[spotify] Failed to refresh now-playing snapshot", exc_info=True)
            self._latest = SpotifyNowPlaying.empty(is_configured=True, fetched_at=self._now_ms())

        return ACTIVE_POLL_SECONDS if self._latest.is_playing else IDLE_POLL_SECONDS

    async def _access_token(self) -> str:
        now = self._clock()
        if self._token is not None and self._token.expires_at > now + TOKEN_EXPIRY_MARGIN_SECONDS:
            return self._token.access_token

        response = await self._http().post(
            TOKEN_ENDPOINT,
            auth=(self._client_id, self._client_secret),
            data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
        )
        if response.is_error:
            raise SpotifyError(
                f"Spotify token refresh failed ({response.status_code}): {response.text}"
            )

        payload = response.json()
        self._token = _CachedToken(
            access_token=str(payload["access_token"]),
            expires_at=now + float(payload["expires_in"]),
        )
        return self._token.access_token

    async def _now_playing(self, access_token: str) -> SpotifyNowPlaying:
        response = await self._http().get(
            NOW_PLAYING_ENDPOINT, headers={"authorization": f"Bearer {access_token}"}
        )
        if response.status_code == 204:
            return SpotifyNowPlaying.empty(is_configured=True, fetched_at=self._now_ms())
        if response.status_code == 401:
            self._token = None
            raise SpotifyError("Spotify access token rejected")
        if response.status_code == 429:
            raise RateLimited(parse_retry_after(response.headers.get("retry-after")))
        if response.is_error:
            raise SpotifyError(
                f"Spotify now-playing request failed ({response.status_code}): {response.text}"
            )

        payload: dict[str, Any] = response.json()
        item = payload.get("item")
        if payload.get("currently_playing_type") != "track" or not item:
            return SpotifyNowPlaying.empty(is_configured=True, fetched_at=self._now_ms())

        return SpotifyNowPlaying(
            is_configured=True,
            is_playing=bool(payload.get("is_playing")),
            track_id=item.get("id"),
            track_name=item.get("name"),
            artist_names=[artist["name"] for artist in item.get("artists", [])],
            album_name=(item.get("album") or {}).get("name"),
            track_url=(item.get("external_urls") or {}).get("spotify"),
            progress_ms=payload.get("progress_ms") or 0,
            duration_ms=item.get("duration_ms") or 0,
            fetched_at=self._now_ms(),
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


__all__ = ["SpotifyError", "SpotifyNowPlayingProducer", "parse_retry_after"]
