"""Tests for the Spotify now-playing producer, against `httpx.MockTransport`."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from sitepulse.producers.spotify import (
    NOW_PLAYING_ENDPOINT,
    TOKEN_ENDPOINT,
    SpotifyNowPlayingProducer,
    parse_retry_after,
)
from tests.fakes import FakeClock

TRACK = {
    "is_playing": True,
    "progress_ms": 61_000,
    "currently_playing_type": "track",
    "item": {
        "id": "trk1",
        "name": "Song",
        "duration_ms": 200_000,
        "artists": [{"name": "Artist A"}, {"name": "Artist B"}],
        "album": {"name": "Album"},
        "external_urls": {"spotify": "https://open.spotify.com/track/trk1"},
    },
}


class FakeSpotify:
    """Routes token and now-playing requests; `reply(...)` sets the now-playing answer."""

    def __init__(self) -> None:
        self.token_requests = 0
        self.reply(200, TRACK)
        self.seen_tokens: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_ENDPOINT:
            self.token_requests += 1
            assert request.headers["authorization"].startswith("Basic ")
            assert b"grant_type=refresh_token" in request.content
            return httpx.Response(
                200, json={"access_token": f"tok{self.token_requests}", "expires_in": 3600}
            )
        assert str(request.url) == NOW_PLAYING_ENDPOINT
        self.seen_tokens.append(request.headers["authorization"])
        return httpx.Response(self._status, json=self._body, headers=self._headers)

    def reply(
        self, status: int, body: Any = None, headers: dict[str, str] | None = None
    ) -> None:
        self._status = status
        self._body = body
        self._headers = headers or {}


def _producer(api: FakeSpotify, clock: FakeClock, **creds: Any) -> SpotifyNowPlayingProducer:
    values = {"client_id": "id", "client_secret": "secret", "refresh_token": "refresh"}
    values.update(creds)
    return SpotifyNowPlayingProducer(
        values["client_id"],
        values["client_secret"],
        values["refresh_token"],
        client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        clock=clock,
    )


@pytest.mark.asyncio  # type: ignore[misc]
async def test_playing_track_is_mapped_and_polled_fast(clock: FakeClock) -> None:
    api = FakeSpotify()
    producer = _producer(api, clock)

    assert await producer.refresh() == 2.5
    now = producer.get_latest()
    assert now.is_playing
    assert now.track_name == "Song"
    assert now.artist_names == ["Artist A", "Artist B"]
    assert now.album_name == "Album"
    assert now.progress_ms == 61_000
    assert now.to_wire()["trackUrl"] == "https://open.spotify.com/track/trk1"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_access_token_is_cached_until_near_expiry(clock: FakeClock) -> None:
    api = FakeSpotify()
    producer = _producer(api, clock)

    await producer.refresh()
    clock.advance(3000)
    await producer.refresh()
    assert api.token_requests == 1

    clock.advance(560)  # inside the one-minute margin
    await producer.refresh()
    assert api.token_requests == 2
    assert api.seen_tokens[-1] == "Bearer tok2"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_nothing_playing_polls_slowly(clock: FakeClock) -> None:
    api = FakeSpotify()
    api.reply(204)
    producer = _producer(api, clock)

    assert await producer.refresh() == 15.0
    now = producer.get_latest()
    assert now.is_configured and not now.is_playing


@pytest.mark.asyncio  # type: ignore[misc]
async def test_podcast_episode_reports_empty(clock: FakeClock) -> None:
    api = FakeSpotify()
    api.reply(200, {**TRACK, "currently_playing_type": "episode"})
    producer = _producer(api, clock)

    await producer.refresh()
    assert producer.get_latest().track_name is None


@pytest.mark.asyncio  # type: ignore[misc]
async def test_rate_limit_backs_off_for_retry_after(clock: FakeClock) -> None:
    api = FakeSpotify()
    api.reply(429, headers={"retry-after": "7"})
    producer = _producer(api, clock)

    assert await producer.scheduler.run_once() == 7.0

    api.reply(429)
    assert await producer.scheduler.run_once() == 30.0


@pytest.mark.asyncio  # type: ignore[misc]
async def test_rejected_token_is_refreshed_next_time(clock: FakeClock) -> None:
    api = FakeSpotify()
    api.reply(401)
    producer = _producer(api, clock)

    assert await producer.refresh() == 15.0
    assert producer.get_latest().is_configured

    api.reply(200, TRACK)
    await producer.refresh()
    assert api.token_requests == 2
    assert producer.get_latest().is_playing


def test_missing_credentials_reports_not_configured(clock: FakeClock) -> None:
    producer = _producer(FakeSpotify(), clock, refresh_token=None)
    producer.start()

    assert not producer.configured
    assert not producer.scheduler.is_running
    assert producer.get_latest().is_configured is False


@pytest.mark.parametrize(  # type: ignore[misc]
    ("header", "expected"),
    [("7", 7.0), ("0", None), ("", None), (None, None), ("Wed, 21 Oct", None)],
)
def test_parse_retry_after(header: str | None, expected: float | None) -> None:
    assert parse_retry_after(header) == expected
