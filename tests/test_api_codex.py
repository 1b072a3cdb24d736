# tests/test_api_codex.py
"""
Integration Tests for the usage sync endpoint.

Scenarios
---------
1. **Disabled**: no configured token, or no usage store, answers 503.
2. **Auth**: a missing or wrong bearer token answers 401, before the body is
   even validated.
3. **Ingest**: a valid payload is written to disk and shows up in the next
   snapshot under `external.codex`.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from sitepulse.api.app import create_app
from sitepulse.core.sampler import SnapshotSampler
from sitepulse.producers.codex_usage import CodexUsageStore
from tests.fakes import SYNC_TOKEN, FakeClock, make_settings

AUTH = {"Authorization": f"Bearer {SYNC_TOKEN}"}


def _body(clock: FakeClock) -> dict[str, Any]:
    return {
        "generatedAt": int(clock() * 1000),
        "daily": [
            {"inputTokens": 10, "outputTokens": 5, "totalTokens": 15},
            {"inputTokens": 20, "outputTokens": 10, "totalTokens": 30},
        ],
    }


@pytest.fixture  # type: ignore[misc]
def store(tmp_path: Path, clock: FakeClock) -> CodexUsageStore:
    return CodexUsageStore(tmp_path / "codex" / "codex-usage.json", clock=clock)


@pytest.fixture  # type: ignore[misc]
def usage_client(
    tmp_path: Path, store: CodexUsageStore
) -> Generator[TestClient, None, None]:
    app = create_app(make_settings(tmp_path), producers=[store])
    with TestClient(app) as c:
        yield c


def test_sync_stores_payload_and_returns_snapshot(
    usage_client: TestClient, store: CodexUsageStore, clock: FakeClock
) -> None:
    resp = usage_client.post("/api/codex/sync", json=_body(clock), headers=AUTH)
    assert resp.status_code == 200, resp.text

    data = resp.json()
    assert data["isStale"] is False
    assert data["latestDay"]["totalTokens"] == 30
    assert data["totals"] == {"totalTokens": 45}
    assert data["daily"] == [{"totalTokens": 15}, {"totalTokens": 30}]
    assert store.path.exists()


def test_synced_usage_appears_in_next_snapshot(
    usage_client: TestClient, clock: FakeClock
) -> None:
    usage_client.post("/api/codex/sync", json=_body(clock), headers=AUTH)

    sampler: SnapshotSampler = usage_client.app.state.sampler  # type: ignore[attr-defined]
    sampler.sample()
    external = usage_client.get("/api/stats").json()["external"]

    assert external["codex"]["totals"]["totalTokens"] == 45


@pytest.mark.parametrize(  # type: ignore[misc]
    "headers",
    [
        {},
        {"Authorization": "Bearer wrong-token"},
        {"Authorization": SYNC_TOKEN},
    ],
)
def test_sync_rejects_bad_credentials(
    usage_client: TestClient, clock: FakeClock, headers: dict[str, str]
) -> None:
    resp = usage_client.post("/api/codex/sync", json=_body(clock), headers=headers)
    assert resp.status_code == 401


def test_auth_is_checked_before_body(usage_client: TestClient) -> None:
    resp = usage_client.post("/api/codex/sync", json={"daily": "nope"})
    assert resp.status_code == 401


def test_invalid_payload_is_422(usage_client: TestClient, store: CodexUsageStore) -> None:
    resp = usage_client.post(
        "/api/codex/sync", json={"generatedAt": -1, "daily": []}, headers=AUTH
    )
    assert resp.status_code == 422
    assert not store.path.exists()


def test_sync_disabled_without_token(
    tmp_path: Path, store: CodexUsageStore, clock: FakeClock
) -> None:
    app = create_app(make_settings(tmp_path, codex_sync_token=None), producers=[store])
    with TestClient(app) as c:
        resp = c.post("/api/codex/sync", json=_body(clock), headers=AUTH)

    assert resp.status_code == 503


def test_sync_disabled_without_store(client: TestClient, clock: FakeClock) -> None:
    resp = client.post("/api/codex/sync", json=_body(clock), headers=AUTH)
    assert resp.status_code == 503
