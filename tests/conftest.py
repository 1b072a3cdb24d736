# tests/conftest.py
"""
Shared fixtures and fakes for the sitepulse test-suite.

Nothing here touches the network or the real clock: samplers get
:class:`FakeCounters`, relays and stores get a :class:`FakeClock`, and the
app fixture disables the external producers.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from sitepulse.api.app import create_app
from sitepulse.core.settings import Settings
from tests.fakes import FakeClock, FakeCounters, make_settings


@pytest.fixture  # type: ignore[misc]
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture  # type: ignore[misc]
def counters() -> FakeCounters:
    return FakeCounters()


@pytest.fixture  # type: ignore[misc]
def test_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture  # type: ignore[misc]
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """
    A fresh app per test, with its lifespan running.

    Producers are disabled, so the sampler only reads host counters; the tick
    interval is long enough that only the startup sample exists.
    """
    app = create_app(test_settings, producers=[])
    with TestClient(app) as c:
        yield c
