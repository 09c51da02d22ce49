from __future__ import annotations

import random
from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.api.demo import set_rng
from app.config import get_settings
from app.main import create_app
from app.observability.metrics import MetricsRegistry


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOKI_ENABLED", "false")
    monkeypatch.setenv("SLOW_MIN_DELAY_MS", "10")
    monkeypatch.setenv("SLOW_MAX_DELAY_MS", "30")
    get_settings.cache_clear()
    set_rng(random.Random(1234))

    yield

    set_rng(None)
    get_settings.cache_clear()


@pytest.fixture
def registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def demo_app(registry: MetricsRegistry) -> FastAPI:
    return create_app(registry=registry)


@pytest.fixture
async def api_client(demo_app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=demo_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
