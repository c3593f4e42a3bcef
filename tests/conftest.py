"""Shared fixtures for reconciliation and webhook tests.

Provides:
- In-memory CRM double and a stub storefront
- A ReconciliationEngine wired to them with a mock logger
- A FastAPI app with app.state populated directly (lifespan is not run)
  and an async HTTP client over ASGITransport
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.order_sync.deals.reconciliation import ReconciliationEngine
from src.order_sync.events.store import WebhookEventStore
from src.order_sync.main import create_app
from tests.doubles import InMemoryCRM, StubStorefront


@pytest.fixture
def crm() -> InMemoryCRM:
    return InMemoryCRM()


@pytest.fixture
def storefront() -> StubStorefront:
    return StubStorefront()


@pytest.fixture
def log() -> MagicMock:
    """Logger double; bind() returns the same mock so calls can be asserted."""
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger


@pytest.fixture
def engine(crm, storefront, log) -> ReconciliationEngine:
    return ReconciliationEngine(crm=crm, storefront=storefront, log=log)


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.xadd.return_value = "1700000000000-0"
    redis.xrevrange.return_value = []
    redis.ping.return_value = True
    return redis


@pytest_asyncio.fixture
async def app_client(engine, redis_mock) -> AsyncGenerator[tuple[AsyncClient, object], None]:
    """App with the engine and event store on app.state, plus an async client."""
    app = create_app()
    app.state.reconciliation_engine = engine
    app.state.storefront = None
    app.state.redis = redis_mock
    app.state.event_store = WebhookEventStore(redis_mock, stream_key="test:events")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, app
