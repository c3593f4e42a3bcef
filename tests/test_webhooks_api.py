"""Integration tests for the webhook ingress and operational endpoints.

Uses the InMemoryCRM double behind a real ReconciliationEngine, a mocked
Redis for the event store, and httpx AsyncClient over ASGITransport.
app.state is populated directly by the fixtures; the lifespan is not run.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.order_sync.deals.reconciliation import ReconciliationEngine
from src.order_sync.main import create_app
from tests.doubles import make_order_payload, make_refund_payload

WEBHOOK_URL = "/api/v1/webhooks/shopify"


def _headers(topic: str | None) -> dict[str, str]:
    headers = {
        "X-Shopify-Shop-Domain": "demo.myshopify.com",
        "X-Shopify-Webhook-Id": "wh-123",
    }
    if topic:
        headers["X-Shopify-Topic"] = topic
    return headers


# ── Order / Refund Scenarios ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_order_created_creates_deal_and_rows(app_client, crm, redis_mock):
    client, _ = app_client

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/create")
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["topic"] == "orders/create"
    assert body["request_id"]
    assert len(crm.calls_to("create_deal")) == 1
    [(_, rows)] = crm.calls_to("set_product_rows")
    assert len(rows) == 2
    redis_mock.xadd.assert_awaited_once()


@pytest.mark.asyncio
async def test_unchanged_update_sends_no_deal_update(app_client, crm):
    client, _ = app_client
    crm.seed_deal("5551001", amount="110.00", stage="C2:EXECUTING", category=2)

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/updated")
    )

    assert response.status_code == 200
    assert crm.calls_to("update_deal") == []
    assert len(crm.calls_to("set_product_rows")) == 1


@pytest.mark.asyncio
async def test_refund_for_unknown_deal_is_acknowledged(app_client, crm):
    client, _ = app_client

    response = await client.post(
        WEBHOOK_URL, json=make_refund_payload(), headers=_headers("refunds/create")
    )

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert crm.mutations() == []


@pytest.mark.asyncio
async def test_failed_deal_creation_returns_500(app_client, crm):
    client, _ = app_client
    crm.create_returns_id = False

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/create")
    )

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "internal_error"
    assert "deal_create_failed" in body["message"]
    assert body["request_id"]
    assert crm.calls_to("set_product_rows") == []


@pytest.mark.asyncio
async def test_recoverable_outcome_is_still_200(app_client, crm):
    client, _ = app_client
    crm.fail_on.add("set_product_rows")

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/create")
    )

    assert response.status_code == 200


# ── Malformed / Unrouted Requests ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_invalid_json_returns_400(app_client, crm):
    client, _ = app_client

    response = await client.post(
        WEBHOOK_URL,
        content=b"{not json",
        headers={**_headers("orders/create"), "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payload"
    assert crm.calls == []


@pytest.mark.asyncio
async def test_payload_without_order_id_returns_400(app_client, crm):
    client, _ = app_client
    payload = make_order_payload()
    del payload["id"]

    response = await client.post(WEBHOOK_URL, json=payload, headers=_headers("orders/create"))

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_payload"
    assert crm.calls == []


@pytest.mark.asyncio
async def test_unknown_topic_is_acknowledged_without_side_effects(app_client, crm, redis_mock):
    client, _ = app_client

    response = await client.post(
        WEBHOOK_URL, json={"id": 1}, headers=_headers("customers/create")
    )

    assert response.status_code == 200
    assert response.json()["topic"] == "customers/create"
    assert crm.calls == []
    redis_mock.xadd.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_topic_is_acknowledged(app_client, crm):
    client, _ = app_client

    response = await client.post(WEBHOOK_URL, json=make_order_payload(), headers=_headers(None))

    assert response.status_code == 200
    assert crm.calls == []


@pytest.mark.asyncio
async def test_event_store_failure_does_not_affect_handling(app_client, crm, redis_mock):
    client, _ = app_client
    redis_mock.xadd.side_effect = ConnectionError("redis down")

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/create")
    )

    assert response.status_code == 200
    assert len(crm.calls_to("create_deal")) == 1


@pytest.mark.asyncio
async def test_unexpected_engine_error_returns_500(app_client):
    client, app = app_client
    broken = AsyncMock()
    broken.on_order_updated.side_effect = RuntimeError("unexpected")
    app.state.reconciliation_engine = broken

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/updated")
    )

    assert response.status_code == 500
    assert response.json()["error"] == "internal_error"


@pytest.mark.asyncio
async def test_malformed_crm_record_returns_500_not_400(app_client):
    client, app = app_client
    crm = AsyncMock()
    crm.list_deals.return_value = [{"OPPORTUNITY": "1", "STAGE_ID": "C2:NEW"}]
    app.state.reconciliation_engine = ReconciliationEngine(crm=crm)

    response = await client.post(
        WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/updated")
    )

    assert response.status_code == 500
    assert response.json()["error"] == "internal_error"
    crm.update_deal.assert_not_called()


@pytest.mark.asyncio
async def test_webhook_503_when_engine_not_initialized():
    app = create_app()
    app.state.reconciliation_engine = None
    app.state.event_store = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_URL, json=make_order_payload(), headers=_headers("orders/create")
        )
        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]


# ── Event Listing ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_events_newest_first(app_client, redis_mock):
    client, _ = app_client
    redis_mock.xrevrange.return_value = [
        ("2-0", {"topic": "refunds/create", "order_id": "1001", "payload": "{}"}),
        ("1-0", {"topic": "orders/create", "order_id": "1001", "payload": "{}"}),
    ]

    response = await client.get("/api/v1/webhooks/shopify/events", params={"limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [e["message_id"] for e in body["events"]] == ["2-0", "1-0"]
    redis_mock.xrevrange.assert_awaited_once_with("test:events", count=2)


@pytest.mark.asyncio
async def test_list_events_rejects_out_of_range_limit(app_client):
    client, _ = app_client
    response = await client.get("/api/v1/webhooks/shopify/events", params={"limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_events_503_without_store(app_client):
    client, app = app_client
    app.state.event_store = None

    response = await client.get("/api/v1/webhooks/shopify/events")

    assert response.status_code == 503


# ── Health / Metrics ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_liveness(app_client):
    client, _ = app_client
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_readiness_ok_with_engine_and_redis(app_client):
    client, _ = app_client

    response = await client.get("/api/v1/health/ready")

    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["crm"] == "ok"
    assert checks["redis"] == "ok"
    assert checks["storefront"] == "not_configured"


@pytest.mark.asyncio
async def test_readiness_degraded_without_engine(app_client):
    client, app = app_client
    app.state.reconciliation_engine = None

    response = await client.get("/api/v1/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_readiness_degraded_when_redis_fails(app_client, redis_mock):
    client, _ = app_client
    redis_mock.ping.side_effect = ConnectionError("refused")

    response = await client.get("/api/v1/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["redis"] == "error"


@pytest.mark.asyncio
async def test_metrics_exposes_webhook_counter(app_client):
    client, _ = app_client
    await client.post(WEBHOOK_URL, json={"id": 1}, headers=_headers("shop/update"))

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert 'webhook_events_total{topic="other",outcome="ignored"}' in response.text
