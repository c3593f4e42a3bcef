"""Unit tests for observability: webhook/CRM metrics, Sentry init, settings helpers."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest
from prometheus_client import REGISTRY

from src.order_sync.config import Settings
from src.order_sync.core.monitoring import init_sentry, record_webhook_event
from src.order_sync.deals.crm.adapter import CRMError
from src.order_sync.deals.crm.bitrix import BitrixAdapter


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


# ── Webhook / CRM Metrics ───────────────────────────────────────────────────


class TestWebhookMetrics:
    def test_known_topic_keeps_its_label(self):
        labels = {"topic": "refunds/create", "outcome": "success"}
        before = _sample("webhook_events_total", labels)

        record_webhook_event("refunds/create", "success")

        assert _sample("webhook_events_total", labels) == before + 1

    def test_unknown_topics_share_one_label(self):
        labels = {"topic": "other", "outcome": "ignored"}
        before = _sample("webhook_events_total", labels)

        record_webhook_event("carts/update", "ignored")
        record_webhook_event(None, "ignored")

        assert _sample("webhook_events_total", labels) == before + 2

    @pytest.mark.asyncio
    async def test_crm_calls_are_counted_by_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        adapter = BitrixAdapter("https://crm.example/rest/1/x", transport=transport)
        labels = {"method": "crm.deal.list", "status": "error"}
        before = _sample("crm_requests_total", labels)

        with pytest.raises(CRMError):
            await adapter.list_deals({}, ["ID"])

        assert _sample("crm_requests_total", labels) == before + 1


# ── Sentry ──────────────────────────────────────────────────────────────────


class TestInitSentry:
    def test_tags_events_with_webhook_topic(self):
        with patch("sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.example/1", environment="production")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["environment"] == "production"
        assert kwargs["traces_sample_rate"] == 0.1

        before_send = kwargs["before_send"]
        event = before_send({"request": {"headers": {"X-Shopify-Topic": "orders/create"}}}, {})
        assert event["tags"]["webhook_topic"] == "orders/create"
        assert "tags" not in before_send({"request": {"headers": {}}}, {})


# ── Settings ────────────────────────────────────────────────────────────────


class TestSettings:
    def test_preorder_tags_are_split_and_trimmed(self):
        settings = Settings(PREORDER_TAGS=" pre-order , ,Backorder ")
        assert settings.get_preorder_tags() == ["pre-order", "Backorder"]

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.SHOPIFY_API_VERSION == "2024-10"
        assert settings.EVENT_STREAM_MAXLEN == 1000
