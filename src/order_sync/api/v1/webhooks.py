"""Shopify webhook ingress.

Receives order/refund webhooks, stores a best-effort monitoring record,
routes recognised topics to the ReconciliationEngine, and maps the
reconciliation outcome to exactly one HTTP response:

- success / recoverable outcome -> 200 ``{"success": true, ...}``
- fatal outcome                 -> 500 ``{"error": "internal_error", ...}``
- unparseable body or payload   -> 400 ``{"error": "invalid_payload", ...}``
- unrecognised or missing topic -> 200, no side effects

NOTE: Webhook authentication (HMAC) is handled outside this service.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from src.order_sync.core.monitoring import record_webhook_event
from src.order_sync.deals.reconciliation import ReconciliationEngine
from src.order_sync.deals.schemas import (
    OutcomeKind,
    ReconcileOutcome,
    ShopifyOrder,
    ShopifyRefund,
)
from src.order_sync.events.store import WebhookEventRecord, WebhookEventStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

TOPIC_ORDER_CREATED = "orders/create"
TOPIC_ORDER_UPDATED = "orders/updated"
TOPIC_REFUND_CREATED = "refunds/create"


# ── Response Schemas ─────────────────────────────────────────────────────────


class WebhookAck(BaseModel):
    """Receipt acknowledgement; does not encode the business outcome."""

    success: bool = True
    request_id: str
    topic: str | None = None


class WebhookError(BaseModel):
    error: str
    message: str
    request_id: str


class WebhookEventResponse(BaseModel):
    message_id: str | None = None
    topic: str
    shop_domain: str = ""
    webhook_id: str = ""
    request_id: str = ""
    order_id: str = ""
    order_name: str = ""
    received_at: str = ""
    payload: Any = None


class WebhookEventList(BaseModel):
    events: list[WebhookEventResponse] = Field(default_factory=list)
    count: int = 0


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_engine(request: Request) -> ReconciliationEngine:
    """Retrieve the ReconciliationEngine from app.state, 503 if not available."""
    engine = getattr(request.app.state, "reconciliation_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation engine not initialized",
        )
    return engine


def _get_event_store(request: Request) -> WebhookEventStore | None:
    return getattr(request.app.state, "event_store", None)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# ── Topic Routing ────────────────────────────────────────────────────────────


EVENT_MODELS: dict[str, type[ShopifyOrder] | type[ShopifyRefund]] = {
    TOPIC_ORDER_CREATED: ShopifyOrder,
    TOPIC_ORDER_UPDATED: ShopifyOrder,
    TOPIC_REFUND_CREATED: ShopifyRefund,
}


def parse_event(topic: str, payload: Any) -> ShopifyOrder | ShopifyRefund:
    """Validate the body against the schema of a recognised topic.

    Raises:
        ValidationError: If the payload does not match the topic's schema.
    """
    return EVENT_MODELS[topic].model_validate(payload)


async def dispatch_event(
    engine: ReconciliationEngine,
    topic: str | None,
    event: ShopifyOrder | ShopifyRefund,
) -> ReconcileOutcome | None:
    """Run the engine handler for an already-parsed event.

    Returns:
        The reconciliation outcome, or None for topics this service ignores.
    """
    if topic == TOPIC_ORDER_CREATED:
        return await engine.on_order_created(event)
    if topic == TOPIC_ORDER_UPDATED:
        return await engine.on_order_updated(event)
    if topic == TOPIC_REFUND_CREATED:
        return await engine.on_refund_created(event)
    return None


async def _store_event(
    store: WebhookEventStore | None,
    payload: Any,
    topic: str | None,
    request: Request,
    request_id: str,
) -> None:
    """Write the monitoring record; any failure is logged and dropped."""
    if store is None:
        return
    try:
        record = WebhookEventRecord.from_payload(
            payload,
            topic=topic,
            shop_domain=request.headers.get("X-Shopify-Shop-Domain"),
            webhook_id=request.headers.get("X-Shopify-Webhook-Id"),
            request_id=request_id,
        )
        await store.store(record)
    except Exception:
        logger.warning("webhook.event_store_failed", topic=topic, exc_info=True)


def _error(status_code: int, error: str, message: str, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=WebhookError(error=error, message=message, request_id=request_id).model_dump(),
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/shopify", response_model=WebhookAck)
async def receive_shopify_webhook(request: Request) -> Any:
    """Shopify webhook receiver for orders/create, orders/updated and refunds/create.

    Other topics are acknowledged without side effects. Only a fatal
    reconciliation outcome yields a 5xx, so Shopify's own redelivery can
    re-attempt a failed deal creation.
    """
    request_id = _request_id(request)
    topic = request.headers.get("X-Shopify-Topic")

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("webhook.invalid_json", topic=topic, request_id=request_id)
        record_webhook_event(topic, "invalid")
        return _error(
            status.HTTP_400_BAD_REQUEST, "invalid_payload", "Body is not valid JSON", request_id
        )

    if not topic:
        logger.warning(
            "webhook.missing_topic",
            request_id=request_id,
            body_keys=sorted(payload) if isinstance(payload, dict) else None,
        )

    await _store_event(_get_event_store(request), payload, topic, request, request_id)

    if topic not in EVENT_MODELS:
        logger.info("webhook.unhandled_topic", topic=topic, request_id=request_id)
        record_webhook_event(topic, "ignored")
        return WebhookAck(request_id=request_id, topic=topic)

    engine = _get_engine(request)
    try:
        event = parse_event(topic, payload)
    except ValidationError as exc:
        logger.warning(
            "webhook.invalid_payload",
            topic=topic,
            request_id=request_id,
            errors=exc.error_count(),
        )
        record_webhook_event(topic, "invalid")
        return _error(status.HTTP_400_BAD_REQUEST, "invalid_payload", str(exc), request_id)

    # Errors past this point are internal (500), never invalid_payload.
    try:
        outcome = await dispatch_event(engine, topic, event)
    except Exception as exc:
        logger.exception("webhook.unhandled_error", topic=topic, request_id=request_id)
        record_webhook_event(topic, OutcomeKind.FATAL.value)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", str(exc), request_id
        )

    record_webhook_event(topic, outcome.kind.value)
    logger.info(
        "webhook.processed",
        topic=topic,
        request_id=request_id,
        outcome=outcome.kind.value,
        action=outcome.action.value,
        deal_id=outcome.deal_id,
        warnings=outcome.warnings,
    )

    if outcome.kind is OutcomeKind.FATAL:
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_error",
            outcome.reason or "reconciliation failed",
            request_id,
        )
    return WebhookAck(request_id=request_id, topic=topic)


@router.get("/shopify/events", response_model=WebhookEventList)
async def list_webhook_events(
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
) -> WebhookEventList:
    """Most recent stored webhook events, newest first. 503 if no store is configured."""
    store = _get_event_store(request)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook event store not configured",
        )
    records = await store.list_recent(limit)
    events = [WebhookEventResponse(**record.model_dump()) for record in records]
    return WebhookEventList(events=events, count=len(events))
