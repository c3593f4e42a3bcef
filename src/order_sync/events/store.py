"""Best-effort monitoring log of inbound webhook events, backed by a Redis Stream.

One stream entry per inbound request, trimmed approximately to a fixed
length. This is an operator aid, not a durable event log: nothing replays
from it and write failures never affect webhook handling.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class WebhookEventRecord(BaseModel):
    """One stored webhook event."""

    message_id: str | None = None
    topic: str
    shop_domain: str = ""
    webhook_id: str = ""
    request_id: str = ""
    order_id: str = ""
    order_name: str = ""
    received_at: str = ""
    payload: Any = None

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        topic: str | None,
        shop_domain: str | None = None,
        webhook_id: str | None = None,
        request_id: str | None = None,
    ) -> WebhookEventRecord:
        """Build a record, pulling the order id/name from order or refund bodies."""
        body = payload if isinstance(payload, dict) else {}
        nested = body.get("order") if isinstance(body.get("order"), dict) else {}
        order_id = body.get("order_id") or body.get("id") or nested.get("id") or ""
        order_name = body.get("name") or body.get("order_name") or nested.get("name") or ""
        return cls(
            topic=topic or "",
            shop_domain=shop_domain or "",
            webhook_id=webhook_id or "",
            request_id=request_id or "",
            order_id=str(order_id),
            order_name=str(order_name),
            received_at=datetime.now(timezone.utc).isoformat(),
            payload=payload,
        )

    def to_stream_dict(self) -> dict[str, str]:
        """Flatten to the string-only mapping XADD expects."""
        data = self.model_dump(exclude={"message_id", "payload"})
        data["payload"] = json.dumps(self.payload, default=str)
        return data

    @classmethod
    def from_stream(cls, message_id: str, data: dict[str, str]) -> WebhookEventRecord:
        fields: dict[str, Any] = dict(data)
        try:
            fields["payload"] = json.loads(fields.get("payload") or "null")
        except ValueError:
            pass
        return cls(message_id=message_id, **fields)


class WebhookEventStore:
    """Appends webhook events to a capped Redis Stream and lists recent ones.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        stream_key: Stream name, e.g. ``webhooks:shopify:events``.
        maxlen: Approximate cap on stored entries.
    """

    def __init__(self, redis: aioredis.Redis, stream_key: str, maxlen: int = 1000) -> None:
        self._redis = redis
        self._stream_key = stream_key
        self._maxlen = maxlen

    async def store(self, record: WebhookEventRecord) -> str:
        """Append a record; returns the Redis message id."""
        message_id = await self._redis.xadd(
            self._stream_key,
            record.to_stream_dict(),
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(
            "webhook_event_stored",
            stream=self._stream_key,
            topic=record.topic,
            order_id=record.order_id,
            message_id=message_id,
        )
        return message_id

    async def list_recent(self, count: int = 50) -> list[WebhookEventRecord]:
        """Most recent records first."""
        entries = await self._redis.xrevrange(self._stream_key, count=count)
        return [WebhookEventRecord.from_stream(mid, data) for mid, data in entries]
