"""Webhook event monitoring backed by Redis Streams.

Exports:
    WebhookEventRecord: One stored inbound webhook event.
    WebhookEventStore: Capped stream writer/reader for monitoring records.
"""

from __future__ import annotations

from src.order_sync.events.store import WebhookEventRecord, WebhookEventStore

__all__ = ["WebhookEventRecord", "WebhookEventStore"]
