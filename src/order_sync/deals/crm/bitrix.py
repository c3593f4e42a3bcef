"""Bitrix24 CRM adapter over the inbound-webhook REST API.

Implements CRMAdapter by POSTing JSON to ``<webhook base>/<method>.json``.

Key implementation details:
- One httpx.AsyncClient per call, with per-operation timeouts
- No retries: a failed call is terminal and surfaces as CRMError
- Decimal amounts are serialized as strings (Bitrix accepts numeric strings)
- Every call is counted in the crm_requests_total Prometheus metric
"""

from __future__ import annotations

import json
import time
from decimal import Decimal
from typing import Any

import httpx
import structlog

from src.order_sync.core.monitoring import crm_request_duration_seconds, crm_requests_total
from src.order_sync.deals.crm.adapter import CRMAdapter, CRMError

logger = structlog.get_logger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class BitrixAdapter(CRMAdapter):
    """Bitrix24 adapter for deal, product-row and contact operations.

    Args:
        webhook_base: Inbound webhook URL, e.g. ``https://x.bitrix24.ru/rest/1/token``.
        timeout: Timeout for mutating calls in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    TIMEOUT_READ = 10.0

    def __init__(
        self,
        webhook_base: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not webhook_base:
            raise ValueError("Bitrix webhook base URL is not configured")
        self._base_url = webhook_base.rstrip("/")
        self._timeout_mutate = timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=self._transport,
        )

    async def call(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Invoke a REST method and return the decoded response body.

        Raises:
            CRMError: On transport failure, non-2xx status, non-JSON body,
                or a Bitrix ``error`` payload.
        """
        url = f"{self._base_url}/{method}.json"
        body = json.dumps(params, default=_json_default)
        start_time = time.perf_counter()
        status = "error"

        try:
            async with self._client(timeout or self._timeout_mutate) as client:
                try:
                    response = await client.post(url, content=body)
                except httpx.HTTPError as exc:
                    raise CRMError(method, f"transport error: {exc}") from exc

            try:
                data = response.json()
            except ValueError:
                data = None

            if response.status_code >= 400:
                raise CRMError(method, f"HTTP {response.status_code}", data)
            if not isinstance(data, dict):
                raise CRMError(method, "response is not a JSON object", data)
            if "error" in data:
                description = data.get("error_description") or data["error"]
                raise CRMError(method, str(description), data)

            status = "success"
            return data
        finally:
            crm_requests_total.labels(method=method, status=status).inc()
            crm_request_duration_seconds.labels(method=method).observe(
                time.perf_counter() - start_time
            )

    # ── Deals ───────────────────────────────────────────────────────────────

    async def create_deal(self, fields: dict[str, Any]) -> str | None:
        data = await self.call(
            "crm.deal.add",
            {"fields": fields, "params": {"REGISTER_SONET_EVENT": "N"}},
        )
        result = data.get("result")
        if not result:
            logger.warning("bitrix.deal_add_no_result", response=data)
            return None
        return str(result)

    async def update_deal(self, deal_id: str, fields: dict[str, Any]) -> None:
        data = await self.call("crm.deal.update", {"id": deal_id, "fields": fields})
        if not data.get("result"):
            raise CRMError("crm.deal.update", f"deal {deal_id} was not updated", data)

    async def set_product_rows(self, deal_id: str, rows: list[dict[str, Any]]) -> None:
        data = await self.call("crm.deal.productrows.set", {"id": deal_id, "rows": rows})
        if not data.get("result"):
            raise CRMError(
                "crm.deal.productrows.set", f"rows not set for deal {deal_id}", data
            )

    async def list_deals(
        self, filters: dict[str, Any], select: list[str]
    ) -> list[dict[str, Any]]:
        data = await self.call(
            "crm.deal.list",
            {"filter": filters, "select": select},
            timeout=self.TIMEOUT_READ,
        )
        result = data.get("result")
        return result if isinstance(result, list) else []

    # ── Contacts ────────────────────────────────────────────────────────────

    async def list_contacts(
        self, filters: dict[str, Any], select: list[str]
    ) -> list[dict[str, Any]]:
        data = await self.call(
            "crm.contact.list",
            {"filter": filters, "select": select},
            timeout=self.TIMEOUT_READ,
        )
        result = data.get("result")
        return result if isinstance(result, list) else []

    async def add_contact(self, fields: dict[str, Any]) -> str | None:
        data = await self.call("crm.contact.add", {"fields": fields})
        result = data.get("result")
        return str(result) if result else None
