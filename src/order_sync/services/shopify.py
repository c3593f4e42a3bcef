"""Async client for the Shopify Admin REST API.

Only the read the reconciler needs: fetching the current full order snapshot
after a refund. A 404 is "no such order" (None); every other failure raises
StorefrontError. No retries are performed.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import ValidationError

from src.order_sync.deals.schemas import ShopifyOrder

logger = structlog.get_logger(__name__)


class StorefrontError(Exception):
    """Fetching data from the storefront failed."""


class ShopifyAdminClient:
    """Shopify Admin REST API client.

    Args:
        shop_domain: ``<shop>.myshopify.com`` domain.
        access_token: Admin API access token.
        api_version: Admin API version, e.g. ``2024-10``.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not shop_domain or not access_token:
            raise ValueError("Shopify shop domain and admin token are required")
        domain = shop_domain.removeprefix("https://").rstrip("/")
        self._base_url = f"https://{domain}/admin/api/{api_version}"
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Accept": "application/json",
        }
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_order(self, order_id: str) -> ShopifyOrder | None:
        """Fetch the current state of an order.

        Args:
            order_id: Shopify order id.

        Returns:
            The parsed order, or None if Shopify has no such order.

        Raises:
            StorefrontError: On transport failure, non-404 error status,
                or an unparseable body.
        """
        url = f"{self._base_url}/orders/{order_id}.json"
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise StorefrontError(f"GET order {order_id} failed: {exc}") from exc

        if response.status_code == 404:
            logger.info("shopify.order_not_found", order_id=order_id)
            return None
        if response.status_code >= 400:
            raise StorefrontError(
                f"GET order {order_id} returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise StorefrontError(f"GET order {order_id} returned non-JSON body") from exc

        order_data = payload.get("order") if isinstance(payload, dict) else None
        if not order_data:
            return None
        try:
            return ShopifyOrder.model_validate(order_data)
        except ValidationError as exc:
            raise StorefrontError(f"Order {order_id} payload is invalid: {exc}") from exc
