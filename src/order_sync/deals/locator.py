"""Resolve a storefront order id to the CRM deal that mirrors it."""

from __future__ import annotations

import structlog

from src.order_sync.deals.crm.adapter import CRMAdapter
from src.order_sync.deals.field_mapping import DEAL_SELECT_FIELDS, FIELD_ORDER_ID
from src.order_sync.deals.schemas import Deal

logger = structlog.get_logger(__name__)


class DealLocator:
    """Finds the deal whose join-key field holds an external order id.

    The CRM does not enforce uniqueness on the join key. Only the first
    match is returned; duplicates are logged but not reconciled.

    Args:
        crm: CRM adapter used for the lookup.
    """

    def __init__(self, crm: CRMAdapter) -> None:
        self._crm = crm

    async def find(self, external_order_id: str) -> Deal | None:
        """Return the first deal for the order, or None.

        Raises:
            CRMError: If the lookup call fails.
        """
        deals = await self._crm.list_deals(
            {FIELD_ORDER_ID: external_order_id},
            DEAL_SELECT_FIELDS,
        )
        if not deals:
            return None
        if len(deals) > 1:
            logger.warning(
                "deal_locator.duplicate_deals",
                order_id=external_order_id,
                deal_ids=[d.get("ID") for d in deals],
            )
        return Deal.model_validate(deals[0])
