"""Best-effort buyer contact upsert.

Looks the buyer up by e-mail, then phone, and reuses the first match;
otherwise creates a contact. Callers treat every failure as non-fatal.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.order_sync.deals.crm.adapter import CRMAdapter
from src.order_sync.deals.schemas import BuyerInfo

logger = structlog.get_logger(__name__)


class ContactUpserter:
    """Find-or-create a CRM contact for an order's buyer.

    Args:
        crm: CRM adapter for contact list/add calls.
    """

    def __init__(self, crm: CRMAdapter) -> None:
        self._crm = crm

    async def upsert(self, buyer: BuyerInfo) -> str | None:
        """Return the contact id for the buyer, or None when the buyer has no e-mail or phone.

        Raises:
            CRMError: If a contact call fails.
        """
        if not buyer.has_identity():
            logger.debug("contacts.skip_no_identity")
            return None

        existing = await self._find_existing(buyer)
        if existing:
            logger.info("contacts.matched", contact_id=existing)
            return existing

        contact_id = await self._crm.add_contact(self._contact_fields(buyer))
        if contact_id:
            logger.info("contacts.created", contact_id=contact_id)
        return contact_id

    async def _find_existing(self, buyer: BuyerInfo) -> str | None:
        lookups: list[dict[str, Any]] = []
        if buyer.email:
            lookups.append({"EMAIL": buyer.email})
        if buyer.phone:
            lookups.append({"PHONE": buyer.phone})

        for filters in lookups:
            matches = await self._crm.list_contacts(filters, ["ID"])
            if matches and matches[0].get("ID"):
                return str(matches[0]["ID"])
        return None

    @staticmethod
    def _contact_fields(buyer: BuyerInfo) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "NAME": buyer.first_name or buyer.email or buyer.phone,
            "SOURCE_ID": "STORE",
        }
        if buyer.last_name:
            fields["LAST_NAME"] = buyer.last_name
        if buyer.email:
            fields["EMAIL"] = [{"VALUE": buyer.email, "VALUE_TYPE": "WORK"}]
        if buyer.phone:
            fields["PHONE"] = [{"VALUE": buyer.phone, "VALUE_TYPE": "WORK"}]
        return fields
