"""CRM adapter abstract base class -- defines the remote operations the reconciler needs.

Every CRM backend implements this ABC. The ReconciliationEngine only talks to
the CRM through it, so tests substitute an in-memory double and production
wires the Bitrix24 implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class CRMError(Exception):
    """A CRM call failed (transport, HTTP status, or an error payload).

    Args:
        method: Remote method name, e.g. ``crm.deal.add``.
        message: Human-readable failure description.
        payload: Decoded response body when one was received.
    """

    def __init__(self, method: str, message: str, payload: Any = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.payload = payload


class CRMAdapter(ABC):
    """Abstract interface for CRM deal and contact operations.

    Methods:
        create_deal: Create a deal, return its id (None if the CRM returned none).
        update_deal: Update deal fields by id.
        set_product_rows: Replace the deal's full product-row set.
        list_deals: List deals matching a field filter.
        list_contacts: List contacts matching a field filter.
        add_contact: Create a contact, return its id (None if the CRM returned none).
    """

    @abstractmethod
    async def create_deal(self, fields: dict[str, Any]) -> str | None:
        """Create a deal, return its id."""
        ...

    @abstractmethod
    async def update_deal(self, deal_id: str, fields: dict[str, Any]) -> None:
        """Update deal fields by id."""
        ...

    @abstractmethod
    async def set_product_rows(self, deal_id: str, rows: list[dict[str, Any]]) -> None:
        """Replace the deal's product rows (an empty list clears them)."""
        ...

    @abstractmethod
    async def list_deals(
        self, filters: dict[str, Any], select: list[str]
    ) -> list[dict[str, Any]]:
        """List deals matching the filter, projecting the selected fields."""
        ...

    @abstractmethod
    async def list_contacts(
        self, filters: dict[str, Any], select: list[str]
    ) -> list[dict[str, Any]]:
        """List contacts matching the filter."""
        ...

    @abstractmethod
    async def add_contact(self, fields: dict[str, Any]) -> str | None:
        """Create a contact, return its id."""
        ...
