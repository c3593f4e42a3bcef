"""CRM integration layer -- adapter interface for deal and contact calls.

Provides the abstract CRMAdapter interface and the Bitrix24 implementation:
- CRMAdapter: remote operations the reconciliation engine relies on
- BitrixAdapter: Bitrix24 inbound-webhook REST client
- CRMError: raised for any failed CRM call
"""

from src.order_sync.deals.crm.adapter import CRMAdapter, CRMError
from src.order_sync.deals.crm.bitrix import BitrixAdapter

__all__ = [
    "CRMAdapter",
    "CRMError",
    "BitrixAdapter",
]
