"""Reconciliation engine -- applies storefront order events to CRM deals.

Orchestrates locate -> diff -> mutate for each event kind:
- order created: map, best-effort contact, create deal, set product rows
- order updated: locate, minimal field diff, update if needed, full row resync
- refund created: locate, fetch the current order, recompute totals and
  payment status, update, full row resync

Each handler returns a ReconcileOutcome instead of raising. Only a failed
deal creation, a failed lookup, a failed update on the update path, or a
policy-table gap on the create/update paths is fatal. Once a refund has
located its deal the event always completes; other failures are logged,
recorded as warnings, and the sequence continues. Remote calls are issued one at a time.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any, Protocol

import structlog

from src.order_sync.deals.contacts import ContactUpserter
from src.order_sync.deals.crm.adapter import CRMAdapter, CRMError
from src.order_sync.deals.field_mapping import (
    DEFAULT_PREORDER_TAGS,
    FIELD_AMOUNT,
    FIELD_CATEGORY,
    FIELD_CONTACT,
    FIELD_PAYMENT_STATUS,
    FIELD_STAGE,
    MONEY_FIELD_RESOLVERS,
    ZERO,
    build_product_rows,
    map_order_to_deal,
    present_money_fields,
    resolve_amount,
)
from src.order_sync.deals.locator import DealLocator
from src.order_sync.deals.schemas import (
    BuyerInfo,
    Deal,
    ProductRow,
    ReconcileAction,
    ReconcileOutcome,
    ShopifyOrder,
    ShopifyRefund,
)
from src.order_sync.deals.status_policy import (
    CATEGORY_STOCK,
    PAYMENT_UNPAID,
    PolicyGapError,
    category_for_tags,
    payment_status_for,
    refunded_stage_for,
    stage_for,
)
from src.order_sync.services.shopify import StorefrontError


class OrderSource(Protocol):
    """Anything that can fetch the current full order snapshot."""

    async def get_order(self, order_id: str) -> ShopifyOrder | None: ...


class ReconciliationEngine:
    """Applies order/refund events to CRM deals.

    Holds no per-event state; concurrent events for the same order may
    interleave (last write wins on shared deal fields).

    Args:
        crm: CRM adapter for deal and product-row calls.
        storefront: Order source used to refetch orders on refunds.
        locator: Deal lookup by order id (defaults to one over ``crm``).
        contacts: Contact upserter (defaults to one over ``crm``).
        preorder_tags: Tags routing an order to the preorder pipeline.
        log: structlog logger; injected so callers control observability.
    """

    def __init__(
        self,
        crm: CRMAdapter,
        storefront: OrderSource | None = None,
        locator: DealLocator | None = None,
        contacts: ContactUpserter | None = None,
        preorder_tags: Iterable[str] = DEFAULT_PREORDER_TAGS,
        log: Any = None,
    ) -> None:
        self._crm = crm
        self._storefront = storefront
        self._locator = locator or DealLocator(crm)
        self._contacts = contacts or ContactUpserter(crm)
        self._preorder_tags = tuple(preorder_tags)
        self._log = log if log is not None else structlog.get_logger(__name__)

    # ── order created ───────────────────────────────────────────────────────

    async def on_order_created(self, order: ShopifyOrder) -> ReconcileOutcome:
        """Create the deal for a new order, then its product rows."""
        log = self._log.bind(topic="orders/create", order_id=order.external_id)

        try:
            mapped = map_order_to_deal(order, self._preorder_tags)
        except PolicyGapError as exc:
            log.error("reconcile.policy_gap", error=str(exc))
            return ReconcileOutcome.fatal(f"policy_gap: {exc}")

        warnings: list[str] = []
        fields = dict(mapped.fields)

        contact_id = await self._upsert_contact(order, log, warnings)
        if contact_id:
            fields[FIELD_CONTACT] = contact_id

        try:
            deal_id = await self._crm.create_deal(fields)
        except CRMError as exc:
            log.error("reconcile.deal_create_failed", error=str(exc))
            return ReconcileOutcome.fatal(f"deal_create_failed: {exc}")

        if not deal_id:
            log.error("reconcile.deal_create_failed", error="no deal id returned")
            return ReconcileOutcome.fatal("deal_create_failed: no deal id returned")

        log.info(
            "reconcile.deal_created",
            deal_id=deal_id,
            amount=str(fields[FIELD_AMOUNT]),
            stage=fields[FIELD_STAGE],
            row_count=len(mapped.product_rows),
        )

        if mapped.product_rows:
            await self._replace_rows(deal_id, mapped.product_rows, log, warnings)

        return ReconcileOutcome.completed(ReconcileAction.CREATED, deal_id, warnings)

    # ── order updated ───────────────────────────────────────────────────────

    async def on_order_updated(self, order: ShopifyOrder) -> ReconcileOutcome:
        """Bring an existing deal in line with the order; no-op if not yet synced."""
        log = self._log.bind(topic="orders/updated", order_id=order.external_id)

        try:
            deal = await self._locator.find(order.external_id)
        except CRMError as exc:
            log.error("reconcile.deal_lookup_failed", error=str(exc))
            return ReconcileOutcome.fatal(f"deal_lookup_failed: {exc}")

        if deal is None:
            log.info("reconcile.deal_not_found")
            return ReconcileOutcome.completed(ReconcileAction.NOT_FOUND)

        log = log.bind(deal_id=deal.id)
        try:
            fields = self.update_fields(order, deal)
            mapped = map_order_to_deal(order, self._preorder_tags)
        except PolicyGapError as exc:
            log.error("reconcile.policy_gap", error=str(exc))
            return ReconcileOutcome.fatal(f"policy_gap: {exc}", deal.id)

        action = ReconcileAction.UNCHANGED
        if fields:
            try:
                await self._crm.update_deal(deal.id, fields)
            except CRMError as exc:
                log.error("reconcile.deal_update_failed", error=str(exc))
                return ReconcileOutcome.fatal(f"deal_update_failed: {exc}", deal.id)
            action = ReconcileAction.UPDATED
            log.info("reconcile.deal_updated", fields=sorted(fields))
        else:
            log.info("reconcile.deal_unchanged")

        warnings: list[str] = []
        await self._replace_rows(deal.id, mapped.product_rows, log, warnings)
        return ReconcileOutcome.completed(action, deal.id, warnings)

    def update_fields(self, order: ShopifyOrder, deal: Deal) -> dict[str, Any]:
        """Minimal update for an existing deal; empty when nothing tracked changed.

        Category, amount and stage are diffed against the deal. When any of
        them changed, the payment status and every money custom field the
        order carries are sent along with them.
        """
        current_category = _deal_category(deal)
        category_id = category_for_tags(order.tags, self._preorder_tags)
        stage_id = stage_for(order.financial_status, category_id)
        payment_status = payment_status_for(order.financial_status)
        amount = resolve_amount(order) or ZERO

        changes: dict[str, Any] = {}
        if category_id != current_category:
            changes[FIELD_CATEGORY] = category_id
        if deal.opportunity is None or amount != deal.opportunity:
            changes[FIELD_AMOUNT] = amount
        if stage_id != deal.stage_id:
            changes[FIELD_STAGE] = stage_id

        if not changes:
            return {}

        changes.update(present_money_fields(order))
        changes[FIELD_PAYMENT_STATUS] = payment_status
        return changes

    # ── refund created ──────────────────────────────────────────────────────

    async def on_refund_created(self, refund: ShopifyRefund) -> ReconcileOutcome:
        """Recompute the deal from the refreshed order after a refund.

        Once the deal is located the event always completes: a refund already
        happened upstream, so fetch/update/row failures are only warnings.
        """
        order_id = refund.external_order_id
        log = self._log.bind(topic="refunds/create", order_id=order_id, refund_id=refund.id)

        try:
            deal = await self._locator.find(order_id)
        except CRMError as exc:
            log.error("reconcile.deal_lookup_failed", error=str(exc))
            return ReconcileOutcome.fatal(f"deal_lookup_failed: {exc}")

        if deal is None:
            log.info("reconcile.deal_not_found")
            return ReconcileOutcome.completed(ReconcileAction.NOT_FOUND)

        log = log.bind(deal_id=deal.id)
        order = await self._fetch_order(order_id, log)
        if order is None:
            return ReconcileOutcome.completed(
                ReconcileAction.SKIPPED, deal.id, ["order_fetch_failed"]
            )

        warnings: list[str] = []
        fields = self.refund_fields(order, refund)
        if is_full_refund(order, refund):
            try:
                fields[FIELD_STAGE] = refunded_stage_for(_deal_category(deal))
            except PolicyGapError as exc:
                log.error("reconcile.policy_gap", error=str(exc))
                warnings.append("policy_gap")

        try:
            await self._crm.update_deal(deal.id, fields)
            log.info("reconcile.refund_applied", fields=sorted(fields))
        except CRMError as exc:
            log.error("reconcile.refund_update_failed", error=str(exc))
            warnings.append("deal_update_failed")

        rows = build_product_rows(order.line_items)
        await self._replace_rows(deal.id, rows, log, warnings)
        return ReconcileOutcome.completed(ReconcileAction.UPDATED, deal.id, warnings)

    @staticmethod
    def refund_fields(order: ShopifyOrder, refund: ShopifyRefund) -> dict[str, Any]:
        """Money and payment-status fields after a refund.

        Does not consult the status policy: the refreshed order's financial
        status is ignored. Any positive refund, or one that leaves nothing
        remaining, sets the payment status to unpaid. The stage move for a
        full refund is added by the caller.
        """
        fields: dict[str, Any] = {FIELD_AMOUNT: resolve_amount(order) or ZERO}
        for field_code, resolver in MONEY_FIELD_RESOLVERS.items():
            fields[field_code] = resolver(order) or ZERO

        if is_full_refund(order, refund) or refund.refund_amount() > 0:
            fields[FIELD_PAYMENT_STATUS] = PAYMENT_UNPAID
        return fields

    # ── helpers ─────────────────────────────────────────────────────────────

    async def _upsert_contact(
        self, order: ShopifyOrder, log: Any, warnings: list[str]
    ) -> str | None:
        try:
            return await self._contacts.upsert(BuyerInfo.from_order(order))
        except Exception:
            log.warning("reconcile.contact_upsert_failed", exc_info=True)
            warnings.append("contact_upsert_failed")
            return None

    async def _replace_rows(
        self, deal_id: str, rows: list[ProductRow], log: Any, warnings: list[str]
    ) -> None:
        try:
            await self._crm.set_product_rows(deal_id, [row.to_crm() for row in rows])
        except CRMError as exc:
            log.error("reconcile.product_rows_failed", error=str(exc))
            warnings.append("product_rows_failed")
            return
        log.info("reconcile.product_rows_set", row_count=len(rows))

    async def _fetch_order(self, order_id: str, log: Any) -> ShopifyOrder | None:
        if self._storefront is None:
            log.error("reconcile.order_fetch_unavailable")
            return None
        try:
            order = await self._storefront.get_order(order_id)
        except StorefrontError as exc:
            log.error("reconcile.order_fetch_failed", error=str(exc))
            return None
        if order is None:
            log.error("reconcile.order_missing_upstream")
        return order


def _order_total(order: ShopifyOrder) -> Decimal:
    if order.total_price is not None:
        return order.total_price
    return order.current_total_price or ZERO


def _deal_category(deal: Deal) -> int:
    """The deal's pipeline; a deal without one is treated as stock."""
    return CATEGORY_STOCK if deal.category_id is None else deal.category_id


def is_full_refund(order: ShopifyOrder, refund: ShopifyRefund) -> bool:
    """True when the refund leaves nothing of the order total (remaining <= 0)."""
    return _order_total(order) - refund.refund_amount() <= 0
