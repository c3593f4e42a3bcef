"""Order-to-deal field mapping and Bitrix field codes.

Defines:
- Bitrix deal field codes (join key, money custom fields, payment status).
- resolve_*(): ordered fallback resolution, one function per monetary quantity.
  Each returns None when the order carries none of the sources, so callers
  can tell "absent" from "zero".
- build_product_rows(): line items -> ProductRow set.
- map_order_to_deal(): order -> MappedDeal (deal fields + product rows).

Everything here is pure: no I/O, no logging, same input -> equal output.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.order_sync.deals.schemas import (
    LineItem,
    MappedDeal,
    MoneySet,
    ProductRow,
    ShopifyOrder,
)
from src.order_sync.deals.status_policy import (
    category_for_tags,
    payment_status_for,
    stage_for,
)


# ── Bitrix Field Codes ─────────────────────────────────────────────────────

FIELD_TITLE = "TITLE"
FIELD_CATEGORY = "CATEGORY_ID"
FIELD_STAGE = "STAGE_ID"
FIELD_AMOUNT = "OPPORTUNITY"
FIELD_CURRENCY = "CURRENCY_ID"
FIELD_CONTACT = "CONTACT_ID"
FIELD_ORDER_ID = "UF_SHOPIFY_ORDER_ID"  # join key
FIELD_DISCOUNT = "UF_SHOPIFY_TOTAL_DISCOUNT"
FIELD_TAX = "UF_SHOPIFY_TOTAL_TAX"
FIELD_SHIPPING = "UF_SHOPIFY_SHIPPING_PRICE"
FIELD_PAYMENT_STATUS = "UF_CRM_1739183959976"

DEAL_SELECT_FIELDS = ["ID", FIELD_AMOUNT, FIELD_STAGE, FIELD_CATEGORY]

DEFAULT_PREORDER_TAGS = ("pre-order", "preorder-product-added")

ZERO = Decimal("0")
CENT = Decimal("0.01")


# ── Fallback Resolution ────────────────────────────────────────────────────


def _shop_amount(money: MoneySet | None) -> Decimal | None:
    if money is None or money.shop_money is None:
        return None
    return money.shop_money.amount


def _first_present(*candidates: Callable[[], Decimal | None]) -> Decimal | None:
    for candidate in candidates:
        value = candidate()
        if value is not None:
            return value
    return None


def resolve_amount(order: ShopifyOrder) -> Decimal | None:
    """Net payable amount: current total (post refund/edit), then original gross total."""
    return _first_present(
        lambda: order.current_total_price,
        lambda: order.total_price,
    )


def resolve_discount(order: ShopifyOrder) -> Decimal | None:
    """Total discount: current money set, current flat field, legacy flat field."""
    return _first_present(
        lambda: _shop_amount(order.current_total_discounts_set),
        lambda: order.current_total_discounts,
        lambda: order.total_discounts,
    )


def resolve_tax(order: ShopifyOrder) -> Decimal | None:
    """Total tax: current money set, current flat field, legacy flat field."""
    return _first_present(
        lambda: _shop_amount(order.current_total_tax_set),
        lambda: order.current_total_tax,
        lambda: order.total_tax,
    )


def resolve_shipping(order: ShopifyOrder) -> Decimal | None:
    """Shipping: current money set, original money set, flat field, first shipping line."""
    return _first_present(
        lambda: _shop_amount(order.current_total_shipping_price_set),
        lambda: _shop_amount(order.total_shipping_price_set),
        lambda: order.shipping_price,
        lambda: order.shipping_lines[0].price if order.shipping_lines else None,
    )


MONEY_FIELD_RESOLVERS: dict[str, Callable[[ShopifyOrder], Decimal | None]] = {
    FIELD_DISCOUNT: resolve_discount,
    FIELD_TAX: resolve_tax,
    FIELD_SHIPPING: resolve_shipping,
}


def present_money_fields(order: ShopifyOrder) -> dict[str, Decimal]:
    """Money custom fields for which the order carries at least one source."""
    fields: dict[str, Decimal] = {}
    for field_code, resolver in MONEY_FIELD_RESOLVERS.items():
        value = resolver(order)
        if value is not None:
            fields[field_code] = value
    return fields


# ── Product Rows ───────────────────────────────────────────────────────────


def line_item_quantity(item: LineItem) -> int | None:
    """Post-edit/post-refund quantity when provided, else the ordered quantity."""
    if item.current_quantity is not None:
        return item.current_quantity
    return item.quantity


def line_item_discount(item: LineItem) -> Decimal:
    """Discount allocated to the whole line."""
    allocations = [a.amount for a in item.discount_allocations if a.amount is not None]
    if allocations:
        return sum(allocations, ZERO)
    return item.total_discount or ZERO


def _product_name(item: LineItem) -> str:
    if item.name:
        return item.name
    if item.title and item.variant_title:
        return f"{item.title} - {item.variant_title}"
    return item.title or item.sku or f"Product {item.product_id or item.id}"


def to_product_row(item: LineItem) -> ProductRow | None:
    """Project one line item; None for rows the policy omits.

    Omitted: non-positive or missing quantity (fully removed/refunded
    lines), missing or unparseable price.

    The CRM takes DISCOUNT_SUM per unit, so the line discount is divided by
    the quantity and rounded half-up to the cent. The row total can then
    differ from the line discount by up to half a cent per unit: 10.00 over
    3 units is 3.33 each, 9.99 in total. The remainder is not pushed onto
    one unit, as that would need a second row for the same line item.
    """
    quantity = line_item_quantity(item)
    if quantity is None or quantity <= 0 or item.price is None:
        return None
    per_unit_discount = (line_item_discount(item) / quantity).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    return ProductRow(
        product_name=_product_name(item),
        price=item.price,
        quantity=quantity,
        discount_sum=per_unit_discount,
    )


def build_product_rows(line_items: Iterable[LineItem]) -> list[ProductRow]:
    rows: list[ProductRow] = []
    for item in line_items:
        row = to_product_row(item)
        if row is not None:
            rows.append(row)
    return rows


# ── Order -> Deal ──────────────────────────────────────────────────────────


def map_order_to_deal(
    order: ShopifyOrder,
    preorder_tags: Iterable[str] = DEFAULT_PREORDER_TAGS,
) -> MappedDeal:
    """Map an order snapshot to deal fields and product rows.

    Absent money quantities default to 0 here; the update path uses
    present_money_fields() instead to send only what the order carries.

    Raises:
        PolicyGapError: If the order's financial status is not in the policy tables.
    """
    category_id = category_for_tags(order.tags, preorder_tags)

    fields: dict[str, Any] = {
        FIELD_TITLE: f"Shopify {order.display_name}",
        FIELD_ORDER_ID: order.external_id,
        FIELD_CATEGORY: category_id,
        FIELD_STAGE: stage_for(order.financial_status, category_id),
        FIELD_AMOUNT: resolve_amount(order) or ZERO,
        FIELD_DISCOUNT: resolve_discount(order) or ZERO,
        FIELD_TAX: resolve_tax(order) or ZERO,
        FIELD_SHIPPING: resolve_shipping(order) or ZERO,
        FIELD_PAYMENT_STATUS: payment_status_for(order.financial_status),
    }
    if order.currency:
        fields[FIELD_CURRENCY] = order.currency

    return MappedDeal(fields=fields, product_rows=build_product_rows(order.line_items))
