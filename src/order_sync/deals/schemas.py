"""Pydantic schemas for order reconciliation -- storefront payloads, CRM records, outcomes.

Defines all structured types for the order-to-deal lifecycle:
- Storefront payloads: ShopMoney, MoneySet, LineItem, ShippingLine, Customer,
  Address, ShopifyOrder, RefundTransaction, ShopifyRefund
- CRM payloads: ProductRow, Deal, MappedDeal, BuyerInfo
- Reconciliation results: OutcomeKind, ReconcileAction, ReconcileOutcome

Storefront models ignore unknown keys and coerce unparseable money values to
None so the field mapper's fallback chains can skip to the next source.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a storefront/CRM amount into a Decimal, None when absent or invalid."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return None


# Lenient field types: unparseable input becomes None instead of a validation error
Amount = Annotated[Decimal | None, BeforeValidator(parse_decimal)]
Count = Annotated[int | None, BeforeValidator(_parse_int)]


class _StorefrontModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ── Storefront Money ────────────────────────────────────────────────────────


class ShopMoney(_StorefrontModel):
    """A single amount in one currency."""

    amount: Amount = None
    currency_code: str | None = None


class MoneySet(_StorefrontModel):
    """Shopify's structured money: shop currency plus presentment currency."""

    shop_money: ShopMoney | None = None
    presentment_money: ShopMoney | None = None


# ── Storefront Order ────────────────────────────────────────────────────────


class DiscountAllocation(_StorefrontModel):
    amount: Amount = None


class LineItem(_StorefrontModel):
    """One ordered product line."""

    id: int | str | None = None
    product_id: int | str | None = None
    variant_id: int | str | None = None
    title: str | None = None
    name: str | None = None
    variant_title: str | None = None
    sku: str | None = None
    quantity: Count = None
    current_quantity: Count = None
    price: Amount = None
    total_discount: Amount = None
    discount_allocations: list[DiscountAllocation] = Field(default_factory=list)


class ShippingLine(_StorefrontModel):
    title: str | None = None
    price: Amount = None
    discounted_price: Amount = None


class Customer(_StorefrontModel):
    id: int | str | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class Address(_StorefrontModel):
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    city: str | None = None
    country: str | None = None


class ShopifyOrder(_StorefrontModel):
    """Order snapshot as delivered by an ``orders/*`` webhook or the Admin API."""

    id: int | str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    currency: str | None = None

    total_price: Amount = None
    current_total_price: Amount = None
    subtotal_price: Amount = None
    total_discounts: Amount = None
    current_total_discounts: Amount = None
    current_total_discounts_set: MoneySet | None = None
    total_tax: Amount = None
    current_total_tax: Amount = None
    current_total_tax_set: MoneySet | None = None
    shipping_price: Amount = None
    total_shipping_price_set: MoneySet | None = None
    current_total_shipping_price_set: MoneySet | None = None

    financial_status: str | None = None
    tags: list[str] | str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    shipping_lines: list[ShippingLine] = Field(default_factory=list)

    customer: Customer | None = None
    billing_address: Address | None = None
    shipping_address: Address | None = None

    @property
    def external_id(self) -> str:
        """Join-key value stored on the CRM deal."""
        return str(self.id)

    @property
    def display_name(self) -> str:
        return self.name or f"#{self.id}"


# ── Storefront Refund ───────────────────────────────────────────────────────


class RefundTransaction(_StorefrontModel):
    kind: str | None = None
    status: str | None = None
    amount: Amount = None


class ShopifyRefund(_StorefrontModel):
    """Refund object delivered by a ``refunds/create`` webhook (not a full order)."""

    id: int | str | None = None
    order_id: int | str
    amount: Amount = None
    currency: str | None = None
    note: str | None = None
    transactions: list[RefundTransaction] = Field(default_factory=list)
    refund_line_items: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def external_order_id(self) -> str:
        return str(self.order_id)

    def refund_amount(self) -> Decimal:
        """Refunded amount: explicit ``amount``, else successful refund transactions, else 0."""
        if self.amount is not None:
            return self.amount
        total = Decimal("0")
        for txn in self.transactions:
            if txn.amount is None:
                continue
            if (txn.kind or "refund") == "refund" and (txn.status or "success") == "success":
                total += txn.amount
        return total


# ── CRM Records ─────────────────────────────────────────────────────────────


class ProductRow(BaseModel):
    """CRM line entry mirroring one order line item.

    Rows are free-text: PRODUCT_NAME is the only product reference sent.
    Storefront product ids are not catalog ids in the CRM, so none is kept.
    """

    model_config = ConfigDict(frozen=True)

    product_name: str
    price: Decimal
    quantity: int
    discount_sum: Decimal = Decimal("0")

    def to_crm(self) -> dict[str, Any]:
        """Serialize to a Bitrix ``crm.deal.productrows.set`` row."""
        return {
            "PRODUCT_NAME": self.product_name,
            "PRICE": self.price,
            "QUANTITY": self.quantity,
            "DISCOUNT_TYPE_ID": 1,
            "DISCOUNT_SUM": self.discount_sum,
        }


class Deal(BaseModel):
    """Existing CRM deal as returned by ``crm.deal.list``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(alias="ID")
    opportunity: Amount = Field(default=None, alias="OPPORTUNITY")
    stage_id: str | None = Field(default=None, alias="STAGE_ID")
    category_id: Count = Field(default=None, alias="CATEGORY_ID")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return value if value is None else str(value)


class MappedDeal(BaseModel):
    """Field mapper output: deal fields plus the full product-row set."""

    model_config = ConfigDict(frozen=True)

    fields: dict[str, Any]
    product_rows: list[ProductRow] = Field(default_factory=list)


class BuyerInfo(BaseModel):
    """Buyer contact details extracted from an order for the contact upserter."""

    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @classmethod
    def from_order(cls, order: ShopifyOrder) -> BuyerInfo:
        customer = order.customer or Customer()
        address = order.billing_address or order.shipping_address or Address()
        return cls(
            email=customer.email or order.email,
            phone=customer.phone or order.phone or address.phone,
            first_name=customer.first_name or address.first_name,
            last_name=customer.last_name or address.last_name,
        )

    def has_identity(self) -> bool:
        return bool(self.email or self.phone)


# ── Reconciliation Outcomes ─────────────────────────────────────────────────


class OutcomeKind(str, Enum):
    """Tagged result of reconciling one inbound event."""

    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


class ReconcileAction(str, Enum):
    """What the engine did to the CRM for an event."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    FAILED = "failed"


class ReconcileOutcome(BaseModel):
    """Result of one reconciliation; callers branch on ``kind``."""

    kind: OutcomeKind
    action: ReconcileAction
    deal_id: str | None = None
    reason: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.kind is not OutcomeKind.FATAL

    @classmethod
    def completed(
        cls,
        action: ReconcileAction,
        deal_id: str | None = None,
        warnings: list[str] | None = None,
    ) -> ReconcileOutcome:
        """Success, or recoverable when any absorbed failure was recorded."""
        warnings = list(warnings or [])
        return cls(
            kind=OutcomeKind.RECOVERABLE if warnings else OutcomeKind.SUCCESS,
            action=action,
            deal_id=deal_id,
            reason=warnings[0] if warnings else None,
            warnings=warnings,
        )

    @classmethod
    def fatal(cls, reason: str, deal_id: str | None = None) -> ReconcileOutcome:
        return cls(
            kind=OutcomeKind.FATAL,
            action=ReconcileAction.FAILED,
            deal_id=deal_id,
            reason=reason,
        )
