"""Versioned status policy -- financial status to CRM pipeline stage and payment-status code.

Pure lookup tables, no I/O:
- STAGE_TABLE: (financial status, category id) -> stage id
- PAYMENT_STATUS_TABLE: financial status -> payment-status enum id
- category_for_tags(): pipeline selection from order tags

Both tables are total over FinancialStatus and the two known categories.
Anything outside them raises PolicyGapError; a gap is a configuration
defect to be fixed in the table, never defaulted at runtime.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

POLICY_VERSION = "2025-02"

# Bitrix deal categories (pipelines)
CATEGORY_STOCK = 2
CATEGORY_PREORDER = 8
CATEGORIES = (CATEGORY_STOCK, CATEGORY_PREORDER)

# Enum ids of the "payment status" list field on deals
PAYMENT_PAID = "56"
PAYMENT_UNPAID = "58"
PAYMENT_PARTIALLY_PAID = "60"


class PolicyGapError(LookupError):
    """Raised when a status or category has no entry in the policy tables."""


class FinancialStatus(str, Enum):
    """Every ``financial_status`` value the storefront emits."""

    PENDING = "pending"
    AUTHORIZED = "authorized"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    VOIDED = "voided"
    EXPIRED = "expired"


# ── Policy Tables ──────────────────────────────────────────────────────────

STAGE_TABLE: dict[tuple[FinancialStatus, int], str] = {
    (FinancialStatus.PENDING, CATEGORY_STOCK): "C2:NEW",
    (FinancialStatus.AUTHORIZED, CATEGORY_STOCK): "C2:PREPARATION",
    (FinancialStatus.PARTIALLY_PAID, CATEGORY_STOCK): "C2:PREPAYMENT_INVOICE",
    (FinancialStatus.PAID, CATEGORY_STOCK): "C2:EXECUTING",
    (FinancialStatus.PARTIALLY_REFUNDED, CATEGORY_STOCK): "C2:EXECUTING",
    (FinancialStatus.REFUNDED, CATEGORY_STOCK): "C2:LOSE",
    (FinancialStatus.VOIDED, CATEGORY_STOCK): "C2:LOSE",
    (FinancialStatus.EXPIRED, CATEGORY_STOCK): "C2:LOSE",
    (FinancialStatus.PENDING, CATEGORY_PREORDER): "C8:NEW",
    (FinancialStatus.AUTHORIZED, CATEGORY_PREORDER): "C8:PREPARATION",
    (FinancialStatus.PARTIALLY_PAID, CATEGORY_PREORDER): "C8:PREPAYMENT_INVOICE",
    (FinancialStatus.PAID, CATEGORY_PREORDER): "C8:EXECUTING",
    (FinancialStatus.PARTIALLY_REFUNDED, CATEGORY_PREORDER): "C8:EXECUTING",
    (FinancialStatus.REFUNDED, CATEGORY_PREORDER): "C8:LOSE",
    (FinancialStatus.VOIDED, CATEGORY_PREORDER): "C8:LOSE",
    (FinancialStatus.EXPIRED, CATEGORY_PREORDER): "C8:LOSE",
}

# Partial refunds map to unpaid, same as the refund webhook path.
PAYMENT_STATUS_TABLE: dict[FinancialStatus, str] = {
    FinancialStatus.PENDING: PAYMENT_UNPAID,
    FinancialStatus.AUTHORIZED: PAYMENT_UNPAID,
    FinancialStatus.PARTIALLY_PAID: PAYMENT_PARTIALLY_PAID,
    FinancialStatus.PAID: PAYMENT_PAID,
    FinancialStatus.PARTIALLY_REFUNDED: PAYMENT_UNPAID,
    FinancialStatus.REFUNDED: PAYMENT_UNPAID,
    FinancialStatus.VOIDED: PAYMENT_UNPAID,
    FinancialStatus.EXPIRED: PAYMENT_UNPAID,
}


# ── Lookups ────────────────────────────────────────────────────────────────


def parse_financial_status(value: str | FinancialStatus | None) -> FinancialStatus:
    """Normalize a raw status token; a missing status counts as pending.

    Raises:
        PolicyGapError: If the token is not a known financial status.
    """
    if isinstance(value, FinancialStatus):
        return value
    if value is None or not str(value).strip():
        return FinancialStatus.PENDING
    try:
        return FinancialStatus(str(value).strip().lower())
    except ValueError:
        raise PolicyGapError(f"Unmapped financial status: {value!r}") from None


def stage_for(financial_status: str | FinancialStatus | None, category_id: int) -> str:
    """Pipeline stage id for a financial status within a category."""
    status = parse_financial_status(financial_status)
    try:
        return STAGE_TABLE[(status, category_id)]
    except KeyError:
        raise PolicyGapError(
            f"No stage for status {status.value!r} in category {category_id!r}"
        ) from None


def payment_status_for(financial_status: str | FinancialStatus | None) -> str:
    """Payment-status enum id for a financial status."""
    status = parse_financial_status(financial_status)
    try:
        return PAYMENT_STATUS_TABLE[status]
    except KeyError:
        raise PolicyGapError(f"No payment status for {status.value!r}") from None


def refunded_stage_for(category_id: int) -> str:
    return stage_for(FinancialStatus.REFUNDED, category_id)


# ── Category Selection ─────────────────────────────────────────────────────


def normalize_tags(tags: Iterable[str] | str | None) -> list[str]:
    """Accept tags as a collection or a comma-delimited string."""
    if tags is None:
        return []
    if isinstance(tags, str):
        candidates: Iterable[str] = tags.split(",")
    else:
        candidates = tags
    return [str(tag).strip() for tag in candidates if tag is not None and str(tag).strip()]


def category_for_tags(
    tags: Iterable[str] | str | None,
    preorder_tags: Iterable[str],
) -> int:
    """Preorder pipeline when any tag matches a preorder tag (case-insensitive)."""
    wanted = {tag.strip().casefold() for tag in preorder_tags if tag.strip()}
    for tag in normalize_tags(tags):
        if tag.casefold() in wanted:
            return CATEGORY_PREORDER
    return CATEGORY_STOCK
