"""Unit tests for the financial-status policy tables and category selection."""

from __future__ import annotations

import pytest

from src.order_sync.deals.status_policy import (
    CATEGORIES,
    CATEGORY_PREORDER,
    CATEGORY_STOCK,
    PAYMENT_PAID,
    PAYMENT_PARTIALLY_PAID,
    PAYMENT_UNPAID,
    PAYMENT_STATUS_TABLE,
    STAGE_TABLE,
    FinancialStatus,
    PolicyGapError,
    category_for_tags,
    normalize_tags,
    parse_financial_status,
    payment_status_for,
    refunded_stage_for,
    stage_for,
)

PREORDER_TAGS = ("pre-order", "preorder-product-added")


# ── Table Totality ─────────────────────────────────────────────────────────


class TestPolicyTables:
    def test_stage_table_covers_every_status_and_category(self):
        for status in FinancialStatus:
            for category in CATEGORIES:
                assert (status, category) in STAGE_TABLE

    def test_payment_table_covers_every_status(self):
        assert set(PAYMENT_STATUS_TABLE) == set(FinancialStatus)

    @pytest.mark.parametrize("status", list(FinancialStatus))
    def test_stages_stay_inside_their_pipeline(self, status):
        assert stage_for(status, CATEGORY_STOCK).startswith("C2:")
        assert stage_for(status, CATEGORY_PREORDER).startswith("C8:")


# ── Lookups ────────────────────────────────────────────────────────────────


class TestLookups:
    def test_paid_maps_to_paid_code_and_executing_stage(self):
        assert payment_status_for("paid") == PAYMENT_PAID
        assert stage_for("paid", CATEGORY_STOCK) == "C2:EXECUTING"

    def test_partially_paid_has_its_own_code(self):
        assert payment_status_for("partially_paid") == PAYMENT_PARTIALLY_PAID

    def test_partially_refunded_counts_as_unpaid(self):
        assert payment_status_for("partially_refunded") == PAYMENT_UNPAID

    def test_status_token_is_normalized(self):
        assert parse_financial_status("  PAID ") is FinancialStatus.PAID

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_status_counts_as_pending(self, raw):
        assert parse_financial_status(raw) is FinancialStatus.PENDING
        assert stage_for(raw, CATEGORY_STOCK) == "C2:NEW"
        assert payment_status_for(raw) == PAYMENT_UNPAID

    def test_unknown_status_is_a_policy_gap(self):
        with pytest.raises(PolicyGapError, match="chargeback"):
            stage_for("chargeback", CATEGORY_STOCK)
        with pytest.raises(PolicyGapError):
            payment_status_for("chargeback")

    def test_unknown_category_is_a_policy_gap(self):
        with pytest.raises(PolicyGapError):
            stage_for("paid", 99)

    def test_refunded_stage_follows_category(self):
        assert refunded_stage_for(CATEGORY_STOCK) == "C2:LOSE"
        assert refunded_stage_for(CATEGORY_PREORDER) == "C8:LOSE"


# ── Category Selection ─────────────────────────────────────────────────────


class TestCategorySelection:
    @pytest.mark.parametrize(
        "tags",
        [
            ["Pre-Order"],
            "pre-order",
            "vip, PREORDER-PRODUCT-ADDED",
            ["gift", " pre-order "],
        ],
    )
    def test_preorder_tags_match_case_insensitively(self, tags):
        assert category_for_tags(tags, PREORDER_TAGS) == CATEGORY_PREORDER

    @pytest.mark.parametrize("tags", [None, "", [], "vip, gift", ["preorder"]])
    def test_other_tags_select_stock(self, tags):
        assert category_for_tags(tags, PREORDER_TAGS) == CATEGORY_STOCK

    def test_normalize_tags_drops_blanks(self):
        assert normalize_tags(" a, ,b ,") == ["a", "b"]
        assert normalize_tags(["x", "", "  "]) == ["x"]
