"""Tests for bill totals."""
from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from backend.app.services.errors import InvalidBillAmount
from backend.app.services.pricing import calculate_bill_totals, round_currency
from backend.tests.conftest import line

ITEM = uuid.uuid4()


# ─── TestRounding ────────────────────────────────────────────────────────────


class TestRounding:
    def test_half_rounds_up(self) -> None:
        assert round_currency(Decimal("2.5")) == Decimal("3")
        assert round_currency(Decimal("2.49")) == Decimal("2")

    def test_custom_quantum(self) -> None:
        assert round_currency(Decimal("2.345"), Decimal("0.01")) == Decimal("2.35")


# ─── TestTotals ──────────────────────────────────────────────────────────────


class TestTotals:
    def test_tax_is_rounded_to_whole_units(self) -> None:
        """10 x 3 at 18% tax -> subtotal 30, tax 5.4 -> 5, total 35."""
        totals = calculate_bill_totals([line(ITEM, 3, "10")], Decimal("18"))
        assert totals.subtotal == Decimal("30")
        assert totals.tax_amount == Decimal("5")
        assert totals.total_amount == Decimal("35")

    def test_subtotal_rounded_before_tax(self) -> None:
        """12.4 x 1 -> subtotal 12; tax at 50% is computed on 12, not 12.4."""
        totals = calculate_bill_totals([line(ITEM, 1, "12.4")], Decimal("50"))
        assert totals.subtotal == Decimal("12")
        assert totals.tax_amount == Decimal("6")
        assert totals.total_amount == Decimal("18")

    def test_discount_is_subtracted(self) -> None:
        totals = calculate_bill_totals(
            [line(ITEM, 2, "50")], Decimal("0"), Decimal("15")
        )
        assert totals.total_amount == Decimal("85")
        assert totals.discount_amount == Decimal("15")

    def test_lines_keep_cart_order_and_exact_totals(self) -> None:
        other = uuid.uuid4()
        totals = calculate_bill_totals(
            [line(ITEM, 3, "1.25"), line(other, 1, "7")], Decimal("0")
        )
        assert [ln.item_id for ln in totals.lines] == [ITEM, other]
        assert totals.lines[0].total_price == Decimal("3.7500")

    def test_total_matches_components(self) -> None:
        totals = calculate_bill_totals(
            [line(ITEM, 7, "13.35")], Decimal("12"), Decimal("4")
        )
        assert totals.total_amount == totals.subtotal + totals.tax_amount - totals.discount_amount
        assert totals.total_amount > 0


# ─── TestRejections ──────────────────────────────────────────────────────────


class TestRejections:
    def test_discount_above_subtotal_rejected(self) -> None:
        """Tax 0 and discount larger than subtotal -> total <= 0."""
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([line(ITEM, 1, "20")], Decimal("0"), Decimal("25"))

    def test_zero_total_rejected(self) -> None:
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([line(ITEM, 1, "20")], Decimal("0"), Decimal("20"))

    def test_free_items_rejected(self) -> None:
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([line(ITEM, 2, "0")], Decimal("18"))

    def test_tax_out_of_range_rejected(self) -> None:
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([line(ITEM, 1, "20")], Decimal("101"))

    def test_negative_discount_rejected(self) -> None:
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([line(ITEM, 1, "20")], Decimal("0"), Decimal("-1"))

    def test_empty_cart_rejected(self) -> None:
        with pytest.raises(InvalidBillAmount):
            calculate_bill_totals([], Decimal("0"))
