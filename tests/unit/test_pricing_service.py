"""Unit tests for the pricing functions."""

from decimal import Decimal

import pytest
from bson import ObjectId

from src.api.middleware.error_handler import BusinessRuleError
from src.services.pricing_service import (
    PricedLine,
    compute_discount,
    compute_totals,
    price_lines,
    round_money,
    subtotal_of,
)

ROSES = str(ObjectId())
VASE = str(ObjectId())
PRICES = {ROSES: Decimal("50.00"), VASE: Decimal("25.00")}


def _lines(*pairs: tuple[str, int]) -> list[PricedLine]:
    return price_lines([{"product": pid, "quantity": qty} for pid, qty in pairs], PRICES)


class TestRoundMoney:
    """Tests for round_money."""

    def test_rounds_half_up(self) -> None:
        """Test that exact halves round away from zero."""
        assert round_money("2.675") == Decimal("2.68")
        assert round_money("2.665") == Decimal("2.67")

    def test_float_artifacts_do_not_leak(self) -> None:
        """Test that binary float noise is ignored."""
        assert round_money(0.1 + 0.2) == Decimal("0.30")

    def test_none_is_zero(self) -> None:
        """Test that a missing value counts as zero."""
        assert round_money(None) == Decimal("0.00")


class TestPriceLines:
    """Tests for price_lines."""

    def test_computes_line_totals_in_request_order(self) -> None:
        """Test that each line is priced at unit price times quantity."""
        lines = _lines((ROSES, 2), (VASE, 1))

        assert [line.product_id for line in lines] == [ROSES, VASE]
        assert lines[0].line_total == Decimal("100.00")
        assert lines[1].line_total == Decimal("25.00")

    def test_missing_quantity_defaults_to_one(self) -> None:
        """Test that a line without a quantity counts once."""
        lines = price_lines([{"product": ROSES}], PRICES)

        assert lines[0].quantity == 1
        assert lines[0].line_total == Decimal("50.00")

    def test_unknown_product_is_rejected(self) -> None:
        """Test that a product absent from the catalog fails pricing."""
        unknown = str(ObjectId())

        with pytest.raises(BusinessRuleError) as exc_info:
            price_lines([{"product": unknown, "quantity": 1}], PRICES)

        assert exc_info.value.message == f"Invalid product in items: {unknown}"

    def test_zero_priced_product_is_rejected(self) -> None:
        """Test that a zero price is treated like an unknown product."""
        free = str(ObjectId())

        with pytest.raises(BusinessRuleError):
            price_lines([{"product": free, "quantity": 1}], {free: Decimal("0")})


class TestComputeDiscount:
    """Tests for compute_discount."""

    def test_percentage_discount(self) -> None:
        """Test that a percentage coupon takes its share of the subtotal."""
        coupon = {"type": "percentage", "value": 10}
        assert compute_discount(coupon, Decimal("125.00")) == Decimal("12.50")

    def test_percentage_discount_is_capped(self) -> None:
        """Test that maxDiscount caps a percentage discount."""
        coupon = {"type": "percentage", "value": 10, "maxDiscount": 20}
        assert compute_discount(coupon, Decimal("300.00")) == Decimal("20.00")

    def test_zero_cap_means_uncapped(self) -> None:
        """Test that a zero maxDiscount does not cap."""
        coupon = {"type": "percentage", "value": 10, "maxDiscount": 0}
        assert compute_discount(coupon, Decimal("300.00")) == Decimal("30.00")

    def test_fixed_discount(self) -> None:
        """Test that a fixed coupon takes its value as is."""
        coupon = {"type": "fixed", "value": 15}
        assert compute_discount(coupon, Decimal("125.00")) == Decimal("15.00")

    def test_fixed_discount_is_capped_at_subtotal(self) -> None:
        """Test that a fixed coupon cannot discount more than the cart."""
        coupon = {"type": "fixed", "value": 50}
        assert compute_discount(coupon, Decimal("25.00")) == Decimal("25.00")

    def test_percentage_over_100_is_capped_at_subtotal(self) -> None:
        """Test that a percentage above 100 discounts the whole cart only."""
        coupon = {"type": "percentage", "value": 150}
        assert compute_discount(coupon, Decimal("80.00")) == Decimal("80.00")

    def test_no_coupon(self) -> None:
        """Test that no coupon means no discount."""
        assert compute_discount(None, Decimal("125.00")) == Decimal("0.00")


class TestComputeTotals:
    """Tests for compute_totals."""

    def test_totals_with_percentage_coupon_and_tax(self) -> None:
        """Test the full pricing pipeline for a typical cart."""
        lines = _lines((ROSES, 2), (VASE, 1))

        totals = compute_totals(lines, {"type": "percentage", "value": 10, "maxDiscount": 20}, 5)

        assert totals.subtotal == Decimal("125.00")
        assert totals.discount == Decimal("12.50")
        assert totals.tax == Decimal("5.00")
        assert totals.grand_total == Decimal("117.50")
        assert totals.total_items == 3

    def test_grand_total_matches_its_parts(self) -> None:
        """Test that grand total equals subtotal minus discount plus tax."""
        lines = _lines((ROSES, 3))

        totals = compute_totals(lines, {"type": "fixed", "value": 7.35}, "1.205")

        assert totals.grand_total == round_money(totals.subtotal - totals.discount + totals.tax)

    def test_oversized_coupon_keeps_totals_consistent(self) -> None:
        """Test that a coupon worth more than the cart zeroes it consistently."""
        lines = _lines((VASE, 1))

        totals = compute_totals(lines, {"type": "fixed", "value": 50})

        assert totals.subtotal == Decimal("25.00")
        assert totals.discount == Decimal("25.00")
        assert totals.grand_total == Decimal("0.00")
        assert totals.grand_total == totals.subtotal - totals.discount + totals.tax

    def test_negative_tax_counts_as_zero(self) -> None:
        """Test that a negative tax amount is ignored."""
        totals = compute_totals(_lines((VASE, 1)), None, -3)

        assert totals.tax == Decimal("0.00")
        assert totals.grand_total == Decimal("25.00")

    def test_is_deterministic(self) -> None:
        """Test that pricing the same cart twice yields the same figures."""
        coupon = {"type": "percentage", "value": 12.5}
        first = compute_totals(_lines((ROSES, 1), (VASE, 3)), coupon, 2.5)
        second = compute_totals(_lines((ROSES, 1), (VASE, 3)), coupon, 2.5)

        assert first == second
        assert subtotal_of(_lines((ROSES, 1), (VASE, 3))) == first.subtotal
