# Overview: Pytest coverage for line and cart pricing math.

"""
Pricing Tests

Pure functions, no database. Amounts are cents, rates basis points.
"""

from decimal import Decimal

import pytest

from poscore.services.pricing_service import (
    LineInput,
    apply_rate,
    calculate_cart_totals,
    calculate_line_item,
    round_cents,
)
from poscore.validation import ValidationError


GCT = 1500


class TestLineItem:
    def test_plain_taxable_line(self):
        line = calculate_line_item(LineInput(quantity=Decimal("2"), unit_price_cents=50_000), GCT)

        assert line.line_subtotal_cents == 100_000
        assert line.discount_cents == 0
        assert line.line_total_before_tax_cents == 100_000
        assert line.tax_cents == 15_000
        assert line.line_total_cents == 115_000

    def test_exempt_line_has_no_tax(self):
        line = calculate_line_item(
            LineInput(quantity=Decimal("3"), unit_price_cents=1_999, is_tax_exempt=True), GCT
        )

        assert line.tax_rate_bps == 0
        assert line.tax_cents == 0
        assert line.line_total_cents == line.line_total_before_tax_cents == 5_997

    def test_percent_discount_rounds_half_up(self):
        # 10% of 1,005 = 100.5 -> 101
        line = calculate_line_item(
            LineInput(quantity=Decimal("1"), unit_price_cents=1_005, discount_type="percent", discount_value=1000),
            GCT,
        )

        assert line.discount_cents == 101
        assert line.line_total_before_tax_cents == 904
        assert line.line_total_cents == line.line_total_before_tax_cents + line.tax_cents

    def test_amount_discount(self):
        line = calculate_line_item(
            LineInput(quantity=Decimal("1"), unit_price_cents=10_000, discount_type="amount", discount_value=2_500),
            GCT,
        )

        assert line.discount_cents == 2_500
        assert line.tax_cents == 1_125

    def test_fractional_quantity(self):
        # 1.5 kg at 3.33 = 4.995 -> 5.00
        line = calculate_line_item(LineInput(quantity=Decimal("1.5"), unit_price_cents=333), 0)

        assert line.line_subtotal_cents == 500

    def test_discount_larger_than_line_rejected(self):
        with pytest.raises(ValidationError) as exc:
            calculate_line_item(
                LineInput(quantity=Decimal("1"), unit_price_cents=500, discount_type="amount", discount_value=600),
                GCT,
            )
        assert exc.value.details["base_cents"] == 500

    def test_full_line_discount_allowed(self):
        line = calculate_line_item(
            LineInput(quantity=Decimal("1"), unit_price_cents=500, discount_type="amount", discount_value=500),
            GCT,
        )
        assert line.line_total_cents == 0

    def test_invalid_inputs_rejected(self):
        with pytest.raises(ValidationError):
            calculate_line_item(LineInput(quantity=Decimal("0"), unit_price_cents=100), GCT)
        with pytest.raises(ValidationError):
            calculate_line_item(LineInput(quantity=Decimal("1"), unit_price_cents=-1), GCT)
        with pytest.raises(ValidationError):
            calculate_line_item(
                LineInput(quantity=Decimal("1"), unit_price_cents=100, discount_type="bogus", discount_value=5),
                GCT,
            )


class TestCartTotals:
    def test_order_discount_prorated_across_bases(self):
        items = [
            LineInput(quantity=Decimal("1"), unit_price_cents=80_000),
            LineInput(quantity=Decimal("1"), unit_price_cents=20_000, is_tax_exempt=True),
        ]

        totals = calculate_cart_totals(items, GCT, "percent", 1000)

        assert totals.subtotal_cents == 100_000
        assert totals.order_discount_cents == 10_000
        assert totals.taxable_cents == 72_000
        assert totals.exempt_cents == 18_000
        assert totals.tax_cents == 10_800
        assert totals.total_cents == 100_800

    def test_total_identity(self):
        items = [
            LineInput(quantity=Decimal("3"), unit_price_cents=1_333),
            LineInput(quantity=Decimal("0.75"), unit_price_cents=999, is_tax_exempt=True),
            LineInput(quantity=Decimal("2"), unit_price_cents=4_567, discount_type="percent", discount_value=1250),
        ]

        totals = calculate_cart_totals(items, GCT, "amount", 777)

        assert totals.total_cents == totals.subtotal_cents - totals.order_discount_cents + totals.tax_cents
        assert totals.taxable_cents + totals.exempt_cents == totals.subtotal_cents - totals.order_discount_cents
        assert totals.item_count == Decimal("5.75")
        assert len(totals.lines) == 3

    def test_full_order_discount_zeroes_everything(self):
        items = [LineInput(quantity=Decimal("2"), unit_price_cents=50_000)]

        totals = calculate_cart_totals(items, GCT, "percent", 10_000)

        assert totals.taxable_cents == 0
        assert totals.tax_cents == 0
        assert totals.total_cents == 0

    def test_empty_cart(self):
        totals = calculate_cart_totals([], GCT)

        assert totals.subtotal_cents == 0
        assert totals.total_cents == 0
        assert totals.item_count == Decimal("0")

    def test_order_discount_over_subtotal_rejected(self):
        items = [LineInput(quantity=Decimal("1"), unit_price_cents=1_000)]
        with pytest.raises(ValidationError):
            calculate_cart_totals(items, GCT, "amount", 1_001)

    def test_accepts_generator(self):
        items = (LineInput(quantity=Decimal("1"), unit_price_cents=p) for p in (100, 200))

        totals = calculate_cart_totals(items, 0)

        assert totals.subtotal_cents == 300
        assert totals.item_count == Decimal("2")


def test_rounding_helpers():
    assert round_cents(Decimal("0.5")) == 1
    assert round_cents(Decimal("1.49")) == 1
    assert apply_rate(1_000, 1500) == 150
    assert apply_rate(3, 1500) == 0  # 0.45
    assert apply_rate(7, 1500) == 1  # 1.05
