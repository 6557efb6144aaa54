# Overview: Pure pricing math for cart lines and cart/order totals.

"""
Line-item and cart pricing.

ROUNDING DISCIPLINE:
- Money is integer cents; rates and percent discounts are basis points.
- Every persisted field is rounded half-up to a whole cent, once, per line.
  Later steps only combine already-rounded cents, so
  line_total == line_total_before_tax + tax holds exactly.
- Order aggregates sum the rounded line values. The order-level discount is
  prorated across the taxable/exempt bases with an unrounded ratio and the
  taxable base is rounded once; the exempt base takes the remainder.

These functions are synchronous and side-effect free. They never touch the
database and can be reused for previews and for order creation alike.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Protocol

from ..validation import (
    DISCOUNT_AMOUNT,
    DISCOUNT_PERCENT,
    FULL_PERCENT_BPS,
    ValidationError,
    coerce_cents,
    coerce_quantity,
    validate_discount,
)


_BPS = Decimal(FULL_PERCENT_BPS)


class PricedLineInput(Protocol):
    quantity: Decimal
    unit_price_cents: int
    discount_type: str | None
    discount_value: int | None
    is_tax_exempt: bool


@dataclass(frozen=True)
class LineInput:
    """Plain line description, used where no CartItem row exists."""
    quantity: Decimal
    unit_price_cents: int
    discount_type: str | None = None
    discount_value: int | None = None
    is_tax_exempt: bool = False


@dataclass(frozen=True)
class LineTotals:
    line_subtotal_cents: int
    discount_cents: int
    line_total_before_tax_cents: int
    tax_rate_bps: int
    tax_cents: int
    line_total_cents: int
    is_tax_exempt: bool


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int
    order_discount_cents: int
    taxable_cents: int
    exempt_cents: int
    tax_rate_bps: int
    tax_cents: int
    total_cents: int
    item_count: Decimal
    lines: list[LineTotals] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "order_discount_cents": self.order_discount_cents,
            "taxable_cents": self.taxable_cents,
            "exempt_cents": self.exempt_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "item_count": str(self.item_count),
        }


def round_cents(value: Decimal) -> int:
    """Round half-up to a whole cent."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """amount x rate, rounded half-up (used for tax and percent discounts)."""
    return round_cents(Decimal(amount_cents) * Decimal(rate_bps) / _BPS)


def _discount_cents(base_cents: int, discount_type: str | None, discount_value: int | None, label: str) -> int:
    discount_type, discount_value = validate_discount(discount_type, discount_value, label)
    if discount_type == DISCOUNT_PERCENT:
        amount = apply_rate(base_cents, discount_value)
    elif discount_type == DISCOUNT_AMOUNT:
        amount = discount_value
    else:
        amount = 0

    if amount > base_cents:
        raise ValidationError(
            f"{label} ({amount} cents) exceeds the amount it applies to ({base_cents} cents)",
            details={"discount_cents": amount, "base_cents": base_cents},
        )
    return amount


def calculate_line_item(item: PricedLineInput, tax_rate_bps: int) -> LineTotals:
    """
    Price one line, in fixed order:

    1. subtotal = quantity x unit price
    2. discount (percent of subtotal, or flat amount); may not exceed subtotal
    3. total before tax = subtotal - discount
    4. effective rate = 0 when exempt
    5. tax = total before tax x rate; line total = total before tax + tax
    """
    quantity = coerce_quantity(item.quantity)
    unit_price = coerce_cents(item.unit_price_cents, "unit_price_cents")
    tax_rate_bps = coerce_cents(tax_rate_bps, "tax_rate_bps")

    line_subtotal = round_cents(quantity * Decimal(unit_price))
    discount = _discount_cents(line_subtotal, item.discount_type, item.discount_value, "line discount")
    before_tax = line_subtotal - discount

    effective_rate = 0 if item.is_tax_exempt else tax_rate_bps
    tax = apply_rate(before_tax, effective_rate)

    return LineTotals(
        line_subtotal_cents=line_subtotal,
        discount_cents=discount,
        line_total_before_tax_cents=before_tax,
        tax_rate_bps=effective_rate,
        tax_cents=tax,
        line_total_cents=before_tax + tax,
        is_tax_exempt=bool(item.is_tax_exempt),
    )


def calculate_cart_totals(
    items: Iterable[PricedLineInput],
    tax_rate_bps: int,
    order_discount_type: str | None = None,
    order_discount_value: int | None = None,
) -> CartTotals:
    """
    Aggregate priced lines and prorate the order-level discount.

    ratio = (subtotal - order discount) / subtotal, or 1 for an empty
    subtotal. Tax is recomputed from the discounted taxable base, never from
    the raw subtotal.
    """
    items = list(items)
    lines = [calculate_line_item(item, tax_rate_bps) for item in items]

    subtotal = sum(line.line_total_before_tax_cents for line in lines)
    taxable_raw = sum(line.line_total_before_tax_cents for line in lines if not line.is_tax_exempt)
    item_count = sum((coerce_quantity(item.quantity) for item in items), Decimal("0"))

    order_discount = _discount_cents(subtotal, order_discount_type, order_discount_value, "order discount")
    discounted_subtotal = subtotal - order_discount

    if subtotal > 0:
        ratio = Decimal(discounted_subtotal) / Decimal(subtotal)
    else:
        ratio = Decimal(1)

    taxable = round_cents(Decimal(taxable_raw) * ratio)
    exempt = discounted_subtotal - taxable
    tax = apply_rate(taxable, tax_rate_bps)

    return CartTotals(
        subtotal_cents=subtotal,
        order_discount_cents=order_discount,
        taxable_cents=taxable,
        exempt_cents=exempt,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax,
        total_cents=discounted_subtotal + tax,
        item_count=item_count,
        lines=lines,
    )
