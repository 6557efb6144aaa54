# Overview: Service-layer operations for the terminal's active cart.

"""
Active cart management.

One cart per terminal, persisted so a terminal restart does not lose the
sale in progress. Every mutation re-prices the affected line through
pricing_service so an invalid discount is rejected when it is entered, not
at checkout.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Cart, CartItem
from ..validation import (
    DISCOUNT_PERCENT,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_quantity,
    require_text,
    validate_discount,
)
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import CartTotals, calculate_cart_totals, calculate_line_item
from .settings_service import get_settings
from .terminal_service import get_terminal


CART_ITEM_FIELDS = {
    "product_id",
    "sku",
    "name",
    "description",
    "quantity",
    "uom_code",
    "unit_price_cents",
    "discount_type",
    "discount_value",
    "is_tax_exempt",
    "notes",
}


def _get_or_create_cart(terminal_id: int, *, lock: bool = False) -> Cart:
    query = db.session.query(Cart).filter_by(terminal_id=terminal_id)
    cart = (lock_for_update(query) if lock else query).first()
    if cart:
        return cart

    get_terminal(terminal_id)
    cart = Cart(terminal_id=terminal_id, customer_name=get_settings().default_customer_name)
    db.session.add(cart)
    db.session.flush()
    return cart


def _check_discount_cap(discount_type: str | None, discount_value: int | None) -> None:
    if discount_type != DISCOUNT_PERCENT or not discount_value:
        return
    cap = get_settings().max_discount_percent_bps
    if discount_value > cap:
        raise ValidationError(
            f"Discount of {discount_value / 100:.2f}% exceeds the allowed maximum of {cap / 100:.2f}%"
        )


def reset_cart(cart: Cart) -> None:
    """Empty a cart in place. Does not commit."""
    cart.items.clear()  # delete-orphan removes the rows
    cart.customer_id = None
    cart.customer_name = get_settings().default_customer_name
    cart.order_discount_type = None
    cart.order_discount_value = None
    cart.order_discount_reason = None
    cart.notes = None
    cart.resumed_order_id = None


def get_active_cart(terminal_id: int) -> Cart:
    """Return the terminal's cart, creating an empty one on first use."""
    def _op():
        cart = _get_or_create_cart(terminal_id)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def add_to_cart(
    terminal_id: int,
    *,
    name: str,
    quantity,
    unit_price_cents: int,
    product_id: str | None = None,
    sku: str | None = None,
    description: str | None = None,
    uom_code: str = "EA",
    discount_type: str | None = None,
    discount_value: int | None = None,
    is_tax_exempt: bool = False,
    notes: str | None = None,
) -> CartItem:
    """Append a line to the terminal's cart."""
    name = require_text(name, "name")
    quantity = coerce_quantity(quantity)
    unit_price_cents = coerce_cents(unit_price_cents, "unit_price_cents")
    discount_type, discount_value = validate_discount(discount_type, discount_value, "line discount")

    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        _check_discount_cap(discount_type, discount_value)

        position = max((item.position for item in cart.items), default=0) + 1
        item = CartItem(
            position=position,
            product_id=product_id,
            sku=sku,
            name=name,
            description=description,
            quantity=quantity,
            uom_code=uom_code or "EA",
            unit_price_cents=unit_price_cents,
            discount_type=discount_type,
            discount_value=discount_value,
            is_tax_exempt=bool(is_tax_exempt),
            notes=notes,
        )
        # Reject a discount larger than the line before anything is written
        calculate_line_item(item, get_settings().tax_rate_bps)

        cart.items.append(item)
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_cart_item(terminal_id: int, item_id: int, **updates) -> CartItem:
    """Apply a partial update to one cart line."""
    unknown = set(updates) - CART_ITEM_FIELDS
    if unknown:
        raise ValidationError(f"Unknown cart item fields: {', '.join(sorted(unknown))}")

    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        item = next((i for i in cart.items if i.id == item_id), None)
        if not item:
            raise NotFoundError(f"Cart item {item_id} not found on terminal {terminal_id}")

        if "name" in updates:
            item.name = require_text(updates["name"], "name")
        if "quantity" in updates:
            item.quantity = coerce_quantity(updates["quantity"])
        if "unit_price_cents" in updates:
            item.unit_price_cents = coerce_cents(updates["unit_price_cents"], "unit_price_cents")
        if "discount_type" in updates or "discount_value" in updates:
            d_type, d_value = validate_discount(
                updates.get("discount_type", item.discount_type),
                updates.get("discount_value", item.discount_value),
                "line discount",
            )
            _check_discount_cap(d_type, d_value)
            item.discount_type = d_type
            item.discount_value = d_value
        for key in ("product_id", "sku", "description", "uom_code", "notes"):
            if key in updates:
                setattr(item, key, updates[key])
        if "is_tax_exempt" in updates:
            item.is_tax_exempt = bool(updates["is_tax_exempt"])

        calculate_line_item(item, get_settings().tax_rate_bps)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_from_cart(terminal_id: int, item_id: int) -> Cart:
    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        item = next((i for i in cart.items if i.id == item_id), None)
        if not item:
            raise NotFoundError(f"Cart item {item_id} not found on terminal {terminal_id}")
        cart.items.remove(item)
        db.session.delete(item)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def clear_cart(terminal_id: int, actor: str | None = None) -> Cart:
    """
    Empty the cart.

    A cart that was reconstructed from a held order is being abandoned:
    the order goes back to held so it is not lost in draft.
    """
    from .order_service import return_abandoned_order_to_hold

    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        if cart.resumed_order_id is not None:
            return_abandoned_order_to_hold(cart.resumed_order_id, actor=actor)
        reset_cart(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def set_cart_customer(terminal_id: int, customer_id: str | None, customer_name: str | None) -> Cart:
    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        cart.customer_id = customer_id
        cart.customer_name = (customer_name or "").strip() or get_settings().default_customer_name
        db.session.commit()
        return cart

    return run_with_retry(_op)


def set_cart_discount(
    terminal_id: int,
    discount_type: str | None,
    discount_value: int | None,
    reason: str | None = None,
) -> Cart:
    """Set (or clear, with type None) the order-level discount."""
    discount_type, discount_value = validate_discount(discount_type, discount_value, "order discount")

    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        _check_discount_cap(discount_type, discount_value)
        calculate_cart_totals(cart.items, get_settings().tax_rate_bps, discount_type, discount_value)

        cart.order_discount_type = discount_type
        cart.order_discount_value = discount_value
        cart.order_discount_reason = reason if discount_type else None
        db.session.commit()
        return cart

    return run_with_retry(_op)


def set_cart_notes(terminal_id: int, notes: str | None) -> Cart:
    def _op():
        cart = _get_or_create_cart(terminal_id, lock=True)
        cart.notes = notes
        db.session.commit()
        return cart

    return run_with_retry(_op)


def calculate_active_cart_totals(terminal_id: int) -> CartTotals:
    """Preview totals for the terminal's cart. Writes nothing."""
    cart = db.session.query(Cart).filter_by(terminal_id=terminal_id).first()
    settings = get_settings()
    if not cart:
        return calculate_cart_totals([], settings.tax_rate_bps)
    return calculate_cart_totals(
        cart.items,
        settings.tax_rate_bps,
        cart.order_discount_type,
        cart.order_discount_value,
    )
