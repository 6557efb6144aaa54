# Overview: Whole-order and line-level refunds of completed orders.

"""
Refund Service

A completed order is reversed only through refund_order. Each call writes
one PosReturn covering some or all of the quantity still returnable on the
order's lines. Cash handed back is written to the drawer ledger of the
session the refund is processed in, and counts toward that session's
refund figures.

REFUND AMOUNTS:
    Every line owns a share of the order total (its line total, scaled by
    any order-level discount and rounded once per line; the last line takes
    the remainder). A partial quantity refunds share x qty / line qty,
    rounded half-up. Returning the last units of a line refunds whatever is
    left of its share, so the returns on an order always add up to its total.

ORDER STATE:
    completed -> completed  while units remain (event: partial_refund)
    completed -> refunded   when the last unit is returned; completed
                            payments are marked refunded at that point
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import OrderEvent, PosReturn, PosReturnItem
from ..validation import (
    ConflictError,
    NotFoundError,
    OrderStateError,
    SessionStateError,
    ValidationError,
    coerce_quantity,
    require_text,
)
from poscore.time_utils import utcnow
from .concurrency import run_with_retry
from .order_service import ORDER_STATUS_COMPLETED, ORDER_STATUS_REFUNDED, get_order, lock_order, transition_order
from .payment_service import PAYMENT_COMPLETED, PAYMENT_REFUNDED, TENDER_CASH, VALID_METHODS
from .pricing_service import round_cents
from .sequence_service import next_return_number
from .session_service import MOVEMENT_REFUND, SESSION_CLOSED, lock_session, record_movement_locked


REASON_CATEGORIES = {"defective", "wrong_item", "changed_mind", "price_adjustment", "other"}

CONDITION_RESELLABLE = "resellable"
RETURN_CONDITIONS = {CONDITION_RESELLABLE, "damaged", "defective"}


def _line_shares(order) -> dict[int, int]:
    """Split the order total over its lines in proportion to line totals."""
    items = list(order.items)
    line_sum = sum(item.line_total_cents for item in items)
    shares = {}
    if not items or line_sum == 0:
        return {item.id: 0 for item in items}

    allocated = 0
    for item in items[:-1]:
        share = round_cents(Decimal(order.total_cents) * item.line_total_cents / line_sum)
        shares[item.id] = share
        allocated += share
    shares[items[-1].id] = order.total_cents - allocated
    return shares


def _returned_so_far(order_id: int) -> dict[int, tuple[Decimal, int]]:
    """Per order line: quantity already returned and cents already refunded."""
    rows = (
        db.session.query(PosReturnItem.order_item_id, PosReturnItem.quantity, PosReturnItem.refund_cents)
        .join(PosReturn, PosReturnItem.return_id == PosReturn.id)
        .filter(PosReturn.order_id == order_id)
        .all()
    )
    returned = {}
    for order_item_id, quantity, refund_cents in rows:
        qty, cents = returned.get(order_item_id, (Decimal("0"), 0))
        returned[order_item_id] = (qty + Decimal(quantity), cents + refund_cents)
    return returned


def _requested_lines(order, items, returned) -> list[tuple]:
    """Resolve the request into (order item, quantity, condition) tuples."""
    by_id = {item.id: item for item in order.items}

    def remaining(item):
        return Decimal(item.quantity) - returned.get(item.id, (Decimal("0"), 0))[0]

    if items is None:
        return [
            (item, remaining(item), CONDITION_RESELLABLE)
            for item in order.items
            if remaining(item) > 0
        ]

    lines = []
    seen = set()
    for entry in items:
        order_item_id = entry.get("order_item_id")
        item = by_id.get(order_item_id)
        if item is None:
            raise ValidationError(
                f"Order item {order_item_id} is not on order {order.order_number}",
                details={"order_item_id": order_item_id},
            )
        if order_item_id in seen:
            raise ValidationError(f"Order item {order_item_id} is listed more than once")
        seen.add(order_item_id)

        quantity = coerce_quantity(entry.get("quantity"))
        available = remaining(item)
        if quantity > available:
            raise ValidationError(
                f"Cannot return {quantity} of {item.name}; {available} still returnable",
                details={"order_item_id": item.id, "quantity": str(quantity), "returnable": str(available)},
            )

        condition = entry.get("condition") or CONDITION_RESELLABLE
        if condition not in RETURN_CONDITIONS:
            raise ValidationError(f"condition must be one of {', '.join(sorted(RETURN_CONDITIONS))}")
        lines.append((item, quantity, condition))
    return lines


def refund_order(
    order_id: int,
    refund_method: str,
    reason: str,
    processed_by: str | None = None,
    session_id: int | None = None,
    reason_category: str = "other",
    items: list[dict] | None = None,
) -> PosReturn:
    """
    Refund a completed order, in full or line by line.

    Args:
        refund_method: Tender the money goes back on (cash, card_visa, ...)
        session_id: Session whose drawer pays out; required for cash
        items: [{"order_item_id", "quantity", "condition"}, ...]; None
            returns everything still returnable

    Raises:
        OrderStateError: order is not completed
        ConflictError: order is already fully refunded
        SessionStateError: cash refund without an open session
        ValidationError: unknown line, quantity above what is returnable
    """
    reason = require_text(reason, "reason")
    if refund_method not in VALID_METHODS:
        raise ValidationError(f"Unknown refund method: {refund_method}")
    if reason_category not in REASON_CATEGORIES:
        raise ValidationError(f"reason_category must be one of {', '.join(sorted(REASON_CATEGORIES))}")
    if refund_method == TENDER_CASH and session_id is None:
        raise SessionStateError("Cash refunds must be processed in an open session")
    if items is not None and not items:
        raise ValidationError("items must list at least one line to return")

    def _op():
        order = lock_order(order_id)
        if order.status == ORDER_STATUS_REFUNDED:
            raise ConflictError(f"Order {order.order_number} is already refunded", details={"order_id": order.id})
        if order.status != ORDER_STATUS_COMPLETED:
            raise OrderStateError(
                f"Only completed orders can be refunded; order {order.order_number} is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        session = None
        if session_id is not None:
            session = lock_session(session_id)
            if session.status == SESSION_CLOSED:
                raise SessionStateError(f"Session {session.id} is closed")

        returned = _returned_so_far(order.id)
        lines = _requested_lines(order, items, returned)
        if not lines:
            raise ConflictError(f"Order {order.order_number} has nothing left to return", details={"order_id": order.id})

        shares = _line_shares(order)
        return_items = []
        for item, quantity, condition in lines:
            prior_qty, prior_cents = returned.get(item.id, (Decimal("0"), 0))
            if prior_qty + quantity == Decimal(item.quantity):
                refund_cents = shares[item.id] - prior_cents
            else:
                refund_cents = round_cents(Decimal(shares[item.id]) * quantity / Decimal(item.quantity))
            returned[item.id] = (prior_qty + quantity, prior_cents + refund_cents)
            return_items.append(PosReturnItem(
                order_item_id=item.id,
                product_id=item.product_id,
                sku=item.sku,
                name=item.name,
                quantity=quantity,
                unit_price_cents=item.unit_price_cents,
                refund_cents=refund_cents,
                condition=condition,
                restock=condition == CONDITION_RESELLABLE,
            ))

        fully_returned = all(
            returned.get(item.id, (Decimal("0"), 0))[0] >= Decimal(item.quantity)
            for item in order.items
        )
        total_refund = sum(ri.refund_cents for ri in return_items)

        now = utcnow()
        pos_return = PosReturn(
            return_number=next_return_number(now),
            order_id=order.id,
            session_id=session.id if session else None,
            terminal_id=session.terminal_id if session else order.terminal_id,
            refund_method=refund_method,
            total_refund_cents=total_refund,
            is_full_refund=fully_returned,
            reason=reason,
            reason_category=reason_category,
            processed_by=processed_by,
            created_at=now,
            items=return_items,
        )
        db.session.add(pos_return)
        order.amount_refunded_cents = (order.amount_refunded_cents or 0) + total_refund
        order.refund_reason = reason

        if fully_returned:
            for payment in order.payments:
                if payment.status == PAYMENT_COMPLETED:
                    payment.status = PAYMENT_REFUNDED
                    payment.status_message = f"Refunded on {pos_return.return_number}"
            transition_order(order, ORDER_STATUS_REFUNDED, "refunded", reason=reason, actor=processed_by)
            order.refunded_at = now
        else:
            order.updated_at = now
            db.session.add(OrderEvent(
                order_id=order.id,
                event_type="partial_refund",
                from_status=order.status,
                to_status=order.status,
                reason=f"{pos_return.return_number}: {reason}",
                actor=processed_by,
                occurred_at=now,
            ))

        if refund_method == TENDER_CASH and total_refund:
            record_movement_locked(
                session,
                MOVEMENT_REFUND,
                total_refund,
                order_id=order.id,
                reason=f"Refund {pos_return.return_number}",
                performed_by=processed_by,
            )

        db.session.commit()
        current_app.logger.info(
            "Order %s %s on %s: %s cents via %s",
            order.order_number, "refunded" if fully_returned else "partially refunded",
            pos_return.return_number, total_refund, refund_method,
        )
        return pos_return

    return run_with_retry(_op)


def get_returnable_quantity(order_id: int, order_item_id: int) -> Decimal:
    """Units of one order line that have not been returned yet."""
    order = get_order(order_id)
    item = next((i for i in order.items if i.id == order_item_id), None)
    if item is None:
        raise NotFoundError(f"Order item {order_item_id} not found on order {order.order_number}")
    returned_qty = _returned_so_far(order.id).get(item.id, (Decimal("0"), 0))[0]
    return max(Decimal("0"), Decimal(item.quantity) - returned_qty)


def get_return(return_id: int) -> PosReturn:
    pos_return = db.session.get(PosReturn, return_id)
    if not pos_return:
        raise NotFoundError(f"Return {return_id} not found")
    return pos_return


def get_returns_for_order(order_id: int) -> list[PosReturn]:
    return db.session.query(PosReturn).filter_by(order_id=order_id).order_by(PosReturn.id).all()


def get_returns_for_session(session_id: int) -> list[PosReturn]:
    return db.session.query(PosReturn).filter_by(session_id=session_id).order_by(PosReturn.id).all()
