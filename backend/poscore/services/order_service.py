# Overview: Service-layer operations for orders; order factory and lifecycle state machine.

"""
Order Factory and Lifecycle Service

================================================================================
PURPOSE: Turn the terminal's cart into a priced order and govern its states
================================================================================

STATE MACHINE:
    draft -> pending_payment | held | voided
    pending_payment -> completed | held | voided
    held -> draft | voided
    completed -> refunded   (only through return_service.refund_order)

    completed, voided, refunded are terminal for every other operation.

RULES:
1. Totals are computed once, when the cart is finalized, and frozen on the
   order and its items.
2. Completing is idempotent: a second completion changes nothing.
3. Any transition out of a terminal state raises OrderStateError; nothing
   is silently ignored.
4. Every transition appends an OrderEvent (audit trail).
5. Resuming a held order reuses the same order id: the order moves to draft,
   the terminal's cart is rebuilt from it, and finalizing that cart re-prices
   the same row. Abandoning the cart puts the order back on hold.
================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Cart, CartItem, Order, OrderEvent, OrderItem, PosSession, SessionOrderLink
from ..validation import (
    ConflictError,
    NotFoundError,
    OrderStateError,
    SessionStateError,
    ValidationError,
    require_text,
)
from poscore.time_utils import utcnow
from .cart_service import reset_cart
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import calculate_cart_totals
from .sequence_service import next_order_number
from .session_service import SESSION_CLOSED, SESSION_OPEN, lock_session, record_movement_locked
from .settings_service import get_settings
from .terminal_service import lock_terminal


ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_PENDING_PAYMENT = "pending_payment"
ORDER_STATUS_HELD = "held"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_VOIDED = "voided"
ORDER_STATUS_REFUNDED = "refunded"

VALID_STATUSES = {
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_HELD,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_VOIDED,
    ORDER_STATUS_REFUNDED,
}

TERMINAL_STATUSES = {ORDER_STATUS_COMPLETED, ORDER_STATUS_VOIDED, ORDER_STATUS_REFUNDED}

VALID_TRANSITIONS = {
    ORDER_STATUS_DRAFT: {ORDER_STATUS_PENDING_PAYMENT, ORDER_STATUS_HELD, ORDER_STATUS_VOIDED},
    ORDER_STATUS_PENDING_PAYMENT: {ORDER_STATUS_COMPLETED, ORDER_STATUS_HELD, ORDER_STATUS_VOIDED},
    ORDER_STATUS_HELD: {ORDER_STATUS_DRAFT, ORDER_STATUS_VOIDED},
    ORDER_STATUS_COMPLETED: {ORDER_STATUS_REFUNDED},
    ORDER_STATUS_VOIDED: set(),
    ORDER_STATUS_REFUNDED: set(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    """Check a transition against the order state machine."""
    if from_status not in VALID_STATUSES or to_status not in VALID_STATUSES:
        raise ValidationError(f"Unknown order status transition {from_status!r} -> {to_status!r}")
    return to_status in VALID_TRANSITIONS[from_status]


def transition_order(
    order: Order,
    to_status: str,
    event_type: str,
    *,
    reason: str | None = None,
    actor: str | None = None,
) -> None:
    """Move an order to a new status and record it. Does not commit."""
    from_status = order.status
    if not can_transition(from_status, to_status):
        if from_status in TERMINAL_STATUSES:
            raise OrderStateError(
                f"Order {order.order_number} is {from_status}; it cannot move to {to_status}",
                details={"order_id": order.id, "status": from_status},
            )
        raise OrderStateError(
            f"Cannot move order {order.order_number} from {from_status} to {to_status}",
            details={"order_id": order.id, "status": from_status},
        )

    order.status = to_status
    order.updated_at = utcnow()
    db.session.add(OrderEvent(
        order=order,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        actor=actor,
        occurred_at=order.updated_at,
    ))


def lock_order(order_id: int) -> Order:
    """Per-order lock used by every mutating order or payment operation."""
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# ORDER FACTORY
# =============================================================================

def _resolve_checkout_session(terminal, session_id: int | None) -> PosSession | None:
    settings = get_settings()
    if session_id is None:
        session_id = terminal.current_session_id

    if session_id is None:
        if settings.require_open_session:
            raise SessionStateError(f"Terminal {terminal.terminal_code} has no open session")
        return None

    session = db.session.get(PosSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    if session.terminal_id != terminal.id:
        raise ValidationError(f"Session {session_id} does not belong to terminal {terminal.terminal_code}")
    if session.status != SESSION_OPEN:
        raise SessionStateError(f"Session {session_id} is {session.status}; new orders need an open session")
    return session


def _order_items_from_cart(cart: Cart, lines) -> list[OrderItem]:
    items = []
    for index, (cart_item, line) in enumerate(zip(cart.items, lines), start=1):
        items.append(OrderItem(
            line_number=index,
            product_id=cart_item.product_id,
            sku=cart_item.sku,
            name=cart_item.name,
            description=cart_item.description,
            quantity=cart_item.quantity,
            uom_code=cart_item.uom_code,
            unit_price_cents=cart_item.unit_price_cents,
            line_subtotal_cents=line.line_subtotal_cents,
            discount_type=cart_item.discount_type,
            discount_value=cart_item.discount_value,
            discount_cents=line.discount_cents,
            line_total_before_tax_cents=line.line_total_before_tax_cents,
            is_tax_exempt=line.is_tax_exempt,
            tax_rate_bps=line.tax_rate_bps,
            tax_cents=line.tax_cents,
            line_total_cents=line.line_total_cents,
            notes=cart_item.notes,
        ))
    return items


def _create_order_locked(terminal_id: int, session_id: int | None, created_by: str | None) -> Order:
    terminal = lock_terminal(terminal_id)
    settings = get_settings()

    cart = lock_for_update(db.session.query(Cart).filter_by(terminal_id=terminal_id)).first()
    if not cart or not cart.items:
        raise ValidationError("Cannot create an order from an empty cart")

    session = _resolve_checkout_session(terminal, session_id)
    totals = calculate_cart_totals(
        cart.items,
        settings.tax_rate_bps,
        cart.order_discount_type,
        cart.order_discount_value,
    )
    now = utcnow()

    if cart.resumed_order_id is not None:
        order = lock_order(cart.resumed_order_id)
        if order.status != ORDER_STATUS_DRAFT:
            raise OrderStateError(
                f"Resumed order {order.order_number} is {order.status}, expected draft",
                details={"order_id": order.id},
            )
        order.items.clear()
        db.session.flush()
        event_type, from_status = "repriced", ORDER_STATUS_DRAFT
    else:
        order = Order(
            order_number=next_order_number(settings.order_prefix, now),
            status=ORDER_STATUS_PENDING_PAYMENT,
            created_by=created_by,
            created_at=now,
        )
        db.session.add(order)
        event_type, from_status = "created", None

    order.session_id = session.id if session else None
    order.terminal_id = terminal.id
    order.customer_id = cart.customer_id
    order.customer_name = cart.customer_name or settings.default_customer_name
    order.notes = cart.notes
    order.item_count = totals.item_count
    order.subtotal_cents = totals.subtotal_cents
    order.order_discount_type = cart.order_discount_type
    order.order_discount_value = cart.order_discount_value
    order.order_discount_cents = totals.order_discount_cents
    order.order_discount_reason = cart.order_discount_reason
    order.taxable_cents = totals.taxable_cents
    order.exempt_cents = totals.exempt_cents
    order.tax_rate_bps = totals.tax_rate_bps
    order.tax_cents = totals.tax_cents
    order.total_cents = totals.total_cents
    order.amount_paid_cents = 0
    order.amount_due_cents = totals.total_cents
    order.change_given_cents = 0
    order.items = _order_items_from_cart(cart, totals.lines)

    if from_status is None:
        db.session.add(OrderEvent(
            order=order,
            event_type=event_type,
            from_status=None,
            to_status=ORDER_STATUS_PENDING_PAYMENT,
            actor=created_by,
            occurred_at=now,
        ))
    else:
        transition_order(order, ORDER_STATUS_PENDING_PAYMENT, event_type, actor=created_by)

    reset_cart(cart)
    db.session.flush()
    return order


def create_order_from_cart(
    terminal_id: int,
    session_id: int | None = None,
    created_by: str | None = None,
) -> Order:
    """
    Finalize the terminal's cart into an order awaiting payment.

    Prices the cart once, freezes the result, assigns the next order number
    and clears the cart, all in one transaction.

    Raises:
        ValidationError: empty cart or invalid discount
        SessionStateError: no open session where one is required
    """
    def _op():
        order = _create_order_locked(terminal_id, session_id, created_by)
        db.session.commit()
        current_app.logger.info(
            "Order %s created on terminal %s: total_cents=%s",
            order.order_number, terminal_id, order.total_cents,
        )
        return order

    return run_with_retry(_op)


def hold_cart(
    terminal_id: int,
    reason: str | None = None,
    session_id: int | None = None,
    created_by: str | None = None,
) -> Order:
    """Park the current cart as a held order (create + hold in one step)."""
    def _op():
        order = _create_order_locked(terminal_id, session_id, created_by)
        order.held_reason = reason
        transition_order(order, ORDER_STATUS_HELD, "held", reason=reason, actor=created_by)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def _release_resumed_cart(order: Order) -> None:
    cart = lock_for_update(db.session.query(Cart).filter_by(resumed_order_id=order.id)).first()
    if cart:
        reset_cart(cart)


def void_order(order_id: int, reason: str, actor: str | None = None) -> Order:
    """
    Void an order from any non-terminal state.

    Pending payments are cancelled. An order that already holds completed
    payments must have them removed (tender handed back) first.
    """
    from .payment_service import PAYMENT_CANCELLED, PAYMENT_COMPLETED, PAYMENT_PENDING

    reason = require_text(reason, "reason")

    def _op():
        order = lock_order(order_id)
        if order.status in TERMINAL_STATUSES:
            raise OrderStateError(
                f"Order {order.order_number} is {order.status} and cannot be voided",
                details={"order_id": order.id, "status": order.status},
            )
        if any(p.status == PAYMENT_COMPLETED for p in order.payments):
            raise OrderStateError(
                f"Order {order.order_number} has completed payments; remove them before voiding",
                details={"order_id": order.id},
            )

        now = utcnow()
        for payment in order.payments:
            if payment.status == PAYMENT_PENDING:
                payment.status = PAYMENT_CANCELLED
                payment.status_message = "Order voided"
                payment.updated_at = now

        if order.status == ORDER_STATUS_DRAFT:
            _release_resumed_cart(order)

        transition_order(order, ORDER_STATUS_VOIDED, "voided", reason=reason, actor=actor)
        order.void_reason = reason
        order.voided_at = now
        db.session.commit()
        current_app.logger.info("Order %s voided: %s", order.order_number, reason)
        return order

    return run_with_retry(_op)


def hold_order(order_id: int, reason: str | None = None, actor: str | None = None) -> Order:
    """
    Suspend an unpaid order.

    Legal from pending_payment or draft. A draft order being held again
    discards the edits in the cart that was rebuilt from it.
    """
    from .payment_service import PAYMENT_COMPLETED, PAYMENT_PENDING

    def _op():
        order = lock_order(order_id)
        if order.status not in (ORDER_STATUS_PENDING_PAYMENT, ORDER_STATUS_DRAFT):
            raise OrderStateError(
                f"Only pending or draft orders can be held; order {order.order_number} is {order.status}",
                details={"order_id": order.id, "status": order.status},
            )
        if any(p.status in (PAYMENT_COMPLETED, PAYMENT_PENDING) for p in order.payments):
            raise OrderStateError(
                f"Order {order.order_number} has payments recorded and cannot be held",
                details={"order_id": order.id},
            )

        if order.status == ORDER_STATUS_DRAFT:
            _release_resumed_cart(order)

        transition_order(order, ORDER_STATUS_HELD, "held", reason=reason, actor=actor)
        order.held_reason = reason
        db.session.commit()
        return order

    return run_with_retry(_op)


def resume_held_order(order_id: int, terminal_id: int, actor: str | None = None) -> Cart:
    """
    Rebuild an editable cart from a held order and move the order to draft.

    The same order id is kept; finalizing the cart re-prices it.

    Raises:
        ConflictError: the terminal's cart already holds a sale in progress
    """
    def _op():
        order = lock_order(order_id)
        if order.status != ORDER_STATUS_HELD:
            raise OrderStateError(
                f"Order {order.order_number} is {order.status}; only held orders can be resumed",
                details={"order_id": order.id, "status": order.status},
            )

        lock_terminal(terminal_id)
        cart = lock_for_update(db.session.query(Cart).filter_by(terminal_id=terminal_id)).first()
        if cart is None:
            cart = Cart(terminal_id=terminal_id)
            db.session.add(cart)
        elif cart.items or cart.resumed_order_id is not None:
            raise ConflictError(
                "Terminal cart is not empty; finish or clear it before resuming a held order",
                details={"terminal_id": terminal_id},
            )

        cart.customer_id = order.customer_id
        cart.customer_name = order.customer_name
        cart.order_discount_type = order.order_discount_type
        cart.order_discount_value = order.order_discount_value
        cart.order_discount_reason = order.order_discount_reason
        cart.notes = order.notes
        cart.resumed_order_id = order.id
        cart.items = [
            CartItem(
                position=item.line_number,
                product_id=item.product_id,
                sku=item.sku,
                name=item.name,
                description=item.description,
                quantity=item.quantity,
                uom_code=item.uom_code,
                unit_price_cents=item.unit_price_cents,
                discount_type=item.discount_type,
                discount_value=item.discount_value,
                is_tax_exempt=item.is_tax_exempt,
                notes=item.notes,
            )
            for item in order.items
        ]

        transition_order(order, ORDER_STATUS_DRAFT, "resumed", actor=actor)
        order.held_reason = None
        db.session.commit()
        return cart

    return run_with_retry(_op)


def return_abandoned_order_to_hold(order_id: int, actor: str | None = None) -> None:
    """Put a resumed (draft) order back on hold. Runs in the caller's transaction."""
    order = lock_order(order_id)
    if order.status != ORDER_STATUS_DRAFT:
        return
    transition_order(order, ORDER_STATUS_HELD, "held", reason="Resume abandoned", actor=actor)
    order.held_reason = "Resume abandoned"


def complete_order_locked(order: Order, actor: str | None = None) -> bool:
    """
    Complete a locked order inside the caller's transaction.

    Returns True when this call performed the completion, False when the
    order was already completed (idempotent repeat).
    """
    from .payment_service import PAYMENT_COMPLETED, TENDER_CASH

    if order.status == ORDER_STATUS_COMPLETED:
        return False
    if order.status != ORDER_STATUS_PENDING_PAYMENT:
        raise OrderStateError(
            f"Order {order.order_number} is {order.status} and cannot be completed",
            details={"order_id": order.id, "status": order.status},
        )
    if order.amount_due_cents > 0:
        raise OrderStateError(
            f"Order {order.order_number} still has {order.amount_due_cents} cents due",
            details={"order_id": order.id, "amount_due_cents": order.amount_due_cents},
        )

    transition_order(order, ORDER_STATUS_COMPLETED, "completed", actor=actor)
    order.completed_at = order.updated_at

    if order.session_id is not None:
        session = lock_session(order.session_id)
        if session.status == SESSION_CLOSED:
            raise SessionStateError(
                f"Session {session.id} is closed; order {order.order_number} cannot be linked to it",
            )
        linked = db.session.query(SessionOrderLink).filter_by(
            session_id=session.id,
            order_id=order.id,
        ).first()
        if not linked:
            db.session.add(SessionOrderLink(session_id=session.id, order_id=order.id, linked_at=order.completed_at))

        cash_taken = sum(
            p.amount_cents for p in order.payments
            if p.method == TENDER_CASH and p.status == PAYMENT_COMPLETED
        )
        if cash_taken:
            record_movement_locked(
                session,
                "sale",
                cash_taken,
                order_id=order.id,
                reason=f"Sale {order.order_number}",
                performed_by=actor or session.cashier_name,
            )
    return True


def complete_order(order_id: int, actor: str | None = None) -> Order:
    """
    Complete an order whose balance is settled.

    Idempotent: completing an already-completed order returns it unchanged,
    so duplicate gateway callbacks cannot double-link or double-count.
    """
    def _op():
        order = lock_order(order_id)
        if complete_order_locked(order, actor=actor):
            db.session.commit()
            current_app.logger.info("Order %s completed", order.order_number)
        return order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise NotFoundError(f"Order {order_number} not found")
    return order


def get_held_orders(terminal_id: int | None = None) -> list[Order]:
    query = db.session.query(Order).filter_by(status=ORDER_STATUS_HELD)
    if terminal_id is not None:
        query = query.filter_by(terminal_id=terminal_id)
    return query.order_by(Order.created_at, Order.id).all()


def get_orders_by_session(session_id: int) -> list[Order]:
    return db.session.query(Order).filter_by(
        session_id=session_id
    ).order_by(Order.created_at, Order.id).all()


def get_recent_orders(limit: int = 50) -> list[Order]:
    return db.session.query(Order).order_by(
        Order.created_at.desc(), Order.id.desc()
    ).limit(limit).all()


def get_order_history(order_id: int) -> list[OrderEvent]:
    get_order(order_id)
    return db.session.query(OrderEvent).filter_by(
        order_id=order_id
    ).order_by(OrderEvent.id).all()
