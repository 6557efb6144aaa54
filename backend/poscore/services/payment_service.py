# Overview: Service-layer operations for the order payment ledger.

"""
Payment Ledger Service

================================================================================
PURPOSE: Apply tenders to an order and complete it when the balance is settled
================================================================================

PAYMENT STATES:
    pending -> completed | failed | cancelled
    completed -> refunded (through return_service) | cancelled (before the order completes)

RULES:
1. Cash completes immediately; change = max(0, tendered - amount).
2. Every other method starts pending and waits for a gateway confirmation
   (process_payment_complete) or a failure (fail_payment). Completed plus
   pending amounts never exceed the order total.
3. After every mutation the order aggregates are recomputed from the rows:
       amount_paid  = sum of completed amounts
       amount_due   = max(0, total - amount_paid)
       change_given = sum of change on completed payments
4. When amount_due reaches 0 the order completes in the same transaction,
   and the caller is told so through PaymentResult.order_completed.
5. Per-order row lock plus optimistic version_id, so a gateway callback and
   a cashier tender on the same order are serialized.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Order, Payment
from ..validation import (
    ConflictError,
    NotFoundError,
    OrderStateError,
    SessionStateError,
    ValidationError,
    coerce_cents,
    require_text,
)
from poscore.time_utils import utcnow
from .concurrency import run_with_retry
from .order_service import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING_PAYMENT,
    complete_order_locked,
    get_order,
    lock_order,
)
from .session_service import SESSION_CLOSED
from .settings_service import get_settings


PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_REFUNDED = "refunded"

TENDER_CASH = "cash"

PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "jam_dex": "JAM-DEX",
    "lynk_wallet": "Lynk Wallet",
    "wipay": "WiPay",
    "card_visa": "Visa",
    "card_mastercard": "Mastercard",
    "card_other": "Card",
    "bank_transfer": "Bank Transfer",
    "store_credit": "Store Credit",
    "other": "Other",
}

VALID_METHODS = set(PAYMENT_METHOD_LABELS)


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    order: Order
    order_completed: bool


def get_payment_method_label(method: str) -> str:
    return PAYMENT_METHOD_LABELS.get(method, method)


def recalculate_order_payments(order: Order) -> None:
    """Recompute paid/due/change from the payment rows. Does not commit."""
    completed = [p for p in order.payments if p.status == PAYMENT_COMPLETED]
    order.amount_paid_cents = sum(p.amount_cents for p in completed)
    order.amount_due_cents = max(0, order.total_cents - order.amount_paid_cents)
    order.change_given_cents = sum(p.change_given_cents or 0 for p in completed)


def _get_payment(order: Order, payment_id: int) -> Payment:
    payment = next((p for p in order.payments if p.id == payment_id), None)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found on order {order.order_number}")
    return payment


def _settle(order: Order, actor: str | None) -> bool:
    recalculate_order_payments(order)
    if order.amount_due_cents == 0 and order.status == ORDER_STATUS_PENDING_PAYMENT:
        return complete_order_locked(order, actor=actor)
    return False


def add_payment(
    order_id: int,
    method: str,
    amount_cents: int,
    amount_tendered_cents: int | None = None,
    reference: str | None = None,
    actor: str | None = None,
) -> PaymentResult:
    """
    Apply one tender to an order.

    Args:
        method: Payment method key (cash, card_visa, jam_dex, ...)
        amount_cents: Amount applied to the order; must not exceed amount due
            less what is already pending
        amount_tendered_cents: Cash handed over (cash only); defaults to amount
        reference: Gateway or slip reference

    Returns:
        PaymentResult with the new payment, the order, and whether this
        payment completed the order.
    """
    if method not in VALID_METHODS:
        raise ValidationError(f"Unknown payment method: {method}")
    amount_cents = coerce_cents(amount_cents, "amount_cents", allow_zero=False)
    if amount_tendered_cents is not None:
        amount_tendered_cents = coerce_cents(amount_tendered_cents, "amount_tendered_cents")
        if method != TENDER_CASH:
            raise ValidationError("amount_tendered_cents only applies to cash payments")

    def _op():
        order = lock_order(order_id)
        if order.status != ORDER_STATUS_PENDING_PAYMENT:
            raise OrderStateError(
                f"Order {order.order_number} is {order.status}; payments need a pending_payment order",
                details={"order_id": order.id, "status": order.status},
            )
        if order.session is not None and order.session.status == SESSION_CLOSED:
            raise SessionStateError(f"Session {order.session_id} is closed")
        pending_cents = sum(p.amount_cents for p in order.payments if p.status == PAYMENT_PENDING)
        open_cents = order.amount_due_cents - pending_cents
        if amount_cents > open_cents:
            raise ValidationError(
                f"Payment of {amount_cents} cents exceeds the open balance ({open_cents} cents; "
                f"{pending_cents} cents already pending)",
                details={
                    "amount_cents": amount_cents,
                    "amount_due_cents": order.amount_due_cents,
                    "pending_cents": pending_cents,
                },
            )

        now = utcnow()
        payment = Payment(
            order=order,
            method=method,
            amount_cents=amount_cents,
            currency=get_settings().currency,
            reference=reference,
            created_at=now,
        )
        if method == TENDER_CASH:
            tendered = amount_cents if amount_tendered_cents is None else amount_tendered_cents
            if tendered < amount_cents:
                raise ValidationError(
                    f"Cash tendered ({tendered} cents) is less than the amount applied ({amount_cents} cents)",
                )
            payment.amount_tendered_cents = tendered
            payment.change_given_cents = max(0, tendered - amount_cents)
            payment.status = PAYMENT_COMPLETED
            payment.processed_at = now
        else:
            payment.change_given_cents = 0
            payment.status = PAYMENT_PENDING
        db.session.add(payment)
        db.session.flush()

        completed = _settle(order, actor)
        db.session.commit()

        current_app.logger.info(
            "Payment %s (%s, %s cents) applied to order %s; due=%s",
            payment.id, method, amount_cents, order.order_number, order.amount_due_cents,
        )
        return PaymentResult(payment=payment, order=order, order_completed=completed)

    return run_with_retry(_op)


def process_payment_complete(
    order_id: int,
    payment_id: int,
    reference: str | None = None,
    actor: str | None = None,
) -> PaymentResult:
    """
    Gateway confirmation for a pending payment.

    Raises:
        ConflictError: the payment was already confirmed (duplicate callback),
            or confirming it would take the order past its total
    """
    def _op():
        order = lock_order(order_id)
        payment = _get_payment(order, payment_id)
        if payment.status == PAYMENT_COMPLETED:
            raise ConflictError(
                f"Payment {payment.id} is already completed",
                details={"payment_id": payment.id, "order_id": order.id},
            )
        if payment.status != PAYMENT_PENDING:
            raise OrderStateError(f"Payment {payment.id} is {payment.status} and cannot be completed")
        if order.status != ORDER_STATUS_PENDING_PAYMENT:
            raise OrderStateError(
                f"Order {order.order_number} is {order.status}; cannot confirm payments on it",
                details={"order_id": order.id, "status": order.status},
            )
        if payment.amount_cents > order.amount_due_cents:
            raise ConflictError(
                f"Payment {payment.id} of {payment.amount_cents} cents exceeds amount due "
                f"({order.amount_due_cents} cents) on order {order.order_number}",
                details={
                    "payment_id": payment.id,
                    "amount_cents": payment.amount_cents,
                    "amount_due_cents": order.amount_due_cents,
                },
            )

        payment.status = PAYMENT_COMPLETED
        payment.processed_at = utcnow()
        if reference:
            payment.reference = reference

        completed = _settle(order, actor)
        db.session.commit()
        return PaymentResult(payment=payment, order=order, order_completed=completed)

    return run_with_retry(_op)


def fail_payment(order_id: int, payment_id: int, message: str) -> Payment:
    """Gateway decline for a pending payment."""
    message = require_text(message, "message")

    def _op():
        order = lock_order(order_id)
        payment = _get_payment(order, payment_id)
        if payment.status != PAYMENT_PENDING:
            raise OrderStateError(f"Payment {payment.id} is {payment.status}; only pending payments can fail")

        payment.status = PAYMENT_FAILED
        payment.status_message = message
        payment.processed_at = utcnow()
        recalculate_order_payments(order)
        db.session.commit()
        current_app.logger.info("Payment %s on order %s failed: %s", payment.id, order.order_number, message)
        return payment

    return run_with_retry(_op)


def remove_payment(order_id: int, payment_id: int) -> Order:
    """
    Cancel a payment (the row is kept with status cancelled).

    A completed order is never re-opened here; reversal goes through
    refund_order.
    """
    def _op():
        order = lock_order(order_id)
        if order.status == ORDER_STATUS_COMPLETED:
            raise OrderStateError(
                f"Order {order.order_number} is completed; refund it instead of removing payments",
                details={"order_id": order.id},
            )
        payment = _get_payment(order, payment_id)
        if payment.status not in (PAYMENT_PENDING, PAYMENT_COMPLETED):
            raise OrderStateError(f"Payment {payment.id} is {payment.status} and cannot be removed")

        payment.status = PAYMENT_CANCELLED
        payment.status_message = "Removed"
        recalculate_order_payments(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_payment_summary(order_id: int) -> dict:
    order = get_order(order_id)
    tenders = {}
    for payment in order.payments:
        if payment.status != PAYMENT_COMPLETED:
            continue
        entry = tenders.setdefault(payment.method, {
            "method": payment.method,
            "label": get_payment_method_label(payment.method),
            "count": 0,
            "total_cents": 0,
        })
        entry["count"] += 1
        entry["total_cents"] += payment.amount_cents

    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "total_cents": order.total_cents,
        "amount_paid_cents": order.amount_paid_cents,
        "amount_due_cents": order.amount_due_cents,
        "change_given_cents": order.change_given_cents,
        "pending_count": sum(1 for p in order.payments if p.status == PAYMENT_PENDING),
        "tenders": [tenders[m] for m in sorted(tenders)],
        "payments": [p.to_dict() for p in order.payments],
    }
