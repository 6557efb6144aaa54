# Overview: Service-layer operations for cashier sessions and the cash drawer ledger.

"""
Session Management Service

================================================================================
PURPOSE: Own a cashier's shift on a terminal from float to count
================================================================================

CASH DRAWER LEDGER:
    Every change to expected cash is a CashMovement row. expected_cash_cents
    is maintained incrementally by record_movement_locked and nothing else;
    recompute_expected_cash replays the ledger and must agree with it.

    opening_float   base of expected cash (written once, at open)
    sale            +amount
    payout          +amount (signed; negative when money leaves the drawer)
    adjustment      +amount (signed)
    refund          -abs(amount)
    drop            -abs(amount)
    closing_count   no effect

SESSION STATES:
    open <-> suspended -> closed
    A closed session is immutable: no movements, no order links.
    A suspended session still accepts system movements (sale, refund) from
    orders already in flight, but not manual ones (payout, drop, adjustment).

RECONCILIATION:
    variance = closing count - expected cash. A non-zero variance is
    persisted and logged as a warning. It never blocks the close.
================================================================================
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app

from ..extensions import db
from ..models import CashCount, CashMovement, Order, Payment, PosReturn, PosSession, SessionOrderLink
from ..validation import (
    ConflictError,
    NotFoundError,
    SessionStateError,
    StateTransitionError,
    ValidationError,
    coerce_cents,
    require_text,
)
from poscore.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .terminal_service import lock_terminal


SESSION_OPEN = "open"
SESSION_SUSPENDED = "suspended"
SESSION_CLOSED = "closed"

MOVEMENT_OPENING_FLOAT = "opening_float"
MOVEMENT_SALE = "sale"
MOVEMENT_REFUND = "refund"
MOVEMENT_PAYOUT = "payout"
MOVEMENT_DROP = "drop"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_CLOSING_COUNT = "closing_count"

MOVEMENT_TYPES = {
    MOVEMENT_OPENING_FLOAT,
    MOVEMENT_SALE,
    MOVEMENT_REFUND,
    MOVEMENT_PAYOUT,
    MOVEMENT_DROP,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_CLOSING_COUNT,
}

# Written by open/close only
LIFECYCLE_MOVEMENTS = {MOVEMENT_OPENING_FLOAT, MOVEMENT_CLOSING_COUNT}
MANUAL_MOVEMENTS = {MOVEMENT_PAYOUT, MOVEMENT_DROP, MOVEMENT_ADJUSTMENT}

COUNT_OPENING = "OPENING"
COUNT_MID_DAY = "MID_DAY"
COUNT_CLOSING = "CLOSING"
COUNT_TYPES = {COUNT_OPENING, COUNT_MID_DAY, COUNT_CLOSING}


def movement_delta(movement_type: str, amount_cents: int) -> int:
    """Effect of one ledger entry on expected cash."""
    if movement_type in (MOVEMENT_SALE, MOVEMENT_PAYOUT, MOVEMENT_ADJUSTMENT):
        return amount_cents
    if movement_type in (MOVEMENT_REFUND, MOVEMENT_DROP):
        return -abs(amount_cents)
    if movement_type in LIFECYCLE_MOVEMENTS:
        return 0
    raise ValidationError(f"Unknown cash movement type: {movement_type}")


def count_status(variance_cents: int) -> str:
    if variance_cents == 0:
        return "BALANCED"
    return "OVER" if variance_cents > 0 else "SHORT"


def lock_session(session_id: int) -> PosSession:
    session = lock_for_update(db.session.query(PosSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def record_movement_locked(
    session: PosSession,
    movement_type: str,
    amount_cents: int,
    *,
    order_id: int | None = None,
    reason: str | None = None,
    performed_by: str | None = None,
) -> CashMovement:
    """
    Append a ledger entry and apply its delta. Runs in the caller's transaction.

    The session must already be locked by the caller.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown cash movement type: {movement_type}")
    if session.status == SESSION_CLOSED:
        raise SessionStateError(f"Session {session.id} is closed; no further cash movements allowed")
    if session.status == SESSION_SUSPENDED and movement_type in MANUAL_MOVEMENTS:
        raise SessionStateError(f"Session {session.id} is suspended; resume it before recording a {movement_type}")

    movement = CashMovement(
        session=session,
        movement_type=movement_type,
        amount_cents=amount_cents,
        order_id=order_id,
        reason=reason,
        performed_by=performed_by,
        performed_at=utcnow(),
    )
    db.session.add(movement)
    session.expected_cash_cents += movement_delta(movement_type, amount_cents)
    session.updated_at = movement.performed_at
    return movement


# =============================================================================
# OPEN / MOVEMENTS
# =============================================================================

def open_session(
    terminal_id: int,
    cashier_name: str,
    opening_cash_cents: int,
    cashier_id: str | None = None,
) -> PosSession:
    """
    Open a session on a terminal with a counted float.

    Raises:
        ConflictError: terminal already has an open or suspended session
        StateTransitionError: terminal is inactive
    """
    cashier_name = require_text(cashier_name, "cashier_name")
    opening_cash_cents = coerce_cents(opening_cash_cents, "opening_cash_cents")

    def _op():
        terminal = lock_terminal(terminal_id)
        if not terminal.is_active:
            raise StateTransitionError(f"Terminal {terminal.terminal_code} is inactive")
        if terminal.current_session_id is not None:
            raise ConflictError(
                f"Terminal {terminal.terminal_code} already has session {terminal.current_session_id} open",
                details={"terminal_id": terminal.id, "session_id": terminal.current_session_id},
            )

        now = utcnow()
        session = PosSession(
            terminal_id=terminal.id,
            cashier_id=cashier_id,
            cashier_name=cashier_name,
            status=SESSION_OPEN,
            opening_cash_cents=opening_cash_cents,
            expected_cash_cents=opening_cash_cents,
            payment_breakdown=[],
            opened_at=now,
        )
        db.session.add(session)
        db.session.add(CashMovement(
            session=session,
            movement_type=MOVEMENT_OPENING_FLOAT,
            amount_cents=opening_cash_cents,
            reason="Opening float",
            performed_by=cashier_name,
            performed_at=now,
        ))
        db.session.add(CashCount(
            session=session,
            count_type=COUNT_OPENING,
            expected_cents=opening_cash_cents,
            actual_cents=opening_cash_cents,
            variance_cents=0,
            status="BALANCED",
            counted_by=cashier_name,
            counted_at=now,
        ))
        db.session.flush()

        terminal.current_session_id = session.id
        db.session.commit()
        current_app.logger.info(
            "Session %s opened on terminal %s by %s with float %s cents",
            session.id, terminal.terminal_code, cashier_name, opening_cash_cents,
        )
        return session

    return run_with_retry(_op)


def add_cash_movement(
    session_id: int,
    movement_type: str,
    amount_cents: int,
    reason: str | None = None,
    order_id: int | None = None,
    performed_by: str | None = None,
) -> CashMovement:
    """
    Record a cash drawer movement (sale, refund, payout, drop, adjustment).

    Payouts and adjustments are signed; refunds and drops always reduce
    expected cash regardless of the sign passed.
    """
    if movement_type in LIFECYCLE_MOVEMENTS:
        raise ValidationError(f"{movement_type} movements are written by open/close only")
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown cash movement type: {movement_type}")
    amount_cents = coerce_cents(amount_cents, "amount_cents", allow_zero=False, allow_negative=True)

    def _op():
        session = lock_session(session_id)
        movement = record_movement_locked(
            session,
            movement_type,
            amount_cents,
            order_id=order_id,
            reason=reason,
            performed_by=performed_by,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def recompute_expected_cash(session_id: int) -> int:
    """Replay the whole movement ledger from the opening float."""
    session = get_session(session_id)
    movements = db.session.query(CashMovement).filter_by(session_id=session_id).order_by(CashMovement.id).all()
    return session.opening_cash_cents + sum(
        movement_delta(m.movement_type, m.amount_cents) for m in movements
    )


def record_cash_count(
    session_id: int,
    count_type: str,
    actual_cents: int,
    denominations: dict | None = None,
    notes: str | None = None,
    counted_by: str | None = None,
) -> CashCount:
    """Mid-shift drawer count. Records the variance; expected cash is not touched."""
    if count_type not in COUNT_TYPES:
        raise ValidationError(f"count_type must be one of {', '.join(sorted(COUNT_TYPES))}")
    actual_cents = coerce_cents(actual_cents, "actual_cents")

    def _op():
        session = lock_session(session_id)
        if session.status == SESSION_CLOSED:
            raise SessionStateError(f"Session {session.id} is closed")

        variance = actual_cents - session.expected_cash_cents
        count = CashCount(
            session=session,
            count_type=count_type,
            expected_cents=session.expected_cash_cents,
            actual_cents=actual_cents,
            variance_cents=variance,
            status=count_status(variance),
            denominations=denominations,
            notes=notes,
            counted_by=counted_by,
            counted_at=utcnow(),
        )
        db.session.add(count)
        db.session.commit()
        if variance:
            current_app.logger.warning(
                "Cash count on session %s is %s by %s cents", session.id, count.status, abs(variance),
            )
        return count

    return run_with_retry(_op)


# =============================================================================
# SUSPEND / RESUME / CLOSE
# =============================================================================

def suspend_session(session_id: int) -> PosSession:
    def _op():
        session = lock_session(session_id)
        if session.status != SESSION_OPEN:
            raise SessionStateError(f"Session {session.id} is {session.status}; only open sessions can be suspended")
        session.status = SESSION_SUSPENDED
        session.updated_at = utcnow()
        db.session.commit()
        return session

    return run_with_retry(_op)


def resume_session(session_id: int) -> PosSession:
    def _op():
        session = lock_session(session_id)
        if session.status != SESSION_SUSPENDED:
            raise SessionStateError(f"Session {session.id} is {session.status}; only suspended sessions can be resumed")
        session.status = SESSION_OPEN
        session.updated_at = utcnow()
        db.session.commit()
        return session

    return run_with_retry(_op)


def session_activity(session: PosSession) -> dict:
    """
    The orders and returns a session's figures are built from.

    completed: orders completed in this session (linked at completion),
        whatever has happened to them since
    voided: orders started in this session and voided while it was live
    returns: refunds paid out through this session
    """
    from .order_service import ORDER_STATUS_VOIDED

    completed = (
        db.session.query(Order)
        .join(SessionOrderLink, SessionOrderLink.order_id == Order.id)
        .filter(SessionOrderLink.session_id == session.id)
        .order_by(SessionOrderLink.id)
        .all()
    )
    voided_query = db.session.query(Order).filter(
        Order.session_id == session.id,
        Order.status == ORDER_STATUS_VOIDED,
    )
    if session.closed_at is not None:
        voided_query = voided_query.filter(Order.voided_at <= session.closed_at)
    returns = db.session.query(PosReturn).filter_by(session_id=session.id).order_by(PosReturn.id).all()
    return {"completed": completed, "voided": voided_query.all(), "returns": returns}


def payment_breakdown_for_orders(orders) -> list[dict]:
    """
    Count and total of money taken per method, sorted by method.

    A payment refunded later still counts: the tender was taken when the
    order completed, and the refund is reported on its own.
    """
    from .payment_service import PAYMENT_COMPLETED, PAYMENT_REFUNDED

    counts = defaultdict(int)
    totals = defaultdict(int)
    for order in orders:
        for payment in order.payments:
            if payment.status in (PAYMENT_COMPLETED, PAYMENT_REFUNDED):
                counts[payment.method] += 1
                totals[payment.method] += payment.amount_cents
    return [
        {"method": method, "count": counts[method], "total_cents": totals[method]}
        for method in sorted(totals)
    ]


def close_session(
    session_id: int,
    closing_cash_cents: int,
    closing_notes: str | None = None,
    closed_by: str | None = None,
) -> PosSession:
    """
    Close a session with the physical drawer count.

    WHY: The close freezes the shift's aggregates so the Z-report and any
    later audit read one fixed set of numbers.

    Raises:
        SessionStateError: already closed, or an order still has a pending payment
    """
    from .payment_service import PAYMENT_PENDING

    closing_cash_cents = coerce_cents(closing_cash_cents, "closing_cash_cents")

    def _op():
        session = lock_session(session_id)
        if session.status == SESSION_CLOSED:
            raise SessionStateError(f"Session {session.id} is already closed")

        pending = (
            db.session.query(Payment.id)
            .join(Order, Payment.order_id == Order.id)
            .filter(Order.session_id == session.id, Payment.status == PAYMENT_PENDING)
            .count()
        )
        if pending:
            raise SessionStateError(
                f"Session {session.id} has {pending} pending payment(s); settle or remove them before closing",
                details={"pending_payments": pending},
            )

        now = utcnow()
        record_movement_locked(
            session,
            MOVEMENT_CLOSING_COUNT,
            closing_cash_cents,
            reason="Closing count",
            performed_by=closed_by,
        )
        variance = closing_cash_cents - session.expected_cash_cents
        db.session.add(CashCount(
            session=session,
            count_type=COUNT_CLOSING,
            expected_cents=session.expected_cash_cents,
            actual_cents=closing_cash_cents,
            variance_cents=variance,
            status=count_status(variance),
            notes=closing_notes,
            counted_by=closed_by,
            counted_at=now,
        ))

        activity = session_activity(session)

        session.closing_cash_cents = closing_cash_cents
        session.cash_variance_cents = variance
        session.total_sales_cents = sum(o.total_cents for o in activity["completed"])
        session.total_refunds_cents = sum(r.total_refund_cents for r in activity["returns"])
        session.total_voids = len(activity["voided"])
        session.net_sales_cents = session.total_sales_cents - session.total_refunds_cents
        session.payment_breakdown = payment_breakdown_for_orders(activity["completed"])
        session.closing_notes = closing_notes
        session.closed_by = closed_by
        session.status = SESSION_CLOSED
        session.closed_at = now
        session.updated_at = now

        terminal = lock_terminal(session.terminal_id)
        if terminal.current_session_id == session.id:
            terminal.current_session_id = None

        db.session.commit()

        if variance:
            current_app.logger.warning(
                "Session %s closed with cash variance %s cents (expected %s, counted %s)",
                session.id, variance, session.expected_cash_cents, closing_cash_cents,
            )
        current_app.logger.info(
            "Session %s closed: sales=%s refunds=%s voids=%s",
            session.id, session.total_sales_cents, session.total_refunds_cents, session.total_voids,
        )
        return session

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_session(session_id: int) -> PosSession:
    session = db.session.get(PosSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def get_current_session(terminal_id: int) -> PosSession | None:
    """The terminal's open or suspended session, if any."""
    from .terminal_service import get_terminal

    terminal = get_terminal(terminal_id)
    if terminal.current_session_id is None:
        return None
    return db.session.get(PosSession, terminal.current_session_id)


def get_sessions(terminal_id: int | None = None, status: str | None = None) -> list[PosSession]:
    query = db.session.query(PosSession)
    if terminal_id is not None:
        query = query.filter_by(terminal_id=terminal_id)
    if status is not None:
        query = query.filter_by(status=status)
    return query.order_by(PosSession.opened_at.desc(), PosSession.id.desc()).all()


def get_session_order_ids(session_id: int) -> list[int]:
    """Ids of orders completed in this session, in link order."""
    get_session(session_id)
    rows = (
        db.session.query(SessionOrderLink.order_id)
        .filter_by(session_id=session_id)
        .order_by(SessionOrderLink.id)
        .all()
    )
    return [row.order_id for row in rows]


def get_session_movements(session_id: int) -> list[CashMovement]:
    get_session(session_id)
    return db.session.query(CashMovement).filter_by(session_id=session_id).order_by(CashMovement.id).all()


def get_shift_summary(session_id: int) -> dict:
    """
    Running figures for an open session (or the frozen ones for a closed session).
    """
    session = get_session(session_id)
    order_count = db.session.query(Order).filter_by(session_id=session_id).count()
    activity = session_activity(session)
    completed = activity["completed"]

    movement_totals = defaultdict(int)
    for movement in session.cash_movements:
        movement_totals[movement.movement_type] += movement.amount_cents

    return {
        "session": session.to_dict(),
        "order_count": order_count,
        "completed_count": len(completed),
        "voided_count": len(activity["voided"]),
        "return_count": len(activity["returns"]),
        "sales_cents": sum(o.total_cents for o in completed),
        "refunds_cents": sum(r.total_refund_cents for r in activity["returns"]),
        "payment_breakdown": payment_breakdown_for_orders(completed),
        "movement_totals": dict(movement_totals),
        "expected_cash_cents": session.expected_cash_cents,
    }
