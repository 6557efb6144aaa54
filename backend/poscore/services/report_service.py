# Overview: Z-report generation and lookup for closed cashier sessions.

"""
Z-Report Service

WHY: The Z-report is the end-of-shift record the store keeps for tax and
cash reconciliation. Once generated it is never updated; a second
generation for the same session is refused.

AGGREGATES (what happened in this session, not the orders' current status):
    gross sales   = sum of subtotals of orders completed in the session
    discounts     = sum of their order-level discounts
    refunds       = sum of returns paid out through the session
    net sales     = gross - discounts - refunds
    taxable / exempt / tax collected summed from the completed orders

A refund processed later in another session counts there, so a closed
session's report never moves.

The payment breakdown is rebuilt here from completed orders' payments and
compared with the breakdown frozen on the session at close. A difference
means the two paths disagree; it is logged as an error and recorded on the
report, not hidden.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import PosSession, ZReport
from ..validation import ConflictError, NotFoundError, SessionStateError, ValidationError
from poscore.time_utils import parse_iso_datetime, to_utc_z, utcnow
from .concurrency import run_with_retry
from .sequence_service import next_z_report_number
from .session_service import (
    MOVEMENT_DROP,
    MOVEMENT_PAYOUT,
    MOVEMENT_REFUND,
    SESSION_CLOSED,
    payment_breakdown_for_orders,
    session_activity,
)


def _aggregate(session: PosSession, now) -> dict:
    from .payment_service import TENDER_CASH

    activity = session_activity(session)
    completed = activity["completed"]
    returns = activity["returns"]

    gross = sum(o.subtotal_cents for o in completed)
    discounts = sum(o.order_discount_cents for o in completed)
    refunds = sum(r.total_refund_cents for r in returns)

    breakdown = payment_breakdown_for_orders(completed)
    cash_sales = sum(entry["total_cents"] for entry in breakdown if entry["method"] == TENDER_CASH)
    cash_refunds = sum(
        abs(m.amount_cents)
        for m in session.cash_movements
        if m.movement_type == MOVEMENT_REFUND
    )
    cash_payouts = sum(
        abs(m.amount_cents)
        for m in session.cash_movements
        if m.movement_type in (MOVEMENT_PAYOUT, MOVEMENT_DROP)
    )

    actual = session.closing_cash_cents or 0
    period_end = session.closed_at or now

    return {
        "session_id": session.id,
        "terminal_id": session.terminal_id,
        "terminal_name": session.terminal.name if session.terminal else None,
        "report_date": period_end.date(),
        "period_start": session.opened_at,
        "period_end": period_end,
        "total_transactions": len(completed) + len(activity["voided"]),
        "completed_transactions": len(completed),
        "voided_transactions": len(activity["voided"]),
        "refunded_transactions": len({r.order_id for r in returns}),
        "gross_sales_cents": gross,
        "discounts_cents": discounts,
        "refunds_cents": refunds,
        "net_sales_cents": gross - discounts - refunds,
        "taxable_cents": sum(o.taxable_cents for o in completed),
        "exempt_cents": sum(o.exempt_cents for o in completed),
        "tax_collected_cents": sum(o.tax_cents for o in completed),
        "payment_breakdown": breakdown,
        "opening_cash_cents": session.opening_cash_cents,
        "cash_sales_cents": cash_sales,
        "cash_refunds_cents": cash_refunds,
        "cash_payouts_cents": cash_payouts,
        "expected_cash_cents": session.expected_cash_cents,
        "actual_cash_cents": actual,
        "variance_cents": actual - session.expected_cash_cents,
    }


def _breakdown_key(breakdown) -> list[tuple]:
    return sorted((e["method"], e["count"], e["total_cents"]) for e in breakdown or [])


def generate_z_report(session_id: int, generated_by: str | None = None) -> ZReport:
    """
    Generate and persist the Z-report for a closed session.

    Raises:
        SessionStateError: session is not closed (use preview_z_report)
        ConflictError: a report already exists for the session
    """
    def _op():
        session = db.session.get(PosSession, session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        if session.status != SESSION_CLOSED:
            raise SessionStateError(
                f"Session {session.id} is {session.status}; Z-reports are generated for closed sessions",
            )
        existing = db.session.query(ZReport).filter_by(session_id=session.id).first()
        if existing:
            raise ConflictError(
                f"Z-report {existing.report_number} already exists for session {session.id}",
                details={"report_id": existing.id},
            )

        now = utcnow()
        figures = _aggregate(session, now)
        matches = _breakdown_key(figures["payment_breakdown"]) == _breakdown_key(session.payment_breakdown)

        report = ZReport(
            report_number=next_z_report_number(now),
            breakdown_matches_session=matches,
            generated_by=generated_by,
            generated_at=now,
            **figures,
        )
        db.session.add(report)
        db.session.commit()

        if not matches:
            current_app.logger.error(
                "Z-report %s payment breakdown differs from session %s: report=%s session=%s",
                report.report_number, session.id, figures["payment_breakdown"], session.payment_breakdown,
            )
        current_app.logger.info(
            "Z-report %s generated for session %s: net_sales=%s",
            report.report_number, session.id, report.net_sales_cents,
        )
        return report

    return run_with_retry(_op)


def preview_z_report(session_id: int) -> dict:
    """Figures a Z-report would carry right now. Nothing is persisted."""
    session = db.session.get(PosSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")

    figures = _aggregate(session, utcnow())
    figures["report_date"] = figures["report_date"].isoformat()
    figures["period_start"] = to_utc_z(figures["period_start"])
    figures["period_end"] = to_utc_z(figures["period_end"])
    figures["report_number"] = None
    figures["session_status"] = session.status
    return figures


def get_z_report(report_id: int) -> ZReport:
    report = db.session.get(ZReport, report_id)
    if not report:
        raise NotFoundError(f"Z-report {report_id} not found")
    return report


def get_z_report_for_session(session_id: int) -> ZReport | None:
    return db.session.query(ZReport).filter_by(session_id=session_id).first()


def list_z_reports(start: str | None = None, end: str | None = None) -> list[ZReport]:
    """
    Reports generated in [start, end). Bounds are ISO-8601 strings; a bare
    date is read as midnight UTC.
    """
    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date bound: {exc}")

    query = db.session.query(ZReport)
    if start_dt is not None:
        query = query.filter(ZReport.generated_at >= start_dt)
    if end_dt is not None:
        query = query.filter(ZReport.generated_at < end_dt)
    return query.order_by(ZReport.generated_at, ZReport.id).all()
