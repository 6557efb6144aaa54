from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class ZReport(db.Model):
    """
    End-of-shift financial snapshot.

    IMMUTABLE: generated once per closed session and never updated.
    """
    __tablename__ = "z_reports"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    report_number = db.Column(db.String(32), nullable=False, unique=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=False, unique=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=False, index=True)
    terminal_name = db.Column(db.String(128), nullable=True)

    report_date = db.Column(db.Date, nullable=False, index=True)
    period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)

    total_transactions = db.Column(db.Integer, nullable=False, default=0)
    completed_transactions = db.Column(db.Integer, nullable=False, default=0)
    voided_transactions = db.Column(db.Integer, nullable=False, default=0)
    refunded_transactions = db.Column(db.Integer, nullable=False, default=0)

    gross_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    discounts_cents = db.Column(db.Integer, nullable=False, default=0)
    refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    net_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False, default=0)
    exempt_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_collected_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_breakdown = db.Column(db.JSON, nullable=False, default=list)
    breakdown_matches_session = db.Column(db.Boolean, nullable=False, default=True)

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_payouts_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    variance_cents = db.Column(db.Integer, nullable=False, default=0)

    generated_by = db.Column(db.String(128), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("PosSession", backref=db.backref("z_report", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "report_number": self.report_number,
            "session_id": self.session_id,
            "terminal_id": self.terminal_id,
            "terminal_name": self.terminal_name,
            "report_date": self.report_date.isoformat() if self.report_date else None,
            "period_start": to_utc_z(self.period_start),
            "period_end": to_utc_z(self.period_end),
            "total_transactions": self.total_transactions,
            "completed_transactions": self.completed_transactions,
            "voided_transactions": self.voided_transactions,
            "refunded_transactions": self.refunded_transactions,
            "gross_sales_cents": self.gross_sales_cents,
            "discounts_cents": self.discounts_cents,
            "refunds_cents": self.refunds_cents,
            "net_sales_cents": self.net_sales_cents,
            "taxable_cents": self.taxable_cents,
            "exempt_cents": self.exempt_cents,
            "tax_collected_cents": self.tax_collected_cents,
            "payment_breakdown": list(self.payment_breakdown or []),
            "breakdown_matches_session": self.breakdown_matches_session,
            "opening_cash_cents": self.opening_cash_cents,
            "cash_sales_cents": self.cash_sales_cents,
            "cash_refunds_cents": self.cash_refunds_cents,
            "cash_payouts_cents": self.cash_payouts_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "variance_cents": self.variance_cents,
            "generated_by": self.generated_by,
            "generated_at": to_utc_z(self.generated_at),
        }
