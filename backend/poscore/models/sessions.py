from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class PosSession(db.Model):
    """
    Cashier session (shift) on a terminal.

    Owns the drawer float from open to close. expected_cash_cents is a
    running figure maintained incrementally by cash movements.

    LIFECYCLE:
    - open: transactions allowed
    - suspended: drawer secured (break / handoff), aggregates untouched
    - closed: counted, variance recorded; immutable from here on
    """
    __tablename__ = "pos_sessions"
    __table_args__ = (
        db.Index("ix_pos_sessions_terminal_status", "terminal_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=False, index=True)
    cashier_id = db.Column(db.String(64), nullable=True)
    cashier_name = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="open", index=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    cash_variance_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    # Aggregates frozen at close
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    total_voids = db.Column(db.Integer, nullable=False, default=0)
    net_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_breakdown = db.Column(db.JSON, nullable=False, default=list)

    closing_notes = db.Column(db.Text, nullable=True)
    closed_by = db.Column(db.String(128), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    terminal = db.relationship("Terminal", foreign_keys=[terminal_id], backref=db.backref("sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "terminal_id": self.terminal_id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "cash_variance_cents": self.cash_variance_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_refunds_cents": self.total_refunds_cents,
            "total_voids": self.total_voids,
            "net_sales_cents": self.net_sales_cents,
            "payment_breakdown": list(self.payment_breakdown or []),
            "closing_notes": self.closing_notes,
            "closed_by": self.closed_by,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }


class SessionOrderLink(db.Model):
    """Completed orders linked to a session. Unique pair keeps the append idempotent."""
    __tablename__ = "session_order_links"
    __table_args__ = (
        db.UniqueConstraint("session_id", "order_id", name="uq_session_order_links_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    linked_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class CashMovement(db.Model):
    """
    Append-only cash drawer ledger entry.

    MOVEMENT TYPES:
    - opening_float: float placed in the drawer at open (base of expected cash)
    - sale: cash taken for a completed order (+amount)
    - refund: cash handed back (-abs(amount))
    - payout: signed amount, added as given (negative for money paid out)
    - drop: excess cash moved to the safe (-abs(amount))
    - adjustment: signed correction (+amount)
    - closing_count: physical count at close (no effect on expected cash)
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_performed", "session_id", "performed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(24), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    performed_by = db.Column(db.String(128), nullable=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("PosSession", backref=db.backref("cash_movements", lazy=True, order_by="CashMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "order_id": self.order_id,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "performed_at": to_utc_z(self.performed_at),
        }


class CashCount(db.Model):
    """Physical drawer count (opening, mid-day or closing) with its variance."""
    __tablename__ = "cash_counts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=False, index=True)
    count_type = db.Column(db.String(16), nullable=False)  # OPENING, MID_DAY, CLOSING
    expected_cents = db.Column(db.Integer, nullable=False)
    actual_cents = db.Column(db.Integer, nullable=False)
    variance_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False)  # BALANCED, OVER, SHORT
    denominations = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    counted_by = db.Column(db.String(128), nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("PosSession", backref=db.backref("cash_counts", lazy=True, order_by="CashCount.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "count_type": self.count_type,
            "expected_cents": self.expected_cents,
            "actual_cents": self.actual_cents,
            "variance_cents": self.variance_cents,
            "status": self.status,
            "denominations": self.denominations,
            "notes": self.notes,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
        }
