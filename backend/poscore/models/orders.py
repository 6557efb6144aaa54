from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class Order(db.Model):
    """
    Priced order created from a finalized cart.

    Totals are frozen at creation. Payments and lifecycle transitions mutate
    the paid/due aggregates and status only. Orders are never deleted:
    completed, voided and refunded orders stay for audit.

    INVARIANTS:
    - total_cents = (subtotal_cents - order_discount_cents) + tax_cents
    - amount_due_cents = max(0, total_cents - amount_paid_cents)
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_session_status", "session_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=True, index=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=True, index=True)

    # Customer snapshot
    customer_id = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(128), nullable=False, default="Walk-in")

    item_count = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)

    order_discount_type = db.Column(db.String(16), nullable=True)
    order_discount_value = db.Column(db.Integer, nullable=True)
    order_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    order_discount_reason = db.Column(db.String(255), nullable=True)

    taxable_cents = db.Column(db.Integer, nullable=False, default=0)
    exempt_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_refunded_cents = db.Column(db.Integer, nullable=False, default=0)  # Sum of its returns

    # draft, pending_payment, held, completed, voided, refunded
    status = db.Column(db.String(24), nullable=False, default="pending_payment", index=True)
    held_reason = db.Column(db.String(255), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.line_number",
        cascade="all, delete-orphan",
    )
    payments = db.relationship("Payment", backref="order", lazy=True, order_by="Payment.id")
    session = db.relationship("PosSession", backref=db.backref("orders", lazy=True))
    terminal = db.relationship("Terminal")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "session_id": self.session_id,
            "terminal_id": self.terminal_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "item_count": str(self.item_count),
            "subtotal_cents": self.subtotal_cents,
            "order_discount_type": self.order_discount_type,
            "order_discount_value": self.order_discount_value,
            "order_discount_cents": self.order_discount_cents,
            "order_discount_reason": self.order_discount_reason,
            "taxable_cents": self.taxable_cents,
            "exempt_cents": self.exempt_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "change_given_cents": self.change_given_cents,
            "amount_refunded_cents": self.amount_refunded_cents,
            "status": self.status,
            "held_reason": self.held_reason,
            "void_reason": self.void_reason,
            "refund_reason": self.refund_reason,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "voided_at": to_utc_z(self.voided_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "version_id": self.version_id,
            "payments": [p.to_dict() for p in self.payments],
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Priced order line. Immutable once the order leaves draft."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_items_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(64), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    uom_code = db.Column(db.String(16), nullable=False, default="EA")
    unit_price_cents = db.Column(db.Integer, nullable=False)

    line_subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_before_tax_cents = db.Column(db.Integer, nullable=False)

    is_tax_exempt = db.Column(db.Boolean, nullable=False, default=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Effective rate (0 when exempt)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "quantity": str(self.quantity),
            "uom_code": self.uom_code,
            "unit_price_cents": self.unit_price_cents,
            "line_subtotal_cents": self.line_subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "line_total_before_tax_cents": self.line_total_before_tax_cents,
            "is_tax_exempt": self.is_tax_exempt,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
        }


class Payment(db.Model):
    """
    Payment recorded against an order.

    Cash payments complete immediately (change = tendered - amount).
    Card, wallet and transfer payments start PENDING and are confirmed or
    failed by an explicit gateway callback. Rows are appended and only
    their status moves afterwards; removal marks them cancelled.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    amount_tendered_cents = db.Column(db.Integer, nullable=True)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="JMD")

    # pending, completed, failed, cancelled, refunded
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    reference = db.Column(db.String(128), nullable=True)
    status_message = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_given_cents": self.change_given_cents,
            "currency": self.currency,
            "status": self.status,
            "reference": self.reference,
            "status_message": self.status_message,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderEvent(db.Model):
    """
    Append-only history of order status transitions.

    Keeps hold/resume cycles on the same order auditable.
    Records are never updated or deleted.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    event_type = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(128), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("events", lazy=True, order_by="OrderEvent.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
