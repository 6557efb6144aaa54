from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class PosReturn(db.Model):
    """
    Refund document for a completed order.

    An order can carry several returns, each covering part of its lines.
    The order moves to refunded once every unit has been returned.
    """
    __tablename__ = "pos_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("pos_sessions.id"), nullable=True, index=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=True)

    refund_method = db.Column(db.String(32), nullable=False)
    total_refund_cents = db.Column(db.Integer, nullable=False)
    is_full_refund = db.Column(db.Boolean, nullable=False, default=False)  # Last units of the order
    reason = db.Column(db.String(255), nullable=False)
    reason_category = db.Column(db.String(32), nullable=False, default="other")
    processed_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("returns", lazy=True, order_by="PosReturn.id"))
    items = db.relationship("PosReturnItem", backref="pos_return", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "session_id": self.session_id,
            "terminal_id": self.terminal_id,
            "refund_method": self.refund_method,
            "total_refund_cents": self.total_refund_cents,
            "is_full_refund": self.is_full_refund,
            "reason": self.reason,
            "reason_category": self.reason_category,
            "processed_by": self.processed_by,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class PosReturnItem(db.Model):
    """Returned quantity of one order line and the cents refunded for it."""
    __tablename__ = "pos_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("pos_returns.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False, default="resellable")  # resellable, damaged, defective
    restock = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "refund_cents": self.refund_cents,
            "condition": self.condition,
            "restock": self.restock,
        }
