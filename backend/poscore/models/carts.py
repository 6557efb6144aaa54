from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class Cart(db.Model):
    """
    The active (draft) cart of a terminal.

    Exactly one cart per terminal. It is reset to empty the instant an
    order is created from it. resumed_order_id is set when the cart was
    reconstructed from a held order.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id"), nullable=False, unique=True)

    customer_id = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(128), nullable=True)

    # percent -> basis points, amount -> cents
    order_discount_type = db.Column(db.String(16), nullable=True)
    order_discount_value = db.Column(db.Integer, nullable=True)
    order_discount_reason = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    resumed_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    terminal = db.relationship("Terminal", backref=db.backref("cart", uselist=False, lazy=True))
    items = db.relationship(
        "CartItem",
        backref="cart",
        lazy=True,
        order_by="CartItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "terminal_id": self.terminal_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "order_discount_type": self.order_discount_type,
            "order_discount_value": self.order_discount_value,
            "order_discount_reason": self.order_discount_reason,
            "notes": self.notes,
            "resumed_order_id": self.resumed_order_id,
            "items": [item.to_dict() for item in self.items],
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """Draft line on the active cart. Discarded on order creation."""
    __tablename__ = "cart_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(64), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    uom_code = db.Column(db.String(16), nullable=False, default="EA")
    unit_price_cents = db.Column(db.Integer, nullable=False)

    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=True)
    is_tax_exempt = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "position": self.position,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "quantity": str(self.quantity),
            "uom_code": self.uom_code,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "is_tax_exempt": self.is_tax_exempt,
            "notes": self.notes,
        }
