from __future__ import annotations

from ..extensions import db
from poscore.time_utils import to_utc_z


class Terminal(db.Model):
    """
    Physical POS terminal (till).

    A terminal has at most one open or suspended session at a time; the
    binding is held in current_session_id and released on session close.
    Terminals are persistent (deactivated, never deleted).
    """
    __tablename__ = "terminals"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "TILL-01", "FRONT")
    terminal_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    location = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    current_session_id = db.Column(
        db.Integer,
        db.ForeignKey("pos_sessions.id", use_alter=True, name="fk_terminals_current_session"),
        nullable=True,
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Terminal id={self.id} code={self.terminal_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "terminal_code": self.terminal_code,
            "name": self.name,
            "location": self.location,
            "is_active": self.is_active,
            "current_session_id": self.current_session_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PosSettings(db.Model):
    """
    Engine-wide POS settings (single row).

    The order counter does NOT live here: it is allocated from
    DocumentSequence so that concurrent checkouts never read a cached value.
    """
    __tablename__ = "pos_settings"

    id = db.Column(db.Integer, primary_key=True)
    order_prefix = db.Column(db.String(16), nullable=False, default="POS-")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1500)  # Basis points (1500 = 15% GCT)
    tax_registration_number = db.Column(db.String(64), nullable=True)
    default_customer_name = db.Column(db.String(128), nullable=False, default="Walk-in")
    currency = db.Column(db.String(3), nullable=False, default="JMD")
    require_open_session = db.Column(db.Boolean, nullable=False, default=True)
    max_discount_percent_bps = db.Column(db.Integer, nullable=False, default=10_000)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "order_prefix": self.order_prefix,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_registration_number": self.tax_registration_number,
            "default_customer_name": self.default_customer_name,
            "currency": self.currency,
            "require_open_session": self.require_open_session,
            "max_discount_percent_bps": self.max_discount_percent_bps,
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic document sequences.

    Prevents race conditions when generating order numbers, return numbers
    and per-day Z-report numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
