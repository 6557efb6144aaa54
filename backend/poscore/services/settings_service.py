# Overview: Service-layer operations for POS settings; single settings row seeded from app config.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import PosSettings
from ..validation import FULL_PERCENT_BPS, ValidationError, coerce_cents, require_text
from .concurrency import run_with_retry


SETTINGS_ROW_ID = 1

UPDATABLE_FIELDS = {
    "order_prefix",
    "tax_rate_bps",
    "tax_registration_number",
    "default_customer_name",
    "currency",
    "require_open_session",
    "max_discount_percent_bps",
}


def get_settings() -> PosSettings:
    """
    Return the settings row, creating it from Config defaults on first use.

    Flushes but does not commit; callers own the transaction.
    """
    settings = db.session.get(PosSettings, SETTINGS_ROW_ID)
    if settings:
        return settings

    config = current_app.config
    settings = PosSettings(
        id=SETTINGS_ROW_ID,
        order_prefix=config.get("POS_ORDER_PREFIX", "POS-"),
        tax_rate_bps=config.get("POS_TAX_RATE_BPS", 1500),
        default_customer_name=config.get("POS_DEFAULT_CUSTOMER_NAME", "Walk-in"),
        currency=config.get("POS_CURRENCY", "JMD"),
        require_open_session=config.get("POS_REQUIRE_OPEN_SESSION", True),
        max_discount_percent_bps=FULL_PERCENT_BPS,
    )
    db.session.add(settings)
    db.session.flush()
    return settings


def update_settings(**updates) -> PosSettings:
    """Validate and apply a partial settings update."""
    unknown = set(updates) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    def _op():
        settings = get_settings()

        if "order_prefix" in updates:
            settings.order_prefix = require_text(updates["order_prefix"], "order_prefix")
        if "tax_rate_bps" in updates:
            rate = coerce_cents(updates["tax_rate_bps"], "tax_rate_bps")
            if rate > FULL_PERCENT_BPS:
                raise ValidationError("tax_rate_bps cannot exceed 10000 (100%)")
            settings.tax_rate_bps = rate
        if "tax_registration_number" in updates:
            settings.tax_registration_number = updates["tax_registration_number"]
        if "default_customer_name" in updates:
            settings.default_customer_name = require_text(updates["default_customer_name"], "default_customer_name")
        if "currency" in updates:
            currency = require_text(updates["currency"], "currency").upper()
            if len(currency) != 3:
                raise ValidationError("currency must be a 3-letter ISO code")
            settings.currency = currency
        if "require_open_session" in updates:
            settings.require_open_session = bool(updates["require_open_session"])
        if "max_discount_percent_bps" in updates:
            cap = coerce_cents(updates["max_discount_percent_bps"], "max_discount_percent_bps")
            if cap > FULL_PERCENT_BPS:
                raise ValidationError("max_discount_percent_bps cannot exceed 10000 (100%)")
            settings.max_discount_percent_bps = cap

        db.session.commit()
        return settings

    return run_with_retry(_op)
