from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Maximum money value: 9,999,999,999.99 (999,999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999_999

# 100% expressed in basis points
FULL_PERCENT_BPS = 10_000

DISCOUNT_PERCENT = "percent"
DISCOUNT_AMOUNT = "amount"
VALID_DISCOUNT_TYPES = {DISCOUNT_PERCENT, DISCOUNT_AMOUNT}


class PosError(Exception):
    """Base for every rejected engine operation."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(PosError, ValueError):
    """400-level input problem (quantity, price, discount, missing ids)."""


class NotFoundError(PosError, LookupError):
    """Referenced order, session, terminal or payment does not exist."""


class StateTransitionError(PosError):
    """
    Operation is not legal from the entity's current state.

    This is a domain error, not a technical error. It indicates that the
    caller attempted an operation that violates the lifecycle rules.
    """


class OrderStateError(StateTransitionError):
    """Illegal order transition (e.g. voiding a completed order)."""


class SessionStateError(StateTransitionError):
    """Illegal session transition (e.g. movement on a closed session)."""


class ConflictError(PosError):
    """409-level business rule conflict (second open session, duplicate confirmation)."""


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True, allow_negative: bool = False) -> int:
    """
    Strictly coerce a money value expressed in cents.

    Floats, booleans, decimals-with-fractions and scientific notation are
    rejected so that no fractional cent can enter the ledger.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer number of cents")
    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer number of cents")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer number of cents")
    else:
        raise ValidationError(f"{field} must be an integer number of cents, not {type(value).__name__}")

    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if cents == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than zero")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def coerce_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Quantities may be fractional (weighed goods) but must be positive with at most 3 places."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        qty = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    if qty != qty.quantize(Decimal("0.001")):
        raise ValidationError(f"{field} supports at most 3 decimal places")
    return qty


def validate_discount(discount_type: str | None, discount_value: Any, field: str = "discount") -> tuple[str | None, int | None]:
    """
    Normalize a (type, value) discount pair.

    percent values are basis points (1000 = 10%), amount values are cents.
    A missing type or zero value means "no discount".
    """
    if discount_type is None or discount_type == "":
        if discount_value not in (None, 0):
            raise ValidationError(f"{field} value given without a discount type")
        return None, None

    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(
            f"Invalid {field} type '{discount_type}'. Must be one of: {', '.join(sorted(VALID_DISCOUNT_TYPES))}"
        )

    value = coerce_cents(discount_value, f"{field} value")
    if discount_type == DISCOUNT_PERCENT and value > FULL_PERCENT_BPS:
        raise ValidationError(f"{field} percent cannot exceed 100%")
    if value == 0:
        return None, None
    return discount_type, value


def require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()
