from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Keeps deposits and refunds inside a 32-bit integer column
MAX_MONEY_CENTS = 999_999_999

_CENT = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem (missing or malformed field)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidStateError(ValueError):
    """409-level state conflict (record is not in a state that allows the operation)."""


class NotFoundError(LookupError):
    """404-level: referenced record does not exist."""


def parse_money_cents(value: Any, field: str = "amount") -> int:
    """
    Parse a currency value into integer minor units (cents).

    Accepts decimal strings ("2000", "2000.50"), ints (whole units) and
    Decimals. Floats are rejected so binary rounding never enters the
    arithmetic. Sub-cent precision is rounded half-up.
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string, not {type(value).__name__}", field=field)

    if isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, Decimal):
        amount = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required", field=field)
        # Reject scientific notation (e.g., "1e5")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)", field=field)
        try:
            amount = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount", field=field)
    else:
        raise ValidationError(f"{field} must be a decimal amount", field=field)

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite amount", field=field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)

    cents = int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    if cents > MAX_MONEY_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount", field=field)
    return cents


def format_cents(cents: int | None) -> str | None:
    """Render cents as the decimal string used at the system boundary ("1850.00")."""
    if cents is None:
        return None
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def require_text(value: Any, field: str) -> str:
    """Return the stripped string or raise if it is missing/blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None
