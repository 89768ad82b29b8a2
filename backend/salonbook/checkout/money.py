# Overview: Decimal helpers for rupee amounts and percentage rates.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import CheckoutValidationError

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

# Rounding drift accepted between payments and the grand total
PAYMENT_TOLERANCE = Decimal("0.01")


def money(value: Decimal) -> Decimal:
    """Round to paise, half-up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Parse client input into a Decimal.

    Accepts int, str and Decimal; floats go through str() so 0.1 stays 0.1.
    Booleans, NaN and infinities are rejected.
    """
    if value is None or isinstance(value, bool):
        raise CheckoutValidationError(f"{field} must be a number", details={"field": field})
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise CheckoutValidationError(f"{field} must be a number", details={"field": field})
    if not result.is_finite():
        raise CheckoutValidationError(f"{field} must be a finite number", details={"field": field})
    return result


def to_amount(value: Any, field: str) -> Decimal:
    """Parse a rupee amount with at most two decimal places."""
    result = to_decimal(value, field)
    if result != result.quantize(CENTS):
        raise CheckoutValidationError(
            f"{field} cannot have more than 2 decimal places",
            details={"field": field, "value": str(value)},
        )
    return result.quantize(CENTS)


def to_rate(value: Any, field: str) -> Decimal:
    """Parse a percentage in [0, 100]."""
    result = to_decimal(value, field)
    if result < 0 or result > HUNDRED:
        raise CheckoutValidationError(
            f"{field} must be between 0 and 100",
            details={"field": field, "value": str(value)},
        )
    return result


def to_quantity(value: Any, field: str = "quantity") -> int:
    """Positive integer quantity; zero, negatives and fractions are rejected."""
    if isinstance(value, bool):
        raise CheckoutValidationError(f"{field} must be a positive integer", details={"field": field})
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str) and value.strip().isdigit():
        qty = int(value.strip())
    else:
        raise CheckoutValidationError(f"{field} must be a positive integer", details={"field": field})
    if qty <= 0:
        raise CheckoutValidationError(
            f"{field} must be a positive integer",
            details={"field": field, "value": qty},
        )
    return qty


def fmt(value: Decimal | None) -> str | None:
    """Serialize an amount as a fixed two-place string."""
    if value is None:
        return None
    return str(money(value))


def fmt_rate(value: Decimal | None) -> str | None:
    """Serialize a percentage without forcing it onto the paise grid."""
    if value is None:
        return None
    return format(value.normalize(), "f")
