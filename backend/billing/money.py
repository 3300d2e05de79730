# Overview: Fixed-point money helpers used by every calculation.

"""
Money arithmetic.

All amounts are Decimal. Intermediate products keep full precision and are
quantized to 2 places (round-half-up) only when a value is stored on a line,
a sale, a payment, or returned to a caller.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import InvalidAmount

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


def to_decimal(value, *, field: str = "amount") -> Decimal:
    """Parse an int/str/float/Decimal into an exact Decimal (no rounding)."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() first so floats keep their printed value, not their binary one
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmount(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise InvalidAmount(f"{field} must be a finite number", field=field)
    return result


def quantize(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_money(value, *, field: str = "amount", allow_negative: bool = False) -> Decimal:
    """Parse and round to cents; negative values fail unless explicitly allowed."""
    exact = to_decimal(value, field=field)
    # quantize() overflows the context on very large exponents
    if abs(exact) > MAX_AMOUNT:
        raise InvalidAmount(f"{field} exceeds maximum of {MAX_AMOUNT}", field=field)
    amount = quantize(exact)
    if amount < 0 and not allow_negative:
        raise InvalidAmount(f"{field} cannot be negative", field=field)
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmount(f"{field} exceeds maximum of {MAX_AMOUNT}", field=field)
    return amount


def require_positive(amount: Decimal, *, field: str = "amount") -> Decimal:
    if amount <= 0:
        raise InvalidAmount(f"{field} must be greater than 0", field=field)
    return amount


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    """amount * rate / 100, rounded to cents."""
    return quantize(amount * rate / HUNDRED)


def subtract(a: Decimal, b: Decimal, *, field: str = "amount") -> Decimal:
    """a - b, failing instead of going below zero."""
    result = quantize(a - b)
    if result < 0:
        raise InvalidAmount(f"{field} cannot be negative", field=field)
    return result


def money_sum(values) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return quantize(total)


def money_str(value: Decimal | None) -> str | None:
    """JSON representation: always a string with two decimals."""
    if value is None:
        return None
    return str(quantize(Decimal(value)))
