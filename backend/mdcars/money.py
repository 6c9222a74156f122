# Overview: Decimal-safe money helpers. Amounts are stored as integer cents
# and exchanged with clients as 2-fraction-digit decimal strings.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .validation import ValidationError


CURRENCY_LYD = "LYD"
CURRENCY_USD = "USD"
CURRENCIES = (CURRENCY_LYD, CURRENCY_USD)

CENT = Decimal("0.01")
RATE_QUANTUM = Decimal("0.0001")

# 9,999,999,999,999.99 fits Numeric(15, 2) in the original schema
MAX_AMOUNT_CENTS = 999_999_999_999_999


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a decimal amount")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, (int, str)):
        text = str(value).strip()
        # Reject scientific notation (e.g., "1e2", "5E-1")
        if "e" in text.lower() and text.lower() not in ("nan", "snan", "inf", "infinity"):
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)")
        try:
            dec = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a decimal amount")
    elif isinstance(value, float):
        # JSON numbers arrive as floats; use their shortest repr, not binary expansion
        dec = Decimal(repr(value))
    else:
        raise ValidationError(f"{field} must be a decimal amount")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite amount")
    return dec


def parse_cents(value: Any, field: str = "amount", *, allow_zero: bool = True) -> int:
    """
    Parse a client amount ("40", "40.5", "40.50", 40.5) into integer cents.

    More than two fraction digits is rejected rather than silently rounded.
    """
    dec = _to_decimal(value, field)
    if dec < 0:
        raise ValidationError(f"{field} must be >= 0")
    if dec * 100 > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} is too large")
    if dec != dec.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    if dec == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than 0")
    return int(dec * 100)


def format_cents(cents: int | None) -> str | None:
    """Render integer cents as a decimal string with 2 fraction digits."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(CENT))


def parse_rate(value: Any, field: str = "exchange_rate") -> Decimal:
    dec = _to_decimal(value, field)
    if dec <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return dec.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def format_rate(rate: Decimal | None) -> str | None:
    if rate is None:
        return None
    return str(Decimal(rate).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP))


def split_by_currency(cents: int, currency: str) -> tuple[int, int]:
    """Return (usd_cents, lyd_cents) for an amount in a single currency."""
    if currency == CURRENCY_USD:
        return cents, 0
    if currency == CURRENCY_LYD:
        return 0, cents
    raise ValidationError(f"Invalid currency: {currency}. Must be one of {list(CURRENCIES)}")
