# Overview: Integer-cents helpers for amounts, percentages and VAT.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

# Upper bound on a single amount: 999,999,999,999.99
MAX_AMOUNT_CENTS = 99_999_999_999_999

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_cents(value) -> int:
    """
    Convert a currency amount in major units (int, str, Decimal, float) to cents.

    Rounds half-up to the nearest cent. Floats go through str() so 0.1 stays 10.
    """
    if isinstance(value, bool):
        raise ValidationError("amount must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return int((amount * HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / HUNDRED).quantize(CENT)


def require_positive_cents(value, field: str = "amount_cents") -> int:
    """Strict integer check, mirrors the integer column coercion rules."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value <= 0:
        raise ValidationError(f"{field} must be positive")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed")
    return value


def require_non_negative_cents(value, field: str = "amount_cents") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed")
    return value


def percentage(part: int, whole: int) -> Decimal:
    """part / whole * 100 rounded to two places; 0 when whole is 0."""
    if not whole:
        return Decimal("0.00")
    return (Decimal(part) * HUNDRED / Decimal(whole)).quantize(CENT, rounding=ROUND_HALF_UP)


def split_vat_inclusive(total_cents: int, vat_rate_percent) -> tuple[int, int]:
    """
    Split a VAT-inclusive total into (amount_before_vat_cents, vat_cents).

    amount_before_vat = total / (1 + rate/100), rounded half-up to the cent;
    the VAT share is whatever remains so the parts always add back to the total.
    """
    rate = Decimal(str(vat_rate_percent))
    if rate < 0:
        raise ValidationError("VAT rate cannot be negative")
    divisor = Decimal("1") + rate / HUNDRED
    before = int((Decimal(total_cents) / divisor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return before, total_cents - before
