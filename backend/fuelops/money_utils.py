from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError

ML_PER_LITRE = 1000

# Largest meter position / amount we accept (prevents overflow in 64-bit columns)
MAX_VOLUME_ML = 10**15
MAX_AMOUNT_CENTS = 10**13


def amount_for_volume(litres_ml: int, price_cents: int) -> int:
    """
    Sale amount in cents for a volume at a per-litre price.

    litres x price, rounded to whole cents with round-half-up.
    """
    amount = Decimal(litres_ml) * Decimal(price_cents) / Decimal(ML_PER_LITRE)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def litres_to_ml(value: Any, field: str = "volume") -> int:
    """
    Parse a litre quantity ("1234.5", 1234.5, 1234) into integer millilitres.

    Rejects negatives, more than three decimal places, NaN/inf and booleans.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number of litres")
    try:
        litres = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number of litres")
    if not litres.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if litres < 0:
        raise ValidationError(f"{field} cannot be negative")
    ml = litres * ML_PER_LITRE
    if ml != ml.to_integral_value():
        raise ValidationError(f"{field} supports at most 3 decimal places")
    ml_int = int(ml)
    if ml_int > MAX_VOLUME_ML:
        raise ValidationError(f"{field} is out of range")
    return ml_int


def format_litres(ml: int | None) -> str | None:
    if ml is None:
        return None
    return str((Decimal(ml) / Decimal(ML_PER_LITRE)).quantize(Decimal("0.001")))


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    return str((Decimal(cents) / Decimal(100)).quantize(Decimal("0.01")))
