from __future__ import annotations
from datetime import date
from typing import Any

from .errors import ValidationError
from .money_utils import MAX_AMOUNT_CENTS, litres_to_ml
from .time_utils import parse_iso_date


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for ids and cent amounts.

    Accepts ints and plain digit strings; rejects floats, booleans,
    decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_int(payload: dict, field: str) -> int:
    if payload.get(field) is None:
        raise ValidationError(f"{field} required")
    return coerce_int(payload[field], field)


def optional_int(payload: dict, field: str) -> int | None:
    if payload.get(field) is None:
        return None
    return coerce_int(payload[field], field)


def require_cents(payload: dict, field: str) -> int:
    """Non-negative cent amount."""
    cents = require_int(payload, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} is out of range")
    return cents


def optional_cents(payload: dict, field: str, default: int = 0) -> int:
    if payload.get(field) is None:
        return default
    return require_cents(payload, field)


def require_volume_ml(payload: dict, field: str = "current_volume") -> int:
    """
    Meter volume in millilitres.

    Accepts either "<field>_ml" (integer millilitres) or "<field>" (litres,
    up to three decimals).
    """
    ml_key = f"{field}_ml"
    if payload.get(ml_key) is not None:
        ml = coerce_int(payload[ml_key], ml_key)
        if ml < 0:
            raise ValidationError(f"{ml_key} cannot be negative")
        return ml
    if payload.get(field) is None:
        raise ValidationError(f"{field} or {ml_key} required")
    return litres_to_ml(payload[field], field)


def optional_text(payload: dict, field: str, max_length: int | None = None) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_text(payload: dict, field: str, max_length: int | None = None) -> str:
    text = optional_text(payload, field, max_length)
    if text is None:
        raise ValidationError(f"{field} cannot be blank")
    return text


def parse_date_arg(value: str | None, field: str) -> date | None:
    try:
        return parse_iso_date(value)
    except (AttributeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")
