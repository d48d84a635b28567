# Overview: Fixed-shape value types validated at the API boundary.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import PaymentSplitMismatch, ValidationError
from .money_utils import format_cents
from .validation import coerce_int

PAYMENT_SPLIT_VERSION = 1
SUPPORTED_SPLIT_VERSIONS = (PAYMENT_SPLIT_VERSION,)

# Fixed: mirrored by ck_readings_split_conserves_total
SPLIT_TOLERANCE_CENTS = 1


@dataclass(frozen=True)
class PaymentSplit:
    """
    Division of a sale's total into cash, online and credit portions.

    Versioned so stored rows can be re-read safely if the shape ever grows.
    Portions are whole cents and never negative.
    """
    cash_cents: int = 0
    online_cents: int = 0
    credit_cents: int = 0
    version: int = PAYMENT_SPLIT_VERSION

    def __post_init__(self):
        if self.version not in SUPPORTED_SPLIT_VERSIONS:
            raise ValidationError(f"Unsupported payment split version {self.version}")
        for name in ("cash_cents", "online_cents", "credit_cents"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"payment_split.{name} must be an integer")
            if value < 0:
                raise ValidationError(f"payment_split.{name} cannot be negative")

    @classmethod
    def from_payload(cls, payload: Any) -> "PaymentSplit":
        if not isinstance(payload, dict):
            raise ValidationError("payment_split must be an object")
        unknown = set(payload) - {"cash_cents", "online_cents", "credit_cents", "version"}
        if unknown:
            raise ValidationError(f"Field not allowed in payment_split: {', '.join(sorted(unknown))}")
        values = {}
        for name in ("cash_cents", "online_cents", "credit_cents"):
            raw = payload.get(name)
            values[name] = 0 if raw is None else coerce_int(raw, f"payment_split.{name}")
        version = payload.get("version", PAYMENT_SPLIT_VERSION)
        return cls(version=coerce_int(version, "payment_split.version"), **values)

    @property
    def total_cents(self) -> int:
        return self.cash_cents + self.online_cents + self.credit_cents

    def require_conserves(self, total_cents: int, tolerance_cents: int = SPLIT_TOLERANCE_CENTS) -> None:
        """Raise PaymentSplitMismatch unless the portions add up to total_cents."""
        gap = self.total_cents - total_cents
        if abs(gap) > tolerance_cents:
            raise PaymentSplitMismatch(
                f"Payment split {format_cents(self.total_cents)} does not match "
                f"sale total {format_cents(total_cents)}",
                split_total_cents=self.total_cents,
                total_amount_cents=total_cents,
                difference_cents=gap,
            )

    def adjustment_from(self, current: "PaymentSplit | SplitAdjustment") -> "SplitAdjustment":
        return SplitAdjustment(
            cash_cents=self.cash_cents - current.cash_cents,
            online_cents=self.online_cents - current.online_cents,
            credit_cents=self.credit_cents - current.credit_cents,
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "cash_cents": self.cash_cents,
            "online_cents": self.online_cents,
            "credit_cents": self.credit_cents,
        }


@dataclass(frozen=True)
class SplitAdjustment:
    """Signed per-portion change; a correction moves money between portions."""
    cash_cents: int = 0
    online_cents: int = 0
    credit_cents: int = 0

    @property
    def total_cents(self) -> int:
        return self.cash_cents + self.online_cents + self.credit_cents

    @property
    def is_zero(self) -> bool:
        return not (self.cash_cents or self.online_cents or self.credit_cents)

    def __add__(self, other: "SplitAdjustment") -> "SplitAdjustment":
        return SplitAdjustment(
            cash_cents=self.cash_cents + other.cash_cents,
            online_cents=self.online_cents + other.online_cents,
            credit_cents=self.credit_cents + other.credit_cents,
        )

    def to_dict(self) -> dict:
        return {
            "cash_cents": self.cash_cents,
            "online_cents": self.online_cents,
            "credit_cents": self.credit_cents,
        }
