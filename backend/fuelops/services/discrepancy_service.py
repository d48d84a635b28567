# Overview: Variance classification shared by shift end and handover confirmation.

"""
Discrepancy Detector

WHY: Shift end and every custody handover compare an expected amount with a
counted one. Both must grade the gap the same way.

POLICY:
- NONE: |expected - actual| <= epsilon (1 cent)
- WARNING: gap within the warning band (default 1% of expected)
- CRITICAL: anything larger; forces DISPUTED in the handover chain

Classification never rejects anything. The caller always records what
happened; WARNING/CRITICAL additionally produce an alert.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..money_utils import format_cents
from .notification_service import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

SEVERITY_NONE = "NONE"
SEVERITY_WARNING = "WARNING"
SEVERITY_CRITICAL = "CRITICAL"

STATUS_BALANCED = "BALANCED"
STATUS_SHORT = "SHORT"
STATUS_OVER = "OVER"


@dataclass(frozen=True)
class Classification:
    expected_cents: int
    actual_cents: int
    discrepancy_cents: int  # expected - actual
    severity: str
    variance_bps: int | None  # |discrepancy| / expected in basis points; None when expected is 0

    @property
    def status(self) -> str:
        if self.severity == SEVERITY_NONE:
            return STATUS_BALANCED
        return STATUS_SHORT if self.discrepancy_cents > 0 else STATUS_OVER

    @property
    def is_flagged(self) -> bool:
        return self.severity != SEVERITY_NONE

    @property
    def is_critical(self) -> bool:
        return self.severity == SEVERITY_CRITICAL

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "severity": self.severity,
            "expected_cents": self.expected_cents,
            "actual_cents": self.actual_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "variance_bps": self.variance_bps,
        }


def classify(
    expected_cents: int,
    actual_cents: int,
    *,
    epsilon_cents: int = 1,
    warning_band_bps: int = 100,
) -> Classification:
    """Grade the gap between an expected and a counted amount."""
    discrepancy = expected_cents - actual_cents
    gap = abs(discrepancy)
    variance_bps = (gap * 10_000) // abs(expected_cents) if expected_cents else None

    if gap <= epsilon_cents:
        severity = SEVERITY_NONE
    elif expected_cents and gap * 10_000 <= warning_band_bps * abs(expected_cents):
        severity = SEVERITY_WARNING
    else:
        severity = SEVERITY_CRITICAL

    return Classification(
        expected_cents=expected_cents,
        actual_cents=actual_cents,
        discrepancy_cents=discrepancy,
        severity=severity,
        variance_bps=variance_bps,
    )


class DiscrepancyDetector:
    """classify() with configured thresholds, plus alert delivery."""

    def __init__(
        self,
        *,
        epsilon_cents: int = 1,
        warning_band_bps: int = 100,
        notifier: Notifier | None = None,
    ):
        self.epsilon_cents = epsilon_cents
        self.warning_band_bps = warning_band_bps
        self.notifier = notifier or LoggingNotifier()

    def classify(self, expected_cents: int, actual_cents: int) -> Classification:
        return classify(
            expected_cents,
            actual_cents,
            epsilon_cents=self.epsilon_cents,
            warning_band_bps=self.warning_band_bps,
        )

    def alert(
        self,
        classification: Classification,
        subject: str,
        context: dict[str, Any],
        *,
        force: bool = False,
    ) -> bool:
        """
        Send an alert for a flagged classification.

        force=True alerts even inside the epsilon (a disputed handover with a
        stricter auto-confirm tolerance), at WARNING. Returns False when
        nothing was sent. Delivery errors are logged, not
        raised: the record this alert describes is already committed.
        """
        if not classification.is_flagged and not force:
            return False
        severity = classification.severity if classification.is_flagged else SEVERITY_WARNING
        direction = "short" if classification.discrepancy_cents > 0 else "over"
        message = (
            f"{subject}: {format_cents(abs(classification.discrepancy_cents))} {direction} "
            f"(expected {format_cents(classification.expected_cents)}, "
            f"counted {format_cents(classification.actual_cents)})"
        )
        payload = dict(context)
        payload.update(classification.to_dict())
        try:
            return bool(self.notifier.notify(severity, message, payload))
        except Exception:
            logger.exception("Discrepancy notifier raised for %s", subject)
            return False

    @staticmethod
    def advisory(classification: Classification, **context: Any) -> dict:
        """Response payload for an accepted-but-flagged operation."""
        body = {"kind": "discrepancy"}
        body.update(classification.to_dict())
        body.update(context)
        return body
