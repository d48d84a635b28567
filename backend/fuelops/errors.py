# Overview: Typed error hierarchy shared by services and routes.

"""
Every rejected operation maps to one of these classes.

Each error carries a stable ``kind`` (machine-readable, API-safe), an HTTP
status for the route layer, and optional structured ``details``. Callers
catch by type, never by message text.

    FuelOpsError
    |
    +-- ValidationError (400)
    |   +-- PaymentSplitMismatch
    |   +-- InvalidVolumeOrder
    |   +-- PriceUnavailable
    |
    +-- NotFound (404)
    |
    +-- StateError (409)
    |   +-- ShiftNotActive
    |   +-- DuplicateActiveShift
    |   +-- HandoverAlreadyFinalized
    |   +-- HandoverNotDisputed
    |   +-- PeriodNotReady
    |   +-- PeriodAlreadyClosed
    |
    +-- ConcurrencyConflict (409, retryable)
"""

from __future__ import annotations

from typing import Any

from flask import jsonify


class FuelOpsError(Exception):
    """Base class for all reconciliation errors."""

    kind = "FuelOpsError"
    http_status = 500
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FuelOpsError, ValueError):
    """400-level input problem. Nothing was persisted."""

    kind = "ValidationError"
    http_status = 400


class PaymentSplitMismatch(ValidationError):
    kind = "PaymentSplitMismatch"


class InvalidVolumeOrder(ValidationError):
    kind = "InvalidVolumeOrder"


class PriceUnavailable(ValidationError):
    kind = "PriceUnavailable"


class NotFound(FuelOpsError):
    kind = "NotFound"
    http_status = 404


class StateError(FuelOpsError):
    """Operation invoked outside the allowed state machine."""

    kind = "StateError"
    http_status = 409


class ShiftNotActive(StateError):
    kind = "ShiftNotActive"


class DuplicateActiveShift(StateError):
    kind = "DuplicateActiveShift"


class HandoverAlreadyFinalized(StateError):
    kind = "HandoverAlreadyFinalized"


class HandoverNotDisputed(StateError):
    kind = "HandoverNotDisputed"


class PeriodNotReady(StateError):
    kind = "PeriodNotReady"


class PeriodAlreadyClosed(StateError):
    kind = "PeriodAlreadyClosed"


class ConcurrencyConflict(FuelOpsError):
    """Lost an optimistic-lock race. Re-fetch and retry once."""

    kind = "ConcurrencyConflict"
    http_status = 409
    retryable = True


def error_response(exc: FuelOpsError):
    """Flask (body, status) tuple for a typed error."""
    return jsonify(exc.to_dict()), exc.http_status
