# backend/fuelops/config.py
from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Mapping


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fuelops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fuelops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Reconciliation policy (all money in cents)
    DISCREPANCY_EPSILON_CENTS = _env_int("DISCREPANCY_EPSILON_CENTS", 1)
    DISCREPANCY_WARNING_BAND_BPS = _env_int("DISCREPANCY_WARNING_BAND_BPS", 100)  # 1% of expected
    HANDOVER_AUTO_CONFIRM_TOLERANCE_CENTS = _env_int("HANDOVER_AUTO_CONFIRM_TOLERANCE_CENTS", 0)
    CONCURRENCY_RETRY_ATTEMPTS = _env_int("CONCURRENCY_RETRY_ATTEMPTS", 3)

    # Discrepancy alerts: webhook is optional, alerts are always logged
    NOTIFY_WEBHOOK_URL = os.environ.get("NOTIFY_WEBHOOK_URL")
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "2.0"))


@dataclass(frozen=True)
class ReconciliationSettings:
    """
    Policy knobs the reconciliation services read.

    Built from the Flask config for request handling; tests construct it
    directly to exercise a specific policy.
    """
    discrepancy_epsilon_cents: int = 1
    discrepancy_warning_band_bps: int = 100
    handover_auto_confirm_tolerance_cents: int = 0
    retry_attempts: int = 3

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ReconciliationSettings":
        return cls(
            discrepancy_epsilon_cents=int(config.get("DISCREPANCY_EPSILON_CENTS", 1)),
            discrepancy_warning_band_bps=int(config.get("DISCREPANCY_WARNING_BAND_BPS", 100)),
            handover_auto_confirm_tolerance_cents=int(config.get("HANDOVER_AUTO_CONFIRM_TOLERANCE_CENTS", 0)),
            retry_attempts=int(config.get("CONCURRENCY_RETRY_ATTEMPTS", 3)),
        )
