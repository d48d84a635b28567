# backend/fuelops/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports reconciliation backlog so a
deployment can be verified without credentials.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CashHandover, Shift, Station
from ..models.handovers import HANDOVER_STATUS_DISPUTED, HANDOVER_STATUS_PENDING
from ..models.shifts import SHIFT_STATUS_ACTIVE
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        station_count = db.session.query(Station).count()
        active_shifts = db.session.query(Shift).filter_by(status=SHIFT_STATUS_ACTIVE).count()
        pending_handovers = db.session.query(CashHandover).filter_by(status=HANDOVER_STATUS_PENDING).count()
        disputed_handovers = db.session.query(CashHandover).filter_by(status=HANDOVER_STATUS_DISPUTED).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stations": station_count,
                "active_shifts": active_shifts,
                "pending_handovers": pending_handovers,
                "disputed_handovers": disputed_handovers,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
        }
    }, http_status
