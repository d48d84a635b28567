# Overview: Flask API routes for the shift lifecycle; parses input and returns JSON responses.

"""
Shift API Routes

DESIGN:
- Lifecycle: start -> end | cancel (both terminal)
- Ending a shift opens the first cash handover in the same transaction
- A flagged cash variance does not fail the request; it comes back under
  "advisories"
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import FuelOpsError, ValidationError, error_response
from ..services.discrepancy_service import DiscrepancyDetector
from ..services.engine import get_engine
from ..services.shift_service import DEFAULT_DISCREPANCY_THRESHOLD_CENTS
from ..validation import (
    optional_cents,
    optional_int,
    optional_text,
    parse_date_arg,
    require_cents,
    require_int,
    require_payload,
)


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/start")
@require_actor
def start_shift_route():
    """
    Start a shift.

    Request body:
    {
        "station_id": 1,
        "employee_id": 7,              (optional, defaults to the acting user)
        "shift_type": "MORNING",       (optional)
        "business_date": "2024-05-01", (optional, defaults to today UTC)
        "notes": "..."                 (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        employee_id = optional_int(data, "employee_id")
        shift = get_engine().shifts.start_shift(
            employee_id=employee_id if employee_id is not None else g.actor_id,
            station_id=require_int(data, "station_id"),
            user_id=g.actor_id,
            shift_type=optional_text(data, "shift_type") or "CUSTOM",
            business_date=parse_date_arg(data.get("business_date"), "business_date"),
            notes=optional_text(data, "notes", max_length=2000),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/end")
@require_actor
def end_shift_route(shift_id: int):
    """
    End a shift with the counted amounts.

    Request body:
    {
        "actual_cash_cents": 150000,
        "actual_online_cents": 42000,  (optional, default 0)
        "notes": "..."                 (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        engine = get_engine()
        shift, classification = engine.shifts.end_shift(
            shift_id,
            actual_cash_cents=require_cents(data, "actual_cash_cents"),
            actual_online_cents=optional_cents(data, "actual_online_cents"),
            user_id=g.actor_id,
            notes=optional_text(data, "notes", max_length=2000),
        )
        chain = engine.handovers.get_chain(shift.id)
        advisories = []
        if classification.is_flagged:
            advisories.append(DiscrepancyDetector.advisory(classification, shift_id=shift.id))
        return jsonify({
            "shift": shift.to_dict(),
            "handover": chain[0].to_dict() if chain else None,
            "variance": classification.to_dict(),
            "advisories": advisories,
        }), 200

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to end shift %s", shift_id)
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/cancel")
@require_actor
def cancel_shift_route(shift_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        shift = get_engine().shifts.cancel_shift(
            shift_id,
            user_id=g.actor_id,
            reason=optional_text(data, "reason", max_length=255),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel shift %s", shift_id)
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("")
@shifts_bp.get("/")
@require_actor
def list_shifts_route():
    """
    List shifts.

    Query params: station_id, business_date, status, employee_id, limit
    """
    try:
        shifts = get_engine().shifts.list_shifts(
            station_id=request.args.get("station_id", type=int),
            business_date=parse_date_arg(request.args.get("business_date"), "business_date"),
            status=request.args.get("status"),
            employee_id=request.args.get("employee_id", type=int),
            limit=max(1, min(request.args.get("limit", 100, type=int), 500)),
        )
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
    except FuelOpsError as e:
        return error_response(e)


@shifts_bp.get("/discrepancies")
@require_actor
def list_discrepancies_route():
    """Ended shifts with |variance| >= threshold_cents (default 10000)."""
    try:
        station_id = request.args.get("station_id", type=int)
        if station_id is None:
            raise ValidationError("station_id required")
        shifts = get_engine().shifts.list_discrepancies(
            station_id,
            threshold_cents=request.args.get(
                "threshold_cents", DEFAULT_DISCREPANCY_THRESHOLD_CENTS, type=int
            ),
            limit=max(1, min(request.args.get("limit", 50, type=int), 500)),
        )
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
    except FuelOpsError as e:
        return error_response(e)


@shifts_bp.get("/shortfalls")
@require_actor
def employee_shortfalls_route():
    try:
        station_id = request.args.get("station_id", type=int)
        if station_id is None:
            raise ValidationError("station_id required")
        rows = get_engine().shifts.employee_shortfalls(
            station_id,
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
        )
        return jsonify({"station_id": station_id, "employees": rows}), 200
    except FuelOpsError as e:
        return error_response(e)


@shifts_bp.get("/<int:shift_id>")
@require_actor
def get_shift_route(shift_id: int):
    try:
        engine = get_engine()
        shift = engine.shifts.get_shift(shift_id)
        chain = engine.handovers.get_chain(shift_id)
        return jsonify({
            "shift": shift.to_dict(),
            "handovers": [h.to_dict() for h in chain],
        }), 200
    except FuelOpsError as e:
        return error_response(e)


@shifts_bp.get("/<int:shift_id>/readings")
@require_actor
def shift_readings_route(shift_id: int):
    try:
        engine = get_engine()
        engine.shifts.get_shift(shift_id)
        include_corrections = request.args.get("include_corrections", "true").lower() != "false"
        readings = engine.readings.list_shift_readings(shift_id, include_corrections=include_corrections)
        return jsonify({"readings": [r.to_dict() for r in readings]}), 200
    except FuelOpsError as e:
        return error_response(e)
