# Overview: Flask API routes for station-day settlements; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import FuelOpsError, ValidationError, error_response
from ..services.engine import get_engine
from ..validation import optional_int, optional_text, parse_date_arg, require_int, require_payload


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/settlements")


@settlements_bp.post("/close")
@require_actor
def close_period_route():
    """
    Close a station business day.

    Request body:
    {
        "station_id": 1,
        "business_date": "2024-05-01",
        "approved_by": 3,   (optional)
        "notes": "..."      (optional)
    }

    409 PeriodNotReady lists the blocking shift and handover ids.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        business_date = parse_date_arg(data.get("business_date"), "business_date")
        if business_date is None:
            raise ValidationError("business_date required")
        settlement = get_engine().settlements.close_period(
            require_int(data, "station_id"),
            business_date,
            prepared_by=g.actor_id,
            approved_by=optional_int(data, "approved_by"),
            notes=optional_text(data, "notes", max_length=2000),
        )
        return jsonify({"settlement": settlement.to_dict()}), 201

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close period")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("")
@settlements_bp.get("/")
@require_actor
def list_settlements_route():
    try:
        station_id = request.args.get("station_id", type=int)
        if station_id is None:
            raise ValidationError("station_id required")
        settlements = get_engine().settlements.list_settlements(
            station_id,
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
        )
        return jsonify({"settlements": [s.to_dict() for s in settlements]}), 200
    except FuelOpsError as e:
        return error_response(e)


@settlements_bp.get("/<int:settlement_id>")
@require_actor
def get_settlement_route(settlement_id: int):
    try:
        settlement = get_engine().settlements.get_settlement(settlement_id)
        return jsonify({"settlement": settlement.to_dict()}), 200
    except FuelOpsError as e:
        return error_response(e)
