# Overview: Flask API routes for meter readings; parses input and returns JSON responses.

"""
Reading API Routes

DESIGN:
- Readings are append-only; corrections are new records
- Volumes accepted as litres ("current_volume") or millilitres ("current_volume_ml")
- Money in integer cents throughout
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import FuelOpsError, ValidationError, error_response
from ..money_utils import format_litres
from ..schemas import PaymentSplit
from ..services.engine import get_engine
from ..time_utils import parse_iso_datetime
from ..validation import require_int, require_payload, require_text, require_volume_ml


readings_bp = Blueprint("readings", __name__, url_prefix="/api/readings")


@readings_bp.post("")
@readings_bp.post("/")
@require_actor
def record_reading_route():
    """
    Record a meter reading against an active shift.

    Request body:
    {
        "nozzle_id": 3,
        "shift_id": 12,
        "current_volume": "10450.250",
        "payment_split": {"cash_cents": 50000, "online_cents": 20000, "credit_cents": 0},
        "recorded_at": "2024-05-01T08:30:00Z"  (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        try:
            recorded_at = parse_iso_datetime(data.get("recorded_at"))
        except (TypeError, ValueError):
            raise ValidationError("recorded_at must be an ISO-8601 datetime")

        result = get_engine().readings.record_reading(
            nozzle_id=require_int(data, "nozzle_id"),
            shift_id=require_int(data, "shift_id"),
            current_volume_ml=require_volume_ml(data, "current_volume"),
            payment_split=PaymentSplit.from_payload(data.get("payment_split")),
            user_id=g.actor_id,
            recorded_at=recorded_at,
        )
        return jsonify({"reading": result.reading.to_dict(), "advisories": result.advisories}), 201

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record reading")
        return jsonify({"error": "Internal server error"}), 500


@readings_bp.post("/<int:reading_id>/corrections")
@require_actor
def correct_reading_route(reading_id: int):
    """
    Supervisor correction of a reading's payment split.

    Request body:
    {
        "payment_split": {"cash_cents": 40000, "online_cents": 30000, "credit_cents": 0},
        "reason": "Card payment keyed as cash"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        engine = get_engine()
        correction = engine.readings.correct_reading_split(
            reading_id=reading_id,
            payment_split=PaymentSplit.from_payload(data.get("payment_split")),
            supervisor_id=g.actor_id,
            reason=require_text(data, "reason", max_length=255),
        )
        original = engine.readings.get_reading(reading_id)
        return jsonify({
            "correction": correction.to_dict(),
            "effective_payment_split": engine.readings.effective_split(original).to_dict(),
        }), 201

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to correct reading %s", reading_id)
        return jsonify({"error": "Internal server error"}), 500


@readings_bp.get("/<int:reading_id>")
@require_actor
def get_reading_route(reading_id: int):
    try:
        engine = get_engine()
        reading = engine.readings.get_reading(reading_id)
        body = reading.to_dict()
        body["effective_payment_split"] = engine.readings.effective_split(reading).to_dict()
        return jsonify({"reading": body}), 200
    except FuelOpsError as e:
        return error_response(e)


@readings_bp.get("/nozzles/<int:nozzle_id>/previous")
@require_actor
def previous_volume_route(nozzle_id: int):
    """Meter position the next reading on this nozzle starts from."""
    try:
        volume_ml = get_engine().readings.get_previous_volume(nozzle_id)
        return jsonify({
            "nozzle_id": nozzle_id,
            "previous_volume": format_litres(volume_ml),
            "previous_volume_ml": volume_ml,
        }), 200
    except FuelOpsError as e:
        return error_response(e)
