# Overview: Flask API routes for the cash handover chain; parses input and returns JSON responses.

"""
Handover API Routes

DESIGN:
- confirm: PENDING -> CONFIRMED (next step opened) or DISPUTED
- resolve: DISPUTED -> RESOLVED (next step opened)
- Repeating a confirm with the same amount returns 200 with "replayed": true
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import FuelOpsError, ValidationError, error_response
from ..models.handovers import HANDOVER_STATUS_DISPUTED
from ..services.discrepancy_service import DiscrepancyDetector
from ..services.engine import get_engine
from ..validation import optional_text, parse_date_arg, require_cents, require_payload, require_text


handovers_bp = Blueprint("handovers", __name__, url_prefix="/api/handovers")


def _outcome_body(outcome) -> dict:
    body = {
        "handover": outcome.handover.to_dict(),
        "next_handover": outcome.next_handover.to_dict() if outcome.next_handover else None,
        "replayed": outcome.replayed,
        "advisories": [],
    }
    classification = outcome.classification
    if classification is not None and (
        classification.is_flagged or outcome.handover.status == HANDOVER_STATUS_DISPUTED
    ):
        body["advisories"].append(
            DiscrepancyDetector.advisory(
                classification,
                handover_id=outcome.handover.id,
                handover_status=outcome.handover.status,
            )
        )
    return body


def _station_arg() -> int:
    station_id = request.args.get("station_id", type=int)
    if station_id is None:
        raise ValidationError("station_id required")
    return station_id


@handovers_bp.post("/<int:handover_id>/confirm")
@require_actor
def confirm_handover_route(handover_id: int):
    """
    Confirm receipt of cash for a pending handover.

    Request body:
    {
        "actual_amount_cents": 150000,
        "notes": "...",                 (optional)
        "bank_name": "...",             (optional, DEPOSIT_TO_BANK)
        "deposit_reference": "..."      (optional, DEPOSIT_TO_BANK)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        outcome = get_engine().handovers.confirm(
            handover_id,
            actual_amount_cents=require_cents(data, "actual_amount_cents"),
            confirming_user_id=g.actor_id,
            notes=optional_text(data, "notes", max_length=2000),
            bank_name=optional_text(data, "bank_name", max_length=100),
            deposit_reference=optional_text(data, "deposit_reference", max_length=50),
        )
        return jsonify(_outcome_body(outcome)), 200

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm handover %s", handover_id)
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("/<int:handover_id>/resolve")
@require_actor
def resolve_handover_route(handover_id: int):
    """
    Resolve a disputed handover.

    Request body:
    {
        "resolution_notes": "Recount found 500 in the safe bag"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        outcome = get_engine().handovers.resolve(
            handover_id,
            resolution_notes=require_text(data, "resolution_notes", max_length=2000),
            resolving_user_id=g.actor_id,
        )
        return jsonify(_outcome_body(outcome)), 200

    except FuelOpsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resolve handover %s", handover_id)
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.get("")
@handovers_bp.get("/")
@require_actor
def list_handovers_route():
    """
    Handovers at a station, newest first.

    Query params: station_id (required), start, end (YYYY-MM-DD),
    handover_type, status, limit (max 500), offset
    """
    try:
        limit = max(1, min(request.args.get("limit", 100, type=int), 500))
        offset = max(0, request.args.get("offset", 0, type=int))
        handovers = get_engine().handovers.list_station_handovers(
            _station_arg(),
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
            handover_type=request.args.get("handover_type"),
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "handovers": [h.to_dict() for h in handovers],
            "limit": limit,
            "offset": offset,
        }), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/<int:handover_id>")
@require_actor
def get_handover_route(handover_id: int):
    try:
        engine = get_engine()
        handover = engine.handovers.get_handover(handover_id)
        successor = engine.handovers.next_handover(handover)
        return jsonify({
            "handover": handover.to_dict(),
            "next_handover_id": successor.id if successor else None,
        }), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/shifts/<int:shift_id>/chain")
@require_actor
def shift_chain_route(shift_id: int):
    try:
        chain = get_engine().handovers.get_chain(shift_id)
        return jsonify({"shift_id": shift_id, "handovers": [h.to_dict() for h in chain]}), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/pending")
@require_actor
def pending_handovers_route():
    """
    Handovers waiting on a user to confirm.

    Query params: user_id (defaults to the acting user), station_id
    """
    try:
        user_id = request.args.get("user_id", type=int)
        handovers = get_engine().handovers.pending_for_user(
            user_id if user_id is not None else g.actor_id,
            request.args.get("station_id", type=int),
        )
        return jsonify({"handovers": [h.to_dict() for h in handovers]}), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/unconfirmed")
@require_actor
def unconfirmed_handovers_route():
    try:
        handovers = get_engine().handovers.unconfirmed(
            _station_arg(),
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
        )
        return jsonify({"handovers": [h.to_dict() for h in handovers]}), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/summary")
@require_actor
def cash_flow_summary_route():
    """Query params: station_id (required), start, end (YYYY-MM-DD)."""
    try:
        summary = get_engine().handovers.cash_flow_summary(
            _station_arg(),
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
        )
        return jsonify(summary), 200
    except FuelOpsError as e:
        return error_response(e)


@handovers_bp.get("/deposits")
@require_actor
def bank_deposits_route():
    try:
        deposits = get_engine().handovers.bank_deposits(
            _station_arg(),
            parse_date_arg(request.args.get("start"), "start"),
            parse_date_arg(request.args.get("end"), "end"),
        )
        return jsonify({
            "deposits": [h.to_dict() for h in deposits],
            "total_cents": sum(h.actual_amount_cents or 0 for h in deposits),
        }), 200
    except FuelOpsError as e:
        return error_response(e)
