# Overview: Flask API route for the reconciliation audit trail.

import json

from flask import Blueprint, request, jsonify

from ..decorators import require_actor
from ..extensions import db
from ..services.audit_service import list_audit_events

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


def _event_body(event) -> dict:
    body = event.to_dict()
    for key in ("before_state", "after_state"):
        if body[key] is not None:
            body[key] = json.loads(body[key])
    return body


@audit_bp.get("")
@audit_bp.get("/")
@require_actor
def list_audit_events_route():
    """
    Query params: entity_type, entity_id, station_id, shift_id, limit (max 500)
    """
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    events = list_audit_events(
        db.session,
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        station_id=request.args.get("station_id", type=int),
        shift_id=request.args.get("shift_id", type=int),
        limit=limit,
    )
    return jsonify({"items": [_event_body(e) for e in events], "limit": limit}), 200
