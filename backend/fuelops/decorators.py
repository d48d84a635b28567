# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

IDENTITY_EXTENSION = "fuelops.identity"


def _header_identity(req) -> int | None:
    raw = req.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_actor(f):
    """
    Resolve the acting user and store it in g.actor_id.

    Authentication lives outside this service. The identity resolver is a
    callable taking the request and returning a user id (or None); apps
    register one under app.extensions["fuelops.identity"]. Without one, the
    X-User-Id header set by the upstream gateway is trusted.

    Returns 401 when no actor can be resolved.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        resolver = current_app.extensions.get(IDENTITY_EXTENSION) or _header_identity
        actor_id = resolver(request)
        if actor_id is None:
            return jsonify({"error": "Authentication required", "kind": "Unauthenticated"}), 401
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function
