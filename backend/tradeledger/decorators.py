# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require the acting user on write requests.

    Sets g.actor_id from the X-Actor-Id header (positive integer).
    Returns 401 when the header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def json_body() -> dict:
    """Request JSON object, or {} when the body is empty or not JSON."""
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}
