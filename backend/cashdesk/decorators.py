# Overview: Request identity and role decorators for API routes.

from dataclasses import dataclass
from functools import wraps

from flask import request, jsonify, g


ROLES = ("admin", "supervisor", "cashier", "staff", "customer")

STAFF_ROLES = ("admin", "supervisor", "cashier", "staff")
SUPERVISOR_ROLES = ("admin", "supervisor")


@dataclass(frozen=True)
class Actor:
    id: int
    role: str


def _is_authenticated() -> bool:
    return hasattr(g, "actor")


def require_actor(f):
    """
    Load the caller identity forwarded by the upstream auth layer.

    Sets g.actor from X-Actor-Id / X-Actor-Role. The headers are trusted;
    authentication happens before requests reach this service.

    Returns 401 if either header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = (request.headers.get("X-Actor-Id") or "").strip()
        role = (request.headers.get("X-Actor-Role") or "").strip().lower()

        if not raw_id or not role:
            return jsonify({"error": "Authentication required"}), 401
        if not raw_id.isdigit() or role not in ROLES:
            return jsonify({"error": "Invalid actor headers"}), 401

        g.actor = Actor(id=int(raw_id), role=role)
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Allow the route only for the listed roles. Use after @require_actor."""
    allowed = {r.lower() for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.actor.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
