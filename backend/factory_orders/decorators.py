# Overview: Request decorators establishing the acting user and enforcing capabilities.

"""
Identity is established by the auth gateway in front of this service and
forwarded as headers:

    X-User-Id:   integer user id
    X-User-Role: one of the Role values
    X-User-Name: display name (used in audit entries and reports)

Machine callers (the cleanup scheduler, the payment gateway) may instead
present `Authorization: Bearer <key>` where the key is the endpoint's
configured shared secret; they then act as the system actor.
"""

import hmac
from functools import wraps

from flask import request, jsonify, g, current_app

from .permissions import Actor, Role, has_capability


def _unauthenticated():
    return jsonify({"error": "Authentication required", "code": "unauthenticated"}), 401


def _actor_from_headers():
    role = Role.parse(request.headers.get("X-User-Role", ""))
    if role is None or role == Role.SYSTEM:
        return None
    raw_id = (request.headers.get("X-User-Id") or "").strip()
    if not raw_id.isdigit():
        return None
    name = (request.headers.get("X-User-Name") or "").strip() or None
    return Actor(user_id=int(raw_id), role=role, name=name)


def _has_api_key(config_key: str) -> bool:
    expected = current_app.config.get(config_key)
    auth_header = request.headers.get("Authorization") or ""
    if not expected or not auth_header.startswith("Bearer "):
        return False
    token = auth_header.split(" ", 1)[1].strip()
    return hmac.compare_digest(token.encode(), str(expected).encode())


def require_actor(f):
    """
    Require a forwarded identity and expose it as g.actor.

    Returns 401 if the identity headers are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _actor_from_headers()
        if actor is None:
            return _unauthenticated()
        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_actor_or_api_key(config_key: str, system_name: str = "system"):
    """
    Accept either a forwarded identity or a bearer token equal to
    app.config[config_key]. The token acts as the system actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if _has_api_key(config_key):
                g.actor = Actor.system(system_name)
                return f(*args, **kwargs)
            actor = _actor_from_headers()
            if actor is None:
                return _unauthenticated()
            g.actor = actor
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_capability(code: str):
    """Require the acting role to hold `code`. Must run after require_actor."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return _unauthenticated()
            if not has_capability(actor.role, code):
                return jsonify({
                    "error": "Permission denied",
                    "code": "permission_denied",
                    "required_capability": code,
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
