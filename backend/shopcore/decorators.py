# Overview: Request decorators that establish and check the calling actor.

from functools import wraps
from flask import request, jsonify, g, current_app

from .actors import resolve_actor_from_headers


def _resolve_actor():
    resolver = current_app.config.get("ACTOR_RESOLVER") or resolve_actor_from_headers
    return resolver(request)


def require_actor(f):
    """
    Require an authenticated actor.

    Sets g.actor to the resolved Actor. Returns 401 if the upstream gateway
    did not identify the caller.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = _resolve_actor()
        if actor is None:
            return jsonify({"error": "Authentication required"}), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the actor to hold one of the given roles.

    Must be stacked below @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": "Authentication required"}), 401

            if actor.role not in roles:
                current_app.logger.warning(
                    "Role check failed: user_id=%s role=%s required=%s path=%s",
                    actor.user_id, actor.role, ",".join(roles), request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator
