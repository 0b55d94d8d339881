# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session token.

    Sets the following Flask g attributes:
    - g.external_id: identity handle the session was issued for
    - g.session_context: The full SessionContext object
    - g.bearer_token: the raw token (sign-out revokes it)

    Does not require the internal User row to exist; routes resolve it
    through identity_service when they need it.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.external_id = context.external_id
        g.session_context = context
        g.bearer_token = token

        return f(*args, **kwargs)

    return decorated_function
