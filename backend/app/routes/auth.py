# Overview: Flask API routes for sign-in bootstrap and sign-out.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import identity_service, session_service

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/signin")
@require_auth
def signin_route():
    """
    Create the internal user for the session's identity handle on first sign-in.

    Body (optional): {"name": str}
    201 when the user was created, 200 when it already existed.
    """
    data = request.get_json(silent=True) or {}
    name = data.get("name")
    if name is not None and not isinstance(name, str):
        return jsonify({"error": "name must be a string"}), 400

    try:
        user, created = identity_service.get_or_create_user(g.external_id, name=name)
    except Exception:
        current_app.logger.exception("Failed to sign in user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict(), "created": created}), 201 if created else 200


@auth_bp.post("/signout")
@require_auth
def signout_route():
    try:
        session_service.revoke_session(g.bearer_token)
    except Exception:
        current_app.logger.exception("Failed to sign out user")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Signed out"}), 200
