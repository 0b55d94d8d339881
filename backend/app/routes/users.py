# Overview: Flask API routes for the caller's profile and point balance.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import checkin_service, identity_service
from ..validation import NotFoundError

users_bp = Blueprint("users", __name__, url_prefix="/users")


@users_bp.get("/me")
@require_auth
def get_me_route():
    try:
        user_id = identity_service.resolve_user(g.external_id)
        user = identity_service.get_user(user_id)
        summary = checkin_service.get_point_summary(user_id, history_limit=0)
    except NotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to load current user")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"user": user.to_dict(), "current_points": summary["current_points"]}), 200


@users_bp.get("/me/points")
@require_auth
def get_my_points_route():
    limit = request.args.get("limit", default=10, type=int)
    limit = max(1, min(limit, 100))
    try:
        user_id = identity_service.resolve_user(g.external_id)
        return jsonify(checkin_service.get_point_summary(user_id, history_limit=limit)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except Exception:
        current_app.logger.exception("Failed to load point summary")
        return jsonify({"error": "Internal server error"}), 500
