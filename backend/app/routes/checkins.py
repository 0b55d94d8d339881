# Overview: Flask API routes for check-ins; parses input and returns JSON responses.

import time

from flask import Blueprint, request, jsonify, g, current_app

from app.time_utils import parse_iso_datetime, to_utc_z, utcnow
from ..decorators import require_auth
from ..services import checkin_service, identity_service
from ..services.concurrency import run_with_retry
from ..validation import (
    CheckinCancelled,
    CheckinRequest,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    StorageError,
    ValidationError,
)

"""
Time semantics:
- The check-in time is the server's receive time (UTC); clients cannot supply it.
- History is returned most recent first; cursor is <ISO-8601>|<id> of the last item.
"""

checkins_bp = Blueprint("checkins", __name__, url_prefix="/checkins")


def _error(message: str, status: int, details: dict | None = None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


@checkins_bp.post("")
@require_auth
def create_checkin_route():
    """
    Check in at a place.

    Body: {"place_id": int, "latitude"?: float, "longitude"?: float}
    201 {checkin_id, points_earned, stamp_id, total_points} | 400 | 404 | 409 | 500 | 503
    """
    try:
        payload = CheckinRequest.from_json(request.get_json(silent=True))
        user_id = identity_service.resolve_user(g.external_id)

        checked_in_at = utcnow()
        deadline = time.monotonic() + current_app.config["CHECKIN_TIMEOUT_SECONDS"]

        result = run_with_retry(
            lambda: checkin_service.record_checkin(
                user_id,
                payload.place_id,
                checked_in_at,
                latitude=payload.latitude,
                longitude=payload.longitude,
                deadline=deadline,
            ),
            attempts=current_app.config["CHECKIN_RETRY_ATTEMPTS"],
            retry_on=(StorageError,),
        )
        return jsonify(result.to_dict()), 201

    except ValidationError as e:
        return _error(str(e), 400, e.details)
    except NotFoundError as e:
        return _error(str(e), 404, e.details)
    except ConflictError as e:
        hours = current_app.config["CHECKIN_DUPLICATE_WINDOW_HOURS"]
        return _error(f"Already checked in at this place within the last {hours} hours", 409, e.details)
    except CheckinCancelled as e:
        return _error(str(e), 503, e.details)
    except StorageError:
        current_app.logger.exception("Check-in failed after retries")
        return _error("Internal server error", 500, {"retryable": True})
    except InvariantViolation:
        current_app.logger.exception("Check-in ledger invariant violated")
        return _error("Internal server error", 500)
    except Exception:
        current_app.logger.exception("Failed to record check-in")
        return _error("Internal server error", 500)


@checkins_bp.get("")
@require_auth
def list_checkins_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    cursor_raw = request.args.get("cursor")
    cursor_dt = None
    cursor_id = None
    if cursor_raw:
        try:
            cursor_parts = cursor_raw.split("|")
            cursor_dt = parse_iso_datetime(cursor_parts[0])
            cursor_id = int(cursor_parts[1])
        except (ValueError, IndexError):
            return _error("cursor must be in format <ISO-8601>|<id>", 400)

    try:
        user_id = identity_service.resolve_user(g.external_id)
        items = checkin_service.list_user_checkins(
            user_id, limit=limit, cursor_dt=cursor_dt, cursor_id=cursor_id
        )
    except NotFoundError as e:
        return _error(str(e), 404, e.details)
    except Exception:
        current_app.logger.exception("Failed to load check-in history")
        return _error("Internal server error", 500)

    next_cursor = None
    if len(items) == limit:
        last = items[-1]
        next_cursor = f"{last['created_at']}|{last['id']}"

    return jsonify({
        "items": items,
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200


@checkins_bp.get("/contents")
@require_auth
def content_checkin_counts_route():
    try:
        user_id = identity_service.resolve_user(g.external_id)
        return jsonify(checkin_service.get_content_checkin_counts(user_id)), 200
    except NotFoundError as e:
        return _error(str(e), 404, e.details)
    except Exception:
        current_app.logger.exception("Failed to load content check-in counts")
        return _error("Internal server error", 500)
