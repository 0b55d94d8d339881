"""
Check-in Service - the transactional check-in workflow

WHY: A check-in is three writes (visit record, point balance, point history)
that must land together or not at all. This module is the single entry point
that decides, awards and records a visit, and the only writer of
point_balances.

Transaction shape (record_checkin):
1. place must exist                       -> NotFoundError("place")
2. BEGIN (IMMEDIATE on SQLite); lock user -> NotFoundError("user")
3. same place within duplicate window     -> ConflictError("duplicate_checkin")
4. read visit facts, calculate award
5. insert check-in, upsert balance, append history
6. verify reconciliation, commit

Any failure after step 2 rolls the whole transaction back. SQLAlchemy errors
become StorageError (safe to retry the whole call). This module never retries.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.checkins import REASON_CHECKIN, STAMP_CODES
from ..validation import (
    CheckinCancelled,
    CheckinError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    StorageError,
)
from app.time_utils import to_naive_utc, to_utc_z, utcnow
from . import bonus_calculator, catalog_service, ledger_service
from .bonus_calculator import BonusPolicy
from .concurrency import begin_write_transaction


@dataclass(frozen=True)
class CheckinResult:
    checkin_id: int
    points_awarded: int
    stamp_awarded: Optional[int]
    total_points_after: int
    checked_in_at: datetime

    def to_dict(self) -> dict:
        return {
            "checkin_id": self.checkin_id,
            "points_earned": self.points_awarded,
            "stamp_id": self.stamp_awarded,
            "stamp": STAMP_CODES.get(self.stamp_awarded),
            "total_points": self.total_points_after,
            "created_at": to_utc_z(self.checked_in_at),
        }


def _check_cancelled(deadline: float | None, cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CheckinCancelled("Check-in cancelled", details={"stage": stage})
    if deadline is not None and time.monotonic() >= deadline:
        raise CheckinCancelled("Check-in deadline exceeded", details={"stage": stage})


def _verify_balance(user_id: int, context: dict) -> int:
    balance = ledger_service.get_balance(user_id)
    if balance is None:
        current_app.logger.error("Point balance missing after update: %s", context)
        raise InvariantViolation("Point balance missing after update", details=context)

    history_total = ledger_service.history_total(user_id)
    if history_total != balance.current_point:
        details = {**context, "current_point": balance.current_point, "history_total": history_total}
        current_app.logger.error("Point balance does not reconcile with history: %s", details)
        raise InvariantViolation("Point balance does not reconcile with history", details=details)

    return balance.current_point


def record_checkin(
    user_id: int,
    place_id: int,
    timestamp: datetime | None = None,
    *,
    latitude: float | None = None,
    longitude: float | None = None,
    policy: BonusPolicy | None = None,
    deadline: float | None = None,
    cancel_event: threading.Event | None = None,
) -> CheckinResult:
    """
    Record one visit and its award atomically.

    `deadline` is a time.monotonic() value; `cancel_event` may be set by the
    caller from another thread. Either one, once tripped, aborts the call
    with CheckinCancelled before commit and nothing is persisted.
    """
    at = to_naive_utc(timestamp) if timestamp is not None else utcnow()
    if policy is None:
        policy = BonusPolicy.from_config(current_app.config)
    context = {"user_id": user_id, "place_id": place_id, "at": to_utc_z(at)}

    try:
        if not catalog_service.place_exists(place_id):
            raise NotFoundError("place", place_id)
        _check_cancelled(deadline, cancel_event, "preconditions")

        begin_write_transaction()
        if ledger_service.lock_user(user_id) is None:
            raise NotFoundError("user", user_id)

        duplicate = ledger_service.find_checkin_since(user_id, place_id, at - policy.duplicate_window)
        if duplicate is not None:
            raise ConflictError(
                "duplicate_checkin",
                details={"checkin_id": duplicate.id, "checked_in_at": to_utc_z(duplicate.created_at)},
            )

        facts = bonus_calculator.gather_visit_facts(user_id, place_id, at)
        award = bonus_calculator.calculate_award(facts, policy)
        _check_cancelled(deadline, cancel_event, "calculated")

        record = ledger_service.insert_checkin(
            user_id=user_id,
            place_id=place_id,
            created_at=at,
            points=award.points,
            stamp_id=award.stamp_id,
            latitude=latitude,
            longitude=longitude,
        )
        ledger_service.add_points(
            user_id,
            award.points,
            reason=REASON_CHECKIN,
            occurred_at=at,
            checkin_id=record.id,
        )
        checkin_id = record.id
        total_points = _verify_balance(user_id, {**context, "checkin_id": checkin_id, "awarded": award.points})
        _check_cancelled(deadline, cancel_event, "before_commit")

        db.session.commit()
    except CheckinError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Check-in transaction failed (%s): %s", type(exc).__name__, context)
        raise StorageError("Check-in transaction failed", details={"retryable": True}) from exc
    except BaseException:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Check-in %s accepted: user=%s place=%s points=%s stamp=%s components=%s",
        checkin_id, user_id, place_id, award.points, award.stamp_id, award.components,
    )
    return CheckinResult(
        checkin_id=checkin_id,
        points_awarded=award.points,
        stamp_awarded=award.stamp_id,
        total_points_after=total_points,
        checked_in_at=at,
    )


def list_user_checkins(
    user_id: int,
    *,
    limit: int = 100,
    cursor_dt: datetime | None = None,
    cursor_id: int | None = None,
) -> list[dict]:
    records = ledger_service.list_checkins(user_id, limit=limit, cursor_dt=cursor_dt, cursor_id=cursor_id)
    return [r.to_dict() for r in records]


def get_point_summary(user_id: int, *, history_limit: int = 10) -> dict:
    """
    Current total and recent history lines.

    Read-only: a user without a balance row reports 0 and no row is created.
    """
    balance = ledger_service.get_balance(user_id)
    return {
        "current_points": balance.current_point if balance else 0,
        "point_logs": [e.to_dict() for e in ledger_service.list_point_history(user_id, limit=history_limit)],
        "updated_at": to_utc_z(balance.updated_at) if balance else None,
    }


def get_content_checkin_counts(user_id: int) -> list[dict]:
    return ledger_service.content_checkin_counts(user_id)


def reconcile_balances(user_id: int | None = None) -> list[dict]:
    """Report balances that disagree with their history. Never corrects them."""
    return ledger_service.balance_mismatches(user_id)
