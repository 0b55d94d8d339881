# Overview: Ledger store access for check-ins, point balances and point history.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_

from ..extensions import db
from ..models import CheckinRecord, Content, Place, PointBalance, PointHistoryEntry, User
from .concurrency import lock_for_update
"""
Ledger Invariants (authoritative)

- checkins and point_history are append-only: no updates, no deletes.
- point_balances holds one row per user and is the only mutable aggregate.
- Every write here happens inside the caller's transaction; nothing in this
  module commits. SQLAlchemy errors propagate unchanged.
- Reconciliation: point_balances.current_point == sum(point_history.delta).
"""


def lock_user(user_id: int) -> User | None:
    """Load the user row with a write lock held until the transaction ends."""
    return lock_for_update(db.session.query(User).filter_by(id=user_id)).first()


def find_checkin_since(user_id: int, place_id: int, since: datetime) -> CheckinRecord | None:
    """Most recent check-in of this user at this place strictly after `since`."""
    return (
        db.session.query(CheckinRecord)
        .filter(
            CheckinRecord.user_id == user_id,
            CheckinRecord.place_id == place_id,
            CheckinRecord.created_at > since,
        )
        .order_by(CheckinRecord.created_at.desc(), CheckinRecord.id.desc())
        .first()
    )


def count_checkins_at_place(user_id: int, place_id: int) -> int:
    return (
        db.session.query(func.count(CheckinRecord.id))
        .filter(CheckinRecord.user_id == user_id, CheckinRecord.place_id == place_id)
        .scalar()
    ) or 0


def latest_checkin_before(user_id: int, at: datetime) -> CheckinRecord | None:
    """The user's most recent check-in at any place, at or before `at`."""
    return (
        db.session.query(CheckinRecord)
        .filter(CheckinRecord.user_id == user_id, CheckinRecord.created_at <= at)
        .order_by(CheckinRecord.created_at.desc(), CheckinRecord.id.desc())
        .first()
    )


def insert_checkin(
    *,
    user_id: int,
    place_id: int,
    created_at: datetime,
    points: int,
    stamp_id: int | None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> CheckinRecord:
    record = CheckinRecord(
        user_id=user_id,
        place_id=place_id,
        created_at=created_at,
        points=points,
        stamp_id=stamp_id,
        latitude=latitude,
        longitude=longitude,
    )
    db.session.add(record)
    db.session.flush()  # ensures record.id is assigned without committing
    return record


def get_balance(user_id: int, *, for_update: bool = False) -> PointBalance | None:
    q = db.session.query(PointBalance).filter_by(user_id=user_id)
    if for_update:
        q = lock_for_update(q)
    return q.first()


def add_points(
    user_id: int,
    delta: int,
    *,
    reason: str,
    occurred_at: datetime,
    checkin_id: int | None = None,
) -> PointBalance:
    """
    Apply a point delta: upsert the balance and append the matching history line.

    The balance row is created at `delta` when absent, else incremented.
    """
    balance = get_balance(user_id, for_update=True)
    if balance is None:
        balance = PointBalance(user_id=user_id, current_point=delta, updated_at=occurred_at)
        db.session.add(balance)
    else:
        balance.current_point = balance.current_point + delta
        balance.updated_at = occurred_at

    entry = PointHistoryEntry(
        user_id=user_id,
        delta=delta,
        reason=reason,
        checkin_id=checkin_id,
        created_at=occurred_at,
    )
    db.session.add(entry)
    db.session.flush()
    return balance


def history_total(user_id: int) -> int:
    return (
        db.session.query(func.coalesce(func.sum(PointHistoryEntry.delta), 0))
        .filter(PointHistoryEntry.user_id == user_id)
        .scalar()
    ) or 0


def list_checkins(
    user_id: int,
    *,
    limit: int = 100,
    cursor_dt: Optional[datetime] = None,
    cursor_id: Optional[int] = None,
) -> list[CheckinRecord]:
    """User's check-ins, most recent first, keyset-paginated on (created_at, id)."""
    q = db.session.query(CheckinRecord).filter(CheckinRecord.user_id == user_id)
    if cursor_dt is not None and cursor_id is not None:
        q = q.filter(
            or_(
                CheckinRecord.created_at < cursor_dt,
                and_(CheckinRecord.created_at == cursor_dt, CheckinRecord.id < cursor_id),
            )
        )
    return (
        q.order_by(CheckinRecord.created_at.desc(), CheckinRecord.id.desc())
        .limit(limit)
        .all()
    )


def list_point_history(user_id: int, *, limit: int = 10) -> list[PointHistoryEntry]:
    return (
        db.session.query(PointHistoryEntry)
        .filter(PointHistoryEntry.user_id == user_id)
        .order_by(PointHistoryEntry.created_at.desc(), PointHistoryEntry.id.desc())
        .limit(limit)
        .all()
    )


def content_checkin_counts(user_id: int) -> list[dict]:
    """Distinct check-ins by the user per content; contents never visited count 0."""
    rows = (
        db.session.query(
            Content.id,
            Content.name,
            func.count(func.distinct(CheckinRecord.id)),
        )
        .outerjoin(Place, Place.content_id == Content.id)
        .outerjoin(
            CheckinRecord,
            and_(CheckinRecord.place_id == Place.id, CheckinRecord.user_id == user_id),
        )
        .group_by(Content.id, Content.name)
        .order_by(Content.id)
        .all()
    )
    return [
        {"content_id": content_id, "content_name": name, "checkin_count": count}
        for content_id, name, count in rows
    ]


def balance_mismatches(user_id: int | None = None) -> list[dict]:
    """
    Users whose balance differs from the sum of their history.

    Users with history but no balance row (or the reverse) are reported too.
    """
    history = (
        db.session.query(
            PointHistoryEntry.user_id.label("user_id"),
            func.sum(PointHistoryEntry.delta).label("total"),
        )
        .group_by(PointHistoryEntry.user_id)
    )
    if user_id is not None:
        history = history.filter(PointHistoryEntry.user_id == user_id)
    totals = {row.user_id: int(row.total or 0) for row in history.all()}

    balances_q = db.session.query(PointBalance)
    if user_id is not None:
        balances_q = balances_q.filter(PointBalance.user_id == user_id)
    balances = {b.user_id: b.current_point for b in balances_q.all()}

    mismatches = []
    for uid in sorted(set(totals) | set(balances)):
        balance = balances.get(uid)
        total = totals.get(uid, 0)
        if balance != total:
            mismatches.append({"user_id": uid, "current_point": balance, "history_total": total})
    return mismatches
