# Overview: Pytest coverage for the transactional check-in workflow.

"""
Check-in Service Tests

Covers the orchestrator contract end to end against the database:
1. Award amounts and stamps for first visits, repeats and milestones
2. Duplicate guard (same place, trailing 24h) vs consecutive bonus (any place)
3. Precondition order: place, then user, then duplicate
4. Full rollback on storage failure, cancellation and invariant violation
5. Reconciliation: balance == sum(history) after any sequence
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.models import CheckinRecord, PointBalance, PointHistoryEntry
from app.models.checkins import STAMP_FIRST_VISIT, STAMP_FIVE_VISITS, STAMP_TEN_VISITS
from app.services import checkin_service, ledger_service
from app.validation import (
    CheckinCancelled,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    StorageError,
)


T0 = datetime(2026, 4, 1, 9, 0, 0)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def ledger_counts(db_session, user_id: int) -> tuple[int, int, int | None]:
    checkins = db_session.query(CheckinRecord).filter_by(user_id=user_id).count()
    history = db_session.query(PointHistoryEntry).filter_by(user_id=user_id).count()
    balance = db_session.query(PointBalance).filter_by(user_id=user_id).first()
    return checkins, history, balance.current_point if balance else None


class TestAwards:

    def test_first_checkin_awards_first_visit(self, db_session, user_a, place_p):
        result = checkin_service.record_checkin(user_a.id, place_p.id, T0)

        assert result.points_awarded == 600
        assert result.stamp_awarded == STAMP_FIRST_VISIT
        assert result.total_points_after == 600
        assert ledger_counts(db_session, user_a.id) == (1, 1, 600)

        record = db_session.get(CheckinRecord, result.checkin_id)
        assert record.points == 600
        assert record.stamp_id == STAMP_FIRST_VISIT

        entry = db_session.query(PointHistoryEntry).filter_by(user_id=user_a.id).one()
        assert entry.delta == 600
        assert entry.reason == "checkin"
        assert entry.checkin_id == result.checkin_id

    def test_walkthrough_across_two_places(self, db_session, user_a, place_p, place_q):
        first = checkin_service.record_checkin(user_a.id, place_p.id, T0)
        assert (first.points_awarded, first.stamp_awarded, first.total_points_after) == (600, STAMP_FIRST_VISIT, 600)

        with pytest.raises(ConflictError) as exc_info:
            checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(1))
        assert exc_info.value.reason == "duplicate_checkin"

        # First visit at Q, 2h after P: first-visit and consecutive bonuses stack
        second = checkin_service.record_checkin(user_a.id, place_q.id, T0 + hours(2))
        assert second.points_awarded == 100 + 500 + 200
        assert second.stamp_awarded == STAMP_FIRST_VISIT
        assert second.total_points_after == 1400

        # Back at P a day later, 23h after Q: consecutive bonus, no stamp
        third = checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(25))
        assert third.points_awarded == 300
        assert third.stamp_awarded is None
        assert third.total_points_after == 1700

        assert ledger_counts(db_session, user_a.id) == (3, 3, 1700)

    def test_same_place_exactly_24h_later_is_accepted(self, db_session, user_a, place_p):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        result = checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(24))

        # Previous check-in is exactly at the edge of the consecutive window
        assert result.points_awarded == 300
        assert result.stamp_awarded is None

    def test_milestones_on_fifth_and_tenth_visit(self, db_session, user_a, place_p):
        results = [
            checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(25 * i))
            for i in range(11)
        ]

        assert [r.stamp_awarded for r in results] == [
            STAMP_FIRST_VISIT, None, None, None, STAMP_FIVE_VISITS,
            None, None, None, None, STAMP_TEN_VISITS, None,
        ]
        assert [r.points_awarded for r in results] == [
            600, 100, 100, 100, 300, 100, 100, 100, 100, 1100, 100,
        ]
        assert results[-1].total_points_after == sum(r.points_awarded for r in results)

    def test_other_users_do_not_affect_first_visit(self, db_session, user_a, user_b, place_p):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        result = checkin_service.record_checkin(user_b.id, place_p.id, T0 + hours(1))

        assert result.stamp_awarded == STAMP_FIRST_VISIT
        assert result.points_awarded == 600
        assert result.total_points_after == 600

    def test_aware_timestamp_is_normalized_to_utc(self, db_session, user_a, place_p):
        jst = timezone(timedelta(hours=9))
        checkin_service.record_checkin(user_a.id, place_p.id, datetime(2026, 4, 1, 18, 0, tzinfo=jst))

        record = db_session.query(CheckinRecord).filter_by(user_id=user_a.id).one()
        assert record.created_at.replace(tzinfo=None) == T0

        with pytest.raises(ConflictError):
            checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(3))

    def test_reported_position_is_stored(self, db_session, user_a, place_p):
        result = checkin_service.record_checkin(
            user_a.id, place_p.id, T0, latitude=35.6868, longitude=139.7223
        )
        record = db_session.get(CheckinRecord, result.checkin_id)
        assert record.latitude == pytest.approx(35.6868)
        assert record.longitude == pytest.approx(139.7223)


class TestPreconditions:

    def test_unknown_place(self, db_session, user_a):
        with pytest.raises(NotFoundError) as exc_info:
            checkin_service.record_checkin(user_a.id, 9999, T0)
        assert exc_info.value.entity == "place"
        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

    def test_unknown_user(self, db_session, place_p):
        with pytest.raises(NotFoundError) as exc_info:
            checkin_service.record_checkin(9999, place_p.id, T0)
        assert exc_info.value.entity == "user"
        assert db_session.query(CheckinRecord).count() == 0

    def test_out_of_range_place_id_is_unknown(self, db_session, user_a):
        with pytest.raises(NotFoundError) as exc_info:
            checkin_service.record_checkin(user_a.id, 10**20, T0)
        assert exc_info.value.entity == "place"
        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

    def test_place_is_checked_before_user(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            checkin_service.record_checkin(9999, 9999, T0)
        assert exc_info.value.entity == "place"

    def test_conflict_leaves_ledger_untouched(self, db_session, user_a, place_p):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        with pytest.raises(ConflictError):
            checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(23))
        assert ledger_counts(db_session, user_a.id) == (1, 1, 600)


class TestRollback:

    def test_storage_failure_after_insert_rolls_back(self, db_session, monkeypatch, user_a, place_p):
        def failing_add_points(*args, **kwargs):
            raise OperationalError("UPDATE point_balances", {}, Exception("disk I/O error"))

        monkeypatch.setattr(ledger_service, "add_points", failing_add_points)

        with pytest.raises(StorageError) as exc_info:
            checkin_service.record_checkin(user_a.id, place_p.id, T0)
        assert exc_info.value.retryable

        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

        # Nothing partial was committed, so re-running the call is safe
        monkeypatch.undo()
        result = checkin_service.record_checkin(user_a.id, place_p.id, T0)
        assert result.points_awarded == 600
        assert ledger_counts(db_session, user_a.id) == (1, 1, 600)

    def test_failure_on_existing_balance_keeps_previous_total(self, db_session, monkeypatch, user_a, place_p, place_q):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)

        def failing_add_points(*args, **kwargs):
            raise OperationalError("UPDATE point_balances", {}, Exception("database is locked"))

        monkeypatch.setattr(ledger_service, "add_points", failing_add_points)
        with pytest.raises(StorageError):
            checkin_service.record_checkin(user_a.id, place_q.id, T0 + hours(30))

        assert ledger_counts(db_session, user_a.id) == (1, 1, 600)

    def test_cancellation_after_writes_rolls_back(self, db_session, monkeypatch, user_a, place_p):
        cancel = threading.Event()
        original = ledger_service.add_points

        def add_points_then_cancel(*args, **kwargs):
            balance = original(*args, **kwargs)
            cancel.set()
            return balance

        monkeypatch.setattr(ledger_service, "add_points", add_points_then_cancel)

        with pytest.raises(CheckinCancelled) as exc_info:
            checkin_service.record_checkin(user_a.id, place_p.id, T0, cancel_event=cancel)
        assert exc_info.value.details["stage"] == "before_commit"

        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

    def test_expired_deadline(self, db_session, user_a, place_p):
        with pytest.raises(CheckinCancelled):
            checkin_service.record_checkin(user_a.id, place_p.id, T0, deadline=time.monotonic() - 1)
        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

    def test_missing_balance_after_update_is_an_invariant_violation(self, db_session, monkeypatch, user_a, place_p):
        original = ledger_service.get_balance

        # add_points still sees its row; the post-write read does not
        def balance_vanishes(user_id, *, for_update=False):
            if for_update:
                return original(user_id, for_update=True)
            return None

        monkeypatch.setattr(ledger_service, "get_balance", balance_vanishes)

        with pytest.raises(InvariantViolation) as exc_info:
            checkin_service.record_checkin(user_a.id, place_p.id, T0)
        assert str(exc_info.value) == "Point balance missing after update"
        assert exc_info.value.details["user_id"] == user_a.id

        assert ledger_counts(db_session, user_a.id) == (0, 0, None)

    def test_unreconciled_ledger_is_an_invariant_violation(self, db_session, user_a, place_p):
        # History line with no matching balance change
        db_session.add(PointHistoryEntry(user_id=user_a.id, delta=50, reason="adjust", created_at=T0 - hours(48)))
        db_session.commit()

        with pytest.raises(InvariantViolation) as exc_info:
            checkin_service.record_checkin(user_a.id, place_p.id, T0)
        assert exc_info.value.details["history_total"] == 650
        assert exc_info.value.details["current_point"] == 600

        assert db_session.query(CheckinRecord).count() == 0
        assert db_session.query(PointBalance).count() == 0


class TestReadsAndReconciliation:

    def test_balance_matches_history_after_sequence(self, db_session, user_a, user_b, place_p, place_q):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        checkin_service.record_checkin(user_b.id, place_p.id, T0 + hours(1))
        checkin_service.record_checkin(user_a.id, place_q.id, T0 + hours(5))
        checkin_service.record_checkin(user_a.id, place_p.id, T0 + hours(30))
        checkin_service.record_checkin(user_b.id, place_q.id, T0 + hours(50))

        for user in (user_a, user_b):
            balance = ledger_service.get_balance(user.id)
            assert balance.current_point == ledger_service.history_total(user.id)

        assert checkin_service.reconcile_balances() == []

    def test_reconcile_reports_mismatch(self, db_session, user_a, place_p):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        db_session.add(PointHistoryEntry(user_id=user_a.id, delta=-20, reason="adjust", created_at=T0 + hours(1)))
        db_session.commit()

        assert checkin_service.reconcile_balances(user_a.id) == [
            {"user_id": user_a.id, "current_point": 600, "history_total": 580}
        ]

    def test_point_summary_without_balance_does_not_create_row(self, db_session, user_a):
        summary = checkin_service.get_point_summary(user_a.id)
        assert summary == {"current_points": 0, "point_logs": [], "updated_at": None}
        assert db_session.query(PointBalance).count() == 0

    def test_history_most_recent_first(self, db_session, user_a, place_p, place_q):
        first = checkin_service.record_checkin(user_a.id, place_p.id, T0)
        second = checkin_service.record_checkin(user_a.id, place_q.id, T0 + hours(3))

        items = checkin_service.list_user_checkins(user_a.id)
        assert [i["id"] for i in items] == [second.checkin_id, first.checkin_id]
        assert items[1]["stamp"] == "first_visit"

    def test_content_checkin_counts(self, db_session, user_a, user_b, place_p, place_q):
        checkin_service.record_checkin(user_a.id, place_p.id, T0)
        checkin_service.record_checkin(user_a.id, place_q.id, T0 + hours(1))
        checkin_service.record_checkin(user_b.id, place_q.id, T0 + hours(2))

        counts = checkin_service.get_content_checkin_counts(user_a.id)
        assert counts == [{"content_id": place_p.content_id, "content_name": "Your Name.", "checkin_count": 2}]
