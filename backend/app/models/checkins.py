from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


# Stamp identifiers (stable, exposed to clients as stamp_id)
STAMP_FIRST_VISIT = 1
STAMP_FIVE_VISITS = 2
STAMP_TEN_VISITS = 3

STAMP_CODES = {
    STAMP_FIRST_VISIT: "first_visit",
    STAMP_FIVE_VISITS: "five_visits",
    STAMP_TEN_VISITS: "ten_visits",
}

REASON_CHECKIN = "checkin"


class CheckinRecord(db.Model):
    """
    One accepted visit of a user to a place.

    IMMUTABLE: Records are appended by the check-in orchestrator and never
    updated or deleted. points/stamp_id are kept on the row for audit.
    """
    __tablename__ = "checkins"
    __table_args__ = (
        db.Index("ix_checkins_user_place_created", "user_id", "place_id", "created_at"),
        db.Index("ix_checkins_user_created", "user_id", "created_at"),
        db.CheckConstraint("points >= 0", name="ck_checkins_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    place_id = db.Column(db.Integer, db.ForeignKey("places.id"), nullable=False, index=True)

    # Business time of the visit
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    points = db.Column(db.Integer, nullable=False)
    stamp_id = db.Column(db.Integer, nullable=True)

    # Device position reported with the request (audit only)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "place_id": self.place_id,
            "created_at": to_utc_z(self.created_at),
            "points": self.points,
            "stamp_id": self.stamp_id,
            "stamp": STAMP_CODES.get(self.stamp_id),
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


class PointBalance(db.Model):
    """
    Current loyalty point total of one user.

    The only mutable aggregate of the ledger. Written exclusively by the
    check-in orchestrator inside its transaction.

    INVARIANT: current_point == sum(PointHistoryEntry.delta) for the user.
    """
    __tablename__ = "point_balances"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_point_balances_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    current_point = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("point_balance", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "current_point": self.current_point,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class PointHistoryEntry(db.Model):
    """
    Append-only ledger line: one point delta and its cause.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "point_history"
    __table_args__ = (
        db.Index("ix_point_history_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)
    checkin_id = db.Column(db.Integer, db.ForeignKey("checkins.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "delta": self.delta,
            "reason": self.reason,
            "checkin_id": self.checkin_id,
            "created_at": to_utc_z(self.created_at),
        }
