from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Content(db.Model):
    """A media work (anime, film, drama...) that places are tied to."""
    __tablename__ = "contents"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_contents_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Place(db.Model):
    """
    A physical location featured in a content work.

    Read-only from the check-in engine's point of view: registered through
    the catalog, referenced by check-ins.
    """
    __tablename__ = "places"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(512), nullable=True)
    content_id = db.Column(db.Integer, db.ForeignKey("contents.id"), nullable=True, index=True)

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    content = db.relationship("Content", backref=db.backref("places", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "content_id": self.content_id,
            "content_name": self.content.name if self.content else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": to_utc_z(self.created_at),
        }
