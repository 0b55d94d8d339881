# Overview: Place/content catalog lookups used by the check-in engine, plus CLI registration.

from __future__ import annotations

from ..extensions import db
from ..models import Content, Place
from ..validation import MAX_ID


def place_exists(place_id: int) -> bool:
    # Out-of-range ids cannot be bound as INTEGER parameters
    if not 0 < place_id <= MAX_ID:
        return False
    return db.session.query(Place.id).filter_by(id=place_id).first() is not None


def get_place(place_id: int) -> Place | None:
    if not 0 < place_id <= MAX_ID:
        return None
    return db.session.query(Place).filter_by(id=place_id).first()


def list_places(content_id: int | None = None) -> list[Place]:
    q = db.session.query(Place)
    if content_id is not None:
        q = q.filter_by(content_id=content_id)
    return q.order_by(Place.id).all()


def create_content(name: str) -> Content:
    name = (name or "").strip()
    if not name:
        raise ValueError("Content name is required")
    content = Content(name=name)
    db.session.add(content)
    db.session.commit()
    return content


def create_place(
    name: str,
    *,
    address: str | None = None,
    content_id: int | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Place:
    name = (name or "").strip()
    if not name:
        raise ValueError("Place name is required")
    if content_id is not None and db.session.get(Content, content_id) is None:
        raise ValueError(f"Content {content_id} not found")

    place = Place(
        name=name,
        address=address,
        content_id=content_id,
        latitude=latitude,
        longitude=longitude,
    )
    db.session.add(place)
    db.session.commit()
    return place
