# Overview: Identity resolution; maps external identity handles to internal users.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..validation import NotFoundError


def resolve_user(external_id: str) -> int:
    """
    Map an authenticated external handle to the internal user id.

    Raises NotFoundError("user") when the handle never signed in.
    """
    user_id = db.session.query(User.id).filter_by(external_id=external_id).scalar()
    if user_id is None:
        raise NotFoundError("user", external_id)
    return user_id


def user_exists(user_id: int) -> bool:
    return db.session.query(User.id).filter_by(id=user_id).first() is not None


def get_user(user_id: int) -> User | None:
    return db.session.query(User).filter_by(id=user_id).first()


def get_or_create_user(external_id: str, name: str | None = None) -> tuple[User, bool]:
    """
    Sign-in bootstrap: return the user for this handle, creating it on first use.

    Returns (user, created). Never touches the point ledger; the balance row
    is created by the first awarded check-in.
    """
    user = db.session.query(User).filter_by(external_id=external_id).first()
    if user:
        return user, False

    user = User(external_id=external_id, name=name)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent sign-in for the same handle won the insert
        db.session.rollback()
        user = db.session.query(User).filter_by(external_id=external_id).one()
        return user, False
    return user, True
