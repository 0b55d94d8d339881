"""
Pytest fixtures for the check-in backend tests.

Provides test database setup, user/place fixtures, session tokens, and test client.
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import Content, Place, User
from app.services import session_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def user_a(db_session):
    """User A, signed in through the identity provider as uid-alpha."""
    user = User(external_id="uid-alpha", name="Alpha")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session):
    user = User(external_id="uid-beta", name="Beta")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def content(db_session):
    content = Content(name="Your Name.")
    db_session.add(content)
    db_session.commit()
    return content


@pytest.fixture(scope='function')
def place_p(db_session, content):
    """Suga Shrine stairs."""
    place = Place(
        name="Suga Shrine",
        address="5 Sugacho, Shinjuku City, Tokyo",
        content_id=content.id,
        latitude=35.6867,
        longitude=139.7224,
    )
    db_session.add(place)
    db_session.commit()
    return place


@pytest.fixture(scope='function')
def place_q(db_session, content):
    place = Place(name="Hida Furukawa Station", address="Furukawacho, Hida, Gifu", content_id=content.id)
    db_session.add(place)
    db_session.commit()
    return place


@pytest.fixture(scope='function')
def token_a(db_session, user_a):
    """Bearer token for user A."""
    _, token = session_service.create_session(user_a.external_id)
    return token


@pytest.fixture(scope='function')
def headers_a(token_a):
    return auth_headers(token_a)


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Issue a session for any identity handle (the User row may not exist)."""
    def _headers(external_id: str) -> dict:
        _, token = session_service.create_session(external_id)
        return auth_headers(token)
    return _headers


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
