"""
Pytest fixtures for loyalty ledger tests.

Provides test database setup, member/promotion/event factories, and the
test client.
"""

from datetime import timedelta

import pytest

from loyalty import create_app
from loyalty.extensions import db
from loyalty.models import Event, Promotion, User
from loyalty.models.promotions import PROMOTION_KIND_AUTOMATIC
from loyalty.permissions import Role
from loyalty.services.auth_service import hash_password
from loyalty.time_utils import utcnow


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LEDGER_RETRY_BACKOFF_SECONDS': 0,
        'LOG_LEVEL': 'WARNING',
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
def make_user(db_session):
    """Factory: make_user("alice", role=..., balance=..., verified=..., suspicious=...)."""
    def _make(utorid, role=Role.REGULAR, balance=0, verified=True, suspicious=False, password=None):
        user = User(
            utorid=utorid,
            name=utorid.title(),
            email=f"{utorid}@example.com",
            password_hash=hash_password(password) if password else None,
            role=role,
            balance=balance,
            verified=verified,
            suspicious=suspicious,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_promotion(db_session):
    """Factory for promotions active right now unless start/end are given."""
    def _make(kind=PROMOTION_KIND_AUTOMATIC, rate_bps=None, points=None, min_spending_cents=None,
              start=None, end=None, name="Promo"):
        now = utcnow()
        promotion = Promotion(
            name=name,
            kind=kind,
            rate_bps=rate_bps,
            points=points,
            min_spending_cents=min_spending_cents,
            start_time=start or now - timedelta(days=1),
            end_time=end or now + timedelta(days=1),
        )
        db_session.add(promotion)
        db_session.commit()
        return promotion

    return _make


@pytest.fixture(scope='function')
def make_event(db_session):
    def _make(points_remain=100, organizers=(), guests=(), name="Games Night"):
        event = Event(name=name, points_remain=points_remain, points_awarded=0)
        event.organizers.extend(organizers)
        event.guests.extend(guests)
        db_session.add(event)
        db_session.commit()
        return event

    return _make


@pytest.fixture(scope='function')
def cashier(make_user):
    return make_user("cashier1", role=Role.CASHIER)


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user("manager1", role=Role.MANAGER)


@pytest.fixture(scope='function')
def member(make_user):
    return make_user("alice001")


def balance_of(user) -> int:
    """Fresh balance read for a user created by a fixture."""
    db.session.expire(user)
    return user.balance


def get_auth_token(client, utorid: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/auth/tokens', json={
        'utorid': utorid,
        'password': password,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
