"""
Pytest fixtures for shopcore backend tests.

Provides an in-memory application, a per-test clean database, product and
actor factories, and request header helpers.
"""

import itertools

import pytest

from shopcore import create_app
from shopcore.actors import Actor, ROLE_ADMIN, ROLE_MODERATOR
from shopcore.extensions import db
from shopcore.services import catalog_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'DB_RETRY_BACKOFF_SECONDS': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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


_sku_counter = itertools.count(1)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product with opening stock booked through the ledger."""
    def _make(price_cents=10000, stock=10, is_active=True, name=None, sku=None):
        n = next(_sku_counter)
        return catalog_service.create_product(
            sku=sku or f"SKU-{n:04d}",
            name=name or f"Product {n}",
            price_cents=price_cents,
            initial_stock=stock,
            is_active=is_active,
        )
    return _make


@pytest.fixture
def customer():
    return Actor(user_id=1)


@pytest.fixture
def other_customer():
    return Actor(user_id=2)


@pytest.fixture
def admin():
    return Actor(user_id=900, role=ROLE_ADMIN)


@pytest.fixture
def moderator():
    return Actor(user_id=901, role=ROLE_MODERATOR)


@pytest.fixture
def address():
    return {
        "street": "Av. Reforma 222",
        "city": "Ciudad de Mexico",
        "state": "CDMX",
        "zip_code": "06600",
    }


def actor_headers(actor: Actor) -> dict:
    """Headers the upstream gateway sets for an authenticated caller."""
    return {'X-Actor-Id': str(actor.user_id), 'X-Actor-Role': actor.role}
