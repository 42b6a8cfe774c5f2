"""
Pytest fixtures for D1 Store backend tests.

Provides test database setup, seed data factories, and logged-in clients.
"""

from datetime import datetime

import pytest
from d1store import create_app
from d1store.extensions import db
from d1store.models import Staff, StockItem, Store


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
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
def store(db_session):
    store = Store(name="Sydney CBD")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_staff(db_session, store):
    """Factory: make_staff("Alex", uniform_limit=2)."""
    def _make(display_name="Alex Smith", *, role="STAFF", uniform_limit=None, store_id=None):
        staff = Staff(
            display_name=display_name,
            role=role,
            store_id=store_id or store.id,
            uniform_limit=uniform_limit,
        )
        db_session.add(staff)
        db_session.commit()
        return staff

    return _make


@pytest.fixture(scope='function')
def make_stock(db_session):
    """Factory: make_stock("9300000000001", "Polo Shirt M", 10)."""
    def _make(ean="9300000000001", name="Polo Shirt M", qty=10):
        item = StockItem(ean=ean, name=name, qty=qty)
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture
def t0():
    """A fixed request time; tests step forward from here."""
    return datetime(2026, 3, 2, 9, 0, 0)


def login(client, role: str = "admin"):
    """Helper to sign a test client in as one of the configured roles."""
    credentials = {
        "admin": ("admin@123", "123"),
        "dispatchAdmin": ("dispatchAdmin@123", "123"),
    }[role]
    response = client.post('/api/session/login', json={
        'email': credentials[0],
        'password': credentials[1],
        'role': role,
    })
    assert response.status_code == 200, response.json
    return client


@pytest.fixture(scope='function')
def admin_client(client, db_session):
    return login(client, "admin")


@pytest.fixture(scope='function')
def dispatch_client(client, db_session):
    return login(client, "dispatchAdmin")
