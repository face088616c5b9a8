"""
Pytest fixtures for cashdesk backend tests.

Provides test database setup, catalog factories, actor headers, and test client.
"""

import pytest

from cashdesk import create_app
from cashdesk.extensions import db
from cashdesk.models import Product, Service, StaffMember, Customer
from cashdesk.time_utils import utcnow


TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'DB_RETRY_ATTEMPTS': 3,
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


@pytest.fixture(scope='function')
def race_app(tmp_path):
    """
    File-backed SQLite app for thread races.

    In-memory SQLite shares one connection across threads, which would hide
    the write lock the races depend on. Each thread pushes its own app context.
    """
    race_app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'DB_RETRY_ATTEMPTS': 10,
    })
    with race_app.app_context():
        db.create_all()

    yield race_app

    with race_app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name="Pomade", price_cents=1500, cost_cents=700, quantity_on_hand=10, category="Hair Care"):
        product = Product(
            name=name,
            category=category,
            price_cents=price_cents,
            cost_cents=cost_cents,
            quantity_on_hand=quantity_on_hand,
            created_at=utcnow(),
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_service(db_session):
    def _make(name="Haircut", price_cents=2500):
        service = Service(name=name, price_cents=price_cents, duration_minutes=30)
        db_session.add(service)
        db_session.commit()
        return service
    return _make


@pytest.fixture(scope='function')
def make_staff(db_session):
    def _make(name="Alex", commission_rate_bps=4000):
        staff = StaffMember(name=name, commission_rate_bps=commission_rate_bps)
        db_session.add(staff)
        db_session.commit()
        return staff
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Jamie", email=None, loyalty_points=0):
        customer = Customer(name=name, email=email, loyalty_points=loyalty_points)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


def actor_headers(actor_id: int, role: str) -> dict:
    """Helper to create identity headers as forwarded by the auth layer."""
    return {'X-Actor-Id': str(actor_id), 'X-Actor-Role': role}


@pytest.fixture
def admin_headers():
    return actor_headers(1, 'admin')


@pytest.fixture
def supervisor_headers():
    return actor_headers(2, 'supervisor')


@pytest.fixture
def cashier_headers():
    return actor_headers(3, 'cashier')


@pytest.fixture
def customer_headers(make_customer):
    customer = make_customer()
    return actor_headers(customer.id, 'customer')
