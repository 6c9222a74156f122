"""
Pytest fixtures for MD CARS backend tests.

Provides an in-memory app, per-test table wipe, one user per role,
auth headers and small factories for products and customers.
"""

import pytest

from mdcars import create_app
from mdcars.config import Config
from mdcars.extensions import db
from mdcars.models import User
from mdcars.models.auth import ROLE_CASHIER, ROLE_OWNER, ROLE_STOCK_MANAGER
from mdcars.services import customers_service, products_service
from mdcars.services.auth_service import hash_password


TEST_PASSWORD = "Password123!"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_EXCHANGE_RATE = "4.85"
    LOG_LEVEL = "WARNING"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


def _make_user(db_session, password_hash, username: str, role: str) -> User:
    user = User(
        username=username,
        password_hash=password_hash,
        role=role,
        first_name=username.title(),
        last_name="Test",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, password_hash):
    return _make_user(db_session, password_hash, "owner", ROLE_OWNER)


@pytest.fixture(scope='function')
def cashier(db_session, password_hash):
    return _make_user(db_session, password_hash, "cashier", ROLE_CASHIER)


@pytest.fixture(scope='function')
def stock_manager(db_session, password_hash):
    return _make_user(db_session, password_hash, "stockman", ROLE_STOCK_MANAGER)


@pytest.fixture(scope='function')
def make_product(db_session, owner):
    """Factory: make_product(name, cost, price, stock=0, **extra)."""
    def _make(name="Brake Pad", cost="25.00", price="40.00", stock=0, **extra):
        payload = {"name": name, "cost_price": cost, "selling_price": price, **extra}
        if stock:
            payload["initial_stock"] = stock
        return products_service.create_product(payload, actor_user_id=owner.id)
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Ali", phone="0910000001", **extra):
        return customers_service.create_customer({"name": name, "phone": phone, **extra})
    return _make


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(client, owner):
    return auth_headers(get_auth_token(client, owner.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, cashier.username))


@pytest.fixture(scope='function')
def stock_headers(client, stock_manager):
    return auth_headers(get_auth_token(client, stock_manager.username))
