"""
Pytest fixtures for MarketPOS backend tests.

Provides an in-memory application, a clean database per test, users for each
role, sample products and bearer-token headers.
"""

from datetime import date

import pytest

from marketpos import create_app
from marketpos.extensions import db
from marketpos.models import Product, User
from marketpos.services.auth_service import hash_password
from marketpos.services import session_service

TEST_PASSWORD = "Passw0rd!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'BUSINESS_TIMEZONE': 'UTC',
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


def make_user(session, name, email, role, is_active=True):
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=is_active,
    )
    session.add(user)
    session.commit()
    return user


def make_product(session, name="Coca Cola 500ml", barcode="1234567890123", price_cents=150,
                 stock=100, min_stock=20, category="Beverages", expiry_date=None):
    product = Product(
        name=name,
        barcode=barcode,
        category=category,
        price_cents=price_cents,
        stock=stock,
        min_stock=min_stock,
        expiry_date=expiry_date,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "Admin", "admin@test.local", "admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return make_user(db_session, "Manager", "manager@test.local", "manager")


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return make_user(db_session, "Cashier", "cashier@test.local", "cashier")


@pytest.fixture(scope='function')
def cola(db_session):
    """Product priced 1.50 with 100 in stock."""
    return make_product(db_session)


@pytest.fixture(scope='function')
def bread(db_session):
    """Product priced 2.00 with 50 in stock."""
    return make_product(
        db_session,
        name="White Bread",
        barcode="2345678901234",
        price_cents=200,
        stock=50,
        min_stock=10,
        category="Bakery",
        expiry_date=date(2030, 2, 15),
    )


def auth_headers(user):
    """Bearer header for a fresh session of `user`."""
    _, token = session_service.create_session(user_id=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    return auth_headers(manager_user)


@pytest.fixture(scope='function')
def cashier_headers(cashier_user):
    return auth_headers(cashier_user)
