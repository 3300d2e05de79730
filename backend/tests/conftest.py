"""
Pytest fixtures for billing backend tests.

Provides an in-memory application, a clean database per test, staff users
with bearer tokens, and factories for catalog rows.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from billing import create_app
from billing.extensions import db
from billing.models import Discount
from billing.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from billing.services.auth_service import create_user
from billing.services.catalog_service import CatalogService
from billing.services.customer_service import CustomerService
from billing.services.session_service import create_session
from billing.time_utils import today


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'PAYMENT_GATEWAY_KEY_ID': 'rzp_test_key',
        'PAYMENT_GATEWAY_KEY_SECRET': 'test-gateway-secret',
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


# =============================================================================
# USERS
# =============================================================================

def _make_user(username, role):
    return create_user(
        username=username,
        email=f"{username}@billing.test",
        password=TEST_PASSWORD,
        role=role,
        first_name=username.title(),
        rounds=4,
    )


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user("admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user("manager", ROLE_MANAGER)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return _make_user("cashier", ROLE_CASHIER)


def _auth_headers(user):
    _, token = create_session(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return _auth_headers(admin_user)


@pytest.fixture(scope='function')
def cashier_headers(cashier_user):
    return _auth_headers(cashier_user)


# =============================================================================
# CATALOG FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_product(db_session):
    """Create products through the catalog so opening stock is on the ledger."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "unitPrice": "100.00",
            "taxRate": "10",
            "stockQuantity": 10,
        }
        payload.update(overrides)
        return CatalogService(db_session).create_product(payload)

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Stock 10, price 100.00, tax 10%."""
    return make_product()


@pytest.fixture(scope='function')
def customer(db_session):
    return CustomerService(db_session).create({
        "firstName": "Asha",
        "lastName": "Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
    })


@pytest.fixture(scope='function')
def make_discount(db_session):
    def _make(**overrides):
        fields = {
            "code": "SAVE10",
            "name": "Ten percent off",
            "discount_type": "percentage",
            "value": Decimal("10"),
            "min_purchase_amount": Decimal("0"),
            "max_discount_amount": None,
            "start_date": today() - timedelta(days=1),
            "end_date": today() + timedelta(days=30),
            "usage_limit": None,
            "used_count": 0,
            "is_active": True,
        }
        fields.update(overrides)
        discount = Discount(**fields)
        db_session.add(discount)
        db_session.commit()
        return discount

    return _make
