"""
Pytest fixtures for TradeLedger backend tests.

Provides an in-memory application, a per-test clean database, and
counterparty/product fixtures with a known stock position.
"""

from decimal import Decimal

import pytest

from tradeledger import create_app
from tradeledger.extensions import db
from tradeledger.services import category_service, party_service, product_service


ACTOR_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TRANSACTION_RETRY_BACKOFF': 0,
        'TAX_RATE_A': '0',
        'TAX_RATE_B': '18',
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
    db.session.remove()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.remove()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def actor_headers():
    return {'X-Actor-Id': str(ACTOR_ID)}


@pytest.fixture(scope='function')
def customer(db_session):
    """Client CLI00001 on 30-day credit terms."""
    return party_service.create_client({
        'name': 'Kigali Hardware Ltd',
        'email': 'accounts@kigalihw.example',
        'payment_terms': 'credit_30',
    })


@pytest.fixture(scope='function')
def supplier(db_session):
    return party_service.create_supplier({
        'name': 'Lake Supplies',
        'contact_person': 'Grace',
        'payment_terms': 'credit_15',
    })


@pytest.fixture(scope='function')
def category(db_session):
    return category_service.create_category({'name': 'Building Materials'}, actor_id=ACTOR_ID)


@pytest.fixture(scope='function')
def product(category):
    """Product with 20 units on hand at an average cost of 5.00."""
    return product_service.create_product({
        'sku': 'cem-50',
        'name': 'Cement 50kg',
        'category_id': category.id,
        'unit': 'piece',
        'initial_stock': '20',
        'unit_cost': '5.00',
    }, actor_id=ACTOR_ID)


@pytest.fixture(scope='function')
def empty_product(category):
    """Product with no stock and no cost history."""
    return product_service.create_product({
        'sku': 'NAIL-1KG',
        'name': 'Nails 1kg',
        'category_id': category.id,
        'unit': 'kg',
    })


def stock_of(product_id) -> Decimal:
    """Fresh read of a product's on-hand quantity."""
    from tradeledger.models import Product

    db.session.expire_all()
    return Decimal(db.session.get(Product, product_id).current_stock)
