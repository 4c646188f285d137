"""
Pytest fixtures for the inventory ledger tests.

Provides the application (in-memory SQLite), a clean database per test,
reference rows (products, locations) and a receiving helper.
"""

from datetime import datetime, timedelta

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product, WarehouseLocation
from stockledger.services import ledger_store, receiving_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.0,
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
def make_product(db_session):
    """Factory for product reference rows."""
    counter = {"n": 0}

    def _make(sku=None, name=None, is_active=True):
        counter["n"] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_location(db_session):
    """Factory for warehouse locations."""
    counter = {"n": 0}

    def _make(code=None, is_active=True):
        counter["n"] += 1
        location = WarehouseLocation(
            code=code or f"LOC-{counter['n']:02d}",
            name=f"Location {counter['n']}",
            is_active=is_active,
        )
        db_session.add(location)
        db_session.commit()
        return location

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(sku="WIDGET-1", name="Widget")


@pytest.fixture(scope='function')
def location_a(make_location):
    return make_location(code="A")


@pytest.fixture(scope='function')
def location_b(make_location):
    return make_location(code="B")


@pytest.fixture(scope='function')
def receive(db_session):
    """
    Receive one line and return the balance row it landed on.

    occurred_at is a fixed base time plus `day` days so FIFO order is
    explicit in tests.
    """
    base = datetime(2026, 1, 1, 12, 0, 0)
    receipts = {"n": 0}

    def _receive(product_id, location_id, quantity, lot_number=None, *, expiration_date=None, day=0):
        receipts["n"] += 1
        movements = receiving_service.receive(
            [{
                "product_id": product_id,
                "location_id": location_id,
                "quantity": quantity,
                "lot_number": lot_number,
                "expiration_date": expiration_date,
                "is_break_bulk": lot_number is None,
            }],
            reference_id=receipts["n"],
            occurred_at=base + timedelta(days=day),
        )
        return ledger_store.get_balance(location_id, product_id, movements[0].lot_id)

    return _receive
