"""
Pytest fixtures for sawmill backend tests.

Provides the test database, site/product/lot factories, and a test client
with principal headers.
"""

from datetime import datetime, timedelta

import pytest

from sawmill import create_app
from sawmill.extensions import db
from sawmill.models import Product, Site, StockLocation, StockLot
from sawmill.services import cash_shift_service


PRINCIPAL_ID = 7

# Config keys tests are allowed to flip; restored after every test
_MUTABLE_KEYS = (
    "CASH_POSTING_MODE",
    "CANCELLATION_POLICY",
    "UNIT_OF_WORK_MAX_WAIT_MS",
    "UNIT_OF_WORK_TIMEOUT_MS",
    "PRINCIPAL_RESOLVER",
)


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


@pytest.fixture(autouse=True)
def _restore_config(app):
    saved = {key: app.config.get(key) for key in _MUTABLE_KEYS}
    yield
    app.config.update(saved)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Core deletes skip the ledger flush guard.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def site(db_session):
    """Site A (the site the principal works for)."""
    site = Site(name="Aserradero A", code="A")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def other_site(db_session):
    """Site B, used to prove records never leak across sites."""
    site = Site(name="Aserradero B", code="B")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def product(db_session, site):
    product = Product(site_id=site.id, sku="TAB-1X12", name="Tabla 1x12x8'")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session, site):
    product = Product(site_id=site.id, sku="VIG-4X4", name="Viga 4x4x10'")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_lot(db_session):
    """
    Factory for lots created directly (no PRODUCTION_IN movement).

    ingress_days_ago orders lots for FIFO: bigger means older.
    """
    base = datetime(2025, 11, 1, 12, 0, 0)

    def _make(product, pieces, location=StockLocation.WAREHOUSE, ingress_days_ago=0, origin_order_id=None,
              ingress_at=None):
        lot = StockLot(
            site_id=product.site_id,
            product_id=product.id,
            location=location,
            pieces=pieces,
            ingress_at=ingress_at or base - timedelta(days=ingress_days_ago),
            origin_order_id=origin_order_id,
        )
        db_session.add(lot)
        db_session.commit()
        return lot

    return _make


@pytest.fixture(scope='function')
def open_shift(db_session, site):
    """Factory opening the site's drawer with a given float (cents)."""
    def _open(opening_float_cents=50000, site_id=None):
        return cash_shift_service.open_shift(site_id or site.id, opening_float_cents, PRINCIPAL_ID)

    return _open


@pytest.fixture(scope='function')
def headers(site):
    """Principal headers for site A."""
    return {"X-Principal-Id": str(PRINCIPAL_ID), "X-Site-Id": str(site.id)}


@pytest.fixture(scope='function')
def other_headers(other_site):
    return {"X-Principal-Id": str(PRINCIPAL_ID), "X-Site-Id": str(other_site.id)}
