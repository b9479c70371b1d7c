"""
Pytest fixtures for stockwatch backend tests.

Provides an in-memory database, a pinned clock, a fresh app context per test,
product/inventory factories and the test client.
"""

import pytest

from stockwatch import create_app
from stockwatch.extensions import db
from stockwatch.models import Product, Inventory
from stockwatch.time_utils import FixedClock


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CLOCK': FixedClock(),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def clock(app):
    """Pinned clock; tests call clock.advance(...) to order records."""
    clock = FixedClock()
    app.config['CLOCK'] = clock
    return clock


@pytest.fixture(scope='function')
def db_session(app, clock):
    """Fresh app context (and ledger store) on an emptied database."""
    defaults = {
        'ALERT_DISPATCH_MODE': app.config['ALERT_DISPATCH_MODE'],
        'ALERT_DEDUP_STRATEGY': app.config['ALERT_DEDUP_STRATEGY'],
        'RECONCILE_MISSING_INVENTORY_AS_ZERO': app.config['RECONCILE_MISSING_INVENTORY_AS_ZERO'],
    }
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()
    app.config.update(defaults)


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def make_product(db_session, clock):
    """Factory: a product with an optional inventory row at 'main'."""
    def _make(product_id="p1", *, name="Widget", min_threshold=5, stock=None, location_id="main"):
        now = clock.now()
        product = Product(
            product_id=product_id,
            name=name,
            description="A product used in tests.",
            min_threshold=min_threshold,
            created_at=now,
            updated_at=now,
        )
        db_session.add(product)
        if stock is not None:
            db_session.add(Inventory(
                product_id=product_id,
                location_id=location_id,
                current_stock=stock,
                created_at=now,
                updated_at=now,
            ))
        db_session.commit()
        return product

    return _make
