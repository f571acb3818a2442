"""
Pytest fixtures for posledger backend tests.

Provides the app on an in-memory database, a per-test table wipe, a test
client and small factories for products and sales.
"""

from datetime import datetime

import pytest
from posledger import create_app
from posledger.extensions import db
from posledger.services import checkout_service, notification_service, products_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOW_STOCK_THRESHOLD': 10,
        'VOID_REQUIRES_APPROVAL': False,
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
        notification_service._sinks.clear()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Create a product through the catalog so opening stock is a manual movement."""
    def _make(name="Widget", price_cents=1000, unit_cost_cents=600, stock=5, barcode=None, threshold=None):
        payload = {
            "name": name,
            "price_cents": price_cents,
            "stock_on_hand": stock,
        }
        if unit_cost_cents is not None:
            payload["unit_cost_cents"] = unit_cost_cents
        if barcode is not None:
            payload["barcode"] = barcode
        if threshold is not None:
            payload["low_stock_threshold"] = threshold
        patch = products_service.validate_product_payload(
            payload, policy=products_service.PRODUCT_CREATE_POLICY, partial=False
        )
        return products_service.create_product(patch=patch)
    return _make


@pytest.fixture(scope='function')
def sell(db_session):
    """Checkout helper: sell({product_id: qty}, at=datetime)."""
    def _sell(quantities: dict, at: datetime | None = None, user_id=None):
        cart = [{"product_id": pid, "quantity": qty} for pid, qty in quantities.items()]
        return checkout_service.checkout(cart, user_id=user_id, occurred_at=at)
    return _sell


@pytest.fixture(scope='function')
def events(db_session):
    """Collect stock events published during the test."""
    received = []
    notification_service.register_sink(received.append)
    yield received
    notification_service.unregister_sink(received.append)


@pytest.fixture(scope='function')
def lock_trace(db_session, monkeypatch):
    """
    Record row locks and compensation checks in the order they happen.

    Entries are the locked model name ("LedgerTransaction", "Product") or
    "check" whenever an orchestrator asks whether a checkout is voided.
    """
    from posledger.services import ledger_service, return_service, stock_service, void_service

    trace = []

    def tracing_lock(original):
        def _lock(query):
            trace.append(query.column_descriptions[0]["entity"].__name__)
            return original(query)
        return _lock

    def tracing_check(original):
        def _check(checkout):
            trace.append("check")
            return original(checkout)
        return _check

    monkeypatch.setattr(ledger_service, "lock_for_update", tracing_lock(ledger_service.lock_for_update))
    monkeypatch.setattr(stock_service, "lock_for_update", tracing_lock(stock_service.lock_for_update))
    monkeypatch.setattr(void_service, "find_void_for", tracing_check(void_service.find_void_for))
    monkeypatch.setattr(return_service, "find_void_for", tracing_check(return_service.find_void_for))
    return trace
