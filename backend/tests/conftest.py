"""
Pytest fixtures for StockFlow backend tests.

Provides the test database, business (tenant) fixtures, ledger helpers and
the test client.
"""

import pytest
from stockflow import create_app
from stockflow.extensions import db
from stockflow.models import Business, Supplier


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONVERSION_LOSS_POLICY': 'ask',
        'RETRY_ATTEMPTS': 3,
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
def business(db_session):
    """Create Business A (first tenant)."""
    business = Business(name="Ama's Provisions", currency="GHS", is_active=True)
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def other_business(db_session):
    """Create Business B (second tenant)."""
    business = Business(name="Kofi Wholesale", currency="GHS", is_active=True)
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def supplier(db_session, business):
    supplier = Supplier(business_id=business.id, name="Makola Traders", location="Accra")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def receive(business):
    """Helper: record a receipt for the default business."""
    from stockflow.services.receipt_service import record_receipt

    def _receive(product_name, quantity, total_cost=None, **kwargs):
        return record_receipt(
            business_id=business.id,
            product_name=product_name,
            quantity_received=quantity,
            total_cost=total_cost,
            **kwargs,
        )

    return _receive


@pytest.fixture(scope='function')
def sell(business):
    """Helper: record a sales-ledger sale for the default business."""
    from stockflow.services.sales_service import record_sale

    def _sell(product_name, quantity, amount, **kwargs):
        return record_sale(
            business_id=business.id,
            product_name=product_name,
            quantity=quantity,
            amount=amount,
            **kwargs,
        )

    return _sell


@pytest.fixture(scope='function')
def headers(business):
    """Business context headers for API requests."""
    return {'X-Business-Id': str(business.id)}
