"""
Pytest fixtures for stock ledger backend tests.

Provides an in-memory database, per-test table cleanup, test client and
small factories for businesses, stocked products and completed sales.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Business, Product
from stockledger.models.enums import ReferenceType, TransactionType
from stockledger.services import ledger_service, sales_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0,
        'LOW_STOCK_ALERT_INTERVAL_SECONDS': 300,
        'ALLOW_NEGATIVE_ADJUSTMENTS': True,
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
    """Business A (first tenant)."""
    biz = Business(name="Biz A - Corner Shop", code="CORNER", is_active=True)
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def other_business(db_session):
    """Business B (second tenant)."""
    biz = Business(name="Biz B - Market Stall", code="STALL", is_active=True)
    db_session.add(biz)
    db_session.commit()
    return biz


@pytest.fixture(scope='function')
def make_product(db_session, business):
    """
    Factory: product with opening stock posted through the ledger.

    make_product("SKU-1", stock=20, price=250)
    """
    def _make(sku, *, stock=0, price=1000, min_stock_level=None, business_id=None):
        product = Product(
            business_id=business_id or business.id,
            sku=sku,
            name=f"Product {sku}",
            selling_price_cents=price,
            purchase_price_cents=price // 2,
            min_stock_level=min_stock_level,
        )
        db_session.add(product)
        db_session.commit()

        if stock:
            ledger_service.record_transaction(
                business_id=product.business_id,
                product_id=product.id,
                transaction_type=TransactionType.IN,
                quantity=stock,
                reference=ledger_service.Reference(ReferenceType.PURCHASE, f"PO-{sku}"),
            )
        return product

    return _make


@pytest.fixture(scope='function')
def make_sale(db_session, business):
    """
    Factory: completed sale; lines are (product, quantity, unit_price_cents).
    """
    counter = {"n": 0}

    def _make(*lines, customer_id="CUST-1"):
        counter["n"] += 1
        return sales_service.record_sale(
            business_id=business.id,
            invoice_number=f"INV-{counter['n']:04d}",
            customer_id=customer_id,
            lines=[
                {"product_id": p.id, "quantity": qty, "unit_price_cents": price}
                for p, qty, price in lines
            ],
        )

    return _make
