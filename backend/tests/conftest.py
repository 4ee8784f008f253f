"""
Pytest fixtures for the return engine tests.

Provides test database setup, a demo store with staff and the
"Blue Paint 1L" order, an order factory, and the Flask test client.
"""

from datetime import datetime

import pytest

from pos_returns import create_app
from pos_returns.extensions import db
from pos_returns.models import Store, Product, Order, OrderLineItem, Payment
from pos_returns.models.auth import ROLE_SUPERVISOR, ROLE_MANAGER
from pos_returns.services.auth_service import create_user
from pos_returns.services.settings_service import ReturnPolicy


PASSWORD = "Password123"
SUPERVISOR_PIN = "4821"


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
def store(db_session):
    store = Store(name="Main Store", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Harbour Street", code="HBR")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def cashier(db_session, store):
    return create_user(store.id, "cashier", PASSWORD, full_name="Casey Cashier")


@pytest.fixture(scope='function')
def supervisor(db_session, store):
    """Supervisor with an employee number and an approval PIN."""
    return create_user(
        store.id,
        "supervisor",
        PASSWORD,
        role=ROLE_SUPERVISOR,
        full_name="Sam Supervisor",
        employee_number="1042",
        pin=SUPERVISOR_PIN,
    )


@pytest.fixture(scope='function')
def manager(db_session, store):
    """Manager without an employee number or PIN (approves with password)."""
    return create_user(store.id, "manager", PASSWORD, role=ROLE_MANAGER, full_name="Morgan Manager")


@pytest.fixture(scope='function')
def product(db_session, store):
    product = Product(
        store_id=store.id,
        sku="PAINT-BLUE-1L",
        barcode="0712345000017",
        name="Blue Paint 1L",
        price_cents=80000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_order(db_session):
    """
    Factory for completed orders.

    lines: (product or None, name, quantity, line_total_cents) tuples.
    """
    def _make(store, order_number, lines, *, status="completed", customer_name="Walk-in Customer",
              invoice_number=None, customer_po_number=None, ordered_at=None):
        order = Order(
            store_id=store.id,
            order_number=order_number,
            invoice_number=invoice_number,
            customer_po_number=customer_po_number,
            customer_name=customer_name,
            status=status,
            ordered_at=ordered_at or datetime(2024, 3, 1, 10, 15),
        )
        db_session.add(order)
        db_session.flush()

        total = 0
        for prod, name, quantity, line_total in lines:
            db_session.add(OrderLineItem(
                order_id=order.id,
                product_id=prod.id if prod is not None else None,
                name=name,
                sku=prod.sku if prod is not None else None,
                barcode=prod.barcode if prod is not None else None,
                quantity=quantity,
                unit_price_cents=line_total // quantity,
                line_total_cents=line_total,
            ))
            total += line_total
        db_session.add(Payment(order_id=order.id, method="cash", amount_cents=total))
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def paint_order(make_order, store, product):
    """POS-2024-0007: 5 x Blue Paint 1L, line total 4,000.00."""
    return make_order(
        store,
        "POS-2024-0007",
        [(product, "Blue Paint 1L", 5, 400000)],
        invoice_number="INV-2024-0007",
        customer_name="Jordan Lee",
    )


@pytest.fixture
def open_policy():
    """Policy that never asks for a supervisor."""
    return ReturnPolicy(always_require_supervisor=False)


@pytest.fixture
def strict_policy():
    return ReturnPolicy()


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
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
