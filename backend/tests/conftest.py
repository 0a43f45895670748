"""
Pytest fixtures for station ledger backend tests.

Provides test database setup, station/caller fixtures, and test client.

NOTE: Every fixture commits before yielding. Services open their own unit of
work (BEGIN IMMEDIATE on SQLite) and must start from a clean session.
"""

import pytest

from stationledger import create_app
from stationledger.extensions import db
from stationledger.models import Customer, Product, Station, Supplier
from stationledger.schemas import SaleHeaderInput, SaleItemInput
from stationledger.services import catalog_service
from stationledger.services.access_service import CallerContext
from stationledger.units import line_total_cents, to_quantity


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOCK_RETRY_BACKOFF': 0,
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
# STATIONS & CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def station_a(db_session):
    station = Station(name="FuelFlow Station 1", code="FF-001", default_currency="PKR")
    db_session.add(station)
    db_session.commit()
    return station


@pytest.fixture(scope='function')
def station_b(db_session):
    station = Station(name="FuelFlow Station 2", code="FF-002", default_currency="PKR")
    db_session.add(station)
    db_session.commit()
    return station


@pytest.fixture(scope='function')
def petrol(db_session):
    """Petrol at 1.00 per litre (100 cents) to keep sale arithmetic readable."""
    product = Product(name="Petrol", category="fuel", unit="litre", current_price_cents=100)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def diesel(db_session):
    product = Product(name="Diesel", category="fuel", unit="litre", current_price_cents=100)
    db_session.add(product)
    db_session.commit()
    return product


def _tank(station, product, *, name, capacity="5000", stock="1000", minimum="500"):
    return catalog_service.create_tank(
        {
            "station_id": station.id,
            "product_id": product.id,
            "name": name,
            "capacity": to_quantity(capacity),
            "current_stock": to_quantity(stock),
            "minimum_level": to_quantity(minimum),
        },
        CallerContext(user_id=1, station_id=None, role="admin"),
    )


@pytest.fixture(scope='function')
def tank(station_a, petrol):
    """Tank 1 - Petrol: stock 1000 of 5000, minimum 500 (opening movement recorded)."""
    return _tank(station_a, petrol, name="Tank 1 - Petrol")


@pytest.fixture(scope='function')
def diesel_tank(station_a, diesel):
    return _tank(station_a, diesel, name="Tank 2 - Diesel", stock="300")


@pytest.fixture(scope='function')
def tank_b(station_b, petrol):
    return _tank(station_b, petrol, name="Station 2 Petrol")


# =============================================================================
# COUNTERPARTIES
# =============================================================================

@pytest.fixture(scope='function')
def customer(db_session, station_a):
    customer = Customer(station_id=station_a.id, name="Acme Haulage", type="credit", outstanding_cents=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def shared_customer(db_session):
    """Customer visible to every station (station_id NULL)."""
    customer = Customer(station_id=None, name="National Fleet", type="fleet", outstanding_cents=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier(db_session, station_a):
    supplier = Supplier(station_id=station_a.id, name="Pak Fuel Supply", outstanding_cents=0)
    db_session.add(supplier)
    db_session.commit()
    return supplier


# =============================================================================
# CALLERS
# =============================================================================

@pytest.fixture(scope='function')
def admin(db_session):
    return CallerContext(user_id=1, station_id=None, role="admin")


@pytest.fixture(scope='function')
def manager_a(station_a):
    return CallerContext(user_id=2, station_id=station_a.id, role="manager")


@pytest.fixture(scope='function')
def cashier_a(station_a):
    return CallerContext(user_id=3, station_id=station_a.id, role="cashier")


@pytest.fixture(scope='function')
def cashier_b(station_b):
    return CallerContext(user_id=4, station_id=station_b.id, role="cashier")


def caller_headers(caller) -> dict:
    """Helper to create gateway caller headers."""
    headers = {"X-User-Id": str(caller.user_id), "X-User-Role": caller.role}
    if caller.station_id is not None:
        headers["X-Station-Id"] = str(caller.station_id)
    return headers


@pytest.fixture(scope='function')
def headers():
    return caller_headers


# =============================================================================
# INPUT BUILDERS
# =============================================================================

@pytest.fixture(scope='function')
def make_sale():
    """
    Build (SaleHeaderInput, [SaleItemInput]) from (tank, quantity) lines.

    Totals are computed from the lines at the product price of 100 cents.
    """
    def _make(*lines, payment_method="cash", customer_id=None, unit_price_cents=100, **header_fields):
        items = [
            SaleItemInput(
                product_id=line_tank.product_id,
                tank_id=line_tank.id,
                quantity=to_quantity(quantity),
                unit_price_cents=unit_price_cents,
            )
            for line_tank, quantity in lines
        ]
        subtotal = sum(line_total_cents(item.quantity, unit_price_cents) for item in items)
        header = SaleHeaderInput(
            payment_method=payment_method,
            subtotal_cents=subtotal,
            total_cents=subtotal + header_fields.get("tax_cents", 0),
            customer_id=customer_id,
            **header_fields,
        )
        return header, items

    return _make
