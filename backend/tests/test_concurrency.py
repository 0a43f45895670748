"""
Concurrent writer tests.

Runs against a file-backed SQLite database so each thread gets its own
connection and the database write lock is actually contended.

Verifies:
- Two sales racing for the same stock: exactly one wins, the loser gets
  InsufficientStock, and the tank ends consistent with its movements
- Concurrent payments never drive a balance negative
"""

import threading
from decimal import Decimal

import pytest

from stationledger import create_app
from stationledger.errors import InsufficientStock, OverpaymentError
from stationledger.extensions import db
from stationledger.models import Customer, Product, Station, StockMovement, Tank
from stationledger.schemas import PaymentInput, SaleHeaderInput, SaleItemInput
from stationledger.services import balance_service, catalog_service, sales_service
from stationledger.services.access_service import CallerContext
from stationledger.units import to_quantity


ADMIN = CallerContext(user_id=1, station_id=None, role="admin")


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"check_same_thread": False, "timeout": 15}},
        'LOCK_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """Station, petrol tank (1000 of 5000, minimum 500) and a credit customer."""
    with file_app.app_context():
        station = Station(name="FuelFlow Station 1", code="FF-001", default_currency="PKR")
        product = Product(name="Petrol", category="fuel", unit="litre", current_price_cents=100)
        db.session.add_all([station, product])
        db.session.commit()

        tank = catalog_service.create_tank(
            {
                "station_id": station.id,
                "product_id": product.id,
                "name": "Tank 1 - Petrol",
                "capacity": to_quantity("5000"),
                "current_stock": to_quantity("1000"),
                "minimum_level": to_quantity("500"),
            },
            ADMIN,
        )
        customer = Customer(station_id=station.id, name="Acme Haulage", type="credit", outstanding_cents=1000)
        db.session.add(customer)
        db.session.commit()
        return {
            "station_id": station.id,
            "product_id": product.id,
            "tank_id": tank.id,
            "customer_id": customer.id,
        }


def _race(file_app, work, workers=2):
    """Run work() in N threads released together; collect outcomes."""
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def _runner():
        with file_app.app_context():
            barrier.wait()
            try:
                work()
                result = "ok"
            except (InsufficientStock, OverpaymentError) as exc:
                result = type(exc).__name__
            except Exception as exc:
                result = repr(exc)
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=_runner) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return sorted(outcomes)


def test_racing_sales_only_one_wins(file_app, seeded):
    caller = CallerContext(user_id=3, station_id=seeded["station_id"], role="cashier")

    def _sell():
        header = SaleHeaderInput(payment_method="cash", subtotal_cents=60000, total_cents=60000)
        items = [SaleItemInput(
            product_id=seeded["product_id"], tank_id=seeded["tank_id"],
            quantity=Decimal("600"), unit_price_cents=100,
        )]
        sales_service.create_sale(header, items, caller)

    assert _race(file_app, _sell) == ["InsufficientStock", "ok"]

    with file_app.app_context():
        tank = db.session.get(Tank, seeded["tank_id"])
        assert tank.current_stock == Decimal("400.000")
        assert tank.status == "critical"

        last = (
            db.session.query(StockMovement)
            .filter_by(tank_id=tank.id)
            .order_by(StockMovement.id.desc())
            .first()
        )
        assert last.new_stock == tank.current_stock
        assert db.session.query(StockMovement).filter_by(tank_id=tank.id).count() == 2


def test_racing_payments_never_overdraw_balance(file_app, seeded):
    caller = CallerContext(user_id=3, station_id=seeded["station_id"], role="cashier")

    def _pay():
        balance_service.apply_payment(
            PaymentInput(amount_cents=700, payment_method="cash", customer_id=seeded["customer_id"]), caller,
        )

    assert _race(file_app, _pay) == ["OverpaymentError", "ok"]

    with file_app.app_context():
        assert db.session.get(Customer, seeded["customer_id"]).outstanding_cents == 300
