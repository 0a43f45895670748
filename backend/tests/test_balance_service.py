"""
Balance reconciliation tests.

Verifies:
- Payments settle open documents oldest first, then the opening balance
- Overpayment is rejected and leaves every balance untouched
- Supplier payments settle purchase orders
- Statements and station scoping
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stationledger.errors import AccessDenied, NotFound, OverpaymentError, ValidationError
from stationledger.extensions import db
from stationledger.models import Customer, Payment, PaymentAllocation, PurchaseOrder, SalesTransaction, Supplier
from stationledger.schemas import PaymentInput, PurchaseOrderInput, PurchaseOrderItemInput
from stationledger.services import balance_service, purchase_service, sales_service
from stationledger.time_utils import utcnow


def _reload(model, entity_id):
    db.session.expire_all()
    return db.session.get(model, entity_id)


def _customer_payment(customer_id, amount_cents, **extra):
    return PaymentInput(amount_cents=amount_cents, payment_method="cash", customer_id=customer_id, **extra)


@pytest.fixture
def credit_sales(tank, customer, cashier_a, make_sale):
    """Three credit sales of 300, 500 and 200, oldest first."""
    now = utcnow()
    sales = []
    for days_ago, litres in ((3, "3"), (2, "5"), (1, "2")):
        sale, _ = sales_service.create_sale(
            *make_sale(
                (tank, litres), payment_method="credit", customer_id=customer.id,
                transaction_date=now - timedelta(days=days_ago),
            ),
            cashier_a,
        )
        sales.append(sale)
    return sales


class TestCustomerPayments:

    def test_fifo_allocation_oldest_first(self, customer, credit_sales, cashier_a):
        oldest, middle, newest = credit_sales

        payment = balance_service.apply_payment(_customer_payment(customer.id, 600), cashier_a)

        allocations = (
            db.session.query(PaymentAllocation)
            .filter_by(payment_id=payment.id)
            .order_by(PaymentAllocation.id)
            .all()
        )
        assert [(a.sale_id, a.amount_cents) for a in allocations] == [(oldest.id, 300), (middle.id, 300)]
        assert _reload(SalesTransaction, oldest.id).outstanding_cents == 0
        assert _reload(SalesTransaction, middle.id).outstanding_cents == 200
        assert _reload(SalesTransaction, middle.id).paid_cents == 300
        assert _reload(SalesTransaction, newest.id).outstanding_cents == 200
        assert _reload(Customer, customer.id).outstanding_cents == 400

    def test_balance_matches_open_documents(self, customer, credit_sales, cashier_a):
        balance_service.apply_payment(_customer_payment(customer.id, 450), cashier_a)

        open_total = sum(
            _reload(SalesTransaction, sale.id).outstanding_cents for sale in credit_sales
        )
        assert _reload(Customer, customer.id).outstanding_cents == open_total == 550

    def test_payment_record(self, customer, credit_sales, cashier_a):
        payment = balance_service.apply_payment(
            _customer_payment(customer.id, 100, reference_number="RCPT-9"), cashier_a,
        )

        stored = _reload(Payment, payment.id)
        assert stored.type == "receivable"
        assert stored.station_id == cashier_a.station_id
        assert stored.user_id == cashier_a.user_id
        assert stored.reference_number == "RCPT-9"

    def test_overpayment_rejected_and_nothing_changes(self, customer, credit_sales, cashier_a):
        with pytest.raises(OverpaymentError) as exc_info:
            balance_service.apply_payment(_customer_payment(customer.id, 1001), cashier_a)

        assert exc_info.value.details["outstanding_cents"] == 1000
        assert _reload(Customer, customer.id).outstanding_cents == 1000
        assert db.session.query(Payment).count() == 0
        assert db.session.query(PaymentAllocation).count() == 0
        assert all(_reload(SalesTransaction, s.id).outstanding_cents > 0 for s in credit_sales)

    def test_payment_on_zero_balance_rejected(self, customer, cashier_a):
        with pytest.raises(OverpaymentError):
            balance_service.apply_payment(_customer_payment(customer.id, 1), cashier_a)

    def test_opening_balance_settled_after_documents(self, customer, credit_sales, cashier_a):
        balance_service.increase_outstanding(amount_cents=250, customer_id=customer.id, caller=cashier_a)
        assert _reload(Customer, customer.id).outstanding_cents == 1250

        payment = balance_service.apply_payment(_customer_payment(customer.id, 1100), cashier_a)

        allocated = sum(a.amount_cents for a in payment.allocations)
        assert allocated == 1000
        assert _reload(Customer, customer.id).outstanding_cents == 150

    def test_shared_customer_payable_from_any_station(self, shared_customer, cashier_a, cashier_b):
        balance_service.increase_outstanding(amount_cents=700, customer_id=shared_customer.id, caller=cashier_a)

        payment = balance_service.apply_payment(_customer_payment(shared_customer.id, 700), cashier_b)

        assert payment.station_id == cashier_b.station_id
        assert _reload(Customer, shared_customer.id).outstanding_cents == 0


class TestPaymentValidation:

    def test_requires_exactly_one_counterparty(self, customer, supplier, cashier_a):
        with pytest.raises(ValidationError):
            balance_service.apply_payment(
                PaymentInput(amount_cents=10, payment_method="cash"), cashier_a,
            )
        with pytest.raises(ValidationError):
            balance_service.apply_payment(
                PaymentInput(amount_cents=10, payment_method="cash", customer_id=customer.id, supplier_id=supplier.id),
                cashier_a,
            )

    @pytest.mark.parametrize("amount", [0, -5])
    def test_amount_must_be_positive(self, customer, cashier_a, amount):
        with pytest.raises(ValidationError):
            balance_service.apply_payment(_customer_payment(customer.id, amount), cashier_a)

    def test_unknown_method_rejected(self, customer, cashier_a):
        with pytest.raises(ValidationError):
            balance_service.apply_payment(
                PaymentInput(amount_cents=10, payment_method="barter", customer_id=customer.id), cashier_a,
            )

    def test_unknown_customer(self, cashier_a):
        with pytest.raises(NotFound):
            balance_service.apply_payment(_customer_payment(99999, 10), cashier_a)

    def test_other_stations_customer_denied(self, customer, credit_sales, cashier_b):
        with pytest.raises(AccessDenied):
            balance_service.apply_payment(_customer_payment(customer.id, 10), cashier_b)
        assert _reload(Customer, customer.id).outstanding_cents == 1000


class TestSupplierPayments:

    def _order(self, tank, supplier, caller, litres, days_ago):
        header = PurchaseOrderInput(
            supplier_id=supplier.id,
            subtotal_cents=litres * 90,
            total_cents=litres * 90,
            order_date=utcnow() - timedelta(days=days_ago),
        )
        items = [PurchaseOrderItemInput(
            product_id=tank.product_id, tank_id=tank.id, quantity=Decimal(litres), unit_price_cents=90,
        )]
        return purchase_service.create_purchase_order(header, items, caller)

    def test_supplier_payment_settles_orders_fifo(self, tank, supplier, manager_a):
        older = self._order(tank, supplier, manager_a, 10, days_ago=5)
        newer = self._order(tank, supplier, manager_a, 20, days_ago=1)
        assert _reload(Supplier, supplier.id).outstanding_cents == 2700

        payment = balance_service.apply_payment(
            PaymentInput(amount_cents=1500, payment_method="bank_transfer", supplier_id=supplier.id), manager_a,
        )

        assert payment.type == "payable"
        assert _reload(PurchaseOrder, older.id).outstanding_cents == 0
        assert _reload(PurchaseOrder, newer.id).outstanding_cents == 1200
        assert _reload(PurchaseOrder, newer.id).paid_cents == 600
        assert _reload(Supplier, supplier.id).outstanding_cents == 1200


class TestStatement:

    def test_customer_statement(self, customer, credit_sales, cashier_a):
        balance_service.increase_outstanding(amount_cents=50, customer_id=customer.id, caller=cashier_a)
        balance_service.apply_payment(_customer_payment(customer.id, 300), cashier_a)
        balance_service.apply_payment(_customer_payment(customer.id, 100), cashier_a)

        statement = balance_service.get_statement(balance_service.ENTITY_CUSTOMER, customer.id, cashier_a)

        assert statement["total_payments"] == 400
        assert statement["outstanding"] == 650
        assert len(statement["payments"]) == 2
        assert [doc["outstanding_cents"] for doc in statement["open_documents"]] == [400, 200]
        assert statement["unallocated_cents"] == 50

    def test_unknown_entity_type(self, customer, cashier_a):
        with pytest.raises(ValidationError):
            balance_service.get_statement("employee", customer.id, cashier_a)

    def test_statement_is_station_scoped(self, customer, cashier_b):
        with pytest.raises(AccessDenied):
            balance_service.get_statement(balance_service.ENTITY_CUSTOMER, customer.id, cashier_b)
