# Overview: Service-layer operations for counterparty balances; receivables, payables and payments.

"""
Balance Reconciliation Service

WHY: Customer and supplier running balances are hot shared rows. Every
read-then-write of outstanding_cents happens under a row lock inside one
unit of work, and is always recomputed from the persisted value plus a
delta, never taken from the caller.

INVARIANTS:
- outstanding_cents never goes negative; a payment larger than the balance
  is rejected with OverpaymentError, not clamped or credited as an advance.
- A payment is allocated to open documents oldest first (credit sales for
  customers, purchase orders for suppliers); the remainder settles the
  opening balance that no document backs.
- customer.outstanding == sum(open credit-sale outstanding) + unallocated
  opening balance, at every commit.
- Payments and allocations are immutable.

LOCK ORDER: tanks -> counterparty -> open documents.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import NotFound, OverpaymentError, ValidationError
from ..extensions import db
from ..models import (
    Customer,
    Payment,
    PaymentAllocation,
    PurchaseOrder,
    SalesTransaction,
    Supplier,
)
from ..models.accounts import PAYMENT_METHODS, PAYMENT_TYPE_PAYABLE, PAYMENT_TYPE_RECEIVABLE
from ..time_utils import utcnow
from .access_service import get_scoped, require_station_access, resolve_station_id, scoped_query
from .concurrency import atomic, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event


ENTITY_CUSTOMER = "customer"
ENTITY_SUPPLIER = "supplier"
ENTITY_TYPES = (ENTITY_CUSTOMER, ENTITY_SUPPLIER)


# =============================================================================
# LOCKING
# =============================================================================

def lock_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter(Customer.id == customer_id)).one_or_none()
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found")
    return customer


def lock_supplier(supplier_id: int) -> Supplier:
    supplier = lock_for_update(db.session.query(Supplier).filter(Supplier.id == supplier_id)).one_or_none()
    if supplier is None:
        raise NotFound(f"Supplier {supplier_id} not found")
    return supplier


def _lock_counterparty(*, customer_id: int | None, supplier_id: int | None):
    if (customer_id is None) == (supplier_id is None):
        raise ValidationError("Exactly one of customer_id or supplier_id is required")
    if customer_id is not None:
        return lock_customer(customer_id)
    return lock_supplier(supplier_id)


# =============================================================================
# BALANCE MUTATION (inner helpers flush only; callers own the unit of work)
# =============================================================================

def _increase_outstanding_locked(party, amount_cents: int, *, enforce_credit_limit: bool = False) -> None:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")

    new_balance = (party.outstanding_cents or 0) + amount_cents
    limit = getattr(party, "credit_limit_cents", None)
    if enforce_credit_limit and limit is not None and new_balance > limit:
        raise ValidationError(
            f"Credit limit exceeded for customer {party.id}",
            details={
                "customer_id": party.id,
                "credit_limit_cents": limit,
                "outstanding_cents": party.outstanding_cents,
                "requested_cents": amount_cents,
            },
        )
    party.outstanding_cents = new_balance
    db.session.flush()


def _decrease_outstanding_locked(party, amount_cents: int) -> None:
    current = party.outstanding_cents or 0
    if amount_cents > current:
        raise OverpaymentError(
            "Amount exceeds outstanding balance",
            details={"outstanding_cents": current, "requested_cents": amount_cents},
        )
    party.outstanding_cents = current - amount_cents
    db.session.flush()


def increase_outstanding(
    *,
    amount_cents: int,
    caller,
    customer_id: int | None = None,
    supplier_id: int | None = None,
):
    """
    Raise a customer receivable or supplier payable not backed by a document
    (e.g. an opening balance carried over from another system).
    """
    def _op():
        with atomic():
            party = _lock_counterparty(customer_id=customer_id, supplier_id=supplier_id)
            require_station_access(caller, party.station_id)
            _increase_outstanding_locked(party, amount_cents)
        return party

    return run_with_retry(_op)


# =============================================================================
# PAYMENTS
# =============================================================================

def _open_documents_query(party):
    if isinstance(party, Customer):
        return (
            db.session.query(SalesTransaction)
            .filter(
                SalesTransaction.customer_id == party.id,
                SalesTransaction.outstanding_cents > 0,
            )
            .order_by(SalesTransaction.transaction_date.asc(), SalesTransaction.id.asc())
        )
    return (
        db.session.query(PurchaseOrder)
        .filter(
            PurchaseOrder.supplier_id == party.id,
            PurchaseOrder.outstanding_cents > 0,
        )
        .order_by(PurchaseOrder.order_date.asc(), PurchaseOrder.id.asc())
    )


def _allocate_fifo(payment: Payment, party, amount_cents: int) -> list[PaymentAllocation]:
    """Settle open documents oldest first; leftover stays unallocated."""
    remaining = amount_cents
    allocations = []
    for document in lock_for_update(_open_documents_query(party)).all():
        if remaining <= 0:
            break
        portion = min(remaining, document.outstanding_cents)
        document.paid_cents += portion
        document.outstanding_cents -= portion
        allocation = PaymentAllocation(payment_id=payment.id, amount_cents=portion)
        if isinstance(document, SalesTransaction):
            allocation.sale_id = document.id
        else:
            allocation.purchase_order_id = document.id
        db.session.add(allocation)
        allocations.append(allocation)
        remaining -= portion
    db.session.flush()
    return allocations


def _validate_payment_input(payment_input) -> None:
    if (payment_input.customer_id is None) == (payment_input.supplier_id is None):
        raise ValidationError("Exactly one of customer_id or supplier_id is required")
    amount = payment_input.amount_cents
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if payment_input.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_input.payment_method},
        )


def apply_payment(payment_input, caller) -> Payment:
    """
    Record a payment and settle the counterparty's balance, atomically.

    Raises:
        ValidationError: no/both counterparties, non-positive amount, bad method
        OverpaymentError: amount exceeds the current outstanding balance
        NotFound / AccessDenied: counterparty missing or outside caller's station
    """
    _validate_payment_input(payment_input)

    def _op() -> Payment:
        with atomic():
            station_id = resolve_station_id(caller, payment_input.station_id)
            party = _lock_counterparty(
                customer_id=payment_input.customer_id,
                supplier_id=payment_input.supplier_id,
            )
            require_station_access(caller, party.station_id)

            amount = payment_input.amount_cents
            _decrease_outstanding_locked(party, amount)

            payment = Payment(
                station_id=station_id,
                user_id=caller.user_id,
                customer_id=payment_input.customer_id,
                supplier_id=payment_input.supplier_id,
                amount_cents=amount,
                currency_code=payment_input.currency_code or current_app.config.get("DEFAULT_CURRENCY", "PKR"),
                payment_method=payment_input.payment_method,
                reference_number=payment_input.reference_number,
                notes=payment_input.notes,
                type=PAYMENT_TYPE_RECEIVABLE if payment_input.customer_id is not None else PAYMENT_TYPE_PAYABLE,
                payment_date=payment_input.payment_date or utcnow(),
            )
            db.session.add(payment)
            db.session.flush()

            allocations = _allocate_fifo(payment, party, amount)

            append_ledger_event(
                station_id=station_id,
                event_type="payment.applied",
                entity_type="payment",
                entity_id=payment.id,
                caller=caller,
                payload={
                    "customer_id": payment.customer_id,
                    "supplier_id": payment.supplier_id,
                    "amount_cents": amount,
                    "balance_after_cents": party.outstanding_cents,
                    "allocations": [
                        {"sale_id": a.sale_id, "purchase_order_id": a.purchase_order_id, "amount_cents": a.amount_cents}
                        for a in allocations
                    ],
                },
            )
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Payment %s applied: %s cents (%s) customer_id=%s supplier_id=%s",
        payment.id, payment.amount_cents, payment.type, payment.customer_id, payment.supplier_id,
    )
    return payment


def get_payment(payment_id: int, caller) -> Payment:
    return get_scoped(Payment, payment_id, caller)


def list_payments(
    caller,
    *,
    station_id: int | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
) -> list[Payment]:
    query = scoped_query(Payment, caller, station_id)
    if customer_id is not None:
        query = query.filter(Payment.customer_id == customer_id)
    if supplier_id is not None:
        query = query.filter(Payment.supplier_id == supplier_id)
    limit = max(1, min(limit, 500))
    return query.order_by(Payment.payment_date.desc(), Payment.id.desc()).limit(limit).all()


# =============================================================================
# STATEMENTS
# =============================================================================

def get_statement(entity_type: str, entity_id: int, caller) -> dict:
    """
    Read-only statement for a customer or supplier.

    Returns payments newest first, their total, the current outstanding
    balance, the open documents still carrying a balance, and the opening
    balance no document backs.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(f"entity_type must be one of {', '.join(ENTITY_TYPES)}")

    model = Customer if entity_type == ENTITY_CUSTOMER else Supplier
    party = get_scoped(model, entity_id, caller)
    payment_fk = Payment.customer_id if entity_type == ENTITY_CUSTOMER else Payment.supplier_id

    payments = (
        db.session.query(Payment)
        .filter(payment_fk == entity_id)
        .order_by(Payment.payment_date.desc(), Payment.id.desc())
        .all()
    )
    total_payments = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(payment_fk == entity_id)
        .scalar()
    )
    open_documents = _open_documents_query(party).all()
    open_total = sum(doc.outstanding_cents for doc in open_documents)

    return {
        "entity_type": entity_type,
        "entity": party.to_dict(),
        "payments": [p.to_dict(include_allocations=True) for p in payments],
        "total_payments": int(total_payments or 0),
        "outstanding": party.outstanding_cents,
        "open_documents": [doc.to_dict() for doc in open_documents],
        "unallocated_cents": party.outstanding_cents - open_total,
    }
