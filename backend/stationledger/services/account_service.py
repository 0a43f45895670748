# Overview: Service-layer operations for customers and suppliers (counterparty master data).

"""
Account Service

Customers and suppliers are either bound to one station or shared by every
station (station_id NULL). Their outstanding balances are NOT writable here:
only the balance service moves them. An opening balance supplied at creation
goes through the same locked increase as any other receivable/payable.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Customer, Supplier
from ..models.accounts import CUSTOMER_TYPES
from ..validation import ModelValidationPolicy, enforce_amount_cents, enforce_choice
from .access_service import get_scoped, require_station, scoped_query
from .balance_service import _increase_outstanding_locked, lock_customer, lock_supplier
from .concurrency import atomic, run_with_retry


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "station_id", "name", "type", "contact_phone", "contact_email", "address",
        "tax_number", "credit_limit_cents", "is_active",
    }),
    required_on_create=frozenset({"name"}),
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "station_id", "name", "contact_person", "contact_phone", "contact_email",
        "address", "tax_number", "payment_terms", "is_active",
    }),
    required_on_create=frozenset({"name"}),
)


def enforce_rules_customer(patch: dict) -> None:
    enforce_choice(patch, "type", CUSTOMER_TYPES)
    enforce_amount_cents(patch, "credit_limit_cents")


def _resolve_owner_station(patch: dict, caller) -> None:
    """Station-bound callers create accounts for their own station unless they say otherwise."""
    if "station_id" not in patch:
        patch["station_id"] = caller.station_id
    if patch["station_id"] is not None:
        require_station(patch["station_id"], caller)


def _create_account(model, patch: dict, caller, opening_balance_cents: int):
    patch = dict(patch)
    _resolve_owner_station(patch, caller)
    if not isinstance(opening_balance_cents, int) or isinstance(opening_balance_cents, bool) or opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents must be a non-negative integer")

    def _op():
        with atomic():
            account = model(outstanding_cents=0, **patch)
            db.session.add(account)
            db.session.flush()
            if opening_balance_cents:
                _increase_outstanding_locked(account, opening_balance_cents)
        return account

    account = run_with_retry(_op)
    current_app.logger.info(
        "%s %s created: %s (opening balance %s cents)",
        model.__name__, account.id, account.name, opening_balance_cents,
    )
    return account


def _update_account(model, lock, account_id: int, patch: dict, caller):
    def _op():
        with atomic():
            get_scoped(model, account_id, caller)
            account = lock(account_id)
            if "station_id" in patch and patch["station_id"] is not None:
                require_station(patch["station_id"], caller)
            for key, value in patch.items():
                setattr(account, key, value)
            db.session.flush()
        return account

    return run_with_retry(_op)


# =============================================================================
# CUSTOMERS
# =============================================================================

def create_customer(patch: dict, caller, *, opening_balance_cents: int = 0) -> Customer:
    enforce_rules_customer(patch)
    return _create_account(Customer, patch, caller, opening_balance_cents)


def update_customer(customer_id: int, patch: dict, caller) -> Customer:
    """
    Patch customer master data.

    Lowering credit_limit_cents below the current balance is allowed; it only
    blocks further credit sales.
    """
    enforce_rules_customer(patch)
    return _update_account(Customer, lock_customer, customer_id, patch, caller)


def get_customer(customer_id: int, caller) -> Customer:
    return get_scoped(Customer, customer_id, caller)


def list_customers(
    caller,
    *,
    station_id: int | None = None,
    active_only: bool = False,
    with_balance: bool = False,
    search: str | None = None,
) -> list[Customer]:
    query = scoped_query(Customer, caller, station_id)
    if active_only:
        query = query.filter(Customer.is_active.is_(True))
    if with_balance:
        query = query.filter(Customer.outstanding_cents > 0)
    if search:
        query = query.filter(Customer.name.ilike(f"%{search.strip()}%"))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


# =============================================================================
# SUPPLIERS
# =============================================================================

def create_supplier(patch: dict, caller, *, opening_balance_cents: int = 0) -> Supplier:
    return _create_account(Supplier, patch, caller, opening_balance_cents)


def update_supplier(supplier_id: int, patch: dict, caller) -> Supplier:
    return _update_account(Supplier, lock_supplier, supplier_id, patch, caller)


def get_supplier(supplier_id: int, caller) -> Supplier:
    return get_scoped(Supplier, supplier_id, caller)


def list_suppliers(
    caller,
    *,
    station_id: int | None = None,
    active_only: bool = False,
    search: str | None = None,
) -> list[Supplier]:
    query = scoped_query(Supplier, caller, station_id)
    if active_only:
        query = query.filter(Supplier.is_active.is_(True))
    if search:
        query = query.filter(Supplier.name.ilike(f"%{search.strip()}%"))
    return query.order_by(Supplier.name.asc(), Supplier.id.asc()).all()
