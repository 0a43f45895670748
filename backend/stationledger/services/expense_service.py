# Overview: Service-layer operations for station expenses.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Expense
from ..models.accounts import PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, enforce_amount_cents, enforce_choice
from .access_service import require_station, resolve_station_id, scoped_query
from .concurrency import atomic, run_with_retry


EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "station_id", "category", "description", "amount_cents", "currency_code",
        "expense_date", "receipt_number", "payment_method", "vendor_name", "is_recurring",
    }),
    required_on_create=frozenset({"category", "description", "amount_cents", "payment_method"}),
)


def enforce_rules_expense(patch: dict) -> None:
    enforce_amount_cents(patch, "amount_cents", allow_zero=False)
    enforce_choice(patch, "payment_method", PAYMENT_METHODS)


def create_expense(patch: dict, caller) -> Expense:
    enforce_rules_expense(patch)
    patch = dict(patch)
    requested_station_id = patch.pop("station_id", None)

    def _op() -> Expense:
        with atomic():
            station = require_station(resolve_station_id(caller, requested_station_id), caller)
            expense = Expense(
                station_id=station.id,
                user_id=caller.user_id,
                **patch,
            )
            if expense.currency_code is None:
                expense.currency_code = station.default_currency
            if expense.expense_date is None:
                expense.expense_date = utcnow()
            db.session.add(expense)
            db.session.flush()
        return expense

    expense = run_with_retry(_op)
    current_app.logger.info(
        "Expense %s recorded at station %s: %s cents (%s)",
        expense.id, expense.station_id, expense.amount_cents, expense.category,
    )
    return expense


def list_expenses(
    caller,
    *,
    station_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    category: str | None = None,
    limit: int = 200,
) -> list[Expense]:
    query = scoped_query(Expense, caller, station_id)
    if start:
        query = query.filter(Expense.expense_date >= start)
    if end:
        query = query.filter(Expense.expense_date <= end)
    if category:
        query = query.filter(Expense.category == category)
    limit = max(1, min(limit, 500))
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc()).limit(limit).all()
