# Overview: Service-layer operations for reporting; read-only projections over the ledgers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Customer, Expense, PurchaseOrder, SalesTransaction, Supplier, Tank
from ..models.inventory import TANK_STATUS_CRITICAL, TANK_STATUS_LOW
from ..time_utils import days_between, start_of_day, start_of_month, to_utc_z, utcnow
from ..units import fill_percent, to_quantity
from .access_service import require_station, resolve_station_id


# (label, oldest age in days the bucket holds); None is open-ended
AGING_BUCKETS = (
    ("0-30", 30),
    ("31-60", 60),
    ("61-90", 90),
    ("90+", None),
)


def _check_range(start: datetime | None, end: datetime | None) -> None:
    if start and end and start > end:
        raise ValidationError("start must be before end")


def _sales_totals(station_id: int, since: datetime) -> dict:
    row = (
        db.session.query(
            func.count(SalesTransaction.id).label("count"),
            func.coalesce(func.sum(SalesTransaction.total_cents), 0).label("total_cents"),
        )
        .filter(
            SalesTransaction.station_id == station_id,
            SalesTransaction.transaction_date >= since,
        )
        .one()
    )
    return {"count": int(row.count or 0), "total_cents": int(row.total_cents or 0)}


def _visible_to_station(model, station_id: int):
    return (model.station_id == station_id) | (model.station_id.is_(None))


def dashboard_stats(caller, station_id: int | None = None) -> dict:
    station = require_station(resolve_station_id(caller, station_id), caller)
    now = utcnow()

    receivables = (
        db.session.query(func.coalesce(func.sum(Customer.outstanding_cents), 0))
        .filter(_visible_to_station(Customer, station.id))
        .scalar()
    )
    payables = (
        db.session.query(func.coalesce(func.sum(Supplier.outstanding_cents), 0))
        .filter(_visible_to_station(Supplier, station.id))
        .scalar()
    )
    alert_tanks = (
        db.session.query(Tank)
        .filter(
            Tank.station_id == station.id,
            Tank.is_active.is_(True),
            Tank.status.in_([TANK_STATUS_LOW, TANK_STATUS_CRITICAL]),
        )
        .order_by(Tank.id.asc())
        .all()
    )

    return {
        "station_id": station.id,
        "generated_at": to_utc_z(now),
        "todays_sales": _sales_totals(station.id, start_of_day(now)),
        "monthly_sales": _sales_totals(station.id, start_of_month(now)),
        "receivables_cents": int(receivables or 0),
        "payables_cents": int(payables or 0),
        "tank_alerts": [
            {
                "tank_id": tank.id,
                "name": tank.name,
                "status": tank.status,
                "current_stock": str(to_quantity(tank.current_stock)),
                "fill_percent": f"{fill_percent(to_quantity(tank.current_stock), to_quantity(tank.capacity)):.1f}",
            }
            for tank in alert_tanks
        ],
    }


def sales_report(
    caller,
    *,
    station_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Per-day sales totals and counts, oldest day first."""
    _check_range(start, end)
    station = require_station(resolve_station_id(caller, station_id), caller)

    period_expr = func.strftime("%Y-%m-%d", SalesTransaction.transaction_date)
    query = db.session.query(
        period_expr.label("period"),
        func.count(SalesTransaction.id).label("sales_count"),
        func.coalesce(func.sum(SalesTransaction.total_cents), 0).label("total_cents"),
        func.coalesce(func.sum(SalesTransaction.tax_cents), 0).label("tax_cents"),
        func.coalesce(func.sum(SalesTransaction.outstanding_cents), 0).label("outstanding_cents"),
    ).filter(SalesTransaction.station_id == station.id)
    if start:
        query = query.filter(SalesTransaction.transaction_date >= start)
    if end:
        query = query.filter(SalesTransaction.transaction_date <= end)

    rows = query.group_by("period").order_by("period").all()
    by_method = (
        db.session.query(
            SalesTransaction.payment_method,
            func.coalesce(func.sum(SalesTransaction.total_cents), 0),
        )
        .filter(SalesTransaction.station_id == station.id)
    )
    if start:
        by_method = by_method.filter(SalesTransaction.transaction_date >= start)
    if end:
        by_method = by_method.filter(SalesTransaction.transaction_date <= end)

    report_rows = [
        {
            "period": row.period,
            "sales_count": int(row.sales_count or 0),
            "total_cents": int(row.total_cents or 0),
            "tax_cents": int(row.tax_cents or 0),
            "outstanding_cents": int(row.outstanding_cents or 0),
        }
        for row in rows
    ]
    return {
        "station_id": station.id,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "rows": report_rows,
        "total_cents": sum(r["total_cents"] for r in report_rows),
        "sales_count": sum(r["sales_count"] for r in report_rows),
        "by_payment_method": {
            method: int(total or 0)
            for method, total in by_method.group_by(SalesTransaction.payment_method).all()
        },
    }


def financial_report(
    caller,
    *,
    station_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Revenue, expenses and net for a period, with purchases for context."""
    _check_range(start, end)
    station = require_station(resolve_station_id(caller, station_id), caller)

    revenue_q = db.session.query(
        func.coalesce(func.sum(SalesTransaction.total_cents), 0),
        func.coalesce(func.sum(SalesTransaction.tax_cents), 0),
    ).filter(SalesTransaction.station_id == station.id)
    expense_q = db.session.query(
        Expense.category,
        func.coalesce(func.sum(Expense.amount_cents), 0),
    ).filter(Expense.station_id == station.id)
    purchase_q = db.session.query(
        func.coalesce(func.sum(PurchaseOrder.total_cents), 0),
    ).filter(PurchaseOrder.station_id == station.id)

    if start:
        revenue_q = revenue_q.filter(SalesTransaction.transaction_date >= start)
        expense_q = expense_q.filter(Expense.expense_date >= start)
        purchase_q = purchase_q.filter(PurchaseOrder.order_date >= start)
    if end:
        revenue_q = revenue_q.filter(SalesTransaction.transaction_date <= end)
        expense_q = expense_q.filter(Expense.expense_date <= end)
        purchase_q = purchase_q.filter(PurchaseOrder.order_date <= end)

    revenue_cents, tax_cents = revenue_q.one()
    expenses_by_category = {
        category: int(total or 0)
        for category, total in expense_q.group_by(Expense.category).all()
    }
    expenses_cents = sum(expenses_by_category.values())
    revenue_cents = int(revenue_cents or 0)

    return {
        "station_id": station.id,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "revenue_cents": revenue_cents,
        "tax_cents": int(tax_cents or 0),
        "expenses_cents": expenses_cents,
        "expenses_by_category": expenses_by_category,
        "purchases_cents": int(purchase_q.scalar() or 0),
        "net_cents": revenue_cents - expenses_cents,
    }


def _bucket_for(age_days: int) -> str:
    for label, upper in AGING_BUCKETS:
        if upper is None or age_days <= upper:
            return label
    return AGING_BUCKETS[-1][0]


def aging_report(caller, *, station_id: int | None = None, as_of: datetime | None = None) -> dict:
    """
    Receivables aging per customer.

    Open credit sales are bucketed by days since the sale. The part of a
    customer's balance no open sale backs (opening balances) is reported as
    unallocated_cents, so each row's buckets + unallocated equals its
    outstanding balance.
    """
    station = require_station(resolve_station_id(caller, station_id), caller)
    as_of = as_of or utcnow()

    customers = (
        db.session.query(Customer)
        .filter(_visible_to_station(Customer, station.id), Customer.outstanding_cents > 0)
        .order_by(Customer.name.asc(), Customer.id.asc())
        .all()
    )

    rows = []
    totals = {label: 0 for label, _ in AGING_BUCKETS}
    totals["unallocated"] = 0
    for customer in customers:
        buckets = {label: 0 for label, _ in AGING_BUCKETS}
        open_sales = (
            db.session.query(SalesTransaction)
            .filter(
                SalesTransaction.customer_id == customer.id,
                SalesTransaction.outstanding_cents > 0,
            )
            .all()
        )
        for sale in open_sales:
            buckets[_bucket_for(days_between(sale.transaction_date, as_of))] += sale.outstanding_cents
        unallocated = customer.outstanding_cents - sum(buckets.values())

        for label in buckets:
            totals[label] += buckets[label]
        totals["unallocated"] += unallocated
        rows.append({
            "customer_id": customer.id,
            "name": customer.name,
            "outstanding_cents": customer.outstanding_cents,
            "buckets": buckets,
            "unallocated_cents": unallocated,
        })

    return {
        "station_id": station.id,
        "as_of": to_utc_z(as_of),
        "rows": rows,
        "totals": totals,
        "total_outstanding_cents": sum(r["outstanding_cents"] for r in rows),
    }
