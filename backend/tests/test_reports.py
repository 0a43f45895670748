"""
Reporting tests.

Verifies:
- Dashboard sales, balances and tank alerts
- Per-day sales report and financial summary
- Receivables aging buckets, with unallocated opening balances
"""

from datetime import timedelta

import pytest

from stationledger.errors import AccessDenied, ValidationError
from stationledger.services import balance_service, expense_service, reporting_service, sales_service
from stationledger.time_utils import start_of_day, utcnow


class TestDashboard:

    def test_dashboard_stats(self, tank, diesel_tank, customer, supplier, cashier_a, manager_a, make_sale):
        sales_service.create_sale(*make_sale((tank, "10")), cashier_a)
        sales_service.create_sale(
            *make_sale((tank, "5"), payment_method="credit", customer_id=customer.id), cashier_a,
        )

        stats = reporting_service.dashboard_stats(manager_a)

        assert stats["todays_sales"] == {"count": 2, "total_cents": 1500}
        assert stats["monthly_sales"]["total_cents"] >= 1500
        assert stats["receivables_cents"] == 500
        assert stats["payables_cents"] == 0
        alerts = {a["tank_id"]: a["status"] for a in stats["tank_alerts"]}
        assert alerts == {tank.id: "low", diesel_tank.id: "critical"}

    def test_admin_must_name_station(self, admin):
        with pytest.raises(AccessDenied):
            reporting_service.dashboard_stats(admin)

    def test_other_station_denied(self, cashier_a, station_b):
        with pytest.raises(AccessDenied):
            reporting_service.dashboard_stats(cashier_a, station_b.id)


class TestSalesReport:

    def test_groups_by_day(self, tank, cashier_a, manager_a, make_sale):
        today = start_of_day(utcnow()) + timedelta(hours=1)
        yesterday = today - timedelta(days=1)
        sales_service.create_sale(*make_sale((tank, "2"), transaction_date=yesterday), cashier_a)
        sales_service.create_sale(*make_sale((tank, "3"), transaction_date=today), cashier_a)
        sales_service.create_sale(*make_sale((tank, "4"), payment_method="card", transaction_date=today), cashier_a)

        report = reporting_service.sales_report(manager_a)

        assert [row["period"] for row in report["rows"]] == [
            yesterday.strftime("%Y-%m-%d"), today.strftime("%Y-%m-%d"),
        ]
        assert [row["sales_count"] for row in report["rows"]] == [1, 2]
        assert report["total_cents"] == 900
        assert report["by_payment_method"] == {"cash": 500, "card": 400}

    def test_range_filter(self, tank, cashier_a, manager_a, make_sale):
        now = utcnow()
        sales_service.create_sale(*make_sale((tank, "2"), transaction_date=now - timedelta(days=10)), cashier_a)
        sales_service.create_sale(*make_sale((tank, "3"), transaction_date=now), cashier_a)

        report = reporting_service.sales_report(manager_a, start=now - timedelta(days=1))
        assert report["sales_count"] == 1
        assert report["total_cents"] == 300

    def test_inverted_range_rejected(self, manager_a):
        now = utcnow()
        with pytest.raises(ValidationError):
            reporting_service.sales_report(manager_a, start=now, end=now - timedelta(days=1))


class TestFinancialReport:

    def test_revenue_minus_expenses(self, tank, cashier_a, manager_a, make_sale):
        sales_service.create_sale(*make_sale((tank, "20")), cashier_a)
        expense_service.create_expense(
            {"category": "utilities", "description": "Electricity", "amount_cents": 700, "payment_method": "cash"},
            manager_a,
        )
        expense_service.create_expense(
            {"category": "maintenance", "description": "Pump service", "amount_cents": 300, "payment_method": "card"},
            manager_a,
        )

        report = reporting_service.financial_report(manager_a)

        assert report["revenue_cents"] == 2000
        assert report["expenses_cents"] == 1000
        assert report["expenses_by_category"] == {"utilities": 700, "maintenance": 300}
        assert report["net_cents"] == 1000


class TestAgingReport:

    def test_buckets_by_sale_age(self, tank, customer, cashier_a, manager_a, make_sale):
        now = utcnow()
        for days_ago, litres in ((10, "1"), (45, "2"), (100, "4")):
            sales_service.create_sale(
                *make_sale(
                    (tank, litres), payment_method="credit", customer_id=customer.id,
                    transaction_date=now - timedelta(days=days_ago),
                ),
                cashier_a,
            )
        balance_service.increase_outstanding(amount_cents=70, customer_id=customer.id, caller=cashier_a)

        report = reporting_service.aging_report(manager_a, as_of=now)

        assert len(report["rows"]) == 1
        row = report["rows"][0]
        assert row["buckets"] == {"0-30": 100, "31-60": 200, "61-90": 0, "90+": 400}
        assert row["unallocated_cents"] == 70
        assert row["outstanding_cents"] == 770
        assert report["totals"]["unallocated"] == 70
        assert report["total_outstanding_cents"] == 770

    def test_settled_customers_omitted(self, customer, manager_a):
        report = reporting_service.aging_report(manager_a)
        assert report["rows"] == []
