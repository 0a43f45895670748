"""
HTTP API tests.

Verifies:
- Requests without caller headers return 401
- Role permissions are enforced per route (403)
- Business-rule rejections map to their status codes with structured details
- Sale, payment and movement history endpoints end to end
"""

import pytest


def _sale_body(tank, litres, **transaction):
    total = int(litres) * 100
    body = {
        "transaction": {"payment_method": "cash", "subtotal_cents": total, "total_cents": total, **transaction},
        "items": [{
            "product_id": tank.product_id,
            "tank_id": tank.id,
            "quantity": str(litres),
            "unit_price_cents": 100,
        }],
    }
    return body


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/tanks"),
            ("POST", "/api/stock-movements"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales"),
            ("POST", "/api/payments"),
            ("GET", "/api/customers"),
            ("GET", "/api/purchase-orders"),
            ("GET", "/api/reports/dashboard"),
        ],
    )
    def test_requires_caller(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_station_bound_role_needs_station_header(self, client, db_session):
        resp = client.get("/api/tanks", headers={"X-User-Id": "3", "X-User-Role": "cashier"})
        assert resp.status_code == 401

    def test_malformed_headers(self, client, db_session):
        resp = client.get("/api/tanks", headers={"X-User-Id": "abc", "X-User-Role": "admin"})
        assert resp.status_code == 401


# =============================================================================
# CASHIER DENIED PRIVILEGED OPERATIONS (403)
# =============================================================================


class TestCashierDenied:

    def test_cannot_delete_sale(self, client, tank, cashier_a, headers):
        created = client.post("/api/sales", json=_sale_body(tank, 5), headers=headers(cashier_a))
        sale_id = created.get_json()["transaction"]["id"]

        resp = client.delete(f"/api/sales/{sale_id}", headers=headers(cashier_a))
        assert resp.status_code == 403
        assert resp.get_json()["details"]["required_permission"] == "DELETE_SALE"

    def test_cannot_adjust_stock(self, client, tank, cashier_a, headers):
        resp = client.post(
            "/api/stock-movements",
            json={"tank_id": tank.id, "movement_type": "adjustment", "quantity": "-5"},
            headers=headers(cashier_a),
        )
        assert resp.status_code == 403

    def test_cannot_post_sale_movement(self, client, tank, cashier_a, headers):
        resp = client.post(
            "/api/stock-movements",
            json={"tank_id": tank.id, "movement_type": "out", "quantity": "400",
                  "reference_type": "sale", "reference_id": 99999},
            headers=headers(cashier_a),
        )
        assert resp.status_code == 403

        tank_resp = client.get(f"/api/tanks/{tank.id}", headers=headers(cashier_a))
        assert tank_resp.get_json()["tank"]["current_stock"] == "1000.000"

    def test_cannot_view_reports(self, client, cashier_a, headers):
        resp = client.get("/api/reports/dashboard", headers=headers(cashier_a))
        assert resp.status_code == 403

    def test_cannot_create_customers(self, client, cashier_a, headers):
        resp = client.post("/api/customers", json={"name": "X"}, headers=headers(cashier_a))
        assert resp.status_code == 403

    def test_other_station_tank_hidden(self, client, tank, cashier_b, headers):
        resp = client.get(f"/api/tanks/{tank.id}", headers=headers(cashier_b))
        assert resp.status_code == 403


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def test_create_sale(self, client, tank, cashier_a, headers):
        resp = client.post("/api/sales", json=_sale_body(tank, 12), headers=headers(cashier_a))

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["transaction"]["total_cents"] == 1200
        assert data["transaction"]["invoice_number"].endswith("-000001")
        assert data["items"][0]["quantity"] == "12.000"

        tank_resp = client.get(f"/api/tanks/{tank.id}", headers=headers(cashier_a))
        assert tank_resp.get_json()["tank"]["current_stock"] == "988.000"

    def test_insufficient_stock_names_the_tank(self, client, tank, cashier_a, headers):
        resp = client.post("/api/sales", json=_sale_body(tank, 1001), headers=headers(cashier_a))

        assert resp.status_code == 409
        data = resp.get_json()
        assert data["kind"] == "InsufficientStock"
        assert data["details"]["tank_id"] == tank.id
        assert data["details"]["available_quantity"] == "1000.000"

    def test_inconsistent_totals(self, client, tank, cashier_a, headers):
        body = _sale_body(tank, 10, total_cents=999)
        resp = client.post("/api/sales", json=body, headers=headers(cashier_a))
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "ValidationError"

    def test_invalid_json(self, client, tank, cashier_a, headers):
        resp = client.post("/api/sales", data="nope", content_type="application/json", headers=headers(cashier_a))
        assert resp.status_code == 400

    def test_manager_deletes_sale(self, client, tank, cashier_a, manager_a, headers):
        created = client.post("/api/sales", json=_sale_body(tank, 7), headers=headers(cashier_a))
        sale_id = created.get_json()["transaction"]["id"]

        resp = client.delete(f"/api/sales/{sale_id}", json={"reason": "Test"}, headers=headers(manager_a))
        assert resp.status_code == 200
        assert resp.get_json()["deleted"] is True

        missing = client.get(f"/api/sales/{sale_id}", headers=headers(manager_a))
        assert missing.status_code == 404


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPaymentsApi:

    def test_credit_sale_then_payment(self, client, tank, customer, cashier_a, headers):
        client.post(
            "/api/sales",
            json=_sale_body(tank, 10, payment_method="credit", customer_id=customer.id),
            headers=headers(cashier_a),
        )

        resp = client.post(
            "/api/payments",
            json={"customer_id": customer.id, "amount_cents": 400, "payment_method": "cash"},
            headers=headers(cashier_a),
        )
        assert resp.status_code == 201
        payment = resp.get_json()["payment"]
        assert [a["amount_cents"] for a in payment["allocations"]] == [400]

        statement = client.get(f"/api/customers/{customer.id}/statement", headers=headers(cashier_a))
        assert statement.status_code == 200
        assert statement.get_json()["outstanding"] == 600

    def test_overpayment_conflict(self, client, customer, cashier_a, headers):
        resp = client.post(
            "/api/payments",
            json={"customer_id": customer.id, "amount_cents": 1, "payment_method": "cash"},
            headers=headers(cashier_a),
        )
        assert resp.status_code == 409
        assert resp.get_json()["kind"] == "OverpaymentError"


# =============================================================================
# STOCK MOVEMENTS
# =============================================================================


class TestMovementsApi:

    def test_manager_adjustment(self, client, tank, manager_a, headers):
        resp = client.post(
            "/api/stock-movements",
            json={"tank_id": tank.id, "movement_type": "adjustment", "quantity": "-12.5", "notes": "Dip"},
            headers=headers(manager_a),
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["movement"]["quantity"] == "12.500"
        assert data["tank"]["current_stock"] == "987.500"

    def test_unknown_document_reference(self, client, tank, manager_a, headers):
        resp = client.post(
            "/api/stock-movements",
            json={"tank_id": tank.id, "movement_type": "in", "quantity": "3000",
                  "reference_type": "purchase", "reference_id": 4242},
            headers=headers(manager_a),
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["reference_id"] == 4242

    def test_history_pages(self, client, tank, cashier_a, headers):
        for _ in range(3):
            client.post("/api/sales", json=_sale_body(tank, 1), headers=headers(cashier_a))

        first = client.get(f"/api/tanks/{tank.id}/movements?limit=3", headers=headers(cashier_a)).get_json()
        assert first["count"] == 3
        assert first["next_before_id"] == first["items"][-1]["id"]

        second = client.get(
            f"/api/tanks/{tank.id}/movements?limit=3&before_id={first['next_before_id']}",
            headers=headers(cashier_a),
        ).get_json()
        assert second["count"] == 1
        assert second["next_before_id"] is None
