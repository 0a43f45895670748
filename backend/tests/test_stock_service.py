"""
Stock movement engine tests.

Verifies:
- in/out/adjustment arithmetic and the movement audit trail
- Stock never leaves [0, capacity]; rejected movements leave the tank untouched
- Status thresholds (critical / low / normal) and refill stamping
- Permission and station checks; document references must resolve
- Keyset pagination of movement history
"""

from decimal import Decimal

import pytest

from stationledger.errors import AccessDenied, CapacityExceeded, InsufficientStock, ValidationError
from stationledger.extensions import db
from stationledger.models import StockMovement, Tank
from stationledger.services import catalog_service, sales_service, stock_service


def _reload(tank_id):
    db.session.expire_all()
    return db.session.get(Tank, tank_id)


def _movements(tank_id):
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.tank_id == tank_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


class TestApplyMovement:

    def test_out_movement_reduces_stock(self, tank, manager_a):
        movement = stock_service.apply_movement(tank.id, "out", "250", "adjustment", None, manager_a)

        assert movement.previous_stock == Decimal("1000.000")
        assert movement.new_stock == Decimal("750.000")
        assert movement.quantity == Decimal("250.000")
        assert _reload(tank.id).current_stock == Decimal("750.000")

    def test_in_movement_stamps_refill(self, tank, manager_a):
        before = _reload(tank.id).last_refill_at
        stock_service.apply_movement(tank.id, "in", "500", "adjustment", None, manager_a)

        refreshed = _reload(tank.id)
        assert refreshed.current_stock == Decimal("1500.000")
        assert refreshed.last_refill_at is not None
        assert refreshed.last_refill_at >= before

    def test_negative_adjustment_is_a_signed_delta(self, tank, manager_a):
        movement = stock_service.apply_movement(
            tank.id, "adjustment", "-25.5", "adjustment", None, manager_a, notes="Dip correction",
        )

        assert movement.quantity == Decimal("25.500")
        assert movement.signed_delta() == Decimal("-25.500")
        assert _reload(tank.id).current_stock == Decimal("974.500")

    def test_zero_adjustment_rejected(self, tank, manager_a):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "adjustment", "0", "adjustment", None, manager_a)

    def test_non_positive_out_rejected(self, tank, manager_a):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "out", "-5", "adjustment", None, manager_a)

    def test_unknown_movement_type_rejected(self, tank, manager_a):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "transfer", "5", "adjustment", None, manager_a)


class TestStockBounds:

    def test_overdraw_rejected_and_tank_unchanged(self, tank, manager_a):
        count_before = len(_movements(tank.id))

        with pytest.raises(InsufficientStock) as exc_info:
            stock_service.apply_movement(tank.id, "out", "1000.001", "adjustment", None, manager_a)

        assert exc_info.value.tank_id == tank.id
        assert exc_info.value.details["available_quantity"] == "1000.000"
        assert _reload(tank.id).current_stock == Decimal("1000.000")
        assert len(_movements(tank.id)) == count_before

    def test_draining_to_exactly_zero_is_allowed(self, tank, manager_a):
        stock_service.apply_movement(tank.id, "out", "1000", "adjustment", None, manager_a)
        assert _reload(tank.id).current_stock == Decimal("0.000")

    def test_overfill_rejected(self, tank, manager_a):
        with pytest.raises(CapacityExceeded) as exc_info:
            stock_service.apply_movement(tank.id, "in", "4000.001", "adjustment", None, manager_a)

        assert exc_info.value.details["free_capacity"] == "4000.000"
        assert _reload(tank.id).current_stock == Decimal("1000.000")

    def test_negative_adjustment_below_zero_rejected(self, tank, manager_a):
        with pytest.raises(InsufficientStock):
            stock_service.apply_movement(tank.id, "adjustment", "-1200", "adjustment", None, manager_a)

    def test_movement_trail_matches_tank(self, tank, manager_a):
        stock_service.apply_movement(tank.id, "out", "100", "adjustment", None, manager_a)
        stock_service.apply_movement(tank.id, "in", "300", "adjustment", None, manager_a)
        stock_service.apply_movement(tank.id, "adjustment", "-7.25", "adjustment", None, manager_a)

        movements = _movements(tank.id)
        for prev, nxt in zip(movements, movements[1:]):
            assert nxt.previous_stock == prev.new_stock
        for movement in movements:
            sign = {"in": 1, "out": -1}.get(movement.movement_type)
            if sign is not None:
                assert movement.new_stock - movement.previous_stock == sign * movement.quantity
            else:
                assert abs(movement.new_stock - movement.previous_stock) == movement.quantity
        assert _reload(tank.id).current_stock == movements[-1].new_stock


class TestTankStatus:

    def test_opening_status_is_low_below_thirty_percent(self, tank):
        # 1000 / 5000 = 20% fill, above minimum 500
        assert _reload(tank.id).status == "low"

    def test_critical_at_minimum_level(self, tank, manager_a):
        stock_service.apply_movement(tank.id, "out", "500", "adjustment", None, manager_a)
        assert _reload(tank.id).status == "critical"

    def test_normal_above_threshold(self, tank, manager_a):
        stock_service.apply_movement(tank.id, "in", "1000", "adjustment", None, manager_a)
        assert _reload(tank.id).status == "normal"

    def test_threshold_is_configurable(self, app, tank, manager_a):
        app.config["LOW_STOCK_FILL_PERCENT"] = 10
        try:
            stock_service.apply_movement(tank.id, "out", "1", "adjustment", None, manager_a)
            assert _reload(tank.id).status == "normal"
        finally:
            app.config["LOW_STOCK_FILL_PERCENT"] = 30


class TestMovementAccess:

    def test_cashier_cannot_adjust(self, tank, cashier_a):
        with pytest.raises(AccessDenied):
            stock_service.apply_movement(tank.id, "adjustment", "5", "adjustment", None, cashier_a)

    def test_cashier_cannot_post_adjustment_reference(self, tank, cashier_a):
        with pytest.raises(AccessDenied):
            stock_service.apply_movement(tank.id, "in", "5", "adjustment", None, cashier_a)

    def test_cashier_cannot_post_any_movement(self, tank, cashier_a):
        for movement_type in ("out", "in"):
            with pytest.raises(AccessDenied):
                stock_service.apply_movement(tank.id, movement_type, "400", "adjustment", None, cashier_a)
        assert _reload(tank.id).current_stock == Decimal("1000.000")

    def test_other_station_denied(self, tank, cashier_b):
        with pytest.raises(AccessDenied):
            stock_service.apply_movement(tank.id, "out", "5", "adjustment", None, cashier_b)
        assert _reload(tank.id).current_stock == Decimal("1000.000")

    def test_inactive_tank_rejected(self, tank, manager_a, admin):
        catalog_service.deactivate_tank(tank.id, admin, reason="Decommissioned")
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "out", "5", "adjustment", None, manager_a)


class TestMovementReferences:

    def test_unknown_sale_reference_rejected(self, tank, manager_a):
        count_before = len(_movements(tank.id))

        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "out", "400", "sale", 99999, manager_a)

        assert _reload(tank.id).current_stock == Decimal("1000.000")
        assert len(_movements(tank.id)) == count_before

    def test_unknown_purchase_reference_rejected(self, tank, manager_a):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "in", "3000", "purchase", 4242, manager_a)
        assert _reload(tank.id).current_stock == Decimal("1000.000")

    def test_document_reference_needs_an_id(self, tank, manager_a):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "out", "5", "sale", None, manager_a)

    def test_sale_at_another_station_rejected(self, tank, tank_b, cashier_b, manager_a, make_sale):
        other_sale, _ = sales_service.create_sale(*make_sale((tank_b, "1")), cashier_b)

        with pytest.raises(ValidationError):
            stock_service.apply_movement(tank.id, "in", "1", "sale", other_sale.id, manager_a)

    def test_existing_sale_reference_accepted(self, tank, cashier_a, manager_a, make_sale):
        sale, _ = sales_service.create_sale(*make_sale((tank, "10")), cashier_a)

        movement = stock_service.apply_movement(
            tank.id, "in", "2", "sale", sale.id, manager_a, notes="Pump calibration return",
        )

        assert movement.reference_id == sale.id
        assert _reload(tank.id).current_stock == Decimal("992.000")


class TestMovementHistory:

    def test_pages_newest_first(self, tank, manager_a):
        for _ in range(4):
            stock_service.apply_movement(tank.id, "out", "1", "adjustment", None, manager_a)

        first, cursor = stock_service.list_movements(tank.id, manager_a, limit=2)
        assert len(first) == 2
        assert first[0].id > first[1].id
        assert cursor == first[-1].id

        second, cursor = stock_service.list_movements(tank.id, manager_a, limit=2, before_id=cursor)
        assert len(second) == 2
        assert second[0].id < first[-1].id

        # opening movement + 4 draws = 5 rows; last page holds one
        third, cursor = stock_service.list_movements(tank.id, manager_a, limit=2, before_id=cursor)
        assert len(third) == 1
        assert cursor is None

    def test_iterator_walks_all_pages(self, tank, manager_a):
        for _ in range(5):
            stock_service.apply_movement(tank.id, "out", "1", "adjustment", None, manager_a)

        ids = [m.id for m in stock_service.iter_movements(tank.id, manager_a, page_size=2)]
        assert len(ids) == 6
        assert ids == sorted(ids, reverse=True)

    def test_history_is_station_scoped(self, tank, cashier_b):
        with pytest.raises(AccessDenied):
            stock_service.iter_movements(tank.id, cashier_b)
