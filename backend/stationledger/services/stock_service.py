# Overview: Service-layer operations for tank stock; movement engine and movement history.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterator

from flask import current_app, has_app_context

from ..errors import CapacityExceeded, InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import PurchaseOrder, SalesTransaction, StockMovement, Tank
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_TYPES,
    REFERENCE_PURCHASE,
    REFERENCE_SALE,
    REFERENCE_TYPES,
)
from ..time_utils import utcnow
from ..units import ZERO, to_quantity
from .access_service import get_scoped, require_permission, require_station_access
from .concurrency import atomic, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
"""
Stock Movement Invariants (authoritative)

Tank model:
- Tank.current_stock is a stored running balance, written ONLY here.
- 0 <= current_stock <= capacity at all times; a movement that would break
  this is rejected, never clamped.

Movements:
- in         -> stock + quantity (refills also stamp last_refill_at)
- out        -> stock - quantity
- adjustment -> stock + signed delta (caller passes the delta, may be negative)
- StockMovement.quantity is always the positive magnitude; previous_stock and
  new_stock snapshot the tank around the write.
- The tank row is locked before it is read, and the tank update plus the
  movement insert share one unit of work, so new_stock always equals the
  tank's stock at write time.

Status:
- critical when stock <= minimum_level
- low when fill percentage < LOW_STOCK_FILL_PERCENT
- normal otherwise
"""


def _low_fill_percent() -> int:
    if has_app_context():
        return current_app.config.get("LOW_STOCK_FILL_PERCENT", 30)
    return 30


def _coerce_quantity(value) -> Decimal:
    try:
        return to_quantity(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("quantity must be a number", details={"quantity": str(value)})


def lock_tank(tank_id: int) -> Tank:
    """Load a tank under a row lock with a fresh identity-map copy."""
    tank = lock_for_update(db.session.query(Tank).filter(Tank.id == tank_id)).one_or_none()
    if tank is None:
        raise NotFound(f"Tank {tank_id} not found")
    return tank


def lock_tanks(tank_ids) -> dict[int, Tank]:
    """
    Lock several tanks in ascending id order.

    Every writer acquires tank locks in the same order, so two sales touching
    the same pair of tanks cannot deadlock.
    """
    return {tank_id: lock_tank(tank_id) for tank_id in sorted(set(tank_ids))}


_REFERENCE_MODELS = {
    REFERENCE_SALE: SalesTransaction,
    REFERENCE_PURCHASE: PurchaseOrder,
}


def _check_reference(tank: Tank, reference_type: str, reference_id: int | None) -> None:
    """A document reference must resolve to a document at the tank's station."""
    if reference_type not in _REFERENCE_MODELS:
        return
    if reference_id is None:
        raise ValidationError(
            f"reference_id is required for reference_type {reference_type}",
            details={"reference_type": reference_type},
        )
    model = _REFERENCE_MODELS[reference_type]
    station_id = db.session.query(model.station_id).filter(model.id == reference_id).scalar()
    if station_id != tank.station_id:
        raise ValidationError(
            f"{reference_type} {reference_id} does not exist at station {tank.station_id}",
            details={"reference_type": reference_type, "reference_id": reference_id, "tank_id": tank.id},
        )


def _apply_movement_locked(
    tank: Tank,
    *,
    movement_type: str,
    quantity,
    reference_type: str,
    reference_id: int | None,
    caller=None,
    notes: str | None = None,
    allow_inactive: bool = False,
) -> StockMovement:
    """
    Apply one movement to an already-locked tank.

    Flushes but does not commit; the caller's unit of work owns the
    transaction.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of {', '.join(MOVEMENT_TYPES)}")
    if reference_type not in REFERENCE_TYPES:
        raise ValidationError(f"reference_type must be one of {', '.join(REFERENCE_TYPES)}")
    if not tank.is_active and not allow_inactive:
        raise ValidationError(f"Tank {tank.id} is inactive", details={"tank_id": tank.id})

    qty = _coerce_quantity(quantity)
    previous = to_quantity(tank.current_stock or 0)
    capacity = to_quantity(tank.capacity)

    if movement_type == MOVEMENT_ADJUSTMENT:
        if qty == ZERO:
            raise ValidationError("adjustment delta must not be zero")
        magnitude = abs(qty)
        new_stock = previous + qty
    else:
        if qty <= ZERO:
            raise ValidationError("quantity must be positive", details={"quantity": str(qty)})
        magnitude = qty
        new_stock = previous + qty if movement_type == MOVEMENT_IN else previous - qty

    if new_stock < ZERO:
        raise InsufficientStock(tank.id, magnitude, previous)
    if new_stock > capacity:
        raise CapacityExceeded(tank.id, magnitude, capacity - previous)

    now = utcnow()
    tank.current_stock = new_stock
    tank.status = tank.compute_status(_low_fill_percent())
    if movement_type == MOVEMENT_IN and reference_type != REFERENCE_SALE:
        tank.last_refill_at = now

    movement = StockMovement(
        tank_id=tank.id,
        station_id=tank.station_id,
        user_id=getattr(caller, "user_id", None),
        movement_type=movement_type,
        quantity=magnitude,
        previous_stock=previous,
        new_stock=new_stock,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        movement_date=now,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_movement(
    tank_id: int,
    movement_type: str,
    quantity,
    reference_type: str,
    reference_id: int | None,
    caller,
    *,
    notes: str | None = None,
) -> StockMovement:
    """
    Apply a single stock movement as its own unit of work.

    Standalone movements are manual stock corrections and need the
    ADJUST_STOCK permission whatever their type. A sale or purchase
    reference must point at an existing document at the tank's station;
    create_sale and receive_purchase_order post their own movements.

    Raises:
        InsufficientStock / CapacityExceeded when the bounds would break
        ValidationError for bad type, non-positive quantity or inactive tank
    """
    require_permission(caller, "ADJUST_STOCK")

    def _op() -> StockMovement:
        with atomic():
            tank = lock_tank(tank_id)
            require_station_access(caller, tank.station_id)
            _check_reference(tank, reference_type, reference_id)
            movement = _apply_movement_locked(
                tank,
                movement_type=movement_type,
                quantity=quantity,
                reference_type=reference_type,
                reference_id=reference_id,
                caller=caller,
                notes=notes,
            )
            append_ledger_event(
                station_id=tank.station_id,
                event_type="stock.moved",
                entity_type="tank",
                entity_id=tank.id,
                caller=caller,
                note=notes,
                payload={
                    "movement_id": movement.id,
                    "movement_type": movement.movement_type,
                    "quantity": str(movement.quantity),
                    "new_stock": str(movement.new_stock),
                },
            )
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Stock movement %s on tank %s: %s %s (stock %s -> %s)",
        movement.id, movement.tank_id, movement.movement_type,
        movement.quantity, movement.previous_stock, movement.new_stock,
    )
    return movement


def _page_size(page_size: int | None) -> int:
    if page_size is None:
        page_size = current_app.config.get("MOVEMENT_PAGE_SIZE", 100) if has_app_context() else 100
    return max(1, min(int(page_size), 500))


def _fetch_page(tank_id: int, size: int, before_id: int | None) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.tank_id == tank_id)
    if before_id is not None:
        query = query.filter(StockMovement.id < before_id)
    return query.order_by(StockMovement.id.desc()).limit(size).all()


def iter_movements(
    tank_id: int,
    caller,
    *,
    page_size: int | None = None,
    before_id: int | None = None,
) -> Iterator[StockMovement]:
    """
    Newest-first movement history for a tank, fetched lazily page by page.

    Pages are keyed on movement id, so iteration can restart from any
    movement id already seen (pass it as before_id) and rows appended while
    iterating never shift the window.
    """
    get_scoped(Tank, tank_id, caller)
    size = _page_size(page_size)

    def _generate() -> Iterator[StockMovement]:
        cursor = before_id
        while True:
            page = _fetch_page(tank_id, size, cursor)
            yield from page
            if len(page) < size:
                return
            cursor = page[-1].id

    return _generate()


def list_movements(
    tank_id: int,
    caller,
    *,
    limit: int | None = None,
    before_id: int | None = None,
) -> tuple[list[StockMovement], int | None]:
    """One page of history plus the cursor for the next page (None at the end)."""
    get_scoped(Tank, tank_id, caller)
    size = _page_size(limit)
    # One extra row tells us whether another page exists
    rows = _fetch_page(tank_id, size + 1, before_id)
    if len(rows) > size:
        rows = rows[:size]
        return rows, rows[-1].id
    return rows, None
