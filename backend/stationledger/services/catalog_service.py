# Overview: Service-layer operations for stations, products and tanks.

"""
Catalog Service

Station setup data. Stations and products are created by catalog managers;
tanks are created at station setup and afterwards only the stock movement
engine touches their stock. Tanks are never deleted, only deactivated.

A tank created with opening stock gets it through an `in` movement, so the
movement history always explains the current stock.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Product, Station, Tank
from ..models.inventory import MOVEMENT_IN, REFERENCE_ADJUSTMENT
from ..units import ZERO, to_quantity
from ..validation import ModelValidationPolicy
from .access_service import get_scoped, require_permission, require_station, scoped_query
from .concurrency import atomic, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .stock_service import _apply_movement_locked, _low_fill_percent, lock_tank


STATION_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "code", "address", "license_number", "contact_phone", "contact_email",
        "default_currency", "is_active",
    }),
    required_on_create=frozenset({"name"}),
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "category", "unit", "current_price_cents", "tax_rate", "hsn_code", "is_active"}),
    required_on_create=frozenset({"name", "current_price_cents"}),
)

TANK_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"station_id", "product_id", "name", "capacity", "current_stock", "minimum_level"}),
    required_on_create=frozenset({"station_id", "product_id", "name", "capacity"}),
)


# =============================================================================
# STATIONS
# =============================================================================

def create_station(patch: dict, caller) -> Station:
    require_permission(caller, "MANAGE_CATALOG")

    def _op() -> Station:
        with atomic():
            code = patch.get("code")
            if code and db.session.query(Station.id).filter(Station.code == code).first():
                raise ValidationError(f"Station code {code} already exists", details={"code": code})
            station = Station(**patch)
            if not station.default_currency:
                station.default_currency = current_app.config.get("DEFAULT_CURRENCY", "PKR")
            db.session.add(station)
            db.session.flush()
        return station

    station = run_with_retry(_op)
    current_app.logger.info("Station %s created: %s", station.id, station.name)
    return station


def get_station(station_id: int, caller) -> Station:
    return require_station(station_id, caller)


def list_stations(caller) -> list[Station]:
    query = db.session.query(Station)
    if not caller.is_unrestricted:
        query = query.filter(Station.id == caller.station_id)
    return query.order_by(Station.name.asc(), Station.id.asc()).all()


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(patch: dict, caller) -> Product:
    require_permission(caller, "MANAGE_CATALOG")

    def _op() -> Product:
        with atomic():
            product = Product(**patch)
            db.session.add(product)
            db.session.flush()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict, caller) -> Product:
    """
    Patch a product, typically its price or tax rate.

    Sale and purchase lines carry their own unit price, so a price change
    only affects documents created afterwards.
    """
    require_permission(caller, "MANAGE_CATALOG")

    def _op() -> Product:
        with atomic():
            product = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).one_or_none()
            if product is None:
                raise NotFound(f"Product {product_id} not found")
            for key, value in patch.items():
                setattr(product, key, value)
            db.session.flush()
        return product

    product = run_with_retry(_op)
    current_app.logger.info(
        "Product %s updated: price_cents=%s tax_rate=%s", product.id, product.current_price_cents, product.tax_rate,
    )
    return product


    return run_with_retry(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def list_products(*, active_only: bool = False, category: str | None = None) -> list[Product]:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


# =============================================================================
# TANKS
# =============================================================================

def create_tank(patch: dict, caller) -> Tank:
    """
    Create a tank; a current_stock in the patch becomes an opening `in`
    movement rather than a bare column value.
    """
    require_permission(caller, "MANAGE_CATALOG")
    patch = dict(patch)
    opening_stock = to_quantity(patch.pop("current_stock", None) or 0)
    capacity = to_quantity(patch["capacity"])
    minimum = to_quantity(patch.get("minimum_level") or 0)
    if capacity <= ZERO:
        raise ValidationError("capacity must be > 0")
    if minimum < ZERO or minimum > capacity:
        raise ValidationError("minimum_level must be between 0 and capacity")
    if opening_stock < ZERO:
        raise ValidationError("current_stock must be >= 0")

    def _op() -> Tank:
        with atomic():
            require_station(patch["station_id"], caller)
            get_product(patch["product_id"])

            tank = Tank(
                station_id=patch["station_id"],
                product_id=patch["product_id"],
                name=patch["name"],
                capacity=capacity,
                minimum_level=minimum,
                current_stock=ZERO,
                is_active=True,
            )
            tank.status = tank.compute_status(_low_fill_percent())
            db.session.add(tank)
            db.session.flush()

            if opening_stock > ZERO:
                _apply_movement_locked(
                    tank,
                    movement_type=MOVEMENT_IN,
                    quantity=opening_stock,
                    reference_type=REFERENCE_ADJUSTMENT,
                    reference_id=None,
                    caller=caller,
                    notes="Opening stock",
                )
        return tank

    tank = run_with_retry(_op)
    current_app.logger.info(
        "Tank %s created at station %s (capacity %s, stock %s)",
        tank.id, tank.station_id, tank.capacity, tank.current_stock,
    )
    return tank


def get_tank(tank_id: int, caller) -> Tank:
    return get_scoped(Tank, tank_id, caller)


def list_tanks(caller, *, station_id: int | None = None, include_inactive: bool = False) -> list[Tank]:
    query = scoped_query(Tank, caller, station_id)
    if not include_inactive:
        query = query.filter(Tank.is_active.is_(True))
    return query.order_by(Tank.station_id.asc(), Tank.name.asc(), Tank.id.asc()).all()


def deactivate_tank(tank_id: int, caller, reason: str | None = None) -> Tank:
    """Take a tank out of service. Its history and stock stay as they are."""
    require_permission(caller, "ADJUST_STOCK")

    def _op() -> Tank:
        with atomic():
            get_scoped(Tank, tank_id, caller)
            tank = lock_tank(tank_id)
            if not tank.is_active:
                raise ValidationError(f"Tank {tank.id} is already inactive")
            tank.is_active = False
            db.session.flush()
            append_ledger_event(
                station_id=tank.station_id,
                event_type="tank.deactivated",
                entity_type="tank",
                entity_id=tank.id,
                caller=caller,
                note=reason,
                payload={"current_stock": str(tank.current_stock)},
            )
        return tank

    tank = run_with_retry(_op)
    current_app.logger.info("Tank %s deactivated by user_id=%s", tank.id, caller.user_id)
    return tank
