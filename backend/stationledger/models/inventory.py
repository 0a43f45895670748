from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..units import fill_percent, format_quantity, to_quantity


TANK_STATUS_NORMAL = "normal"
TANK_STATUS_LOW = "low"
TANK_STATUS_CRITICAL = "critical"

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)

REFERENCE_SALE = "sale"
REFERENCE_PURCHASE = "purchase"
REFERENCE_ADJUSTMENT = "adjustment"
REFERENCE_TYPES = (REFERENCE_SALE, REFERENCE_PURCHASE, REFERENCE_ADJUSTMENT)


class Tank(db.Model):
    """
    Physical storage vessel for one product at one station.

    INVARIANT: 0 <= current_stock <= capacity. Only the stock service writes
    current_stock, and always together with a StockMovement row.

    Tanks are never deleted, only deactivated.
    """
    __tablename__ = "tanks"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_tanks_stock_non_negative"),
        db.CheckConstraint("current_stock <= capacity", name="ck_tanks_stock_within_capacity"),
        db.Index("ix_tanks_station_product", "station_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    capacity = db.Column(db.Numeric(12, 3), nullable=False)
    current_stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    minimum_level = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    # Derived from current_stock; recomputed on every movement
    status = db.Column(db.String(16), nullable=False, default=TANK_STATUS_NORMAL)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_refill_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    station = db.relationship("Station", backref=db.backref("tanks", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def compute_status(self, low_fill_percent: int = 30) -> str:
        stock = to_quantity(self.current_stock or 0)
        if stock <= to_quantity(self.minimum_level or 0):
            return TANK_STATUS_CRITICAL
        if fill_percent(stock, to_quantity(self.capacity)) < low_fill_percent:
            return TANK_STATUS_LOW
        return TANK_STATUS_NORMAL

    def __repr__(self) -> str:
        return f"<Tank id={self.id} station_id={self.station_id} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "product_id": self.product_id,
            "name": self.name,
            "capacity": format_quantity(self.capacity),
            "current_stock": format_quantity(self.current_stock),
            "minimum_level": format_quantity(self.minimum_level),
            "status": self.status,
            "is_active": self.is_active,
            "last_refill_at": to_utc_z(self.last_refill_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit trail of tank stock changes.

    quantity is always positive; movement_type carries the direction
    (for adjustments the sign is new_stock - previous_stock).

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_tank_id_desc", "tank_id", "id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=False, index=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    previous_stock = db.Column(db.Numeric(12, 3), nullable=False)
    new_stock = db.Column(db.Numeric(12, 3), nullable=False)

    # Polymorphic reference (sale / purchase order / manual adjustment); not an FK
    reference_type = db.Column(db.String(16), nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    movement_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    tank = db.relationship("Tank", backref=db.backref("movements", lazy="dynamic"))

    def signed_delta(self):
        return to_quantity(self.new_stock) - to_quantity(self.previous_stock)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tank_id": self.tank_id,
            "station_id": self.station_id,
            "user_id": self.user_id,
            "movement_type": self.movement_type,
            "quantity": format_quantity(self.quantity),
            "previous_stock": format_quantity(self.previous_stock),
            "new_stock": format_quantity(self.new_stock),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "movement_date": to_utc_z(self.movement_date),
        }
