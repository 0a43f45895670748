from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..units import format_quantity, to_quantity


PO_STATUS_PENDING = "pending"
PO_STATUS_PARTIAL = "partial"
PO_STATUS_DELIVERED = "delivered"


class PurchaseOrder(db.Model):
    """
    Procurement mirror of SalesTransaction.

    LIFECYCLE:
    1. pending: created, supplier payable raised by outstanding_cents
    2. partial: some lines received into tanks
    3. delivered: every line fully received

    Same totals invariants as a sale.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_purchase_orders_order_number"),
        db.Index("ix_purchase_orders_station_date", "station_id", "order_date"),
        db.Index("ix_purchase_orders_supplier_open", "supplier_id", "outstanding_cents"),
        db.CheckConstraint("total_cents = subtotal_cents + tax_cents", name="ck_purchase_orders_total"),
        db.CheckConstraint("paid_cents + outstanding_cents = total_cents", name="ck_purchase_orders_settlement"),
        db.CheckConstraint("outstanding_cents >= 0", name="ck_purchase_orders_outstanding_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PO_STATUS_PENDING, index=True)
    currency_code = db.Column(db.String(3), nullable=False, default="PKR")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "PurchaseOrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )
    supplier = db.relationship("Supplier")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "station_id": self.station_id,
            "supplier_id": self.supplier_id,
            "user_id": self.user_id,
            "order_date": to_utc_z(self.order_date),
            "due_date": to_utc_z(self.due_date),
            "expected_delivery_date": to_utc_z(self.expected_delivery_date),
            "actual_delivery_date": to_utc_z(self.actual_delivery_date),
            "status": self.status,
            "currency_code": self.currency_code,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "outstanding_cents": self.outstanding_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_order_items_quantity_positive"),
        db.CheckConstraint("received_quantity <= quantity", name="ck_purchase_order_items_not_over_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def remaining_quantity(self):
        return to_quantity(self.quantity) - to_quantity(self.received_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "tank_id": self.tank_id,
            "quantity": format_quantity(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "received_quantity": format_quantity(self.received_quantity or 0),
            "created_at": to_utc_z(self.created_at),
        }
