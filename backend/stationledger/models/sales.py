from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..units import format_quantity


PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_CREDIT = "credit"
PAYMENT_METHOD_FLEET = "fleet"
SALE_PAYMENT_METHODS = (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_CREDIT,
    PAYMENT_METHOD_FLEET,
)


class SalesTransaction(db.Model):
    """
    Header of one sale.

    INVARIANTS (all amounts in cents):
    - total_cents = subtotal_cents + tax_cents
    - paid_cents + outstanding_cents = total_cents
    - non-credit payment methods have outstanding_cents = 0

    Created once, atomically with its items and stock movements. After that
    only payment allocation touches paid_cents / outstanding_cents.
    """
    __tablename__ = "sales_transactions"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_transactions_invoice_number"),
        db.Index("ix_sales_transactions_station_date", "station_id", "transaction_date"),
        db.Index("ix_sales_transactions_customer_open", "customer_id", "outstanding_cents"),
        db.CheckConstraint("total_cents = subtotal_cents + tax_cents", name="ck_sales_total"),
        db.CheckConstraint("paid_cents + outstanding_cents = total_cents", name="ck_sales_settlement"),
        db.CheckConstraint("outstanding_cents >= 0", name="ck_sales_outstanding_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="PKR")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "SalesTransactionItem",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SalesTransactionItem.id",
    )
    customer = db.relationship("Customer")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "station_id": self.station_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "transaction_date": to_utc_z(self.transaction_date),
            "due_date": to_utc_z(self.due_date),
            "payment_method": self.payment_method,
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


class SalesTransactionItem(db.Model):
    """One line of a sale. total_price_cents = quantity x unit_price_cents (rounded to the cent)."""
    __tablename__ = "sales_transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sales_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    tank_id = db.Column(db.Integer, db.ForeignKey("tanks.id"), nullable=True, index=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Set when the stock-out movement for this line is written
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "tank_id": self.tank_id,
            "quantity": format_quantity(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "stock_movement_id": self.stock_movement_id,
            "created_at": to_utc_z(self.created_at),
        }
