from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


CUSTOMER_TYPES = ("walk-in", "credit", "fleet")

PAYMENT_TYPE_RECEIVABLE = "receivable"
PAYMENT_TYPE_PAYABLE = "payable"

PAYMENT_METHODS = ("cash", "card", "bank_transfer", "cheque", "online")


class Customer(db.Model):
    """
    Counterparty owing money to the station.

    A customer may be bound to a station or be visible to every station
    (station_id=NULL).

    INVARIANT: outstanding_cents = credit-sale receivables raised - payments
    applied, and never negative. Written only by the balance service (and the
    sales orchestrator through it) under a row lock.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("outstanding_cents >= 0", name="ck_customers_outstanding_non_negative"),
        db.Index("ix_customers_station_active", "station_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="walk-in")
    contact_phone = db.Column(db.String(32), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)

    # NULL means no limit
    credit_limit_cents = db.Column(db.Integer, nullable=True)
    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "name": self.name,
            "type": self.type,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "address": self.address,
            "tax_number": self.tax_number,
            "credit_limit_cents": self.credit_limit_cents,
            "outstanding_cents": self.outstanding_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """Counterparty the station owes money to. Same balance invariant as Customer."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.CheckConstraint("outstanding_cents >= 0", name="ck_suppliers_outstanding_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(128), nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)
    payment_terms = db.Column(db.String(64), nullable=True)

    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "name": self.name,
            "contact_person": self.contact_person,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "address": self.address,
            "tax_number": self.tax_number,
            "payment_terms": self.payment_terms,
            "outstanding_cents": self.outstanding_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Money applied against a customer (receivable) or supplier (payable) balance.

    Exactly one of customer_id / supplier_id is set.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.CheckConstraint(
            "(customer_id IS NULL) <> (supplier_id IS NULL)",
            name="ck_payments_single_counterparty",
        ),
        db.Index("ix_payments_station_date", "station_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="PKR")
    payment_method = db.Column(db.String(32), nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(16), nullable=False, index=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    allocations = db.relationship("PaymentAllocation", backref="payment", lazy=True, order_by="PaymentAllocation.id")

    def to_dict(self, include_allocations: bool = False) -> dict:
        data = {
            "id": self.id,
            "station_id": self.station_id,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "amount_cents": self.amount_cents,
            "currency_code": self.currency_code,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "type": self.type,
            "payment_date": to_utc_z(self.payment_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_allocations:
            data["allocations"] = [a.to_dict() for a in self.allocations]
        return data


class PaymentAllocation(db.Model):
    """
    Portion of a payment settled against one open sale or purchase order.

    Payments are allocated oldest document first; whatever is left over
    settles the counterparty's opening balance and has no allocation row.
    """
    __tablename__ = "payment_allocations"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payment_allocations_amount_positive"),
        db.CheckConstraint(
            "(sale_id IS NULL) <> (purchase_order_id IS NULL)",
            name="ck_payment_allocations_single_document",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales_transactions.id"), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "sale_id": self.sale_id,
            "purchase_order_id": self.purchase_order_id,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
