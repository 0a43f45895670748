from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Station(db.Model):
    """
    A physical fuel-station location.

    Most entities (tanks, sales, purchase orders, payments, expenses) are
    scoped to a station via station_id.
    """
    __tablename__ = "stations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    address = db.Column(db.String(255), nullable=True)
    license_number = db.Column(db.String(64), nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    default_currency = db.Column(db.String(3), nullable=False, default="PKR")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Station id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "license_number": self.license_number,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "default_currency": self.default_currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data (fuel grades, lubricants, shop items).

    Products are shared across stations; the station binding happens on the
    tank that stores the product.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="fuel")
    unit = db.Column(db.String(16), nullable=False, default="litre")

    # Authoritative storage in cents (frontend may only format for display)
    current_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    hsn_code = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_price_cents": self.current_price_cents,
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "hsn_code": self.hsn_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
