from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Expense(db.Model):
    """Operating expense booked against a station (feeds the financial report)."""
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        db.Index("ix_expenses_station_date", "station_id", "expense_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    station_id = db.Column(db.Integer, db.ForeignKey("stations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency_code = db.Column(db.String(3), nullable=False, default="PKR")
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    receipt_number = db.Column(db.String(64), nullable=True)
    payment_method = db.Column(db.String(32), nullable=False)
    vendor_name = db.Column(db.String(255), nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "station_id": self.station_id,
            "user_id": self.user_id,
            "category": self.category,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "currency_code": self.currency_code,
            "expense_date": to_utc_z(self.expense_date),
            "receipt_number": self.receipt_number,
            "payment_method": self.payment_method,
            "vendor_name": self.vendor_name,
            "is_recurring": self.is_recurring,
            "created_at": to_utc_z(self.created_at),
        }
