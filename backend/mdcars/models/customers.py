from __future__ import annotations

from ..extensions import db
from mdcars.money import format_cents
from mdcars.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data with a running credit balance.

    balance_owed_cents and total_purchases_cents are denormalized aggregates
    changed only by sale creation, sale return/cancel and customer payments,
    always through atomic increments in services/balance_service.py.

    balance_owed is currency-agnostic: credit sales add their amount_due in
    the sale's currency and payments subtract in theirs.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    # Unique; used to match walk-in customers at the till
    phone = db.Column(db.String(32), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    balance_owed_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "notes": self.notes,
            "balance_owed": format_cents(self.balance_owed_cents),
            "total_purchases": format_cents(self.total_purchases_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
