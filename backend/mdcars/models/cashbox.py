from __future__ import annotations

from ..extensions import db
from mdcars.money import format_cents
from mdcars.time_utils import to_utc_z, utcnow


CASHBOX_TX_SALE = "sale"
CASHBOX_TX_REFUND = "refund"
CASHBOX_TX_EXPENSE = "expense"
CASHBOX_TX_DEPOSIT = "deposit"
CASHBOX_TX_WITHDRAWAL = "withdrawal"
CASHBOX_TX_PURCHASE = "purchase"
CASHBOX_TX_ADJUSTMENT = "adjustment"
CASHBOX_TX_TYPES = (
    CASHBOX_TX_SALE,
    CASHBOX_TX_REFUND,
    CASHBOX_TX_EXPENSE,
    CASHBOX_TX_DEPOSIT,
    CASHBOX_TX_WITHDRAWAL,
    CASHBOX_TX_PURCHASE,
    CASHBOX_TX_ADJUSTMENT,
)

MAIN_CASHBOX_NAME = "Main Cashbox"


class Cashbox(db.Model):
    """
    The store's main till, tracked separately in USD and LYD.

    Exactly one row exists (services/balance_service.get_cashbox creates it
    on demand). Balances change only through atomic increments issued in
    the same transaction as the CashboxTransaction that explains them.
    """
    __tablename__ = "cashbox"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, default=MAIN_CASHBOX_NAME, unique=True)
    balance_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    last_reconciliation_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

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
            "balance_usd": format_cents(self.balance_usd_cents),
            "balance_lyd": format_cents(self.balance_lyd_cents),
            "last_reconciliation_date": to_utc_z(self.last_reconciliation_date) if self.last_reconciliation_date else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashboxTransaction(db.Model):
    """
    Append-only audit trail of every cashbox balance change.

    Amounts are always non-negative; the type says which direction the
    balance moved. Rows are never updated or deleted.
    """
    __tablename__ = "cashbox_transactions"
    __table_args__ = (
        db.Index("ix_cashbox_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashbox_id = db.Column(db.Integer, db.ForeignKey("cashbox.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    amount_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    exchange_rate = db.Column(db.String(20), nullable=True)
    description = db.Column(db.Text, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    cashbox = db.relationship("Cashbox", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashbox_id": self.cashbox_id,
            "type": self.type,
            "amount_usd": format_cents(self.amount_usd_cents),
            "amount_lyd": format_cents(self.amount_lyd_cents),
            "exchange_rate": self.exchange_rate,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
