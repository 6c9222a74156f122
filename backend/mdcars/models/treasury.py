from __future__ import annotations

from ..extensions import db
from mdcars.money import format_cents
from mdcars.time_utils import to_utc_z, utcnow


TREASURY_TX_DEPOSIT = "deposit"
TREASURY_TX_WITHDRAWAL = "withdrawal"
TREASURY_TX_TRANSFER_IN = "transfer_in"
TREASURY_TX_TRANSFER_OUT = "transfer_out"
TREASURY_TX_TYPES = (
    TREASURY_TX_DEPOSIT,
    TREASURY_TX_WITHDRAWAL,
    TREASURY_TX_TRANSFER_IN,
    TREASURY_TX_TRANSFER_OUT,
)

ACCOUNT_SAFE = "safe"
ACCOUNT_BANK = "bank"
ACCOUNT_KINDS = (ACCOUNT_SAFE, ACCOUNT_BANK)


class _BalanceMixin:
    balance_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_lyd_cents = db.Column(db.Integer, nullable=False, default=0)

    def balance_for(self, currency: str) -> int:
        return self.balance_usd_cents if currency == "USD" else self.balance_lyd_cents


class Safe(_BalanceMixin, db.Model):
    """
    Physical cash location (safe, drawer, petty cash box).

    Kept apart from the Cashbox: only safe deposits, withdrawals and
    transfers change these balances, and they may never go negative.
    """
    __tablename__ = "safes"
    __table_args__ = (
        db.CheckConstraint("balance_usd_cents >= 0", name="ck_safes_usd_non_negative"),
        db.CheckConstraint("balance_lyd_cents >= 0", name="ck_safes_lyd_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    parent_safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    parent = db.relationship("Safe", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": ACCOUNT_SAFE,
            "name": self.name,
            "code": self.code,
            "parent_safe_id": self.parent_safe_id,
            "balance_usd": format_cents(self.balance_usd_cents),
            "balance_lyd": format_cents(self.balance_lyd_cents),
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Bank(_BalanceMixin, db.Model):
    """Bank account ledger, optionally linked to the safe it is funded from."""
    __tablename__ = "banks"
    __table_args__ = (
        db.CheckConstraint("balance_usd_cents >= 0", name="ck_banks_usd_non_negative"),
        db.CheckConstraint("balance_lyd_cents >= 0", name="ck_banks_lyd_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    account_number = db.Column(db.String(64), nullable=True)
    linked_safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    linked_safe = db.relationship("Safe")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": ACCOUNT_BANK,
            "name": self.name,
            "code": self.code,
            "account_number": self.account_number,
            "linked_safe_id": self.linked_safe_id,
            "balance_usd": format_cents(self.balance_usd_cents),
            "balance_lyd": format_cents(self.balance_lyd_cents),
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class _TreasuryTransactionMixin:
    type = db.Column(db.String(16), nullable=False)
    amount_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)
    # Counterparty of a transfer, e.g. ("bank", 3)
    counterparty_kind = db.Column(db.String(8), nullable=True)
    counterparty_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_usd": format_cents(self.amount_usd_cents),
            "amount_lyd": format_cents(self.amount_lyd_cents),
            "description": self.description,
            "counterparty_kind": self.counterparty_kind,
            "counterparty_id": self.counterparty_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SafeTransaction(_TreasuryTransactionMixin, db.Model):
    __tablename__ = "safe_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    safe = db.relationship("Safe", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({"account_kind": ACCOUNT_SAFE, "account_id": self.safe_id})
        return data


class BankTransaction(_TreasuryTransactionMixin, db.Model):
    __tablename__ = "bank_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bank_id = db.Column(db.Integer, db.ForeignKey("banks.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    bank = db.relationship("Bank", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({"account_kind": ACCOUNT_BANK, "account_id": self.bank_id})
        return data
