from __future__ import annotations

from ..extensions import db
from mdcars.money import format_cents
from mdcars.time_utils import to_utc_z, utcnow


EXPENSE_CATEGORIES = (
    "rent",
    "utilities",
    "salaries",
    "supplies",
    "maintenance",
    "marketing",
    "other",
)

PARTNER_TX_INVESTMENT = "investment"
PARTNER_TX_WITHDRAWAL = "withdrawal"
PARTNER_TX_PROFIT_DISTRIBUTION = "profit_distribution"
PARTNER_TX_TYPES = (
    PARTNER_TX_INVESTMENT,
    PARTNER_TX_WITHDRAWAL,
    PARTNER_TX_PROFIT_DISTRIBUTION,
)


class Expense(db.Model):
    """Money paid out of the cashbox for running costs (EXP-NNNNN)."""
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    expense_number = db.Column(db.String(16), nullable=False, unique=True)
    category = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    exchange_rate = db.Column(db.String(20), nullable=True)
    description = db.Column(db.Text, nullable=False)
    person_name = db.Column(db.String(255), nullable=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_number": self.expense_number,
            "category": self.category,
            "amount": format_cents(self.amount_cents),
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
            "description": self.description,
            "person_name": self.person_name,
            "date": to_utc_z(self.date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Revenue(db.Model):
    """Non-sale income paid into the cashbox (REV-NNNNN)."""
    __tablename__ = "revenues"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    revenue_number = db.Column(db.String(16), nullable=False, unique=True)
    source = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    exchange_rate = db.Column(db.String(20), nullable=True)
    description = db.Column(db.Text, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "revenue_number": self.revenue_number,
            "source": self.source,
            "amount": format_cents(self.amount_cents),
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "date": to_utc_z(self.date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Partner(db.Model):
    """
    Equity holder in the business.

    total_invested, total_withdrawn and total_profit_distributed are
    cumulative counters: each PartnerTransaction increments exactly one.
    """
    __tablename__ = "partners"
    __table_args__ = (
        db.CheckConstraint(
            "ownership_percentage_bp >= 0 AND ownership_percentage_bp <= 10000",
            name="ck_partners_ownership_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    # Basis points: 2550 == 25.50%
    ownership_percentage_bp = db.Column(db.Integer, nullable=False, default=0)

    total_invested_cents = db.Column(db.Integer, nullable=False, default=0)
    total_withdrawn_cents = db.Column(db.Integer, nullable=False, default=0)
    total_profit_distributed_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    transactions = db.relationship(
        "PartnerTransaction",
        backref="partner",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="PartnerTransaction.created_at.desc()",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "ownership_percentage": format_cents(self.ownership_percentage_bp),
            "total_invested": format_cents(self.total_invested_cents),
            "total_withdrawn": format_cents(self.total_withdrawn_cents),
            "total_profit_distributed": format_cents(self.total_profit_distributed_cents),
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PartnerTransaction(db.Model):
    __tablename__ = "partner_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    description = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "partner_id": self.partner_id,
            "type": self.type,
            "amount": format_cents(self.amount_cents),
            "currency": self.currency,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
