from __future__ import annotations

from ..extensions import db
from mdcars.money import format_cents
from mdcars.time_utils import to_utc_z, utcnow


SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_RETURNED = "returned"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUSES = (
    SALE_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_RETURNED,
    SALE_STATUS_CANCELLED,
)

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_PARTIAL = "partial"
PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_PARTIAL)


class Sale(db.Model):
    """
    Sale header.

    Amounts are integer cents in the sale's currency:
    - subtotal = sum(item.total_price)
    - total_amount = subtotal - discount
    - amount_due = max(0, total_amount - amount_paid)
    - change_due = max(0, amount_paid - total_amount)

    The cashbox receives amount_paid - change_due (the cash actually kept);
    a return or cancel refunds exactly that amount.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, MD-YYYYMMDD-NNNN
    sale_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default=PAYMENT_METHOD_CASH)
    currency = db.Column(db.String(3), nullable=False, default="LYD")
    # Decimal string, 4 fraction digits (USD -> LYD)
    exchange_rate = db.Column(db.String(20), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    # Reversal audit trail (return or cancel)
    reversed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True, order_by="Sale.created_at.desc()"))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id", cascade="all, delete-orphan")

    @property
    def retained_cents(self) -> int:
        """Cash kept by the till for this sale."""
        return self.amount_paid_cents - self.change_due_cents

    def to_dict(self, *, include_details: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal": format_cents(self.subtotal_cents),
            "discount": format_cents(self.discount_cents),
            "total_amount": format_cents(self.total_amount_cents),
            "amount_paid": format_cents(self.amount_paid_cents),
            "amount_due": format_cents(self.amount_due_cents),
            "change_due": format_cents(self.change_due_cents),
            "payment_method": self.payment_method,
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "reversed_by_user_id": self.reversed_by_user_id,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
        }
        if include_details:
            data["items"] = [item.to_dict() for item in self.items]
            data["customer"] = self.customer.to_dict() if self.customer else None
            data["created_by"] = self.created_by.to_dict() if self.created_by else None
        return data


class SaleItem(db.Model):
    """
    Sale line. Product name, SKU and cost are snapshotted at the time of
    sale; lines are never modified after the sale is created.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price": format_cents(self.unit_price_cents),
            "cost_price": format_cents(self.cost_price_cents),
            "total_price": format_cents(self.total_price_cents),
            "profit": format_cents(self.profit_cents),
        }
