from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Sale
from ..models.cashbox import CASHBOX_TX_DEPOSIT
from ..money import CURRENCIES, CURRENCY_LYD, format_cents, parse_cents
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    apply_patch,
    coerce_bool,
    coerce_enum,
    coerce_str,
    require_fields,
)
from . import balance_service, ledger_service
from .concurrency import atomic

logger = logging.getLogger(__name__)


# balance_owed / total_purchases are ledger-driven and never client-writable
CUSTOMER_FIELDS = {
    "name": lambda v, k: coerce_str(v, k, required=True, max_length=255),
    "phone": lambda v, k: coerce_str(v, k, required=True, max_length=32),
    "email": lambda v, k: coerce_str(v, k, max_length=255),
    "address": lambda v, k: coerce_str(v, k),
    "notes": lambda v, k: coerce_str(v, k),
    "is_active": coerce_bool,
}


def list_customers() -> list[Customer]:
    return db.session.query(Customer).order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return customer


def get_customer_with_sales(customer_id: int) -> dict:
    customer = get_customer(customer_id)
    data = customer.to_dict()
    sales = (
        db.session.query(Sale)
        .filter(Sale.customer_id == customer.id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    data["sales"] = [s.to_dict() for s in sales]
    return data


def search_customers(term: str, *, limit: int = 50) -> list[Customer]:
    term = (term or "").strip()
    if not term:
        return []
    like = f"%{term.lower()}%"
    return (
        db.session.query(Customer)
        .filter(or_(func.lower(Customer.name).like(like), Customer.phone.like(f"%{term}%")))
        .order_by(Customer.name.asc(), Customer.id.asc())
        .limit(limit)
        .all()
    )


def find_by_phone(phone: str) -> Optional[Customer]:
    return db.session.query(Customer).filter_by(phone=phone).first()


def _ensure_phone_free(phone: str, *, exclude_id: Optional[int] = None) -> None:
    query = db.session.query(Customer.id).filter(Customer.phone == phone)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError("A customer with this phone already exists", {"phone": phone})


def _new_customer(payload: dict) -> Customer:
    customer = Customer(balance_owed_cents=0, total_purchases_cents=0, is_active=True)
    apply_patch(customer, payload, CUSTOMER_FIELDS)
    _ensure_phone_free(customer.phone)
    db.session.add(customer)
    db.session.flush()
    return customer


def create_customer(payload: dict) -> Customer:
    require_fields(payload, "name", "phone")
    customer = atomic(lambda: _new_customer(payload))
    logger.info("Customer created id=%s phone=%s", customer.id, customer.phone)
    return customer


def find_or_create_walk_in(*, phone: str, name: Optional[str]) -> Customer:
    """
    Reuse the customer with this phone or create one. Runs inside the
    caller's transaction (sale creation).
    """
    phone = coerce_str(phone, "customer_phone", required=True, max_length=32)
    existing = find_by_phone(phone)
    if existing:
        return existing
    return _new_customer({"name": name or phone, "phone": phone})


def update_customer(customer_id: int, payload: dict) -> Customer:
    def _op():
        customer = get_customer(customer_id)
        apply_patch(customer, payload, CUSTOMER_FIELDS)
        _ensure_phone_free(customer.phone, exclude_id=customer.id)
        db.session.flush()
        return customer

    return atomic(_op)


def delete_customer(customer_id: int) -> None:
    def _op():
        customer = get_customer(customer_id)
        if db.session.query(Sale.id).filter_by(customer_id=customer.id).first():
            raise ConflictError("Customer has sales history", {"customer_id": customer.id})
        if customer.balance_owed_cents != 0:
            raise ConflictError(
                "Customer has an outstanding balance",
                {"customer_id": customer.id, "balance_owed": format_cents(customer.balance_owed_cents)},
            )
        db.session.delete(customer)

    atomic(_op)
    logger.info("Customer %s deleted", customer_id)


def record_customer_payment(customer_id: int, payload: dict, *, actor_user_id: int) -> Customer:
    """
    Customer pays down their debt at the till.

    Debits balance_owed and credits the cashbox in the payment currency,
    with one "deposit" cashbox row referencing the customer.
    """
    require_fields(payload, "amount")
    amount_cents = parse_cents(payload.get("amount"), "amount", allow_zero=False)
    currency = coerce_enum(payload.get("currency"), "currency", CURRENCIES, default=CURRENCY_LYD)

    def _op():
        customer = balance_service.pay_down_customer(customer_id, amount_cents)
        if customer is None:
            current = db.session.get(Customer, customer_id, populate_existing=True)
            if current is None:
                raise NotFoundError("Customer not found", {"customer_id": customer_id})
            raise ValidationError(
                "Payment exceeds balance owed",
                {
                    "balance_owed": format_cents(current.balance_owed_cents),
                    "amount": format_cents(amount_cents),
                },
            )

        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_DEPOSIT,
            currency=currency,
            amount_cents=amount_cents,
            actor_user_id=actor_user_id,
            description=f"Customer payment from {customer.name}",
            reference_type="customer_payment",
            reference_id=customer.id,
        )
        return customer

    customer = atomic(_op)
    logger.info(
        "Customer payment customer=%s amount=%s %s balance_owed=%s",
        customer.id, format_cents(amount_cents), currency, format_cents(customer.balance_owed_cents),
    )
    return customer
