# Overview: Money-movement operations against the cashbox (expenses, revenues,
# manual cashbox entries, supplier payables, partners).

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, update

from ..extensions import db
from ..models import Expense, Partner, PartnerTransaction, Revenue, SupplierPayable
from ..models.cashbox import (
    CASHBOX_TX_ADJUSTMENT,
    CASHBOX_TX_DEPOSIT,
    CASHBOX_TX_EXPENSE,
    CASHBOX_TX_PURCHASE,
    CASHBOX_TX_WITHDRAWAL,
)
from ..models.finance import (
    EXPENSE_CATEGORIES,
    PARTNER_TX_INVESTMENT,
    PARTNER_TX_PROFIT_DISTRIBUTION,
    PARTNER_TX_TYPES,
    PARTNER_TX_WITHDRAWAL,
)
from ..money import CURRENCIES, CURRENCY_LYD, format_cents, format_rate, parse_cents, parse_rate
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    apply_patch,
    coerce_bool,
    coerce_enum,
    coerce_int,
    coerce_str,
    require_fields,
)
from . import balance_service, ledger_service, sequence_service, settings_service
from .concurrency import atomic

logger = logging.getLogger(__name__)


"""
Every operation here follows one template, inside a single transaction:

    validate -> write the primary record (with its sequential number)
             -> move exactly one balance in the right direction/currency
             -> append one CashboxTransaction referencing the record

| Operation                     | Cashbox | Other balance                  |
|-------------------------------|---------|--------------------------------|
| expense                       | debit   | -                              |
| revenue                       | credit  | -                              |
| manual deposit / withdrawal   | per type| -                              |
| supplier payable paid         | debit   | payable is_paid false -> true  |
| partner investment            | credit  | total_invested += amount       |
| partner withdrawal            | debit   | total_withdrawn += amount      |
| partner profit distribution   | debit   | total_profit_distributed += amt|

Deleting an expense or revenue removes the record and posts a compensating
"adjustment" row in the same transaction, so the cashbox never drifts from its log.
"""


def _parse_amount_currency(payload: dict) -> tuple[int, str]:
    require_fields(payload, "amount")
    amount_cents = parse_cents(payload.get("amount"), "amount", allow_zero=False)
    currency = coerce_enum(payload.get("currency"), "currency", CURRENCIES, default=CURRENCY_LYD)
    return amount_cents, currency


def _parse_optional_rate(payload: dict):
    raw = payload.get("exchange_rate")
    return parse_rate(raw) if raw not in (None, "") else None


def _parse_business_date(value) -> datetime:
    if value in (None, ""):
        return utcnow()
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date or datetime")


def _claim_delete(model, record, details: dict) -> None:
    """Delete the row in one statement; a concurrent delete that got there first matches nothing."""
    removed = db.session.execute(
        delete(model).where(model.id == record.id).execution_options(synchronize_session=False)
    ).rowcount
    if not removed:
        raise NotFoundError(f"{model.__name__} not found", details)
    db.session.expunge(record)


def _date_window(query, column, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column < end)
    return query


# =============================================================================
# Expenses
# =============================================================================

def list_expenses(*, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Expense]:
    query = _date_window(db.session.query(Expense), Expense.date, start, end)
    return query.order_by(Expense.date.desc(), Expense.id.desc()).all()


def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if not expense:
        raise NotFoundError("Expense not found", {"expense_id": expense_id})
    return expense


def create_expense(payload: dict, *, actor_user_id: int) -> Expense:
    require_fields(payload, "category", "description")
    amount_cents, currency = _parse_amount_currency(payload)
    category = coerce_enum(payload.get("category"), "category", EXPENSE_CATEGORIES)
    description = coerce_str(payload.get("description"), "description", required=True)
    person_name = coerce_str(payload.get("person_name"), "person_name", max_length=255)
    rate = _parse_optional_rate(payload)
    date = _parse_business_date(payload.get("date"))

    def _op():
        effective_rate = rate if rate is not None else settings_service.get_exchange_rate()
        expense = Expense(
            expense_number=sequence_service.next_expense_number(),
            category=category,
            amount_cents=amount_cents,
            currency=currency,
            exchange_rate=format_rate(effective_rate),
            description=description,
            person_name=person_name,
            date=date,
            created_by_user_id=actor_user_id,
        )
        db.session.add(expense)
        db.session.flush()

        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_EXPENSE,
            currency=currency,
            amount_cents=amount_cents,
            actor_user_id=actor_user_id,
            description=description,
            reference_type="expense",
            reference_id=expense.id,
            exchange_rate=effective_rate,
        )
        return expense

    expense = atomic(_op)
    logger.info("Expense %s created amount=%s %s", expense.expense_number, format_cents(amount_cents), currency)
    return expense


def delete_expense(expense_id: int, *, actor_user_id: int) -> None:
    def _op():
        expense = get_expense(expense_id)
        _claim_delete(Expense, expense, {"expense_id": expense_id})
        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_ADJUSTMENT,
            direction=ledger_service.CREDIT,
            currency=expense.currency,
            amount_cents=expense.amount_cents,
            actor_user_id=actor_user_id,
            description=f"Reversal of {expense.expense_number}",
            reference_type="expense",
            reference_id=expense.id,
            exchange_rate=expense.exchange_rate,
        )
        return expense.expense_number

    number = atomic(_op)
    logger.info("Expense %s deleted and reversed", number)


def preview_next_expense_number() -> str:
    return f"{sequence_service.EXPENSE_PREFIX}-{sequence_service.peek_value('expense'):05d}"


# =============================================================================
# Revenues
# =============================================================================

def list_revenues(*, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list[Revenue]:
    query = _date_window(db.session.query(Revenue), Revenue.date, start, end)
    return query.order_by(Revenue.date.desc(), Revenue.id.desc()).all()


def get_revenue(revenue_id: int) -> Revenue:
    revenue = db.session.get(Revenue, revenue_id)
    if not revenue:
        raise NotFoundError("Revenue not found", {"revenue_id": revenue_id})
    return revenue


def create_revenue(payload: dict, *, actor_user_id: int) -> Revenue:
    require_fields(payload, "source")
    amount_cents, currency = _parse_amount_currency(payload)
    source = coerce_str(payload.get("source"), "source", required=True, max_length=255)
    description = coerce_str(payload.get("description"), "description")
    rate = _parse_optional_rate(payload)
    date = _parse_business_date(payload.get("date"))

    def _op():
        effective_rate = rate if rate is not None else settings_service.get_exchange_rate()
        revenue = Revenue(
            revenue_number=sequence_service.next_revenue_number(),
            source=source,
            amount_cents=amount_cents,
            currency=currency,
            exchange_rate=format_rate(effective_rate),
            description=description,
            reference_type=coerce_str(payload.get("reference_type"), "reference_type", max_length=32),
            reference_id=coerce_str(payload.get("reference_id"), "reference_id", max_length=64),
            date=date,
            created_by_user_id=actor_user_id,
        )
        db.session.add(revenue)
        db.session.flush()

        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_DEPOSIT,
            currency=currency,
            amount_cents=amount_cents,
            actor_user_id=actor_user_id,
            description=f"Revenue: {source}",
            reference_type="revenue",
            reference_id=revenue.id,
            exchange_rate=effective_rate,
        )
        return revenue

    revenue = atomic(_op)
    logger.info("Revenue %s created amount=%s %s", revenue.revenue_number, format_cents(amount_cents), currency)
    return revenue


def delete_revenue(revenue_id: int, *, actor_user_id: int) -> None:
    def _op():
        revenue = get_revenue(revenue_id)
        _claim_delete(Revenue, revenue, {"revenue_id": revenue_id})
        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_ADJUSTMENT,
            direction=ledger_service.DEBIT,
            currency=revenue.currency,
            amount_cents=revenue.amount_cents,
            actor_user_id=actor_user_id,
            description=f"Reversal of {revenue.revenue_number}",
            reference_type="revenue",
            reference_id=revenue.id,
            exchange_rate=revenue.exchange_rate,
        )
        return revenue.revenue_number

    number = atomic(_op)
    logger.info("Revenue %s deleted and reversed", number)


def preview_next_revenue_number() -> str:
    return f"{sequence_service.REVENUE_PREFIX}-{sequence_service.peek_value('revenue'):05d}"


# =============================================================================
# Manual cashbox entries
# =============================================================================

MANUAL_CASHBOX_TYPES = (CASHBOX_TX_DEPOSIT, CASHBOX_TX_WITHDRAWAL)


def create_manual_cashbox_transaction(payload: dict, *, actor_user_id: int):
    require_fields(payload, "type")
    tx_type = coerce_enum(payload.get("type"), "type", MANUAL_CASHBOX_TYPES)
    amount_cents, currency = _parse_amount_currency(payload)
    description = coerce_str(payload.get("description"), "description")
    rate = _parse_optional_rate(payload)

    def _op():
        return ledger_service.post_cashbox_entry(
            tx_type=tx_type,
            currency=currency,
            amount_cents=amount_cents,
            actor_user_id=actor_user_id,
            description=description,
            reference_type="manual",
            exchange_rate=rate,
        )

    tx = atomic(_op)
    logger.info("Cashbox %s amount=%s %s by user %s", tx_type, format_cents(amount_cents), currency, actor_user_id)
    return tx


# =============================================================================
# Supplier payables
# =============================================================================

def list_supplier_payables(*, is_paid: Optional[bool] = None) -> list[SupplierPayable]:
    query = db.session.query(SupplierPayable)
    if is_paid is not None:
        query = query.filter(SupplierPayable.is_paid.is_(is_paid))
    return query.order_by(SupplierPayable.created_at.desc(), SupplierPayable.id.desc()).all()


def pay_supplier_payable(payable_id: int, *, actor_user_id: int) -> SupplierPayable:
    """Settle a payable once: is_paid false -> true and debit the cashbox."""
    def _op():
        # Claim the unpaid row in one statement; only one concurrent payer can flip it
        claimed = db.session.execute(
            update(SupplierPayable)
            .where(SupplierPayable.id == payable_id, SupplierPayable.is_paid.is_(False))
            .values(is_paid=True, paid_at=utcnow(), paid_by_user_id=actor_user_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        payable = db.session.get(SupplierPayable, payable_id, populate_existing=True)
        if payable is None:
            raise NotFoundError("Payable not found", {"payable_id": payable_id})
        if not claimed:
            raise ConflictError("This payable has already been paid", {"payable_id": payable.id})

        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_PURCHASE,
            currency=payable.currency,
            amount_cents=payable.amount_cents,
            actor_user_id=actor_user_id,
            description=f"Supplier payment: {payable.supplier_name} - {payable.description}",
            reference_type="supplier_payable",
            reference_id=payable.id,
        )
        return payable

    payable = atomic(_op)
    logger.info(
        "Supplier payable %s paid amount=%s %s",
        payable.id, format_cents(payable.amount_cents), payable.currency,
    )
    return payable


# =============================================================================
# Partners
# =============================================================================

def _coerce_percentage(value, key) -> int:
    """Percentage 0-100 with up to 2 decimals, stored as basis points."""
    bp = parse_cents(value, key)
    if bp > 10000:
        raise ValidationError(f"{key} must be between 0 and 100")
    return bp


PARTNER_FIELDS = {
    "name": lambda v, k: coerce_str(v, k, required=True, max_length=255),
    "phone": lambda v, k: coerce_str(v, k, max_length=32),
    "email": lambda v, k: coerce_str(v, k, max_length=255),
    "notes": lambda v, k: coerce_str(v, k),
    "is_active": coerce_bool,
}


def _apply_partner_payload(partner: Partner, payload: dict) -> None:
    payload = dict(payload)
    if "ownership_percentage" in payload:
        partner.ownership_percentage_bp = _coerce_percentage(payload.pop("ownership_percentage"), "ownership_percentage")
    apply_patch(partner, payload, PARTNER_FIELDS)


def list_partners() -> list[Partner]:
    return db.session.query(Partner).order_by(Partner.created_at.desc(), Partner.id.desc()).all()


def get_partner(partner_id: int) -> Partner:
    partner = db.session.get(Partner, partner_id)
    if not partner:
        raise NotFoundError("Partner not found", {"partner_id": partner_id})
    return partner


def create_partner(payload: dict) -> Partner:
    require_fields(payload, "name")

    def _op():
        partner = Partner(
            ownership_percentage_bp=0,
            total_invested_cents=0,
            total_withdrawn_cents=0,
            total_profit_distributed_cents=0,
            is_active=True,
        )
        _apply_partner_payload(partner, payload)
        db.session.add(partner)
        db.session.flush()
        return partner

    return atomic(_op)


def update_partner(partner_id: int, payload: dict) -> Partner:
    def _op():
        partner = get_partner(partner_id)
        _apply_partner_payload(partner, payload)
        db.session.flush()
        return partner

    return atomic(_op)


def delete_partner(partner_id: int) -> None:
    """Remove the partner and its transactions. Cashbox rows they produced stay."""
    def _op():
        partner = get_partner(partner_id)
        db.session.delete(partner)

    atomic(_op)
    logger.info("Partner %s deleted", partner_id)


def list_partner_transactions(*, partner_id: Optional[int] = None) -> list[PartnerTransaction]:
    query = db.session.query(PartnerTransaction)
    if partner_id is not None:
        query = query.filter(PartnerTransaction.partner_id == partner_id)
    return query.order_by(PartnerTransaction.created_at.desc(), PartnerTransaction.id.desc()).all()


_PARTNER_CASHBOX = {
    PARTNER_TX_INVESTMENT: (CASHBOX_TX_DEPOSIT, "Partner investment from {name}"),
    PARTNER_TX_WITHDRAWAL: (CASHBOX_TX_WITHDRAWAL, "Partner withdrawal by {name}"),
    PARTNER_TX_PROFIT_DISTRIBUTION: (CASHBOX_TX_WITHDRAWAL, "Profit distribution to {name}"),
}


def create_partner_transaction(payload: dict, *, actor_user_id: int) -> PartnerTransaction:
    require_fields(payload, "partner_id", "type")
    partner_id = coerce_int(payload.get("partner_id"), "partner_id", minimum=1)
    tx_type = coerce_enum(payload.get("type"), "type", PARTNER_TX_TYPES)
    amount_cents, currency = _parse_amount_currency(payload)
    description = coerce_str(payload.get("description"), "description")

    def _op():
        partner = get_partner(partner_id)
        tx = PartnerTransaction(
            partner_id=partner.id,
            type=tx_type,
            amount_cents=amount_cents,
            currency=currency,
            description=description,
            created_by_user_id=actor_user_id,
        )
        db.session.add(tx)
        db.session.flush()

        balance_service.increment_partner_counter(partner.id, tx_type, amount_cents)

        cashbox_type, template = _PARTNER_CASHBOX[tx_type]
        ledger_service.post_cashbox_entry(
            tx_type=cashbox_type,
            currency=currency,
            amount_cents=amount_cents,
            actor_user_id=actor_user_id,
            description=template.format(name=partner.name),
            reference_type="partner_transaction",
            reference_id=tx.id,
        )
        return tx

    tx = atomic(_op)
    logger.info(
        "Partner %s %s amount=%s %s",
        partner_id, tx_type, format_cents(amount_cents), currency,
    )
    return tx
