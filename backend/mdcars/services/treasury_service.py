# Overview: Safes and banks; separate sub-ledgers with their own deposits,
# withdrawals and transfers, plus the finance summary.

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Bank,
    BankTransaction,
    Customer,
    Safe,
    SafeTransaction,
    SupplierPayable,
)
from ..models.treasury import (
    ACCOUNT_BANK,
    ACCOUNT_KINDS,
    ACCOUNT_SAFE,
    TREASURY_TX_DEPOSIT,
    TREASURY_TX_TRANSFER_IN,
    TREASURY_TX_TRANSFER_OUT,
    TREASURY_TX_WITHDRAWAL,
)
from ..money import CURRENCIES, CURRENCY_LYD, CURRENCY_USD, format_cents, parse_cents, split_by_currency
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
from . import balance_service
from .concurrency import atomic

logger = logging.getLogger(__name__)


"""
Treasury rules:

- Safes and banks are their own ledgers. Nothing in the POS or cashbox
  flows touches them, and nothing here touches the cashbox.
- Every balance change writes one SafeTransaction/BankTransaction in the
  same transaction. A transfer writes two: transfer_out on the source and
  transfer_in on the destination, each naming the other as counterparty.
- Balances never go negative; an overdrawing withdrawal or transfer is an
  InsufficientFundsError and leaves both sides unchanged.
"""


_MODELS = {
    ACCOUNT_SAFE: (Safe, SafeTransaction, "safe_id"),
    ACCOUNT_BANK: (Bank, BankTransaction, "bank_id"),
}


def _resolve(kind: str):
    coerce_enum(kind, "account kind", ACCOUNT_KINDS)
    return _MODELS[kind]


def get_account(kind: str, account_id: int):
    model, _, _ = _resolve(kind)
    account = db.session.get(model, account_id)
    if account is None:
        raise NotFoundError(f"{model.__name__} not found", {"kind": kind, "id": account_id})
    return account


def list_accounts(kind: str) -> list:
    model, _, _ = _resolve(kind)
    return db.session.query(model).order_by(model.name.asc(), model.id.asc()).all()


def _ensure_code_free(model, code: str, *, exclude_id: Optional[int] = None) -> None:
    query = db.session.query(model.id).filter(model.code == code)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f"{model.__name__} code already exists", {"code": code})


def _optional_account_ref(kind: str):
    def _coerce(value, key):
        if value in (None, ""):
            return None
        account_id = coerce_int(value, key, minimum=1)
        get_account(kind, account_id)
        return account_id
    return _coerce


_COMMON_FIELDS = {
    "name": lambda v, k: coerce_str(v, k, required=True, max_length=255),
    "code": lambda v, k: coerce_str(v, k, required=True, max_length=32),
    "notes": lambda v, k: coerce_str(v, k),
    "is_active": coerce_bool,
}

SAFE_FIELDS = dict(_COMMON_FIELDS, parent_safe_id=_optional_account_ref(ACCOUNT_SAFE))
BANK_FIELDS = dict(
    _COMMON_FIELDS,
    account_number=lambda v, k: coerce_str(v, k, max_length=64),
    linked_safe_id=_optional_account_ref(ACCOUNT_SAFE),
)


def create_account(kind: str, payload: dict):
    model, _, _ = _resolve(kind)
    require_fields(payload, "name", "code")
    fields = SAFE_FIELDS if kind == ACCOUNT_SAFE else BANK_FIELDS

    def _op():
        account = model(balance_usd_cents=0, balance_lyd_cents=0, is_active=True)
        apply_patch(account, payload, fields)
        _ensure_code_free(model, account.code)
        db.session.add(account)
        db.session.flush()
        return account

    account = atomic(_op)
    logger.info("%s created code=%s", model.__name__, account.code)
    return account


def update_account(kind: str, account_id: int, payload: dict):
    model, _, _ = _resolve(kind)
    fields = SAFE_FIELDS if kind == ACCOUNT_SAFE else BANK_FIELDS

    def _op():
        account = get_account(kind, account_id)
        apply_patch(account, payload, fields)
        if kind == ACCOUNT_SAFE and account.parent_safe_id == account.id:
            raise ValidationError("A safe cannot be its own parent")
        _ensure_code_free(model, account.code, exclude_id=account.id)
        db.session.flush()
        return account

    return atomic(_op)


# =============================================================================
# Movements
# =============================================================================

def _append(kind: str, account_id: int, tx_type: str, currency: str, amount_cents: int, *,
            actor_user_id: int, description: Optional[str],
            counterparty: Optional[tuple[str, int]] = None):
    _, tx_model, fk = _resolve(kind)
    usd, lyd = split_by_currency(amount_cents, currency)
    tx = tx_model(
        type=tx_type,
        amount_usd_cents=usd,
        amount_lyd_cents=lyd,
        description=description,
        counterparty_kind=counterparty[0] if counterparty else None,
        counterparty_id=counterparty[1] if counterparty else None,
        created_by_user_id=actor_user_id,
        **{fk: account_id},
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _parse_movement(payload: dict) -> tuple[int, str, Optional[str]]:
    require_fields(payload, "amount")
    amount_cents = parse_cents(payload.get("amount"), "amount", allow_zero=False)
    currency = coerce_enum(payload.get("currency"), "currency", CURRENCIES, default=CURRENCY_LYD)
    return amount_cents, currency, coerce_str(payload.get("description"), "description")


def deposit(kind: str, account_id: int, payload: dict, *, actor_user_id: int):
    model, _, _ = _resolve(kind)
    amount_cents, currency, description = _parse_movement(payload)

    def _op():
        get_account(kind, account_id)
        balance_service.adjust_treasury_account(model, account_id, currency, amount_cents)
        return _append(kind, account_id, TREASURY_TX_DEPOSIT, currency, amount_cents,
                       actor_user_id=actor_user_id, description=description)

    tx = atomic(_op)
    logger.info("%s %s deposit %s %s", kind, account_id, format_cents(amount_cents), currency)
    return tx


def withdraw(kind: str, account_id: int, payload: dict, *, actor_user_id: int):
    model, _, _ = _resolve(kind)
    amount_cents, currency, description = _parse_movement(payload)

    def _op():
        get_account(kind, account_id)
        balance_service.adjust_treasury_account(model, account_id, currency, -amount_cents)
        return _append(kind, account_id, TREASURY_TX_WITHDRAWAL, currency, amount_cents,
                       actor_user_id=actor_user_id, description=description)

    tx = atomic(_op)
    logger.info("%s %s withdrawal %s %s", kind, account_id, format_cents(amount_cents), currency)
    return tx


def transfer(payload: dict, *, actor_user_id: int) -> dict:
    """
    Move money between any two treasury accounts (safe<->safe, safe<->bank,
    bank<->bank). Debit and credit commit together.
    """
    require_fields(payload, "from_kind", "from_id", "to_kind", "to_id")
    from_kind = coerce_enum(payload.get("from_kind"), "from_kind", ACCOUNT_KINDS)
    to_kind = coerce_enum(payload.get("to_kind"), "to_kind", ACCOUNT_KINDS)
    from_id = coerce_int(payload.get("from_id"), "from_id", minimum=1)
    to_id = coerce_int(payload.get("to_id"), "to_id", minimum=1)
    if (from_kind, from_id) == (to_kind, to_id):
        raise ValidationError("Cannot transfer to the same account")
    amount_cents, currency, description = _parse_movement(payload)

    def _op():
        source = get_account(from_kind, from_id)
        dest = get_account(to_kind, to_id)
        from_model, _, _ = _resolve(from_kind)
        to_model, _, _ = _resolve(to_kind)

        balance_service.adjust_treasury_account(from_model, from_id, currency, -amount_cents)
        balance_service.adjust_treasury_account(to_model, to_id, currency, amount_cents)

        out_tx = _append(
            from_kind, from_id, TREASURY_TX_TRANSFER_OUT, currency, amount_cents,
            actor_user_id=actor_user_id,
            description=description or f"Transfer to {dest.name}",
            counterparty=(to_kind, to_id),
        )
        in_tx = _append(
            to_kind, to_id, TREASURY_TX_TRANSFER_IN, currency, amount_cents,
            actor_user_id=actor_user_id,
            description=description or f"Transfer from {source.name}",
            counterparty=(from_kind, from_id),
        )
        return {"out": out_tx, "in": in_tx}

    result = atomic(_op)
    logger.info(
        "Treasury transfer %s:%s -> %s:%s %s %s",
        from_kind, from_id, to_kind, to_id, format_cents(amount_cents), currency,
    )
    return result


def list_transactions(kind: str, *, account_id: Optional[int] = None, limit: int = 200) -> list:
    _, tx_model, fk = _resolve(kind)
    query = db.session.query(tx_model)
    if account_id is not None:
        get_account(kind, account_id)
        query = query.filter(getattr(tx_model, fk) == account_id)
    return query.order_by(tx_model.created_at.desc(), tx_model.id.desc()).limit(limit).all()


# =============================================================================
# Summary
# =============================================================================

def _sum(column) -> int:
    return int(db.session.query(func.coalesce(func.sum(column), 0)).scalar())


def finance_summary() -> dict:
    unpaid = (
        db.session.query(SupplierPayable.currency, func.coalesce(func.sum(SupplierPayable.amount_cents), 0))
        .filter(SupplierPayable.is_paid.is_(False))
        .group_by(SupplierPayable.currency)
        .all()
    )
    supplier_debt = {CURRENCY_USD: 0, CURRENCY_LYD: 0}
    for currency, total in unpaid:
        supplier_debt[currency] = int(total)

    recent = list_transactions(ACCOUNT_SAFE, limit=10) + list_transactions(ACCOUNT_BANK, limit=10)
    recent.sort(key=lambda tx: (tx.created_at, tx.id), reverse=True)

    return {
        "total_safe_balance_usd": format_cents(_sum(Safe.balance_usd_cents)),
        "total_safe_balance_lyd": format_cents(_sum(Safe.balance_lyd_cents)),
        "total_bank_balance_usd": format_cents(_sum(Bank.balance_usd_cents)),
        "total_bank_balance_lyd": format_cents(_sum(Bank.balance_lyd_cents)),
        "total_customer_debt": format_cents(_sum(Customer.balance_owed_cents)),
        "total_supplier_debt_usd": format_cents(supplier_debt[CURRENCY_USD]),
        "total_supplier_debt_lyd": format_cents(supplier_debt[CURRENCY_LYD]),
        "recent_transactions": [tx.to_dict() for tx in recent[:10]],
    }
