# Overview: Cashbox transaction log; pairs every cashbox balance change with its audit row.

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ..extensions import db
from ..models import CashboxTransaction
from ..models.cashbox import (
    CASHBOX_TX_ADJUSTMENT,
    CASHBOX_TX_DEPOSIT,
    CASHBOX_TX_EXPENSE,
    CASHBOX_TX_PURCHASE,
    CASHBOX_TX_REFUND,
    CASHBOX_TX_SALE,
    CASHBOX_TX_WITHDRAWAL,
)
from ..money import format_rate, split_by_currency
from . import balance_service
from .concurrency import atomic

"""
Cashbox Ledger Invariants (authoritative)

- Append-only: CashboxTransaction rows are never updated or deleted.
- Every cashbox balance change has exactly one row, written inside the
  same DB transaction as the change. Corrections are new rows of type
  "adjustment", never edits.
- Amounts on the row are non-negative; the type fixes the direction.
"""

logger = logging.getLogger(__name__)


CREDIT = 1
DEBIT = -1

_DIRECTION_BY_TYPE = {
    CASHBOX_TX_SALE: CREDIT,
    CASHBOX_TX_DEPOSIT: CREDIT,
    CASHBOX_TX_REFUND: DEBIT,
    CASHBOX_TX_EXPENSE: DEBIT,
    CASHBOX_TX_WITHDRAWAL: DEBIT,
    CASHBOX_TX_PURCHASE: DEBIT,
}


def post_cashbox_entry(
    *,
    tx_type: str,
    currency: str,
    amount_cents: int,
    actor_user_id: int,
    description: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id=None,
    exchange_rate: Optional[Decimal | str] = None,
    direction: Optional[int] = None,
) -> CashboxTransaction:
    """
    Move the cashbox balance and append the matching log row.

    direction is implied by tx_type except for "adjustment", where the
    caller must pass CREDIT or DEBIT. Does not commit.
    """
    if tx_type == CASHBOX_TX_ADJUSTMENT:
        if direction not in (CREDIT, DEBIT):
            raise ValueError("adjustment entries need an explicit direction")
    else:
        direction = _DIRECTION_BY_TYPE[tx_type]

    if amount_cents < 0:
        raise ValueError("amount_cents must be non-negative")

    box = balance_service.adjust_cashbox(currency, direction * amount_cents)

    usd, lyd = split_by_currency(amount_cents, currency)
    tx = CashboxTransaction(
        cashbox_id=box.id,
        type=tx_type,
        amount_usd_cents=usd,
        amount_lyd_cents=lyd,
        exchange_rate=format_rate(exchange_rate) if exchange_rate is not None else None,
        description=description,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        created_by_user_id=actor_user_id,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def ensure_cashbox():
    """Committed Main Cashbox row (created on first call)."""
    return atomic(balance_service.get_cashbox)


def list_cashbox_transactions(*, tx_type: Optional[str] = None, limit: int = 100) -> list[CashboxTransaction]:
    query = db.session.query(CashboxTransaction)
    if tx_type:
        query = query.filter(CashboxTransaction.type == tx_type)
    return (
        query.order_by(CashboxTransaction.created_at.desc(), CashboxTransaction.id.desc())
        .limit(limit)
        .all()
    )


def transactions_for_reference(reference_type: str, reference_id) -> list[CashboxTransaction]:
    return (
        db.session.query(CashboxTransaction)
        .filter_by(reference_type=reference_type, reference_id=str(reference_id))
        .order_by(CashboxTransaction.id.asc())
        .all()
    )
