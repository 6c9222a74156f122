# Overview: Atomic balance mutations for the cashbox, customers, partners, safes and banks.

from __future__ import annotations

from sqlalchemy import case, update

from ..extensions import db
from ..models import Bank, Cashbox, Customer, Partner, Safe
from ..models.cashbox import MAIN_CASHBOX_NAME
from ..models.finance import (
    PARTNER_TX_INVESTMENT,
    PARTNER_TX_PROFIT_DISTRIBUTION,
    PARTNER_TX_WITHDRAWAL,
)
from ..money import CURRENCY_USD, format_cents, split_by_currency
from ..validation import InsufficientFundsError, NotFoundError


"""
Balance Store rules:

- Every balance change is a single UPDATE ... SET col = col + :delta issued
  inside the caller's transaction. No read-modify-write in Python.
- Nothing here commits. The caller appends the matching log row in the
  same transaction and commits both together.
- After the UPDATE the ORM instance is reloaded (populate_existing) so the
  caller sees the committed-to-be value, not a stale identity-map copy.
"""


_PARTNER_COUNTERS = {
    PARTNER_TX_INVESTMENT: "total_invested_cents",
    PARTNER_TX_WITHDRAWAL: "total_withdrawn_cents",
    PARTNER_TX_PROFIT_DISTRIBUTION: "total_profit_distributed_cents",
}


def _increment(model, entity_id: int, **deltas) -> int:
    values = {getattr(model, col): getattr(model, col) + delta for col, delta in deltas.items() if delta}
    if not values:
        return 1
    stmt = (
        update(model)
        .where(model.id == entity_id)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount


def _reload(model, entity_id: int):
    return db.session.get(model, entity_id, populate_existing=True)


# =============================================================================
# Cashbox
# =============================================================================

def get_cashbox() -> Cashbox:
    """Return the single Main Cashbox row, creating it on first use."""
    box = db.session.query(Cashbox).order_by(Cashbox.id.asc()).first()
    if box is None:
        box = Cashbox(name=MAIN_CASHBOX_NAME, balance_usd_cents=0, balance_lyd_cents=0)
        db.session.add(box)
        db.session.flush()
    return box


def adjust_cashbox(currency: str, delta_cents: int) -> Cashbox:
    """Add delta_cents (may be negative) to the cashbox balance in currency."""
    box = get_cashbox()
    usd, lyd = split_by_currency(delta_cents, currency)
    _increment(Cashbox, box.id, balance_usd_cents=usd, balance_lyd_cents=lyd)
    return _reload(Cashbox, box.id)


# =============================================================================
# Customers
# =============================================================================

def adjust_customer(customer_id: int, *, balance_delta: int = 0, purchases_delta: int = 0) -> Customer:
    """
    Move a customer's balance owed and cumulative purchases.

    total_purchases is floored at zero when reduced; balance_owed is not
    (a return on a customer who has since paid leaves them in credit).
    """
    values = {}
    if balance_delta:
        values[Customer.balance_owed_cents] = Customer.balance_owed_cents + balance_delta
    if purchases_delta:
        new_total = Customer.total_purchases_cents + purchases_delta
        values[Customer.total_purchases_cents] = case((new_total < 0, 0), else_=new_total)

    if values:
        stmt = (
            update(Customer)
            .where(Customer.id == customer_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if not db.session.execute(stmt).rowcount:
            raise NotFoundError("Customer not found", {"customer_id": customer_id})

    customer = _reload(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", {"customer_id": customer_id})
    return customer


def pay_down_customer(customer_id: int, amount_cents: int) -> Customer | None:
    """
    Reduce balance owed only if it still covers amount_cents.

    Returns None when the guard fails, leaving the caller to tell a missing
    customer from an overpayment.
    """
    stmt = (
        update(Customer)
        .where(Customer.id == customer_id, Customer.balance_owed_cents >= amount_cents)
        .values({Customer.balance_owed_cents: Customer.balance_owed_cents - amount_cents})
        .execution_options(synchronize_session=False)
    )
    if not db.session.execute(stmt).rowcount:
        return None
    return _reload(Customer, customer_id)


# =============================================================================
# Partners
# =============================================================================

def increment_partner_counter(partner_id: int, tx_type: str, amount_cents: int) -> Partner:
    column = _PARTNER_COUNTERS[tx_type]
    if not _increment(Partner, partner_id, **{column: amount_cents}):
        raise NotFoundError("Partner not found", {"partner_id": partner_id})
    return _reload(Partner, partner_id)


# =============================================================================
# Safes / Banks
# =============================================================================

def adjust_treasury_account(model, account_id: int, currency: str, delta_cents: int):
    """
    Move a Safe or Bank balance. A debit is a conditional UPDATE that only
    applies when the balance covers it, so concurrent withdrawals cannot
    overdraw the account.
    """
    if model not in (Safe, Bank):
        raise ValueError(f"Unsupported treasury account model: {model!r}")

    column = getattr(model, "balance_usd_cents" if currency == CURRENCY_USD else "balance_lyd_cents")
    stmt = update(model).where(model.id == account_id)
    if delta_cents < 0:
        stmt = stmt.where(column >= -delta_cents)
    stmt = stmt.values({column: column + delta_cents}).execution_options(synchronize_session=False)

    if not db.session.execute(stmt).rowcount:
        account = _reload(model, account_id)
        if account is None:
            raise NotFoundError(f"{model.__name__} not found", {"id": account_id})
        raise InsufficientFundsError(
            f"Insufficient {currency} balance in {account.name}",
            {
                "account_id": account_id,
                "currency": currency,
                "available": format_cents(account.balance_for(currency)),
                "requested": format_cents(-delta_cents),
            },
        )
    return _reload(model, account_id)
