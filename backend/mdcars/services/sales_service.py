# Overview: Sale transaction engine; creates sales and reverses them (return/cancel).

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update

from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.cashbox import CASHBOX_TX_REFUND, CASHBOX_TX_SALE
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_PARTIAL,
    PAYMENT_METHODS,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
    SALE_STATUS_RETURNED,
    SALE_STATUSES,
)
from ..money import CURRENCIES, format_cents, format_rate, parse_cents, parse_rate
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_enum,
    coerce_int,
    coerce_str,
    require_payload,
)
from . import (
    balance_service,
    customers_service,
    ledger_service,
    sequence_service,
    settings_service,
    stock_service,
)
from .concurrency import atomic

"""
Sale Engine Invariants (authoritative)

Creation is one unit of work. Sale header, lines, stock decrements,
customer balance, cashbox credit and cashbox log row commit together or
not at all. Any error (unknown product, insufficient stock, bad amount)
rolls back every earlier step of the same request.

Arithmetic is computed here from the lines, never taken from the client:
    line.total    = unit_price * quantity
    line.profit   = (unit_price - cost_price) * quantity
    subtotal      = sum(line.total)
    total_amount  = subtotal - discount          (0 <= discount <= subtotal)
    amount_due    = max(0, total_amount - amount_paid)
    change_due    = max(0, amount_paid - total_amount)
    retained      = amount_paid - change_due     (cash the till keeps)

Side effects of a completed sale:
    - each line: stock "out" (reason "Sale", reference sale)
    - customer:  balance_owed += amount_due, total_purchases += total_amount
    - cashbox:   += retained in the sale currency, one "sale" row

Reversal (return, or cancel of a completed sale) is the exact inverse:
    - each line: stock "in" (reason "<Return|Cancel> - Sale <number>")
    - customer:  balance_owed -= amount_due, total_purchases -= total_amount
                 (total_purchases floored at 0)
    - cashbox:   -= retained, one "refund" row

The status flip completed -> returned/cancelled is a conditional UPDATE
evaluated before any other reversal write, so a second return of the same
sale fails without touching stock or the cashbox.
"""

logger = logging.getLogger(__name__)


REASON_SALE = "Sale"
REFERENCE_SALE = "sale"
REFERENCE_SALE_RETURN = "sale_return"
REFERENCE_SALE_CANCEL = "sale_cancel"


@dataclass
class _LineInput:
    product_id: int
    quantity: int
    unit_price_cents: Optional[int]


def _parse_lines(items) -> list[_LineInput]:
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must have at least one item")
    lines = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        price = raw.get("unit_price")
        lines.append(
            _LineInput(
                product_id=coerce_int(raw.get("product_id"), f"items[{idx}].product_id", minimum=1),
                quantity=coerce_int(raw.get("quantity"), f"items[{idx}].quantity", minimum=1),
                unit_price_cents=parse_cents(price, f"items[{idx}].unit_price") if price not in (None, "") else None,
            )
        )
    return lines


def _derive_payment_method(requested: Optional[str], total_cents: int, paid_cents: int) -> str:
    derived = PAYMENT_METHOD_CASH if paid_cents >= total_cents else PAYMENT_METHOD_PARTIAL
    if requested in (None, ""):
        return derived
    coerce_enum(requested, "payment_method", PAYMENT_METHODS)
    if requested != derived:
        raise ValidationError(
            f"payment_method '{requested}' does not match the amounts paid",
            {"expected": derived},
        )
    return derived


# =============================================================================
# Create
# =============================================================================

def create_sale(payload: dict, *, actor_user_id: int) -> Sale:
    """
    Create a completed sale with all of its side effects.

    payload:
        items: [{product_id, quantity, unit_price?}]
        customer_id? | customer_phone? (+ customer_name?)
        discount?, amount_paid, currency?, exchange_rate?, payment_method?, notes?
    """
    payload = require_payload(payload)
    lines_in = _parse_lines(payload.get("items"))
    discount_cents = parse_cents(payload.get("discount") or 0, "discount")
    paid_raw = payload.get("amount_paid")
    if paid_raw in (None, ""):
        raise ValidationError("amount_paid is required")
    paid_cents = parse_cents(paid_raw, "amount_paid")
    notes = coerce_str(payload.get("notes"), "notes")
    customer_id = payload.get("customer_id")
    customer_id = coerce_int(customer_id, "customer_id", minimum=1) if customer_id not in (None, "") else None
    customer_phone = payload.get("customer_phone")
    customer_name = coerce_str(payload.get("customer_name"), "customer_name", max_length=255)
    rate_raw = payload.get("exchange_rate")
    exchange_rate = parse_rate(rate_raw) if rate_raw not in (None, "") else None
    currency_raw = payload.get("currency")
    if currency_raw not in (None, ""):
        coerce_enum(currency_raw, "currency", CURRENCIES)

    def _op():
        currency = currency_raw or settings_service.get_default_currency()
        rate = exchange_rate if exchange_rate is not None else settings_service.get_exchange_rate()

        # Price every line before writing anything
        priced = []
        for line in lines_in:
            product = db.session.get(Product, line.product_id)
            if product is None:
                raise NotFoundError("Product not found", {"product_id": line.product_id})
            if not product.is_active:
                raise ValidationError(f"Product is inactive: {product.name}", {"product_id": product.id})
            unit = line.unit_price_cents if line.unit_price_cents is not None else product.selling_price_cents
            priced.append((product, line.quantity, unit, product.cost_price_cents))

        subtotal = sum(qty * unit for _, qty, unit, _ in priced)
        if discount_cents > subtotal:
            raise ValidationError(
                "discount cannot exceed subtotal",
                {"subtotal": format_cents(subtotal), "discount": format_cents(discount_cents)},
            )
        total = subtotal - discount_cents
        amount_due = max(0, total - paid_cents)
        change_due = max(0, paid_cents - total)
        payment_method = _derive_payment_method(payload.get("payment_method"), total, paid_cents)

        customer = None
        if customer_id is not None:
            customer = customers_service.get_customer(customer_id)
        elif customer_phone not in (None, ""):
            customer = customers_service.find_or_create_walk_in(phone=customer_phone, name=customer_name)
        if amount_due > 0 and customer is None:
            raise ValidationError("A customer is required for a sale with an amount due")

        now = utcnow()
        sale = Sale(
            sale_number=sequence_service.next_sale_number(now.date()),
            customer_id=customer.id if customer else None,
            status=SALE_STATUS_COMPLETED,
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            total_amount_cents=total,
            amount_paid_cents=paid_cents,
            amount_due_cents=amount_due,
            change_due_cents=change_due,
            payment_method=payment_method,
            currency=currency,
            exchange_rate=format_rate(rate),
            notes=notes,
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for product, qty, unit, cost in priced:
            db.session.add(
                SaleItem(
                    sale_id=sale.id,
                    product_id=product.id,
                    product_name=product.name,
                    product_sku=product.sku,
                    quantity=qty,
                    unit_price_cents=unit,
                    cost_price_cents=cost,
                    total_price_cents=unit * qty,
                    profit_cents=(unit - cost) * qty,
                )
            )
        db.session.flush()

        for product, qty, _, _ in priced:
            stock_service.record_movement(
                product_id=product.id,
                movement_type=MOVEMENT_OUT,
                quantity=qty,
                actor_user_id=actor_user_id,
                reason=REASON_SALE,
                reference_type=REFERENCE_SALE,
                reference_id=sale.id,
            )

        if customer is not None:
            balance_service.adjust_customer(customer.id, balance_delta=amount_due, purchases_delta=total)

        # Logged even when nothing was paid, so every sale has its cashbox row
        ledger_service.post_cashbox_entry(
            tx_type=CASHBOX_TX_SALE,
            currency=currency,
            amount_cents=sale.retained_cents,
            actor_user_id=actor_user_id,
            description=f"Sale {sale.sale_number}",
            reference_type=REFERENCE_SALE,
            reference_id=sale.id,
            exchange_rate=rate,
        )
        return sale

    sale = atomic(_op)
    logger.info(
        "Sale %s created total=%s %s paid=%s due=%s customer=%s",
        sale.sale_number,
        format_cents(sale.total_amount_cents),
        sale.currency,
        format_cents(sale.amount_paid_cents),
        format_cents(sale.amount_due_cents),
        sale.customer_id,
    )
    return sale


# =============================================================================
# Reversal (return / cancel)
# =============================================================================

def _claim_status(sale_id: int, *, from_status: str, to_status: str, actor_user_id: Optional[int]) -> bool:
    """Flip status only if it is still from_status. Returns False if someone got there first."""
    values = {"status": to_status}
    if actor_user_id is not None:
        values.update(reversed_at=utcnow(), reversed_by_user_id=actor_user_id)
    stmt = (
        update(Sale)
        .where(Sale.id == sale_id, Sale.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return bool(db.session.execute(stmt).rowcount)


def _reverse_effects(sale: Sale, *, actor_user_id: int, label: str, reference_type: str) -> None:
    description = f"{label} - Sale {sale.sale_number}"

    for item in sale.items:
        stock_service.record_movement(
            product_id=item.product_id,
            movement_type=MOVEMENT_IN,
            quantity=item.quantity,
            actor_user_id=actor_user_id,
            reason=description,
            reference_type=reference_type,
            reference_id=sale.id,
        )

    ledger_service.post_cashbox_entry(
        tx_type=CASHBOX_TX_REFUND,
        currency=sale.currency,
        amount_cents=sale.retained_cents,
        actor_user_id=actor_user_id,
        description=description,
        reference_type=reference_type,
        reference_id=sale.id,
        exchange_rate=sale.exchange_rate,
    )

    if sale.customer_id is not None:
        balance_service.adjust_customer(
            sale.customer_id,
            balance_delta=-sale.amount_due_cents,
            purchases_delta=-sale.total_amount_cents,
        )


def _load_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id, populate_existing=True)
    if sale is None:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def return_sale(sale_id: int, *, actor_user_id: int) -> Sale:
    """
    Return a completed sale: full inverse of create_sale.

    Only a completed sale can be returned; anything else (including a
    sale that was already returned) is a ConflictError with no effects.
    """
    def _op():
        sale = _load_sale(sale_id)
        if not _claim_status(
            sale.id,
            from_status=SALE_STATUS_COMPLETED,
            to_status=SALE_STATUS_RETURNED,
            actor_user_id=actor_user_id,
        ):
            sale = _load_sale(sale_id)
            raise ConflictError(
                f"Only completed sales can be returned (status is {sale.status})",
                {"sale_id": sale.id, "status": sale.status},
            )
        _reverse_effects(sale, actor_user_id=actor_user_id, label="Return", reference_type=REFERENCE_SALE_RETURN)
        return _load_sale(sale_id)

    sale = atomic(_op)
    logger.info(
        "Sale %s returned refund=%s %s",
        sale.sale_number, format_cents(sale.retained_cents), sale.currency,
    )
    return sale


def cancel_sale(sale_id: int, *, actor_user_id: int) -> Sale:
    """
    Cancel a sale.

    pending   -> cancelled, nothing else changes (a pending sale has no effects)
    completed -> cancelled, with the same reversal as a return
    otherwise -> ConflictError
    """
    def _op():
        sale = _load_sale(sale_id)
        if sale.status == SALE_STATUS_PENDING:
            if not _claim_status(
                sale.id,
                from_status=SALE_STATUS_PENDING,
                to_status=SALE_STATUS_CANCELLED,
                actor_user_id=actor_user_id,
            ):
                raise ConflictError("Sale status changed concurrently", {"sale_id": sale.id})
            return _load_sale(sale_id)

        if not _claim_status(
            sale.id,
            from_status=SALE_STATUS_COMPLETED,
            to_status=SALE_STATUS_CANCELLED,
            actor_user_id=actor_user_id,
        ):
            sale = _load_sale(sale_id)
            raise ConflictError(
                f"Sale cannot be cancelled (status is {sale.status})",
                {"sale_id": sale.id, "status": sale.status},
            )
        _reverse_effects(sale, actor_user_id=actor_user_id, label="Cancel", reference_type=REFERENCE_SALE_CANCEL)
        return _load_sale(sale_id)

    sale = atomic(_op)
    logger.info("Sale %s cancelled", sale.sale_number)
    return sale


# =============================================================================
# Reads
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    limit: int = 200,
) -> list[Sale]:
    query = db.session.query(Sale)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    if status:
        coerce_enum(status, "status", SALE_STATUSES)
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def preview_next_sale_number() -> str:
    """Number the next sale created today would get (not reserved)."""
    return sequence_service.peek_sale_number(utcnow().date())
