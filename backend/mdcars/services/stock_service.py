# Overview: Stock ledger; every quantity change appends a StockMovement.

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement, SupplierPayable
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
    PURCHASE_CASH,
    PURCHASE_CREDIT,
    PURCHASE_TYPES,
)
from ..money import CURRENCIES, CURRENCY_LYD, format_cents
from ..validation import InsufficientStockError, NotFoundError, ValidationError

"""
Stock Ledger Invariants (authoritative)

- StockMovement is append-only: rows are never updated or deleted.
- Product.current_stock is changed only here, in the same transaction that
  appends the movement, so it always equals the sum of movement deltas.
- current_stock never goes below zero. "out" is a conditional UPDATE
  (WHERE current_stock >= qty): the check and the decrement are one
  statement, so two concurrent sales cannot both take the last unit.
- "adjustment" sets current_stock to an absolute value (stock count).
- A credit-type "in" with a cost creates the SupplierPayable for it.
- Nothing here commits; callers wrap it in their unit of work.
"""

logger = logging.getLogger(__name__)


DEFAULT_SUPPLIER_NAME = "Unknown Supplier"


def _load_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def _apply_delta(product: Product, delta: int) -> tuple[int, int]:
    """Atomically add delta to current_stock. Returns (previous, new)."""
    stmt = update(Product).where(Product.id == product.id)
    if delta < 0:
        stmt = stmt.where(Product.current_stock >= -delta)
    stmt = stmt.values(current_stock=Product.current_stock + delta).execution_options(synchronize_session=False)

    if not db.session.execute(stmt).rowcount:
        product = _load_product(product.id)
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}",
            {
                "product_id": product.id,
                "sku": product.sku,
                "requested": -delta,
                "available": product.current_stock,
            },
        )

    new_stock = _load_product(product.id).current_stock
    return new_stock - delta, new_stock


def _apply_absolute(product: Product, quantity: int) -> tuple[int, int]:
    product = _load_product(product.id)
    previous = product.current_stock
    stmt = (
        update(Product)
        .where(Product.id == product.id)
        .values(current_stock=quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    _load_product(product.id)
    return previous, quantity


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    actor_user_id: int,
    reason: Optional[str] = None,
    cost_per_unit_cents: Optional[int] = None,
    purchase_type: Optional[str] = None,
    currency: Optional[str] = None,
    supplier_name: Optional[str] = None,
    invoice_number: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id=None,
    payable_description_prefix: str = "Stock purchase",
) -> StockMovement:
    """
    Append a stock movement and move Product.current_stock with it.

    - in:         new = previous + quantity
    - out:        new = previous - quantity (InsufficientStockError if < 0)
    - adjustment: new = quantity
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid stock movement type: {movement_type}. Must be one of {list(MOVEMENT_TYPES)}")
    if movement_type == MOVEMENT_ADJUSTMENT:
        if quantity < 0:
            raise ValidationError("quantity must be >= 0")
    elif quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    if purchase_type is not None and purchase_type not in PURCHASE_TYPES:
        raise ValidationError(f"Invalid purchase type: {purchase_type}. Must be one of {list(PURCHASE_TYPES)}")
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"Invalid currency: {currency}. Must be one of {list(CURRENCIES)}")

    product = _load_product(product_id)

    if movement_type == MOVEMENT_IN:
        previous, new = _apply_delta(product, quantity)
    elif movement_type == MOVEMENT_OUT:
        previous, new = _apply_delta(product, -quantity)
    else:
        previous, new = _apply_absolute(product, quantity)

    is_stock_in = movement_type == MOVEMENT_IN
    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new,
        cost_per_unit_cents=cost_per_unit_cents,
        reason=reason,
        purchase_type=(purchase_type or PURCHASE_CASH) if is_stock_in else None,
        currency=(currency or CURRENCY_LYD) if is_stock_in else None,
        supplier_name=supplier_name if is_stock_in else None,
        invoice_number=invoice_number if is_stock_in else None,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        created_by_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()

    if is_stock_in and movement.purchase_type == PURCHASE_CREDIT and cost_per_unit_cents:
        _create_payable(product, movement, prefix=payable_description_prefix)

    logger.debug(
        "Stock %s product=%s qty=%s %s->%s",
        movement_type, product.id, quantity, previous, new,
    )
    return movement


def _create_payable(product: Product, movement: StockMovement, *, prefix: str) -> SupplierPayable:
    unit_cost = format_cents(movement.cost_per_unit_cents)
    description = f"{prefix}: {product.name} x{movement.quantity} @ {unit_cost} {movement.currency}"
    if movement.invoice_number:
        description += f" (Inv# {movement.invoice_number})"

    payable = SupplierPayable(
        supplier_name=movement.supplier_name or DEFAULT_SUPPLIER_NAME,
        amount_cents=movement.cost_per_unit_cents * movement.quantity,
        currency=movement.currency,
        description=description,
        is_paid=False,
        stock_movement_id=movement.id,
        created_by_user_id=movement.created_by_user_id,
    )
    db.session.add(payable)
    db.session.flush()
    return payable


def list_movements(*, product_id: Optional[int] = None, limit: int = 200) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()
