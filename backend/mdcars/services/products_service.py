# backend/mdcars/services/products_service.py
"""
Catalog service: categories, products, manual stock movements.

Product creation assigns the next sequential SKU and, when an opening
quantity with a cost is given, records it as an "in" movement through the
stock ledger (creating a supplier payable for credit purchases). The
product row, SKU counter, movement and payable commit together.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Category, Product, SaleItem, StockMovement
from ..models.inventory import MOVEMENT_IN, PURCHASE_CASH, PURCHASE_TYPES
from ..money import CURRENCIES, CURRENCY_LYD, format_cents, parse_cents
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
from . import sequence_service, stock_service
from .concurrency import atomic

logger = logging.getLogger(__name__)


# =============================================================================
# Categories
# =============================================================================

CATEGORY_FIELDS = {
    "name": lambda v, k: coerce_str(v, k, required=True, max_length=128),
    "description": lambda v, k: coerce_str(v, k),
    "is_active": coerce_bool,
}


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError("Category not found", {"category_id": category_id})
    return category


def _ensure_category_name_free(name: str, *, exclude_id: Optional[int] = None) -> None:
    query = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError("Category name already exists", {"name": name})


def create_category(payload: dict) -> Category:
    require_fields(payload, "name")

    def _op():
        category = Category(is_active=True)
        apply_patch(category, payload, CATEGORY_FIELDS)
        _ensure_category_name_free(category.name)
        db.session.add(category)
        db.session.flush()
        return category

    return atomic(_op)


def update_category(category_id: int, payload: dict) -> Category:
    def _op():
        category = get_category(category_id)
        apply_patch(category, payload, CATEGORY_FIELDS)
        _ensure_category_name_free(category.name, exclude_id=category.id)
        db.session.flush()
        return category

    return atomic(_op)


def delete_category(category_id: int) -> None:
    def _op():
        category = get_category(category_id)
        # Products keep existing; they just lose the category
        db.session.query(Product).filter_by(category_id=category.id).update(
            {Product.category_id: None}, synchronize_session=False
        )
        db.session.delete(category)

    atomic(_op)


# =============================================================================
# Products
# =============================================================================

def _coerce_category_id(value, key):
    if value is None or value == "":
        return None
    category_id = coerce_int(value, key, minimum=1)
    get_category(category_id)
    return category_id


PRODUCT_FIELDS = {
    "name": lambda v, k: coerce_str(v, k, required=True, max_length=255),
    "barcode": lambda v, k: coerce_str(v, k, max_length=64),
    "description": lambda v, k: coerce_str(v, k),
    "category_id": _coerce_category_id,
    "cost_price": None,
    "selling_price": None,
    "low_stock_threshold": lambda v, k: coerce_int(v, k, minimum=0),
    "is_active": coerce_bool,
}

# Stock only moves through the stock ledger
READ_ONLY_PRODUCT_FIELDS = {"sku", "current_stock", "id", "created_at", "updated_at"}


def _apply_product_payload(product: Product, payload: dict) -> None:
    for key in payload:
        if key in READ_ONLY_PRODUCT_FIELDS:
            raise ValidationError(f"Field is read-only: {key}")
    prices = {k: payload[k] for k in ("cost_price", "selling_price") if k in payload}
    rest = {k: v for k, v in payload.items() if k not in prices}
    apply_patch(product, rest, {k: f for k, f in PRODUCT_FIELDS.items() if f is not None})
    if "cost_price" in prices:
        product.cost_price_cents = parse_cents(prices["cost_price"], "cost_price")
    if "selling_price" in prices:
        product.selling_price_cents = parse_cents(prices["selling_price"], "selling_price")


def list_products(*, include_inactive: bool = True) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return product


def search_products(term: str, *, limit: int = 50) -> list[Product]:
    """Case-insensitive substring match on name, SKU or barcode."""
    term = (term or "").strip()
    if not term:
        return []
    like = f"%{term.lower()}%"
    return (
        db.session.query(Product)
        .filter(
            or_(
                func.lower(Product.name).like(like),
                func.lower(Product.sku).like(like),
                func.lower(Product.barcode).like(like),
            )
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .limit(limit)
        .all()
    )


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .filter(Product.current_stock <= Product.low_stock_threshold)
        .order_by(Product.current_stock.asc(), Product.id.asc())
        .all()
    )


def goods_capital() -> dict:
    """Inventory value at cost: sum(cost_price * current_stock)."""
    total = (
        db.session.query(func.coalesce(func.sum(Product.cost_price_cents * Product.current_stock), 0))
        .scalar()
    )
    units = db.session.query(func.coalesce(func.sum(Product.current_stock), 0)).scalar()
    return {
        "goods_capital": format_cents(int(total)),
        "total_units": int(units),
    }


def create_product(payload: dict, *, actor_user_id: int) -> Product:
    """
    Create a product with the next SKU.

    Optional opening stock: initial_stock, purchase_type, stock_currency,
    supplier_name, invoice_number. The opening stock is only recorded as a
    movement when both quantity and cost price are positive.
    """
    require_fields(payload, "name")
    payload = dict(payload)
    initial_stock = coerce_int(payload.pop("initial_stock", payload.pop("current_stock", 0)) or 0, "initial_stock", minimum=0)
    purchase_type = coerce_enum(payload.pop("purchase_type", None), "purchase_type", PURCHASE_TYPES, default=PURCHASE_CASH)
    stock_currency = coerce_enum(payload.pop("stock_currency", None), "stock_currency", CURRENCIES, default=CURRENCY_LYD)
    supplier_name = coerce_str(payload.pop("supplier_name", None), "supplier_name", max_length=255)
    invoice_number = coerce_str(payload.pop("invoice_number", None), "invoice_number", max_length=64)

    def _op():
        product = Product(current_stock=0, is_active=True)
        _apply_product_payload(product, payload)
        product.sku = sequence_service.next_sku()
        db.session.add(product)
        db.session.flush()

        if initial_stock > 0 and product.cost_price_cents > 0:
            stock_service.record_movement(
                product_id=product.id,
                movement_type=MOVEMENT_IN,
                quantity=initial_stock,
                actor_user_id=actor_user_id,
                reason="Initial stock",
                cost_per_unit_cents=product.cost_price_cents,
                purchase_type=purchase_type,
                currency=stock_currency,
                supplier_name=supplier_name,
                invoice_number=invoice_number,
                reference_type="initial_stock",
                reference_id=product.id,
                payable_description_prefix="Initial stock",
            )
        elif initial_stock > 0:
            # No cost: opening count only, nothing owed to anyone
            stock_service.record_movement(
                product_id=product.id,
                movement_type=MOVEMENT_IN,
                quantity=initial_stock,
                actor_user_id=actor_user_id,
                reason="Initial stock",
                reference_type="initial_stock",
                reference_id=product.id,
            )
        return db.session.get(Product, product.id, populate_existing=True)

    product = atomic(_op)
    logger.info("Product created sku=%s name=%r stock=%s", product.sku, product.name, product.current_stock)
    return product


def update_product(product_id: int, payload: dict) -> Product:
    def _op():
        product = get_product(product_id)
        _apply_product_payload(product, payload)
        db.session.flush()
        return product

    return atomic(_op)


def delete_product(product_id: int) -> None:
    def _op():
        product = get_product(product_id)
        if db.session.query(SaleItem.id).filter_by(product_id=product.id).first():
            raise ConflictError(
                "Product has sales history; deactivate it instead",
                {"product_id": product.id},
            )
        # The stock ledger is append-only, so a product with movements stays
        if db.session.query(StockMovement.id).filter_by(product_id=product.id).first():
            raise ConflictError(
                "Product has stock history; deactivate it instead",
                {"product_id": product.id},
            )
        db.session.delete(product)

    atomic(_op)
    logger.info("Product %s deleted", product_id)


def add_stock_movement(product_id: int, payload: dict, *, actor_user_id: int) -> StockMovement:
    """Manual stock in/out/adjustment from the inventory screen."""
    require_fields(payload, "type", "quantity")
    movement_type = payload.get("type")
    quantity = coerce_int(payload.get("quantity"), "quantity", minimum=1)
    cost = payload.get("cost_per_unit")
    cost_cents = parse_cents(cost, "cost_per_unit") if cost not in (None, "") else None
    purchase_type = payload.get("purchase_type") or None
    currency = payload.get("currency") or None

    def _op():
        get_product(product_id)
        return stock_service.record_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            actor_user_id=actor_user_id,
            reason=coerce_str(payload.get("reason"), "reason", max_length=255),
            cost_per_unit_cents=cost_cents,
            purchase_type=purchase_type,
            currency=currency,
            supplier_name=coerce_str(payload.get("supplier_name"), "supplier_name", max_length=255),
            invoice_number=coerce_str(payload.get("invoice_number"), "invoice_number", max_length=64),
            reference_type="manual",
        )

    movement = atomic(_op)
    logger.info(
        "Stock movement %s product=%s qty=%s %s->%s",
        movement.type, product_id, quantity, movement.previous_stock, movement.new_stock,
    )
    return movement
