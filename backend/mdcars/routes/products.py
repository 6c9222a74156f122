# Overview: Flask API routes for categories, products and stock movements.

# backend/mdcars/routes/products.py
"""
Catalog and stock routes.

SECURITY: All routes require authentication.
- Read operations require the view capability
- Product writes and stock movements require inventory
- Category writes and product deletion are owner-only (admin)
"""
from flask import Blueprint, request, jsonify, g

from ..capabilities import CAP_ADMIN, CAP_INVENTORY, CAP_VIEW
from ..decorators import require_auth, require_capability
from ..services import products_service, stock_service
from ..validation import coerce_bool, coerce_int, require_payload


products_bp = Blueprint("products", __name__, url_prefix="/api")


# =============================================================================
# Categories
# =============================================================================

@products_bp.get("/categories")
@require_auth
@require_capability(CAP_VIEW)
def list_categories():
    return jsonify({"categories": [c.to_dict() for c in products_service.list_categories()]}), 200


@products_bp.get("/categories/<int:category_id>")
@require_auth
@require_capability(CAP_VIEW)
def get_category(category_id: int):
    return jsonify({"category": products_service.get_category(category_id).to_dict()}), 200


@products_bp.post("/categories")
@require_auth
@require_capability(CAP_ADMIN)
def create_category():
    category = products_service.create_category(require_payload(request.get_json(silent=True)))
    return jsonify({"category": category.to_dict()}), 201


@products_bp.put("/categories/<int:category_id>")
@require_auth
@require_capability(CAP_ADMIN)
def update_category(category_id: int):
    category = products_service.update_category(category_id, require_payload(request.get_json(silent=True)))
    return jsonify({"category": category.to_dict()}), 200


@products_bp.delete("/categories/<int:category_id>")
@require_auth
@require_capability(CAP_ADMIN)
def delete_category(category_id: int):
    """Products in the category are kept and become uncategorized."""
    products_service.delete_category(category_id)
    return jsonify({"message": "Category deleted"}), 200


# =============================================================================
# Products
# =============================================================================

@products_bp.get("/products")
@require_auth
@require_capability(CAP_VIEW)
def list_products():
    include_inactive = coerce_bool(request.args.get("include_inactive", "true"), "include_inactive")
    products = products_service.list_products(include_inactive=include_inactive)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@products_bp.get("/products/search")
@require_auth
@require_capability(CAP_VIEW)
def search_products():
    """Substring match on name, SKU or barcode (?q=)."""
    term = request.args.get("q", "")
    return jsonify({"products": [p.to_dict() for p in products_service.search_products(term)]}), 200


@products_bp.get("/products/low-stock")
@require_auth
@require_capability(CAP_VIEW)
def low_stock_products():
    return jsonify({"products": [p.to_dict() for p in products_service.list_low_stock()]}), 200


@products_bp.get("/products/goods-capital")
@require_auth
@require_capability(CAP_VIEW)
def goods_capital():
    return jsonify(products_service.goods_capital()), 200


@products_bp.get("/products/<int:product_id>")
@require_auth
@require_capability(CAP_VIEW)
def get_product(product_id: int):
    return jsonify({"product": products_service.get_product(product_id).to_dict()}), 200


@products_bp.post("/products")
@require_auth
@require_capability(CAP_INVENTORY)
def create_product():
    """
    Create product. SKU is assigned by the server.

    Optional initial_stock (+ cost_price, purchase_type, stock_currency,
    supplier_name, invoice_number) records the opening stock movement.
    """
    product = products_service.create_product(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"product": product.to_dict()}), 201


@products_bp.put("/products/<int:product_id>")
@require_auth
@require_capability(CAP_INVENTORY)
def update_product(product_id: int):
    product = products_service.update_product(product_id, require_payload(request.get_json(silent=True)))
    return jsonify({"product": product.to_dict()}), 200


@products_bp.delete("/products/<int:product_id>")
@require_auth
@require_capability(CAP_ADMIN)
def delete_product(product_id: int):
    products_service.delete_product(product_id)
    return jsonify({"message": "Product deleted"}), 200


# =============================================================================
# Stock
# =============================================================================

@products_bp.post("/products/<int:product_id>/stock")
@require_auth
@require_capability(CAP_INVENTORY)
def add_stock_movement(product_id: int):
    """
    Manual stock movement: type in/out/adjustment, quantity, reason,
    cost_per_unit, purchase_type, currency, supplier_name, invoice_number.
    """
    movement = products_service.add_stock_movement(
        product_id,
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({
        "movement": movement.to_dict(),
        "product": products_service.get_product(product_id).to_dict(),
    }), 201


@products_bp.get("/stock-movements")
@require_auth
@require_capability(CAP_VIEW)
def list_stock_movements():
    product_id = request.args.get("product_id")
    product_id = coerce_int(product_id, "product_id", minimum=1) if product_id else None
    limit = coerce_int(request.args.get("limit", 200), "limit", minimum=1)
    movements = stock_service.list_movements(product_id=product_id, limit=limit)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
