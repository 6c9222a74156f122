# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/mdcars/routes/sales.py
"""Sales API routes with capability enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..capabilities import CAP_SALES
from ..decorators import require_auth, require_capability
from ..services import sales_service
from ..validation import coerce_datetime, coerce_int, require_payload


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
@require_capability(CAP_SALES)
def list_sales_route():
    """
    List sales, newest first.

    Query: start, end (ISO dates, end exclusive), status, customer_id, limit
    """
    customer_id = request.args.get("customer_id")
    sales = sales_service.list_sales(
        start=coerce_datetime(request.args.get("start"), "start"),
        end=coerce_datetime(request.args.get("end"), "end"),
        status=request.args.get("status") or None,
        customer_id=coerce_int(customer_id, "customer_id", minimum=1) if customer_id else None,
        limit=coerce_int(request.args.get("limit", 200), "limit", minimum=1),
    )
    return jsonify({"sales": [s.to_dict() for s in sales]}), 200


@sales_bp.get("/next-number")
@require_auth
@require_capability(CAP_SALES)
def next_sale_number_route():
    """Preview only; the number is assigned when the sale is created."""
    return jsonify({"sale_number": sales_service.preview_next_sale_number()}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_capability(CAP_SALES)
def get_sale_route(sale_id: int):
    """Get sale with items."""
    sale = sales_service.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict(include_details=True)}), 200


@sales_bp.post("")
@require_auth
@require_capability(CAP_SALES)
def create_sale_route():
    """
    Create a completed sale.

    Stock, customer balance and cashbox are updated in the same
    transaction; any failure leaves nothing behind.
    """
    sale = sales_service.create_sale(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    current_app.logger.debug("Sale %s created via API by user %s", sale.sale_number, g.current_user.id)
    return jsonify({"sale": sale.to_dict(include_details=True)}), 201


@sales_bp.post("/<int:sale_id>/return")
@require_auth
@require_capability(CAP_SALES)
def return_sale_route(sale_id: int):
    """
    Return a completed sale and reverse its effects.

    A second return of the same sale is a 409 with no effects.
    """
    sale = sales_service.return_sale(sale_id, actor_user_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(include_details=True)}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_capability(CAP_SALES)
def cancel_sale_route(sale_id: int):
    sale = sales_service.cancel_sale(sale_id, actor_user_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(include_details=True)}), 200
