# Overview: Flask API routes for customers and customer debt payments.

from flask import Blueprint, request, jsonify, g

from ..capabilities import CAP_ADMIN, CAP_CUSTOMERS
from ..decorators import require_auth, require_capability
from ..services import customers_service
from ..validation import require_payload


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_capability(CAP_CUSTOMERS)
def list_customers():
    return jsonify({"customers": [c.to_dict() for c in customers_service.list_customers()]}), 200


@customers_bp.get("/search")
@require_auth
@require_capability(CAP_CUSTOMERS)
def search_customers():
    """Name or phone substring (?q=). Empty query returns nothing."""
    customers = customers_service.search_customers(request.args.get("q", ""))
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_capability(CAP_CUSTOMERS)
def get_customer(customer_id: int):
    return jsonify({"customer": customers_service.get_customer_with_sales(customer_id)}), 200


@customers_bp.post("")
@require_auth
@require_capability(CAP_CUSTOMERS)
def create_customer():
    customer = customers_service.create_customer(require_payload(request.get_json(silent=True)))
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_capability(CAP_CUSTOMERS)
def update_customer(customer_id: int):
    customer = customers_service.update_customer(customer_id, require_payload(request.get_json(silent=True)))
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_capability(CAP_ADMIN)
def delete_customer(customer_id: int):
    customers_service.delete_customer(customer_id)
    return jsonify({"message": "Customer deleted"}), 200


@customers_bp.post("/<int:customer_id>/payments")
@require_auth
@require_capability(CAP_CUSTOMERS)
def record_payment(customer_id: int):
    """
    Customer pays down their balance: {amount, currency}.

    Credits the cashbox in the payment currency.
    """
    customer = customers_service.record_customer_payment(
        customer_id,
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"customer": customer.to_dict()}), 201
