# Overview: Flask API routes for expenses, revenues and supplier payables.

from flask import Blueprint, request, jsonify, g

from ..capabilities import CAP_FINANCE
from ..decorators import require_auth, require_capability
from ..services import finance_service
from ..validation import coerce_bool, coerce_datetime, require_payload


finance_bp = Blueprint("finance", __name__, url_prefix="/api")


def _window_args() -> dict:
    return {
        "start": coerce_datetime(request.args.get("start"), "start"),
        "end": coerce_datetime(request.args.get("end"), "end"),
    }


# =============================================================================
# Expenses
# =============================================================================

@finance_bp.get("/expenses")
@require_auth
@require_capability(CAP_FINANCE)
def list_expenses():
    expenses = finance_service.list_expenses(**_window_args())
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@finance_bp.get("/expenses/next-number")
@require_auth
@require_capability(CAP_FINANCE)
def next_expense_number():
    return jsonify({"expense_number": finance_service.preview_next_expense_number()}), 200


@finance_bp.get("/expenses/<int:expense_id>")
@require_auth
@require_capability(CAP_FINANCE)
def get_expense(expense_id: int):
    return jsonify({"expense": finance_service.get_expense(expense_id).to_dict()}), 200


@finance_bp.post("/expenses")
@require_auth
@require_capability(CAP_FINANCE)
def create_expense():
    """Record an expense and debit the cashbox."""
    expense = finance_service.create_expense(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"expense": expense.to_dict()}), 201


@finance_bp.delete("/expenses/<int:expense_id>")
@require_auth
@require_capability(CAP_FINANCE)
def delete_expense(expense_id: int):
    """Posts a compensating cashbox adjustment, then removes the expense."""
    finance_service.delete_expense(expense_id, actor_user_id=g.current_user.id)
    return jsonify({"message": "Expense deleted"}), 200


# =============================================================================
# Revenues
# =============================================================================

@finance_bp.get("/revenues")
@require_auth
@require_capability(CAP_FINANCE)
def list_revenues():
    revenues = finance_service.list_revenues(**_window_args())
    return jsonify({"revenues": [r.to_dict() for r in revenues]}), 200


@finance_bp.get("/revenues/next-number")
@require_auth
@require_capability(CAP_FINANCE)
def next_revenue_number():
    return jsonify({"revenue_number": finance_service.preview_next_revenue_number()}), 200


@finance_bp.get("/revenues/<int:revenue_id>")
@require_auth
@require_capability(CAP_FINANCE)
def get_revenue(revenue_id: int):
    return jsonify({"revenue": finance_service.get_revenue(revenue_id).to_dict()}), 200


@finance_bp.post("/revenues")
@require_auth
@require_capability(CAP_FINANCE)
def create_revenue():
    revenue = finance_service.create_revenue(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"revenue": revenue.to_dict()}), 201


@finance_bp.delete("/revenues/<int:revenue_id>")
@require_auth
@require_capability(CAP_FINANCE)
def delete_revenue(revenue_id: int):
    finance_service.delete_revenue(revenue_id, actor_user_id=g.current_user.id)
    return jsonify({"message": "Revenue deleted"}), 200


# =============================================================================
# Supplier payables
# =============================================================================

@finance_bp.get("/supplier-payables")
@require_auth
@require_capability(CAP_FINANCE)
def list_supplier_payables():
    """Optional ?is_paid=true|false filter."""
    raw = request.args.get("is_paid")
    is_paid = coerce_bool(raw, "is_paid") if raw not in (None, "") else None
    payables = finance_service.list_supplier_payables(is_paid=is_paid)
    return jsonify({"payables": [p.to_dict() for p in payables]}), 200


@finance_bp.post("/supplier-payables/<int:payable_id>/pay")
@require_auth
@require_capability(CAP_FINANCE)
def pay_supplier_payable(payable_id: int):
    """Settle once; paying a paid payable is a 409."""
    payable = finance_service.pay_supplier_payable(payable_id, actor_user_id=g.current_user.id)
    return jsonify({"payable": payable.to_dict()}), 200
