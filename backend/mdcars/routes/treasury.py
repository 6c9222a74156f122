# Overview: Flask API routes for safes, banks, treasury transfers and the finance summary.

# backend/mdcars/routes/treasury.py
"""
Treasury routes.

Safes and banks share one set of handlers; <kind> is "safes" or "banks"
in the URL and maps to the account kind the service expects.
"""

from flask import Blueprint, request, jsonify, g, abort

from ..capabilities import CAP_FINANCE
from ..decorators import require_auth, require_capability
from ..models.treasury import ACCOUNT_BANK, ACCOUNT_SAFE
from ..services import treasury_service
from ..validation import coerce_int, require_payload


treasury_bp = Blueprint("treasury", __name__, url_prefix="/api/finance")

_KINDS = {"safes": ACCOUNT_SAFE, "banks": ACCOUNT_BANK}


def _kind(segment: str) -> str:
    if segment not in _KINDS:
        abort(404)
    return _KINDS[segment]


@treasury_bp.get("/summary")
@require_auth
@require_capability(CAP_FINANCE)
def finance_summary():
    return jsonify(treasury_service.finance_summary()), 200


@treasury_bp.post("/transfer")
@require_auth
@require_capability(CAP_FINANCE)
def transfer():
    """
    {from_kind, from_id, to_kind, to_id, amount, currency, description}

    Kinds are "safe" or "bank". Debit and credit commit together.
    """
    result = treasury_service.transfer(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({
        "transfer_out": result["out"].to_dict(),
        "transfer_in": result["in"].to_dict(),
    }), 201


@treasury_bp.get("/<segment>")
@require_auth
@require_capability(CAP_FINANCE)
def list_accounts(segment: str):
    accounts = treasury_service.list_accounts(_kind(segment))
    return jsonify({segment: [a.to_dict() for a in accounts]}), 200


@treasury_bp.post("/<segment>")
@require_auth
@require_capability(CAP_FINANCE)
def create_account(segment: str):
    account = treasury_service.create_account(_kind(segment), require_payload(request.get_json(silent=True)))
    return jsonify({"account": account.to_dict()}), 201


@treasury_bp.get("/<segment>/<int:account_id>")
@require_auth
@require_capability(CAP_FINANCE)
def get_account(segment: str, account_id: int):
    account = treasury_service.get_account(_kind(segment), account_id)
    return jsonify({"account": account.to_dict()}), 200


@treasury_bp.put("/<segment>/<int:account_id>")
@require_auth
@require_capability(CAP_FINANCE)
def update_account(segment: str, account_id: int):
    account = treasury_service.update_account(
        _kind(segment), account_id, require_payload(request.get_json(silent=True))
    )
    return jsonify({"account": account.to_dict()}), 200


@treasury_bp.post("/<segment>/<int:account_id>/deposit")
@require_auth
@require_capability(CAP_FINANCE)
def deposit(segment: str, account_id: int):
    kind = _kind(segment)
    tx = treasury_service.deposit(
        kind, account_id, require_payload(request.get_json(silent=True)), actor_user_id=g.current_user.id
    )
    return jsonify({
        "transaction": tx.to_dict(),
        "account": treasury_service.get_account(kind, account_id).to_dict(),
    }), 201


@treasury_bp.post("/<segment>/<int:account_id>/withdraw")
@require_auth
@require_capability(CAP_FINANCE)
def withdraw(segment: str, account_id: int):
    """Withdrawal may not overdraw the account (409)."""
    kind = _kind(segment)
    tx = treasury_service.withdraw(
        kind, account_id, require_payload(request.get_json(silent=True)), actor_user_id=g.current_user.id
    )
    return jsonify({
        "transaction": tx.to_dict(),
        "account": treasury_service.get_account(kind, account_id).to_dict(),
    }), 201


@treasury_bp.get("/<segment>/<int:account_id>/transactions")
@require_auth
@require_capability(CAP_FINANCE)
def list_account_transactions(segment: str, account_id: int):
    txs = treasury_service.list_transactions(
        _kind(segment),
        account_id=account_id,
        limit=coerce_int(request.args.get("limit", 200), "limit", minimum=1),
    )
    return jsonify({"transactions": [tx.to_dict() for tx in txs]}), 200
