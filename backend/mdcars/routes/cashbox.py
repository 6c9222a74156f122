# Overview: Flask API routes for the Main Cashbox and its transaction log.

from flask import Blueprint, request, jsonify, g

from ..capabilities import CAP_FINANCE
from ..decorators import require_auth, require_capability
from ..models.cashbox import CASHBOX_TX_TYPES
from ..services import finance_service, ledger_service
from ..validation import coerce_enum, coerce_int, require_payload


cashbox_bp = Blueprint("cashbox", __name__, url_prefix="/api/cashbox")


@cashbox_bp.get("")
@require_auth
@require_capability(CAP_FINANCE)
def get_cashbox():
    """Main Cashbox balances; the row is created on first access."""
    return jsonify({"cashbox": ledger_service.ensure_cashbox().to_dict()}), 200


@cashbox_bp.get("/transactions")
@require_auth
@require_capability(CAP_FINANCE)
def list_transactions():
    tx_type = request.args.get("type")
    if tx_type:
        coerce_enum(tx_type, "type", CASHBOX_TX_TYPES)
    txs = ledger_service.list_cashbox_transactions(
        tx_type=tx_type or None,
        limit=coerce_int(request.args.get("limit", 100), "limit", minimum=1),
    )
    return jsonify({"transactions": [tx.to_dict() for tx in txs]}), 200


@cashbox_bp.post("/transactions")
@require_auth
@require_capability(CAP_FINANCE)
def create_transaction():
    """Manual deposit or withdrawal: {type, amount, currency, description}."""
    tx = finance_service.create_manual_cashbox_transaction(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({
        "transaction": tx.to_dict(),
        "cashbox": ledger_service.ensure_cashbox().to_dict(),
    }), 201
