# Overview: Flask API routes for partners and their capital movements.

from flask import Blueprint, request, jsonify, g

from ..capabilities import CAP_PARTNERS
from ..decorators import require_auth, require_capability
from ..services import finance_service
from ..validation import coerce_int, require_payload


partners_bp = Blueprint("partners", __name__, url_prefix="/api")


@partners_bp.get("/partners")
@require_auth
@require_capability(CAP_PARTNERS)
def list_partners():
    return jsonify({"partners": [p.to_dict() for p in finance_service.list_partners()]}), 200


@partners_bp.get("/partners/<int:partner_id>")
@require_auth
@require_capability(CAP_PARTNERS)
def get_partner(partner_id: int):
    return jsonify({"partner": finance_service.get_partner(partner_id).to_dict()}), 200


@partners_bp.post("/partners")
@require_auth
@require_capability(CAP_PARTNERS)
def create_partner():
    partner = finance_service.create_partner(require_payload(request.get_json(silent=True)))
    return jsonify({"partner": partner.to_dict()}), 201


@partners_bp.put("/partners/<int:partner_id>")
@require_auth
@require_capability(CAP_PARTNERS)
def update_partner(partner_id: int):
    partner = finance_service.update_partner(partner_id, require_payload(request.get_json(silent=True)))
    return jsonify({"partner": partner.to_dict()}), 200


@partners_bp.delete("/partners/<int:partner_id>")
@require_auth
@require_capability(CAP_PARTNERS)
def delete_partner(partner_id: int):
    finance_service.delete_partner(partner_id)
    return jsonify({"message": "Partner deleted"}), 200


@partners_bp.get("/partner-transactions")
@require_auth
@require_capability(CAP_PARTNERS)
def list_partner_transactions():
    partner_id = request.args.get("partner_id")
    txs = finance_service.list_partner_transactions(
        partner_id=coerce_int(partner_id, "partner_id", minimum=1) if partner_id else None,
    )
    return jsonify({"transactions": [tx.to_dict() for tx in txs]}), 200


@partners_bp.post("/partner-transactions")
@require_auth
@require_capability(CAP_PARTNERS)
def create_partner_transaction():
    """
    {partner_id, type, amount, currency, description}

    investment credits the cashbox; withdrawal and profit_distribution debit it.
    """
    tx = finance_service.create_partner_transaction(
        require_payload(request.get_json(silent=True)),
        actor_user_id=g.current_user.id,
    )
    return jsonify({
        "transaction": tx.to_dict(),
        "partner": finance_service.get_partner(tx.partner_id).to_dict(),
    }), 201
