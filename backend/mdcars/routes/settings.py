from __future__ import annotations

from flask import Blueprint, jsonify, request, g

from ..capabilities import CAP_ADMIN, CAP_VIEW
from ..decorators import require_auth, require_capability
from ..services import settings_service
from ..validation import ValidationError, require_payload


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
@require_capability(CAP_VIEW)
def list_settings():
    return jsonify({"settings": [s.to_dict() for s in settings_service.list_settings()]}), 200


@settings_bp.get("/<key>")
@require_auth
@require_capability(CAP_VIEW)
def get_setting(key: str):
    return jsonify({"setting": settings_service.get_setting(key).to_dict()}), 200


@settings_bp.put("/<key>")
@require_auth
@require_capability(CAP_ADMIN)
def put_setting(key: str):
    """{value, description?}; exchange_rate and currency_default are validated."""
    payload = require_payload(request.get_json(silent=True))
    if "value" not in payload:
        raise ValidationError("value is required")
    setting = settings_service.upsert_setting(
        key,
        payload.get("value"),
        actor_user_id=g.current_user.id,
        description=payload.get("description"),
    )
    return jsonify({"setting": setting.to_dict()}), 200
