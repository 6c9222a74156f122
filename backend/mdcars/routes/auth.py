# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/mdcars/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Session management with token-based auth
- Disabled users cannot log in
- Owner-only user administration
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..capabilities import CAP_ADMIN, capabilities_for
from ..decorators import require_auth, require_capability
from ..services import auth_service
from ..services import session_service
from ..time_utils import to_utc_z
from ..validation import require_payload


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _actor_payload(user) -> dict:
    return {"user": user.to_dict(), "capabilities": capabilities_for(user.role)}


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    data = require_payload(request.get_json(silent=True))
    username = data.get("username")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400

    user = auth_service.authenticate(username, password)
    if not user:
        current_app.logger.info("Failed login for username=%s", username)
        return jsonify({"error": "Invalid credentials"}), 401

    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    body = _actor_payload(user)
    body.update({"token": token, "expires_at": to_utc_z(session.expires_at)})
    return jsonify(body), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the current session token."""
    session_service.revoke_session(g.auth_token)
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current actor and the capabilities their role grants."""
    return jsonify(_actor_payload(g.current_user)), 200


@auth_bp.patch("/profile")
@require_auth
def update_profile_route():
    """Edit own username, name, email and phone. Any role."""
    user = auth_service.update_profile(g.current_user.id, require_payload(request.get_json(silent=True)))
    return jsonify(_actor_payload(user)), 200


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    """
    Change own password.

    Request body:
    {
        "current_password": "...",
        "new_password": "..."
    }

    Other sessions of the user are logged out; this one stays valid.
    """
    data = require_payload(request.get_json(silent=True))
    auth_service.change_password(
        g.current_user.id,
        data.get("current_password"),
        data.get("new_password"),
        keep_token=g.auth_token,
    )
    return jsonify({"message": "Password changed successfully"}), 200


# =============================================================================
# User administration (owner)
# =============================================================================

@auth_bp.get("/users")
@require_auth
@require_capability(CAP_ADMIN)
def list_users_route():
    return jsonify({"users": [u.to_dict() for u in auth_service.list_users()]}), 200


@auth_bp.post("/users")
@require_auth
@require_capability(CAP_ADMIN)
def create_user_route():
    user = auth_service.create_user(require_payload(request.get_json(silent=True)))
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.put("/users/<int:user_id>")
@require_auth
@require_capability(CAP_ADMIN)
def update_user_route(user_id: int):
    user = auth_service.update_user(user_id, require_payload(request.get_json(silent=True)))
    return jsonify({"user": user.to_dict()}), 200


@auth_bp.delete("/users/<int:user_id>")
@require_auth
@require_capability(CAP_ADMIN)
def deactivate_user_route(user_id: int):
    """
    Deactivate (never hard-delete) a user; their sales keep the attribution.
    """
    if user_id == g.current_user.id:
        return jsonify({"error": "You cannot deactivate your own account"}), 400
    user = auth_service.update_user(user_id, {"is_active": False})
    return jsonify({"user": user.to_dict()}), 200
