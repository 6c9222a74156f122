# backend/mdcars/routes/system.py
"""
System health and version endpoints.

Health checks cover the database and the bootstrap state that every
money-moving operation relies on (an owner account and the Main Cashbox).
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Cashbox, Product, Sale, SessionToken, User
from ..models.auth import ROLE_OWNER
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Basic query round-trip plus a few table counts."""
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "products": db.session.query(Product).count(),
            "sales": db.session.query(Sale).count(),
            "active_sessions": db.session.query(SessionToken).filter(
                SessionToken.is_revoked.is_(False),
                SessionToken.expires_at > utcnow(),
            ).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_bootstrap_health() -> dict:
    """
    Degraded (still operational) until `flask system init` has created the
    owner account and the Main Cashbox.
    """
    try:
        has_owner = db.session.query(User.id).filter_by(role=ROLE_OWNER, is_active=True).first() is not None
        has_cashbox = db.session.query(Cashbox.id).first() is not None
    except SQLAlchemyError:
        current_app.logger.exception("Bootstrap health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Database error"}

    missing = []
    if not has_owner:
        missing.append("owner user")
    if not has_cashbox:
        missing.append("cashbox")
    if missing:
        return {"status": "degraded", "warning": f"Missing: {', '.join(missing)} (run `flask system init`)"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "bootstrap": check_bootstrap_health(),
    }
    statuses = {c["status"] for c in checks.values()}

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info. No secrets, credentials or paths."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "store_name": current_app.config.get("STORE_NAME"),
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
