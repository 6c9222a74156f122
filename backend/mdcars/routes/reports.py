from flask import Blueprint, jsonify, request

from ..capabilities import CAP_VIEW
from ..decorators import require_auth, require_capability
from ..services import reporting_service
from ..time_utils import utcnow
from ..validation import ValidationError, coerce_datetime, coerce_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/dashboard")
@require_auth
@require_capability(CAP_VIEW)
def dashboard():
    return jsonify(reporting_service.dashboard_stats()), 200


@reports_bp.get("/best-sellers")
@require_auth
@require_capability(CAP_VIEW)
def best_sellers():
    limit = coerce_int(request.args.get("limit", 10), "limit", minimum=1)
    return jsonify({"products": reporting_service.best_sellers(limit=limit)}), 200


@reports_bp.get("/daily")
@require_auth
@require_capability(CAP_VIEW)
def daily_report():
    """?date=YYYY-MM-DD, defaults to today (UTC)."""
    day = coerce_datetime(request.args.get("date"), "date")
    return jsonify(reporting_service.daily_report((day or utcnow()).date())), 200


@reports_bp.get("/monthly")
@require_auth
@require_capability(CAP_VIEW)
def monthly_report():
    now = utcnow()
    year = coerce_int(request.args.get("year", now.year), "year", minimum=1)
    month = coerce_int(request.args.get("month", now.month), "month", minimum=1)
    if year > 9999:
        raise ValidationError("year is out of range")
    return jsonify(reporting_service.monthly_report(year, month)), 200
