# backend/marketpos/routes/audit.py
"""Audit log browsing (admin only)."""

from flask import Blueprint, request, jsonify

from ..services import audit_service
from ..decorators import require_auth, require_role
from marketpos.time_utils import parse_iso_date

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_role("admin")
def list_audit_logs():
    """
    Query params: limit (default 50), offset, user_id, action (substring),
    start_date, end_date (YYYY-MM-DD, inclusive)
    """
    try:
        start_date = parse_iso_date(request.args.get("start_date"))
        end_date = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "Dates must be YYYY-MM-DD"}), 400

    result = audit_service.list_audit_logs(
        limit=request.args.get("limit", default=50, type=int),
        offset=request.args.get("offset", default=0, type=int),
        user_id=request.args.get("user_id", type=int),
        action=request.args.get("action"),
        start_date=start_date,
        end_date=end_date,
    )
    return jsonify(result)
