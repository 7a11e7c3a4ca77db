# backend/marketpos/routes/dashboard.py
"""Dashboard read endpoints. Any authenticated user."""

from flask import Blueprint, request, jsonify

from ..services import dashboard_service
from ..decorators import require_auth

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
@require_auth
def stats():
    return jsonify({"stats": dashboard_service.get_stats()})


@dashboard_bp.get("/recent-sales")
@require_auth
def recent_sales():
    limit = request.args.get("limit", default=10, type=int)
    sales = dashboard_service.recent_sales(limit)
    return jsonify({"sales": [s.to_dict() for s in sales]})


@dashboard_bp.get("/low-stock")
@require_auth
def low_stock():
    products = dashboard_service.low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products]})


@dashboard_bp.get("/expiring")
@require_auth
def expiring():
    days = request.args.get("days", default=dashboard_service.EXPIRY_WINDOW_DAYS, type=int)
    products = dashboard_service.expiring_products(days)
    return jsonify({"products": [p.to_dict() for p in products]})


@dashboard_bp.get("/sales-by-payment")
@require_auth
def sales_by_payment():
    period = request.args.get("period", default=30, type=int)
    return jsonify({"results": dashboard_service.sales_by_payment(period)})
