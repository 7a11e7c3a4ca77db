# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/marketpos/routes/sales.py
"""Sales API routes. Any authenticated user may sell and read sales."""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import PAYMENT_METHODS
from ..services import sales_service, summary_service
from ..services.sales_service import (
    SaleError,
    SaleValidationError,
    UnknownProductError,
    InsufficientStockError,
    SaleConflictError,
    SaleStoreError,
    SaleNotFoundError,
)
from ..decorators import require_auth, client_context
from marketpos.time_utils import business_date, parse_iso_date


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

SALE_ERROR_STATUS = {
    SaleValidationError: 400,
    UnknownProductError: 400,
    SaleNotFoundError: 404,
    InsufficientStockError: 409,
    SaleConflictError: 409,
    SaleStoreError: 503,
}


def _sale_error_response(e: SaleError):
    status = SALE_ERROR_STATUS.get(type(e), 400)
    return jsonify({"error": str(e), "code": e.code, "details": e.details}), status


def _date_arg(name: str):
    raw = request.args.get(name)
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise SaleValidationError(f"{name} must be a date (YYYY-MM-DD)")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: start_date, end_date (YYYY-MM-DD, inclusive), cashier_id, payment_method
    """
    try:
        payment_method = request.args.get("payment_method")
        if payment_method:
            sales_service.validate_payment_method(payment_method)
        sales = sales_service.list_sales(
            start_date=_date_arg("start_date"),
            end_date=_date_arg("end_date"),
            cashier_id=request.args.get("cashier_id", type=int),
            payment_method=payment_method,
        )
    except SaleError as e:
        return _sale_error_response(e)
    return jsonify({"sales": [s.to_dict() for s in sales], "count": len(sales)})


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleError as e:
        return _sale_error_response(e)
    return jsonify({"sale": sale})


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a sale.

    Request body:
    - items: [{product_id, quantity}, ...] (required, non-empty)
    - payment_method: cash | card | debt | momo | airtel_money
    - customer_name, customer_phone, notes: optional
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload", "code": SaleValidationError.code}), 400

    try:
        receipt = sales_service.create_sale(
            cashier_id=g.current_user.id,
            basket=data.get("items"),
            payment_method=data.get("payment_method"),
            customer={"name": data.get("customer_name"), "phone": data.get("customer_phone")},
            notes=data.get("notes"),
            **client_context(),
        )
    except SaleError as e:
        if isinstance(e, SaleStoreError):
            current_app.logger.exception("Failed to create sale")
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": receipt.to_dict(), "message": "Sale created successfully"}), 201


@sales_bp.get("/summary/daily")
@require_auth
def daily_summary_route():
    """Query params: date (YYYY-MM-DD, default today). Zero-filled when no sales."""
    try:
        day = _date_arg("date") or business_date()
    except SaleError as e:
        return _sale_error_response(e)
    summary = summary_service.get_daily_summary(day)
    return jsonify({"summary": summary.to_dict(), "payment_methods": list(PAYMENT_METHODS)})
