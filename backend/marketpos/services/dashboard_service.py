# Overview: Read-only aggregates for the dashboard screens.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Product, Sale
from ..money import format_cents
from .products_service import list_expiring, list_low_stock
from marketpos.time_utils import business_date, day_bounds

EXPIRY_WINDOW_DAYS = 7


def _sales_total_since(start=None) -> int:
    query = db.session.query(func.coalesce(func.sum(Sale.total_cents), 0))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    return int(query.scalar() or 0)


def get_stats() -> dict:
    """Headline counts and sales totals (today, last 7 days, last 30 days, all time)."""
    today = business_date()
    today_start = day_bounds(today)[0]
    week_start = day_bounds(today - timedelta(days=7))[0]
    month_start = day_bounds(today - timedelta(days=30))[0]

    total_products = db.session.query(func.count(Product.id)).scalar()
    low_stock_products = (
        db.session.query(func.count(Product.id))
        .filter(Product.stock <= Product.min_stock)
        .scalar()
    )
    expiring_products = (
        db.session.query(func.count(Product.id))
        .filter(
            Product.expiry_date.isnot(None),
            Product.expiry_date <= today + timedelta(days=EXPIRY_WINDOW_DAYS),
        )
        .scalar()
    )

    return {
        "total_products": total_products,
        "low_stock_products": low_stock_products,
        "expiring_products": expiring_products,
        "today_sales": format_cents(_sales_total_since(today_start)),
        "week_sales": format_cents(_sales_total_since(week_start)),
        "month_sales": format_cents(_sales_total_since(month_start)),
        "total_sales": format_cents(_sales_total_since()),
    }


def recent_sales(limit: int = 10) -> list[Sale]:
    limit = max(1, min(limit, 100))
    return (
        db.session.query(Sale)
        .options(joinedload(Sale.cashier))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )


def low_stock_products() -> list[Product]:
    return list_low_stock()


def expiring_products(days: int = EXPIRY_WINDOW_DAYS) -> list[Product]:
    return list_expiring(days)


def sales_by_payment(period_days: int = 30) -> list[dict]:
    """Count and total per payment method over the last `period_days` days."""
    period_days = max(0, period_days)
    start = day_bounds(business_date() - timedelta(days=period_days))[0]

    rows = (
        db.session.query(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        )
        .filter(Sale.created_at >= start)
        .group_by(Sale.payment_method)
        .order_by(Sale.payment_method)
        .all()
    )
    return [
        {"payment_method": method, "count": count, "total": format_cents(int(total))}
        for method, count, total in rows
    ]
