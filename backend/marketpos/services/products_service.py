# backend/marketpos/services/products_service.py
"""
Catalog Store

Product reads used by sale creation plus catalog management (create, update,
delete) for admins and managers. Stock set here is absolute; sale creation
is the only path that decrements it.
"""
from __future__ import annotations

from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, SaleItem
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    enforce_rules_product,
    validate_payload,
)
from .audit_service import record_action
from marketpos.time_utils import business_date

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "barcode", "category", "price", "stock", "min_stock",
        "expiry_date", "supplier", "description",
    },
    required_on_create={"name", "barcode", "category", "price", "stock", "min_stock"},
    money_fields={"price": "price_cents"},
)

# Barcodes are identity for scanning; they are set once on create.
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields - {"barcode"},
    money_fields={"price": "price_cents"},
)


class ProductNotFoundError(LookupError):
    """Raised when a product id does not exist."""


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def get_product_by_barcode(barcode: str) -> Product | None:
    return db.session.query(Product).filter_by(barcode=(barcode or "").strip()).first()


def list_products(
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
) -> list[Product]:
    """Products ordered by name. `search` matches name or barcode substrings."""
    query = db.session.query(Product)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.barcode.ilike(pattern)))

    if category:
        query = query.filter(Product.category == category)

    if low_stock:
        query = query.filter(Product.stock <= Product.min_stock)

    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock <= Product.min_stock)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def list_expiring(days: int = 7) -> list[Product]:
    """Products expiring between today and today + days (inclusive)."""
    today = business_date()
    return (
        db.session.query(Product)
        .filter(
            Product.expiry_date.isnot(None),
            Product.expiry_date >= today,
            Product.expiry_date <= today + timedelta(days=days),
        )
        .order_by(Product.expiry_date.asc(), Product.name.asc())
        .all()
    )


def _audit_snapshot(p: Product) -> dict:
    data = p.to_dict()
    for key in ("created_at", "updated_at", "is_low_stock"):
        data.pop(key, None)
    return data


def create_product(payload: dict, actor_id: int, *, ip_address: str | None = None,
                   user_agent: str | None = None) -> Product:
    """
    Validate and insert a product.

    Raises ValidationError on bad input, ConflictError on duplicate barcode.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    if get_product_by_barcode(patch["barcode"]):
        raise ConflictError("Product with this barcode already exists")

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product with this barcode already exists")

    record_action(
        user_id=actor_id,
        action="CREATE_PRODUCT",
        table_name="products",
        record_id=product.id,
        new_values=_audit_snapshot(product),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return product


def update_product(product_id: int, payload: dict, actor_id: int, *, ip_address: str | None = None,
                   user_agent: str | None = None) -> Product:
    """
    Apply a partial update. Raises ProductNotFoundError, ValidationError.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    product = get_product(product_id)
    if not product:
        raise ProductNotFoundError(product_id)

    before = _audit_snapshot(product)
    for k, v in patch.items():
        setattr(product, k, v)
    db.session.commit()

    record_action(
        user_id=actor_id,
        action="UPDATE_PRODUCT",
        table_name="products",
        record_id=product.id,
        old_values=before,
        new_values=_audit_snapshot(product),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return product


def delete_product(product_id: int, actor_id: int, *, ip_address: str | None = None,
                   user_agent: str | None = None) -> None:
    """
    Delete a product that was never sold.

    Raises ProductNotFoundError, or ConflictError when sale items reference it
    (line items keep their product reference for receipts and reports).
    """
    product = get_product(product_id)
    if not product:
        raise ProductNotFoundError(product_id)

    if db.session.query(SaleItem.id).filter_by(product_id=product_id).first():
        raise ConflictError("Product has sales history and cannot be deleted")

    before = _audit_snapshot(product)
    db.session.delete(product)
    db.session.commit()

    record_action(
        user_id=actor_id,
        action="DELETE_PRODUCT",
        table_name="products",
        record_id=product_id,
        old_values=before,
        ip_address=ip_address,
        user_agent=user_agent,
    )
