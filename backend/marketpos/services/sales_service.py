"""
Sale Transaction Engine

create_sale turns a basket into a committed Sale in one unit of work:
validate lines, check stock (cumulatively per product across the basket),
insert the Sale and its items, decrement stock, add to the daily summary,
commit. Any failure rolls back everything. The audit entry is appended after
commit and may fail without affecting the sale.

Concurrency:
- SQLite: BEGIN IMMEDIATE takes the database write lock before the first
  read, so check-then-decrement is serialized across sale creations.
- Other engines: product rows are read with SELECT ... FOR UPDATE.
- In both cases the decrement is a conditional UPDATE (stock >= qty), so a
  stock level that moved under us is caught at write time, not oversold.
- Lock/deadlock errors and a racing first insert of the daily summary row
  retry the whole attempt (SALE_CONFLICT_ATTEMPTS), then SaleConflictError.
- A receipt-number collision regenerates the number and retries
  (RECEIPT_NUMBER_ATTEMPTS); callers never see it.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Product, Sale, SaleItem, PAYMENT_METHODS
from ..money import format_cents
from .audit_service import record_action
from .concurrency import (
    RETRYABLE_ERRORS,
    RetriesExhausted,
    begin_write_transaction,
    lock_for_update,
    run_with_retry,
)
from .summary_service import upsert_daily_summary
from marketpos.time_utils import business_date, day_bounds, utcnow

MAX_BASKET_LINES = 500
MAX_LINE_QUANTITY = 1_000_000
# Largest id a 64-bit INTEGER column can hold
MAX_PRODUCT_ID = 2**63 - 1


class SaleError(Exception):
    """Base for sale creation failures. `details` is safe to return to clients."""
    code = "SALE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleValidationError(SaleError):
    """Malformed basket, payment method or customer fields. No store access happened."""
    code = "VALIDATION_ERROR"


class UnknownProductError(SaleError):
    code = "UNKNOWN_PRODUCT"

    def __init__(self, product_id: int, line_index: int | None = None):
        super().__init__(
            f"Product with ID {product_id} not found",
            details={"product_id": product_id, "line_index": line_index},
        )
        self.product_id = product_id


class InsufficientStockError(SaleError):
    """`requested` is the basket's cumulative quantity for the product up to the failing line."""
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: int,
        available: int,
        requested: int,
        line_index: int | None = None,
        product_name: str | None = None,
    ):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
                "line_index": line_index,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class SaleConflictError(SaleError):
    """Concurrent writers kept colliding; the caller may retry the sale."""
    code = "CONFLICT"


class SaleStoreError(SaleError):
    """Persistence failure other than a conflict. Nothing was committed."""
    code = "STORE_ERROR"


class SaleNotFoundError(SaleError):
    code = "NOT_FOUND"


class DuplicateReceiptNumber(Exception):
    """Internal: receipt number already taken. Handled by regenerating."""


class _SummaryRowRace(Exception):
    """Internal: another transaction created today's summary row first."""


@dataclass(frozen=True)
class BasketLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CustomerInfo:
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class SaleReceipt:
    sale_id: int
    receipt_number: str
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "id": self.sale_id,
            "receipt_number": self.receipt_number,
            "total": format_cents(self.total_cents),
        }


def generate_receipt_number() -> str:
    """RCP-<epoch ms>-<8 hex>. Unique with high probability, not guaranteed."""
    return f"RCP-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


# =============================================================================
# INPUT VALIDATION (no database access)
# =============================================================================

def _as_int(value, field_name: str, index: int) -> int:
    if isinstance(value, bool):
        raise SaleValidationError(f"items[{index}].{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isascii() and stripped.isdigit():
            return int(stripped)
    raise SaleValidationError(f"items[{index}].{field_name} must be an integer")


def normalize_basket(basket) -> list[BasketLine]:
    """
    Accept a list of {product_id, quantity} mappings (or BasketLine) and
    return BasketLines in the same order. Duplicate products are kept as
    separate lines.
    """
    if not isinstance(basket, (list, tuple)) or not basket:
        raise SaleValidationError("At least one item is required")
    if len(basket) > MAX_BASKET_LINES:
        raise SaleValidationError(f"A sale cannot have more than {MAX_BASKET_LINES} items")

    lines: list[BasketLine] = []
    for index, raw in enumerate(basket):
        if isinstance(raw, BasketLine):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            if "product_id" not in raw:
                raise SaleValidationError(f"items[{index}].product_id is required")
            if "quantity" not in raw:
                raise SaleValidationError(f"items[{index}].quantity is required")
            product_id, quantity = raw["product_id"], raw["quantity"]
        else:
            raise SaleValidationError(f"items[{index}] must be an object")

        product_id = _as_int(product_id, "product_id", index)
        quantity = _as_int(quantity, "quantity", index)

        if product_id < 1:
            raise SaleValidationError(f"items[{index}].product_id must be a positive integer")
        if product_id > MAX_PRODUCT_ID:
            raise SaleValidationError(f"items[{index}].product_id is too large")
        if quantity < 1:
            raise SaleValidationError(f"items[{index}].quantity must be at least 1")
        if quantity > MAX_LINE_QUANTITY:
            raise SaleValidationError(f"items[{index}].quantity is too large")

        lines.append(BasketLine(product_id=product_id, quantity=quantity))
    return lines


def _clean_text(value, field_name: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise SaleValidationError(f"{field_name} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise SaleValidationError(f"{field_name} exceeds max length {max_length}")
    return value or None


def _normalize_customer(customer) -> CustomerInfo:
    if customer is None:
        return CustomerInfo()
    if isinstance(customer, CustomerInfo):
        customer = {"name": customer.name, "phone": customer.phone}
    if not isinstance(customer, dict):
        raise SaleValidationError("customer must be an object")
    return CustomerInfo(
        name=_clean_text(customer.get("name"), "customer_name", 255),
        phone=_clean_text(customer.get("phone"), "customer_phone", 64),
    )


def validate_payment_method(payment_method) -> str:
    if payment_method not in PAYMENT_METHODS:
        raise SaleValidationError(
            "Invalid payment method",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    return payment_method


# =============================================================================
# SALE CREATION
# =============================================================================

def _violated(exc: IntegrityError, marker: str) -> bool:
    return marker in str(exc.orig)


def _current_stock(product_id: int) -> int | None:
    """None when the product no longer exists."""
    return db.session.execute(select(Product.stock).where(Product.id == product_id)).scalar()


def _create_sale_once(
    *,
    cashier_id: int,
    lines: list[BasketLine],
    payment_method: str,
    customer: CustomerInfo,
    notes: str | None,
    receipt_number: str,
) -> Sale:
    """One all-or-nothing attempt. Rolls back on every failure path."""
    try:
        begin_write_transaction()
        now = utcnow()

        products: dict[int, Product] = {}
        consumed: dict[int, int] = {}
        priced: list[tuple[BasketLine, int, int]] = []

        # Read-only pass: nothing is mutated until every line has passed.
        for index, line in enumerate(lines):
            product = products.get(line.product_id)
            if product is None:
                product = (
                    lock_for_update(db.session.query(Product).filter_by(id=line.product_id))
                    .populate_existing()
                    .first()
                )
                if product is None:
                    raise UnknownProductError(line.product_id, line_index=index)
                products[line.product_id] = product

            requested = consumed.get(line.product_id, 0) + line.quantity
            if product.stock < requested:
                raise InsufficientStockError(
                    line.product_id,
                    available=product.stock,
                    requested=requested,
                    line_index=index,
                    product_name=product.name,
                )
            consumed[line.product_id] = requested

            unit_price_cents = product.price_cents
            priced.append((line, unit_price_cents, unit_price_cents * line.quantity))

        total_cents = sum(line_total for _, _, line_total in priced)

        sale = Sale(
            receipt_number=receipt_number,
            cashier_id=cashier_id,
            total_cents=total_cents,
            payment_method=payment_method,
            customer_name=customer.name,
            customer_phone=customer.phone,
            notes=notes,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for index, (line, unit_price_cents, line_total_cents) in enumerate(priced):
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=unit_price_cents,
                total_price_cents=line_total_cents,
            ))
            result = db.session.execute(
                update(Product)
                .where(Product.id == line.product_id, Product.stock >= line.quantity)
                .values(stock=Product.stock - line.quantity, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                available = _current_stock(line.product_id)
                if available is None:
                    raise UnknownProductError(line.product_id, line_index=index)
                raise InsufficientStockError(
                    line.product_id,
                    available=available,
                    requested=line.quantity,
                    line_index=index,
                    product_name=products[line.product_id].name,
                )

        db.session.flush()
        upsert_daily_summary(business_date(now), total_cents, payment_method)

        db.session.commit()
        return sale

    except IntegrityError as exc:
        db.session.rollback()
        if _violated(exc, "receipt_number"):
            raise DuplicateReceiptNumber(receipt_number) from exc
        if _violated(exc, "daily_sales_summary"):
            raise _SummaryRowRace() from exc
        raise SaleStoreError("Failed to create sale") from exc
    except (SaleError, *RETRYABLE_ERRORS):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise SaleStoreError("Failed to create sale") from exc
    except Exception:
        db.session.rollback()
        raise


def create_sale(
    cashier_id: int,
    basket,
    payment_method: str,
    customer: CustomerInfo | dict | None = None,
    notes: str | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SaleReceipt:
    """
    Create a sale from a basket of {product_id, quantity} lines.

    Returns SaleReceipt(sale_id, receipt_number, total_cents).

    Raises:
        SaleValidationError: malformed input (before any store access)
        UnknownProductError: a line references a missing product
        InsufficientStockError: a line (cumulatively) exceeds stock
        SaleConflictError: concurrent-write conflicts outlasted the retries
        SaleStoreError: any other persistence failure
    """
    lines = normalize_basket(basket)
    validate_payment_method(payment_method)
    customer = _normalize_customer(customer)
    notes = _clean_text(notes, "notes", 2000)

    config = current_app.config
    conflict_attempts = config.get("SALE_CONFLICT_ATTEMPTS", 3)
    receipt_attempts = config.get("RECEIPT_NUMBER_ATTEMPTS", 5)

    def _attempt() -> Sale:
        for n in range(receipt_attempts):
            receipt_number = generate_receipt_number()
            try:
                return _create_sale_once(
                    cashier_id=cashier_id,
                    lines=lines,
                    payment_method=payment_method,
                    customer=customer,
                    notes=notes,
                    receipt_number=receipt_number,
                )
            except DuplicateReceiptNumber:
                current_app.logger.warning(
                    "Receipt number %s already taken (attempt %d/%d), regenerating",
                    receipt_number, n + 1, receipt_attempts,
                )
        raise SaleStoreError("Could not allocate a unique receipt number")

    try:
        sale = run_with_retry(
            _attempt,
            attempts=conflict_attempts,
            retry_on=RETRYABLE_ERRORS + (_SummaryRowRace,),
        )
    except RetriesExhausted as exc:
        current_app.logger.error("Sale creation gave up after %d attempts", exc.attempts)
        raise SaleConflictError(
            "Sale could not be completed due to concurrent updates; please retry",
            details={"attempts": exc.attempts},
        ) from exc

    receipt = SaleReceipt(
        sale_id=sale.id,
        receipt_number=sale.receipt_number,
        total_cents=sale.total_cents,
    )
    current_app.logger.info(
        "Sale %s committed: %s %s by user %s",
        receipt.receipt_number, format_cents(receipt.total_cents), payment_method, cashier_id,
    )

    record_action(
        user_id=cashier_id,
        action="CREATE_SALE",
        table_name="sales",
        record_id=receipt.sale_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return receipt


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> dict:
    """Sale with its items. Raises SaleNotFoundError."""
    sale = (
        db.session.query(Sale)
        .options(joinedload(Sale.cashier), joinedload(Sale.items).joinedload(SaleItem.product))
        .filter(Sale.id == sale_id)
        .first()
    )
    if not sale:
        raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})

    data = sale.to_dict()
    data["items"] = [item.to_dict() for item in sale.items]
    return data


def list_sales(
    start_date: date | None = None,
    end_date: date | None = None,
    cashier_id: int | None = None,
    payment_method: str | None = None,
    limit: int | None = None,
) -> list[Sale]:
    """Newest first. Dates are inclusive business dates."""
    query = db.session.query(Sale).options(joinedload(Sale.cashier))

    if start_date:
        query = query.filter(Sale.created_at >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(Sale.created_at < day_bounds(end_date)[1])
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)

    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()

