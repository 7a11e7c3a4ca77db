from __future__ import annotations

from ..extensions import db
from marketpos.money import format_cents
from marketpos.time_utils import to_utc_z

# Fixed payment-method enumeration. "momo" and "airtel_money" are the two
# mobile-money providers. Each has a matching `<method>_sales_cents` column
# on DailySalesSummary.
PAYMENT_METHODS = ("cash", "card", "debt", "momo", "airtel_money")


class Sale(db.Model):
    """
    Completed sale. Immutable once created.

    A sale is written exactly once, together with its items, the stock
    decrements and the daily summary increment, in a single transaction
    (services.sales_service.create_sale). There is no update or delete path.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.CheckConstraint(
            "payment_method IN ('cash', 'card', 'debt', 'momo', 'airtel_money')",
            name="ck_sales_payment_method",
        ),
        db.Index("ix_sales_created_at", "created_at"),
        db.Index("ix_sales_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable receipt number (e.g., "RCP-1760000000000-3F9A01BC")
    receipt_number = db.Column(db.String(64), nullable=False)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Sum of item total_price_cents
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cashier = db.relationship("User", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier.name if self.cashier else None,
            "total": format_cents(self.total_cents),
            "payment_method": self.payment_method,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """Line item on a sale. unit_price_cents is the product price at sale time."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "barcode": self.product.barcode if self.product else None,
            "quantity": self.quantity,
            "unit_price": format_cents(self.unit_price_cents),
            "total_price": format_cents(self.total_price_cents),
        }


class DailySalesSummary(db.Model):
    """
    Running per-date sales aggregate.

    One row per business date, created by the first sale of that date and
    incremented in the same transaction as every later sale. Never deleted.
    Increments are done database-side (col = col + x), see
    services.summary_service.upsert_daily_summary.
    """
    __tablename__ = "daily_sales_summary"
    __table_args__ = (
        db.UniqueConstraint("date", name="uq_daily_sales_summary_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    card_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    debt_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    momo_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    airtel_money_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transactions = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @staticmethod
    def column_for(payment_method: str) -> str:
        return f"{payment_method}_sales_cents"
