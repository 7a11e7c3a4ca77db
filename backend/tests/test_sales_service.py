"""
Sale creation tests (service layer).

Verifies:
- A committed sale writes the sale, its items, stock decrements and the
  daily summary increment together
- Every failure leaves products, sales and the summary untouched
- Repeated lines for one product are checked against stock cumulatively
- Receipt-number collisions are retried transparently
- Audit failures never undo a committed sale
"""

from datetime import timedelta

import pytest
from sqlalchemy import delete, update
from sqlalchemy.exc import OperationalError

from marketpos.extensions import db
from marketpos.models import AuditLog, DailySalesSummary, Product, Sale, SaleItem
from marketpos.services import audit_service, sales_service
from marketpos.services.sales_service import (
    InsufficientStockError,
    SaleConflictError,
    SaleNotFoundError,
    SaleValidationError,
    UnknownProductError,
    create_sale,
    get_sale,
    list_sales,
)
from marketpos.services.summary_service import get_daily_summary
from marketpos.time_utils import business_date


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


def _counts():
    return (
        db.session.query(Sale).count(),
        db.session.query(SaleItem).count(),
        db.session.query(DailySalesSummary).count(),
    )


class _ChangedAfterRead:
    """
    Stands in for a locked product query: returns the row as read, then runs
    `statement_for(product_id)` so the database no longer matches that read.
    """

    def __init__(self, query, statement_for):
        self.query = query
        self.statement_for = statement_for

    def populate_existing(self):
        return self

    def first(self):
        product = self.query.populate_existing().first()
        if product is not None:
            db.session.execute(
                self.statement_for(product.id).execution_options(synchronize_session=False)
            )
        return product


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestCreateSale:

    def test_cash_sale_updates_everything(self, app, cashier_user, cola):
        receipt = create_sale(
            cashier_user.id,
            [{"product_id": cola.id, "quantity": 3}],
            "cash",
        )

        assert receipt.total_cents == 450
        assert receipt.to_dict()["total"] == "4.50"
        assert receipt.receipt_number.startswith("RCP-")
        assert _stock(cola.id) == 97

        summary = get_daily_summary(business_date())
        assert summary.total_sales_cents == 450
        assert summary.by_payment_method["cash"] == 450
        assert summary.by_payment_method["card"] == 0
        assert summary.total_transactions == 1

    def test_items_snapshot_price_and_sum_to_total(self, app, cashier_user, cola, bread):
        receipt = create_sale(
            cashier_user.id,
            [
                {"product_id": cola.id, "quantity": 2},
                {"product_id": bread.id, "quantity": 1},
            ],
            "card",
        )

        sale = db.session.get(Sale, receipt.sale_id)
        assert len(sale.items) == 2
        assert sum(i.total_price_cents for i in sale.items) == sale.total_cents == 500
        for item in sale.items:
            assert item.total_price_cents == item.unit_price_cents * item.quantity

        # Changing the catalog price later does not rewrite history
        product = db.session.get(Product, cola.id)
        product.price_cents = 999
        db.session.commit()
        data = get_sale(receipt.sale_id)
        assert data["items"][0]["unit_price"] == "1.50"
        assert data["total"] == "5.00"

    def test_summary_accumulates_across_sales(self, app, cashier_user, cola):
        create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")
        create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 2}], "momo")
        create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "airtel_money")

        summary = get_daily_summary(business_date())
        assert summary.total_transactions == 3
        assert summary.total_sales_cents == 600
        assert summary.by_payment_method["cash"] == 150
        assert summary.by_payment_method["momo"] == 300
        assert summary.by_payment_method["airtel_money"] == 150
        assert sum(summary.by_payment_method.values()) == summary.total_sales_cents
        assert db.session.query(DailySalesSummary).count() == 1

    def test_repeated_lines_within_stock_are_kept_separate(self, app, cashier_user, cola):
        receipt = create_sale(
            cashier_user.id,
            [
                {"product_id": cola.id, "quantity": 40},
                {"product_id": cola.id, "quantity": 60},
            ],
            "cash",
        )
        assert _stock(cola.id) == 0
        assert len(get_sale(receipt.sale_id)["items"]) == 2

    def test_customer_and_notes_are_stored(self, app, cashier_user, cola):
        receipt = create_sale(
            cashier_user.id,
            [{"product_id": cola.id, "quantity": 1}],
            "debt",
            customer={"name": "  Jane Doe ", "phone": "0700000000"},
            notes="pay on Friday",
        )
        data = get_sale(receipt.sale_id)
        assert data["customer_name"] == "Jane Doe"
        assert data["customer_phone"] == "0700000000"
        assert data["notes"] == "pay on Friday"
        assert data["cashier_name"] == "Cashier"

    def test_writes_audit_entry(self, app, cashier_user, cola):
        receipt = create_sale(
            cashier_user.id,
            [{"product_id": cola.id, "quantity": 1}],
            "cash",
            ip_address="10.0.0.5",
        )
        entry = db.session.query(AuditLog).filter_by(action="CREATE_SALE").one()
        assert entry.user_id == cashier_user.id
        assert entry.table_name == "sales"
        assert entry.record_id == receipt.sale_id
        assert entry.ip_address == "10.0.0.5"


# =============================================================================
# FAILURES LEAVE NO TRACE
# =============================================================================


class TestCreateSaleFailures:

    def test_unknown_product_changes_nothing(self, app, cashier_user, cola):
        with pytest.raises(UnknownProductError) as exc_info:
            create_sale(
                cashier_user.id,
                [
                    {"product_id": cola.id, "quantity": 1},
                    {"product_id": 99999, "quantity": 1},
                ],
                "cash",
            )

        assert exc_info.value.details["product_id"] == 99999
        assert exc_info.value.details["line_index"] == 1
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)
        assert get_daily_summary(business_date()).total_transactions == 0

    def test_insufficient_stock_changes_nothing(self, app, cashier_user, cola, bread):
        with pytest.raises(InsufficientStockError) as exc_info:
            create_sale(
                cashier_user.id,
                [
                    {"product_id": bread.id, "quantity": 5},
                    {"product_id": cola.id, "quantity": 101},
                ],
                "card",
            )

        assert exc_info.value.available == 100
        assert exc_info.value.requested == 101
        assert _stock(cola.id) == 100
        assert _stock(bread.id) == 50
        assert _counts() == (0, 0, 0)

    def test_repeated_lines_are_checked_cumulatively(self, app, cashier_user, cola):
        with pytest.raises(InsufficientStockError) as exc_info:
            create_sale(
                cashier_user.id,
                [
                    {"product_id": cola.id, "quantity": 60},
                    {"product_id": cola.id, "quantity": 60},
                ],
                "cash",
            )

        assert exc_info.value.details["requested"] == 120
        assert exc_info.value.details["available"] == 100
        assert exc_info.value.details["line_index"] == 1
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)

    def test_failed_sale_does_not_touch_existing_summary(self, app, cashier_user, cola):
        create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")

        with pytest.raises(InsufficientStockError):
            create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 500}], "cash")

        summary = get_daily_summary(business_date())
        assert summary.total_transactions == 1
        assert summary.total_sales_cents == 150
        assert _stock(cola.id) == 99

    @pytest.mark.parametrize(
        "basket",
        [
            None,
            [],
            "not a list",
            [{"quantity": 1}],
            [{"product_id": 1}],
            [{"product_id": 1, "quantity": 0}],
            [{"product_id": 1, "quantity": -2}],
            [{"product_id": 1, "quantity": 1.5}],
            [{"product_id": 1, "quantity": True}],
            [{"product_id": "abc", "quantity": 1}],
            [42],
            [{"product_id": 1, "quantity": "²"}],
            [{"product_id": "１", "quantity": 1}],
        ],
    )
    def test_malformed_basket_rejected(self, app, cashier_user, cola, basket):
        with pytest.raises(SaleValidationError):
            create_sale(cashier_user.id, basket, "cash")
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)

    @pytest.mark.parametrize("method", [None, "", "bitcoin", "CASH"])
    def test_invalid_payment_method_rejected(self, app, cashier_user, cola, method):
        with pytest.raises(SaleValidationError) as exc_info:
            create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], method)
        assert "cash" in exc_info.value.details["allowed"]
        assert _counts() == (0, 0, 0)

    def test_product_id_beyond_integer_range_rejected(self, app, cashier_user, cola):
        with pytest.raises(SaleValidationError):
            create_sale(cashier_user.id, [{"product_id": 10**30, "quantity": 1}], "cash")
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)

    def test_unexpected_error_rolls_back_write_transaction(self, app, cashier_user, cola, monkeypatch):
        def explode(day, amount_cents, payment_method):
            raise RuntimeError("summary unavailable")

        monkeypatch.setattr(sales_service, "upsert_daily_summary", explode)

        with pytest.raises(RuntimeError):
            create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 3}], "cash")

        assert not db.session.in_transaction()
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)

    def test_stock_lowered_after_read_is_caught_at_write(self, app, cashier_user, cola, monkeypatch):
        monkeypatch.setattr(
            sales_service,
            "lock_for_update",
            lambda query: _ChangedAfterRead(
                query, lambda pid: update(Product).where(Product.id == pid).values(stock=1)
            ),
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 5}], "cash")

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 5
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)

    def test_product_deleted_after_read_is_unknown(self, app, cashier_user, cola, monkeypatch):
        monkeypatch.setattr(
            sales_service,
            "lock_for_update",
            lambda query: _ChangedAfterRead(
                query, lambda pid: delete(Product).where(Product.id == pid)
            ),
        )

        with pytest.raises(UnknownProductError) as exc_info:
            create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")

        assert exc_info.value.details["product_id"] == cola.id
        assert _stock(cola.id) == 100
        assert _counts() == (0, 0, 0)


# =============================================================================
# RETRIES
# =============================================================================


class TestCreateSaleRetries:

    def test_receipt_collision_is_regenerated(self, app, cashier_user, cola, monkeypatch):
        numbers = iter(["RCP-1-AAAAAAAA", "RCP-1-AAAAAAAA", "RCP-2-BBBBBBBB"])
        monkeypatch.setattr(sales_service, "generate_receipt_number", lambda: next(numbers))

        first = create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")
        second = create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 2}], "cash")

        assert first.receipt_number == "RCP-1-AAAAAAAA"
        assert second.receipt_number == "RCP-2-BBBBBBBB"
        assert _stock(cola.id) == 97
        assert db.session.query(Sale).count() == 2
        assert get_daily_summary(business_date()).total_transactions == 2

    def test_conflicts_exhaust_into_sale_conflict_error(self, app, cashier_user, cola, monkeypatch):
        app.config["SALE_CONFLICT_ATTEMPTS"] = 2
        calls = []

        def always_locked(**kwargs):
            calls.append(kwargs["receipt_number"])
            raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))

        monkeypatch.setattr(sales_service, "_create_sale_once", always_locked)
        try:
            with pytest.raises(SaleConflictError) as exc_info:
                create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")
        finally:
            app.config["SALE_CONFLICT_ATTEMPTS"] = 3

        assert exc_info.value.code == "CONFLICT"
        assert exc_info.value.details["attempts"] == 2
        assert len(calls) == 2
        assert _stock(cola.id) == 100

    def test_transient_conflict_then_success(self, app, cashier_user, cola, monkeypatch):
        real = sales_service._create_sale_once
        attempts = []

        def flaky(**kwargs):
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
            return real(**kwargs)

        monkeypatch.setattr(sales_service, "_create_sale_once", flaky)
        receipt = create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")

        assert receipt.total_cents == 150
        assert len(attempts) == 2
        assert _stock(cola.id) == 99

    def test_summary_row_race_retries_whole_sale(self, app, cashier_user, cola, monkeypatch):
        real = sales_service.upsert_daily_summary
        calls = []

        def racing_first_insert(day, amount_cents, payment_method):
            calls.append(day)
            real(day, amount_cents, payment_method)
            if len(calls) == 1:
                # Another sale created the same date's row first
                db.session.add(DailySalesSummary(date=day))
                db.session.flush()

        monkeypatch.setattr(sales_service, "upsert_daily_summary", racing_first_insert)
        receipt = create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 2}], "momo")

        assert len(calls) == 2
        assert receipt.total_cents == 300
        assert _stock(cola.id) == 98
        assert db.session.query(Sale).count() == 1
        assert db.session.query(DailySalesSummary).count() == 1
        summary = get_daily_summary(business_date())
        assert summary.total_transactions == 1
        assert summary.by_payment_method["momo"] == 300


# =============================================================================
# AUDIT IS BEST-EFFORT
# =============================================================================


class TestAuditBestEffort:

    def test_audit_failure_keeps_the_sale(self, app, cashier_user, cola, monkeypatch):
        real_audit_log = audit_service.AuditLog

        def broken_entry(**kwargs):
            kwargs["action"] = None  # NOT NULL violation on commit
            return real_audit_log(**kwargs)

        monkeypatch.setattr(audit_service, "AuditLog", broken_entry)

        receipt = create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 2}], "card")

        assert db.session.get(Sale, receipt.sale_id) is not None
        assert _stock(cola.id) == 98
        assert get_daily_summary(business_date()).by_payment_method["card"] == 300
        assert db.session.query(AuditLog).count() == 0


# =============================================================================
# READS
# =============================================================================


class TestSaleReads:

    def test_get_sale_not_found(self, app, db_session):
        with pytest.raises(SaleNotFoundError):
            get_sale(12345)

    def test_list_sales_filters(self, app, cashier_user, manager_user, cola):
        create_sale(cashier_user.id, [{"product_id": cola.id, "quantity": 1}], "cash")
        create_sale(manager_user.id, [{"product_id": cola.id, "quantity": 1}], "card")

        assert len(list_sales()) == 2
        assert [s.payment_method for s in list_sales(payment_method="card")] == ["card"]
        assert [s.cashier_id for s in list_sales(cashier_id=cashier_user.id)] == [cashier_user.id]

        today = business_date()
        assert len(list_sales(start_date=today, end_date=today)) == 2
        assert list_sales(start_date=today + timedelta(days=1)) == []
