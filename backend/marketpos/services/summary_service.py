# Overview: Daily sales summary aggregator; one running row per business date.

"""
Daily Summary Aggregator

Invariants:
- One row per business date (unique on date), created lazily by the first sale.
- upsert_daily_summary is an additive accumulator: call it exactly once per
  sale, inside the sale's transaction. It never commits.
- Increments are evaluated by the database (col = col + :amount), so two
  transactions updating the same date serialize on the row and both
  increments survive. No read-modify-write in Python.
- get_daily_summary never writes; a date without sales reads as zeros.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import update

from ..extensions import db
from ..models import DailySalesSummary, PAYMENT_METHODS
from ..money import format_cents
from marketpos.time_utils import utcnow


class SummaryError(ValueError):
    """Raised for invalid summary arguments."""


@dataclass(frozen=True)
class DailySummaryView:
    """Read-only snapshot of one date's totals (cents)."""
    date: date
    total_sales_cents: int = 0
    total_transactions: int = 0
    by_payment_method: dict[str, int] = field(default_factory=lambda: {m: 0 for m in PAYMENT_METHODS})
    updated_at: object = None

    @classmethod
    def from_row(cls, row: DailySalesSummary) -> "DailySummaryView":
        return cls(
            date=row.date,
            total_sales_cents=row.total_sales_cents,
            total_transactions=row.total_transactions,
            by_payment_method={
                m: getattr(row, DailySalesSummary.column_for(m)) for m in PAYMENT_METHODS
            },
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        data = {
            "date": self.date.isoformat(),
            "total_sales": format_cents(self.total_sales_cents),
            "total_transactions": self.total_transactions,
        }
        for method in PAYMENT_METHODS:
            data[f"{method}_sales"] = format_cents(self.by_payment_method.get(method, 0))
        return data


def upsert_daily_summary(day: date, amount_cents: int, payment_method: str) -> None:
    """
    Add one sale of `amount_cents` paid by `payment_method` to `day`'s row.

    Runs in the caller's transaction. A concurrent first insert for the same
    date surfaces as IntegrityError on flush; the caller treats that as a
    conflict and retries its whole transaction.
    """
    if payment_method not in PAYMENT_METHODS:
        raise SummaryError(f"Unknown payment method: {payment_method}")
    if amount_cents < 0:
        raise SummaryError("amount_cents must be >= 0")

    method_col = getattr(DailySalesSummary, DailySalesSummary.column_for(payment_method))

    stmt = (
        update(DailySalesSummary)
        .where(DailySalesSummary.date == day)
        .values({
            DailySalesSummary.total_sales_cents: DailySalesSummary.total_sales_cents + amount_cents,
            method_col: method_col + amount_cents,
            DailySalesSummary.total_transactions: DailySalesSummary.total_transactions + 1,
            DailySalesSummary.updated_at: utcnow(),
        })
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        return

    row = DailySalesSummary(
        date=day,
        total_sales_cents=amount_cents,
        total_transactions=1,
        updated_at=utcnow(),
        **{m + "_sales_cents": 0 for m in PAYMENT_METHODS},
    )
    setattr(row, DailySalesSummary.column_for(payment_method), amount_cents)
    db.session.add(row)
    db.session.flush()


def get_daily_summary(day: date) -> DailySummaryView:
    """Totals for `day`; zero-filled (not persisted) when nothing was sold."""
    row = (
        db.session.query(DailySalesSummary)
        .populate_existing()
        .filter_by(date=day)
        .first()
    )
    if row is None:
        return DailySummaryView(date=day)
    return DailySummaryView.from_row(row)
