# Overview: Locking and retry helpers for write paths that compete for the same rows.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def begin_write_transaction() -> None:
    """
    Start the current transaction with a write lock where the engine needs one.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, so we take the database write
    lock up front with BEGIN IMMEDIATE. Other engines rely on lock_for_update.
    """
    conn = db.session.connection()
    if conn.dialect.name != "sqlite":
        return
    # pysqlite only opens a transaction implicitly before DML
    if not conn.connection.driver_connection.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class RetriesExhausted(Exception):
    """Raised by run_with_retry when every attempt hit a retryable error."""

    def __init__(self, attempts: int, last_exc: Exception):
        super().__init__(f"Gave up after {attempts} attempts: {last_exc}")
        self.attempts = attempts
        self.last_exc = last_exc


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=RETRYABLE_ERRORS):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default. The session is rolled back
    before every retry, so `func` must redo all of its work.

    Raises RetriesExhausted (chained to the last error) when out of attempts.
    """
    attempts = max(1, attempts)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "Retryable database error (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise RetriesExhausted(attempts, last_exc) from last_exc
