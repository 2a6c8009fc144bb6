# Overview: Transaction, locking and retry helpers shared by every write path.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    On SQLite, start the transaction with BEGIN IMMEDIATE so concurrent
    writers serialize before their first read instead of failing at commit.
    No-op on other dialects and when a transaction is already open.
    """
    if db.engine.dialect.name != "sqlite":
        return
    # Pending rows would otherwise be flushed by the BEGIN itself.
    db.session.flush()
    raw = db.session.connection().connection.dbapi_connection
    if raw is not None and not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def write_transaction():
    """
    Unit of work for one state-mutating operation.

    Commits when the block exits cleanly; on any exception the session is
    rolled back and the exception re-raised, so partial writes (a stock
    balance without its ledger entry, a payment without its status change)
    are never committed.
    """
    begin_write()
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
