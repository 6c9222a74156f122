# Overview: Transaction helpers; write locking, retry on lock contention, all-or-nothing units of work.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def begin_write() -> None:
    """
    Open the unit of work for a write operation.

    On SQLite this takes the database write lock up front (BEGIN IMMEDIATE)
    so that read-check-write sequences from concurrent requests serialize
    instead of interleaving. Other dialects rely on row locks and atomic
    UPDATE statements issued inside the session's transaction.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates, so a failed operation leaves no partial writes.
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
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def atomic(func, *, attempts: int = 3):
    """
    Run `func` as one all-or-nothing write transaction and commit it.

    `func` must not commit itself; it performs reads, checks and writes
    and returns the result to hand back to the caller.
    """
    def _op():
        begin_write()
        result = func()
        db.session.commit()
        return result

    return run_with_retry(_op, attempts=attempts)
