# Overview: Service-layer operations for concurrency; transaction boundaries, locking and retry.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LedgerError, PersistenceFailure


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the database write lock up front on SQLite.

    BEGIN IMMEDIATE makes concurrent writers queue on the lock instead of both
    reading the same stock and racing to commit. Other dialects rely on
    lock_for_update() row locks.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
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


def run_atomic(func, *, attempts: int | None = None):
    """
    Run func as one all-or-nothing unit and commit it.

    func does its own reads, checks and writes without committing. Business
    and validation errors roll back and propagate unchanged; store errors
    roll back and surface as PersistenceFailure.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)

    def _op():
        begin_write()
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_op, attempts=attempts)
    except (LedgerError, ValueError):
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Ledger write rolled back")
        raise PersistenceFailure(
            "Storage failure; the operation was rolled back",
            details={"cause": type(exc).__name__},
        ) from exc


@contextmanager
def read_snapshot():
    """
    Hold one read transaction open for the duration of a report.

    Every query inside sees the same committed state, so a void committed
    halfway through a report cannot show up in one query and not another.
    Nested use joins the outer snapshot. Only the outermost caller ends it.
    """
    # Push pending ORM changes first; they belong to the caller's transaction
    db.session.flush()
    if db.engine.dialect.name == "sqlite":
        raw = db.session.connection().connection.dbapi_connection
        opened = not raw.in_transaction
        if opened:
            db.session.execute(text("BEGIN"))
    else:
        opened = not db.session.in_transaction()
        if opened:
            db.session.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    try:
        yield
    finally:
        if opened:
            db.session.rollback()
