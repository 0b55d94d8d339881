# Overview: Transaction helpers shared by the ledger; row locks, SQLite write locks, caller-side retry.

from __future__ import annotations

import time

from sqlalchemy import text

from ..extensions import db
from ..validation import StorageError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Pair with begin_write_transaction() so SQLite serializes writers too.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    On SQLite, open the transaction with BEGIN IMMEDIATE.

    Takes the database write lock before the first read, so two check-ins
    cannot both read "no prior visit" before either commits. No-op on other
    dialects (row locks do the job there) and when a DB-API transaction is
    already open on this session.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = db.session.connection().connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=(StorageError,)):
    """
    Execute a whole operation again when it fails with a retryable error.

    Used by callers of the check-in engine, never inside it: the engine
    rolls back fully before raising StorageError, so a re-run is safe.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
