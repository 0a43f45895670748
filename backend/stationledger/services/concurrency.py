# Overview: Service-layer operations for concurrency; unit-of-work scope, row locks and retry.

"""
Concurrency model

- atomic(): the one named unit of work. Everything a multi-step write does
  (header + items + movements + balance update) happens inside it and is
  committed or rolled back as a whole.
- lock_for_update(): row lock on the mutable aggregates (Tank,
  Customer, Supplier). Always refreshes the identity map so a stale copy
  loaded earlier in the session is never used for a read-then-write.
- run_with_retry(): re-runs a whole unit of work after a rolled-back lock
  contention or optimistic version conflict. Other storage errors propagate
  unchanged: a non-idempotent write is never replayed blindly.

SQLite ignores SELECT ... FOR UPDATE, so atomic() opens the transaction with
BEGIN IMMEDIATE there, which takes the database write lock up front and
serializes concurrent writers.
"""

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db


_LOCK_CONTENTION_MARKERS = (
    "database is locked",
    "deadlock detected",
    "could not obtain lock",
    "could not serialize access",
    "lock wait timeout",
    "lock timeout",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; atomic() covers it with BEGIN IMMEDIATE.
    """
    return query.with_for_update().populate_existing()


def is_lock_contention(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _LOCK_CONTENTION_MARKERS)


@contextmanager
def atomic():
    """
    Unit of work: commit on success, roll back on any exception.

    Must be the outermost write scope for the session. Inner helpers
    (`_..._locked` functions in the services) only flush.
    """
    session = db.session
    if db.engine.dialect.name == "sqlite":
        session.execute(text("BEGIN IMMEDIATE"))
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries lock contention OperationalErrors and StaleDataError (optimistic
    version conflicts). Exhausted version conflicts surface as
    ConcurrencyConflict; everything else is re-raised untouched.
    """
    if has_app_context():
        attempts = attempts or current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF", 0.1)
    attempts = attempts or 3
    backoff_base = 0.1 if backoff_base is None else backoff_base

    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Record was modified concurrently; retry the request",
                    details={"attempts": attempts},
                ) from exc
        except OperationalError as exc:
            db.session.rollback()
            if not is_lock_contention(exc) or attempt >= attempts - 1:
                raise
        time.sleep(backoff_base * (2 ** attempt))
