# Overview: Unit-of-work helpers; every balance mutation runs inside atomic().

"""
Ledger units of work.

A unit of work is one database transaction: it either commits every row it
wrote (ledger rows, balance updates, promotion usages, event counters) or
none of them.

LOCKING:
- lock_for_update() issues SELECT ... FOR UPDATE on databases that honor it.
- SQLite ignores row locks, so on SQLite every transaction starts with
  BEGIN IMMEDIATE instead, which takes the database write lock up front and
  serializes units against each other.
- One LEDGER_LOCK_TIMEOUT_SECONDS budget bounds every lock wait of a unit,
  retries included. A unit that cannot get its locks in time fails with BusyError,
  which callers may retry unchanged: nothing was committed.
"""

from __future__ import annotations

import time
from contextvars import ContextVar

from flask import current_app
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import BusyError
from ..extensions import db


DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0

# SQLite has no per-transaction lock timeout; atomic() publishes the wait
# budget of the current attempt here and the begin hook applies it.
_sqlite_busy_timeout_ms: ContextVar[int | None] = ContextVar("sqlite_busy_timeout_ms", default=None)

# Driver error codes for lock waits that ran out and for deadlock victims
_PG_LOCK_TIMEOUT = {"55P03"}
_PG_DEADLOCK = {"40P01", "40001"}
_MYSQL_LOCK_TIMEOUT = {1205}
_MYSQL_DEADLOCK = {1213}

LOCK_TIMEOUT = "lock_timeout"
DEADLOCK = "deadlock"


def configure_engine(engine, *, lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
    """
    Install per-dialect transaction behavior on a freshly created engine.

    For SQLite, pysqlite's implicit transaction handling is disabled so that
    reads inside a unit are covered by the same transaction as its writes.
    """
    if engine.dialect.name != "sqlite":
        return

    default_ms = int(lock_timeout_seconds * 1000)

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {default_ms}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        budget_ms = _sqlite_busy_timeout_ms.get()
        conn.exec_driver_sql(f"PRAGMA busy_timeout = {default_ms if budget_ms is None else budget_ms}")
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def apply_lock_timeout(timeout: float) -> None:
    """Bound lock waits for the current transaction on server databases."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = {max(1, int(timeout * 1000))}"))
    elif dialect in ("mysql", "mariadb"):
        db.session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {max(1, int(timeout))}"))


def classify_conflict(exc: Exception) -> str | None:
    """
    Tell lock conflicts apart from permanent database failures.

    Returns LOCK_TIMEOUT when a lock wait ran out, DEADLOCK when the unit
    lost a deadlock or version check and may simply run again, and None for
    everything else (missing tables, bad SQL, lost connections).
    """
    if isinstance(exc, StaleDataError):
        return DEADLOCK
    if not isinstance(exc, OperationalError):
        return None

    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _PG_LOCK_TIMEOUT:
        return LOCK_TIMEOUT
    if code in _PG_DEADLOCK:
        return DEADLOCK

    args = getattr(orig, "args", ())
    if args and args[0] in _MYSQL_LOCK_TIMEOUT:
        return LOCK_TIMEOUT
    if args and args[0] in _MYSQL_DEADLOCK:
        return DEADLOCK

    sqlite_name = getattr(orig, "sqlite_errorname", None)
    if sqlite_name in ("SQLITE_BUSY", "SQLITE_LOCKED"):
        return LOCK_TIMEOUT
    message = str(orig).lower()
    if "database is locked" in message or "database table is locked" in message:
        return LOCK_TIMEOUT
    return None


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; see configure_engine().
    populate_existing() makes sure rows already in the session are refreshed
    from the locked read instead of reusing a stale identity-map copy.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, deadline: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Only deadlocks and optimistic locking conflicts are retried. A lock wait
    that already ran out, and every non-conflict OperationalError, is raised
    on the first occurrence. No retry starts once deadline (a
    time.monotonic() value) would be passed during the backoff.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if classify_conflict(exc) != DEADLOCK or attempt >= attempts - 1:
                raise
            delay = backoff_base * (2 ** attempt)
            if deadline is not None and time.monotonic() + delay >= deadline:
                raise
            current_app.logger.warning(
                "Ledger unit conflicted (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(delay)


def atomic(func, *, attempts: int | None = None):
    """
    Run func as one unit of work and commit it.

    Any exception rolls the whole unit back. All attempts share a single
    LEDGER_LOCK_TIMEOUT_SECONDS budget: each attempt may only wait for locks
    as long as the budget has left, deadlocks are retried while budget
    remains, and an exhausted lock wait surfaces as BusyError at once.
    Other database failures propagate unchanged.
    """
    if attempts is None:
        attempts = int(current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3))
    backoff_base = float(current_app.config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.1))
    timeout = float(current_app.config.get("LEDGER_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS))
    deadline = time.monotonic() + timeout

    def _unit():
        remaining = max(0.001, deadline - time.monotonic())
        token = _sqlite_busy_timeout_ms.set(max(1, int(remaining * 1000)))
        # Start from a clean transaction so every read below happens under it
        db.session.rollback()
        try:
            apply_lock_timeout(remaining)
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise
        finally:
            _sqlite_busy_timeout_ms.reset(token)

    try:
        return run_with_retry(_unit, attempts=attempts, backoff_base=backoff_base, deadline=deadline)
    except (OperationalError, StaleDataError) as exc:
        kind = classify_conflict(exc)
        if kind is None:
            raise
        current_app.logger.warning("Ledger unit gave up (%s): %s", kind, exc.__class__.__name__)
        raise BusyError() from exc
