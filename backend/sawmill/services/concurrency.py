# Overview: Unit-of-work boundary shared by every mutating service operation.

"""
Every mutation (move, sale, cancellation, shift open/close, expense) runs
inside exactly one unit of work:

- SQLite: busy_timeout bounds the wait for the write lock, then
  BEGIN IMMEDIATE takes it up front so two writers never interleave.
- PostgreSQL: lock_timeout bounds the wait for row locks and
  statement_timeout bounds each statement.
- The unit's own running time is measured; exceeding the configured timeout
  rolls everything back.

Nothing is retried here. The error carries `retryable` and the caller decides.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ConcurrentUpdateError,
    SawmillError,
    StorageUnavailableError,
    UnitOfWorkTimeoutError,
)
from ..extensions import db


logger = logging.getLogger(__name__)

_in_unit: ContextVar[bool] = ContextVar("sawmill_in_unit_of_work", default=False)


def lock_for_update(query):
    """
    Apply row-level locking for critical reads (lots, shifts).

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the unit already holds
    the database write lock from BEGIN IMMEDIATE. populate_existing() makes
    sure the row is re-read instead of served from the identity map.
    """
    return query.with_for_update().populate_existing()


def _begin(max_wait_ms: int, timeout_ms: int) -> None:
    conn = db.session.connection()
    dialect = conn.dialect.name
    if dialect == "sqlite":
        conn.exec_driver_sql(f"PRAGMA busy_timeout = {int(max_wait_ms)}")
        # pysqlite may already have opened a deferred transaction for earlier DML
        if not conn.connection.driver_connection.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        conn.execute(text(f"SET LOCAL lock_timeout = '{int(max_wait_ms)}ms'"))
        conn.execute(text(f"SET LOCAL statement_timeout = '{int(timeout_ms)}ms'"))


@contextmanager
def unit_of_work(label: str = "unit of work"):
    """
    Run the block as one atomic unit and commit it.

    Nested calls join the outer unit, so a service can call another service's
    public operation without committing halfway.

    Raises:
        UnitOfWorkTimeoutError: the block ran longer than UNIT_OF_WORK_TIMEOUT_MS
        StorageUnavailableError: the database could not be reached or locked
        ConcurrentUpdateError: a versioned row changed underneath us
        SawmillError subclasses from the block, after rollback
    """
    if _in_unit.get():
        yield db.session
        return

    max_wait_ms = current_app.config.get("UNIT_OF_WORK_MAX_WAIT_MS", 5000)
    timeout_ms = current_app.config.get("UNIT_OF_WORK_TIMEOUT_MS", 20000)

    token = _in_unit.set(True)
    started = time.monotonic()
    try:
        _begin(max_wait_ms, timeout_ms)
        yield db.session
        db.session.flush()

        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > timeout_ms:
            db.session.rollback()
            logger.warning("%s exceeded %sms (%.1fms); rolled back", label, timeout_ms, elapsed_ms)
            raise UnitOfWorkTimeoutError(
                "Operation timed out; nothing was saved",
                details={"timeout_ms": timeout_ms},
            )

        db.session.commit()
    except UnitOfWorkTimeoutError:
        raise
    except SawmillError:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        logger.info("%s hit a concurrent update: %s", label, exc)
        raise ConcurrentUpdateError("Record was modified concurrently; try again") from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.warning("%s aborted by storage: %s", label, exc)
        raise StorageUnavailableError("Storage temporarily unavailable; nothing was saved") from exc
    except Exception:
        db.session.rollback()
        raise
    finally:
        _in_unit.reset(token)
