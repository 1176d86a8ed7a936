"""
Database utility helpers.

Provides the atomic unit used by every ledger, odds and bet mutation. The
unit is an explicit ``BEGIN IMMEDIATE``/``COMMIT`` pair: the write lock is
taken before the first read, so two units can never both act on a stale
balance. Any exception rolls the whole unit back.
"""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from betledger.core.config import Config
from betledger.domain.errors import (
    LedgerError,
    StorageConflict,
    StorageTimeout,
    TransactionError,
)
from betledger.utils.logging_config import get_logger


logger = get_logger(__name__)

# SQLite VM instructions between deadline checks
_PROGRESS_INTERVAL = 1000

_CONFLICT_MARKERS = ("database is locked", "database is busy", "database table is locked")


def _classify_operational_error(exc: sqlite3.OperationalError) -> LedgerError:
    message = str(exc).lower()
    if "interrupted" in message:
        return StorageTimeout()
    if any(marker in message for marker in _CONFLICT_MARKERS):
        return StorageConflict()
    return TransactionError(f"Database transaction failed: {exc}")


@contextmanager
def transactional(
    conn: sqlite3.Connection,
    *,
    timeout_seconds: Optional[float] = None,
) -> Iterator[sqlite3.Connection]:
    """
    Provide an atomic unit around a series of database operations.

    A unit opened while another is active on the same connection joins the
    outer unit; only the outermost unit commits or rolls back.

    Domain errors (``LedgerError``) are re-raised unchanged after rollback.
    Lock contention surfaces as ``StorageConflict``, an exceeded deadline as
    ``StorageTimeout`` and anything else as ``TransactionError``.
    """
    if conn.in_transaction:
        yield conn
        return

    limit = Config.DB_UNIT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    deadline = time.monotonic() + limit

    def _past_deadline() -> int:
        return 1 if time.monotonic() > deadline else 0

    conn.set_progress_handler(_past_deadline, _PROGRESS_INTERVAL)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            error = _classify_operational_error(exc)
            logger.warning("transaction_begin_failed", error=str(exc), kind=error.kind)
            raise error from exc

        try:
            yield conn
            if time.monotonic() > deadline:
                raise StorageTimeout()
        except LedgerError as exc:
            _rollback(conn)
            logger.info("transaction_rollback", kind=exc.kind, error=exc.message)
            raise
        except sqlite3.OperationalError as exc:
            _rollback(conn)
            error = _classify_operational_error(exc)
            logger.error("transaction_rollback", kind=error.kind, error=str(exc))
            raise error from exc
        except Exception as exc:
            _rollback(conn)
            logger.error("transaction_rollback", kind=TransactionError.kind, error=str(exc))
            raise TransactionError("Database transaction failed") from exc

        try:
            conn.execute("COMMIT")
        except sqlite3.OperationalError as exc:
            _rollback(conn)
            error = _classify_operational_error(exc)
            logger.error("transaction_commit_failed", kind=error.kind, error=str(exc))
            raise error from exc
    finally:
        conn.set_progress_handler(None, 0)


def _rollback(conn: sqlite3.Connection) -> None:
    # The deadline handler must not interrupt the rollback itself
    conn.set_progress_handler(None, 0)
    if conn.in_transaction:
        conn.execute("ROLLBACK")
