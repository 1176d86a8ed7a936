"""
Unit tests for the transactional unit helper.
"""

from __future__ import annotations

import sqlite3

import pytest

from betledger.core.database import get_db_connection
from betledger.domain.errors import (
    InsufficientFunds,
    StorageConflict,
    StorageTimeout,
    TransactionError,
)
from betledger.utils.database_utils import transactional


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "units.db")


@pytest.fixture
def db_conn(db_path) -> sqlite3.Connection:
    conn = get_db_connection(db_path)
    yield conn
    conn.close()


def _insert_account(conn, account_id, balance_minor=0):
    conn.execute(
        """
        INSERT INTO accounts (id, display_name, balance_minor, created_at, updated_at)
        VALUES (?, ?, ?, '2025-06-01T12:00:00.000000Z', '2025-06-01T12:00:00.000000Z')
        """,
        (account_id, account_id, balance_minor),
    )


def _account_count(conn) -> int:
    return conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]


def test_commit_on_success(db_conn):
    with transactional(db_conn) as conn:
        _insert_account(conn, "a1")

    assert db_conn.in_transaction is False
    assert _account_count(db_conn) == 1


def test_domain_error_rolls_back_and_propagates_unchanged(db_conn):
    with pytest.raises(InsufficientFunds):
        with transactional(db_conn) as conn:
            _insert_account(conn, "a1")
            raise InsufficientFunds(account_id="a1")

    assert _account_count(db_conn) == 0


def test_unexpected_error_wrapped_as_transaction_error(db_conn):
    with pytest.raises(TransactionError) as exc_info:
        with transactional(db_conn) as conn:
            _insert_account(conn, "a1")
            raise KeyError("boom")

    assert isinstance(exc_info.value.__cause__, KeyError)
    assert _account_count(db_conn) == 0


def test_nested_unit_joins_outer_unit(db_conn):
    with pytest.raises(InsufficientFunds):
        with transactional(db_conn) as conn:
            _insert_account(conn, "outer")
            with transactional(conn):
                _insert_account(conn, "inner")
            assert conn.in_transaction
            raise InsufficientFunds()

    assert _account_count(db_conn) == 0


def test_trigger_violation_rolls_back(db_conn):
    with transactional(db_conn) as conn:
        _insert_account(conn, "a1")

    with pytest.raises(TransactionError):
        with transactional(db_conn) as conn:
            _insert_account(conn, "a2")
            conn.execute("DELETE FROM accounts WHERE id = 'a1'")

    assert _account_count(db_conn) == 1


def test_write_lock_held_elsewhere_raises_storage_conflict(db_conn, db_path):
    other = get_db_connection(db_path)
    db_conn.execute("PRAGMA busy_timeout = 50")
    other.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(StorageConflict):
            with transactional(db_conn) as conn:
                _insert_account(conn, "a1")
    finally:
        other.execute("ROLLBACK")
        other.close()

    assert db_conn.in_transaction is False
    with transactional(db_conn) as conn:
        _insert_account(conn, "a1")
    assert _account_count(db_conn) == 1


def test_exceeded_deadline_raises_storage_timeout(db_conn):
    with pytest.raises(StorageTimeout):
        with transactional(db_conn, timeout_seconds=-1) as conn:
            _insert_account(conn, "a1")

    assert _account_count(db_conn) == 0
