"""
Concurrency tests: simultaneous placements against one balance.

Each worker holds its own connection, as separate request handlers would.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from betledger.core.database import get_db_connection
from betledger.domain.errors import InsufficientFunds
from betledger.domain.models import BetStatus, TransactionKind
from betledger.services.bet_engine import BetEngine
from betledger.services.reconciliation_service import ReconciliationService
from betledger.utils.datetime_helpers import utc_now

WORKERS = 6


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "concurrent.db")


@pytest.fixture
def setup_ids(db_path):
    conn = get_db_connection(db_path)
    engine = BetEngine(conn)
    account = engine.ledger.create_account("Racer")
    engine.ledger.apply_entry(account.id, TransactionKind.DEPOSIT, Decimal("100"))
    match = engine.matches.create_match("A", "B", "L", utc_now() + timedelta(days=1))
    engine.odds.publish_quote(match.id, "2.0", "3.0", "4.0")
    conn.close()
    return account.id, match.id


def _race(db_path, account_id, match_id, stake):
    barrier = threading.Barrier(WORKERS)
    outcomes = []
    lock = threading.Lock()

    def worker():
        conn = get_db_connection(db_path)
        try:
            engine = BetEngine(conn)
            barrier.wait()
            try:
                result = engine.place_bet(account_id, match_id, "home", stake, Decimal("2.0"))
            except Exception as exc:
                result = exc
            with lock:
                outcomes.append(result)
        finally:
            conn.close()

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_only_one_of_competing_bets_succeeds(db_path, setup_ids):
    account_id, match_id = setup_ids

    outcomes = _race(db_path, account_id, match_id, Decimal("60"))

    placed = [o for o in outcomes if not isinstance(o, Exception)]
    rejected = [o for o in outcomes if isinstance(o, Exception)]
    assert len(outcomes) == WORKERS
    assert len(placed) == 1
    assert placed[0].status == BetStatus.PENDING
    assert all(isinstance(exc, InsufficientFunds) for exc in rejected)

    conn = get_db_connection(db_path)
    try:
        engine = BetEngine(conn)
        assert engine.ledger.get_balance(account_id) == Decimal("40.00")
        assert ReconciliationService(conn).check_account(account_id).is_consistent
    finally:
        conn.close()


def test_balance_never_negative_under_small_stakes(db_path, setup_ids):
    account_id, match_id = setup_ids

    outcomes = _race(db_path, account_id, match_id, Decimal("30"))

    placed = [o for o in outcomes if not isinstance(o, Exception)]
    assert len(placed) == 3

    conn = get_db_connection(db_path)
    try:
        engine = BetEngine(conn)
        assert engine.ledger.get_balance(account_id) == Decimal("10.00")
        _, total = engine.list_bets(account_id)
        assert total == 3
    finally:
        conn.close()
