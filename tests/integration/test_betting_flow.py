"""
Integration tests for the full betting flow.

Walks an account through placement, cancellation, settlement and payments
on one database and checks balances against the ledger after every step.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from betledger.core.database import get_db_connection
from betledger.domain.errors import BettingWindowClosed, InvalidOdds
from betledger.domain.models import BetStatus, EventType, Selection, TransactionKind
from betledger.repositories.match_repository import MatchRepository
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.services.bet_engine import BetEngine
from betledger.services.notification_service import CallbackSink, EventDispatcher
from betledger.services.odds_registry import OddsRegistry
from betledger.services.payment_service import PaymentService
from betledger.services.reconciliation_service import ReconciliationService

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db_conn(tmp_path) -> sqlite3.Connection:
    conn = get_db_connection(str(tmp_path / "flow.db"))
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def engine(db_conn, clock) -> BetEngine:
    return BetEngine(db_conn, clock=clock)


@pytest.fixture
def account_id(engine) -> str:
    account = engine.ledger.create_account("Flow Player")
    engine.ledger.apply_entry(account.id, TransactionKind.DEPOSIT, Decimal("100"))
    return account.id


@pytest.fixture
def match_id(engine) -> str:
    match = engine.matches.create_match("Arsenal", "Chelsea", "Premier League", NOW + timedelta(hours=3))
    engine.odds.publish_quote(match.id, "2.0", "3.2", "3.6")
    return match.id


def _assert_reconciled(db_conn):
    results = ReconciliationService(db_conn).check_all()
    assert results
    assert all(result.is_consistent for result in results)


def test_place_debits_stake(engine, account_id, match_id, db_conn):
    bet = engine.place_bet(account_id, match_id, Selection.HOME, Decimal("50"), Decimal("2.0"))

    assert engine.ledger.get_balance(account_id) == Decimal("50.00")
    assert bet.potential_win == Decimal("100.00")
    assert bet.status == BetStatus.PENDING
    _assert_reconciled(db_conn)


def test_cancel_before_start_refunds(engine, account_id, match_id, clock, db_conn):
    bet = engine.place_bet(account_id, match_id, Selection.HOME, Decimal("50"), Decimal("2.0"))
    clock.advance(hours=1)

    cancelled = engine.cancel_bet(account_id, bet.id)

    assert cancelled.status == BetStatus.CANCELLED
    assert engine.ledger.get_balance(account_id) == Decimal("100.00")
    _assert_reconciled(db_conn)


def test_settle_win_credits_once(engine, account_id, match_id, clock, db_conn):
    bet = engine.place_bet(account_id, match_id, Selection.HOME, Decimal("50"), Decimal("2.0"))
    clock.advance(hours=5)
    engine.matches.record_result(match_id, 2, 0)

    settled = engine.settle_bet(bet.id, Selection.HOME)
    again = engine.settle_bet(bet.id, Selection.HOME)

    assert settled.status == BetStatus.WON
    assert again.status == BetStatus.WON
    assert engine.ledger.get_balance(account_id) == Decimal("150.00")
    wins = engine.ledger.list_transactions(account_id, kinds=[TransactionKind.BET_WIN])[1]
    assert wins == 1
    _assert_reconciled(db_conn)


def test_placement_inside_window_fails(engine, account_id, db_conn):
    match = engine.matches.create_match("A", "B", "L", NOW + timedelta(minutes=3))
    engine.odds.publish_quote(match.id, "2.0", "3.0", "4.0")

    with pytest.raises(BettingWindowClosed):
        engine.place_bet(account_id, match.id, Selection.HOME, Decimal("10"), Decimal("2.0"))

    assert engine.ledger.get_balance(account_id) == Decimal("100.00")


def test_quote_below_floor_rejected(engine, match_id):
    with pytest.raises(InvalidOdds):
        engine.odds.publish_quote(match_id, "1.0", "3.0", "4.0")

    assert len(engine.odds.history(match_id)) == 1


def test_fifteen_percent_movement_reported(engine, match_id, clock):
    clock.advance(minutes=10)
    engine.odds.publish_quote(match_id, "2.3", "3.2", "3.6")

    movements = engine.odds.movements_since(NOW - timedelta(hours=1), Decimal("0.1"))

    assert [m.match_id for m in movements] == [match_id]
    assert movements[0].changes["home"] == Decimal("15.00")


def test_full_day_conserves_money(db_conn, clock):
    """Every balance equals its completed entries across a mixed workload."""
    engine = BetEngine(db_conn, clock=clock)
    payments = PaymentService(db_conn, clock=clock)
    matches = MatchRepository(db_conn, clock=clock)
    odds = OddsRegistry(db_conn, clock=clock)

    alice = engine.ledger.create_account("Alice").id
    bob = engine.ledger.create_account("Bob").id
    for account in (alice, bob):
        deposit = payments.initiate_deposit(account, Decimal("500"), "card")
        payments.confirm_transaction(deposit.id)
    rejected = payments.initiate_deposit(bob, Decimal("200"), "card")
    payments.reject_transaction(rejected.id, "declined")

    first = matches.create_match("Real Madrid", "Barcelona", "La Liga", NOW + timedelta(hours=2))
    second = matches.create_match("Inter", "Milan", "Serie A", NOW + timedelta(hours=4))
    odds.publish_quote(first.id, "2.25", "3.50", "3.10")
    odds.publish_quote(second.id, "1.90", "3.30", "4.20")

    engine.place_bet(alice, first.id, "home", Decimal("100"), Decimal("2.25"))
    engine.place_bet(bob, first.id, "draw", Decimal("40"), Decimal("3.50"))
    to_cancel = engine.place_bet(bob, second.id, "away", Decimal("60"), Decimal("4.20"))
    engine.cancel_bet(bob, to_cancel.id)
    _assert_reconciled(db_conn)

    clock.advance(hours=3)
    matches.record_result(first.id, 3, 1)
    settled = engine.settle_match(first.id)
    assert sorted(bet.status.value for bet in settled) == ["lost", "won"]

    withdrawal = payments.initiate_withdrawal(alice, Decimal("200"), "bank_transfer")
    payments.confirm_transaction(withdrawal.id)

    assert engine.ledger.get_balance(alice) == Decimal("425.00")
    assert engine.ledger.get_balance(bob) == Decimal("460.00")
    _assert_reconciled(db_conn)

    summary = engine.summary(bob)
    assert (summary.lost_bets, summary.cancelled_bets) == (1, 1)


def test_events_reach_sink_after_commit(db_conn, clock, account_id, match_id):
    received = []
    dispatcher = EventDispatcher(db_conn, CallbackSink(received.append))
    engine = BetEngine(db_conn, clock=clock, dispatcher=dispatcher)

    bet = engine.place_bet(account_id, match_id, "away", Decimal("10"), Decimal("3.6"))

    types = [event["type"] for event in received]
    assert EventType.BET_PLACED.value in types
    placed = next(e for e in received if e["type"] == EventType.BET_PLACED.value)
    assert placed["accountId"] == account_id
    assert placed["payload"]["bet_id"] == bet.id
    assert OutboxRepository(db_conn).fetch_pending() == []
