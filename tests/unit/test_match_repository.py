"""
Unit tests for MatchRepository.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from betledger.core.database import get_db_connection
from betledger.domain.errors import InvalidMatchUpdate, NotFound
from betledger.domain.models import MatchStatus, MatchUpdate, Selection
from betledger.repositories.match_repository import MatchRepository
from betledger.services.bet_engine import BetEngine
from betledger.services.ledger_store import LedgerStore
from betledger.services.odds_registry import OddsRegistry

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_conn(tmp_path) -> sqlite3.Connection:
    conn = get_db_connection(str(tmp_path / "matches.db"))
    yield conn
    conn.close()


@pytest.fixture
def repo(db_conn) -> MatchRepository:
    return MatchRepository(db_conn, clock=lambda: NOW)


def test_create_match_normalises_fields(repo):
    match = repo.create_match(
        "  Arsenal ", "Chelsea", "Premier League", "2025-06-02T15:00:00+02:00"
    )

    assert match.home_team == "Arsenal"
    assert match.status == MatchStatus.UPCOMING
    assert match.start_time == "2025-06-02T13:00:00.000000Z"
    assert match.created_at == "2025-06-01T12:00:00.000000Z"


def test_create_match_rejects_blank_team(repo):
    with pytest.raises(InvalidMatchUpdate):
        repo.create_match("", "Chelsea", "Premier League", "2025-06-02T15:00:00Z")


def test_get_unknown_match_raises(repo):
    assert repo.find_match("missing") is None
    with pytest.raises(NotFound):
        repo.get_match("missing")


def test_list_matches_filters_by_status(repo):
    early = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")
    late = repo.create_match("C", "D", "L", "2025-06-03T10:00:00Z")
    repo.update_match(late.id, MatchUpdate(status=MatchStatus.LIVE))

    assert [m.id for m in repo.list_matches()] == [early.id, late.id]
    assert [m.id for m in repo.list_matches(MatchStatus.LIVE)] == [late.id]


class TestUpdateMatch:
    def test_partial_update_changes_only_given_fields(self, repo):
        match = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")

        updated = repo.update_match(match.id, MatchUpdate(current_minute=37, status="live"))

        assert updated.current_minute == 37
        assert updated.status == MatchStatus.LIVE
        assert updated.home_team == "A"

    def test_empty_update_rejected(self, repo):
        match = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")

        with pytest.raises(InvalidMatchUpdate):
            repo.update_match(match.id, MatchUpdate())

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"status": "postponed"},
            {"home_score": -1},
            {"current_minute": True},
            {"start_time": "not a date"},
            {"league": "   "},
        ],
    )
    def test_invalid_field_values_rejected(self, kwargs):
        with pytest.raises(InvalidMatchUpdate):
            MatchUpdate(**kwargs)

    def test_status_cannot_move_backwards(self, repo):
        match = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")
        repo.record_result(match.id, 1, 0)

        with pytest.raises(InvalidMatchUpdate):
            repo.update_match(match.id, MatchUpdate(status=MatchStatus.LIVE))
        assert repo.get_match(match.id).status == MatchStatus.FINISHED

    def test_unknown_match(self, repo):
        with pytest.raises(NotFound):
            repo.update_match("missing", MatchUpdate(current_minute=1))


def test_record_result_sets_score_and_outcome(repo):
    match = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")

    finished = repo.record_result(match.id, 0, 2)

    assert finished.status == MatchStatus.FINISHED
    assert (finished.home_score, finished.away_score) == (0, 2)
    assert finished.result == Selection.AWAY


def test_finished_with_pending_bets(db_conn, repo):
    ledger = LedgerStore(db_conn, clock=lambda: NOW)
    account = ledger.create_account("Player")
    ledger.apply_entry(account.id, "deposit", Decimal("100"))

    with_bet = repo.create_match("A", "B", "L", "2025-06-02T10:00:00Z")
    without_bet = repo.create_match("C", "D", "L", "2025-06-02T11:00:00Z")
    OddsRegistry(db_conn, clock=lambda: NOW).publish_quote(with_bet.id, "2.0", "3.0", "4.0")
    BetEngine(db_conn, clock=lambda: NOW).place_bet(
        account.id, with_bet.id, "home", Decimal("10"), Decimal("2.0")
    )

    repo.record_result(with_bet.id, 1, 1)
    repo.record_result(without_bet.id, 2, 0)

    assert [m.id for m in repo.finished_with_pending_bets()] == [with_bet.id]
