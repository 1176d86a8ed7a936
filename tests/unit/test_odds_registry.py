"""
Unit tests for OddsRegistry: append-only publishing, latest/as-of/history
lookups and movement detection.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from betledger.core.database import get_db_connection
from betledger.domain.errors import InvalidOdds, MatchClosed, NotFound
from betledger.domain.models import BettingPolicy, EventType, MatchStatus
from betledger.repositories.match_repository import MatchRepository
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.services.odds_registry import OddsRegistry


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_conn(tmp_path) -> sqlite3.Connection:
    conn = get_db_connection(str(tmp_path / "odds.db"))
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def matches(db_conn, clock) -> MatchRepository:
    return MatchRepository(db_conn, clock=clock)


@pytest.fixture
def registry(db_conn, clock) -> OddsRegistry:
    return OddsRegistry(db_conn, policy=BettingPolicy(), clock=clock)


@pytest.fixture
def match_id(matches) -> str:
    return matches.create_match(
        "Arsenal", "Chelsea", "Premier League", NOW + timedelta(hours=3)
    ).id


def test_publish_quote_returns_stored_quote(registry, match_id):
    quote = registry.publish_quote(match_id, "2.10", "3.40", 3.5)

    assert quote.match_id == match_id
    assert (quote.home, quote.draw, quote.away) == (
        Decimal("2.10"),
        Decimal("3.40"),
        Decimal("3.50"),
    )
    assert quote.source == "admin"
    assert registry.latest_quote(match_id) == quote


def test_publish_quote_below_floor_is_rejected(registry, match_id, db_conn):
    with pytest.raises(InvalidOdds):
        registry.publish_quote(match_id, "1.0", "3.40", "3.50")

    assert db_conn.execute("SELECT COUNT(*) FROM odds_quotes").fetchone()[0] == 0


def test_publish_quote_with_garbage_price_is_rejected(registry, match_id):
    with pytest.raises(InvalidOdds):
        registry.publish_quote(match_id, "abc", "3.40", "3.50")


@pytest.mark.parametrize("price", ["NaN", "Infinity", "1e30"])
def test_publish_quote_with_non_finite_or_oversized_price(registry, match_id, db_conn, price):
    with pytest.raises(InvalidOdds):
        registry.publish_quote(match_id, price, "3.40", "3.50")

    assert db_conn.execute("SELECT COUNT(*) FROM odds_quotes").fetchone()[0] == 0



def test_publish_quote_unknown_match(registry):
    with pytest.raises(NotFound):
        registry.publish_quote("missing", "2.0", "3.0", "4.0")


def test_publish_quote_for_finished_match_is_closed(registry, matches, match_id):
    matches.record_result(match_id, 1, 0)

    with pytest.raises(MatchClosed):
        registry.publish_quote(match_id, "2.0", "3.0", "4.0")


def test_publish_quote_writes_outbox_event(registry, match_id, db_conn):
    quote = registry.publish_quote(match_id, "2.0", "3.0", "4.0")

    events = OutboxRepository(db_conn).list_events()
    assert events[0].event_type == EventType.ODDS_UPDATED
    assert events[0].payload["quote_id"] == quote.id
    assert events[0].account_id is None


def test_latest_quote_is_most_recent_publish(registry, match_id, clock):
    first = registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(minutes=1)
    registry.publish_quote(match_id, "2.1", "3.0", "3.9")
    clock.advance(minutes=1)
    third = registry.publish_quote(match_id, "2.2", "3.1", "3.8")

    assert registry.latest_quote(match_id).id == third.id
    # Earlier quotes are untouched
    assert registry.history(match_id)[-1] == first


def test_same_timestamp_quotes_ordered_by_sequence(registry, match_id):
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    second = registry.publish_quote(match_id, "2.5", "3.0", "4.0")

    assert registry.latest_quote(match_id).id == second.id


def test_latest_quote_none_without_quotes(registry, match_id):
    assert registry.latest_quote(match_id) is None


def test_history_is_most_recent_first_and_bounded(registry, match_id, clock):
    for step in range(5):
        registry.publish_quote(match_id, f"2.{step}0", "3.0", "4.0")
        clock.advance(minutes=1)

    history = registry.history(match_id, limit=3)

    assert [q.home for q in history] == [Decimal("2.40"), Decimal("2.30"), Decimal("2.20")]


def test_quote_as_of_returns_quote_current_at_time(registry, match_id, clock):
    early = registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(minutes=10)
    registry.publish_quote(match_id, "2.5", "3.0", "4.0")

    assert registry.quote_as_of(match_id, NOW + timedelta(minutes=5)).id == early.id
    assert registry.quote_as_of(match_id, NOW - timedelta(minutes=1)) is None


def test_latest_quotes_skips_matches_without_quotes(registry, matches, match_id):
    other = matches.create_match("Valencia", "Sevilla", "La Liga", NOW + timedelta(days=1)).id
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")

    quotes = registry.latest_quotes([match_id, other])

    assert list(quotes) == [match_id]


def test_quotes_cannot_be_updated_or_deleted(registry, match_id, db_conn):
    quote = registry.publish_quote(match_id, "2.0", "3.0", "4.0")

    with pytest.raises(sqlite3.IntegrityError):
        db_conn.execute("UPDATE odds_quotes SET home_odds = '9.99' WHERE id = ?", (quote.id,))
    with pytest.raises(sqlite3.IntegrityError):
        db_conn.execute("DELETE FROM odds_quotes WHERE id = ?", (quote.id,))


def test_movement_reported_when_threshold_reached(registry, match_id, clock):
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(minutes=30)
    registry.publish_quote(match_id, "2.3", "3.0", "4.0")

    movements = registry.movements_since(NOW - timedelta(hours=1), Decimal("0.1"))

    assert len(movements) == 1
    movement = movements[0]
    assert movement.match_id == match_id
    assert movement.home_team == "Arsenal"
    assert movement.match_status == MatchStatus.UPCOMING
    assert movement.changes == {
        "home": Decimal("15.00"),
        "draw": Decimal("0.00"),
        "away": Decimal("0.00"),
    }
    assert movement.previous.home == Decimal("2.00")
    assert movement.current.home == Decimal("2.30")


def test_small_movement_not_reported(registry, match_id, clock):
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(minutes=5)
    registry.publish_quote(match_id, "2.1", "3.1", "3.9")

    assert registry.movements_since(NOW - timedelta(hours=1), Decimal("0.1")) == []


def test_movement_compares_two_most_recent_quotes_only(registry, match_id, clock):
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(minutes=5)
    registry.publish_quote(match_id, "3.0", "3.0", "4.0")
    clock.advance(minutes=5)
    registry.publish_quote(match_id, "3.05", "3.0", "4.0")

    assert registry.movements_since(NOW - timedelta(hours=1), Decimal("0.1")) == []


def test_quotes_outside_window_are_ignored(registry, match_id, clock):
    registry.publish_quote(match_id, "2.0", "3.0", "4.0")
    clock.advance(hours=3)
    registry.publish_quote(match_id, "3.0", "3.0", "4.0")

    assert registry.movements_since(NOW + timedelta(hours=1), Decimal("0.1")) == []
