"""
Domain types for accounts, matches, odds quotes, bets and ledger entries.

Rows are read through ``sqlite3.Row`` and converted with the ``from_row``
constructors; money columns are stored in minor units and surface here as
two-place ``Decimal`` values.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from betledger.core.config import Config
from betledger.domain.errors import InvalidMatchUpdate, InvalidOdds, InvalidStake
from betledger.utils.datetime_helpers import normalize_utc_iso, parse_utc_iso
from betledger.utils.money import format_odds, from_minor, to_decimal


class MatchStatus(str, Enum):
    """Match lifecycle owned by match management."""

    UPCOMING = "upcoming"
    LIVE = "live"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _MATCH_STATUS_ORDER.index(self)


_MATCH_STATUS_ORDER = [MatchStatus.UPCOMING, MatchStatus.LIVE, MatchStatus.FINISHED]


class Selection(str, Enum):
    """The three outcomes of a 1X2 market."""

    HOME = "home"
    DRAW = "draw"
    AWAY = "away"

    @classmethod
    def from_score(cls, home_score: int, away_score: int) -> "Selection":
        if home_score > away_score:
            return cls.HOME
        if home_score < away_score:
            return cls.AWAY
        return cls.DRAW


class BetStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    CANCELLED = "cancelled"


class TransactionKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BET_STAKE = "bet_stake"
    BET_WIN = "bet_win"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(str, Enum):
    """Domain events appended to the outbox."""

    BET_PLACED = "bet_placed"
    BET_CANCELLED = "bet_cancelled"
    BET_SETTLED = "bet_settled"
    BALANCE_CHANGED = "balance_changed"
    ODDS_UPDATED = "odds_updated"
    TRANSACTION_FAILED = "transaction_failed"


class EventStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class BettingPolicy:
    """Product policy ranges applied before the engine touches storage."""

    min_stake: Decimal = Decimal("1")
    max_stake: Decimal = Decimal("10000")
    min_odds: Decimal = Decimal("1.01")
    betting_window_minutes: int = 5
    enforce_latest_odds: bool = False

    @classmethod
    def from_config(cls) -> "BettingPolicy":
        return cls(
            min_stake=Config.MIN_STAKE,
            max_stake=Config.MAX_STAKE,
            min_odds=Config.MIN_ODDS,
            betting_window_minutes=Config.BETTING_WINDOW_MINUTES,
            enforce_latest_odds=Config.ENFORCE_LATEST_ODDS,
        )

    def check_stake(self, stake: Decimal) -> None:
        if stake <= 0 or stake < self.min_stake or stake > self.max_stake:
            raise InvalidStake(
                f"Stake must be between {self.min_stake} and {self.max_stake}",
                stake=stake,
            )

    def check_odds(self, odds: Decimal, label: str = "Odds") -> None:
        if odds < self.min_odds:
            raise InvalidOdds(f"{label} must be at least {self.min_odds}", odds=odds)


@dataclass(frozen=True)
class Account:
    id: str
    display_name: Optional[str]
    balance: Decimal
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Account":
        return cls(
            id=row["id"],
            display_name=row["display_name"],
            balance=from_minor(row["balance_minor"]),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class Match:
    id: str
    home_team: str
    away_team: str
    league: str
    start_time: str
    status: MatchStatus
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    current_minute: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def starts_at(self) -> datetime:
        return parse_utc_iso(self.start_time)

    @property
    def result(self) -> Optional[Selection]:
        """Winning selection once a final score is recorded."""
        if self.status != MatchStatus.FINISHED:
            return None
        if self.home_score is None or self.away_score is None:
            return None
        return Selection.from_score(self.home_score, self.away_score)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Match":
        return cls(
            id=row["id"],
            home_team=row["home_team"],
            away_team=row["away_team"],
            league=row["league"],
            start_time=row["start_time"],
            status=MatchStatus(row["status"]),
            home_score=row["home_score"],
            away_score=row["away_score"],
            current_minute=row["current_minute"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True)
class OddsQuote:
    """Immutable set of 1X2 prices for a match at a point in time."""

    id: str
    seq: int
    match_id: str
    home: Decimal
    draw: Decimal
    away: Decimal
    source: str
    created_at: str

    def price_for(self, selection: Selection) -> Decimal:
        return {
            Selection.HOME: self.home,
            Selection.DRAW: self.draw,
            Selection.AWAY: self.away,
        }[Selection(selection)]

    def as_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "match_id": self.match_id,
            "home": str(self.home),
            "draw": str(self.draw),
            "away": str(self.away),
            "source": self.source,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OddsQuote":
        return cls(
            id=row["id"],
            seq=row["seq"],
            match_id=row["match_id"],
            home=Decimal(row["home_odds"]),
            draw=Decimal(row["draw_odds"]),
            away=Decimal(row["away_odds"]),
            source=row["source"],
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class Movement:
    """Significant change between the two most recent quotes of a match."""

    match_id: str
    home_team: str
    away_team: str
    league: str
    match_status: MatchStatus
    previous: OddsQuote
    current: OddsQuote
    # Percent change per price column, rounded to two places
    changes: Dict[str, Decimal]


@dataclass(frozen=True)
class Bet:
    id: str
    account_id: str
    match_id: str
    selection: Selection
    odds: Decimal
    stake: Decimal
    potential_win: Decimal
    status: BetStatus
    placed_at: str
    settled_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == BetStatus.PENDING

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "match_id": self.match_id,
            "selection": self.selection.value,
            "odds": str(self.odds),
            "stake": str(self.stake),
            "potential_win": str(self.potential_win),
            "status": self.status.value,
            "placed_at": self.placed_at,
            "settled_at": self.settled_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Bet":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            match_id=row["match_id"],
            selection=Selection(row["selection"]),
            odds=Decimal(row["odds"]),
            stake=from_minor(row["stake_minor"]),
            potential_win=from_minor(row["potential_win_minor"]),
            status=BetStatus(row["status"]),
            placed_at=row["placed_at"],
            settled_at=row["settled_at"],
        )


@dataclass(frozen=True)
class TransactionRecord:
    """One ledger entry. Completed entries sum to the account balance."""

    id: str
    account_id: str
    kind: TransactionKind
    amount: Decimal
    status: TransactionStatus
    reference: Optional[str]
    created_at: str
    completed_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "kind": self.kind.value,
            "amount": str(self.amount),
            "status": self.status.value,
            "reference": self.reference,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TransactionRecord":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            kind=TransactionKind(row["kind"]),
            amount=from_minor(row["amount_minor"]),
            status=TransactionStatus(row["status"]),
            reference=row["reference"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )


@dataclass(frozen=True)
class DomainEvent:
    """Outbox row describing a committed state change."""

    id: int
    event_type: EventType
    account_id: Optional[str]
    payload: Dict[str, Any]
    created_at: str
    status: EventStatus = EventStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        """Wire shape handed to notification sinks."""
        return {
            "type": self.event_type.value,
            "accountId": self.account_id,
            "payload": self.payload,
            "timestamp": self.created_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DomainEvent":
        return cls(
            id=row["id"],
            event_type=EventType(row["event_type"]),
            account_id=row["account_id"],
            payload=json.loads(row["payload"]),
            created_at=row["created_at"],
            status=EventStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
        )


# Window for the "recent activity" figures in account statistics
RECENT_ACTIVITY_DAYS = 30


@dataclass(frozen=True)
class BetSummary:
    total_bets: int
    pending_bets: int
    won_bets: int
    lost_bets: int
    cancelled_bets: int
    total_staked: Decimal
    total_won: Decimal
    win_rate: Decimal
    net_profit: Decimal
    average_stake: Decimal
    bets_last_30_days: int
    staked_last_30_days: Decimal
    won_last_30_days: int


@dataclass(frozen=True)
class AccountStats:
    """Completed payment totals for an account, taken from the ledger."""

    account_id: str
    total_deposits: Decimal
    total_withdrawals: Decimal
    net_deposits: Decimal
    transactions_last_30_days: int


@dataclass(frozen=True)
class MatchUpdate:
    """
    Typed partial update for a match.

    Only the fields listed here may change; ``None`` means "leave as is".
    Each field is validated on its own when the update is built.
    """

    home_team: Optional[str] = None
    away_team: Optional[str] = None
    league: Optional[str] = None
    start_time: Optional[str] = None
    status: Optional[MatchStatus] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    current_minute: Optional[int] = None
    _fields: Dict[str, Any] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        values: Dict[str, Any] = {}

        for name in ("home_team", "away_team", "league"):
            value = getattr(self, name)
            if value is None:
                continue
            if not isinstance(value, str) or not value.strip():
                raise InvalidMatchUpdate(f"{name} must be a non-empty string")
            values[name] = value.strip()

        if self.start_time is not None:
            try:
                values["start_time"] = normalize_utc_iso(self.start_time)
            except (TypeError, ValueError) as exc:
                raise InvalidMatchUpdate("start_time must be an ISO8601 timestamp") from exc

        if self.status is not None:
            try:
                values["status"] = MatchStatus(self.status)
            except ValueError as exc:
                raise InvalidMatchUpdate(f"Unknown match status: {self.status}") from exc

        for name in ("home_score", "away_score", "current_minute"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidMatchUpdate(f"{name} must be a non-negative integer")
            values[name] = value

        object.__setattr__(self, "_fields", values)

    def changes(self) -> Dict[str, Any]:
        """Validated column -> value mapping of the fields being changed."""
        return dict(self._fields)

    def is_empty(self) -> bool:
        return not self._fields


def parse_decimal_odds(value: Any) -> Decimal:
    """Parse an odds value, mapping garbage to InvalidOdds."""
    try:
        odds = to_decimal(value)
        format_odds(odds)
    except ValueError as exc:
        raise InvalidOdds(f"Odds must be a finite number, got {value!r}") from exc
    return odds
