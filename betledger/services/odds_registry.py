"""
Odds registry: append-only, versioned 1X2 quotes per match.

A quote is never updated; publishing always appends a new row. The latest
quote for a match is the one with the greatest ``(created_at, seq)``.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections import OrderedDict
from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import Callable, Dict, Iterable, List, Optional

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.domain.errors import MatchClosed, NotFound
from betledger.domain.models import (
    BettingPolicy,
    EventType,
    MatchStatus,
    Movement,
    OddsQuote,
    parse_decimal_odds,
)
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.utils.database_utils import transactional
from betledger.utils.datetime_helpers import format_utc_iso, normalize_utc_iso, utc_now
from betledger.utils.logging_config import get_logger
from betledger.utils.money import TWO_PLACES, format_odds, to_decimal


logger = get_logger(__name__)

QUOTE_SOURCES = ("admin", "feed")
PRICE_COLUMNS = ("home", "draw", "away")
DEFAULT_HISTORY_LIMIT = 50


class OddsRegistry:
    """Publishes and queries odds quotes."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        *,
        policy: Optional[BettingPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self.policy = policy or BettingPolicy.from_config()
        self.outbox = OutboxRepository(self.db)
        self._clock = clock

    def close(self) -> None:
        """Close the managed database connection if owned by the registry."""
        if self._owns_connection:
            self.db.close()

    def publish_quote(
        self,
        match_id: str,
        home,
        draw,
        away,
        source: str = "admin",
    ) -> OddsQuote:
        """
        Append a new quote for a match.

        Raises:
            InvalidOdds: Any price below the configured floor, or not numeric.
            NotFound: Unknown match.
            MatchClosed: The match is already finished.
        """
        if source not in QUOTE_SOURCES:
            raise ValueError(f"Unknown quote source: {source}")

        prices = {
            "home": parse_decimal_odds(home),
            "draw": parse_decimal_odds(draw),
            "away": parse_decimal_odds(away),
        }
        for column, price in prices.items():
            self.policy.check_odds(price, label=f"{column.capitalize()} odds")

        quote_id = str(uuid.uuid4())
        now = format_utc_iso(self._clock())

        with transactional(self.db) as conn:
            row = conn.execute(
                "SELECT status FROM matches WHERE id = ?", (match_id,)
            ).fetchone()
            if row is None:
                raise NotFound("Match not found", match_id=match_id)
            if row["status"] == MatchStatus.FINISHED.value:
                raise MatchClosed(match_id=match_id)

            conn.execute(
                """
                INSERT INTO odds_quotes (id, match_id, home_odds, draw_odds, away_odds, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quote_id,
                    match_id,
                    format_odds(prices["home"]),
                    format_odds(prices["draw"]),
                    format_odds(prices["away"]),
                    source,
                    now,
                ),
            )

            self.outbox.append(
                EventType.ODDS_UPDATED,
                {
                    "match_id": match_id,
                    "quote_id": quote_id,
                    "home": format_odds(prices["home"]),
                    "draw": format_odds(prices["draw"]),
                    "away": format_odds(prices["away"]),
                    "source": source,
                },
                created_at=now,
            )

        quote = self._get_quote(quote_id)
        logger.info(
            "odds_quote_published",
            match_id=match_id,
            quote_id=quote_id,
            home=str(quote.home),
            draw=str(quote.draw),
            away=str(quote.away),
            source=source,
        )
        return quote

    def latest_quote(self, match_id: str) -> Optional[OddsQuote]:
        """Most recent quote for a match, or None if none was ever published."""
        row = self.db.execute(
            """
            SELECT * FROM odds_quotes
            WHERE match_id = ?
            ORDER BY created_at DESC, seq DESC
            LIMIT 1
            """,
            (match_id,),
        ).fetchone()
        return OddsQuote.from_row(row) if row else None

    def latest_quotes(self, match_ids: Iterable[str]) -> Dict[str, OddsQuote]:
        """Latest quote per match for the given ids; matches without quotes are omitted."""
        quotes: Dict[str, OddsQuote] = {}
        for match_id in match_ids:
            quote = self.latest_quote(match_id)
            if quote is not None:
                quotes[match_id] = quote
        return quotes

    def quote_as_of(self, match_id: str, at: "str | datetime") -> Optional[OddsQuote]:
        """The quote that was current at ``at`` (created at or before it)."""
        row = self.db.execute(
            """
            SELECT * FROM odds_quotes
            WHERE match_id = ? AND created_at <= ?
            ORDER BY created_at DESC, seq DESC
            LIMIT 1
            """,
            (match_id, normalize_utc_iso(at)),
        ).fetchone()
        return OddsQuote.from_row(row) if row else None

    def history(self, match_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[OddsQuote]:
        """Quotes for a match, most recent first."""
        cursor = self.db.execute(
            """
            SELECT * FROM odds_quotes
            WHERE match_id = ?
            ORDER BY created_at DESC, seq DESC
            LIMIT ?
            """,
            (match_id, max(1, limit)),
        )
        return [OddsQuote.from_row(row) for row in cursor.fetchall()]

    def movements_since(
        self,
        window_start: "str | datetime",
        threshold_fraction=None,
    ) -> List[Movement]:
        """
        Significant price changes within a window.

        For every match with at least two quotes created at or after
        ``window_start`` the two most recent are compared. A match is reported
        once when any price moved by at least ``threshold_fraction`` of its
        previous value.
        """
        threshold = to_decimal(
            Config.MOVEMENT_THRESHOLD if threshold_fraction is None else threshold_fraction
        )

        cursor = self.db.execute(
            """
            SELECT q.*, m.home_team, m.away_team, m.league, m.status AS match_status
            FROM odds_quotes q
            JOIN matches m ON m.id = q.match_id
            WHERE q.created_at >= ?
            ORDER BY q.match_id, q.created_at DESC, q.seq DESC
            """,
            (normalize_utc_iso(window_start),),
        )

        grouped: "OrderedDict[str, List[sqlite3.Row]]" = OrderedDict()
        for row in cursor.fetchall():
            rows = grouped.setdefault(row["match_id"], [])
            if len(rows) < 2:
                rows.append(row)

        movements: List[Movement] = []
        for match_id, rows in grouped.items():
            if len(rows) < 2:
                continue

            current = OddsQuote.from_row(rows[0])
            previous = OddsQuote.from_row(rows[1])

            fractions = {
                column: abs(getattr(current, column) - getattr(previous, column))
                / getattr(previous, column)
                for column in PRICE_COLUMNS
            }
            if not any(fraction >= threshold for fraction in fractions.values()):
                continue

            changes = {
                column: (
                    (getattr(current, column) - getattr(previous, column))
                    / getattr(previous, column)
                    * 100
                ).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
                for column in PRICE_COLUMNS
            }

            movements.append(
                Movement(
                    match_id=match_id,
                    home_team=rows[0]["home_team"],
                    away_team=rows[0]["away_team"],
                    league=rows[0]["league"],
                    match_status=MatchStatus(rows[0]["match_status"]),
                    previous=previous,
                    current=current,
                    changes=changes,
                )
            )

        logger.debug(
            "odds_movements_scanned",
            matches=len(grouped),
            movements=len(movements),
            threshold=str(threshold),
        )
        return movements

    def _get_quote(self, quote_id: str) -> OddsQuote:
        row = self.db.execute("SELECT * FROM odds_quotes WHERE id = ?", (quote_id,)).fetchone()
        return OddsQuote.from_row(row)
