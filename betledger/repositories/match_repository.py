"""
Repository for match lifecycle data.

Match management owns these rows; the bet engine and odds registry only read
status, start time and final score. Updates go through ``MatchUpdate`` so only
an explicit set of validated columns can ever change.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from typing import Any, Callable, List, Optional

from betledger.core.database import get_db_connection
from betledger.domain.errors import InvalidMatchUpdate, NotFound
from betledger.domain.models import Match, MatchStatus, MatchUpdate
from betledger.utils.database_utils import transactional
from betledger.utils.datetime_helpers import format_utc_iso, utc_now
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


class MatchRepository:
    """Create, read and update matches."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self._clock = clock

    def close(self) -> None:
        """Close the managed database connection if owned by the repository."""
        if self._owns_connection:
            self.db.close()

    def create_match(
        self,
        home_team: str,
        away_team: str,
        league: str,
        start_time: "str | datetime",
        *,
        match_id: Optional[str] = None,
    ) -> Match:
        """Insert a new upcoming match."""
        fields = MatchUpdate(
            home_team=home_team,
            away_team=away_team,
            league=league,
            start_time=start_time,
        ).changes()
        if len(fields) != 4:
            raise InvalidMatchUpdate("home_team, away_team, league and start_time are required")

        match_id = match_id or str(uuid.uuid4())
        now = format_utc_iso(self._clock())

        with transactional(self.db) as conn:
            conn.execute(
                """
                INSERT INTO matches (
                    id, home_team, away_team, league, start_time, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 'upcoming', ?, ?)
                """,
                (
                    match_id,
                    fields["home_team"],
                    fields["away_team"],
                    fields["league"],
                    fields["start_time"],
                    now,
                    now,
                ),
            )

        logger.info(
            "match_created",
            match_id=match_id,
            home_team=fields["home_team"],
            away_team=fields["away_team"],
            league=fields["league"],
        )
        return self.get_match(match_id)

    def find_match(self, match_id: str) -> Optional[Match]:
        row = self.db.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
        return Match.from_row(row) if row else None

    def get_match(self, match_id: str) -> Match:
        match = self.find_match(match_id)
        if match is None:
            raise NotFound("Match not found", match_id=match_id)
        return match

    def list_matches(self, status: Optional[MatchStatus] = None) -> List[Match]:
        """Matches ordered by kick-off, optionally filtered by status."""
        if status is None:
            cursor = self.db.execute("SELECT * FROM matches ORDER BY start_time ASC")
        else:
            cursor = self.db.execute(
                "SELECT * FROM matches WHERE status = ? ORDER BY start_time ASC",
                (MatchStatus(status).value,),
            )
        return [Match.from_row(row) for row in cursor.fetchall()]

    def update_match(self, match_id: str, update: MatchUpdate) -> Match:
        """
        Apply a typed partial update.

        Status may only move forward (upcoming -> live -> finished).

        Raises:
            NotFound: Unknown match.
            InvalidMatchUpdate: Empty update or backwards status change.
        """
        if update.is_empty():
            raise InvalidMatchUpdate("No valid fields to update")

        changes = update.changes()

        with transactional(self.db) as conn:
            row = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
            if row is None:
                raise NotFound("Match not found", match_id=match_id)
            current = Match.from_row(row)

            new_status = changes.get("status")
            if new_status is not None and new_status.rank < current.status.rank:
                raise InvalidMatchUpdate(
                    f"Cannot move match from {current.status.value} to {new_status.value}",
                    match_id=match_id,
                )

            columns: List[str] = []
            params: List[Any] = []
            # Keys come from MatchUpdate's fixed field set, never from input
            for column, value in changes.items():
                columns.append(f"{column} = ?")
                params.append(value.value if isinstance(value, MatchStatus) else value)

            columns.append("updated_at = ?")
            params.append(format_utc_iso(self._clock()))
            params.append(match_id)

            conn.execute(f"UPDATE matches SET {', '.join(columns)} WHERE id = ?", params)

        logger.info(
            "match_updated",
            match_id=match_id,
            fields=sorted(changes.keys()),
        )
        return self.get_match(match_id)

    def record_result(self, match_id: str, home_score: int, away_score: int) -> Match:
        """Record the final score and finish the match."""
        return self.update_match(
            match_id,
            MatchUpdate(
                home_score=home_score,
                away_score=away_score,
                status=MatchStatus.FINISHED,
            ),
        )

    def finished_with_pending_bets(self) -> List[Match]:
        """Finished matches that still have unsettled bets."""
        cursor = self.db.execute(
            """
            SELECT DISTINCT m.*
            FROM matches m
            JOIN bets b ON b.match_id = m.id
            WHERE m.status = 'finished' AND b.status = 'pending'
            ORDER BY m.start_time ASC
            """
        )
        return [Match.from_row(row) for row in cursor.fetchall()]
