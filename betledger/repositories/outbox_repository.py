"""
Repository for the domain_events outbox.

Events are appended inside the same atomic unit as the state change they
describe; the dispatcher later reads pending rows and records delivery.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from betledger.core.database import get_db_connection
from betledger.domain.models import DomainEvent, EventStatus, EventType
from betledger.utils.datetime_helpers import utc_now_iso


class OutboxRepository:
    """Lightweight helper around the domain_events table."""

    def __init__(self, db: Optional[sqlite3.Connection] = None) -> None:
        self._owns_connection = db is None
        self._db = db or get_db_connection()

    def close(self) -> None:
        """Close the managed connection when the repository created it."""
        if self._owns_connection:
            self._db.close()

    def append(
        self,
        event_type: EventType,
        payload: Dict[str, Any],
        *,
        account_id: Optional[str] = None,
        created_at: Optional[str] = None,
    ) -> int:
        """
        Append an event row. Does not commit; the enclosing unit does.

        Args:
            event_type: Kind of state change
            payload: JSON-serialisable body; Decimals are written as strings
            account_id: Account the event concerns, if any
            created_at: Event timestamp, defaults to now

        Returns:
            The outbox row id.
        """
        cursor = self._db.execute(
            """
            INSERT INTO domain_events (event_type, account_id, payload, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                EventType(event_type).value,
                account_id,
                json.dumps(payload, default=str, sort_keys=True),
                created_at or utc_now_iso(),
            ),
        )
        return cursor.lastrowid

    def fetch_pending(self, limit: int = 100) -> List[DomainEvent]:
        """Oldest-first batch of events still awaiting delivery."""
        cursor = self._db.execute(
            """
            SELECT * FROM domain_events
            WHERE status = 'pending'
            ORDER BY id ASC
            LIMIT ?
            """,
            (limit,),
        )
        return [DomainEvent.from_row(row) for row in cursor.fetchall()]

    def mark_delivered(self, event_id: int) -> None:
        self._db.execute(
            """
            UPDATE domain_events
            SET status = 'delivered', attempts = attempts + 1, delivered_at = ?, last_error = NULL
            WHERE id = ?
            """,
            (utc_now_iso(), event_id),
        )

    def record_failure(self, event_id: int, error: str, max_attempts: int) -> EventStatus:
        """
        Count a failed delivery attempt.

        Returns:
            ``FAILED`` once ``max_attempts`` is reached, otherwise ``PENDING``.
        """
        row = self._db.execute(
            "SELECT attempts FROM domain_events WHERE id = ?", (event_id,)
        ).fetchone()
        attempts = (row["attempts"] if row else 0) + 1
        status = EventStatus.FAILED if attempts >= max_attempts else EventStatus.PENDING

        self._db.execute(
            """
            UPDATE domain_events
            SET attempts = ?, status = ?, last_error = ?
            WHERE id = ?
            """,
            (attempts, status.value, error[:500], event_id),
        )
        return status

    def list_events(
        self,
        *,
        account_id: Optional[str] = None,
        status: Optional[EventStatus] = None,
        limit: int = 100,
    ) -> List[DomainEvent]:
        """Most recent events, optionally filtered by account or status."""
        query = "SELECT * FROM domain_events WHERE 1 = 1"
        params: List[Any] = []

        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)

        if status is not None:
            query += " AND status = ?"
            params.append(EventStatus(status).value)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        cursor = self._db.execute(query, params)
        return [DomainEvent.from_row(row) for row in cursor.fetchall()]
