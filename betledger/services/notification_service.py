"""
Notification sink interface and the outbox dispatcher that feeds it.

State changes append ``domain_events`` rows inside their own atomic unit.
``EventDispatcher`` later reads pending rows and hands each one to a
``NotificationSink``. A failing sink only affects the outbox row's delivery
bookkeeping; ledger rows are never touched from here.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.domain.models import EventStatus
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.utils.database_utils import transactional
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


class NotificationSink(Protocol):
    """Downstream transport for domain events (websocket hub, queue, ...)."""

    def emit(self, event: Dict[str, Any]) -> None:
        ...


class LoggingSink:
    """Sink that writes each event to the structured log."""

    def emit(self, event: Dict[str, Any]) -> None:
        logger.info(
            "domain_event_emitted",
            event_type=event.get("type"),
            account_id=event.get("accountId"),
            payload=event.get("payload"),
            timestamp=event.get("timestamp"),
        )


class CallbackSink:
    """Sink that forwards events to a plain callable."""

    def __init__(self, callback: Callable[[Dict[str, Any]], Any]) -> None:
        self._callback = callback

    def emit(self, event: Dict[str, Any]) -> None:
        self._callback(event)


@dataclass
class DispatchResult:
    """Outcome of one dispatch pass over the outbox."""

    delivered: int = 0
    retried: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.delivered + self.retried + self.failed


class EventDispatcher:
    """Delivers pending outbox events to a sink, oldest first."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        sink: Optional[NotificationSink] = None,
        *,
        max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self.sink = sink or LoggingSink()
        self.outbox = OutboxRepository(self.db)
        self.max_attempts = max(1, max_attempts or Config.OUTBOX_MAX_ATTEMPTS)
        self.batch_size = max(1, batch_size or Config.OUTBOX_BATCH_SIZE)

    def close(self) -> None:
        if self._owns_connection:
            self.db.close()

    def dispatch_pending(self, limit: Optional[int] = None) -> DispatchResult:
        """
        Deliver up to ``limit`` pending events.

        A sink error is logged and counted as an attempt; once an event has
        used ``max_attempts`` it is marked failed and no longer retried.
        """
        result = DispatchResult()
        events = self.outbox.fetch_pending(limit or self.batch_size)

        for event in events:
            try:
                self.sink.emit(event.to_message())
            except Exception as exc:
                with transactional(self.db):
                    status = self.outbox.record_failure(event.id, str(exc), self.max_attempts)

                if status == EventStatus.FAILED:
                    result.failed += 1
                    logger.error(
                        "domain_event_delivery_failed",
                        event_id=event.id,
                        event_type=event.event_type.value,
                        attempts=event.attempts + 1,
                        error=str(exc),
                    )
                else:
                    result.retried += 1
                    logger.warning(
                        "domain_event_delivery_retry",
                        event_id=event.id,
                        event_type=event.event_type.value,
                        attempts=event.attempts + 1,
                        error=str(exc),
                    )
                result.errors.append(f"event {event.id}: {exc}")
                continue

            with transactional(self.db):
                self.outbox.mark_delivered(event.id)
            result.delivered += 1

        if events:
            logger.info(
                "domain_events_dispatched",
                delivered=result.delivered,
                retried=result.retried,
                failed=result.failed,
            )
        return result
