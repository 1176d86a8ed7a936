"""
Background job that delivers pending outbox events.

Runs one or more dispatch passes with the logging sink; a deployment wires a
real transport by constructing ``EventDispatcher`` with its own sink.
"""

import argparse
import sys

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.services.notification_service import EventDispatcher, LoggingSink
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


def drain_outbox(dispatcher: EventDispatcher, max_passes: int = 10) -> int:
    """Dispatch until the outbox is empty or ``max_passes`` is reached."""
    delivered = 0
    for _ in range(max_passes):
        result = dispatcher.dispatch_pending()
        delivered += result.delivered
        if result.attempted < dispatcher.batch_size:
            break
    return delivered


def main() -> None:
    parser = argparse.ArgumentParser(description="Deliver pending domain events.")
    parser.add_argument("--passes", type=int, default=10, help="Maximum dispatch passes")
    args = parser.parse_args()

    try:
        Config.validate()
    except ValueError as e:
        logger.error("configuration_validation_failed", error=str(e))
        sys.exit(1)

    conn = get_db_connection()
    try:
        delivered = drain_outbox(EventDispatcher(conn, LoggingSink()), max_passes=args.passes)
    finally:
        conn.close()

    logger.info("dispatch_events_job_completed", delivered=delivered)


if __name__ == "__main__":
    main()
