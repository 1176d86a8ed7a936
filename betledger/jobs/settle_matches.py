"""
Background job that settles bets on finished matches.

Match management records final scores; this job picks up every finished
match that still has pending bets and settles them from the recorded score.
Settlement is exactly-once per bet, so re-running the job is harmless.
"""

import sqlite3
import sys
from typing import Dict, Optional

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.domain.errors import LedgerError
from betledger.repositories.match_repository import MatchRepository
from betledger.services.bet_engine import BetEngine
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


def settle_finished_matches(db: Optional[sqlite3.Connection] = None) -> Dict[str, int]:
    """
    Settle pending bets on all finished matches.

    Returns:
        Counters: matches processed, bets settled, matches that failed.
    """
    conn = db or get_db_connection()
    summary = {"matches": 0, "bets": 0, "failed": 0}

    try:
        engine = BetEngine(conn)
        for match in MatchRepository(conn).finished_with_pending_bets():
            try:
                settled = engine.settle_match(match.id)
            except LedgerError as e:
                summary["failed"] += 1
                logger.error(
                    "match_settlement_failed",
                    match_id=match.id,
                    kind=e.kind,
                    error=e.message,
                )
                continue

            summary["matches"] += 1
            summary["bets"] += len(settled)
    finally:
        if db is None:
            conn.close()

    logger.info("settlement_run_completed", **summary)
    return summary


def main() -> None:
    try:
        Config.validate()
    except ValueError as e:
        logger.error("configuration_validation_failed", error=str(e))
        sys.exit(1)

    summary = settle_finished_matches()
    if summary["failed"]:
        logger.error("settle_matches_job_failed", failed=summary["failed"])
        sys.exit(1)

    logger.info("settle_matches_job_completed")


if __name__ == "__main__":
    main()
