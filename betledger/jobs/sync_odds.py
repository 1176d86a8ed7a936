"""
Background job that pulls odds from the external feed.

Designed to run from cron every few minutes. Each upcoming or live match that
the feed prices gets a new ``feed`` quote through the odds registry; a price
identical to the latest stored quote is skipped.
"""

import asyncio
import sqlite3
import sys
from typing import Optional

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.domain.errors import LedgerError
from betledger.domain.models import MatchStatus
from betledger.integrations.odds_api_client import OddsAPIClient
from betledger.repositories.match_repository import MatchRepository
from betledger.services.odds_registry import OddsRegistry
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


async def sync_odds(
    db: Optional[sqlite3.Connection] = None,
    client: Optional[OddsAPIClient] = None,
) -> int:
    """
    Publish feed quotes for open matches.

    Returns:
        Number of quotes published.
    """
    conn = db or get_db_connection()
    client = client or OddsAPIClient()

    try:
        if not client.is_configured:
            logger.warning("odds_sync_skipped", reason="odds API key not configured")
            return 0

        matches = MatchRepository(conn)
        open_matches = matches.list_matches(MatchStatus.UPCOMING) + matches.list_matches(
            MatchStatus.LIVE
        )
        if not open_matches:
            logger.info("odds_sync_no_open_matches")
            return 0

        board = await client.fetch_board()
        mapped = client.match_to_local(board, open_matches)

        registry = OddsRegistry(conn)
        published = 0
        for match_id, odds in mapped.items():
            latest = registry.latest_quote(match_id)
            if latest is not None and (latest.home, latest.draw, latest.away) == (
                odds.home,
                odds.draw,
                odds.away,
            ):
                continue

            try:
                registry.publish_quote(match_id, odds.home, odds.draw, odds.away, source="feed")
                published += 1
            except LedgerError as e:
                logger.warning(
                    "odds_sync_quote_rejected",
                    match_id=match_id,
                    kind=e.kind,
                    error=e.message,
                )

        logger.info(
            "odds_sync_completed",
            open_matches=len(open_matches),
            matched=len(mapped),
            published=published,
        )
        return published
    finally:
        if db is None:
            conn.close()


def main() -> None:
    """
    Main entry point for the odds sync job.

    This function:
    1. Validates configuration
    2. Fetches the feed board and publishes changed quotes
    """
    try:
        Config.validate()
    except ValueError as e:
        logger.error("configuration_validation_failed", error=str(e))
        sys.exit(1)

    try:
        published = asyncio.run(sync_odds())
    except Exception as e:
        logger.error("odds_sync_job_failed", error=str(e), exc_info=True)
        sys.exit(1)

    logger.info("odds_sync_job_completed", published=published)


if __name__ == "__main__":
    main()
