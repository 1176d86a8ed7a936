"""
The Odds API client.

Fetches head-to-head decimal odds and maps feed events onto local matches by
team name. Parsed boards are kept in a ``TTLCache`` owned by the client.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

import httpx

from betledger.core.config import Config
from betledger.domain.models import Match
from betledger.services.odds_cache import TTLCache
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)

DRAW_OUTCOME = "Draw"


@dataclass(frozen=True)
class FeedOdds:
    """One event's 1X2 prices as published by the first listed bookmaker."""

    event_id: str
    home_team: str
    away_team: str
    commence_time: Optional[str]
    home: Decimal
    draw: Decimal
    away: Decimal
    bookmaker: str


def _team_key(name: str) -> str:
    return " ".join(name.casefold().split())


class OddsAPIClient:
    """Client for fetching odds from The Odds API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        sport: Optional[str] = None,
        region: Optional[str] = None,
        market: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the odds API client.

        Args:
            api_key: API key for The Odds API
            base_url: Base URL of the API
            sport/region/market: Query defaults, taken from Config when omitted
            timeout: Request timeout in seconds
            cache: Board cache; a fresh TTLCache is created when omitted
            transport: Optional httpx transport (used to stub the network)
        """
        self.api_key = api_key if api_key is not None else Config.ODDS_API_KEY
        self.base_url = (base_url or Config.ODDS_API_BASE_URL).rstrip("/")
        self.sport = sport or Config.ODDS_API_SPORT
        self.region = region or Config.ODDS_API_REGION
        self.market = market or Config.ODDS_API_MARKET
        self.timeout = timeout or Config.ODDS_API_TIMEOUT_SECONDS
        self.cache = cache or TTLCache(Config.ODDS_CACHE_TTL_SECONDS)
        self._transport = transport

        if not self.api_key:
            logger.warning("odds_api_no_key", message="No odds API key configured")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def fetch_board(self) -> List[FeedOdds]:
        """
        Fetch the current odds board for the configured sport.

        Returns an empty board when no API key is configured.

        Raises:
            httpx.HTTPError: If the request fails
            ValueError: If the response is not a list of events
        """
        if not self.is_configured:
            return []

        cache_key = f"board:{self.sport}:{self.region}:{self.market}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("odds_board_cache_hit", sport=self.sport, events=len(cached))
            return cached

        url = f"{self.base_url}/sports/{self.sport}/odds"
        params = {
            "apiKey": self.api_key,
            "regions": self.region,
            "markets": self.market,
            "oddsFormat": "decimal",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()

                if not isinstance(data, list):
                    raise ValueError("Invalid API response: expected a list of events")

            except httpx.HTTPError as e:
                logger.error("odds_api_http_error", url=url, error=str(e))
                raise
            except ValueError as e:
                logger.error("odds_api_invalid_response", url=url, error=str(e))
                raise

        board = self.parse_events(data)
        self.cache.put(cache_key, board)

        logger.info(
            "odds_board_fetched",
            sport=self.sport,
            events=len(data),
            priced=len(board),
        )
        return board

    def parse_events(self, events: Iterable[Dict[str, Any]]) -> List[FeedOdds]:
        """Extract 1X2 prices; events without all three outcomes are skipped."""
        board: List[FeedOdds] = []

        for event in events:
            home_team = event.get("home_team")
            away_team = event.get("away_team")
            bookmakers = event.get("bookmakers") or []
            if not home_team or not away_team or not bookmakers:
                continue

            bookmaker = bookmakers[0]
            market = next(
                (m for m in bookmaker.get("markets", []) if m.get("key") == self.market),
                None,
            )
            if market is None:
                continue

            prices: Dict[str, Decimal] = {}
            for outcome in market.get("outcomes", []):
                try:
                    prices[outcome.get("name")] = Decimal(str(outcome.get("price")))
                except (InvalidOperation, ValueError):
                    logger.warning(
                        "odds_outcome_unparseable",
                        event_id=event.get("id"),
                        outcome=outcome.get("name"),
                        price=outcome.get("price"),
                    )

            if not all(name in prices for name in (home_team, away_team, DRAW_OUTCOME)):
                logger.debug("odds_event_incomplete", event_id=event.get("id"))
                continue

            board.append(
                FeedOdds(
                    event_id=str(event.get("id", "")),
                    home_team=home_team,
                    away_team=away_team,
                    commence_time=event.get("commence_time"),
                    home=prices[home_team],
                    draw=prices[DRAW_OUTCOME],
                    away=prices[away_team],
                    bookmaker=bookmaker.get("title") or bookmaker.get("key") or "unknown",
                )
            )

        return board

    @staticmethod
    def match_to_local(board: Iterable[FeedOdds], matches: Iterable[Match]) -> Dict[str, FeedOdds]:
        """Map local match ids to feed odds by (home team, away team) name."""
        by_teams = {(_team_key(odds.home_team), _team_key(odds.away_team)): odds for odds in board}
        mapped: Dict[str, FeedOdds] = {}
        for match in matches:
            odds = by_teams.get((_team_key(match.home_team), _team_key(match.away_team)))
            if odds is not None:
                mapped[match.id] = odds
        return mapped
