"""
The Odds API integration for NFL outright (futures) lines.
https://the-odds-api.com/

Only outright markets are read.  A board is the full list of outcomes for
one sport key; it is fetched once per ``MARKET_REFERENCE_TTL_SECONDS`` and
every (market, team) lookup in that window is served from the cached board.

Line selection
--------------
Bookmakers are scanned in ``ODDS_API_BOOKMAKERS`` order (then in response
order); the first bookmaker quoting the team wins.  Implied probability is
the raw single-outcome implied probability, without removing the vig, so
the reference matches what a reader sees on the book.
"""

import asyncio
import logging
import os
from datetime import date
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from scenario_odds.core.interfaces import MarketReference, Team
from scenario_odds.core.odds_math import american_to_probability_pct, format_american
from scenario_odds.services.cache import MARKET_REFERENCE, CacheManager
from scenario_odds.services.team_mapping import match_team

load_dotenv()

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = os.getenv("ODDS_API_BASE", "https://api.the-odds-api.com/v4")
ODDS_API_REGIONS = os.getenv("ODDS_API_REGIONS", "us")
ODDS_API_BOOKMAKERS = os.getenv("ODDS_API_BOOKMAKERS", "draftkings,fanduel")
MARKET_TIMEOUT_SECONDS = float(os.getenv("MARKET_TIMEOUT_SECONDS", "8"))

# Markets with a directly quoted outright board.  Conference and division
# winners are derived from the Super Bowl board by related-market scaling.
SPORT_KEYS: Dict[str, str] = {
    "super_bowl_winner": "americanfootball_nfl_super_bowl_winner",
}


class OddsAPIClient:
    """Client for The Odds API outright endpoints"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or API_KEY
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")
        self.base_url = (base_url or BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else MARKET_TIMEOUT_SECONDS

    def get_outright_odds(
        self,
        sport_key: str,
        regions: str = ODDS_API_REGIONS,
        bookmakers: str = ODDS_API_BOOKMAKERS,
    ) -> List[Dict]:
        """
        Fetch the outright board for ``sport_key``.

        Returns the raw event list, or [] on any transport error.
        """
        url = f"{self.base_url}/sports/{sport_key}/odds"

        params = {
            "apiKey": self.api_key,
            "regions": regions,
            "markets": "outrights",
            "oddsFormat": "american",
        }
        if bookmakers:
            params["bookmakers"] = bookmakers

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()

            data = response.json()

            remaining = response.headers.get("x-requests-remaining")
            used = response.headers.get("x-requests-used")
            logger.info(
                "Odds API: %d outright events fetched for %s. Quota: %s used, %s remaining",
                len(data), sport_key, used, remaining,
            )

            return data

        except requests.exceptions.RequestException as e:
            logger.error("Odds API error: %s", e)
            return []


def _bookmaker_rank(key: str, preferred: List[str]) -> int:
    return preferred.index(key) if key in preferred else len(preferred)


def parse_outright_board(
    events: List[Dict],
    market: str,
    as_of: Optional[date] = None,
    preferred_books: Optional[List[str]] = None,
) -> Dict[str, MarketReference]:
    """
    Turn a raw outright response into ``{team abbreviation: MarketReference}``.

    Outcomes whose name does not map to an NFL team are skipped.  Prices
    that are not valid American lines are skipped.
    """
    preferred = [b.strip().lower() for b in (preferred_books or []) if b.strip()]
    stamp = (as_of or date.today()).isoformat()
    board: Dict[str, MarketReference] = {}

    books = []
    for event in events or []:
        books.extend(event.get("bookmakers") or [])
    books.sort(key=lambda b: _bookmaker_rank(str(b.get("key", "")).lower(), preferred))

    for book in books:
        label = book.get("title") or book.get("key") or "Sportsbook"
        for m in book.get("markets") or []:
            if m.get("key") != "outrights":
                continue
            for outcome in m.get("outcomes") or []:
                team = match_team(str(outcome.get("name", "")))
                if team is None or team.abbreviation in board:
                    continue
                try:
                    price = int(outcome.get("price"))
                    pct = american_to_probability_pct(price)
                except (TypeError, ValueError):
                    logger.debug("Skipping malformed outright price: %r", outcome)
                    continue
                board[team.abbreviation] = MarketReference(
                    market=market,
                    entity=team.name,
                    american_odds=price,
                    implied_probability_pct=round(pct, 2),
                    as_of_date=stamp,
                    provider_label=label,
                )
    return board


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class MarketReferenceService:
    """Per-(market, team) reference lines with a short-lived board cache.

    Satisfies the ``MarketLookup`` protocol.  With no client (no API key,
    or ``offline=True``) every lookup returns None.
    """

    def __init__(
        self,
        client: Optional[OddsAPIClient] = None,
        cache: Optional[CacheManager] = None,
        timeout: Optional[float] = None,
        offline: bool = False,
    ):
        if client is None and not offline and API_KEY:
            client = OddsAPIClient()
        self.client = None if offline else client
        self.cache = cache or CacheManager()
        self.timeout = timeout if timeout is not None else MARKET_TIMEOUT_SECONDS
        self.preferred_books = [b for b in ODDS_API_BOOKMAKERS.split(",") if b]

    @property
    def available(self) -> bool:
        return self.client is not None

    async def reference(self, market: str, team: Team) -> Optional[MarketReference]:
        board = await self.board(market)
        if not board:
            return None
        ref = board.get(team.abbreviation)
        if ref is not None:
            logger.debug(
                "Market reference %s/%s: %s (%s)",
                market, team.abbreviation, format_american(ref.american_odds), ref.provider_label,
            )
        return ref

    async def board(self, market: str) -> Dict[str, MarketReference]:
        sport_key = SPORT_KEYS.get(market)
        if sport_key is None or self.client is None:
            return {}
        cached = self.cache.get(MARKET_REFERENCE, sport_key)
        if cached is not None:
            return cached
        try:
            events = await asyncio.wait_for(
                asyncio.to_thread(self.client.get_outright_odds, sport_key),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Odds API timed out after %.1fs for %s", self.timeout, sport_key)
            return {}
        board = parse_outright_board(events, market, preferred_books=self.preferred_books)
        # Empty boards are cached as well.
        self.cache.put(MARKET_REFERENCE, sport_key, board)
        return board

    async def refresh(self) -> int:
        """Drop and re-fetch every known board.  Returns teams quoted."""
        if self.client is None:
            return 0
        self.cache.clear(MARKET_REFERENCE)
        total = 0
        for market in SPORT_KEYS:
            total += len(await self.board(market))
        logger.info("Market references refreshed: %d team lines", total)
        return total


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_market_service: Optional[MarketReferenceService] = None


def get_market_service() -> MarketReferenceService:
    global _market_service
    if _market_service is None:
        _market_service = MarketReferenceService()
    return _market_service
