"""
Tests for services/odds.py
Run with: pytest tests/test_odds_service.py -v
"""

import asyncio
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
import requests

from scenario_odds.services.cache import MARKET_REFERENCE, CacheManager
from scenario_odds.services.odds import (
    MarketReferenceService,
    OddsAPIClient,
    parse_outright_board,
)
from scenario_odds.services.team_mapping import team_by_abbreviation

BOARD = [
    {
        "id": "sb",
        "bookmakers": [
            {
                "key": "fanduel",
                "title": "FanDuel",
                "markets": [
                    {
                        "key": "outrights",
                        "outcomes": [
                            {"name": "Kansas City Chiefs", "price": 500},
                            {"name": "Buffalo Bills", "price": 650},
                        ],
                    }
                ],
            },
            {
                "key": "draftkings",
                "title": "DraftKings",
                "markets": [
                    {
                        "key": "outrights",
                        "outcomes": [
                            {"name": "Kansas City Chiefs", "price": 450},
                            {"name": "Philadelphia Eagles", "price": "n/a"},
                            {"name": "Springfield Atoms", "price": 900},
                        ],
                    },
                    {"key": "h2h", "outcomes": [{"name": "Detroit Lions", "price": -150}]},
                ],
            },
        ],
    }
]


class TestParseBoard:
    """Outright response to per-team references"""

    def test_preferred_bookmaker_first(self):
        board = parse_outright_board(
            BOARD, "super_bowl_winner", as_of=date(2025, 9, 1), preferred_books=["draftkings", "fanduel"]
        )
        kc = board["KC"]
        assert kc.american_odds == 450
        assert kc.provider_label == "DraftKings"
        assert kc.implied_probability_pct == pytest.approx(18.18)
        assert kc.as_of_date == "2025-09-01"

    def test_fallback_bookmaker_fills_gaps(self):
        board = parse_outright_board(BOARD, "super_bowl_winner", preferred_books=["draftkings"])
        assert board["BUF"].provider_label == "FanDuel"

    def test_skips_unknown_teams_bad_prices_and_other_markets(self):
        board = parse_outright_board(BOARD, "super_bowl_winner")
        assert set(board) == {"KC", "BUF"}

    def test_empty(self):
        assert parse_outright_board([], "super_bowl_winner") == {}


class TestClient:
    """Odds API transport"""

    def test_requires_key(self):
        with patch("scenario_odds.services.odds.API_KEY", None):
            with pytest.raises(ValueError):
                OddsAPIClient()

    def test_request_error_returns_empty(self):
        with patch("scenario_odds.services.odds.requests.get") as mock_get:
            mock_get.side_effect = requests.exceptions.Timeout("slow")
            assert OddsAPIClient(api_key="test").get_outright_odds("americanfootball_nfl_super_bowl_winner") == []

    def test_request_params(self):
        response = MagicMock()
        response.json.return_value = BOARD
        response.headers = {"x-requests-remaining": "10", "x-requests-used": "1"}
        with patch("scenario_odds.services.odds.requests.get", return_value=response) as mock_get:
            events = OddsAPIClient(api_key="test", base_url="https://example.test/v4/").get_outright_odds(
                "americanfootball_nfl_super_bowl_winner"
            )
        assert events == BOARD
        url = mock_get.call_args[0][0]
        params = mock_get.call_args[1]["params"]
        assert url == "https://example.test/v4/sports/americanfootball_nfl_super_bowl_winner/odds"
        assert params["markets"] == "outrights"
        assert params["oddsFormat"] == "american"


class TestMarketReferenceService:
    """Board caching and the MarketLookup surface"""

    def test_offline_has_no_lines(self):
        service = MarketReferenceService(client=MagicMock(), offline=True)
        assert not service.available
        assert asyncio.run(service.reference("super_bowl_winner", team_by_abbreviation("KC"))) is None

    def test_board_fetched_once(self):
        client = MagicMock()
        client.get_outright_odds.return_value = BOARD
        service = MarketReferenceService(client=client, cache=CacheManager())
        kc = team_by_abbreviation("KC")
        first = asyncio.run(service.reference("super_bowl_winner", kc))
        second = asyncio.run(service.reference("super_bowl_winner", kc))
        assert first == second
        assert client.get_outright_odds.call_count == 1

    def test_unquoted_market(self):
        client = MagicMock()
        service = MarketReferenceService(client=client)
        assert asyncio.run(service.board("division_winner")) == {}
        client.get_outright_odds.assert_not_called()

    def test_refresh_refetches(self):
        client = MagicMock()
        client.get_outright_odds.return_value = BOARD
        cache = CacheManager()
        service = MarketReferenceService(client=client, cache=cache)
        asyncio.run(service.board("super_bowl_winner"))
        assert asyncio.run(service.refresh()) == 2
        assert client.get_outright_odds.call_count == 2
        assert cache.size(MARKET_REFERENCE) == 1
