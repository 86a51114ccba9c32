"""
Tests for services/resolvers.py
Run with: pytest tests/test_resolvers.py -v
"""

import asyncio
import json
from datetime import date

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.career_models import season_mvp_pct
from scenario_odds.core.interfaces import (
    UNSUPPORTED,
    Declined,
    MarketReference,
    Player,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    RaceBefore,
    ResolutionContext,
    Resolved,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
)
from scenario_odds.services.resolvers import (
    RESOLVER_PRIORITY,
    ResolverChain,
    load_stat_history,
    season_market_quote,
)
from scenario_odds.services.team_mapping import team_by_abbreviation

CAL = CalibrationConfig.default()
KC = team_by_abbreviation("KC")
BUF = team_by_abbreviation("BUF")
ALLEN = Player(name="Josh Allen", team="BUF", position="QB", status="active", experience_years=7, age=29)
WATT = Player(name="T.J. Watt", team="PIT", position="LB", status="active", experience_years=8, age=30)


class FakeMarkets:
    """In-memory MarketLookup keyed by (market, abbreviation)."""

    def __init__(self, lines):
        self.lines = lines

    async def reference(self, market, team):
        pct = self.lines.get((market, team.abbreviation))
        if pct is None:
            return None
        return MarketReference(market, team.name, 100, pct, "2025-09-01", "TestBook")


def context(lines=None, history=None):
    return ResolutionContext(
        as_of=date(2025, 9, 1),
        calibration=CAL,
        markets=FakeMarkets(lines) if lines is not None else None,
        stat_history=history or {},
    )


def resolve(descriptor, ctx=None):
    outcome = asyncio.run(ResolverChain().resolve(descriptor, ctx or context()))
    assert isinstance(outcome, Resolved)
    return outcome.estimate


class TestMarketQuotes:
    """Live, scaled and default season quotes"""

    def test_default(self):
        quote = asyncio.run(season_market_quote("super_bowl_winner", KC, context()))
        assert (quote.pct, quote.confidence, quote.basis) == (4.5, "Low", "default")

    def test_live(self):
        quote = asyncio.run(
            season_market_quote("super_bowl_winner", KC, context({("super_bowl_winner", "KC"): 15.0}))
        )
        assert quote.basis == "live"
        assert quote.confidence == "High"
        assert quote.anchored

    def test_scaled_from_super_bowl(self):
        quote = asyncio.run(
            season_market_quote("afc_winner", KC, context({("super_bowl_winner", "KC"): 15.0}))
        )
        assert quote.basis == "scaled"
        assert quote.pct == pytest.approx(33.0)
        assert quote.confidence == "Medium"

    def test_super_bowl_scaled_from_own_conference(self):
        quote = asyncio.run(
            season_market_quote("super_bowl_winner", KC, context({("afc_winner", "KC"): 30.0}))
        )
        assert quote.pct == pytest.approx(13.5)


class TestTeamResolvers:
    """Market-anchored, race and season resolvers"""

    def test_live_super_bowl(self):
        estimate = resolve(
            TeamMarket(team=KC, market="super_bowl_winner"),
            context({("super_bowl_winner", "KC"): 15.0}),
        )
        assert estimate.probability_pct == pytest.approx(15.0)
        assert estimate.source_type == "market_anchored"
        assert estimate.confidence == "High"
        assert "resolver:MarketAnchoredResolver" in estimate.trace

    def test_default_is_historical(self):
        estimate = resolve(TeamMarket(team=KC, market="super_bowl_winner"))
        assert estimate.source_type == "historical_baseline"
        assert estimate.confidence == "Low"

    def test_window_not_below_single_season(self):
        one = resolve(TeamMarket(team=KC, market="super_bowl_winner"))
        five = resolve(TeamMarket(team=KC, market="super_bowl_winner", seasons=5, horizon="multi_year"))
        assert five.probability_pct > one.probability_pct

    def test_more_titles_less_likely(self):
        one = resolve(TeamMarket(team=KC, market="super_bowl_winner", seasons=10, horizon="multi_year"))
        two = resolve(
            TeamMarket(team=KC, market="super_bowl_winner", seasons=10, horizon="multi_year", count=2)
        )
        assert two.probability_pct < one.probability_pct

    def test_race_sides_sum_to_one_hundred(self):
        lines = {("super_bowl_winner", "KC"): 16.0, ("super_bowl_winner", "BUF"): 11.0}
        a = resolve(RaceBefore(first=KC, second=BUF), context(lines))
        b = resolve(RaceBefore(first=BUF, second=KC), context(lines))
        assert a.probability_pct + b.probability_pct == pytest.approx(100.0)
        assert a.probability_pct > b.probability_pct

    def test_playoffs_and_win_totals(self):
        make = resolve(TeamPlayoff(team=KC, outcome="make"))
        assert make.probability_pct == pytest.approx(82.0)
        assert make.confidence == "Medium"
        wins = resolve(TeamWinTotal(team=KC, comparator=">=", wins=12))
        assert wins.confidence == "Low"


class TestPlayerResolvers:
    """Stat, award and career resolvers"""

    def test_allen_rushing_long_shot(self):
        estimate = resolve(PlayerStatThreshold(player=ALLEN, metric="rushing_yards", threshold=1000))
        assert 1.0 < estimate.probability_pct < 8.0
        assert estimate.confidence == "Low"
        assert estimate.source_type == "statistical"

    def test_history_raises_confidence(self):
        history = {"josh allen": {"rushing_yards": [523.0, 531.0, 762.0]}}
        estimate = resolve(
            PlayerStatThreshold(player=ALLEN, metric="rushing_yards", threshold=1000),
            context(history=history),
        )
        assert estimate.confidence == "High"

    def test_career_stat_not_below_season(self):
        season = resolve(PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=40))
        ever = resolve(PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=40, horizon="ever"))
        assert ever.probability_pct >= season.probability_pct

    def test_mvp_default_anchor(self):
        estimate = resolve(PlayerAward(player=ALLEN, award="mvp"))
        assert estimate.probability_pct == pytest.approx(season_mvp_pct(ALLEN, 4.5, CAL))
        assert estimate.source_type == "historical_baseline"

    def test_mvp_live_anchor(self):
        estimate = resolve(
            PlayerAward(player=ALLEN, award="mvp"),
            context({("super_bowl_winner", "BUF"): 12.0}),
        )
        assert estimate.source_type == "market_anchored"
        assert estimate.confidence == "High"

    def test_single_season_dpoy(self):
        estimate = resolve(PlayerAward(player=WATT, award="dpoy"))
        assert estimate.confidence == "Low"

    def test_award_count(self):
        one = resolve(PlayerAward(player=ALLEN, award="mvp", count=1, horizon="career"))
        two = resolve(PlayerAward(player=ALLEN, award="mvp", count=2, horizon="career"))
        assert two.probability_pct < one.probability_pct

    def test_hall_of_fame(self):
        estimate = resolve(PlayerCareerEvent(player=ALLEN, event="hall_of_fame"))
        assert estimate.confidence == "High"

    def test_cohort(self):
        estimate = resolve(WildcardCohort(cohort="perfect_season"))
        assert estimate.probability_pct == pytest.approx(0.35)
        assert "resolver:CohortResolver" in estimate.trace


class TestChain:
    """Priority order and refusals"""

    def test_priority_order(self):
        names = [r["name"] for r in ResolverChain().describe()]
        assert names == list(RESOLVER_PRIORITY)

    def test_unknown_metric_declined(self):
        outcome = asyncio.run(
            ResolverChain().resolve(
                PlayerStatThreshold(player=ALLEN, metric="punt_yards", threshold=10), context()
            )
        )
        assert isinstance(outcome, Declined)
        assert outcome.kind == UNSUPPORTED

    def test_notes_record_resolver(self):
        ctx = context()
        resolve(TeamPlayoff(team=KC), ctx)
        assert ctx.notes == ["resolver:TeamSeasonResolver"]

    def test_rejects_non_resolvers(self):
        with pytest.raises(TypeError):
            ResolverChain([object()])


class TestStatHistory:
    """JSON season history loading"""

    def test_year_mapping_newest_first(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"Josh Allen": {"rushing_yards": {"2022": 762, "2024": 531, "2023": 524}}}))
        history = load_stat_history(str(path))
        assert history["josh allen"]["rushing_yards"] == [531.0, 524.0, 762.0]

    def test_list_form(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"Drake Maye": {"passing_tds": [15, None]}}))
        assert load_stat_history(str(path)) == {"drake maye": {"passing_tds": [15.0]}}

    def test_missing_file(self, tmp_path):
        assert load_stat_history(str(tmp_path / "nope.json")) == {}
        assert load_stat_history(None) == {}
