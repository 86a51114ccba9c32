"""
Tests for engine.py
Run with: pytest tests/test_engine.py -v

All engines run offline against the bundled roster and per-market
baselines, pinned to a preseason date.
"""

import asyncio
import re
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    AllOf,
    MarketReference,
    Player,
    PlayerAward,
    PlayerStatThreshold,
    RaceBefore,
    Team,
    TeamMarket,
)
from scenario_odds.core.odds_math import american_to_probability_pct
from scenario_odds.engine import ScenarioEngine, descriptor_entities, is_low_volatility
from scenario_odds.services.cache import CANONICAL, EPHEMERAL
from scenario_odds.services.fallback import FallbackGateway

CAL = CalibrationConfig.default()
AS_OF = date(2025, 9, 1)

ODDS_RE = re.compile(r"^[+-]\d+$")

KC = Team(name="Kansas City Chiefs", abbreviation="KC", conference="AFC", division="AFC West")
BUF = Team(name="Buffalo Bills", abbreviation="BUF", conference="AFC", division="AFC East")
ALLEN = Player(name="Josh Allen", team="BUF", position="QB", status="active", experience_years=7, age=29)


def make_engine(markets=None) -> ScenarioEngine:
    return ScenarioEngine(
        calibration=CAL,
        markets=markets,
        fallback=FallbackGateway(CAL, allow_heuristic=True, offline=True),
        stat_history={},
        as_of=AS_OF,
        offline=True,
    )


class FakeMarkets:
    """Live Super Bowl lines keyed by team abbreviation."""

    available = True

    def __init__(self, lines):
        self.lines = dict(lines)

    async def refresh(self):
        return len(self.lines)

    async def reference(self, market, team):
        if market != "super_bowl_winner" or team.abbreviation not in self.lines:
            return None
        pct = self.lines[team.abbreviation]
        return MarketReference(market, team.name, 100, pct, "2025-09-01", "TestBook")


@pytest.fixture
def engine():
    return make_engine()


class TestPublishedShape:
    """Every answer is a well-formed line"""

    @pytest.mark.parametrize("prompt", [
        "Josh Allen rushes for 1,000 yards this season",
        "Chiefs win the Super Bowl",
        "Bills win the Super Bowl in the next 5 years",
        "A team goes 17-0",
        "Josh Allen wins MVP",
    ])
    def test_odds_and_probability_agree(self, engine, prompt):
        result = engine.estimate(prompt)
        assert not result.declined
        assert ODDS_RE.match(result.odds)
        assert abs(int(result.odds)) >= 100
        assert result.implied_probability == pytest.approx(
            round(american_to_probability_pct(result.odds), 1)
        )
        assert 0.0 < result.implied_probability < 100.0

    def test_metadata(self, engine):
        result = engine.estimate("Chiefs win the Super Bowl")
        assert result.as_of == "2025-09-01"
        assert result.calibration_version == "phase2-v1"
        assert result.prompt == "Chiefs win the Super Bowl"

    def test_allen_rushing_is_low_confidence_long_shot(self, engine):
        result = engine.estimate("Josh Allen rushes for 1,000 yards this season")
        assert result.confidence == "Low"
        assert result.source_type == "statistical"
        assert 1.0 < result.implied_probability < 8.0
        assert result.odds.startswith("+")


class TestDeterminism:
    """Same prompt, same inputs, same answer"""

    def test_repeatable_across_engines(self):
        prompt = "Josh Allen rushes for 1,000 yards this season"
        odds = {make_engine().estimate(prompt).odds for _ in range(5)}
        assert len(odds) == 1

    def test_repeatable_on_one_engine(self, engine):
        prompt = "Bills win the Super Bowl before the Chiefs"
        first = engine.estimate(prompt)
        for _ in range(4):
            assert engine.estimate(prompt).odds == first.odds


class TestCoherence:
    """Monotonic and complementary answers"""

    def test_more_titles_not_more_likely(self, engine):
        two = engine.estimate("Chiefs win 2 Super Bowls")
        one = engine.estimate("Chiefs win 1 Super Bowl")
        assert two.implied_probability <= one.implied_probability

    def test_more_awards_not_more_likely(self, engine):
        two = engine.estimate("Josh Allen wins 2 MVPs")
        one = engine.estimate("Josh Allen wins 1 MVP")
        assert two.implied_probability <= one.implied_probability

    def test_ever_not_below_season(self, engine):
        season = engine.estimate("A team goes 17-0")
        ever = engine.estimate("A team ever goes 17-0")
        assert ever.implied_probability >= season.implied_probability

    def test_race_sides_sum_to_one_hundred(self, engine):
        a = engine.estimate("Bills win the Super Bowl before the Chiefs")
        b = engine.estimate("Chiefs win the Super Bowl before the Bills")
        assert a.implied_probability + b.implied_probability == pytest.approx(100.0, abs=1.5)


class TestDeclines:
    """Sentinel answers for prompts that cannot be priced"""

    def test_empty_prompt(self, engine):
        result = engine.estimate("   ")
        assert result.declined is True
        assert result.source_type == "needs_clarification"
        assert result.odds == "+100000"
        assert result.implied_probability == pytest.approx(0.1)

    def test_named_contradiction(self, engine):
        result = engine.estimate("Chiefs win the Super Bowl and miss the playoffs")
        assert result.declined is True
        assert result.source_type == "inconsistent"
        assert result.odds == "+100000"
        assert result.confidence == "Low"
        assert result.reason

    def test_generic_contradiction_routed_through_fallback(self, engine):
        result = engine.estimate("Team wins the Super Bowl and misses the playoffs")
        assert result.source_type == "inconsistent"
        assert result.declined is True

    @pytest.mark.parametrize("prompt", [
        "Josh Allen throws 30 touchdowns and flies to the moon",
        "Josh Allen throws 30 touchdowns and purple",
    ])
    def test_uninterpretable_clause_is_not_guessed(self, engine, prompt):
        result = engine.estimate(prompt)
        assert result.declined is True
        assert result.source_type == "needs_clarification"
        assert result.reason.startswith("Could not interpret the clause")

    def test_retired_player_is_constraint_violation(self, engine):
        result = engine.estimate("Tom Brady wins MVP")
        assert result.source_type == "constraint_violation"
        assert result.declined is True

    def test_subjective_prompt_is_unsupported(self, engine):
        result = engine.estimate("Who is the greatest QB ever")
        assert result.source_type == "unsupported"
        assert result.declined is True

    def test_declines_are_not_cached(self, engine):
        engine.estimate("Tom Brady wins MVP")
        assert engine.estimate("Tom Brady wins MVP").cache_tier is None

    def test_unexpected_error_becomes_sentinel(self, engine):
        with patch("scenario_odds.engine.normalize_prompt", side_effect=RuntimeError("boom")):
            result = engine.estimate("Chiefs win the Super Bowl")
        assert result.declined is True
        assert result.source_type == "unsupported"
        assert result.prompt == "Chiefs win the Super Bowl"

    def test_resolver_failure_becomes_sentinel(self, engine):
        engine.chain = MagicMock()
        engine.chain.resolve.side_effect = RuntimeError("resolver down")
        result = engine.estimate("Chiefs win the Super Bowl")
        assert result.source_type == "unsupported"


class TestFallbackPath:
    """Measurable prompts the deterministic path cannot parse"""

    def test_heuristic_answer(self, engine):
        result = engine.estimate("Patrick Mahomes wins the Heisman")
        assert not result.declined
        assert result.source_type == "heuristic"
        assert result.confidence == "Low"
        assert ODDS_RE.match(result.odds)

    def test_heuristic_disabled_declines(self):
        engine = ScenarioEngine(
            calibration=CAL,
            fallback=FallbackGateway(CAL, allow_heuristic=False, offline=True),
            stat_history={},
            as_of=AS_OF,
            offline=True,
        )
        result = engine.estimate("Patrick Mahomes wins the Heisman")
        assert result.declined is True


class TestCaching:
    """Ephemeral, canonical and stable tiers"""

    def test_second_call_hits_ephemeral(self, engine):
        first = engine.estimate("Chiefs win the Super Bowl")
        second = engine.estimate("chiefs win the super bowl!")
        assert first.cache_tier is None
        assert second.cache_tier == "ephemeral"
        assert second.odds == first.odds
        assert second.prompt == "chiefs win the super bowl!"

    def test_canonical_outlives_ephemeral(self, engine):
        engine.estimate("Chiefs win the Super Bowl")
        engine.cache.clear(EPHEMERAL)
        assert engine.estimate("Chiefs win the Super Bowl").cache_tier == "canonical"

    def test_stable_tier_for_race(self, engine):
        prompt = "Bills win the Super Bowl before the Chiefs"
        first = engine.estimate(prompt)
        engine.cache.clear(EPHEMERAL)
        engine.cache.clear(CANONICAL)
        again = engine.estimate(prompt)
        assert again.cache_tier == "stable"
        assert again.odds == first.odds

    def test_low_volatility_skips_short_tiers(self, engine):
        prompt = "Bills win the Super Bowl before the Chiefs"
        engine.estimate(prompt)
        assert engine.cache.size(EPHEMERAL) == 0
        assert engine.cache.size(CANONICAL) == 0
        assert engine.estimate(prompt).cache_tier == "stable"

    def test_single_season_prompt_skips_stable(self, engine):
        engine.estimate("Chiefs win the Super Bowl")
        engine.cache.clear(EPHEMERAL)
        engine.cache.clear(CANONICAL)
        assert engine.estimate("Chiefs win the Super Bowl").cache_tier is None


class TestComparatorsAndNumbers:
    """Upper bounds and spelled-out numbers reach the stat models"""

    def test_or_fewer_touchdowns(self, engine):
        fewer = engine.estimate("Josh Allen throws 5 touchdowns or fewer this season")
        more = engine.estimate("Josh Allen throws 5 touchdowns or more this season")
        assert not fewer.declined
        assert "or fewer" in fewer.label
        assert "5+" in more.label
        assert fewer.implied_probability != more.implied_probability

    def test_win_total_or_fewer(self, engine):
        fewer = engine.estimate("Bills win 11 games or fewer this season")
        at_least = engine.estimate("Bills win at least 12 games this season")
        assert fewer.label == "Buffalo Bills win 11 or fewer games"
        assert fewer.implied_probability + at_least.implied_probability == pytest.approx(100.0, abs=1.5)

    def test_compound_number_word(self, engine):
        worded = engine.estimate("Josh Allen throws twenty-five touchdowns this season")
        digits = engine.estimate("Josh Allen throws 25 touchdowns this season")
        assert not worded.declined
        assert "25+" in worded.label
        assert worded.odds == digits.odds


class TestMarketAnchored:
    """Live lines flow through races and the stable tier"""

    RACE = "Bills win the Super Bowl before the Chiefs"
    REVERSE = "Chiefs win the Super Bowl before the Bills"

    def test_asymmetric_race(self):
        engine = make_engine(FakeMarkets({"KC": 20.0, "BUF": 8.0}))
        bills = engine.estimate(self.RACE)
        chiefs = engine.estimate(self.REVERSE)
        assert chiefs.implied_probability > bills.implied_probability
        assert bills.implied_probability + chiefs.implied_probability == pytest.approx(100.0, abs=1.5)
        assert bills.source_type == "market_anchored"
        assert bills.confidence == "High"

    def test_stable_hit_skips_resolvers(self):
        engine = make_engine(FakeMarkets({"KC": 20.0, "BUF": 8.0}))
        with patch.object(engine.chain, "resolve", wraps=engine.chain.resolve) as spy:
            first = engine.estimate(self.RACE)
            calls = spy.call_count
            again = engine.estimate(self.RACE)
        assert calls > 0
        assert spy.call_count == calls
        assert again.cache_tier == "stable"
        assert again.odds == first.odds

    def test_small_move_keeps_stable_entry(self):
        markets = FakeMarkets({"KC": 20.0, "BUF": 8.0})
        engine = make_engine(markets)
        first = engine.estimate(self.RACE)
        markets.lines["KC"] = 20.5
        again = engine.estimate(self.RACE)
        assert again.cache_tier == "stable"
        assert again.odds == first.odds

    def test_market_drift_forces_recompute(self):
        markets = FakeMarkets({"KC": 20.0, "BUF": 8.0})
        engine = make_engine(markets)
        first = engine.estimate(self.RACE)
        markets.lines["KC"] = 30.0
        again = engine.estimate(self.RACE)
        assert again.cache_tier is None
        assert again.implied_probability < first.implied_probability


class TestBackgroundRefresh:
    """Engine-owned refresh scheduler"""

    def test_start_once(self, engine):
        with patch("scenario_odds.engine.BackgroundRefresher") as refresher_cls:
            first = engine.start_refresh()
            second = engine.start_refresh()
        refresher_cls.assert_called_once_with(engine)
        first.start.assert_called_once()
        assert second is first

    def test_stop(self, engine):
        with patch("scenario_odds.engine.BackgroundRefresher"):
            refresher = engine.start_refresh()
        engine.stop_refresh()
        refresher.shutdown.assert_called_once()
        assert engine.refresher is None
        engine.stop_refresh()

    def test_scheduler_runs_inside_event_loop(self, engine):
        async def run():
            refresher = engine.start_refresh()
            try:
                return refresher.scheduler.running, sorted(job.id for job in refresher.scheduler.get_jobs())
            finally:
                engine.stop_refresh()

        running, ids = asyncio.run(run())
        assert running is True
        assert ids == ["market_refresh", "roster_refresh"]


class TestDescriptorHelpers:
    """Volatility classification and entity walks"""

    def test_race_is_low_volatility(self):
        assert is_low_volatility(RaceBefore(first=BUF, second=KC, market="super_bowl_winner"))

    def test_single_season_market_is_volatile(self):
        assert not is_low_volatility(TeamMarket(team=KC, market="super_bowl_winner"))
        assert is_low_volatility(TeamMarket(team=KC, market="super_bowl_winner", seasons=5))

    def test_awards(self):
        assert not is_low_volatility(PlayerAward(player=ALLEN, award="mvp"))
        assert is_low_volatility(PlayerAward(player=ALLEN, award="mvp", count=2, horizon="career"))

    def test_season_stat_is_volatile(self):
        stat = PlayerStatThreshold(player=ALLEN, metric="rushing_yards", threshold=1000)
        assert not is_low_volatility(stat)

    def test_composite_needs_every_clause(self):
        race = RaceBefore(first=BUF, second=KC, market="super_bowl_winner")
        window = TeamMarket(team=KC, market="super_bowl_winner", seasons=5)
        season = TeamMarket(team=KC, market="super_bowl_winner")
        assert is_low_volatility(AllOf(clauses=(race, window)))
        assert not is_low_volatility(AllOf(clauses=(race, season)))

    def test_entities_walk_composites(self):
        composite = AllOf(clauses=(
            TeamMarket(team=KC, market="super_bowl_winner"),
            PlayerAward(player=ALLEN, award="mvp"),
        ))
        assert list(descriptor_entities(composite)) == [KC, ALLEN]

    def test_race_names_both_teams(self):
        race = RaceBefore(first=BUF, second=KC, market="super_bowl_winner")
        assert list(descriptor_entities(race)) == [BUF, KC]
