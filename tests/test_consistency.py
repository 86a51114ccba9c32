"""
Tests for services/consistency.py
Run with: pytest tests/test_consistency.py -v
"""

import asyncio
from datetime import date

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    INCONSISTENT,
    UNSUPPORTED,
    AllOf,
    Conditional,
    Declined,
    Estimate,
    OneOf,
    Player,
    PlayerAward,
    PlayerStatThreshold,
    ResolutionContext,
    Resolved,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
)
from scenario_odds.services.consistency import (
    ConsistencyEnforcer,
    check_contradictions,
    clean_rationale,
    publish,
    season_variant,
    single_variant,
)
from scenario_odds.services.team_mapping import team_by_abbreviation

CAL = CalibrationConfig.default()
KC = team_by_abbreviation("KC")
MAHOMES = Player(name="Patrick Mahomes", team="KC", position="QB", status="active", experience_years=8, age=30)
ALLEN = Player(name="Josh Allen", team="BUF", position="QB", status="active", experience_years=7, age=29)

KC_SB = TeamMarket(team=KC, market="super_bowl_winner")
KC_MISS = TeamPlayoff(team=KC, outcome="miss")
KC_MAKE = TeamPlayoff(team=KC, outcome="make")


def estimate(pct, label="x"):
    return Estimate(probability_pct=pct, confidence="Medium", source_type="statistical", label=label)


class TestContradictions:
    """Clauses that cannot hold together"""

    def test_title_and_missed_playoffs(self):
        declined = check_contradictions(AllOf(clauses=(KC_SB, KC_MISS)))
        assert declined.kind == INCONSISTENT

    def test_make_and_miss(self):
        assert check_contradictions(AllOf(clauses=(KC_MAKE, KC_MISS))).kind == INCONSISTENT

    def test_two_single_winners(self):
        both = AllOf(clauses=(PlayerAward(player=MAHOMES, award="mvp"), PlayerAward(player=ALLEN, award="mvp")))
        assert check_contradictions(both).kind == INCONSISTENT

    def test_win_totals(self):
        both = AllOf(clauses=(
            TeamWinTotal(team=KC, comparator=">=", wins=12),
            TeamWinTotal(team=KC, comparator="<=", wins=9),
        ))
        assert check_contradictions(both).kind == INCONSISTENT

    def test_stat_thresholds(self):
        both = AllOf(clauses=(
            PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=40),
            PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=30, comparator="<="),
        ))
        assert check_contradictions(both).kind == INCONSISTENT

    def test_conditional_sides_checked(self):
        assert check_contradictions(Conditional(given=KC_SB, then=KC_MISS)).kind == INCONSISTENT

    def test_disjunction_not_checked(self):
        assert check_contradictions(OneOf(clauses=(KC_SB, KC_MISS))) is None

    def test_compatible(self):
        assert check_contradictions(AllOf(clauses=(KC_SB, PlayerAward(player=MAHOMES, award="mvp")))) is None


class TestVariants:
    """Reference variants for monotonicity"""

    def test_single_variant(self):
        two = PlayerAward(player=ALLEN, award="mvp", count=2, exact=True, horizon="career")
        single = single_variant(two)
        assert (single.count, single.exact) == (1, False)
        assert single_variant(KC_SB) is None

    def test_season_variant(self):
        assert season_variant(WildcardCohort(cohort="perfect_season", horizon="ever")).horizon == "season"
        window = TeamMarket(team=KC, market="super_bowl_winner", seasons=5, horizon="multi_year")
        assert season_variant(window).seasons == 1
        assert season_variant(KC_SB) is None


class TestEnforcer:
    """Atomic repairs"""

    @staticmethod
    def run(descriptor, pct, table):
        async def resolve(desc, context):
            if desc in table:
                return Resolved(estimate(table[desc]))
            return Declined(UNSUPPORTED, "no")

        ctx = ResolutionContext(as_of=date(2025, 9, 1), calibration=CAL)
        enforcer = ConsistencyEnforcer(CAL.monotonic_damping)
        return asyncio.run(enforcer.enforce(descriptor, Resolved(estimate(pct)), resolve, ctx))

    def test_monotonic_cap(self):
        two = PlayerAward(player=ALLEN, award="mvp", count=2, horizon="career")
        one = PlayerAward(player=ALLEN, award="mvp", count=1, horizon="career")
        outcome = self.run(two, 30.0, {one: 20.0})
        assert outcome.estimate.probability_pct == pytest.approx(20.0 * 0.92)
        assert "consistency:monotonic_cap" in outcome.estimate.trace

    def test_cap_leaves_consistent_values(self):
        two = PlayerAward(player=ALLEN, award="mvp", count=2, horizon="career")
        one = PlayerAward(player=ALLEN, award="mvp", count=1, horizon="career")
        outcome = self.run(two, 5.0, {one: 20.0})
        assert outcome.estimate.probability_pct == pytest.approx(5.0)

    def test_horizon_floor(self):
        ever = PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=40, horizon="ever")
        season = PlayerStatThreshold(player=ALLEN, metric="passing_tds", threshold=40)
        outcome = self.run(ever, 5.0, {season: 8.0})
        assert outcome.estimate.probability_pct == pytest.approx(8.0)
        assert "consistency:horizon_floor" in outcome.estimate.trace

    def test_declined_passes_through(self):
        ctx = ResolutionContext(as_of=date(2025, 9, 1), calibration=CAL)
        declined = Declined(UNSUPPORTED, "no")
        outcome = asyncio.run(ConsistencyEnforcer(0.92).enforce(KC_SB, declined, None, ctx))
        assert outcome is declined


class TestOutputContract:
    """Odds and rationale published from the final probability"""

    def test_publish(self):
        odds, implied, rationale = publish(
            Estimate(25.0, "High", "market_anchored", "x", assumptions=("Anchored to the line.",))
        )
        assert odds == "+300"
        assert implied == pytest.approx(25.0)
        assert rationale == "Anchored to the line."

    def test_rationale_strips_numbers_that_look_like_odds(self):
        text = clean_rationale(["The line is +450 (12.5%) today."])
        assert "+450" not in text
        assert "%" not in text

    def test_rationale_sentence_limit(self):
        text = clean_rationale(["One. Two. Three. Four."])
        assert text == "One. Two. Three."
