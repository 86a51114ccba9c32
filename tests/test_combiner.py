"""
Tests for services/combiner.py
Run with: pytest tests/test_combiner.py -v
"""

import asyncio
from datetime import date

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    UNSUPPORTED,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    Estimate,
    OneOf,
    Player,
    PlayerAward,
    ResolutionContext,
    Resolved,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
)
from scenario_odds.services.combiner import (
    CompositeCombiner,
    conditional_probability,
    implies,
    linked,
    mutually_exclusive,
    union_probability,
)
from scenario_odds.services.team_mapping import team_by_abbreviation

CAL = CalibrationConfig.default()
KC = team_by_abbreviation("KC")
BUF = team_by_abbreviation("BUF")
MAHOMES = Player(name="Patrick Mahomes", team="KC", position="QB", status="active", experience_years=8, age=30)

KC_SB = TeamMarket(team=KC, market="super_bowl_winner")
BUF_SB = TeamMarket(team=BUF, market="super_bowl_winner")
KC_AFC = TeamMarket(team=KC, market="afc_winner")
KC_PLAYOFFS = TeamPlayoff(team=KC, outcome="make")
BUF_PLAYOFFS = TeamPlayoff(team=BUF, outcome="make")
MAHOMES_MVP = PlayerAward(player=MAHOMES, award="mvp")


def make_combiner(table, confidence=None):
    confidence = confidence or {}

    async def resolve(descriptor, context):
        if descriptor not in table:
            return Declined(UNSUPPORTED, "not priced")
        return Resolved(
            Estimate(
                probability_pct=table[descriptor],
                confidence=confidence.get(descriptor, "High"),
                source_type="market_anchored",
                label=descriptor.label,
                assumptions=("Shared assumption.",),
                trace=("resolver:Fake",),
                event_key=descriptor.event_key,
            )
        )

    return CompositeCombiner(resolve)


def evaluate(descriptor, table, confidence=None):
    ctx = ResolutionContext(as_of=date(2025, 9, 1), calibration=CAL)
    return asyncio.run(make_combiner(table, confidence).evaluate(descriptor, ctx))


class TestAnd:
    """Joint probability with dependence and implication"""

    def test_independent(self):
        outcome = evaluate(AllOf(clauses=(KC_SB, BUF_PLAYOFFS)), {KC_SB: 20.0, BUF_PLAYOFFS: 50.0})
        assert outcome.estimate.probability_pct == pytest.approx(10.0)
        assert outcome.estimate.source_type == "composite"

    def test_linked_dependence(self):
        outcome = evaluate(AllOf(clauses=(MAHOMES_MVP, KC_SB)), {MAHOMES_MVP: 20.0, KC_SB: 20.0})
        assert outcome.estimate.probability_pct == pytest.approx(20.0 * 0.2 * 1.35)

    def test_capped_at_weakest_clause(self):
        outcome = evaluate(AllOf(clauses=(MAHOMES_MVP, KC_SB)), {MAHOMES_MVP: 90.0, KC_SB: 95.0})
        assert outcome.estimate.probability_pct == pytest.approx(90.0)

    def test_implied_clause_dropped(self):
        outcome = evaluate(AllOf(clauses=(KC_SB, KC_PLAYOFFS)), {KC_SB: 15.0, KC_PLAYOFFS: 80.0})
        assert outcome.estimate.probability_pct == pytest.approx(15.0)

    def test_weakest_confidence(self):
        outcome = evaluate(
            AllOf(clauses=(KC_SB, BUF_PLAYOFFS)),
            {KC_SB: 20.0, BUF_PLAYOFFS: 50.0},
            {BUF_PLAYOFFS: "Low"},
        )
        assert outcome.estimate.confidence == "Low"

    def test_assumptions_deduplicated(self):
        outcome = evaluate(AllOf(clauses=(KC_SB, BUF_PLAYOFFS)), {KC_SB: 20.0, BUF_PLAYOFFS: 50.0})
        assert outcome.estimate.assumptions.count("Shared assumption.") == 1
        assert outcome.estimate.trace[0] == "combine:and"

    def test_declined_clause_propagates(self):
        outcome = evaluate(AllOf(clauses=(KC_SB, BUF_PLAYOFFS)), {KC_SB: 20.0})
        assert isinstance(outcome, Declined)


class TestOr:
    """Exclusive sums and independence unions"""

    def test_single_winner_sum(self):
        outcome = evaluate(OneOf(clauses=(KC_SB, BUF_SB)), {KC_SB: 20.0, BUF_SB: 15.0})
        assert outcome.estimate.probability_pct == pytest.approx(35.0)
        assert outcome.estimate.trace[0] == "combine:exclusive_sum"

    def test_any_of_list(self):
        descriptor = AnyOf(
            entities=("the chiefs", "the bills"),
            outcome_suffix="win the super bowl",
            clauses=(KC_SB, BUF_SB),
        )
        outcome = evaluate(descriptor, {KC_SB: 20.0, BUF_SB: 15.0})
        assert outcome.estimate.probability_pct == pytest.approx(35.0)

    def test_independent_union(self):
        outcome = evaluate(OneOf(clauses=(KC_PLAYOFFS, BUF_PLAYOFFS)), {KC_PLAYOFFS: 80.0, BUF_PLAYOFFS: 50.0})
        assert outcome.estimate.probability_pct == pytest.approx(90.0)

    def test_union_helper_caps(self):
        estimates = [Estimate(60.0, "High", "x", "a"), Estimate(60.0, "High", "x", "b")]
        assert union_probability([KC_SB, BUF_SB], estimates) == pytest.approx(99.9)


class TestConditional:
    """P(then | given)"""

    def test_joint_over_given(self):
        outcome = evaluate(
            Conditional(given=KC_AFC, then=MAHOMES_MVP), {KC_AFC: 30.0, MAHOMES_MVP: 20.0}
        )
        joint = 30.0 * 0.2 * 1.35
        assert outcome.estimate.probability_pct == pytest.approx(joint / 30.0 * 100.0)
        assert outcome.estimate.trace[0] == "combine:conditional"

    def test_bounds(self):
        assert conditional_probability(5.0, 5.0, 0.1) == pytest.approx(99.0)
        assert conditional_probability(0.001, 50.0, 0.1) == pytest.approx(1.0)

    def test_epsilon_floor(self):
        assert conditional_probability(0.01, 0.0, 0.1) == pytest.approx(10.0)


class TestRelations:
    """Clause relations"""

    def test_linked(self):
        assert linked(MAHOMES_MVP, KC_SB)
        assert not linked(KC_SB, BUF_SB)

    def test_mutually_exclusive(self):
        assert mutually_exclusive([KC_SB, BUF_SB])
        assert not mutually_exclusive([KC_SB, KC_AFC])
        assert not mutually_exclusive([KC_SB])

    def test_title_implies_playoffs(self):
        assert implies(KC_SB, KC_PLAYOFFS)
        assert implies(KC_SB, KC_AFC)
        assert not implies(KC_SB, BUF_PLAYOFFS)
        assert not implies(KC_PLAYOFFS, KC_SB)

    def test_win_totals(self):
        twelve = TeamWinTotal(team=KC, comparator=">=", wins=12)
        ten = TeamWinTotal(team=KC, comparator=">=", wins=10)
        assert implies(twelve, ten)
        assert not implies(ten, twelve)
