"""
Composite combiner for AND / OR / conditional / any-of scenarios.

Joint probabilities start from the independence product and are adjusted by
the dependence-factor table in the calibration bundle.  The table is a
hand-tuned heuristic keyed on the pair of clause kinds and on whether the
two clauses share an entity ("linked").

Rules
-----
  AND          drop clauses implied by another clause, then
               P = prod(p_i) * prod(factor(pair)), capped at min(p_i)
  OR / any_of  sum when every clause is the same single-winner market for
               different entities (mutually exclusive), else 1 - prod(1 - p_i)
  conditional  P(then | given) = P(given AND then) / max(eps, P(given)),
               clamped to [1, 99]

Every composite carries the weakest constituent confidence and
source_type "composite".
"""

import itertools
import logging
from typing import Awaitable, Callable, List, Tuple

from scenario_odds.core.interfaces import (
    SINGLE_WINNER_AWARDS,
    UNSUPPORTED_COMPOSITE,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    Descriptor,
    Estimate,
    OneOf,
    Outcome,
    PlayerAward,
    ResolutionContext,
    Resolved,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    weakest_confidence,
)
from scenario_odds.core.odds_math import clamp, clamp_pct

logger = logging.getLogger(__name__)

AtomicResolver = Callable[[Descriptor, ResolutionContext], Awaitable[Outcome]]

# Conditional results never claim near-certainty in either direction.
CONDITIONAL_BOUNDS = (1.0, 99.0)

_TITLE_MARKETS = frozenset({"super_bowl_winner", "afc_winner", "nfc_winner"})


# ---------------------------------------------------------------------------
# Clause relations
# ---------------------------------------------------------------------------

def linked(a: Descriptor, b: Descriptor) -> bool:
    """Two clauses are linked when they involve a common player or team."""
    return bool(a.entity_keys() & b.entity_keys())


def is_single_winner(descriptor: Descriptor) -> bool:
    """One-season markets that exactly one entity can win."""
    if isinstance(descriptor, TeamMarket):
        return descriptor.count == 1 and descriptor.seasons <= 1
    if isinstance(descriptor, PlayerAward):
        return (
            descriptor.award in SINGLE_WINNER_AWARDS
            and descriptor.horizon == "season"
            and descriptor.count == 1
        )
    return False


def mutually_exclusive(clauses: List[Descriptor]) -> bool:
    """Same single-winner event for pairwise different entities."""
    if len(clauses) < 2 or not all(is_single_winner(c) for c in clauses):
        return False
    if len({c.event_key for c in clauses}) != 1:
        return False
    for a, b in itertools.combinations(clauses, 2):
        if linked(a, b):
            return False
    return True


def implies(a: Descriptor, b: Descriptor) -> bool:
    """True when ``a`` happening guarantees ``b`` (same season, same team)."""
    if a == b:
        return True
    if isinstance(a, TeamMarket) and a.seasons <= 1 and a.count == 1:
        same_team = getattr(b, "team", None) == a.team
        if a.market in _TITLE_MARKETS and isinstance(b, TeamPlayoff):
            return same_team and b.outcome == "make"
        if (
            a.market == "super_bowl_winner"
            and isinstance(b, TeamMarket)
            and b.market in {"afc_winner", "nfc_winner"}
            and b.seasons <= 1
            and b.count == 1
        ):
            return same_team
    if isinstance(a, TeamWinTotal) and isinstance(b, TeamWinTotal) and a.team == b.team:
        if a.comparator in {">=", "=="} and b.comparator == ">=":
            return a.wins >= b.wins
        if a.comparator in {"<=", "=="} and b.comparator == "<=":
            return a.wins <= b.wins
    return False


def drop_implied(pairs: List[Tuple[Descriptor, Estimate]]) -> List[Tuple[Descriptor, Estimate]]:
    """Remove every clause implied by another surviving clause."""
    kept: List[Tuple[Descriptor, Estimate]] = []
    for i, (desc, est) in enumerate(pairs):
        implied = any(
            implies(other, desc) and (other != desc or j < i)
            for j, (other, _) in enumerate(pairs)
            if j != i
        )
        if not implied:
            kept.append((desc, est))
    return kept


# ---------------------------------------------------------------------------
# Pure combination rules (probabilities in percent)
# ---------------------------------------------------------------------------

def joint_probability(
    pairs: List[Tuple[Descriptor, Estimate]],
    dependence_factor: Callable[[str, str, bool], float],
) -> float:
    """AND of the clauses after implication dropping."""
    kept = drop_implied(pairs)
    joint = 1.0
    for _, est in kept:
        joint *= est.probability_pct / 100.0
    for (a, _), (b, _) in itertools.combinations(kept, 2):
        joint *= dependence_factor(a.kind, b.kind, linked(a, b))
    ceiling = min(est.probability_pct for _, est in kept) / 100.0
    return min(joint, ceiling) * 100.0


def union_probability(clauses: List[Descriptor], estimates: List[Estimate]) -> float:
    """OR of the clauses: sum when mutually exclusive, else independence union."""
    if mutually_exclusive(clauses):
        return min(sum(e.probability_pct for e in estimates), 99.9)
    miss = 1.0
    for est in estimates:
        miss *= 1.0 - est.probability_pct / 100.0
    return (1.0 - miss) * 100.0


def conditional_probability(joint_pct: float, given_pct: float, epsilon_pct: float) -> float:
    return clamp(joint_pct / max(epsilon_pct, given_pct) * 100.0, *CONDITIONAL_BOUNDS)


# ---------------------------------------------------------------------------
# Combiner
# ---------------------------------------------------------------------------

class CompositeCombiner:
    """Evaluates composite descriptors by resolving their atomic clauses."""

    def __init__(self, resolve_atomic: AtomicResolver):
        self.resolve_atomic = resolve_atomic

    async def evaluate(self, descriptor: Descriptor, context: ResolutionContext) -> Outcome:
        if not descriptor.is_composite:
            return await self.resolve_atomic(descriptor, context)

        if isinstance(descriptor, Conditional):
            return await self._conditional(descriptor, context)

        outcomes = [await self.evaluate(c, context) for c in descriptor.clauses]
        for outcome in outcomes:
            if isinstance(outcome, Declined):
                return outcome
        estimates = [o.estimate for o in outcomes]
        clauses = list(descriptor.clauses)

        if isinstance(descriptor, AllOf):
            pct = joint_probability(
                list(zip(clauses, estimates)), context.calibration.dependence_factor
            )
            rule = "and"
        elif isinstance(descriptor, (OneOf, AnyOf)):
            pct = union_probability(clauses, estimates)
            rule = "exclusive_sum" if mutually_exclusive(clauses) else "union"
        else:
            return Declined(UNSUPPORTED_COMPOSITE, f"No combination rule for {descriptor.kind}.")

        logger.debug("Combined %d clauses with %s -> %.2f%%", len(clauses), rule, pct)
        return Resolved(self._composite(descriptor, pct, estimates, rule))

    async def _conditional(self, descriptor: Conditional, context: ResolutionContext) -> Outcome:
        given = await self.evaluate(descriptor.given, context)
        if isinstance(given, Declined):
            return given
        joint = await self.evaluate(AllOf(clauses=(descriptor.given, descriptor.then)), context)
        if isinstance(joint, Declined):
            return joint
        then = await self.evaluate(descriptor.then, context)
        if isinstance(then, Declined):
            return then
        pct = conditional_probability(
            joint.estimate.probability_pct,
            given.estimate.probability_pct,
            context.calibration.conditional_epsilon_pct,
        )
        return Resolved(
            self._composite(descriptor, pct, [given.estimate, then.estimate], "conditional")
        )

    @staticmethod
    def _composite(
        descriptor: Descriptor,
        pct: float,
        estimates: List[Estimate],
        rule: str,
    ) -> Estimate:
        assumptions: List[str] = []
        for est in estimates:
            for line in est.assumptions:
                if line not in assumptions:
                    assumptions.append(line)
        if rule == "and":
            assumptions.insert(0, "Joint probability with dependence adjustment between clauses.")
        elif rule == "exclusive_sum":
            assumptions.insert(0, "Outcomes are mutually exclusive; probabilities are added.")
        elif rule == "union":
            assumptions.insert(0, "Union of outcomes under an independence approximation.")
        else:
            assumptions.insert(0, "Conditional probability from the joint over the condition.")
        return Estimate(
            probability_pct=clamp_pct(pct),
            confidence=weakest_confidence(*(e.confidence for e in estimates)),
            source_type="composite",
            label=descriptor.label,
            assumptions=tuple(assumptions),
            trace=(f"combine:{rule}",) + tuple(
                step for e in estimates for step in e.trace if step.startswith("resolver:")
            ),
            event_key=descriptor.event_key,
        )
