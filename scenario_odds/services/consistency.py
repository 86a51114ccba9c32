"""
Consistency enforcement: contradictions, monotonicity and the output contract.

  check_contradictions   composite descriptor -> Declined(inconsistent) | None
  ConsistencyEnforcer    atomic estimate repairs:
                           n-fold achievements capped at single * damping
                           career / ever never below the season version
  publish                estimate -> (odds, implied probability, rationale)

Odds are always derived from the final probability and the published
probability is re-derived from those odds, so the pair is consistent by
construction.
"""

import dataclasses
import itertools
import logging
import re
from typing import Awaitable, Callable, List, Optional, Tuple

from scenario_odds.core.interfaces import (
    INCONSISTENT,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    Descriptor,
    Estimate,
    OneOf,
    Outcome,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    ResolutionContext,
    Resolved,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
)
from scenario_odds.core.odds_math import clamp_pct, odds_and_probability
from scenario_odds.services.combiner import is_single_winner

logger = logging.getLogger(__name__)

MAX_RATIONALE_SENTENCES = 3

# Odds lines ("+450", "-120") and percentages ("12.5%") never appear in text.
_ODDS_LIKE = re.compile(r"(?<![\w.])[+-]\d{3,}\b|\b\d+(?:\.\d+)?\s*%")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

_TITLE_MARKETS = frozenset({"super_bowl_winner", "afc_winner", "nfc_winner"})


# ---------------------------------------------------------------------------
# Contradictions
# ---------------------------------------------------------------------------

def conjuncts(descriptor: Descriptor) -> List[Descriptor]:
    """Atomic clauses that must all hold (AND and conditional sides)."""
    if isinstance(descriptor, AllOf):
        out: List[Descriptor] = []
        for clause in descriptor.clauses:
            out.extend(conjuncts(clause))
        return out
    if isinstance(descriptor, Conditional):
        return conjuncts(descriptor.given) + conjuncts(descriptor.then)
    if isinstance(descriptor, (OneOf, AnyOf)):
        return []
    return [descriptor]


def _win_totals_clash(a: TeamWinTotal, b: TeamWinTotal) -> bool:
    lo_a, hi_a = _win_range(a)
    lo_b, hi_b = _win_range(b)
    return max(lo_a, lo_b) > min(hi_a, hi_b)


def _win_range(total: TeamWinTotal) -> Tuple[int, int]:
    if total.comparator == ">=":
        return total.wins, 10 ** 6
    if total.comparator == "<=":
        return 0, total.wins
    return total.wins, total.wins


def contradiction(a: Descriptor, b: Descriptor) -> Optional[str]:
    """Reason the two clauses cannot both happen, or None."""
    for x, y in ((a, b), (b, a)):
        if (
            isinstance(x, TeamMarket)
            and x.market in _TITLE_MARKETS
            and x.seasons <= 1
            and isinstance(y, TeamPlayoff)
            and y.outcome == "miss"
            and x.team == y.team
        ):
            return f"The {x.team.name} cannot win a title while missing the playoffs."
    if isinstance(a, TeamPlayoff) and isinstance(b, TeamPlayoff) and a.team == b.team:
        if a.outcome != b.outcome:
            return f"The {a.team.name} cannot both make and miss the playoffs."
    if (
        is_single_winner(a)
        and is_single_winner(b)
        and a.event_key == b.event_key
        and not (a.entity_keys() & b.entity_keys())
    ):
        return f"Only one winner is possible for {a.label} / {b.label}."
    if isinstance(a, TeamWinTotal) and isinstance(b, TeamWinTotal) and a.team == b.team:
        if _win_totals_clash(a, b):
            return f"The {a.team.name} win totals are incompatible."
    if (
        isinstance(a, PlayerStatThreshold)
        and isinstance(b, PlayerStatThreshold)
        and a.player == b.player
        and a.metric == b.metric
        and a.partner is None
        and b.partner is None
        and a.horizon == b.horizon == "season"
    ):
        lows = [d.threshold for d in (a, b) if d.comparator == ">="]
        highs = [d.threshold for d in (a, b) if d.comparator == "<="]
        if lows and highs and max(lows) > min(highs):
            return f"{a.player.name} cannot reach both thresholds."
    return None


def check_contradictions(descriptor: Descriptor) -> Optional[Declined]:
    """Declined(inconsistent) when two required clauses exclude each other."""
    clauses = conjuncts(descriptor)
    for a, b in itertools.combinations(clauses, 2):
        reason = contradiction(a, b)
        if reason:
            logger.debug("Contradiction: %s", reason)
            return Declined(INCONSISTENT, reason)
    return None


# ---------------------------------------------------------------------------
# Monotonicity
# ---------------------------------------------------------------------------

def single_variant(descriptor: Descriptor) -> Optional[Descriptor]:
    """The one-time version of an n-fold achievement, or None."""
    if isinstance(descriptor, (PlayerAward, TeamMarket)) and descriptor.count > 1:
        if isinstance(descriptor, PlayerAward):
            return dataclasses.replace(descriptor, count=1, exact=False)
        return dataclasses.replace(descriptor, count=1)
    return None


def season_variant(descriptor: Descriptor) -> Optional[Descriptor]:
    """The single-season version of a longer-horizon event, or None."""
    if isinstance(descriptor, PlayerStatThreshold) and descriptor.horizon in {"career", "ever"}:
        return dataclasses.replace(descriptor, horizon="season")
    if isinstance(descriptor, WildcardCohort) and descriptor.horizon in {"career", "ever"}:
        return dataclasses.replace(descriptor, horizon="season")
    if (
        isinstance(descriptor, PlayerCareerEvent)
        and descriptor.event == "retirement"
        and descriptor.horizon in {"career", "ever"}
    ):
        return dataclasses.replace(descriptor, horizon="season")
    if isinstance(descriptor, TeamMarket) and descriptor.count == 1 and descriptor.seasons > 1:
        return dataclasses.replace(descriptor, seasons=1, horizon="season")
    return None


class ConsistencyEnforcer:
    """Repairs atomic estimates against the monotonicity invariants."""

    def __init__(self, damping: float):
        self.damping = damping

    async def enforce(
        self,
        descriptor: Descriptor,
        outcome: Outcome,
        resolve: Callable[[Descriptor, ResolutionContext], Awaitable[Outcome]],
        context: ResolutionContext,
    ) -> Outcome:
        if not isinstance(outcome, Resolved):
            return outcome
        estimate = outcome.estimate

        single = single_variant(descriptor)
        if single is not None:
            base = await resolve(single, context)
            if isinstance(base, Resolved):
                cap = base.estimate.probability_pct * self.damping
                if estimate.probability_pct > cap:
                    logger.debug("Monotonic cap %.2f -> %.2f", estimate.probability_pct, cap)
                    estimate = _with_pct(estimate, cap, "consistency:monotonic_cap")

        shorter = season_variant(descriptor)
        if shorter is not None:
            base = await resolve(shorter, context)
            if isinstance(base, Resolved) and base.estimate.probability_pct > estimate.probability_pct:
                estimate = _with_pct(
                    estimate, base.estimate.probability_pct, "consistency:horizon_floor"
                )
        return Resolved(estimate)


def _with_pct(estimate: Estimate, pct: float, step: str) -> Estimate:
    return dataclasses.replace(
        estimate, probability_pct=clamp_pct(pct), trace=estimate.trace + (step,)
    )


# ---------------------------------------------------------------------------
# Output contract
# ---------------------------------------------------------------------------

def clean_rationale(lines: List[str], limit: int = MAX_RATIONALE_SENTENCES) -> str:
    """At most ``limit`` sentences with every odds-looking number removed."""
    sentences: List[str] = []
    for line in lines:
        for sentence in _SENTENCE_END.split(line.strip()):
            sentence = _ODDS_LIKE.sub("", sentence)
            sentence = re.sub(r"\(\s*\)", "", sentence)
            sentence = re.sub(r"\s{2,}", " ", sentence).strip()
            if sentence:
                sentences.append(sentence)
    return " ".join(sentences[:limit])


def publish(estimate: Estimate) -> Tuple[str, float, str]:
    """Final ``(odds, implied probability pct, rationale)`` for an estimate."""
    odds, implied = odds_and_probability(estimate.probability_pct)
    return odds, implied, clean_rationale(list(estimate.assumptions))
