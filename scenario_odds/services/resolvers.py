"""
Outcome resolvers and the priority chain that runs them.

Each resolver prices one atomic descriptor kind.  The chain asks resolvers
in RESOLVER_PRIORITY order; the first one that returns a result wins.
Composite descriptors never reach the chain (see combiner.py).

Confidence policy
-----------------
  market_anchored       live reference line -> High,
                        related-market scaling -> Medium,
                        per-market default -> Low
  statistical           3+ seasons of history -> High, 1-2 -> Medium,
                        priors only -> Low
  historical_baseline   per resolver (cohort and Hall of Fame tables are
                        High, playoff make-rates Medium, win totals Low)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from scenario_odds.core.career_models import (
    any_season_pct,
    award_count_pct,
    award_season_pct,
    career_super_bowl_pct,
    hall_of_fame_pct,
    retirement_pct,
    season_mvp_pct,
    years_remaining,
)
from scenario_odds.core.interfaces import (
    BaseResolver,
    Declined,
    Descriptor,
    Estimate,
    Outcome,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    RaceBefore,
    ResolutionContext,
    Resolved,
    Team,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
    UNSUPPORTED,
    weakest_confidence,
)
from scenario_odds.core.odds_math import clamp, clamp_pct
from scenario_odds.core.stat_models import (
    SUPPORTED_METRICS,
    combined_threshold_probability,
    season_mean,
    stat_confidence,
    threshold_probability,
)
from scenario_odds.core.team_models import (
    cohort_season_pct,
    horizon_adjusted_pct,
    multi_year_title_pct,
    playoff_pct,
    race_pcts,
    title_count_pct,
    win_total_pct,
)
from scenario_odds.services.team_mapping import team_by_abbreviation

logger = logging.getLogger(__name__)

# Season pct bounds for a market quote derived by scaling another market.
_SCALED_BOUNDS = (0.2, 90.0)


# ---------------------------------------------------------------------------
# Market quotes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarketQuote:
    """Season probability for one (market, team) pair and where it came from."""

    market: str
    team: Team
    pct: float
    confidence: str
    basis: str  # "live" | "scaled" | "default"
    provider: str = ""

    @property
    def anchored(self) -> bool:
        return self.basis == "live"


def _conference_market(team: Team) -> str:
    return "afc_winner" if team.conference == "AFC" else "nfc_winner"


async def _live_pct(market: str, team: Team, context: ResolutionContext) -> Optional[tuple]:
    if context.markets is None:
        return None
    ref = await context.markets.reference(market, team)
    if ref is None:
        return None
    return ref.implied_probability_pct, ref.provider_label


async def season_market_quote(market: str, team: Team, context: ResolutionContext) -> MarketQuote:
    """
    Season probability for ``team`` winning ``market``.

    Live reference line first, then the related market scaled by a fixed
    factor, then the per-market default.
    """
    cal = context.calibration
    live = await _live_pct(market, team, context)
    if live is not None:
        return MarketQuote(market, team, live[0], "High", "live", live[1])

    related = cal.related_market_scaling.get(market)
    if related is not None:
        source, factor = related
        if source == "conference_winner":
            source = _conference_market(team)
        live = await _live_pct(source, team, context)
        if live is not None:
            pct = clamp(live[0] * factor, *_SCALED_BOUNDS)
            return MarketQuote(market, team, pct, "Medium", "scaled", live[1])

    pct = cal.market_default_pct.get(market, cal.market_default_pct["super_bowl_winner"])
    return MarketQuote(market, team, pct, "Low", "default")


def _quote_assumption(quote: MarketQuote) -> str:
    if quote.basis == "live":
        return f"Anchored to the live {quote.market.replace('_', ' ')} line ({quote.provider})."
    if quote.basis == "scaled":
        return f"Derived from a related market line ({quote.provider}) by a fixed scaling factor."
    return "Live line unavailable; per-market season baseline used."


def _estimate(
    descriptor: Descriptor,
    pct: float,
    confidence: str,
    source_type: str,
    assumptions: Sequence[str] = (),
    trace: Sequence[str] = (),
) -> Resolved:
    return Resolved(
        Estimate(
            probability_pct=clamp_pct(pct),
            confidence=confidence,
            source_type=source_type,
            label=descriptor.label,
            assumptions=tuple(assumptions),
            trace=tuple(trace),
            event_key=descriptor.event_key,
        )
    )


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------

class CohortResolver(BaseResolver):
    """League-wide events with no specific entity."""

    name = "CohortResolver"
    kinds = frozenset({WildcardCohort.kind})

    async def try_resolve(self, descriptor, context):
        cal = context.calibration
        try:
            season = cohort_season_pct(descriptor.cohort, descriptor.threshold, cal)
        except ValueError:
            return None
        pct = horizon_adjusted_pct(season, descriptor.horizon, cal)
        return _estimate(
            descriptor, pct, "High", "historical_baseline",
            assumptions=[
                "League-wide historical baseline for this event.",
                "Season rate expanded over the requested horizon." if descriptor.horizon != "season"
                else "Single-season rate.",
            ],
            trace=[f"cohort:{descriptor.cohort}", f"season_pct:{season:.2f}"],
        )


class MarketAnchoredResolver(BaseResolver):
    """Single-winner team markets, including multi-year and multi-title windows."""

    name = "MarketAnchoredResolver"
    kinds = frozenset({TeamMarket.kind})

    async def try_resolve(self, descriptor, context):
        quote = await season_market_quote(descriptor.market, descriptor.team, context)
        cal = context.calibration
        assumptions = [_quote_assumption(quote)]
        if descriptor.count > 1:
            pct = title_count_pct(quote.pct, descriptor.seasons, descriptor.count, cal)
            assumptions.append(
                f"Title count over {descriptor.seasons} seasons from a decaying per-season vector."
            )
        elif descriptor.seasons > 1:
            pct = multi_year_title_pct(quote.pct, descriptor.seasons, cal)
            assumptions.append(
                f"Season probability compounded over {descriptor.seasons} seasons with "
                "year-over-year decay."
            )
        else:
            pct = quote.pct
        return _estimate(
            descriptor, pct, quote.confidence,
            "market_anchored" if quote.basis != "default" else "historical_baseline",
            assumptions=assumptions,
            trace=[f"quote:{quote.basis}", f"season_pct:{quote.pct:.2f}"],
        )


class RaceResolver(BaseResolver):
    """Team A wins a market before team B (two-sided, normalised)."""

    name = "RaceResolver"
    kinds = frozenset({RaceBefore.kind})

    async def try_resolve(self, descriptor, context):
        cal = context.calibration
        years = descriptor.years or cal.race_default_years
        quote_a = await season_market_quote(descriptor.market, descriptor.first, context)
        quote_b = await season_market_quote(descriptor.market, descriptor.second, context)
        first, _second = race_pcts(quote_a.pct, quote_b.pct, years, cal)
        anchored = quote_a.anchored or quote_b.anchored
        return _estimate(
            descriptor, first,
            "High" if anchored else "Medium",
            "market_anchored" if anchored else "historical_baseline",
            assumptions=[
                "Comparative race model: which team wins the market first.",
                f"Season probabilities compounded over {years} seasons with decay.",
            ],
            trace=[f"race_years:{years}", f"a:{quote_a.pct:.2f}", f"b:{quote_b.pct:.2f}"],
        )


class TeamSeasonResolver(BaseResolver):
    """Playoff make/miss and regular-season win totals."""

    name = "TeamSeasonResolver"
    kinds = frozenset({TeamPlayoff.kind, TeamWinTotal.kind})

    async def try_resolve(self, descriptor, context):
        cal = context.calibration
        abbr = descriptor.team.abbreviation
        if isinstance(descriptor, TeamPlayoff):
            pct = playoff_pct(abbr, descriptor.outcome, cal)
            return _estimate(
                descriptor, pct, "Medium", "historical_baseline",
                assumptions=["Team-strength playoff baseline."],
                trace=[f"playoffs:{descriptor.outcome}"],
            )
        pct = win_total_pct(abbr, descriptor.comparator, descriptor.wins, cal)
        return _estimate(
            descriptor, pct, "Low", "historical_baseline",
            assumptions=[
                "Per-game win probability derived from playoff strength.",
                f"Win distribution over {cal.games_per_season} games.",
            ],
            trace=[f"win_total:{descriptor.comparator}{descriptor.wins}"],
        )


class SeasonStatResolver(BaseResolver):
    """Season (or any-season) stat thresholds for one or two players."""

    name = "SeasonStatResolver"
    kinds = frozenset({PlayerStatThreshold.kind})

    async def try_resolve(self, descriptor, context):
        if descriptor.metric not in SUPPORTED_METRICS:
            return None
        cal = context.calibration
        player = descriptor.player
        projection = season_mean(
            player, descriptor.metric, cal, _history(context, player.key, descriptor.metric)
        )
        trace = [f"mean:{projection.mean:.1f}", f"model:{projection.model_type}"]

        if descriptor.partner is not None:
            partner_projection = season_mean(
                descriptor.partner, descriptor.metric, cal,
                _history(context, descriptor.partner.key, descriptor.metric),
            )
            fraction = combined_threshold_probability(
                [projection, partner_projection], descriptor.metric,
                descriptor.threshold, descriptor.comparator,
            )
            confidence = weakest_confidence(
                stat_confidence(projection.sample_seasons),
                stat_confidence(partner_projection.sample_seasons),
            )
            trace.append(f"partner_mean:{partner_projection.mean:.1f}")
        else:
            fraction = threshold_probability(
                player, descriptor.metric, descriptor.threshold, projection, cal,
                descriptor.comparator,
            )
            confidence = stat_confidence(projection.sample_seasons)

        pct = fraction * 100.0
        assumptions = [
            f"Projected season mean {projection.mean:.1f} ({projection.model_type.replace('_', ' ')}).",
        ]
        if descriptor.horizon in {"ever", "career"} and descriptor.partner is None:
            seasons = years_remaining(player)
            pct = any_season_pct(pct, seasons, decay=cal.award_decay)
            assumptions.append(f"Any single season within {seasons} remaining seasons.")
        if projection.sample_seasons == 0:
            assumptions.append("No season history available; prior mean only.")
        return _estimate(descriptor, pct, confidence, "statistical", assumptions, trace)


class AwardResolver(BaseResolver):
    """Season MVP, multi-season award counts and career Super Bowls."""

    name = "AwardResolver"
    kinds = frozenset({PlayerAward.kind})

    async def try_resolve(self, descriptor, context):
        cal = context.calibration
        player = descriptor.player
        team = team_by_abbreviation(player.team)
        quote = None
        if team is not None:
            quote = await season_market_quote("super_bowl_winner", team, context)
        team_sb = quote.pct if quote is not None else None

        if descriptor.award == "super_bowl":
            pct = career_super_bowl_pct(
                player, team_sb, cal, count=descriptor.count, exact=descriptor.exact,
                seasons=descriptor.seasons or None,
            )
            return _estimate(
                descriptor, pct, "Medium", "historical_baseline",
                assumptions=[
                    "Career title model: team title odds times the player's role share.",
                    "Capped by historical multi-ring career rates.",
                ],
                trace=[f"team_sb:{team_sb}", f"count:{descriptor.count}"],
            )

        single_season = descriptor.horizon == "season" and descriptor.count == 1 and not descriptor.exact
        if single_season and descriptor.award == "mvp":
            pct = season_mvp_pct(player, team_sb, cal)
            anchored = quote is not None and quote.anchored
            return _estimate(
                descriptor, pct, "High" if anchored else "Medium",
                "market_anchored" if anchored else "historical_baseline",
                assumptions=[
                    "Season MVP anchored to the team's Super Bowl probability.",
                    "Position and experience adjustments applied.",
                ],
                trace=[f"team_sb:{team_sb}"],
            )
        if single_season:
            pct = award_season_pct(player, descriptor.award, cal)
            return _estimate(
                descriptor, pct, "Low", "historical_baseline",
                assumptions=["Position base rate with tier and age adjustments."],
                trace=[f"award:{descriptor.award}"],
            )

        seasons = descriptor.seasons or None
        pct = award_count_pct(
            player, descriptor.award, cal,
            count=descriptor.count, exact=descriptor.exact, seasons=seasons,
        )
        window = seasons or years_remaining(player)
        return _estimate(
            descriptor, pct, "Low", "historical_baseline",
            assumptions=[
                f"Per-season award odds over {window} seasons with age and parity decay.",
                "Count probability from the Poisson-binomial distribution.",
            ],
            trace=[f"award:{descriptor.award}", f"window:{window}"],
        )


class CareerEventResolver(BaseResolver):
    """Hall of Fame induction and retirement."""

    name = "CareerEventResolver"
    kinds = frozenset({PlayerCareerEvent.kind})

    async def try_resolve(self, descriptor, context):
        cal = context.calibration
        player = descriptor.player
        if descriptor.event == "hall_of_fame":
            pct = hall_of_fame_pct(player, cal, descriptor.horizon, descriptor.explicit_season)
            return _estimate(
                descriptor, pct, "High", "historical_baseline",
                assumptions=["Historical Hall of Fame induction rates by position and résumé."],
                trace=[f"status:{player.status}"],
            )
        if descriptor.event == "retirement":
            pct = retirement_pct(player, cal, descriptor.horizon, descriptor.injury)
            return _estimate(
                descriptor, pct, "High" if player.status != "unknown" else "Medium",
                "historical_baseline",
                assumptions=[
                    "Age and career-stage retirement baseline.",
                    "Position-adjusted retirement tendency.",
                ],
                trace=[f"horizon:{descriptor.horizon}"],
            )
        return None


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

RESOLVERS: Dict[str, type] = {
    cls.name: cls
    for cls in (
        CohortResolver,
        MarketAnchoredResolver,
        RaceResolver,
        TeamSeasonResolver,
        SeasonStatResolver,
        AwardResolver,
        CareerEventResolver,
    )
}

# Evaluation order.  The first resolver to return a result wins.
RESOLVER_PRIORITY = (
    "CohortResolver",
    "MarketAnchoredResolver",
    "RaceResolver",
    "TeamSeasonResolver",
    "SeasonStatResolver",
    "AwardResolver",
    "CareerEventResolver",
)


class ResolverChain:
    """Chain of responsibility over atomic descriptors."""

    def __init__(self, resolvers: Optional[List[BaseResolver]] = None):
        if resolvers is None:
            resolvers = [RESOLVERS[name]() for name in RESOLVER_PRIORITY]
        for resolver in resolvers:
            if not isinstance(resolver, BaseResolver):
                raise TypeError(f"{resolver!r} is not a BaseResolver")
        self.resolvers = list(resolvers)

    async def resolve(self, descriptor: Descriptor, context: ResolutionContext) -> Outcome:
        for resolver in self.resolvers:
            if not resolver.accepts(descriptor):
                continue
            outcome = await resolver.try_resolve(descriptor, context)
            if outcome is None:
                continue
            logger.debug("%s priced %s", resolver.name, descriptor.label)
            context.notes.append(f"resolver:{resolver.name}")
            if isinstance(outcome, Resolved):
                return Resolved(outcome.estimate.with_trace(f"resolver:{resolver.name}"))
            return outcome
        return Declined(UNSUPPORTED, f"No model prices '{descriptor.label}'.")

    def describe(self) -> List[dict]:
        return [r.describe() for r in self.resolvers]


# ---------------------------------------------------------------------------
# Season history
# ---------------------------------------------------------------------------

def _history(context: ResolutionContext, player_key: str, metric: str) -> List[float]:
    return context.stat_history.get(player_key, {}).get(metric, [])


def load_stat_history(path: Optional[str]) -> Dict[str, Dict[str, List[float]]]:
    """
    Load per-player season totals from a JSON file.

    Format: ``{"player name": {"metric": [latest, previous, ...]}}`` or,
    per metric, a ``{"season year": total}`` mapping (ordered newest first
    on load).  A missing or unreadable file yields an empty history.
    """
    if not path:
        return {}
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Could not load stat history from %s: %s", path, e)
        return {}

    history: Dict[str, Dict[str, List[float]]] = {}
    for name, metrics in raw.items():
        rows: Dict[str, List[float]] = {}
        for metric, values in (metrics or {}).items():
            if isinstance(values, dict):
                ordered = sorted(values.items(), key=lambda kv: int(kv[0]), reverse=True)
                rows[metric] = [float(v) for _, v in ordered if v is not None]
            else:
                rows[metric] = [float(v) for v in values if v is not None]
        history[name.lower()] = rows
    logger.info("Loaded stat history for %d players from %s", len(history), path)
    return history
