"""
Scenario-to-probability estimation engine.

Pipeline for one prompt:

  normalize -> cache (ephemeral, canonical) -> parse into descriptors
    -> stable cache (snapshot-checked, low-volatility prompts only; these
       never enter the short tiers, so a market move is always seen)
    -> contradiction check -> resolve (combiner over the resolver chain,
       every atomic result repaired by the consistency enforcer)
    -> fallback gateway when the deterministic path declined
    -> publish odds and rationale -> cache write

``estimate`` never raises for non-empty input.  Every declined prompt comes
back as the same sentinel shape with ``source_type`` set to the decline
kind.
"""

import asyncio
import logging
import os
from datetime import date
from typing import Iterator, List, Optional

from dotenv import load_dotenv

from scenario_odds.core.calibration import CalibrationConfig, load_calibration
from scenario_odds.core.interfaces import (
    CONSTRAINT_VIOLATION,
    INCONSISTENT,
    INELIGIBLE_ENTITY,
    NEEDS_CLARIFICATION,
    UNSUPPORTED,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    Descriptor,
    Entity,
    Estimate,
    OneOf,
    Outcome,
    Player,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    RaceBefore,
    ResolutionContext,
    Resolved,
    Team,
    TeamMarket,
    WildcardCohort,
)
from scenario_odds.schemas import SENTINEL_IMPLIED_PCT, SENTINEL_ODDS, EstimateResult
from scenario_odds.services.cache import STABLE, CacheManager, Snapshot
from scenario_odds.services.combiner import CompositeCombiner
from scenario_odds.services.consistency import (
    ConsistencyEnforcer,
    check_contradictions,
    clean_rationale,
    publish,
)
from scenario_odds.services.entity_resolver import EntityResolver, resolved_entities
from scenario_odds.services.fallback import FallbackGateway, text_contradiction
from scenario_odds.services.intent import IntentParser
from scenario_odds.services.normalizer import NormalizedPrompt, normalize_prompt
from scenario_odds.services.odds import MarketReferenceService
from scenario_odds.services.refresh import BackgroundRefresher
from scenario_odds.services.resolvers import (
    ResolverChain,
    load_stat_history,
    season_market_quote,
)
from scenario_odds.services.roster import RosterService

load_dotenv()

logger = logging.getLogger(__name__)

ESTIMATE_AS_OF = os.getenv("ESTIMATE_AS_OF")
CALIBRATION_FILE = os.getenv("CALIBRATION_FILE")
STAT_HISTORY_FILE = os.getenv("STAT_HISTORY_FILE")

# Declines that are final: the fallback gateway never second-guesses them.
# A decline flagged ``final`` (an uninterpretable clause) is final as well.
_FINAL_DECLINES = frozenset({CONSTRAINT_VIOLATION, INELIGIBLE_ENTITY, INCONSISTENT})

_LONG_HORIZONS = frozenset({"multi_year", "career", "ever"})


# ---------------------------------------------------------------------------
# Descriptor helpers
# ---------------------------------------------------------------------------

def _children(descriptor: Descriptor) -> List[Descriptor]:
    if isinstance(descriptor, Conditional):
        return [descriptor.given, descriptor.then]
    if isinstance(descriptor, (AllOf, OneOf, AnyOf)):
        return list(descriptor.clauses)
    return []


def descriptor_entities(descriptor: Descriptor) -> Iterator[Entity]:
    """Every player and team a descriptor (or any of its clauses) names."""
    if descriptor.is_composite:
        for child in _children(descriptor):
            yield from descriptor_entities(child)
        return
    for attr in ("team", "first", "second", "player", "partner"):
        value = getattr(descriptor, attr, None)
        if isinstance(value, (Player, Team)):
            yield value


def is_low_volatility(descriptor: Descriptor) -> bool:
    """Comparative, career and multi-year prompts qualify for the stable tier."""
    if descriptor.is_composite:
        children = _children(descriptor)
        return bool(children) and all(is_low_volatility(c) for c in children)
    if isinstance(descriptor, RaceBefore):
        return True
    if isinstance(descriptor, TeamMarket):
        return descriptor.seasons > 1 or descriptor.count > 1
    if isinstance(descriptor, PlayerAward):
        return descriptor.count > 1 or descriptor.horizon in _LONG_HORIZONS
    if isinstance(descriptor, PlayerCareerEvent):
        return descriptor.horizon in _LONG_HORIZONS
    if isinstance(descriptor, (PlayerStatThreshold, WildcardCohort)):
        return descriptor.horizon in _LONG_HORIZONS
    return False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ScenarioEngine:
    """Prices free-text NFL hypotheticals as American odds."""

    def __init__(
        self,
        calibration: Optional[CalibrationConfig] = None,
        roster: Optional[RosterService] = None,
        markets: Optional[MarketReferenceService] = None,
        fallback: Optional[FallbackGateway] = None,
        cache: Optional[CacheManager] = None,
        stat_history: Optional[dict] = None,
        as_of: Optional[date] = None,
        offline: bool = False,
    ):
        self.calibration = calibration or load_calibration(CALIBRATION_FILE)
        self.cache = cache or CacheManager()
        self.roster = roster or RosterService(offline=offline)
        self.markets = markets or MarketReferenceService(cache=self.cache, offline=offline)
        self.fallback = fallback or FallbackGateway(self.calibration, offline=offline)
        self.stat_history = (
            stat_history if stat_history is not None else load_stat_history(STAT_HISTORY_FILE)
        )
        self.as_of = as_of
        self.chain = ResolverChain()
        self.enforcer = ConsistencyEnforcer(self.calibration.monotonic_damping)
        self.combiner = CompositeCombiner(self._resolve_atomic)
        self.refresher: Optional[BackgroundRefresher] = None

    # ------------------------------------------------------------------ #
    #  Public API                                                          #
    # ------------------------------------------------------------------ #

    def estimate(self, prompt: str) -> EstimateResult:
        """Synchronous wrapper around :meth:`estimate_async`."""
        return asyncio.run(self.estimate_async(prompt))

    async def estimate_async(self, prompt: str) -> EstimateResult:
        as_of = self.current_date()
        try:
            return await self._estimate(prompt, as_of)
        except Exception:
            logger.exception("Unexpected error while estimating %r", prompt)
            return self._sentinel(
                str(prompt or ""),
                Declined(UNSUPPORTED, "The engine could not price this scenario."),
                as_of,
            )

    def start_refresh(self) -> BackgroundRefresher:
        """Start the roster and market refresh jobs.  Needs a running event loop."""
        if self.refresher is None:
            self.refresher = BackgroundRefresher(self)
            self.refresher.start()
        return self.refresher

    def stop_refresh(self) -> None:
        if self.refresher is not None:
            self.refresher.shutdown()
            self.refresher = None

    def current_date(self) -> date:
        if self.as_of is not None:
            return self.as_of
        if ESTIMATE_AS_OF:
            try:
                return date.fromisoformat(ESTIMATE_AS_OF)
            except ValueError:
                logger.warning("Ignoring malformed ESTIMATE_AS_OF=%r", ESTIMATE_AS_OF)
        return date.today()

    # ------------------------------------------------------------------ #
    #  Pipeline                                                            #
    # ------------------------------------------------------------------ #

    async def _estimate(self, prompt: str, as_of: date) -> EstimateResult:
        raw = str(prompt or "")
        if not raw.strip():
            return self._sentinel(raw, Declined(NEEDS_CLARIFICATION, "Empty prompt."), as_of)

        normalized = normalize_prompt(raw)
        cached, tier = self.cache.lookup(normalized.key)
        if cached is not None:
            logger.debug("Cache hit (%s) for %r", tier, normalized.key)
            return cached.model_copy(update={"prompt": raw, "cache_tier": tier})

        context = ResolutionContext(
            as_of=as_of,
            calibration=self.calibration,
            markets=self.markets if self.markets.available else None,
            stat_history=self.stat_history,
        )
        resolver = EntityResolver(self.roster.index)
        parsed = IntentParser(resolver, self.calibration).parse(normalized, context.season_year)

        if isinstance(parsed, Declined):
            outcome = await self._fall_back(normalized, resolver, parsed, context)
            return self._finish(raw, normalized, outcome, as_of)

        snapshot: Optional[Snapshot] = None
        if is_low_volatility(parsed):
            snapshot = await self.snapshot(parsed, context)
            stable = self.cache.get_stable(normalized.key, snapshot)
            if stable is not None:
                logger.debug("Stable cache hit for %r", normalized.key)
                return stable.model_copy(update={"prompt": raw, "cache_tier": STABLE})

        contradiction = check_contradictions(parsed)
        if contradiction is not None:
            return self._sentinel(raw, contradiction, as_of)

        outcome = await self.combiner.evaluate(parsed, context)
        if isinstance(outcome, Declined) and outcome.kind not in _FINAL_DECLINES:
            outcome = await self._fall_back(normalized, resolver, outcome, context)

        result = self._finish(
            raw, normalized, outcome, as_of, trace=context.notes, store=snapshot is None,
        )
        if snapshot is not None and not result.declined:
            self.cache.put_stable(normalized.key, result, snapshot)
        return result

    async def _resolve_atomic(self, descriptor: Descriptor, context: ResolutionContext) -> Outcome:
        outcome = await self.chain.resolve(descriptor, context)
        return await self.enforcer.enforce(descriptor, outcome, self.chain.resolve, context)

    async def _fall_back(
        self,
        normalized: NormalizedPrompt,
        resolver: EntityResolver,
        declined: Declined,
        context: ResolutionContext,
    ) -> Outcome:
        if declined.kind in _FINAL_DECLINES:
            return declined
        if declined.final:
            return text_contradiction(normalized.text) or declined
        entities = resolved_entities(resolver.resolve(normalized.text))
        anchors = []
        for entity in entities:
            if isinstance(entity, Team):
                quote = await season_market_quote("super_bowl_winner", entity, context)
                anchors.append(
                    f"Reference: {entity.name} season Super Bowl probability "
                    f"{quote.pct:.1f} pct ({quote.basis})."
                )
        return await self.fallback.estimate(normalized.text, entities, declined, anchors)

    async def snapshot(self, descriptor: Descriptor, context: ResolutionContext) -> Snapshot:
        """External-state fingerprint for a stable-tier entry."""
        signals: Snapshot = {
            "roster": self.roster.index.digest(),
            "calibration": self.calibration.signature(),
        }
        for entity in descriptor_entities(descriptor):
            if isinstance(entity, Team):
                quote = await season_market_quote("super_bowl_winner", entity, context)
                signals[f"market:super_bowl_winner:{entity.abbreviation}"] = round(quote.pct, 3)
            else:
                signals[f"player:{entity.key}"] = self.roster.index.player_fingerprint(entity.name)
        return signals

    # ------------------------------------------------------------------ #
    #  Results                                                             #
    # ------------------------------------------------------------------ #

    def _finish(
        self,
        raw: str,
        normalized: NormalizedPrompt,
        outcome: Outcome,
        as_of: date,
        trace: Optional[List[str]] = None,
        store: bool = True,
    ) -> EstimateResult:
        if isinstance(outcome, Declined):
            return self._sentinel(raw, outcome, as_of)
        estimate = outcome.estimate
        estimate.validate()
        result = self._priced(raw, estimate, as_of, trace or [])
        if store:
            self.cache.store(normalized.key, result)
        return result

    def _priced(
        self,
        raw: str,
        estimate: Estimate,
        as_of: date,
        notes: List[str],
    ) -> EstimateResult:
        odds, implied, rationale = publish(estimate)
        trace = list(estimate.trace)
        trace.extend(step for step in notes if step not in trace)
        logger.debug(
            "Priced %r at %s (%s, %s)", estimate.label, odds, estimate.source_type, estimate.confidence,
        )
        return EstimateResult(
            prompt=raw,
            odds=odds,
            implied_probability=implied,
            confidence=estimate.confidence,
            source_type=estimate.source_type,
            label=estimate.label,
            rationale=rationale,
            assumptions=list(estimate.assumptions),
            trace=trace,
            as_of=as_of.isoformat(),
            calibration_version=self.calibration.version,
        )

    def _sentinel(self, raw: str, declined: Declined, as_of: date) -> EstimateResult:
        logger.debug("Declined %r: %s (%s)", raw, declined.kind, declined.reason)
        return EstimateResult(
            prompt=raw,
            odds=SENTINEL_ODDS,
            implied_probability=SENTINEL_IMPLIED_PCT,
            confidence="Low",
            source_type=declined.kind,
            label=raw.strip(),
            rationale=clean_rationale([declined.reason]),
            as_of=as_of.isoformat(),
            declined=True,
            reason=declined.reason,
            calibration_version=self.calibration.version,
        )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_engine: Optional[ScenarioEngine] = None


def get_engine() -> ScenarioEngine:
    global _engine
    if _engine is None:
        _engine = ScenarioEngine()
    return _engine


def estimate(prompt: str) -> EstimateResult:
    """Price ``prompt`` with the process-wide engine."""
    return get_engine().estimate(prompt)
