"""Data-transfer objects and the resolver contract.

This module defines the types that flow through every stage of the
estimation pipeline:

* **Entities**: :class:`Player` and :class:`Team`, resolved read-only
  from the roster index.
* **Outcome descriptors**: an immutable tagged variant describing one
  proposition (``team_market``, ``player_stat_threshold`` …) or a
  composite of propositions (``all_of``, ``one_of``, ``conditional``,
  ``any_of``).  The descriptor alone determines which resolver applies.
* **Estimates**: :class:`Estimate` plus the tagged result
  ``Resolved | Declined`` that every resolver returns.
* **Context**: :class:`ResolutionContext`, the read-only view of the
  as-of date, calibration bundle and external reference lookups handed to
  each resolver.
* **Resolvers**: :class:`BaseResolver`, the chain-of-responsibility
  contract.

Design choices
--------------
* :class:`BaseResolver` is an ABC rather than a ``typing.Protocol`` so the
  chain can ``isinstance``-check its members at construction time, and so
  resolver authors inherit the ``name`` / ``kinds`` attributes explicitly.
* Descriptors, entities and estimates are frozen and slotted so they can be
  used as cache values and dict keys without defensive copies.
* "Engine declined" is an explicit :class:`Declined` value, never an
  exception and never an extreme-odds estimate.  Only the engine boundary
  converts it into the uniform sentinel shape.

Run tests with::

    pytest tests/test_interfaces.py -v
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, ClassVar, Final, Protocol, Union

if TYPE_CHECKING:
    from scenario_odds.core.calibration import CalibrationConfig


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

#: Player status values.
PLAYER_STATUSES: Final[frozenset[str]] = frozenset(
    {"active", "retired", "deceased", "unknown"}
)

#: Confidence tags, weakest first.
CONFIDENCE_LEVELS: Final[tuple[str, ...]] = ("Low", "Medium", "High")

#: Time horizons a proposition can span.
HORIZONS: Final[tuple[str, ...]] = (
    "season", "multi_year", "career", "ever", "unspecified",
)

#: Single-winner team markets.
TEAM_MARKETS: Final[tuple[str, ...]] = (
    "super_bowl_winner", "afc_winner", "nfc_winner", "division_winner",
)

#: Awards a single player can win at most once per season.
SINGLE_WINNER_AWARDS: Final[frozenset[str]] = frozenset({"mvp", "opoy", "dpoy"})

# Decline reasons (the error taxonomy).  Every one maps to the same
# external sentinel shape at the engine boundary.
UNSUPPORTED: Final[str] = "unsupported"
UNSUPPORTED_COMPOSITE: Final[str] = "unsupported_composite"
NEEDS_CLARIFICATION: Final[str] = "needs_clarification"
INVALID_ENTITY: Final[str] = "invalid_entity"
INELIGIBLE_ENTITY: Final[str] = "ineligible_entity"
INCONSISTENT: Final[str] = "inconsistent"
CONSTRAINT_VIOLATION: Final[str] = "constraint_violation"

DECLINE_KINDS: Final[frozenset[str]] = frozenset({
    UNSUPPORTED,
    UNSUPPORTED_COMPOSITE,
    NEEDS_CLARIFICATION,
    INVALID_ENTITY,
    INELIGIBLE_ENTITY,
    INCONSISTENT,
    CONSTRAINT_VIOLATION,
})


def weakest_confidence(*levels: str) -> str:
    """Return the weakest of the given confidence tags (``Low`` if none)."""
    if not levels:
        return "Low"
    return min(levels, key=CONFIDENCE_LEVELS.index)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Player:
    """A roster entry.

    Attributes:
        name: Display name, e.g. ``"Josh Allen"``.
        team: Team abbreviation, or ``None`` for free agents / retirees.
        position: Upper-case position code (``QB``, ``WR``, ``EDGE`` …).
        status: One of :data:`PLAYER_STATUSES`.
        experience_years: Completed NFL seasons, when known.
        age: Age in years, when known.
        player_id: Provider identifier.
        popularity_rank: Lower is more findable.  Used only to break ties
            between roster entries that share a name.
    """

    name: str
    team: str | None = None
    position: str = ""
    status: str = "unknown"
    experience_years: int | None = None
    age: int | None = None
    player_id: str = ""
    popularity_rank: int = 9999

    @property
    def position_group(self) -> str:
        """Coarse group used by the calibration tables."""
        pos = self.position.upper()
        if pos == "QB":
            return "qb"
        if pos in {"RB", "FB"}:
            return "rb"
        if pos in {"WR", "TE"}:
            return "receiver"
        if pos in {"DE", "DT", "DL", "LB", "ILB", "OLB", "EDGE", "CB", "S", "FS", "SS", "DB"}:
            return "defense"
        if pos in {"K", "P", "LS"}:
            return "specialist"
        if pos in {"OT", "OG", "C", "OL", "T", "G"}:
            return "ol"
        return "other"

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass(slots=True, frozen=True)
class Team:
    """One of the 32 NFL franchises."""

    name: str
    abbreviation: str
    division: str
    conference: str

    @property
    def nickname(self) -> str:
        return self.name.split()[-1]


Entity = Union[Player, Team]


# ---------------------------------------------------------------------------
# Outcome descriptors
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Descriptor:
    """Base class for every outcome descriptor.

    ``kind`` is the tag used by the resolver priority table and by the
    dependence-factor lookup.  ``event_key`` identifies the underlying
    market so the combiner can recognise mutually exclusive clauses.
    """

    kind: ClassVar[str] = "descriptor"

    @property
    def event_key(self) -> str:
        return self.kind

    @property
    def label(self) -> str:
        return self.kind

    @property
    def is_composite(self) -> bool:
        return False

    def entity_keys(self) -> frozenset[str]:
        """Lower-cased identities (player names / team abbreviations) involved."""
        return frozenset()


@dataclass(slots=True, frozen=True)
class TeamMarket(Descriptor):
    """A team wins a single-winner market, optionally within ``seasons``."""

    kind: ClassVar[str] = "team_market"

    team: Team
    market: str
    seasons: int = 1
    horizon: str = "season"
    count: int = 1

    @property
    def event_key(self) -> str:
        market = self.market
        if market == "division_winner":
            market = f"{market}/{self.team.division}"
        return f"{market}:{self.seasons}:{self.count}"

    @property
    def label(self) -> str:
        what = _MARKET_LABELS.get(self.market, self.market.replace("_", " "))
        if self.count > 1:
            what = f"{what} {self.count} times"
        if self.seasons > 1:
            return f"{self.team.name} win {what} within {self.seasons} seasons"
        return f"{self.team.name} win {what}"

    def entity_keys(self) -> frozenset[str]:
        return frozenset({self.team.abbreviation.lower()})


@dataclass(slots=True, frozen=True)
class PlayerStatThreshold(Descriptor):
    """A player (or two players combined) reaches ``threshold`` in ``metric``."""

    kind: ClassVar[str] = "player_stat_threshold"

    player: Player
    metric: str
    threshold: float
    horizon: str = "season"
    partner: Player | None = None
    comparator: str = ">="

    @property
    def event_key(self) -> str:
        return f"{self.metric}:{self.player.key}"

    @property
    def label(self) -> str:
        who = self.player.name
        if self.partner is not None:
            who = f"{who} + {self.partner.name}"
        metric = self.metric.replace("_", " ")
        amount = f"{self.threshold:g}"
        if self.comparator == "<=":
            base = f"{who} {amount} or fewer {metric}"
        else:
            base = f"{who} {amount}+ {metric}"
        if self.horizon in {"career", "ever"}:
            return f"{base} (in any season)"
        return base

    def entity_keys(self) -> frozenset[str]:
        keys = {self.player.key}
        if self.player.team:
            keys.add(self.player.team.lower())
        if self.partner is not None:
            keys.add(self.partner.key)
        return frozenset(keys)


@dataclass(slots=True, frozen=True)
class PlayerAward(Descriptor):
    """A player wins ``award`` at least (or exactly) ``count`` times.

    ``award`` is one of ``mvp``, ``opoy``, ``dpoy``, ``allpro`` or
    ``super_bowl`` (rings won as a player).
    """

    kind: ClassVar[str] = "player_award"

    player: Player
    award: str
    count: int = 1
    exact: bool = False
    horizon: str = "season"
    seasons: int = 0

    @property
    def event_key(self) -> str:
        return f"{self.award}:{self.horizon}:{self.count}"

    @property
    def label(self) -> str:
        what = _AWARD_LABELS.get(self.award, self.award.upper())
        qualifier = "exactly " if self.exact else ""
        if self.count > 1 or self.exact:
            return f"{self.player.name} wins {qualifier}{self.count} {what}"
        if self.horizon in {"career", "ever"}:
            return f"{self.player.name} wins {what} (career)"
        return f"{self.player.name} wins {what}"

    def entity_keys(self) -> frozenset[str]:
        keys = {self.player.key}
        if self.player.team:
            keys.add(self.player.team.lower())
        return frozenset(keys)


@dataclass(slots=True, frozen=True)
class PlayerCareerEvent(Descriptor):
    """Hall of Fame induction or retirement within a horizon."""

    kind: ClassVar[str] = "player_career_event"

    player: Player
    event: str
    horizon: str = "career"
    explicit_season: bool = False
    injury: bool = False

    @property
    def event_key(self) -> str:
        return f"{self.event}:{self.player.key}"

    @property
    def label(self) -> str:
        if self.event == "hall_of_fame":
            return f"{self.player.name} makes the Hall of Fame"
        return f"{self.player.name} retires ({self.horizon})"

    def entity_keys(self) -> frozenset[str]:
        return frozenset({self.player.key})


@dataclass(slots=True, frozen=True)
class TeamWinTotal(Descriptor):
    """A team's regular-season wins compared against ``wins``."""

    kind: ClassVar[str] = "team_win_total"

    team: Team
    comparator: str
    wins: int

    @property
    def event_key(self) -> str:
        return f"win_total:{self.team.abbreviation}"

    @property
    def label(self) -> str:
        phrase = {">=": "or more", "<=": "or fewer", "==": "exactly"}[self.comparator]
        if self.comparator == "==":
            return f"{self.team.name} win exactly {self.wins} games"
        return f"{self.team.name} win {self.wins} {phrase} games"

    def entity_keys(self) -> frozenset[str]:
        return frozenset({self.team.abbreviation.lower()})


@dataclass(slots=True, frozen=True)
class TeamPlayoff(Descriptor):
    """A team makes (``outcome="make"``) or misses the playoffs."""

    kind: ClassVar[str] = "team_playoff"

    team: Team
    outcome: str = "make"

    @property
    def event_key(self) -> str:
        return f"playoffs:{self.team.abbreviation}"

    @property
    def label(self) -> str:
        verb = "make" if self.outcome == "make" else "miss"
        return f"{self.team.name} {verb} the playoffs"

    def entity_keys(self) -> frozenset[str]:
        return frozenset({self.team.abbreviation.lower()})


@dataclass(slots=True, frozen=True)
class WildcardCohort(Descriptor):
    """A league-wide event with no specific entity (``any QB``, ``a team``)."""

    kind: ClassVar[str] = "wildcard_cohort"

    cohort: str
    threshold: float = 0.0
    horizon: str = "season"

    @property
    def event_key(self) -> str:
        return f"cohort:{self.cohort}"

    @property
    def label(self) -> str:
        if self.cohort == "perfect_season":
            base = "A team goes 17-0"
        elif self.cohort == "winless_season":
            base = "A team goes 0-17"
        elif self.cohort == "any_qb_passing_tds":
            base = f"Any QB throws {int(self.threshold)}+ TDs"
        else:
            base = f"Any QB throws {int(self.threshold)}+ INTs"
        if self.horizon in {"career", "ever"}:
            return f"{base} (ever)"
        return base


@dataclass(slots=True, frozen=True)
class RaceBefore(Descriptor):
    """``first`` achieves ``market`` before ``second`` does."""

    kind: ClassVar[str] = "race_before"

    first: Team
    second: Team
    market: str = "super_bowl_winner"
    years: int = 0

    @property
    def event_key(self) -> str:
        return f"race:{self.market}"

    @property
    def label(self) -> str:
        what = _MARKET_LABELS.get(self.market, self.market.replace("_", " "))
        return f"{self.first.name} win {what} before {self.second.name}"

    def entity_keys(self) -> frozenset[str]:
        return frozenset({
            self.first.abbreviation.lower(),
            self.second.abbreviation.lower(),
        })


# -- composites --------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AllOf(Descriptor):
    """Conjunction of clauses."""

    kind: ClassVar[str] = "all_of"

    clauses: tuple[Descriptor, ...]

    @property
    def is_composite(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return " and ".join(c.label for c in self.clauses)

    def entity_keys(self) -> frozenset[str]:
        return frozenset().union(*(c.entity_keys() for c in self.clauses))


@dataclass(slots=True, frozen=True)
class OneOf(Descriptor):
    """Disjunction of clauses."""

    kind: ClassVar[str] = "one_of"

    clauses: tuple[Descriptor, ...]

    @property
    def is_composite(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return " or ".join(c.label for c in self.clauses)

    def entity_keys(self) -> frozenset[str]:
        return frozenset().union(*(c.entity_keys() for c in self.clauses))


@dataclass(slots=True, frozen=True)
class Conditional(Descriptor):
    """``then`` given ``given``."""

    kind: ClassVar[str] = "conditional"

    given: Descriptor
    then: Descriptor

    @property
    def is_composite(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return f"{self.given.label} → {self.then.label}"

    def entity_keys(self) -> frozenset[str]:
        return self.given.entity_keys() | self.then.entity_keys()


@dataclass(slots=True, frozen=True)
class AnyOf(Descriptor):
    """The same outcome template applied to an enumerated entity list."""

    kind: ClassVar[str] = "any_of"

    entities: tuple[str, ...]
    outcome_suffix: str
    clauses: tuple[Descriptor, ...]

    @property
    def is_composite(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return " or ".join(c.label for c in self.clauses)

    def entity_keys(self) -> frozenset[str]:
        return frozenset().union(*(c.entity_keys() for c in self.clauses))


_MARKET_LABELS: Final[dict[str, str]] = {
    "super_bowl_winner": "the Super Bowl",
    "afc_winner": "the AFC",
    "nfc_winner": "the NFC",
    "division_winner": "the division",
}

_AWARD_LABELS: Final[dict[str, str]] = {
    "mvp": "MVP",
    "opoy": "OPOY",
    "dpoy": "DPOY",
    "allpro": "First-Team All-Pro",
    "super_bowl": "Super Bowl",
}


# ---------------------------------------------------------------------------
# Estimates and tagged results
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Estimate:
    """A priced proposition.

    Attributes:
        probability_pct: Probability in percent, strictly inside ``(0, 100)``.
        confidence: One of :data:`CONFIDENCE_LEVELS`.
        source_type: Which family produced the number
            (``market_anchored``, ``statistical``, ``historical_baseline``,
            ``composite``, ``generative``, ``heuristic``).
        label: Short human-readable description of the proposition.
        assumptions: Modelling assumptions worth surfacing to a reader.
        trace: Ordered resolution breadcrumbs for debugging.
        event_key: Market identity (see :attr:`Descriptor.event_key`).
    """

    probability_pct: float
    confidence: str
    source_type: str
    label: str
    assumptions: tuple[str, ...] = ()
    trace: tuple[str, ...] = ()
    event_key: str = ""

    def validate(self) -> None:
        """Raise ``ValueError`` if the estimate violates its invariants."""
        if not (0.0 < self.probability_pct < 100.0):
            raise ValueError(
                f"Estimate.probability_pct must be in (0, 100), "
                f"got {self.probability_pct!r} for {self.label!r}."
            )
        if self.confidence not in CONFIDENCE_LEVELS:
            raise ValueError(f"Unknown confidence tag {self.confidence!r}.")

    def with_trace(self, *steps: str) -> Estimate:
        return Estimate(
            probability_pct=self.probability_pct,
            confidence=self.confidence,
            source_type=self.source_type,
            label=self.label,
            assumptions=self.assumptions,
            trace=self.trace + steps,
            event_key=self.event_key,
        )


@dataclass(slots=True, frozen=True)
class Resolved:
    estimate: Estimate


@dataclass(slots=True, frozen=True)
class Declined:
    """The engine refuses to price the proposition.

    Attributes:
        kind: One of :data:`DECLINE_KINDS`.
        reason: Human-readable explanation surfaced to the caller.
        final: No fallback may price the prompt after this decline, e.g. one
            clause of a compound prompt could not be interpreted.
    """

    kind: str
    reason: str
    final: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        if self.kind not in DECLINE_KINDS:
            raise ValueError(f"Unknown decline kind {self.kind!r}.")


Outcome = Union[Resolved, Declined]


# ---------------------------------------------------------------------------
# External references
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class MarketReference:
    """A snapshot of one outright line from the market-odds provider."""

    market: str
    entity: str
    american_odds: int
    implied_probability_pct: float
    as_of_date: str
    provider_label: str


class MarketLookup(Protocol):
    """Anything that can answer "what is the live line for this pair?"."""

    async def reference(self, market: str, team: Team) -> MarketReference | None: ...


@dataclass(slots=True)
class ResolutionContext:
    """Read-only inputs shared by every resolver during one estimate.

    Attributes:
        as_of: Date the estimate is computed for.
        calibration: Immutable calibration bundle.
        markets: Live market-reference lookup, or ``None`` when offline.
        stat_history: ``player name (lower) → metric → [season totals]``,
            most recent first.
        notes: Mutable scratch list; resolvers append trace breadcrumbs.
    """

    as_of: date
    calibration: CalibrationConfig
    markets: MarketLookup | None = None
    stat_history: dict[str, dict[str, list[float]]] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)

    @property
    def season_year(self) -> int:
        """Start year of the season being priced.

        Between February and August the "upcoming" season is the one that
        starts in the current calendar year; in January the season that
        started last year is still in progress.
        """
        return self.as_of.year if self.as_of.month >= 2 else self.as_of.year - 1


# ---------------------------------------------------------------------------
# Resolver contract
# ---------------------------------------------------------------------------


class BaseResolver(ABC):
    """Contract that every outcome resolver must satisfy.

    Subclasses declare which descriptor ``kinds`` they accept and implement
    :meth:`try_resolve`.  Returning ``None`` means "not applicable" and the
    chain moves on to the next resolver; returning :class:`Declined` stops
    the chain with an explicit refusal.

    Resolvers must be stateless across calls: results depend only on the
    descriptor and the context.
    """

    #: Short identifier recorded in estimate traces.
    name: str = "BaseResolver"

    #: Descriptor kinds this resolver understands.
    kinds: frozenset[str] = frozenset()

    def accepts(self, descriptor: Descriptor) -> bool:
        return descriptor.kind in self.kinds

    @abstractmethod
    async def try_resolve(
        self,
        descriptor: Descriptor,
        context: ResolutionContext,
    ) -> Outcome | None:
        """Price ``descriptor`` or return ``None`` when not applicable."""

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "kinds": sorted(self.kinds)}
