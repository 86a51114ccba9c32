"""
Intent classification and decomposition.

Turns normalized prompt text into either one outcome descriptor, a
composite descriptor (AllOf / OneOf / Conditional / AnyOf / RaceBefore), or
an explicit Declined.

Classification is pattern-table driven.  The tables and the helpers that
read them (``detect_*`` / ``split_*`` / ``parse_*``) are pure functions of
their inputs; only :class:`IntentParser` touches the entity resolver.

Decomposition order:
    1. protect comparator phrases ("or fewer", "and a half") from splitting
    2. ``if ... then`` / arrow / "given" -> conditional
    3. ``before`` / ``prior to`` / ``ahead of`` -> two-sided race
    4. enumerated entity list + one shared outcome -> any_of (all_of for "and")
    5. top-level ``or`` then ``and`` split, when >= 2 parts survive
Every clause is re-parsed by the same classifier.  A clause that cannot be
interpreted marks the whole decomposition ``needs_clarification``.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Final

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    CONSTRAINT_VIOLATION,
    INELIGIBLE_ENTITY,
    INVALID_ENTITY,
    NEEDS_CLARIFICATION,
    UNSUPPORTED,
    UNSUPPORTED_COMPOSITE,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    Descriptor,
    OneOf,
    Player,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    RaceBefore,
    Team,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
)
from scenario_odds.services.entity_resolver import EntityResolver, Mention, match_text
from scenario_odds.services.normalizer import MULTI_YEAR_WINDOW, NormalizedPrompt, detect_horizon
from scenario_odds.services.team_mapping import TEAM_ALIASES, team_by_abbreviation

logger = logging.getLogger(__name__)

_MAX_DEPTH: Final[int] = 4

# ---------------------------------------------------------------------------
# Unsupportable patterns
# ---------------------------------------------------------------------------

SUBJECTIVE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\b(best|greatest|goat)\s+(qb|quarterback|tight end|te|coach|head coach|player)\s+(ever|of all time)\b"),
    re.compile(r"\b(greatest|best)\s+ever\b"),
    re.compile(r"\bwho('?s| is)?\s+better\b"),
    re.compile(r"\b(top\s*\d+|mount\s*rushmore)\b"),
    re.compile(r"\b(legacy|clutch gene|more talented|better leader|better intangibles|overrated|underrated)\b"),
)

IMPOSSIBLE_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\b(live|lives|living)\s+forever\b"), "Biological impossibility."),
    (re.compile(r"\b(immortal|immortality|eternal life|never dies?|cannot die)\b"), "Biological impossibility."),
    (re.compile(r"\b(time travel|time travels?|teleport|teleports?|wormhole)\b"), "Physics-breaking scenario."),
    (re.compile(r"\b(resurrect\w*|comes back from the dead|undead)\b"), "Biological impossibility."),
    (re.compile(r"\b(two places at once|same time on two teams|plays for both teams at the same time)\b"),
     "Single-person simultaneity impossibility."),
)

# ---------------------------------------------------------------------------
# Decomposition patterns
# ---------------------------------------------------------------------------

_PROTECTED_PHRASES: Final[re.Pattern[str]] = re.compile(
    r"\b(or (?:fewer|more|less|better|worse)|and a half|and up|and over)\b"
)
_PROTECT_JOIN: Final[str] = "_"

_CONDITIONAL_PATTERNS: Final[tuple[tuple[re.Pattern[str], bool], ...]] = (
    # (pattern, reversed) -- reversed means group 1 is the outcome
    (re.compile(r"^if\s+(.+?)(?:\s*,\s*then\s+|\s*,\s*|\s+then\s+)(.+)$"), False),
    (re.compile(r"^(.+?)\s*(?:->|=>|→)\s*(.+)$"), False),
    (re.compile(r"^(.+?)\s+(?:given|assuming)\s+(?:that\s+)?(.+)$"), True),
)

_RACE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(.+?)\s+(?:before|prior to|ahead of)\s+(.+)$"
)
_RACE_EXCLUSIONS: Final[re.Pattern[str]] = re.compile(
    r"\b(?:before|prior to|by)\s+(?:20\d{2}|(?:he|she|they)\s+retires?|retiring|age\s+\d+|(?:he|she|they)\s+turns?)\b"
)

_LIST_SEPARATORS: Final[frozenset[str]] = frozenset(
    {"", ",", "or", "and", "either", "both", "the", "will", "can", "does", "do", "neither", "nor"}
)
_OUTCOME_VERB: Final[re.Pattern[str]] = re.compile(
    r"\b(win|wins|won|make|makes|miss|misses|reach|reaches|go|goes|throw|throws|rush|rushes|"
    r"catch|catches|records?|finish|finishes|gets?|earns?|scores?|is|are|each|all)\b"
)
_PRONOUN_LEAD: Final[re.Pattern[str]] = re.compile(r"^(?:he|she|they|it|them)\b\s*")

# ---------------------------------------------------------------------------
# Atomic patterns
# ---------------------------------------------------------------------------

_NUM: Final[str] = r"(\d+(?:\.\d+)?)"

COHORT_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("any_qb_passing_tds", re.compile(
        r"\b(?:any|a|some|an?\s+nfl)\s+(?:qb|quarterback)\b.*?\b" + _NUM + r"\+?\s+(?:passing\s+)?touchdowns")),
    ("any_qb_interceptions", re.compile(
        r"\b(?:any|a|some|an?\s+nfl)\s+(?:qb|quarterback)\b.*?\b" + _NUM + r"\+?\s+interceptions")),
    ("perfect_season", re.compile(r"\b(?:any|a|some|an?\s+nfl)\s+team\b.*\b17-0\b|\bsomeone\s+goes\s+17-0\b")),
    ("winless_season", re.compile(r"\b(?:any|a|some|an?\s+nfl)\s+team\b.*\b0-17\b|\bsomeone\s+goes\s+0-17\b")),
)

# (metric, pattern with one numeric group).  Order matters: specific first.
METRIC_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("passing_yards", re.compile(r"\b" + _NUM + r"\+?\s+(?:passing|pass)\s+yards\b")),
    ("passing_yards", re.compile(r"\bthrows?\s+for\s+(?:at least\s+|over\s+|more than\s+)?" + _NUM + r"\+?\s+yards\b")),
    ("passing_yards", re.compile(r"\b" + _NUM + r"\+?\s+yards\s+passing\b")),
    ("passing_tds", re.compile(r"\bthrows?\s+(?:for\s+)?(?:at least\s+|over\s+|more than\s+)?" + _NUM + r"\+?\s+(?:passing\s+)?touchdowns\b")),
    ("passing_tds", re.compile(r"\b" + _NUM + r"\+?\s+passing\s+touchdowns\b")),
    ("passing_interceptions", re.compile(r"\bthrows?\s+(?:at least\s+|over\s+|more than\s+)?" + _NUM + r"\+?\s+interceptions\b")),
    ("passing_interceptions", re.compile(r"\b" + _NUM + r"\+?\s+interceptions\s+thrown\b")),
    ("rushing_yards", re.compile(r"\b(?:rush(?:es|ing)?|runs?)\s+for\s+(?:at least\s+|over\s+|more than\s+)?" + _NUM + r"\+?\s+yards\b")),
    ("rushing_yards", re.compile(r"\b" + _NUM + r"\+?\s+rushing\s+yards\b")),
    ("rushing_tds", re.compile(r"\brush(?:es|ing)?\s+for\s+(?:at least\s+)?" + _NUM + r"\+?\s+touchdowns\b")),
    ("rushing_tds", re.compile(r"\b" + _NUM + r"\+?\s+rushing\s+touchdowns\b")),
    ("receiving_yards", re.compile(r"\b" + _NUM + r"\+?\s+receiving\s+yards\b")),
    ("receiving_yards", re.compile(r"\bcatch(?:es)?\s+for\s+(?:at least\s+|over\s+)?" + _NUM + r"\+?\s+yards\b")),
    ("receiving_yards", re.compile(r"\b" + _NUM + r"\+?\s+yards\s+receiving\b")),
    ("receiving_tds", re.compile(r"\bcatch(?:es)?\s+(?:at least\s+)?" + _NUM + r"\+?\s+touchdowns\b")),
    ("receiving_tds", re.compile(r"\b" + _NUM + r"\+?\s+receiving\s+touchdowns\b")),
    ("receptions", re.compile(r"\b" + _NUM + r"\+?\s+(?:receptions|catches)\b")),
    ("receptions", re.compile(r"\bcatch(?:es)?\s+" + _NUM + r"\+?\s+passes\b")),
    ("scrimmage_yards", re.compile(r"\b" + _NUM + r"\+?\s+(?:scrimmage yards|yards from scrimmage)\b")),
    ("sacks", re.compile(r"\b" + _NUM + r"\+?\s+sacks\b")),
    ("interceptions", re.compile(r"\b" + _NUM + r"\+?\s+interceptions\b")),
    ("touchdowns", re.compile(r"\b" + _NUM + r"\+?\s+touchdowns\b")),
    ("yards", re.compile(r"\b" + _NUM + r"\+?\s+yards\b")),
)

# Generic metric words resolved by position group.
_GENERIC_METRICS: Final[dict[str, dict[str, str]]] = {
    "touchdowns": {"qb": "passing_tds", "rb": "rushing_tds", "receiver": "receiving_tds"},
    "yards": {"qb": "passing_yards", "rb": "rushing_yards", "receiver": "receiving_yards"},
    "interceptions": {"qb": "passing_interceptions", "defense": "defensive_interceptions"},
}

_STAT_WORDS: Final[re.Pattern[str]] = re.compile(
    r"\b(touchdowns?|yards|interceptions|sacks|receptions|catches)\b"
)

_LESS_THAN: Final[re.Pattern[str]] = re.compile(r"\b(?:fewer|less)\s+than\s+" + _NUM)
_AT_MOST_NOUN: Final[str] = (
    r"(?:\s+(?:passing|rushing|receiving|total))?"
    r"(?:\s+(?:touchdowns?|yards|interceptions|sacks|receptions|catches|games|wins))?"
)
_AT_MOST: Final[re.Pattern[str]] = re.compile(
    r"\b(?:under|at most|no more than)\s+" + _NUM
    + r"|\b" + _NUM + _AT_MOST_NOUN + r"\s+or (?:fewer|less)\b"
)
_MORE_THAN: Final[re.Pattern[str]] = re.compile(r"\b(?:more than|over)\s+" + _NUM)

AWARD_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("opoy", re.compile(r"\b(?:opoy|offensive player of the year)\b")),
    ("dpoy", re.compile(r"\b(?:dpoy|defensive player of the year)\b")),
    ("allpro", re.compile(r"\b(?:first[- ]team\s+)?all[- ]?pro\b")),
    ("mvp", re.compile(r"(?<!super bowl )\b(?:league\s+)?mvp\b")),
)

MULTI_ACHIEVEMENT: Final[re.Pattern[str]] = re.compile(
    r"\b(?:win|wins|won|earns?)\s+(exactly\s+|at least\s+)?(\d+)\s+"
    r"(super bowls?|mvps?|championships?|titles?|rings?|opoys?|dpoys?|all[- ]?pros?)\b"
)
_ACHIEVEMENT_AWARD: Final[dict[str, str]] = {
    "super bowl": "super_bowl", "championship": "super_bowl", "title": "super_bowl",
    "ring": "super_bowl", "mvp": "mvp", "opoy": "opoy", "dpoy": "dpoy",
    "all-pro": "allpro", "allpro": "allpro", "all pro": "allpro",
}

_HOF: Final[re.Pattern[str]] = re.compile(r"\b(hall of fame|hof|canton)\b")
_RETIRES: Final[re.Pattern[str]] = re.compile(r"\bretire[sd]?\b|\bretiring\b|\bretirement\b")
_COMEBACK: Final[re.Pattern[str]] = re.compile(r"\b(comes out of retirement|unretires?|comeback)\b")
_COMBINE: Final[re.Pattern[str]] = re.compile(r"\bcombine[sd]?\b|\bcombined\b")

_SUPER_BOWL_WIN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:win|wins|won|winning)\s+(?:the\s+|a\s+|another\s+)?(?:super bowl|championship|title|lombardi)\b"
    r"|\bsuper bowl (?:champions?|winners?)\b"
)
_SUPER_BOWL_APPEAR: Final[re.Pattern[str]] = re.compile(
    r"\b(?:make|makes|reach|reaches|go to|goes to|play in|plays in|appear in|appears in)\s+(?:the\s+)?super bowl\b"
)
_CONFERENCE_WIN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:win|wins|won)\s+(?:the\s+)?(afc|nfc|conference)\b(?!\s+(?:east|west|north|south))"
    r"|\b(afc|nfc) (?:champions?|winners?)\b"
)
_DIVISION_WIN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:win|wins|won)\s+(?:the\s+)?(?:(afc|nfc)\s+(east|west|north|south)|division)\b"
    r"|\bdivision (?:title|champions?|winners?)\b"
)
_MAKE_PLAYOFFS: Final[re.Pattern[str]] = re.compile(r"\bmake the playoffs\b")
_MISS_PLAYOFFS: Final[re.Pattern[str]] = re.compile(
    r"\bmiss the playoffs\b|\b(?:does not|doesn't|do not|don't|fails? to|won't)\s+make the playoffs\b"
)
_RECORD: Final[re.Pattern[str]] = re.compile(r"\b(\d{1,2})-(\d{1,2})\b")
_WIN_TOTAL_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("==", re.compile(r"\bwins?\s+exactly\s+(\d{1,2})\s+games\b")),
    ("<=", re.compile(r"\bwins?\s+(\d{1,2})\s+or (?:fewer|less)\s+games\b")),
    ("<=", re.compile(r"\bwins?\s+(\d{1,2})\s+games\s+or (?:fewer|less)\b")),
    ("<=", re.compile(r"\b(\d{1,2})\s+wins\s+or (?:fewer|less)\b")),
    ("<", re.compile(r"\bwins?\s+(?:fewer|less)\s+than\s+(\d{1,2})\s+games\b")),
    (">", re.compile(r"\bwins?\s+more\s+than\s+(\d{1,2})\s+games\b")),
    (">=", re.compile(r"\bwins?\s+(?:at least\s+)?(\d{1,2})\+?\s+(?:or more\s+)?games\b")),
    (">=", re.compile(r"\b(\d{1,2})\+?\s+(?:or more\s+)?wins\b")),
)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def detect_unsupportable(text: str) -> Declined | None:
    """Hard impossibilities and subjective debates never reach a resolver."""
    for pattern, reason in IMPOSSIBLE_PATTERNS:
        if pattern.search(text):
            return Declined(CONSTRAINT_VIOLATION, reason)
    for pattern in SUBJECTIVE_PATTERNS:
        if pattern.search(text):
            return Declined(
                UNSUPPORTED,
                "Subjective debate, not a measurable event. Try a stat, award, or season outcome.",
            )
    return None


def protect_comparators(text: str) -> str:
    return _PROTECTED_PHRASES.sub(lambda m: m.group(1).replace(" ", _PROTECT_JOIN), text)


def restore_comparators(text: str) -> str:
    return text.replace(_PROTECT_JOIN, " ")


def split_top_level(text: str, connective: str) -> list[str]:
    """Split on `` and `` / `` or `` and drop empty fragments."""
    parts = [p.strip(" ,") for p in re.split(rf"\s*,?\s+{connective}\s+", text)]
    return [p for p in parts if p]


def detect_conditional(text: str) -> tuple[str, str] | None:
    """Returns ``(given, then)`` for conditional phrasings."""
    for pattern, reversed_ in _CONDITIONAL_PATTERNS:
        m = pattern.match(text)
        if not m:
            continue
        left, right = m.group(1).strip(), m.group(2).strip()
        if not left or not right:
            continue
        return (right, left) if reversed_ else (left, right)
    return None


def detect_race(text: str) -> tuple[str, str] | None:
    if _RACE_EXCLUSIONS.search(text):
        return None
    m = _RACE_PATTERN.match(text)
    if not m:
        return None
    return m.group(1).strip(), m.group(2).strip()


def race_market(text: str) -> str:
    if re.search(r"\bdivision\b", text):
        return "division_winner"
    if _SUPER_BOWL_APPEAR.search(text) or re.search(r"\b(afc|nfc|conference)\b", text):
        return "conference_winner"
    return "super_bowl_winner"


def window_seasons(text: str, season_year: int) -> int | None:
    """Seasons covered by "next N years" / "by 20XX" phrasing, 1 <= N <= 20."""
    m = MULTI_YEAR_WINDOW.search(text)
    if not m:
        return None
    if m.group(1):
        n = int(m.group(1))
    else:
        n = int(m.group(2)) - season_year
        if re.search(r"\b(?:by|through)\s+20\d{2}\b", m.group(0)):
            n += 1
    if n < 1 or n > 20:
        return None
    return n


def parse_threshold(text: str, raw: str) -> tuple[str, float]:
    """
    Returns ``(comparator, integer threshold)`` for the number ``raw``
    appearing in ``text``.  Half-points round to the side that decides the
    bet: ``over 40.5`` -> ``>= 41``, ``under 40.5`` -> ``<= 40``.
    """
    value = float(raw)
    for m in _LESS_THAN.finditer(text):
        if m.group(1) == raw:
            return "<=", float(math.ceil(value) - 1)
    for m in _AT_MOST.finditer(text):
        if raw in (m.group(1), m.group(2)):
            return "<=", float(math.floor(value))
    for m in _MORE_THAN.finditer(text):
        if m.group(1) == raw:
            return ">=", float(math.floor(value) + 1)
    return ">=", float(math.ceil(value))


def match_metric(text: str, position_group: str) -> tuple[str, str] | None:
    """
    Returns ``(metric, raw_number)``.  Generic metrics ("30 touchdowns") are
    resolved by position; an unresolvable generic metric yields
    ``("ambiguous", raw)``.
    """
    for metric, pattern in METRIC_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        if metric in _GENERIC_METRICS:
            resolved = _GENERIC_METRICS[metric].get(position_group)
            return (resolved or "ambiguous"), m.group(1)
        return metric, m.group(1)
    return None


def _half_points(text: str) -> str:
    return re.sub(r"\b(\d+)\s+and_a_half\b", r"\1.5", text)


def _entity_surface(mention: Mention) -> str:
    if isinstance(mention.entity, Team):
        return f"the {mention.entity.nickname.lower()}"
    return mention.entity.name.lower()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class IntentParser:
    """Decomposes a normalized prompt into outcome descriptors."""

    def __init__(self, resolver: EntityResolver, calibration: CalibrationConfig):
        self.resolver = resolver
        self.calibration = calibration

    def parse(self, prompt: NormalizedPrompt, season_year: int) -> Descriptor | Declined:
        declined = detect_unsupportable(prompt.text)
        if declined is not None:
            return declined
        text = _half_points(protect_comparators(prompt.text))
        result = self._decompose(text, prompt, season_year, depth=0)
        if result is None:
            return Declined(UNSUPPORTED, "No deterministic model matches this scenario.")
        logger.debug("Parsed %r -> %s", prompt.text, getattr(result, "label", result))
        return result

    # ------------------------------------------------------------------ #
    #  Decomposition                                                       #
    # ------------------------------------------------------------------ #

    def _decompose(
        self,
        text: str,
        prompt: NormalizedPrompt,
        season_year: int,
        depth: int,
    ) -> Descriptor | Declined | None:
        if depth > _MAX_DEPTH:
            return Declined(NEEDS_CLARIFICATION, "Scenario is nested too deeply to interpret.")

        combined = bool(_COMBINE.search(text))

        conditional = detect_conditional(text)
        if conditional is not None:
            given_text, then_text = conditional
            then_text = self._carry_subject(given_text, then_text)
            given = self._clause(given_text, prompt, season_year, depth)
            then = self._clause(then_text, prompt, season_year, depth)
            for part in (given, then):
                if isinstance(part, Declined):
                    return part
            return Conditional(given=given, then=then)

        race = detect_race(text)
        if race is not None:
            return self._parse_race(text, race, prompt, season_year)

        if not combined:
            listed = self._parse_entity_list(text, prompt, season_year, depth)
            if listed is not None:
                return listed

            for connective, node_type in (("or", OneOf), ("and", AllOf)):
                parts = split_top_level(text, connective)
                if len(parts) < 2:
                    continue
                clauses: list[Descriptor] = []
                previous = parts[0]
                for i, part in enumerate(parts):
                    if i > 0:
                        part = self._carry_subject(previous, part)
                    clause = self._clause(part, prompt, season_year, depth)
                    if isinstance(clause, Declined):
                        return clause
                    clauses.append(clause)
                    previous = part
                return node_type(clauses=tuple(clauses))

        return self._classify(restore_comparators(text), prompt, season_year)

    def _clause(
        self,
        text: str,
        prompt: NormalizedPrompt,
        season_year: int,
        depth: int,
    ) -> Descriptor | Declined:
        result = self._decompose(text, prompt, season_year, depth + 1)
        if result is None:
            return Declined(
                NEEDS_CLARIFICATION,
                f"Could not interpret the clause '{restore_comparators(text)}'.",
                final=True,
            )
        return result

    def _carry_subject(self, source: str, target: str) -> str:
        """Give a subject-less clause ("misses the playoffs") the prior subject."""
        if self.resolver.resolve(restore_comparators(target)):
            return target
        mentions = self.resolver.resolve(restore_comparators(source))
        if not mentions:
            return target
        target = _PRONOUN_LEAD.sub("", target)
        return f"{_entity_surface(mentions[0])} {target}"

    def _parse_race(
        self,
        text: str,
        race: tuple[str, str],
        prompt: NormalizedPrompt,
        season_year: int,
    ) -> RaceBefore | Declined:
        left, right = (restore_comparators(t) for t in race)
        left_team = self.resolver.first_team(left)
        right_team = self.resolver.first_team(right)
        if left_team is None or right_team is None:
            return Declined(
                UNSUPPORTED_COMPOSITE,
                "'Before' comparisons are supported between two teams.",
            )
        if left_team.abbreviation == right_team.abbreviation:
            return Declined(NEEDS_CLARIFICATION, "A race needs two different teams.")
        market = race_market(text)
        if market == "division_winner" and left_team.division != right_team.division:
            market = "super_bowl_winner"
        years = window_seasons(text, season_year) or 0
        return RaceBefore(first=left_team, second=right_team, market=market, years=years)

    def _parse_entity_list(
        self,
        text: str,
        prompt: NormalizedPrompt,
        season_year: int,
        depth: int,
    ) -> Descriptor | Declined | None:
        """
        "the chiefs, bills or ravens win the super bowl" -> AnyOf over the
        three teams with the shared suffix "win the super bowl".
        """
        plain = restore_comparators(text)
        verb = _OUTCOME_VERB.search(plain)
        if verb is None:
            return None
        prefix, suffix = plain[: verb.start()], plain[verb.start():]
        mentions = self.resolver.resolve(prefix)
        if len(mentions) < 2:
            return None
        allowed = set(_LIST_SEPARATORS)
        for mention in mentions:
            allowed.update(match_text(mention.surface).split())
            allowed.update(match_text(mention.entity.name).split())
            if isinstance(mention.entity, Team):
                allowed.add(mention.entity.abbreviation.lower())
                allowed.update(
                    alias for alias, abbr in TEAM_ALIASES.items()
                    if abbr == mention.entity.abbreviation and " " not in alias
                )
        if any(token not in allowed for token in match_text(prefix).split()):
            return None

        is_union = bool(re.search(r"\b(or|either)\b", prefix))
        clauses: list[Descriptor] = []
        for mention in mentions:
            clause = self._clause(
                protect_comparators(f"{_entity_surface(mention)} {suffix}"),
                prompt, season_year, depth,
            )
            if isinstance(clause, Declined):
                return clause
            clauses.append(clause)
        if is_union:
            return AnyOf(
                entities=tuple(_entity_surface(m) for m in mentions),
                outcome_suffix=suffix.strip(),
                clauses=tuple(clauses),
            )
        return AllOf(clauses=tuple(clauses))

    # ------------------------------------------------------------------ #
    #  Atomic classification                                               #
    # ------------------------------------------------------------------ #

    def _classify(
        self,
        text: str,
        prompt: NormalizedPrompt,
        season_year: int,
    ) -> Descriptor | Declined | None:
        horizon = detect_horizon(text)
        if horizon == "unspecified":
            horizon = prompt.horizon

        for cohort, pattern in COHORT_PATTERNS:
            m = pattern.search(text)
            if m:
                threshold = float(m.group(1)) if m.groups() and m.group(1) else 0.0
                cohort_horizon = "ever" if horizon in {"ever", "career"} else "season"
                return WildcardCohort(cohort=cohort, threshold=threshold, horizon=cohort_horizon)

        mentions = self.resolver.resolve(text)
        players = [m.entity for m in mentions if isinstance(m.entity, Player)]
        teams = [m.entity for m in mentions if isinstance(m.entity, Team)]

        if players:
            descriptor = self._classify_player(text, players, horizon, prompt, season_year)
        elif teams:
            descriptor = self._classify_team(text, teams[0], horizon, prompt, season_year)
        else:
            descriptor = None
            if _STAT_WORDS.search(text) or any(p.search(text) for _, p in AWARD_PATTERNS):
                return Declined(INVALID_ENTITY, "No player or team could be identified.")

        if descriptor is None or isinstance(descriptor, Declined):
            return descriptor
        return check_constraints(descriptor, text)

    def _classify_player(
        self,
        text: str,
        players: list[Player],
        horizon: str,
        prompt: NormalizedPrompt,
        season_year: int,
    ) -> Descriptor | Declined | None:
        player = players[0]
        explicit_season = bool(re.search(r"\bthis season\b|\b20\d{2}\b", text)) and not prompt.scope_inserted

        if _HOF.search(text):
            return PlayerCareerEvent(
                player=player, event="hall_of_fame",
                horizon="ever" if horizon == "ever" else "career",
                explicit_season=explicit_season,
            )
        if _COMEBACK.search(text):
            return None
        if _RETIRES.search(text):
            if horizon in {"season", "multi_year"}:
                retire_horizon = "season"
            elif horizon == "ever":
                retire_horizon = "ever"
            else:
                retire_horizon = "career"
            return PlayerCareerEvent(
                player=player, event="retirement", horizon=retire_horizon,
                injury=bool(re.search(r"\binjur", text)),
            )

        multi = MULTI_ACHIEVEMENT.search(text)
        if multi:
            qualifier, count, noun = multi.group(1) or "", int(multi.group(2)), multi.group(3)
            award = _achievement_award(noun)
            if count < 1:
                return Declined(NEEDS_CLARIFICATION, "Achievement count must be at least 1.")
            if explicit_season and count > 1 and award != "allpro":
                return Declined(
                    CONSTRAINT_VIOLATION,
                    f"{player.name} cannot win {count} of those in a single season.",
                )
            return PlayerAward(
                player=player, award=award, count=count,
                exact=qualifier.strip() == "exactly",
                horizon="multi_year" if window_seasons(text, season_year) else "career",
                seasons=window_seasons(text, season_year) or 0,
            )

        if _COMBINE.search(text) and len(players) >= 2:
            found = match_metric(text, players[0].position_group)
            if found is None:
                return Declined(NEEDS_CLARIFICATION, "Which stat should be combined?")
            metric, raw = found
            if metric == "ambiguous":
                return Declined(NEEDS_CLARIFICATION, "Specify passing, rushing or receiving.")
            comparator, threshold = parse_threshold(text, raw)
            return PlayerStatThreshold(
                player=players[0], partner=players[1], metric=metric,
                threshold=threshold, comparator=comparator, horizon="season",
            )

        for award, pattern in AWARD_PATTERNS:
            if pattern.search(text):
                seasons = window_seasons(text, season_year) or 0
                if seasons:
                    award_horizon = "multi_year"
                elif horizon in {"career", "ever"}:
                    award_horizon = "career"
                else:
                    award_horizon = "season"
                return PlayerAward(player=player, award=award, horizon=award_horizon, seasons=seasons)
        if re.search(r"\bsuper bowl mvp\b", text):
            return None

        found = match_metric(text, player.position_group)
        if found is not None:
            metric, raw = found
            if metric == "ambiguous":
                return Declined(
                    NEEDS_CLARIFICATION,
                    f"Specify passing, rushing or receiving for {player.name}.",
                )
            comparator, threshold = parse_threshold(text, raw)
            stat_horizon = "ever" if horizon in {"career", "ever"} else "season"
            return PlayerStatThreshold(
                player=player, metric=metric, threshold=threshold,
                comparator=comparator, horizon=stat_horizon,
            )
        if _STAT_WORDS.search(text):
            return Declined(NEEDS_CLARIFICATION, f"What threshold should {player.name} reach?")

        if _SUPER_BOWL_WIN.search(text):
            if horizon in {"career", "ever"}:
                return PlayerAward(player=player, award="super_bowl", horizon="career")
            team = team_by_abbreviation(player.team)
            if team is None:
                return Declined(INVALID_ENTITY, f"{player.name} is not on an NFL roster.")
            return self._classify_team(text, team, horizon, prompt, season_year)

        if _MAKE_PLAYOFFS.search(text) or _MISS_PLAYOFFS.search(text) or _SUPER_BOWL_APPEAR.search(text):
            team = team_by_abbreviation(player.team)
            if team is None:
                return Declined(INVALID_ENTITY, f"{player.name} is not on an NFL roster.")
            return self._classify_team(text, team, horizon, prompt, season_year)
        return None

    def _classify_team(
        self,
        text: str,
        team: Team,
        horizon: str,
        prompt: NormalizedPrompt,
        season_year: int,
    ) -> Descriptor | Declined | None:
        window = window_seasons(text, season_year)
        if window:
            seasons = window
        elif horizon in {"career", "ever"}:
            seasons = self.calibration.horizon_years["ever" if horizon == "ever" else "career"]
        else:
            seasons = 1
        explicit_season = bool(re.search(r"\bthis season\b|\b20\d{2}\b", text)) and not prompt.scope_inserted

        multi = MULTI_ACHIEVEMENT.search(text)
        if multi and _achievement_award(multi.group(3)) == "super_bowl":
            count = int(multi.group(2))
            if count < 1:
                return Declined(NEEDS_CLARIFICATION, "Title count must be at least 1.")
            if seasons == 1:
                if explicit_season and count > 1:
                    return Declined(
                        CONSTRAINT_VIOLATION,
                        f"{team.name} cannot win {count} Super Bowls in one season.",
                    )
                if not explicit_season:
                    seasons = self.calibration.race_default_years
            return TeamMarket(
                team=team, market="super_bowl_winner", seasons=seasons,
                horizon="multi_year" if seasons > 1 else "season", count=max(1, count),
            )

        record = _RECORD.search(text)
        if record:
            wins, losses = int(record.group(1)), int(record.group(2))
            games = self.calibration.games_per_season
            if wins + losses == games:
                if horizon in {"career", "ever"}:
                    return None
                if wins == 0:
                    return TeamWinTotal(team=team, comparator="<=", wins=0)
                return TeamWinTotal(team=team, comparator="==", wins=wins)
        for comparator, pattern in _WIN_TOTAL_PATTERNS:
            m = pattern.search(text)
            if not m:
                continue
            wins = int(m.group(1))
            if comparator == "<":
                comparator, wins = "<=", wins - 1
            elif comparator == ">":
                comparator, wins = ">=", wins + 1
            if wins < 0 or wins > self.calibration.games_per_season:
                return Declined(
                    CONSTRAINT_VIOLATION,
                    f"A {self.calibration.games_per_season}-game season cannot produce that record.",
                )
            return TeamWinTotal(team=team, comparator=comparator, wins=wins)

        if _MISS_PLAYOFFS.search(text):
            return TeamPlayoff(team=team, outcome="miss")
        if _MAKE_PLAYOFFS.search(text):
            return TeamPlayoff(team=team, outcome="make")

        market_horizon = "multi_year" if seasons > 1 else "season"
        division = _DIVISION_WIN.search(text)
        if division:
            if division.group(1) and division.group(2):
                named = f"{division.group(1).upper()} {division.group(2).title()}"
                if named != team.division:
                    return Declined(
                        CONSTRAINT_VIOLATION,
                        f"The {team.name} play in the {team.division}, not the {named}.",
                    )
            return TeamMarket(team=team, market="division_winner", seasons=seasons, horizon=market_horizon)

        conference = _CONFERENCE_WIN.search(text)
        if conference or _SUPER_BOWL_APPEAR.search(text):
            named = ((conference.group(1) or conference.group(2)) if conference else "") or ""
            if named in {"afc", "nfc"} and named.upper() != team.conference:
                return Declined(
                    CONSTRAINT_VIOLATION,
                    f"The {team.name} play in the {team.conference}, not the {named.upper()}.",
                )
            market = "afc_winner" if team.conference == "AFC" else "nfc_winner"
            return TeamMarket(team=team, market=market, seasons=seasons, horizon=market_horizon)

        if _SUPER_BOWL_WIN.search(text):
            return TeamMarket(team=team, market="super_bowl_winner", seasons=seasons, horizon=market_horizon)
        return None


def _achievement_award(noun: str) -> str:
    singular = re.sub(r"s$", "", noun.strip())
    return _ACHIEVEMENT_AWARD.get(singular, _ACHIEVEMENT_AWARD.get(noun.strip(), "super_bowl"))


# ---------------------------------------------------------------------------
# Constraint checks
# ---------------------------------------------------------------------------

_OFFENSIVE_GROUPS: Final[frozenset[str]] = frozenset({"qb", "rb", "receiver", "ol"})


def check_constraints(descriptor: Descriptor, text: str = "") -> Descriptor | Declined:
    """
    Position-reality, status and award-eligibility checks.  Returns the
    descriptor unchanged when it is feasible.
    """
    player = getattr(descriptor, "player", None)
    if not isinstance(player, Player):
        return descriptor

    if isinstance(descriptor, PlayerCareerEvent):
        if descriptor.event == "retirement" and player.status in {"retired", "deceased"}:
            return Declined(CONSTRAINT_VIOLATION, f"{player.name} is already {player.status}.")
        if descriptor.event == "hall_of_fame" and player.status == "active" and descriptor.explicit_season:
            return Declined(
                CONSTRAINT_VIOLATION,
                f"{player.name} is still active and not yet eligible for the Hall of Fame.",
            )
        return descriptor

    if player.status == "deceased":
        return Declined(CONSTRAINT_VIOLATION, f"{player.name} is deceased.")
    if player.status == "retired":
        return Declined(CONSTRAINT_VIOLATION, f"{player.name} is retired.")

    group = player.position_group
    if isinstance(descriptor, PlayerStatThreshold):
        metric, threshold = descriptor.metric, descriptor.threshold
        if descriptor.comparator != ">=":
            return descriptor
        if group == "ol" and metric == "receiving_tds" and threshold >= 1:
            return Declined(CONSTRAINT_VIOLATION, f"{player.name} is an offensive lineman.")
        if group != "qb" and metric == "passing_tds" and threshold >= 10 and descriptor.partner is None:
            return Declined(CONSTRAINT_VIOLATION, f"{player.name} does not play quarterback.")
        if group in {"ol", "specialist"} and metric == "rushing_tds" and threshold >= 3:
            return Declined(CONSTRAINT_VIOLATION, f"{player.name} does not carry the ball.")
        if group in _OFFENSIVE_GROUPS and metric in {"sacks", "defensive_interceptions"}:
            return Declined(CONSTRAINT_VIOLATION, f"{player.name} does not play defense.")
        return descriptor

    if isinstance(descriptor, PlayerAward):
        if descriptor.award == "dpoy" and group in _OFFENSIVE_GROUPS | {"specialist"}:
            return Declined(INELIGIBLE_ENTITY, f"{player.name} is not a defensive player.")
        if descriptor.award == "opoy" and group in {"defense", "specialist", "ol"}:
            return Declined(INELIGIBLE_ENTITY, f"{player.name} is not an offensive skill player.")
    return descriptor
