"""
Entity resolution: player and team mentions in normalized prompt text.

Strategies (in priority order):
    1. Exact n-gram lookup against the roster name index, longest window
       first (5 words down to 2).
    2. Single-token last-name lookup, disambiguated by team / position
       hints when present.
    3. Bounded edit-distance fallback when nothing exact was found: first
       and last name distances are scored separately and implausible
       matches are rejected.

"No entity" is a valid outcome: callers fall through to cohort-level or
unsupported handling rather than treating it as an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Final

from rapidfuzz import fuzz, process
from rapidfuzz.distance import Levenshtein

from scenario_odds.core.interfaces import Entity, Player, Team
from scenario_odds.services.roster import RosterIndex
from scenario_odds.services.team_mapping import TEAM_ALIASES, find_team_mentions

logger = logging.getLogger(__name__)

# Words that can never start or end a player name.
NON_NAME_TOKENS: Final[frozenset[str]] = frozenset({
    "what", "are", "the", "odds", "that", "win", "wins", "won", "make", "makes",
    "made", "throws", "throw", "catches", "catch", "is", "best", "greatest",
    "goat", "season", "year", "next", "this", "hall", "fame", "nfl", "and",
    "for", "pass", "passing", "td", "touchdown", "touchdowns", "combine",
    "combined", "or", "if", "then", "before", "a", "an", "any", "team", "goes",
    "rushes", "rushing", "yards", "super", "bowl", "mvp", "playoffs", "miss",
    "misses", "ever", "career", "retires", "will", "does", "his", "their",
})

# Surnames that are also everyday words; only a full-name hit resolves them.
_COMMON_WORD_SURNAMES: Final[frozenset[str]] = frozenset({
    "love", "chase", "hill", "young", "white", "brown", "nix", "will", "king",
    "jackson", "allen", "watt", "henry", "daniels", "williams", "johnson",
})

#: Edit-distance budget for the fuzzy fallback.
_MAX_FIRST_DISTANCE: Final[int] = 2
_MAX_LAST_DISTANCE: Final[int] = 2
_MAX_TOTAL_DISTANCE: Final[int] = 3

_POSITION_HINTS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\b(sacks?|tackles?|forced fumbles?|dpoy|defensive player)\b"), "defense"),
    (re.compile(r"\b(throws?|passing|passes|interceptions thrown)\b"), "qb"),
    (re.compile(r"\b(catches|receiving|receptions)\b"), "receiver"),
)


@dataclass(slots=True, frozen=True)
class Mention:
    entity: Entity
    start: int
    surface: str

    @property
    def is_player(self) -> bool:
        return isinstance(self.entity, Player)


def infer_position_hint(text: str) -> str | None:
    for pattern, group in _POSITION_HINTS:
        if pattern.search(text):
            return group
    return None


def match_text(text: str) -> str:
    """Same folding as the roster name index, applied to running text."""
    folded = re.sub(r"[.'’]", "", text.lower()).replace("-", " ")
    folded = re.sub(r"[^\w\s]", " ", folded)
    return re.sub(r"\s+", " ", folded).strip()


class EntityResolver:
    """Resolves player and team mentions against a RosterIndex."""

    def __init__(self, index: RosterIndex, max_window: int = 5):
        self.index = index
        self.max_window = max_window

    # ------------------------------------------------------------------ #
    #  Public API                                                          #
    # ------------------------------------------------------------------ #

    def resolve(
        self,
        text: str,
        team_hint: str | None = None,
        position_hint: str | None = None,
    ) -> list[Mention]:
        """
        Returns every player / team mentioned in ``text``, ordered by
        position.  Team mentions inside a matched player name are dropped.
        """
        folded = match_text(text)
        tokens = list(re.finditer(r"\S+", folded))
        team_mentions = find_team_mentions(folded)
        if team_hint is None and team_mentions:
            team_hint = team_mentions[0][1].abbreviation
        if position_hint is None:
            position_hint = infer_position_hint(text.lower())

        consumed: set[int] = set()
        players: list[Mention] = []

        # Strategy 1: exact n-gram, longest window first
        for size in range(min(self.max_window, len(tokens)), 1, -1):
            for i in range(len(tokens) - size + 1):
                span = range(i, i + size)
                if any(j in consumed for j in span):
                    continue
                phrase = " ".join(t.group(0) for t in tokens[i:i + size])
                candidates = self.index.by_name(phrase)
                if not candidates:
                    continue
                player = self._disambiguate(candidates, team_hint, position_hint)
                players.append(Mention(player, tokens[i].start(), phrase))
                consumed.update(span)

        # Strategy 2: last-name only
        for i, tok in enumerate(tokens):
            if i in consumed:
                continue
            word = tok.group(0)
            if word in NON_NAME_TOKENS or word in _COMMON_WORD_SURNAMES or word in TEAM_ALIASES:
                continue
            candidates = self.index.by_last_name(word)
            if not candidates:
                continue
            player = self._disambiguate(candidates, team_hint, position_hint)
            players.append(Mention(player, tok.start(), word))
            consumed.add(i)

        # Strategy 3: bounded edit distance, only when nothing exact hit
        if not players:
            fuzzy = self._fuzzy_two_word(tokens, team_hint, position_hint)
            if fuzzy is not None:
                players.append(fuzzy)

        mentions = list(players)
        player_spans = [
            (m.start, m.start + len(m.surface)) for m in players
        ]
        for offset, team in team_mentions:
            if any(lo <= offset < hi for lo, hi in player_spans):
                continue
            mentions.append(Mention(team, offset, team.nickname))

        mentions.sort(key=lambda m: m.start)
        logger.debug(
            "Resolved %d entities in %r: %s",
            len(mentions), text, [m.surface for m in mentions],
        )
        return mentions

    def first_player(self, text: str, **hints) -> Player | None:
        for mention in self.resolve(text, **hints):
            if isinstance(mention.entity, Player):
                return mention.entity
        return None

    def first_team(self, text: str) -> Team | None:
        for mention in self.resolve(text):
            if isinstance(mention.entity, Team):
                return mention.entity
        return None

    # ------------------------------------------------------------------ #
    #  Helpers                                                             #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _disambiguate(
        candidates: list[Player],
        team_hint: str | None,
        position_hint: str | None,
    ) -> Player:
        """
        Prefers the entry matching an explicit team / position hint, then
        the active entry, then the most findable (lowest popularity rank).
        """
        if len(candidates) == 1:
            return candidates[0]

        def score(p: Player) -> tuple:
            team_miss = 0 if team_hint and p.team == team_hint else 1
            pos_miss = 0 if position_hint and p.position_group == position_hint else 1
            return (team_miss, pos_miss, p.status != "active", p.popularity_rank)

        return sorted(candidates, key=score)[0]

    def _fuzzy_two_word(
        self,
        tokens: list[re.Match[str]],
        team_hint: str | None,
        position_hint: str | None,
    ) -> Mention | None:
        choices = [k for k in self.index.name_keys() if len(k.split()) == 2]
        if not choices:
            return None
        for i in range(len(tokens) - 1):
            first, last = tokens[i].group(0), tokens[i + 1].group(0)
            if first in NON_NAME_TOKENS or last in NON_NAME_TOKENS:
                continue
            if first in TEAM_ALIASES or last in TEAM_ALIASES:
                continue
            if first.isdigit() or last.isdigit():
                continue
            phrase = f"{first} {last}"
            result = process.extractOne(phrase, choices, scorer=fuzz.ratio, score_cutoff=80)
            if not result:
                continue
            cand_first, cand_last = result[0].split()
            d_first = Levenshtein.distance(first, cand_first)
            d_last = Levenshtein.distance(last, cand_last)
            last_budget = _MAX_LAST_DISTANCE if len(cand_last) >= 5 else 1
            if (
                d_first > _MAX_FIRST_DISTANCE
                or d_last > last_budget
                or d_first + d_last > _MAX_TOTAL_DISTANCE
            ):
                logger.debug(
                    "Rejected fuzzy player match '%s' → '%s' (distances %d/%d)",
                    phrase, result[0], d_first, d_last,
                )
                continue
            player = self._disambiguate(self.index.by_name(result[0]), team_hint, position_hint)
            logger.debug("Fuzzy matched '%s' to '%s' with score %s", phrase, player.name, result[1])
            return Mention(player, tokens[i].start(), phrase)
        return None


def resolved_entities(mentions: list[Mention]) -> list[Entity]:
    return [m.entity for m in mentions]
