"""
NFL franchise table plus alias and fuzzy name matching.
This is the single source of truth for team name normalization.
"""

from __future__ import annotations

import logging
import re
from typing import Final

from rapidfuzz import fuzz, process

from scenario_odds.core.interfaces import Team

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# The 32 franchises.  Division names are "<conference> <direction>".
# ---------------------------------------------------------------------------
NFL_TEAMS: Final[tuple[Team, ...]] = (
    Team("Buffalo Bills", "BUF", "AFC East", "AFC"),
    Team("Miami Dolphins", "MIA", "AFC East", "AFC"),
    Team("New England Patriots", "NE", "AFC East", "AFC"),
    Team("New York Jets", "NYJ", "AFC East", "AFC"),
    Team("Baltimore Ravens", "BAL", "AFC North", "AFC"),
    Team("Cincinnati Bengals", "CIN", "AFC North", "AFC"),
    Team("Cleveland Browns", "CLE", "AFC North", "AFC"),
    Team("Pittsburgh Steelers", "PIT", "AFC North", "AFC"),
    Team("Houston Texans", "HOU", "AFC South", "AFC"),
    Team("Indianapolis Colts", "IND", "AFC South", "AFC"),
    Team("Jacksonville Jaguars", "JAX", "AFC South", "AFC"),
    Team("Tennessee Titans", "TEN", "AFC South", "AFC"),
    Team("Denver Broncos", "DEN", "AFC West", "AFC"),
    Team("Kansas City Chiefs", "KC", "AFC West", "AFC"),
    Team("Las Vegas Raiders", "LV", "AFC West", "AFC"),
    Team("Los Angeles Chargers", "LAC", "AFC West", "AFC"),
    Team("Dallas Cowboys", "DAL", "NFC East", "NFC"),
    Team("New York Giants", "NYG", "NFC East", "NFC"),
    Team("Philadelphia Eagles", "PHI", "NFC East", "NFC"),
    Team("Washington Commanders", "WAS", "NFC East", "NFC"),
    Team("Chicago Bears", "CHI", "NFC North", "NFC"),
    Team("Detroit Lions", "DET", "NFC North", "NFC"),
    Team("Green Bay Packers", "GB", "NFC North", "NFC"),
    Team("Minnesota Vikings", "MIN", "NFC North", "NFC"),
    Team("Atlanta Falcons", "ATL", "NFC South", "NFC"),
    Team("Carolina Panthers", "CAR", "NFC South", "NFC"),
    Team("New Orleans Saints", "NO", "NFC South", "NFC"),
    Team("Tampa Bay Buccaneers", "TB", "NFC South", "NFC"),
    Team("Arizona Cardinals", "ARI", "NFC West", "NFC"),
    Team("Los Angeles Rams", "LAR", "NFC West", "NFC"),
    Team("San Francisco 49ers", "SF", "NFC West", "NFC"),
    Team("Seattle Seahawks", "SEA", "NFC West", "NFC"),
)

_BY_ABBREVIATION: Final[dict[str, Team]] = {t.abbreviation: t for t in NFL_TEAMS}

# ---------------------------------------------------------------------------
# Aliases: lower-case surface form → abbreviation.  Nicknames and full
# names are generated from NFL_TEAMS; this dict adds slang and the cities
# that identify a single franchise.  "New York" and "Los Angeles" are left
# out on purpose: each maps to two teams.
# ---------------------------------------------------------------------------
_EXTRA_ALIASES: dict[str, str] = {
    # Slang
    "niners": "SF",
    "pats": "NE",
    "phins": "MIA",
    "fins": "MIA",
    "jags": "JAX",
    "hawks": "SEA",
    "bucs": "TB",
    # Cities / regions
    "buffalo": "BUF",
    "miami": "MIA",
    "new england": "NE",
    "baltimore": "BAL",
    "cincinnati": "CIN",
    "cleveland": "CLE",
    "pittsburgh": "PIT",
    "houston": "HOU",
    "indianapolis": "IND",
    "indy": "IND",
    "jacksonville": "JAX",
    "tennessee": "TEN",
    "denver": "DEN",
    "kansas city": "KC",
    "las vegas": "LV",
    "dallas": "DAL",
    "philadelphia": "PHI",
    "philly": "PHI",
    "washington": "WAS",
    "chicago": "CHI",
    "detroit": "DET",
    "green bay": "GB",
    "minnesota": "MIN",
    "atlanta": "ATL",
    "carolina": "CAR",
    "new orleans": "NO",
    "tampa bay": "TB",
    "tampa": "TB",
    "arizona": "ARI",
    "san francisco": "SF",
    "seattle": "SEA",
}


def _build_alias_table() -> dict[str, str]:
    table: dict[str, str] = {}
    for team in NFL_TEAMS:
        table[team.name.lower()] = team.abbreviation
        table[team.nickname.lower()] = team.abbreviation
    table.update(_EXTRA_ALIASES)
    return table


TEAM_ALIASES: Final[dict[str, str]] = _build_alias_table()

# Longest alias first so "kansas city chiefs" wins over "chiefs".
_ALIAS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(" + "|".join(
        re.escape(a) for a in sorted(TEAM_ALIASES, key=len, reverse=True)
    ) + r")\b"
)

#: Team nicknames, lower-case, for "is this prompt about the NFL?" checks.
TEAM_NICKNAMES: Final[frozenset[str]] = frozenset(
    t.nickname.lower() for t in NFL_TEAMS
)


def team_by_abbreviation(abbreviation: str | None) -> Team | None:
    if not abbreviation:
        return None
    return _BY_ABBREVIATION.get(abbreviation.upper())


def teams_in_division(division: str) -> list[Team]:
    return [t for t in NFL_TEAMS if t.division == division]


def find_team_mentions(text: str) -> list[tuple[int, Team]]:
    """
    Returns every team mentioned in ``text`` as ``(offset, Team)`` pairs,
    ordered by position.  Overlapping aliases resolve to the longest one.
    """
    lowered = text.lower()
    mentions: list[tuple[int, Team]] = []
    for m in _ALIAS_PATTERN.finditer(lowered):
        team = _BY_ABBREVIATION[TEAM_ALIASES[m.group(1)]]
        mentions.append((m.start(), team))
    return mentions


def _is_dangerous_substring_match(query: str, matched: str) -> bool:
    """
    Returns True when a fuzzy match is likely a false positive caused by
    token_set_ratio's tolerance for extra tokens.

    Example: "Los Angeles" fuzzy-matches "Los Angeles Rams" with a perfect
    token_set_ratio even though it could just as well be the Chargers.
    Detected by: one string is a case-insensitive substring of the other
    AND the character-level fuzz.ratio is below 75.
    """
    q = query.lower().strip()
    m = matched.lower().strip()
    if m in q or q in m:
        if fuzz.ratio(q, m) < 75:
            return True
    return False


def match_team(name: str) -> Team | None:
    """
    Finds the franchise a free-text team name refers to.

    Args:
        name: Raw name, e.g. "KC", "Chiefs", "kansas city chiefs", "Niners".

    Returns:
        The matching Team, or None if no confident match is found.
    """
    name = name.strip()
    if not name:
        return None

    # Strategy 1: abbreviation
    by_abbr = team_by_abbreviation(name)
    if by_abbr is not None:
        return by_abbr

    # Strategy 2: exact alias (case-insensitive)
    lowered = name.lower()
    if lowered in TEAM_ALIASES:
        return _BY_ABBREVIATION[TEAM_ALIASES[lowered]]

    # Strategy 3: fuzzy match against the full names.
    # Threshold 85 keeps typos like "Kansas Cty Chiefs" while rejecting
    # unrelated phrases.
    choices = [t.name for t in NFL_TEAMS]
    result = process.extractOne(name, choices, scorer=fuzz.token_set_ratio, score_cutoff=85)

    if result and _is_dangerous_substring_match(name, result[0]):
        logger.warning(
            "Substring guard blocked fuzzy match '%s' → '%s'",
            name, result[0],
        )
        result = None

    if result:
        logger.debug("Fuzzy matched '%s' to '%s' with score %s", name, result[0], result[1])
        return NFL_TEAMS[result[2]]

    return None
