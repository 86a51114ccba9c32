"""
Prompt normalization: raw text -> canonical parse text + cache key.

Every rewrite in this module is idempotent on its own output, so running
``normalize_prompt`` on an already-normalized text returns the same text and
key.  The function is total: empty or symbol-only input still receives a
digest-based key.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Final

from scenario_odds.services.team_mapping import find_team_mentions

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

_UNICODE_FOLDS: Final[tuple[tuple[str, str], ...]] = (
    ("’", "'"), ("‘", "'"),
    ("“", '"'), ("”", '"'),
    ("–", "-"), ("—", "-"),
    ("…", "..."),
    (" ", " "),
)

_TRAILING_INSTRUCTIONS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\b(explain|explanation|explain why|why)\b", re.I),
    re.compile(r"\b(give|show|return)\s+(odds\s+only|just\s+odds|only\s+odds)\b", re.I),
    re.compile(r"\b(odds\s+only|no\s+explanation|no\s+explainer|no\s+rationale)\b", re.I),
    re.compile(r"\b(brief|short)\s+(explanation|rationale)\b", re.I),
)

_LEAD_IN: Final[re.Pattern[str]] = re.compile(
    r"^(?:(?:what\s+are\s+(?:the\s+)?odds(?:\s+that)?|what\s+is\s+the\s+(?:chance|probability)"
    r"(?:\s+that)?|how\s+likely\s+is\s+it\s+that|odds\s+that|chance\s+that|"
    r"probability\s+that)\s*)+"
)

_IDIOMS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\b(?:three|3)[- ]peat\b"), "threepeat"),
    (re.compile(r"\bback[- ]to[- ]back\b"), "backtoback"),
    (re.compile(r"\bhall[- ]of[- ]famer\b"), "hall of fame"),
    (re.compile(r"\bundefeated\s+(?:regular\s+)?season\b"), "17-0 season"),
    (re.compile(r"\bperfect\s+(?:regular\s+)?season\b"), "17-0 season"),
    (re.compile(r"\bwinless\s+season\b"), "0-17 season"),
    (re.compile(r"\breturns?\s+to\s+play\b"), "comes out of retirement"),
)

_NUMBER_WORDS: Final[dict[str, int]] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS_WORDS: Final[dict[str, int]] = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_UNIT_WORDS: Final[str] = "one|two|three|four|five|six|seven|eight|nine"
# "twenty-five" / "twenty five" must become 25 before single words are
# replaced, otherwise it reads as the record "20-5".
_COMPOUND_NUMBER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(" + "|".join(_TENS_WORDS) + r")(?:-|\s+)(" + _UNIT_WORDS + r")\b"
)
_NUMBER_WORD_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(" + "|".join([*_NUMBER_WORDS, *_TENS_WORDS]) + r")\b"
)

#: Player nickname → canonical lower-case name.
PLAYER_ALIASES: Final[dict[str, str]] = {
    "drake may": "drake maye",
    "caleb": "caleb williams",
    "amon ra": "amon-ra st. brown",
    "amon ra st brown": "amon-ra st. brown",
    "amon-ra st brown": "amon-ra st. brown",
    "mahomes": "patrick mahomes",
    "lamar": "lamar jackson",
    "cmc": "christian mccaffrey",
    "tj watt": "t.j. watt",
    "ceedee": "ceedee lamb",
    "stroud": "cj stroud",
    "c.j. stroud": "cj stroud",
}

#: Team slang that should read as the nickname in the parse text.
_TEAM_SLANG: Final[dict[str, str]] = {
    "niners": "49ers",
    "pats": "patriots",
    "phins": "dolphins",
    "fins": "dolphins",
    "jags": "jaguars",
    "hawks": "seahawks",
    "bucs": "buccaneers",
    "chip": "championship",
}

_SYNONYMS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\bpicks\b"), "interceptions"),
    (re.compile(r"\bints\b"), "interceptions"),
    (re.compile(r"\btds\b"), "touchdowns"),
    (re.compile(r"\btd\b"), "touchdown"),
    (re.compile(r"\bpass(?:ing)?\s+touchdowns\b"), "passing touchdowns"),
    (re.compile(r"\byds\b"), "yards"),
    (re.compile(r"\b(?:makes?|reach(?:es)?|gets?\s+into)\s+(?:the\s+)?playoffs?\b"), "make the playoffs"),
    (re.compile(r"\bmiss(?:es)?\s+(?:the\s+)?playoffs?\b"), "miss the playoffs"),
    (re.compile(r"\b(?:records?|gets?|catch(?:es)?)\s+(\d{1,2})\s+receiving\s+touchdowns\b"), r"catches \1 touchdowns"),
    (re.compile(r"\bafc championship winner\b"), "afc winner"),
    (re.compile(r"\bnfc championship winner\b"), "nfc winner"),
)

# Key-only folds.  They collapse surface variants of the same proposition
# and may change grammar, so they never touch the parse text.
_KEY_FOLDS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"\bto\s+wins?\b"), "win"),
    (re.compile(r"\b(?:wins|won)\b"), "win"),
    (re.compile(r"\bsuper bowls\b"), "super bowl"),
    (re.compile(r"\bafc championship(?: game)?\b"), "afc"),
    (re.compile(r"\bnfc championship(?: game)?\b"), "nfc"),
    (re.compile(r"\bmvps\b"), "mvp"),
    (re.compile(r"\bin (?:his|her|their) career\b"), " "),
    (re.compile(r"\b(?:nfl|nba|mlb|nhl)\b"), " "),
)

_NFL_CONTEXT: Final[re.Pattern[str]] = re.compile(
    r"\b(nfl|super bowl|afc|nfc|playoffs?|mvp|opoy|dpoy|all-?pro|qb|quarterback|"
    r"touchdowns?|interceptions?|sacks?|rushing|receiving|passing|yards|"
    r"0-17|17-0|division)\b"
)

_EXPLICIT_YEAR: Final[re.Pattern[str]] = re.compile(r"\b20\d{2}(?:-\d{2})?\b")
_SEASON_WORD: Final[re.Pattern[str]] = re.compile(r"\bseason\b")
_NO_SCOPE: Final[re.Pattern[str]] = re.compile(
    r"\b(hall of fame|hof|ever|career|all[- ]time|at any point|retire\w*|"
    r"comes out of retirement|in history)\b"
    r"|\b(?:win|wins|won|earns?)\s+(?:exactly\s+|at least\s+)?\d+\s+"
    r"(?:super bowls?|mvps?|championships?|titles?|rings?|opoys?|dpoys?|all[- ]?pros?)\b"
)
_UPCOMING_SEASON: Final[re.Pattern[str]] = re.compile(
    r"\b(this year|next year|next season|upcoming season)\b"
)

#: "in the next 5 years", "over the next 3 seasons", "by 2030".
MULTI_YEAR_WINDOW: Final[re.Pattern[str]] = re.compile(
    r"\b(?:(?:next|over(?: the next)?|within(?: the next)?|in the next)\s+(\d{1,2})\s+(?:years|seasons)"
    r"|(?:before|by|through|until)\s+(20\d{2}))\b"
)


@dataclass(slots=True, frozen=True)
class NormalizedPrompt:
    """
    raw: the caller's text, untouched.
    text: lower-case canonical text used by every parser downstream.
    key: punctuation-free canonical key used by every cache tier.
    horizon: season | multi_year | career | ever | unspecified.
    scope_inserted: True when an implicit "this season" was appended.
    """

    raw: str
    text: str
    key: str
    horizon: str
    scope_inserted: bool = False


# ---------------------------------------------------------------------------
# Surface cleanup
# ---------------------------------------------------------------------------


def fold_unicode(text: str) -> str:
    for src, dst in _UNICODE_FOLDS:
        text = text.replace(src, dst)
    return text


def strip_trailing_instructions(text: str) -> str:
    """Removes presentation instructions such as "(odds only)" or ", explain"."""

    def _paren(match: re.Match[str]) -> str:
        inner = match.group(1)
        return "" if any(p.search(inner) for p in _TRAILING_INSTRUCTIONS) else match.group(0)

    def _tail(match: re.Match[str]) -> str:
        tail = match.group(2)
        return "" if any(p.search(tail) for p in _TRAILING_INSTRUCTIONS) else match.group(0)

    previous = None
    out = text
    while out != previous:
        previous = out
        out = re.sub(r"\(([^)]{0,80})\)\s*$", _paren, out)
        # Hyphen is not a separator here so "three-peat" survives.
        out = re.sub(r"([;,:])\s*([^;,:]{0,80})$", _tail, out)
        for pattern in _TRAILING_INSTRUCTIONS:
            out = re.sub(r"\s+" + pattern.pattern + r"\s*[.!?]*\s*$", "", out, flags=re.I)
    return out


def collapse_punctuation(text: str) -> str:
    text = re.sub(r"\.{2,}", "...", text)
    text = re.sub(r"([!?,;:])\1+", r"\1", text)
    return re.sub(r"-{2,}", "-", text)


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


# ---------------------------------------------------------------------------
# Canonical rewrites
# ---------------------------------------------------------------------------


def _alias_pattern(alias: str, canonical: str) -> re.Pattern[str]:
    body = r"\b" + r"\s+".join(re.escape(part) for part in alias.split()) + r"\b"
    # Guard aliases that are a prefix of their own expansion ("caleb" ->
    # "caleb williams") so a second pass does not expand them again.
    if canonical.startswith(alias + " "):
        rest = canonical[len(alias):]
        body += "(?!" + re.escape(rest) + ")"
    # Likewise "stroud" -> "cj stroud" must not fire on "cj stroud".
    if canonical.endswith(" " + alias):
        lead = canonical[: -len(alias)]
        body = "(?<!" + re.escape(lead) + ")" + body
    return re.compile(body)


_PLAYER_ALIAS_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = tuple(
    (_alias_pattern(alias, canonical), canonical)
    for alias, canonical in sorted(PLAYER_ALIASES.items(), key=lambda kv: -len(kv[0]))
)
_TEAM_SLANG_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = tuple(
    (re.compile(r"\b" + re.escape(alias) + r"\b"), canonical)
    for alias, canonical in _TEAM_SLANG.items()
)


def apply_aliases(text: str) -> str:
    for pattern, canonical in _PLAYER_ALIAS_PATTERNS:
        text = pattern.sub(canonical, text)
    for pattern, canonical in _TEAM_SLANG_PATTERNS:
        text = pattern.sub(canonical, text)
    return text


def number_words_to_digits(text: str) -> str:
    """Spelled-out numbers to digits: twenty-five -> 25, two -> 2."""
    text = _COMPOUND_NUMBER_PATTERN.sub(
        lambda m: str(_TENS_WORDS[m.group(1)] + _NUMBER_WORDS[m.group(2)]), text
    )
    return _NUMBER_WORD_PATTERN.sub(
        lambda m: str(_NUMBER_WORDS.get(m.group(1)) or _TENS_WORDS[m.group(1)]), text
    )


def strip_thousands_separators(text: str) -> str:
    return re.sub(r"(?<=\d),(?=\d{3}\b)", "", text)


def has_nfl_context(text: str) -> bool:
    return bool(_NFL_CONTEXT.search(text) or find_team_mentions(text))


def detect_horizon(text: str) -> str:
    if re.search(r"\b(ever|all[- ]time|at any point|in history)\b", text):
        return "ever"
    if re.search(r"\b(career|hall of fame|hof)\b", text):
        return "career"
    if MULTI_YEAR_WINDOW.search(text):
        return "multi_year"
    if _SEASON_WORD.search(text) or _EXPLICIT_YEAR.search(text):
        return "season"
    return "unspecified"


def insert_season_scope(text: str) -> tuple[str, bool]:
    """
    Rewrites every "upcoming season" phrasing to "this season" and appends
    an implicit "this season" to NFL prompts that carry no horizon.
    """
    if not has_nfl_context(text):
        return text, False
    if _NO_SCOPE.search(text) or _EXPLICIT_YEAR.search(text) or MULTI_YEAR_WINDOW.search(text):
        return text, False
    text = _UPCOMING_SEASON.sub("this season", text)
    if _SEASON_WORD.search(text):
        return text, False
    return f"{text} this season", True


def canonical_key(text: str) -> str:
    key = text
    for pattern, replacement in _KEY_FOLDS:
        key = pattern.sub(replacement, key)
    key = re.sub(r"[^\w\s]", " ", key)
    return collapse_whitespace(key)


def normalize_prompt(raw: str) -> NormalizedPrompt:
    """
    Canonicalizes a free-text prompt.

    Args:
        raw: Caller's prompt.  Any string, including empty.

    Returns:
        NormalizedPrompt whose ``text`` feeds the parsers and whose ``key``
        feeds the cache.  Never raises.
    """
    text = fold_unicode(str(raw or ""))
    text = strip_trailing_instructions(text)
    text = collapse_punctuation(text)
    text = collapse_whitespace(text).lower()
    text = _LEAD_IN.sub("", text)
    text = strip_thousands_separators(text)
    for pattern, replacement in _IDIOMS:
        text = pattern.sub(replacement, text)
    text = number_words_to_digits(text)
    text = apply_aliases(text)
    for pattern, replacement in _SYNONYMS:
        text = pattern.sub(replacement, text)
    text = collapse_whitespace(text).rstrip(" .!?")
    text, inserted = insert_season_scope(text)

    key = canonical_key(text)
    if not key:
        digest = hashlib.sha1(str(raw or "").encode("utf-8")).hexdigest()[:12]
        key = f"empty:{digest}"
        logger.debug("Prompt %r has no word characters; using key %s", raw, key)

    return NormalizedPrompt(
        raw=str(raw or ""),
        text=text,
        key=key,
        horizon=detect_horizon(text),
        scope_inserted=inserted,
    )
