"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The three pillars exposed are:

1. **Odds conversion**: American ↔ decimal ↔ implied probability.
2. **Display rounding**: probability → a bettable American line.
3. **Horizon compounding**: season probability → multi-season probability.

Design decisions
----------------
* Probabilities cross module boundaries as **percentages** (``0 < pct <
  100``) because every estimate, calibration table and market reference in
  the engine is quoted that way.  Fractions are used only inside the
  distribution helpers.
* American lines are rounded to the nearest 5 (nearest 10 beyond ±1000)
  so outputs look like real sportsbook prices.  The implied probability
  shown to callers is always **re-derived from the rounded line**, never
  carried over from the raw model output, so odds and probability can never
  disagree by more than the rounding step.
* Conversion clamps probabilities to ``[0.1 %, 99.9 %]``.  A line of
  ±99 900 is the most extreme value the engine will ever quote; anything
  beyond that is a sentinel, not a price.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import re
from typing import Final

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: American-odds magnitude floor.  Values below this are not representable.
_MIN_ODDS_MAGNITUDE: Final[int] = 100

#: Probability clamp applied before converting to a line (fractions).
MIN_PROB: Final[float] = 0.001
MAX_PROB: Final[float] = 0.999

#: Open-interval clamp for every non-sentinel estimate (percent).
MIN_PCT: Final[float] = 0.1
MAX_PCT: Final[float] = 99.9

#: Rounding steps for display lines.
_LINE_STEP: Final[int] = 5
_LONG_LINE_STEP: Final[int] = 10
_LONG_LINE_THRESHOLD: Final[int] = 1000

#: A signed-integer American line, e.g. ``+150`` or ``-220``.
ODDS_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[+-]\d+$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp ``value`` into ``[lo, hi]``."""
    return max(lo, min(hi, value))


def clamp_pct(probability_pct: float) -> float:
    """Clamp a percentage into the open estimate interval ``[0.1, 99.9]``."""
    return clamp(probability_pct, MIN_PCT, MAX_PCT)


# ---------------------------------------------------------------------------
# Odds conversion
# ---------------------------------------------------------------------------


def american_to_decimal(american: int | float) -> float:
    """Convert American odds to decimal (European) format.

    Examples::

        american_to_decimal(-110) → 1.9091   (risk 110 to win 100)
        american_to_decimal(+150) → 2.5000   (risk 100 to win 150)

    Args:
        american: American odds.  Negative = favourite, positive = underdog.

    Returns:
        Decimal odds ≥ 1.0.

    Raises:
        ValueError: If ``|american| < 100``, which is not a representable
            American odds value.
    """
    if abs(int(american)) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(
            f"Invalid American odds {american!r}: magnitude must be ≥ 100. "
            "Check upstream odds parsing for data errors."
        )
    if american > 0:
        return american / 100.0 + 1.0
    # Negative: risk |american| to win 100
    return 100.0 / abs(american) + 1.0


def implied_prob(american: int | float) -> float:
    """Raw implied probability from American odds (vig-inclusive).

    Args:
        american: American odds integer.

    Returns:
        Implied probability in ``(0, 1)``.

    Examples::

        implied_prob(-110) → 0.5238
        implied_prob(+150) → 0.4000
    """
    return 1.0 / american_to_decimal(american)


def probability_to_american(probability_pct: float) -> int:
    """Convert a percentage to a rounded American line.

    The raw line is ``-100·p/(1-p)`` for favourites (``p ≥ 0.5``) and
    ``+100·(1-p)/p`` for underdogs, then rounded to the nearest 5 (nearest
    10 once the magnitude exceeds 1000).  The rounded magnitude never falls
    below 100.

    Args:
        probability_pct: Probability in percent.  Clamped to
            ``[0.1, 99.9]`` before conversion.

    Returns:
        Signed American odds integer.

    Examples::

        probability_to_american(50.0) → -100
        probability_to_american(25.0) → 300
        probability_to_american(80.0) → -400
        probability_to_american(0.5)  → 19900
    """
    p = clamp(probability_pct / 100.0, MIN_PROB, MAX_PROB)
    if p >= 0.5:
        raw = -(p / (1.0 - p)) * 100.0
    else:
        raw = ((1.0 - p) / p) * 100.0
    step = _LONG_LINE_STEP if abs(raw) > _LONG_LINE_THRESHOLD else _LINE_STEP
    rounded = int(round(raw / step) * step)
    if abs(rounded) < _MIN_ODDS_MAGNITUDE:
        rounded = _MIN_ODDS_MAGNITUDE if rounded >= 0 else -_MIN_ODDS_MAGNITUDE
    return rounded


def format_american(american: int) -> str:
    """Render an American line with an explicit sign (``+300`` / ``-150``)."""
    if american > 0:
        return f"+{american}"
    return f"{american}"


def parse_american(text: str) -> int:
    """Parse a signed American line string.

    Raises:
        ValueError: If ``text`` is not a signed integer line with magnitude
            of at least 100.
    """
    cleaned = str(text).strip()
    if not ODDS_PATTERN.match(cleaned):
        raise ValueError(f"Malformed American odds string {text!r}")
    value = int(cleaned)
    if abs(value) < _MIN_ODDS_MAGNITUDE:
        raise ValueError(f"American odds {text!r} must have magnitude ≥ 100")
    return value


def american_to_probability_pct(american: int | str) -> float:
    """Implied probability, in percent, of an American line.

    Accepts either an integer or a signed string.  The result is clamped to
    ``[0.1, 99.9]`` so it can be fed straight back into
    :func:`probability_to_american`.
    """
    value = parse_american(american) if isinstance(american, str) else int(american)
    return clamp_pct(implied_prob(value) * 100.0)


def odds_and_probability(probability_pct: float) -> tuple[str, float]:
    """Return the display line and the probability re-derived from it.

    This is the only path the engine uses to publish a price, which keeps
    odds and implied probability mutually derivable.
    """
    line = probability_to_american(probability_pct)
    return format_american(line), round(american_to_probability_pct(line), 1)


# ---------------------------------------------------------------------------
# Horizon compounding
# ---------------------------------------------------------------------------


def compound_over_seasons(season_pct: float, seasons: int) -> float:
    """Probability (percent) that a per-season event happens at least once.

    Computes ``1 − (1 − p)^n`` for ``n`` independent, identical seasons.

    Raises:
        ValueError: If ``seasons < 1``.
    """
    if seasons < 1:
        raise ValueError(f"seasons must be ≥ 1, got {seasons!r}")
    p = clamp(season_pct / 100.0, 0.0, 1.0)
    return (1.0 - (1.0 - p) ** seasons) * 100.0
