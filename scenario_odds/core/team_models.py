"""Team market, playoff, win-total and league-cohort models.

Every function takes a season probability (usually from the market
reference or its fallback) and projects it onto the requested shape:

* multi-year title windows compound a decaying per-season vector;
* the two-team race is the competing-hazards model from
  :mod:`scenario_odds.core.distributions`;
* win totals use a Poisson-binomial over the regular-season schedule with a
  per-game win rate derived from the team's playoff strength;
* cohort events ("a team goes 17-0") expand a per-season rate over a
  10-season (career) or 30-season (ever) horizon.

Run tests with::

    pytest tests/test_team_models.py -v
"""

from __future__ import annotations

from typing import Final

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.distributions import (
    count_distribution,
    prob_any,
    prob_at_least,
    prob_exactly,
    two_sided_race,
)
from scenario_odds.core.odds_math import clamp

#: Season probability bounds for multi-year title windows.
_TITLE_SEASON_BOUNDS: Final[tuple[float, float]] = (0.2, 90.0)

#: Per-season fraction bounds inside a title window.
_TITLE_FRACTION_BOUNDS: Final[tuple[float, float]] = (0.001, 0.95)

#: Per-season fraction bounds inside the race model.
_RACE_FRACTION_BOUNDS: Final[tuple[float, float]] = (0.001, 0.8)

#: Per-game win probability bounds for win totals.
_GAME_WIN_BOUNDS: Final[tuple[float, float]] = (0.2, 0.8)

#: Alternating home/away swing applied to the per-game win probability.
_HOME_AWAY_SWING: Final[float] = 0.04

#: Playoff make-rate bounds.
_PLAYOFF_BOUNDS: Final[tuple[float, float]] = (2.0, 98.0)


# ---------------------------------------------------------------------------
# Title windows
# ---------------------------------------------------------------------------


def title_vector(season_pct: float, seasons: int, calibration: CalibrationConfig) -> list[float]:
    """Per-season title fractions ``p·decay^i`` over ``seasons`` seasons."""
    pct = clamp(season_pct, *_TITLE_SEASON_BOUNDS)
    return [
        clamp(pct / 100.0 * calibration.title_decay ** i, *_TITLE_FRACTION_BOUNDS)
        for i in range(max(1, seasons))
    ]


def multi_year_title_pct(season_pct: float, seasons: int, calibration: CalibrationConfig) -> float:
    """Probability (percent) of at least one title within ``seasons``."""
    if seasons <= 1:
        return season_pct
    return prob_any(title_vector(season_pct, seasons, calibration)) * 100.0


def title_count_pct(
    season_pct: float,
    seasons: int,
    count: int,
    calibration: CalibrationConfig,
    exact: bool = False,
) -> float:
    """Probability (percent) of ``count`` titles within ``seasons``."""
    vector = title_vector(season_pct, seasons, calibration)
    if exact:
        return prob_exactly(vector, count) * 100.0
    return prob_at_least(vector, count) * 100.0


def race_vector(season_pct: float, years: int, calibration: CalibrationConfig) -> list[float]:
    pct = clamp(season_pct, *calibration.race_season_bounds)
    return [
        clamp(pct / 100.0 * calibration.title_decay ** i, *_RACE_FRACTION_BOUNDS)
        for i in range(max(1, years))
    ]


def race_pcts(
    season_pct_a: float,
    season_pct_b: float,
    years: int,
    calibration: CalibrationConfig,
) -> tuple[float, float]:
    """``(P(A first), P(B first))`` in percent, normalised to sum to 100."""
    first, second = two_sided_race(
        race_vector(season_pct_a, years, calibration),
        race_vector(season_pct_b, years, calibration),
    )
    return first * 100.0, second * 100.0


# ---------------------------------------------------------------------------
# Playoffs and win totals
# ---------------------------------------------------------------------------


def playoff_make_pct(abbreviation: str, calibration: CalibrationConfig) -> float:
    pct = calibration.playoff_make_pct.get(abbreviation.upper(), calibration.playoff_default_pct)
    return clamp(pct, *_PLAYOFF_BOUNDS)


def playoff_pct(abbreviation: str, outcome: str, calibration: CalibrationConfig) -> float:
    """Make (or miss) probability in percent."""
    make = playoff_make_pct(abbreviation, calibration)
    return 100.0 - make if outcome == "miss" else make


def game_win_probabilities(abbreviation: str, calibration: CalibrationConfig) -> list[float]:
    """Per-game win fractions for a full regular season.

    The base rate maps playoff make-rate onto ``[0.28, 0.70]`` and
    alternates a small home/away swing across the schedule.
    """
    make = playoff_make_pct(abbreviation, calibration)
    base = clamp(0.28 + make / 100.0 * 0.42, *_GAME_WIN_BOUNDS)
    return [
        clamp(base + (_HOME_AWAY_SWING if i % 2 == 0 else -_HOME_AWAY_SWING), 0.01, 0.99)
        for i in range(calibration.games_per_season)
    ]


def win_total_pct(
    abbreviation: str,
    comparator: str,
    wins: int,
    calibration: CalibrationConfig,
) -> float:
    """Probability (percent) that regular-season wins satisfy ``comparator wins``.

    Raises:
        ValueError: If ``comparator`` is not one of ``>=``, ``<=``, ``==``.
    """
    dist = count_distribution(game_win_probabilities(abbreviation, calibration))
    wins = int(clamp(wins, 0, len(dist) - 1))
    if comparator == ">=":
        total = float(dist[wins:].sum())
    elif comparator == "<=":
        total = float(dist[: wins + 1].sum())
    elif comparator == "==":
        total = float(dist[wins])
    else:
        raise ValueError(f"Unsupported win-total comparator {comparator!r}.")
    return total * 100.0


# ---------------------------------------------------------------------------
# League cohorts
# ---------------------------------------------------------------------------


def _step_lookup(table: tuple[tuple[int, float], ...], threshold: float, floor: float) -> float:
    for max_threshold, pct in table:
        if threshold <= max_threshold:
            return pct
    return floor


def cohort_season_pct(cohort: str, threshold: float, calibration: CalibrationConfig) -> float:
    """Per-season probability (percent) of a league-wide event.

    Raises:
        ValueError: For an unknown cohort name.
    """
    if cohort == "perfect_season":
        return calibration.perfect_season_pct
    if cohort == "winless_season":
        return calibration.winless_season_pct
    if cohort == "any_qb_passing_tds":
        return _step_lookup(calibration.any_qb_td_table, threshold, calibration.any_qb_td_floor)
    if cohort == "any_qb_interceptions":
        return _step_lookup(calibration.any_qb_int_table, threshold, calibration.any_qb_int_floor)
    raise ValueError(f"Unknown cohort {cohort!r}.")


def horizon_adjusted_pct(season_pct: float, horizon: str, calibration: CalibrationConfig) -> float:
    """Expand a per-season rate to ``career`` / ``ever`` as ``1 − (1 − p)^years``."""
    years = calibration.horizon_years.get(horizon)
    if not years:
        return season_pct
    p = season_pct / 100.0
    return clamp((1.0 - (1.0 - p) ** years) * 100.0, 0.01, 99.9)
