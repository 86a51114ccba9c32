"""Award, title and career-event models.

Everything here is a pure function of a :class:`Player`, the calibration
bundle and (where relevant) the team's season Super Bowl probability.

* Season MVP is anchored to the team's title odds.
* Multi-season award and title counts build a per-season probability
  vector and evaluate it with the Poisson-binomial recurrence.
* Hall of Fame and retirement are historical baselines.

Run tests with::

    pytest tests/test_career_models.py -v
"""

from __future__ import annotations

from typing import Final

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.distributions import (
    prob_any,
    prob_at_least,
    prob_exactly,
    season_vector,
)
from scenario_odds.core.interfaces import Player
from scenario_odds.core.odds_math import clamp, compound_over_seasons

#: Award tables only distinguish these groups; everything else is "other".
_AWARD_GROUPS: Final[frozenset[str]] = frozenset({"qb", "rb", "receiver", "defense"})

#: Seasons used to compound a retirement season rate for each horizon.
_RETIREMENT_HORIZON_SEASONS: Final[dict[str, int]] = {"career": 8, "ever": 15}


def years_remaining(player: Player, lo: int = 2, hi: int = 15) -> int:
    """Seasons left in a career, from age when known, else experience."""
    if player.age:
        return int(clamp(41 - player.age, lo, hi))
    if player.experience_years is not None:
        return int(clamp(12 - player.experience_years, lo, hi))
    return 9


def award_group(player: Player) -> str:
    group = player.position_group
    return group if group in _AWARD_GROUPS else "other"


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------


def award_season_pct(player: Player, award: str, calibration: CalibrationConfig) -> float:
    """First-season probability (percent) of ``award`` for ``player``."""
    table = calibration.award_base_pct.get(award, calibration.award_base_pct["mvp"])
    base = table.get(award_group(player), table["other"])
    tier = calibration.player_tier_multipliers.get(player.key, 1.0)
    early = (
        calibration.early_career_multiplier
        if (player.experience_years or 0) <= 2
        else 1.0
    )
    return base * tier * calibration.age_factor(player.age) * early


def award_vector(
    player: Player,
    award: str,
    calibration: CalibrationConfig,
    seasons: int | None = None,
) -> list[float]:
    """Per-season award fractions over ``seasons`` (default: career left)."""
    n = seasons if seasons else years_remaining(player)
    return season_vector(
        award_season_pct(player, award, calibration),
        n,
        decay=calibration.award_decay,
    )


def award_count_pct(
    player: Player,
    award: str,
    calibration: CalibrationConfig,
    count: int = 1,
    exact: bool = False,
    seasons: int | None = None,
) -> float:
    """Probability (percent) of winning ``award`` ``count`` times.

    Args:
        player: Roster entry.
        award: ``mvp``, ``opoy``, ``dpoy`` or ``allpro``.
        calibration: Parameter bundle.
        count: Target number of wins.
        exact: ``True`` for exactly ``count``, else at least ``count``.
        seasons: Window length; ``None`` means the rest of the career.
    """
    vector = award_vector(player, award, calibration, seasons)
    if exact:
        return prob_exactly(vector, count) * 100.0
    return prob_at_least(vector, count) * 100.0


def season_mvp_pct(
    player: Player,
    team_super_bowl_pct: float | None,
    calibration: CalibrationConfig,
) -> float:
    """Single-season MVP probability (percent).

    ``teamSignal · tierBoost · expMul · posMul + baseline`` where the team
    signal is ``clamp(0.9 · SB%, 0.8, 14)``.
    """
    sb = team_super_bowl_pct or calibration.market_default_pct["super_bowl_winner"]
    team_signal = clamp(sb * 0.9, 0.8, 14.0)
    tier_boost = calibration.mvp_tier_boosts.get(player.key, 1.0)
    exp = player.experience_years or 0
    if exp <= 0:
        exp_mul = 0.65
    elif exp == 1:
        exp_mul = 0.82
    elif exp == 2:
        exp_mul = 1.0
    elif exp <= 7:
        exp_mul = 1.1
    else:
        exp_mul = 0.95
    group = player.position_group
    if group == "qb":
        pos_mul, baseline = 1.0, 1.2
    elif group in {"rb", "receiver"}:
        pos_mul, baseline = 0.12, 0.15
    else:
        pos_mul, baseline = 0.05, 0.15
    return clamp(team_signal * tier_boost * exp_mul * pos_mul + baseline, 0.1, 40.0)


# ---------------------------------------------------------------------------
# Career Super Bowls
# ---------------------------------------------------------------------------


def _role_factor(career_year: int, group: str) -> float:
    if career_year <= 2:
        factor = 0.78
    elif career_year <= 4:
        factor = 0.92
    elif career_year <= 9:
        factor = 1.05
    elif career_year <= 12:
        factor = 0.92
    else:
        factor = 0.8
    return factor if group == "qb" else factor * 0.74


def career_title_vector(
    player: Player,
    team_super_bowl_pct: float | None,
    calibration: CalibrationConfig,
    seasons: int | None = None,
) -> list[float]:
    """Per-season chance the player's team wins it all with him on it.

    ``seasons`` truncates the window; by default it runs for the rest of
    the career (3 to 14 seasons).
    """
    group = "qb" if player.position_group == "qb" else "other"
    exp = player.experience_years or 0
    share = 0.95 if group == "qb" else 0.28
    share *= calibration.top_qb_boosts.get(player.key, 1.0)
    if group == "qb" and exp <= 2:
        share *= 0.72
    if group == "qb" and exp >= 4:
        share *= 1.12
    sb = team_super_bowl_pct or calibration.market_default_pct["super_bowl_winner"]
    base = clamp(sb * share, 0.2, 35.0)
    n = int(clamp(years_remaining(player), 3, 14))
    if seasons:
        n = min(n, seasons)
    return [
        clamp(base * _role_factor(exp + i + 1, group) * 0.97 ** i / 100.0, 0.001, 0.38)
        for i in range(n)
    ]


def career_super_bowl_pct(
    player: Player,
    team_super_bowl_pct: float | None,
    calibration: CalibrationConfig,
    count: int = 1,
    exact: bool = False,
    seasons: int | None = None,
) -> float:
    """Probability (percent) the player wins ``count`` rings over his career.

    Capped by historical ceilings for ``count``-ring careers.
    """
    vector = career_title_vector(player, team_super_bowl_pct, calibration, seasons)
    raw = (prob_exactly(vector, count) if exact else prob_at_least(vector, count)) * 100.0
    group = "qb" if player.position_group == "qb" else "other"
    caps = calibration.super_bowl_caps[group]
    young_cap, vet_cap = caps.get(min(count, max(caps)), caps[max(caps)])
    cap = young_cap if (player.experience_years or 0) <= 2 else vet_cap
    return clamp(min(raw, cap), 0.2, 95.0)


# ---------------------------------------------------------------------------
# Career events
# ---------------------------------------------------------------------------


def hall_of_fame_pct(
    player: Player,
    calibration: CalibrationConfig,
    horizon: str = "career",
    explicit_season: bool = False,
) -> float:
    """Hall of Fame induction probability (percent)."""
    group = player.position_group
    base = calibration.hof_base_pct.get(group, calibration.hof_base_pct["other"])
    career = calibration.hof_overrides.get(player.key, base)
    exp = player.experience_years or 0

    if player.status == "retired" and explicit_season:
        career = min(max(career / 3.0, 4.0), 35.0)
    if player.status == "active" and exp <= 3:
        career = min(career, 28.0 if group == "qb" else 18.0)
    if player.status == "active" and exp >= 8:
        career = min(career * 1.08, 92.0)
    if player.status == "unknown":
        career = max(4.0, career * 0.8)

    pct = career
    if horizon == "season" and player.status != "active":
        pct = min(max(career / 3.0, 2.0), 45.0)
    elif horizon == "ever":
        pct = min(career * 1.02, 95.0)
    return clamp(pct, 0.2, 95.0)


def retirement_pct(
    player: Player,
    calibration: CalibrationConfig,
    horizon: str = "season",
    injury_context: bool = False,
) -> float:
    """Retirement probability (percent) within ``horizon``."""
    if player.age:
        age = player.age
    elif player.experience_years is not None:
        age = 22 + player.experience_years
    else:
        age = 28
    season = calibration.retirement_season_pct(age)
    pos = player.position.upper()
    if pos == "QB":
        season *= 0.75
    elif pos == "RB":
        season *= 1.25
    if player.experience_years is not None and player.experience_years <= 2:
        season = min(season, 1.2)
    if injury_context:
        season *= 1.7
    season = clamp(season, 0.1, 70.0)

    seasons = _RETIREMENT_HORIZON_SEASONS.get(horizon)
    pct = compound_over_seasons(season, seasons) if seasons else season
    return clamp(pct, 0.1, 95.0)


def any_season_pct(season_pct: float, seasons: int, decay: float = 0.965) -> float:
    """Probability (percent) a per-season event happens in at least one of
    ``seasons`` seasons whose odds decay year over year."""
    return prob_any(season_vector(season_pct, seasons, decay=decay, hi=0.999)) * 100.0
