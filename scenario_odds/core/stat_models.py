"""Season stat threshold models.

Prices "player reaches ``threshold`` in ``metric`` this season" from a
season mean and a tail distribution.

Mean
----
* Quarterback passing metrics start from a tier mean
  (:attr:`CalibrationConfig.passing_means`) scaled by an experience starter
  factor.
* Every other metric starts from a per-player prior when one exists
  (:attr:`CalibrationConfig.player_stat_priors`), else a position fallback
  (:attr:`CalibrationConfig.skill_fallback_means`).
* When season history is available the recent-weighted mean
  (weights 0.52 / 0.30 / 0.18, most recent first) is blended with the prior
  by a reliability weight that grows with sample depth and shrinks when the
  history is stale.

Tail
----
* Passing touchdowns: normal tail with a tier-bounded sigma, then capped per
  tier for 40 / 45 / 50 TD thresholds.
* Passing yards: continuity-corrected normal with ``σ = clamp(360 + 0.08μ,
  340, 900)``.
* Other metrics: negative binomial while the mean and threshold are small,
  normal (``Var = μ + μ²/k``) for yardage-scale values.

Sample depth and dispersion drive confidence, not the point estimate.

Run tests with::

    pytest tests/test_stat_models.py -v
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Sequence

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.distributions import (
    negative_binomial_tail_at_least,
    normal_tail_at_least,
    poisson_tail_at_least,
)
from scenario_odds.core.interfaces import Player
from scenario_odds.core.odds_math import clamp

# ---------------------------------------------------------------------------
# Metric vocabulary
# ---------------------------------------------------------------------------

#: Metrics modelled from quarterback passing priors.
PASSING_METRICS: Final[frozenset[str]] = frozenset(
    {"passing_tds", "passing_interceptions", "passing_yards"}
)

#: Yardage-scale metrics priced with a normal tail.
CONTINUOUS_METRICS: Final[frozenset[str]] = frozenset(
    {"passing_yards", "rushing_yards", "receiving_yards", "scrimmage_yards"}
)

#: Every metric the stat resolver accepts.
SUPPORTED_METRICS: Final[frozenset[str]] = frozenset({
    "passing_tds", "passing_interceptions", "passing_yards",
    "rushing_yards", "rushing_tds", "receiving_yards", "receiving_tds",
    "receptions", "scrimmage_yards", "sacks", "defensive_interceptions",
})

#: Recency weights for the blended history mean.
RECENT_WEIGHTS: Final[tuple[float, ...]] = (0.52, 0.30, 0.18)

#: Above this mean or threshold the negative binomial is replaced by a normal.
_NORMAL_SWITCH: Final[float] = 120.0

#: Season mean bounds.
_QB_MEAN_BOUNDS: Final[tuple[float, float]] = (0.8, 75.0)
_SKILL_MEAN_BOUNDS: Final[tuple[float, float]] = (0.02, 3000.0)
_PASSING_YARDS_BOUNDS: Final[tuple[float, float]] = (2100.0, 5600.0)


@dataclass(slots=True, frozen=True)
class SeasonMean:
    """Projected season total and the evidence behind it.

    Attributes:
        mean: Expected season total.
        model_type: ``tier_prior``, ``player_prior``, ``position_prior`` or
            ``history_blended``.
        sample_seasons: Seasons of history blended in (0 when none).
        stale_years: Seasons between the latest history row and the season
            being priced, minus one.
        reliability: Weight given to the history (0 when none).
    """

    mean: float
    model_type: str
    sample_seasons: int = 0
    stale_years: int = 0
    reliability: float = 0.0


# ---------------------------------------------------------------------------
# Means
# ---------------------------------------------------------------------------


def weighted_recent_mean(values: Sequence[float]) -> float | None:
    """Recency-weighted mean of up to three seasons, most recent first."""
    if not values:
        return None
    num = 0.0
    den = 0.0
    for weight, value in zip(RECENT_WEIGHTS, values):
        num += weight * float(value)
        den += weight
    return num / den if den else None


def fallback_group(player: Player) -> str:
    """Key into :attr:`CalibrationConfig.skill_fallback_means`."""
    pos = player.position.upper()
    if pos == "QB":
        return "qb"
    if pos in {"RB", "FB"}:
        return "rb"
    if pos == "WR":
        return "wr"
    if pos == "TE":
        return "te"
    if player.position_group == "defense":
        return "defense"
    return "other"


def prior_mean(player: Player, metric: str, calibration: CalibrationConfig) -> tuple[float, str]:
    """Season mean before any history, and the name of the prior used."""
    if metric in PASSING_METRICS:
        if player.position_group != "qb":
            return (0.35 if metric != "passing_yards" else 35.0), "position_prior"
        tier = calibration.qb_tier(player.name)
        means = calibration.passing_means[metric]
        base = means.get(tier, means["default"])
        return base * calibration.starter_factor(player.experience_years), "tier_prior"

    per_player = calibration.player_stat_priors.get(player.key, {})
    if metric in per_player:
        return float(per_player[metric]), "player_prior"

    if metric == "scrimmage_yards":
        rushing = calibration.player_stat_priors.get(player.key, {}).get("rushing_yards")
        receiving = calibration.player_stat_priors.get(player.key, {}).get("receiving_yards")
        if rushing is not None or receiving is not None:
            return float((rushing or 0.0) + (receiving or 0.0)), "player_prior"

    table = calibration.skill_fallback_means.get(metric, {})
    group = fallback_group(player)
    return float(table.get(group, table.get("other", 25.0))), "position_prior"


def season_mean(
    player: Player,
    metric: str,
    calibration: CalibrationConfig,
    history: Sequence[float] = (),
    stale_years: int = 0,
) -> SeasonMean:
    """Projected season total for ``player`` in ``metric``.

    Args:
        player: Roster entry.
        metric: One of :data:`SUPPORTED_METRICS`.
        calibration: Parameter bundle.
        history: Past season totals for this metric, most recent first.
        stale_years: Gap between the latest history row and the season
            being priced.

    Returns:
        :class:`SeasonMean`.
    """
    prior, prior_type = prior_mean(player, metric, calibration)
    samples = [float(v) for v in history if v is not None]
    is_passing = metric in PASSING_METRICS and player.position_group == "qb"

    if not samples:
        if is_passing:
            bounds = _PASSING_YARDS_BOUNDS if metric == "passing_yards" else _QB_MEAN_BOUNDS
        else:
            bounds = _SKILL_MEAN_BOUNDS
        return SeasonMean(mean=clamp(prior, *bounds), model_type=prior_type)

    recent = weighted_recent_mean(samples)
    long_run = sum(samples) / len(samples)
    n = len(samples)

    if is_passing:
        reliability = clamp(0.16 + n * 0.10, 0.22, 0.76) * (0.82 if stale_years >= 1 else 1.0)
        reliability = clamp(reliability, 0.18, 0.76)
        signal = (recent if recent is not None else long_run) * 0.72 + long_run * 0.28
        mean = signal * reliability + prior * (1.0 - reliability)
        if metric == "passing_yards":
            mean = clamp(mean, *_PASSING_YARDS_BOUNDS)
        else:
            years = player.experience_years or 0
            if years <= 2:
                mean *= 1.07 if metric == "passing_tds" else 1.08
            mean = clamp(mean, *_QB_MEAN_BOUNDS)
    else:
        reliability = clamp(0.20 + n * 0.10, 0.24, 0.78) * (0.92 if stale_years >= 1 else 1.0)
        reliability = clamp(reliability, 0.2, 0.84)
        signal = (recent if recent is not None else long_run) * 0.7 + long_run * 0.3
        mean = clamp(signal * reliability + prior * (1.0 - reliability), *_SKILL_MEAN_BOUNDS)

    return SeasonMean(
        mean=mean,
        model_type="history_blended",
        sample_seasons=n,
        stale_years=stale_years,
        reliability=reliability,
    )


# ---------------------------------------------------------------------------
# Tails
# ---------------------------------------------------------------------------


def dispersion_for(metric: str, projection: SeasonMean, calibration: CalibrationConfig) -> float:
    """Negative-binomial shape ``k`` for ``metric`` given the sample depth."""
    rules = calibration.dispersion
    if projection.sample_seasons <= 1:
        k = rules["single_sample"]
    elif projection.sample_seasons == 2:
        k = rules["two_samples"]
    else:
        k = rules["base"]
    if projection.stale_years >= 1:
        k -= rules["stale_penalty"]
    if metric == "passing_interceptions":
        k += rules["passing_interceptions"]
    elif metric in {"rushing_tds", "receiving_tds"}:
        k += rules["touchdowns"]
    elif metric in {"rushing_yards", "receiving_yards", "receptions", "scrimmage_yards"}:
        k += rules["volume"]
    elif metric == "passing_yards":
        k += rules["passing_yards"]
    return max(0.8, k)


def _passing_td_cap(threshold: float, tier: str, calibration: CalibrationConfig) -> float:
    for level in sorted(calibration.passing_td_caps, reverse=True):
        if threshold >= level:
            caps = calibration.passing_td_caps[level]
            return caps.get(tier, caps["default"]) / 100.0
    return 1.0


def tail_at_least(
    player: Player,
    metric: str,
    threshold: float,
    projection: SeasonMean,
    calibration: CalibrationConfig,
) -> float:
    """``P(season total ≥ threshold)`` as a fraction."""
    mu = projection.mean
    if metric == "passing_tds" and player.position_group == "qb":
        sigma = clamp(4.6 + mu * 0.14, 6.0, 10.2)
        tail = normal_tail_at_least(mu, sigma, threshold)
        return min(tail, _passing_td_cap(threshold, calibration.qb_tier(player.name), calibration))
    if metric == "passing_yards" and player.position_group == "qb":
        sigma = clamp(360.0 + mu * 0.08, 340.0, 900.0)
        return normal_tail_at_least(mu, sigma, threshold)

    k = dispersion_for(metric, projection, calibration)
    if threshold >= _NORMAL_SWITCH or mu >= _NORMAL_SWITCH:
        variance = mu + mu * mu / k
        return normal_tail_at_least(mu, math.sqrt(max(1.0, variance)), threshold)
    return negative_binomial_tail_at_least(mu, k, threshold)


def threshold_probability(
    player: Player,
    metric: str,
    threshold: float,
    projection: SeasonMean,
    calibration: CalibrationConfig,
    comparator: str = ">=",
) -> float:
    """Season probability (fraction) of ``metric comparator threshold``."""
    if comparator == "<=":
        return 1.0 - tail_at_least(player, metric, threshold + 1, projection, calibration)
    return tail_at_least(player, metric, threshold, projection, calibration)


def combined_threshold_probability(
    projections: Sequence[SeasonMean],
    metric: str,
    threshold: float,
    comparator: str = ">=",
) -> float:
    """Two or more players' season totals combined.

    Touchdown-type counts use a Poisson tail on the summed mean; yardage
    sums use a normal with the per-player variances added.
    """
    total = sum(p.mean for p in projections)
    if metric in CONTINUOUS_METRICS:
        variance = sum(
            clamp(360.0 + p.mean * 0.08, 340.0, 900.0) ** 2 for p in projections
        )
        at_least = normal_tail_at_least(total, math.sqrt(variance), threshold)
        below = normal_tail_at_least(total, math.sqrt(variance), threshold + 1)
    else:
        at_least = poisson_tail_at_least(total, threshold)
        below = poisson_tail_at_least(total, threshold + 1)
    if comparator == "<=":
        return 1.0 - below
    return at_least


def stat_confidence(sample_seasons: int) -> str:
    """``High`` with three or more seasons of history, ``Medium`` with one."""
    if sample_seasons >= 3:
        return "High"
    if sample_seasons >= 1:
        return "Medium"
    return "Low"
