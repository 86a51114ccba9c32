"""Probability distributions used by the outcome models.

All functions are pure and operate on **fractions** in ``[0, 1]``.

Three families are covered:

1. **Threshold tails**: ``P(X ≥ t)`` for Poisson, negative-binomial and
   continuity-corrected normal season totals.
2. **Poisson-binomial counts**: exact-``k`` / at-least-``k`` over
   independent seasons whose success probabilities differ.
3. **Competing hazards**: which of two per-season processes fires first.

Design decisions
----------------
* Counting stats (touchdowns, interceptions) are over-dispersed relative to
  Poisson: a quarterback's season total depends on games started, which is
  itself random.  The negative binomial with shape ``k`` adds variance
  ``μ²/k`` on top of the Poisson ``μ``; ``k → ∞`` recovers Poisson.
* The multi-season count uses the Poisson-binomial recurrence
  ``dp[j] = dp[j]·(1−p) + dp[j−1]·p`` rather than a binomial with a shared
  ``p`` because per-season strength decays with age and league parity.
* The race model is a discrete competing-hazards formulation.  It is not
  exactly symmetric (a season in which both sides succeed counts for
  neither), so :func:`two_sided_race` renormalises the pair to sum to one
  whenever both directions are requested.

Run tests with::

    pytest tests/test_distributions.py -v
"""

from __future__ import annotations

import math
from typing import Final, Sequence

import numpy as np
from scipy.stats import nbinom, norm, poisson

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Negative-binomial shape bounds.  Below 0.8 the tail becomes implausibly
#: heavy; above 40 the distribution is numerically Poisson.
_NB_SHAPE_MIN: Final[float] = 0.8
_NB_SHAPE_MAX: Final[float] = 40.0

#: Mean bounds for the negative binomial (season counting stats).
_NB_MEAN_MIN: Final[float] = 0.01
_NB_MEAN_MAX: Final[float] = 200.0

#: Minimum standard deviation for the normal tail.
_MIN_SIGMA: Final[float] = 0.8

#: Per-season probabilities in the race model never reach 1.0.
_RACE_MAX_SEASON_PROB: Final[float] = 0.999


# ---------------------------------------------------------------------------
# Threshold tails
# ---------------------------------------------------------------------------


def poisson_tail_at_least(mean: float, threshold: float) -> float:
    """``P(X ≥ threshold)`` for ``X ~ Poisson(mean)``."""
    k = math.floor(threshold)
    if k <= 0:
        return 1.0
    if not math.isfinite(mean) or mean <= 0:
        return 0.0
    return float(np.clip(poisson.sf(k - 1, mean), 0.0, 1.0))


def negative_binomial_tail_at_least(
    mean: float,
    dispersion: float,
    threshold: float,
) -> float:
    """``P(X ≥ threshold)`` for a negative binomial with mean ``mean``.

    Parameterised by mean ``μ`` and shape ``k`` (``Var = μ + μ²/k``), which
    maps to SciPy's ``nbinom(n=k, p=k/(k+μ))``.

    Args:
        mean: Expected season total.  Clamped to ``[0.01, 200]``.
        dispersion: Shape ``k``.  Clamped to ``[0.8, 40]``.
        threshold: Target total; fractional values round down.

    Returns:
        Tail probability in ``[0, 1]``.
    """
    k_shape = float(np.clip(dispersion, _NB_SHAPE_MIN, _NB_SHAPE_MAX))
    mu = float(np.clip(mean, _NB_MEAN_MIN, _NB_MEAN_MAX))
    t = math.floor(threshold)
    if t <= 0:
        return 1.0
    p = k_shape / (k_shape + mu)
    return float(np.clip(nbinom.sf(t - 1, k_shape, p), 0.0, 1.0))


def normal_tail_at_least(mean: float, sigma: float, threshold: float) -> float:
    """Continuity-corrected normal tail ``1 − Φ((t − 0.5 − μ)/σ)``."""
    sd = max(_MIN_SIGMA, float(sigma))
    z = (threshold - 0.5 - mean) / sd
    return float(np.clip(norm.sf(z), 0.0, 1.0))


# ---------------------------------------------------------------------------
# Poisson-binomial counts
# ---------------------------------------------------------------------------


def season_vector(
    base_pct: float,
    seasons: int,
    decay: float = 0.97,
    lo: float = 0.0005,
    hi: float = 0.8,
) -> list[float]:
    """Per-season success fractions ``base·decay^i``, clamped to ``[lo, hi]``.

    Args:
        base_pct: First-season probability in percent.
        seasons: Number of seasons in the window.
        decay: Multiplicative year-over-year decay.
        lo: Lower clamp (fraction).
        hi: Upper clamp (fraction).
    """
    return [
        float(np.clip(base_pct * decay ** i / 100.0, lo, hi))
        for i in range(max(0, seasons))
    ]


def count_distribution(per_season: Sequence[float]) -> np.ndarray:
    """Exact distribution of the number of successful seasons.

    Returns an array ``d`` of length ``n + 1`` with ``d[j] = P(count = j)``.
    """
    dp = np.zeros(len(per_season) + 1)
    dp[0] = 1.0
    for raw in per_season:
        p = float(np.clip(raw, 0.0, 1.0))
        # dp[j] = dp[j]·(1−p) + dp[j−1]·p, vectorised over j ≥ 1
        dp[1:] = dp[1:] * (1.0 - p) + dp[:-1] * p
        dp[0] *= 1.0 - p
    return dp


def prob_at_least(per_season: Sequence[float], k: int) -> float:
    """``P(count ≥ k)`` over independent, non-identical seasons."""
    if k <= 0:
        return 1.0
    dist = count_distribution(per_season)
    if k >= len(dist):
        return 0.0
    return float(np.clip(dist[k:].sum(), 0.0, 1.0))


def prob_exactly(per_season: Sequence[float], k: int) -> float:
    """``P(count = k)`` over independent, non-identical seasons."""
    dist = count_distribution(per_season)
    if k < 0 or k >= len(dist):
        return 0.0
    return float(dist[k])


def expected_count(per_season: Sequence[float]) -> float:
    """Expected number of successful seasons."""
    return float(sum(np.clip(p, 0.0, 1.0) for p in per_season))


def prob_any(per_season: Sequence[float]) -> float:
    """``P(at least one success)`` = ``1 − Π(1 − pᵢ)``."""
    miss = 1.0
    for p in per_season:
        miss *= 1.0 - float(np.clip(p, 0.0, 1.0))
    return 1.0 - miss


# ---------------------------------------------------------------------------
# Competing hazards
# ---------------------------------------------------------------------------


def race_before(per_season_a: Sequence[float], per_season_b: Sequence[float]) -> float:
    """Probability that process A succeeds in a season before B ever does.

    ``Σᵢ surviveᵢ · aᵢ · (1 − bᵢ)`` with ``survive`` updated by
    ``(1 − aᵢ)(1 − bᵢ)``.  Seasons where both succeed are credited to
    neither side.  The window is the shorter of the two sequences.
    """
    survive = 1.0
    total = 0.0
    for raw_a, raw_b in zip(per_season_a, per_season_b):
        a = float(np.clip(raw_a, 0.0, _RACE_MAX_SEASON_PROB))
        b = float(np.clip(raw_b, 0.0, _RACE_MAX_SEASON_PROB))
        total += survive * a * (1.0 - b)
        survive *= (1.0 - a) * (1.0 - b)
    return float(np.clip(total, 0.0, 1.0))


def two_sided_race(
    per_season_a: Sequence[float],
    per_season_b: Sequence[float],
) -> tuple[float, float]:
    """Race probabilities for both directions, renormalised to sum to one.

    When neither side can ever succeed the pair is split evenly.
    """
    a_first = race_before(per_season_a, per_season_b)
    b_first = race_before(per_season_b, per_season_a)
    total = a_first + b_first
    if total <= 0.0:
        return 0.5, 0.5
    return a_first / total, b_first / total
