"""Calibration bundle: every tuned model constant in one place.

This module is the **registry** for the numbers the outcome models depend
on: per-position base rates, decay constants, cohort baseline tables, team
priors, and the dependence-factor table used when composite clauses are
combined.  Nowhere else in the codebase should those figures be
hard-coded.

Architecture
------------
:class:`CalibrationConfig` is a frozen dataclass.  :meth:`CalibrationConfig.default`
returns the shipped ``phase2-v1`` bundle.  The bundle is loaded once when
the engine is built and treated as immutable for the life of the process;
stable-tier cache entries record :meth:`CalibrationConfig.signature` so a
version bump (or any parameter change) invalidates them implicitly.

Typical usage::

    from scenario_odds.core.calibration import CalibrationConfig

    cfg = CalibrationConfig.default()

    # Override a single constant for an experiment:
    from dataclasses import replace
    custom = replace(cfg, title_decay=0.95)

    # Or overlay a JSON file (keys are field names):
    custom = CalibrationConfig.from_json("calibration.json")

Tables are plain dicts and tuples so the bundle serialises directly to
JSON.  Treat them as read-only.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Final

#: Version string of the shipped bundle.
DEFAULT_CALIBRATION_VERSION: Final[str] = "phase2-v1"


@dataclass(frozen=True)
class CalibrationConfig:
    """Immutable, versioned parameter bundle for the outcome models.

    Attributes:
        version: Bundle identifier recorded in traces and cache snapshots.

        --- Cohort baselines ---
        any_qb_td_table: ``(max_threshold, season_pct)`` steps for "any
            quarterback throws N touchdowns".  First row whose threshold is
            ≥ N wins; beyond the table ``any_qb_td_floor`` applies.
        any_qb_int_table: Same shape for interceptions.
        perfect_season_pct: Per-season chance some team goes 17-0.
        winless_season_pct: Per-season chance some team goes 0-17.
        horizon_years: Seasons used to expand a season probability for the
            ``career`` and ``ever`` horizons.

        --- Season stat model ---
        qb_tiers: Quarterback name → tier (``elite``/``high``/``young``).
        passing_means: Metric → tier → season mean for quarterbacks.
        experience_starter_factors: ``(max_years_exp, factor)`` steps that
            shrink early-career passing volume.
        skill_fallback_means: Metric → position group → season mean.
        dispersion: Negative-binomial shape rules.
        passing_td_caps: Threshold → tier → maximum season pct.
        player_stat_priors: Player name → metric → season mean, used
            when no season history is available.

        --- Awards and careers ---
        player_tier_multipliers: Player name → award strength multiplier.
        award_base_pct: Award → position group → season pct.
        award_decay: Year-over-year award decay.
        early_career_multiplier: Applied to players with ≤ 2 years' exp.
        age_curve: ``(max_age, factor)`` steps for award strength.
        mvp_tier_boosts: Player name → season-MVP boost.
        top_qb_boosts: Player name → career-title share boost.
        super_bowl_caps: Position group → wins → ``(young, veteran)`` cap.

        --- Team markets ---
        market_default_pct: Market → season pct when no line is available.
        related_market_scaling: Market → ``(source_market, factor)``.
        title_decay: Year-over-year decay for multi-year title windows.
        race_default_years: Window for "A before B" when none is given.
        race_season_bounds: Clamp for the race model's season pct.
        playoff_make_pct: Team abbreviation → playoff make pct.
        playoff_default_pct: Make pct for teams missing from the table.
        games_per_season: Regular-season games.

        --- Historical baselines ---
        hof_base_pct: Position group → career Hall of Fame pct.
        hof_overrides: Player name → career Hall of Fame pct.
        retirement_age_table: ``(max_age, season_pct)`` steps.

        --- Composition and consistency ---
        dependence_factors: ``"<kind>+<kind>:<linked|unlinked>"`` →
            multiplier on the independent joint probability.  Kinds are
            sorted alphabetically inside the key.
        monotonic_damping: Cap ratio of an n-fold achievement to the
            single achievement.
        conditional_epsilon_pct: Denominator floor for conditionals.

        --- Fallback ---
        heuristic_base_range: ``(low, high)`` pct range of the digest-seeded
            heuristic fallback.
    """

    version: str

    # Cohort baselines
    any_qb_td_table: tuple[tuple[int, float], ...]
    any_qb_td_floor: float
    any_qb_int_table: tuple[tuple[int, float], ...]
    any_qb_int_floor: float
    perfect_season_pct: float
    winless_season_pct: float
    horizon_years: dict[str, int]

    # Season stat model
    qb_tiers: dict[str, str]
    passing_means: dict[str, dict[str, float]]
    experience_starter_factors: tuple[tuple[int, float], ...]
    skill_fallback_means: dict[str, dict[str, float]]
    dispersion: dict[str, float]
    passing_td_caps: dict[int, dict[str, float]]
    player_stat_priors: dict[str, dict[str, float]]

    # Awards and careers
    player_tier_multipliers: dict[str, float]
    award_base_pct: dict[str, dict[str, float]]
    award_decay: float
    early_career_multiplier: float
    age_curve: tuple[tuple[int, float], ...]
    mvp_tier_boosts: dict[str, float]
    top_qb_boosts: dict[str, float]
    super_bowl_caps: dict[str, dict[int, tuple[float, float]]]

    # Team markets
    market_default_pct: dict[str, float]
    related_market_scaling: dict[str, tuple[str, float]]
    title_decay: float
    race_default_years: int
    race_season_bounds: tuple[float, float]
    playoff_make_pct: dict[str, float]
    playoff_default_pct: float
    games_per_season: int

    # Historical baselines
    hof_base_pct: dict[str, float]
    hof_overrides: dict[str, float]
    retirement_age_table: tuple[tuple[int, float], ...]

    # Composition and consistency
    dependence_factors: dict[str, float]
    monotonic_damping: float
    conditional_epsilon_pct: float

    # Fallback
    heuristic_base_range: tuple[float, float]

    # ------------------------------------------------------------------ #
    #  Named constructors                                                  #
    # ------------------------------------------------------------------ #

    @classmethod
    def default(cls) -> CalibrationConfig:
        """Return the shipped ``phase2-v1`` bundle.

        Cohort tables were fit to 2002-2024 league-wide season leaders;
        player-level priors reflect the 2025 season scoring environment.
        """
        return cls(
            version=DEFAULT_CALIBRATION_VERSION,
            # --- Cohort baselines ---
            any_qb_td_table=(
                (15, 99.8), (20, 99.2), (25, 96.5), (30, 86.0), (35, 62.0),
                (40, 34.0), (45, 13.0), (50, 3.5), (55, 0.8),
            ),
            any_qb_td_floor=0.2,
            any_qb_int_table=(
                (10, 99.7), (12, 97.0), (15, 89.0), (18, 60.0), (20, 33.0),
                (22, 16.0), (25, 4.0),
            ),
            any_qb_int_floor=0.8,
            perfect_season_pct=0.35,
            winless_season_pct=1.2,
            horizon_years={"career": 10, "ever": 30},
            # --- Season stat model ---
            qb_tiers={
                "patrick mahomes": "elite",
                "josh allen": "elite",
                "joe burrow": "elite",
                "lamar jackson": "elite",
                "jalen hurts": "high",
                "justin herbert": "high",
                "cj stroud": "high",
                "drake maye": "young",
                "caleb williams": "young",
                "jayden daniels": "young",
            },
            passing_means={
                "passing_tds": {"elite": 33.0, "high": 28.0, "young": 22.0, "default": 24.0},
                "passing_interceptions": {"elite": 9.0, "high": 10.5, "young": 12.5, "default": 11.0},
                "passing_yards": {"elite": 4650.0, "high": 4250.0, "young": 3650.0, "default": 3900.0},
            },
            experience_starter_factors=((0, 0.72), (1, 0.82), (2, 0.92)),
            skill_fallback_means={
                "rushing_yards": {"rb": 760.0, "wr": 95.0, "te": 15.0, "qb": 240.0, "other": 40.0},
                "rushing_tds": {"rb": 5.8, "wr": 0.7, "te": 0.3, "qb": 2.2, "other": 0.4},
                "receiving_yards": {"rb": 370.0, "wr": 840.0, "te": 620.0, "qb": 5.0, "other": 120.0},
                "receiving_tds": {"rb": 2.4, "wr": 5.5, "te": 4.8, "qb": 0.03, "other": 0.8},
                "receptions": {"rb": 38.0, "wr": 62.0, "te": 54.0, "qb": 0.1, "other": 12.0},
                "scrimmage_yards": {"rb": 1120.0, "wr": 920.0, "te": 640.0, "qb": 250.0, "other": 180.0},
                "sacks": {"defense": 4.5, "other": 0.1},
                "defensive_interceptions": {"defense": 1.2, "other": 0.02},
            },
            dispersion={
                "base": 6.2,
                "single_sample": 3.8,
                "two_samples": 4.8,
                "stale_penalty": 0.8,
                "passing_interceptions": 1.6,
                "touchdowns": 0.5,
                "volume": 1.4,
                "passing_yards": 9.5,
            },
            passing_td_caps={
                50: {"elite": 1.9, "high": 1.4, "young": 1.2, "default": 0.9},
                45: {"elite": 8.0, "high": 6.2, "young": 5.1, "default": 4.2},
                40: {"elite": 25.0, "high": 20.0, "young": 17.0, "default": 14.0},
            },
            player_stat_priors={
                "josh allen": {"rushing_yards": 560.0, "rushing_tds": 11.0},
                "lamar jackson": {"rushing_yards": 850.0, "rushing_tds": 5.0},
                "jalen hurts": {"rushing_yards": 620.0, "rushing_tds": 12.0},
                "jayden daniels": {"rushing_yards": 780.0, "rushing_tds": 6.0},
                "christian mccaffrey": {"rushing_yards": 1250.0, "rushing_tds": 11.0},
                "saquon barkley": {"rushing_yards": 1450.0, "rushing_tds": 11.0},
                "derrick henry": {"rushing_yards": 1400.0, "rushing_tds": 13.0},
                "ja'marr chase": {"receiving_yards": 1350.0, "receiving_tds": 11.0},
                "justin jefferson": {"receiving_yards": 1400.0, "receiving_tds": 8.0},
                "travis kelce": {"receiving_yards": 850.0, "receiving_tds": 5.0},
                "t.j. watt": {"sacks": 12.0},
                "myles garrett": {"sacks": 13.0},
            },
            # --- Awards and careers ---
            player_tier_multipliers={
                "patrick mahomes": 2.6,
                "josh allen": 2.0,
                "joe burrow": 2.0,
                "lamar jackson": 2.0,
                "jalen hurts": 1.5,
                "justin herbert": 1.5,
                "cj stroud": 1.5,
                "drake maye": 0.9,
                "caleb williams": 0.9,
                "jayden daniels": 0.9,
            },
            award_base_pct={
                "mvp": {"qb": 4.2, "rb": 0.8, "receiver": 0.6, "defense": 0.15, "other": 0.08},
                "opoy": {"qb": 2.6, "rb": 2.0, "receiver": 1.8, "defense": 0.03, "other": 0.05},
                "dpoy": {"qb": 0.02, "rb": 0.02, "receiver": 0.02, "defense": 1.9, "other": 0.05},
                "allpro": {"qb": 6.2, "rb": 5.6, "receiver": 6.4, "defense": 5.8, "other": 3.0},
            },
            award_decay=0.965,
            early_career_multiplier=0.82,
            age_curve=((24, 0.85), (28, 1.05), (31, 1.0), (34, 0.9), (37, 0.7)),
            mvp_tier_boosts={
                "patrick mahomes": 1.65,
                "josh allen": 1.45,
                "joe burrow": 1.45,
                "lamar jackson": 1.45,
                "jalen hurts": 1.25,
                "justin herbert": 1.25,
                "cj stroud": 1.25,
                "drake maye": 1.12,
                "caleb williams": 1.12,
                "jayden daniels": 1.12,
            },
            top_qb_boosts={
                "patrick mahomes": 1.55,
                "josh allen": 1.35,
                "joe burrow": 1.35,
                "lamar jackson": 1.35,
                "jalen hurts": 1.15,
                "justin herbert": 1.15,
                "cj stroud": 1.15,
            },
            super_bowl_caps={
                "qb": {1: (34.0, 46.0), 2: (18.0, 24.0), 3: (10.0, 10.0), 4: (3.0, 3.0)},
                "other": {1: (20.0, 20.0), 2: (6.0, 6.0), 3: (2.4, 2.4), 4: (1.0, 1.0)},
            },
            # --- Team markets ---
            market_default_pct={
                "super_bowl_winner": 4.5,
                "afc_winner": 9.5,
                "nfc_winner": 9.5,
                "division_winner": 22.0,
                "nfl_mvp": 2.0,
            },
            related_market_scaling={
                "afc_winner": ("super_bowl_winner", 2.2),
                "nfc_winner": ("super_bowl_winner", 2.2),
                "super_bowl_winner": ("conference_winner", 0.45),
                "division_winner": ("super_bowl_winner", 4.0),
            },
            title_decay=0.96,
            race_default_years=10,
            race_season_bounds=(0.2, 70.0),
            playoff_make_pct={
                "KC": 82.0, "BUF": 79.0, "BAL": 77.0, "CIN": 66.0, "HOU": 64.0,
                "SF": 74.0, "PHI": 72.0, "DET": 71.0, "DAL": 63.0, "GB": 62.0,
                "MIA": 55.0, "NYJ": 36.0, "NE": 39.0, "PIT": 50.0, "LAR": 58.0,
            },
            playoff_default_pct=50.0,
            games_per_season=17,
            # --- Historical baselines ---
            hof_base_pct={"qb": 18.0, "receiver": 11.0, "rb": 9.0, "specialist": 3.0, "other": 7.0},
            hof_overrides={
                "patrick mahomes": 78.0,
                "josh allen": 42.0,
                "joe burrow": 38.0,
                "lamar jackson": 46.0,
                "jalen hurts": 24.0,
                "justin herbert": 24.0,
                "cj stroud": 23.0,
                "drake maye": 15.0,
            },
            retirement_age_table=(
                (24, 0.6), (27, 0.9), (30, 1.4), (33, 2.8), (36, 7.5), (39, 18.0),
            ),
            # --- Composition and consistency ---
            dependence_factors={
                "player_award+team_market:linked": 1.35,
                "player_stat_threshold+team_market:linked": 1.12,
                "player_stat_threshold+team_playoff:linked": 1.08,
                "player_award+player_stat_threshold:linked": 1.25,
                "team_market+team_win_total:linked": 1.10,
                "team_playoff+team_win_total:linked": 1.15,
                "team_market+wildcard_cohort:unlinked": 1.0,
                "player_stat_threshold+wildcard_cohort:unlinked": 1.0,
            },
            monotonic_damping=0.92,
            conditional_epsilon_pct=0.1,
            # --- Fallback ---
            heuristic_base_range=(19.0, 28.0),
        )

    @classmethod
    def from_json(cls, path: str | Path) -> CalibrationConfig:
        """Overlay a JSON file of field overrides on the default bundle.

        Only top-level keys are replaced; dict-valued fields are replaced
        wholesale, not merged.

        Raises:
            ValueError: If the file names a field that does not exist.
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(
                f"Unknown calibration fields in {path}: {', '.join(unknown)}"
            )
        return replace(cls.default(), **raw)

    # ------------------------------------------------------------------ #
    #  Lookups                                                             #
    # ------------------------------------------------------------------ #

    def signature(self) -> str:
        """Short, stable digest of every parameter in the bundle."""
        blob = json.dumps(asdict(self), sort_keys=True, default=str)
        return f"{self.version}:{hashlib.sha1(blob.encode('utf-8')).hexdigest()[:12]}"

    def dependence_factor(self, kind_a: str, kind_b: str, linked: bool) -> float:
        """Multiplier for the independent joint of two clause kinds.

        Unknown pairs are treated as independent (factor 1.0).
        """
        first, second = sorted((kind_a, kind_b))
        key = f"{first}+{second}:{'linked' if linked else 'unlinked'}"
        return float(self.dependence_factors.get(key, 1.0))

    def qb_tier(self, name: str) -> str:
        return self.qb_tiers.get(name.lower(), "default")

    def starter_factor(self, years_exp: int | None) -> float:
        if years_exp is None:
            return 0.9
        for max_years, factor in self.experience_starter_factors:
            if years_exp <= max_years:
                return factor
        return 1.0

    def age_factor(self, age: int | None) -> float:
        if age is None:
            return 1.0
        for max_age, factor in self.age_curve:
            if age <= max_age:
                return factor
        return 0.45

    def retirement_season_pct(self, age: int) -> float:
        for max_age, pct in self.retirement_age_table:
            if age <= max_age:
                return pct
        return 36.0


def load_calibration(path: str | Path | None = None) -> CalibrationConfig:
    """Return the overlay at ``path`` when given, else the default bundle."""
    if path:
        return CalibrationConfig.from_json(path)
    return CalibrationConfig.default()


def as_dict(config: CalibrationConfig) -> dict[str, Any]:
    """Plain-dict view of a bundle, e.g. for writing an overlay template."""
    return asdict(config)
