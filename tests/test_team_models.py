"""
Tests for core/team_models.py
Run with: pytest tests/test_team_models.py -v
"""

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.team_models import (
    cohort_season_pct,
    game_win_probabilities,
    horizon_adjusted_pct,
    multi_year_title_pct,
    playoff_pct,
    race_pcts,
    title_count_pct,
    title_vector,
    win_total_pct,
)

CAL = CalibrationConfig.default()


class TestTitleWindows:
    """Multi-year title windows and counts"""

    def test_single_season_is_identity(self):
        assert multi_year_title_pct(12.0, 1, CAL) == 12.0

    def test_window_grows_with_seasons(self):
        assert multi_year_title_pct(12.0, 3, CAL) < multi_year_title_pct(12.0, 5, CAL)

    def test_vector_decays(self):
        vector = title_vector(20.0, 3, CAL)
        assert vector[0] == pytest.approx(0.20)
        assert vector[1] == pytest.approx(0.20 * 0.96)

    def test_threepeat_below_one_title(self):
        assert title_count_pct(15.0, 3, 3, CAL) < title_count_pct(15.0, 3, 1, CAL)


class TestRace:
    """Two-sided race normalisation"""

    def test_sums_to_one_hundred(self):
        a, b = race_pcts(12.0, 6.0, 10, CAL)
        assert a + b == pytest.approx(100.0)
        assert a > b

    def test_swapping_sides_swaps_result(self):
        a, b = race_pcts(12.0, 6.0, 10, CAL)
        b2, a2 = race_pcts(6.0, 12.0, 10, CAL)
        assert a == pytest.approx(a2)
        assert b == pytest.approx(b2)


class TestPlayoffsAndWins:
    """Playoff make-rates and win totals"""

    def test_make_and_miss_complement(self):
        assert playoff_pct("KC", "make", CAL) + playoff_pct("KC", "miss", CAL) == pytest.approx(100.0)

    def test_unknown_team_uses_default(self):
        assert playoff_pct("ZZZ", "make", CAL) == pytest.approx(50.0)

    def test_full_schedule(self):
        assert len(game_win_probabilities("KC", CAL)) == 17

    def test_win_total_monotonic(self):
        assert win_total_pct("KC", ">=", 10, CAL) > win_total_pct("KC", ">=", 13, CAL)

    def test_win_total_partition(self):
        at_most = win_total_pct("BUF", "<=", 9, CAL)
        at_least = win_total_pct("BUF", ">=", 10, CAL)
        assert at_most + at_least == pytest.approx(100.0)

    def test_bad_comparator_raises(self):
        with pytest.raises(ValueError):
            win_total_pct("KC", "!=", 10, CAL)


class TestCohorts:
    """League-wide events"""

    def test_perfect_season(self):
        assert cohort_season_pct("perfect_season", 0, CAL) == pytest.approx(0.35)

    def test_any_qb_td_table(self):
        assert cohort_season_pct("any_qb_passing_tds", 40, CAL) == pytest.approx(34.0)
        assert cohort_season_pct("any_qb_passing_tds", 60, CAL) == pytest.approx(0.2)

    def test_unknown_cohort_raises(self):
        with pytest.raises(ValueError):
            cohort_season_pct("three_headed_qb", 0, CAL)

    def test_ever_not_below_season(self):
        season = cohort_season_pct("perfect_season", 0, CAL)
        assert horizon_adjusted_pct(season, "ever", CAL) > season
        assert horizon_adjusted_pct(season, "season", CAL) == season
