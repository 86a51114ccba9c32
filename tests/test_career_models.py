"""
Tests for core/career_models.py
Run with: pytest tests/test_career_models.py -v
"""

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.career_models import (
    any_season_pct,
    award_count_pct,
    award_season_pct,
    career_super_bowl_pct,
    career_title_vector,
    hall_of_fame_pct,
    retirement_pct,
    season_mvp_pct,
    years_remaining,
)
from scenario_odds.core.interfaces import Player

CAL = CalibrationConfig.default()

ALLEN = Player(name="Josh Allen", team="BUF", position="QB", status="active", experience_years=7, age=29)
ROOKIE = Player(name="New Passer", team="NE", position="QB", status="active", experience_years=0, age=22)
EDGE = Player(name="Edge Rusher", team="PIT", position="EDGE", status="active", experience_years=6, age=27)
LEGEND = Player(name="Old Legend", team=None, position="QB", status="retired", experience_years=20, age=46)


class TestCareerLength:
    """Remaining seasons"""

    def test_from_age(self):
        assert years_remaining(ALLEN) == 12

    def test_clamped(self):
        assert years_remaining(LEGEND) == 2

    def test_unknown_defaults(self):
        assert years_remaining(Player(name="X")) == 9


class TestAwards:
    """Award season rates and multi-season counts"""

    def test_defensive_award_for_defender(self):
        assert award_season_pct(EDGE, "dpoy", CAL) > award_season_pct(ALLEN, "dpoy", CAL)

    def test_count_monotonic(self):
        one = award_count_pct(ALLEN, "mvp", CAL, count=1)
        two = award_count_pct(ALLEN, "mvp", CAL, count=2)
        three = award_count_pct(ALLEN, "mvp", CAL, count=3)
        assert one > two > three > 0.0

    def test_exact_not_above_at_least(self):
        assert award_count_pct(ALLEN, "mvp", CAL, count=2, exact=True) <= award_count_pct(
            ALLEN, "mvp", CAL, count=2
        )

    def test_window_truncates(self):
        assert award_count_pct(ALLEN, "mvp", CAL, seasons=3) < award_count_pct(ALLEN, "mvp", CAL)

    def test_season_mvp_anchored_to_team(self):
        assert season_mvp_pct(ALLEN, 10.0, CAL) == pytest.approx(9.0 * 1.45 * 1.1 + 1.2)
        assert season_mvp_pct(ALLEN, 15.0, CAL) > season_mvp_pct(ALLEN, 5.0, CAL)

    def test_non_qb_mvp_is_small(self):
        assert season_mvp_pct(EDGE, 10.0, CAL) < 1.0


class TestCareerTitles:
    """Career Super Bowl counts"""

    def test_vector_length(self):
        assert len(career_title_vector(ALLEN, 10.0, CAL)) == 12
        assert len(career_title_vector(ALLEN, 10.0, CAL, seasons=4)) == 4

    def test_ring_count_monotonic(self):
        one = career_super_bowl_pct(ALLEN, 10.0, CAL, count=1)
        two = career_super_bowl_pct(ALLEN, 10.0, CAL, count=2)
        assert one > two

    def test_historical_cap(self):
        assert career_super_bowl_pct(ALLEN, 40.0, CAL, count=3) <= 10.0

    def test_rookie_cap_tighter(self):
        assert career_super_bowl_pct(ROOKIE, 40.0, CAL, count=1) <= 34.0


class TestCareerEvents:
    """Hall of Fame and retirement baselines"""

    def test_hof_override(self):
        assert hall_of_fame_pct(ALLEN, CAL) == pytest.approx(42.0)

    def test_hof_veteran_boost(self):
        veteran = Player(name="Josh Allen", team="BUF", position="QB", status="active", experience_years=8, age=30)
        assert hall_of_fame_pct(veteran, CAL) == pytest.approx(min(42.0 * 1.08, 92.0))

    def test_hof_ever_not_below_career(self):
        assert hall_of_fame_pct(ALLEN, CAL, horizon="ever") >= hall_of_fame_pct(ALLEN, CAL)

    def test_retirement_horizons(self):
        season = retirement_pct(ALLEN, CAL, "season")
        career = retirement_pct(ALLEN, CAL, "career")
        ever = retirement_pct(ALLEN, CAL, "ever")
        assert season < career < ever

    def test_injury_raises_retirement(self):
        assert retirement_pct(ALLEN, CAL, injury_context=True) > retirement_pct(ALLEN, CAL)

    def test_any_season(self):
        assert any_season_pct(10.0, 1) == pytest.approx(10.0)
        assert any_season_pct(10.0, 5) > 10.0
