"""
Tests for services/intent.py
Run with: pytest tests/test_intent.py -v
"""

import pytest

from scenario_odds.core.calibration import CalibrationConfig
from scenario_odds.core.interfaces import (
    CONSTRAINT_VIOLATION,
    INELIGIBLE_ENTITY,
    INVALID_ENTITY,
    NEEDS_CLARIFICATION,
    UNSUPPORTED,
    UNSUPPORTED_COMPOSITE,
    AllOf,
    AnyOf,
    Conditional,
    Declined,
    PlayerAward,
    PlayerCareerEvent,
    PlayerStatThreshold,
    RaceBefore,
    TeamMarket,
    TeamPlayoff,
    TeamWinTotal,
    WildcardCohort,
)
from scenario_odds.services.entity_resolver import EntityResolver
from scenario_odds.services.intent import (
    IntentParser,
    detect_conditional,
    detect_race,
    detect_unsupportable,
    parse_threshold,
    protect_comparators,
    split_top_level,
    window_seasons,
)
from scenario_odds.services.normalizer import normalize_prompt
from scenario_odds.services.roster import RosterIndex, seed_players

CAL = CalibrationConfig.default()


@pytest.fixture
def parse():
    parser = IntentParser(EntityResolver(RosterIndex(seed_players())), CAL)
    return lambda raw: parser.parse(normalize_prompt(raw), 2025)


def assert_declined(result, kind):
    assert isinstance(result, Declined)
    assert result.kind == kind


class TestTeamOutcomes:
    """Team markets, playoffs and win totals"""

    def test_super_bowl_this_season(self, parse):
        result = parse("Chiefs win the Super Bowl")
        assert isinstance(result, TeamMarket)
        assert result.team.abbreviation == "KC"
        assert result.market == "super_bowl_winner"
        assert result.seasons == 1

    def test_multi_year_window(self, parse):
        result = parse("Bills win the Super Bowl in the next 5 years")
        assert isinstance(result, TeamMarket)
        assert result.seasons == 5
        assert result.horizon == "multi_year"

    def test_title_count_uses_default_window(self, parse):
        result = parse("Chiefs win 2 Super Bowls")
        assert isinstance(result, TeamMarket)
        assert result.count == 2
        assert result.seasons == CAL.race_default_years

    def test_two_titles_in_one_season_is_impossible(self, parse):
        assert_declined(parse("Chiefs win 2 Super Bowls this season"), CONSTRAINT_VIOLATION)

    def test_conference(self, parse):
        result = parse("Chiefs win the AFC")
        assert isinstance(result, TeamMarket)
        assert result.market == "afc_winner"

    def test_wrong_conference(self, parse):
        assert_declined(parse("Chiefs win the NFC"), CONSTRAINT_VIOLATION)

    def test_wrong_division(self, parse):
        assert_declined(parse("Chiefs win the AFC East"), CONSTRAINT_VIOLATION)

    def test_playoffs(self, parse):
        result = parse("Jets miss the playoffs")
        assert isinstance(result, TeamPlayoff)
        assert result.outcome == "miss"

    def test_win_total(self, parse):
        result = parse("Chiefs win at least 12 games")
        assert isinstance(result, TeamWinTotal)
        assert (result.comparator, result.wins) == (">=", 12)

    def test_exact_record(self, parse):
        result = parse("Chiefs go 17-0")
        assert isinstance(result, TeamWinTotal)
        assert (result.comparator, result.wins) == ("==", 17)

    def test_win_total_beyond_schedule(self, parse):
        assert_declined(parse("Chiefs win 18 games"), CONSTRAINT_VIOLATION)

    def test_win_total_games_or_fewer(self, parse):
        result = parse("Bills win 11 games or fewer this season")
        assert isinstance(result, TeamWinTotal)
        assert (result.comparator, result.wins) == ("<=", 11)

    def test_wins_or_fewer(self, parse):
        result = parse("Bills finish with 9 wins or fewer")
        assert isinstance(result, TeamWinTotal)
        assert (result.comparator, result.wins) == ("<=", 9)


class TestPlayerOutcomes:
    """Stats, awards and career events"""

    def test_rushing_yards(self, parse):
        result = parse("Josh Allen rushes for 1,000 yards this season")
        assert isinstance(result, PlayerStatThreshold)
        assert result.player.team == "BUF"
        assert result.metric == "rushing_yards"
        assert result.threshold == 1000.0
        assert result.comparator == ">="

    def test_generic_touchdowns_by_position(self, parse):
        result = parse("Patrick Mahomes throws 40 TDs")
        assert isinstance(result, PlayerStatThreshold)
        assert result.metric == "passing_tds"

    def test_award(self, parse):
        result = parse("Patrick Mahomes wins MVP")
        assert isinstance(result, PlayerAward)
        assert (result.award, result.horizon) == ("mvp", "season")

    def test_award_count(self, parse):
        result = parse("Josh Allen wins 2 MVPs")
        assert isinstance(result, PlayerAward)
        assert result.count == 2
        assert result.horizon == "career"

    def test_hall_of_fame(self, parse):
        result = parse("Drake Maye makes the Hall of Fame")
        assert isinstance(result, PlayerCareerEvent)
        assert (result.event, result.horizon) == ("hall_of_fame", "career")

    def test_position_reality(self, parse):
        assert_declined(parse("Saquon Barkley throws 20 touchdowns"), CONSTRAINT_VIOLATION)
        assert_declined(parse("Patrick Mahomes records 10 sacks"), CONSTRAINT_VIOLATION)

    def test_award_eligibility(self, parse):
        assert_declined(parse("Patrick Mahomes wins DPOY"), INELIGIBLE_ENTITY)

    def test_retired_player(self, parse):
        assert_declined(parse("Tom Brady wins MVP"), CONSTRAINT_VIOLATION)

    def test_unknown_player_with_stat(self, parse):
        assert_declined(parse("Zorblax Quint throws 40 touchdowns"), INVALID_ENTITY)


class TestCohorts:
    """League-wide phrasing"""

    def test_perfect_season(self, parse):
        result = parse("A team goes 17-0")
        assert isinstance(result, WildcardCohort)
        assert (result.cohort, result.horizon) == ("perfect_season", "season")

    def test_perfect_season_ever(self, parse):
        result = parse("A team ever goes 17-0")
        assert isinstance(result, WildcardCohort)
        assert result.horizon == "ever"

    def test_any_qb(self, parse):
        result = parse("Any QB throws 50 touchdowns")
        assert isinstance(result, WildcardCohort)
        assert result.cohort == "any_qb_passing_tds"
        assert result.threshold == 50.0


class TestComposites:
    """Decomposition into composite descriptors"""

    def test_and(self, parse):
        result = parse("Chiefs win the Super Bowl and Patrick Mahomes wins MVP")
        assert isinstance(result, AllOf)
        assert isinstance(result.clauses[0], TeamMarket)
        assert isinstance(result.clauses[1], PlayerAward)

    def test_subject_carried_to_second_clause(self, parse):
        result = parse("Chiefs make the playoffs and win the AFC West")
        assert isinstance(result, AllOf)
        second = result.clauses[1]
        assert isinstance(second, TeamMarket)
        assert second.market == "division_winner"
        assert second.team.abbreviation == "KC"

    def test_conditional(self, parse):
        result = parse("If the Chiefs win the AFC, then Patrick Mahomes wins MVP")
        assert isinstance(result, Conditional)
        assert result.given.market == "afc_winner"
        assert result.then.award == "mvp"

    def test_entity_list(self, parse):
        result = parse("Chiefs, Bills or Ravens win the Super Bowl")
        assert isinstance(result, AnyOf)
        assert len(result.clauses) == 3
        assert [c.team.abbreviation for c in result.clauses] == ["KC", "BUF", "BAL"]

    def test_race(self, parse):
        result = parse("Bills win the Super Bowl before the Chiefs")
        assert isinstance(result, RaceBefore)
        assert (result.first.abbreviation, result.second.abbreviation) == ("BUF", "KC")
        assert result.market == "super_bowl_winner"

    def test_race_needs_teams(self, parse):
        assert_declined(parse("Josh Allen wins MVP before Patrick Mahomes"), UNSUPPORTED_COMPOSITE)

    def test_uninterpretable_clause(self, parse):
        assert_declined(
            parse("Chiefs win the Super Bowl and something weird happens"),
            NEEDS_CLARIFICATION,
        )

    def test_uninterpretable_clause_is_final(self, parse):
        result = parse("Josh Allen throws 30 touchdowns and flies to the moon")
        assert_declined(result, NEEDS_CLARIFICATION)
        assert result.final is True

    def test_whole_prompt_miss_is_not_final(self, parse):
        result = parse("Patrick Mahomes wins the Heisman")
        assert_declined(result, UNSUPPORTED)
        assert result.final is False


class TestUnsupportable:
    """Subjective and impossible prompts"""

    def test_subjective(self, parse):
        assert_declined(parse("Who is the greatest QB ever"), UNSUPPORTED)

    def test_impossible(self):
        result = detect_unsupportable("patrick mahomes lives forever")
        assert result.kind == CONSTRAINT_VIOLATION

    def test_measurable_passes(self):
        assert detect_unsupportable("chiefs win the super bowl") is None


class TestHelpers:
    """Pure pattern helpers"""

    def test_thresholds(self):
        assert parse_threshold("over 40.5 passing touchdowns", "40.5") == (">=", 41.0)
        assert parse_threshold("under 40.5 passing touchdowns", "40.5") == ("<=", 40.0)
        assert parse_threshold("fewer than 10 interceptions", "10") == ("<=", 9.0)
        assert parse_threshold("30 touchdowns", "30") == (">=", 30.0)
        assert parse_threshold("5 touchdowns or fewer", "5") == ("<=", 5.0)
        assert parse_threshold("5 passing touchdowns or less", "5") == ("<=", 5.0)
        assert parse_threshold("5 or fewer touchdowns", "5") == ("<=", 5.0)

    def test_windows(self):
        assert window_seasons("in the next 5 years", 2025) == 5
        assert window_seasons("by 2030", 2025) == 6
        assert window_seasons("before 2030", 2025) == 5
        assert window_seasons("in the next 25 years", 2025) is None
        assert window_seasons("this season", 2025) is None

    def test_protected_comparators_survive_split(self):
        text = protect_comparators("josh allen throws 10 or more interceptions")
        assert split_top_level(text, "or") == [text]

    def test_conditional_forms(self):
        assert detect_conditional("if a, then b") == ("a", "b")
        assert detect_conditional("a -> b") == ("a", "b")
        assert detect_conditional("b given a") == ("a", "b")

    def test_race_exclusion(self):
        assert detect_race("bills win the super bowl before 2030") is None
        assert detect_race("bills win before chiefs") == ("bills win", "chiefs")
