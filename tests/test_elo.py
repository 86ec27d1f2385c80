"""Tests for the multiplayer Elo calculator."""

import pytest

from league.config import Config
from league.utils.elo import EloCalculator
from league.utils.exceptions import RatingInputError


class TestExpectedScore:
    def test_equal_ratings_give_half(self):
        assert EloCalculator.calculate_expected_score(1000, 1000) == pytest.approx(0.5)

    def test_higher_rating_expects_more(self):
        assert EloCalculator.calculate_expected_score(1200, 1000) > 0.5
        assert EloCalculator.calculate_expected_score(1000, 1200) < 0.5


class TestKFactor:
    def test_boundary_at_thirty_games(self):
        assert EloCalculator.get_k_factor(0) == 32
        assert EloCalculator.get_k_factor(29) == 32
        assert EloCalculator.get_k_factor(30) == 24
        assert EloCalculator.get_k_factor(500) == 24


class TestRounding:
    @pytest.mark.parametrize("value, expected", [
        (2.5, 3),
        (3.5, 4),
        (-2.5, -2),
        (-14.47, -14),
        (10.51, 11),
        (0.0, 0),
    ])
    def test_halves_round_up(self, value, expected):
        assert EloCalculator.round_half_up(value) == expected

    def test_differs_from_builtin_round_on_even_halves(self):
        assert round(2.5) == 2
        assert EloCalculator.round_half_up(2.5) == 3


class TestRatingChange:
    def test_symmetric_four_player_match(self):
        deltas = [
            EloCalculator.calculate_rating_change(1000, [1000, 1000, 1000], placement, 0)
            for placement in (1, 2, 3, 4)
        ]
        assert deltas == [16, 5, -5, -16]

    def test_mixed_ratings_and_experience(self):
        changes = EloCalculator.calculate_match_rating_changes({
            'A': (1000, 10, 4),
            'B': (1050, 40, 1),
            'C': (950, 5, 3),
            'D': (1100, 60, 2),
        })
        assert changes == {'A': -14, 'B': 11, 'C': -1, 'D': 0}

    def test_experienced_player_moves_less(self):
        new = EloCalculator.calculate_rating_change(1000, [1000, 1000, 1000], 1, 29)
        experienced = EloCalculator.calculate_rating_change(1000, [1000, 1000, 1000], 1, 30)
        assert new == 16
        assert experienced == 12

    @pytest.mark.parametrize("placement", [0, 5, -1, 2.0, True, None])
    def test_invalid_placement_rejected(self, placement):
        with pytest.raises(RatingInputError):
            EloCalculator.calculate_rating_change(1000, [1000, 1000, 1000], placement, 0)

    def test_wrong_opponent_count_rejected(self):
        with pytest.raises(RatingInputError):
            EloCalculator.calculate_rating_change(1000, [1000, 1000], 1, 0)

    def test_negative_games_rejected(self):
        with pytest.raises(ValueError):
            EloCalculator.calculate_rating_change(1000, [1000, 1000, 1000], 1, -1)


class TestDisplayHelpers:
    @pytest.mark.parametrize("elo, tier", [
        (0, "Bronze"), (799, "Bronze"), (800, "Silver"), (999, "Silver"),
        (1000, "Gold"), (1199, "Gold"), (1200, "Platinum"), (1300, "Diamond"),
        (1400, "Mythic"), (2500, "Mythic"),
    ])
    def test_tiers(self, elo, tier):
        assert EloCalculator.get_tier(elo) == tier

    def test_highest_rating(self):
        assert EloCalculator.get_highest_rating([]) == 0
        assert EloCalculator.get_highest_rating([980, 1040, None]) == 1040
        assert EloCalculator.get_highest_rating([None]) == Config.STARTING_ELO

    def test_format_elo_change(self):
        assert EloCalculator.format_elo_change(11) == "+11"
        assert EloCalculator.format_elo_change(-14) == "-14"
        assert EloCalculator.format_elo_change(0) == "±0"


def test_config_is_consistent():
    Config.validate()
    assert len(Config.PLACEMENT_SCORES) == Config.LOBBY_CAPACITY
