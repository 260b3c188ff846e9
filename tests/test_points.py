import math
import random

import pytest

from kzpoints.constants import PointsConstants, Tier
from kzpoints.utils.points import (
    calculate_points, distribution_portion, minimum_points,
    points_for_low_completion, points_for_rank
)
from conftest import EXAMPLE_PARAMS


class TestMinimumPoints:
    def test_nub_ladder(self):
        expected = [0, 500, 2000, 3500, 5000, 6500, 8000, 9500]
        assert [minimum_points(tier, False) for tier in range(1, 9)] == expected

    def test_pro_gets_share_of_headroom(self):
        assert minimum_points(Tier.VERY_EASY, True) == pytest.approx(1000.0)
        assert minimum_points(Tier.HARD, True) == pytest.approx(5500.0)
        assert minimum_points(Tier.DEATH, True) == pytest.approx(9550.0)

    def test_unrankable_tiers(self):
        assert minimum_points(Tier.UNFEASIBLE, False) is None
        assert minimum_points(Tier.IMPOSSIBLE, True) is None


class TestRankBonus:
    def test_first_place_saturates(self):
        assert points_for_rank(1000, 0) == pytest.approx(1.0)
        assert points_for_rank(1000, 0) <= 1.0

    def test_top_five(self):
        # 0.5 * (1 - 4/1000) + 96 * 0.002 + 16 * 0.01 + 0.01
        assert points_for_rank(1000, 4) == pytest.approx(0.86)

    def test_outside_top_hundred_is_linear(self):
        assert points_for_rank(1000, 500) == pytest.approx(0.25)

    def test_non_increasing_in_rank(self):
        values = [points_for_rank(300, rank) for rank in range(300)]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_rank_beyond_size_is_tolerated(self):
        assert 0.0 <= points_for_rank(3, 10) <= 1.0


class TestLowCompletion:
    def test_world_record_is_full(self):
        assert points_for_low_completion(5, 30.0, 30.0) == 1.0
        assert points_for_low_completion(5, 30.0, 29.0) == 1.0

    def test_slower_times_lose_value(self):
        values = [points_for_low_completion(3, 30.0, t) for t in (31.0, 40.0, 60.0, 120.0)]
        assert all(a > b for a, b in zip(values, values[1:]))
        assert all(0.0 <= v <= 1.0 for v in values)

    def test_small_boards_use_curve(self):
        portion = distribution_portion(4, EXAMPLE_PARAMS, 9.0, leaderboard_size=10)
        assert portion == pytest.approx(points_for_low_completion(4, EXAMPLE_PARAMS.wr_time, 9.0))

    def test_large_boards_use_distribution(self):
        portion = distribution_portion(4, EXAMPLE_PARAMS, 9.0)
        assert portion == pytest.approx(EXAMPLE_PARAMS.quantile(9.0))


class TestCalculatePoints:
    def test_missing_parameters_give_zero(self):
        assert calculate_points(5, True, 0, None, 30.0) == 0.0

    def test_unranked_gives_zero(self):
        assert calculate_points(5, False, 0, EXAMPLE_PARAMS, 8.0, ranked=False) == 0.0

    def test_unrankable_tier_gives_zero(self):
        assert calculate_points(Tier.IMPOSSIBLE, False, 0, EXAMPLE_PARAMS, 8.0) == 0.0

    def test_world_record_on_easiest_pro_board(self):
        points = calculate_points(Tier.VERY_EASY, True, 0, EXAMPLE_PARAMS, EXAMPLE_PARAMS.wr_time)
        assert points == pytest.approx(10_000.0)

    def test_slower_run_earns_less(self):
        fast = calculate_points(3, False, 10, EXAMPLE_PARAMS, 9.0)
        slow = calculate_points(3, False, 10, EXAMPLE_PARAMS, 14.0)
        assert fast > slow

    def test_at_least_tier_minimum(self):
        points = calculate_points(Tier.EXTREME, False, 164, EXAMPLE_PARAMS, 500.0)
        assert points >= minimum_points(Tier.EXTREME, False)

    def test_deterministic(self):
        args = (6, True, 17, EXAMPLE_PARAMS, 11.25)
        assert calculate_points(*args) == calculate_points(*args)

    def test_always_within_bounds(self):
        rng = random.Random(1234)
        for _ in range(500):
            tier = rng.randint(1, 10)
            rank = rng.randint(0, 400)
            time = rng.uniform(0.5, 200.0)
            size = rng.choice([None, 1, 20, 50, 51, 400])
            points = calculate_points(tier, rng.random() < 0.5, rank, EXAMPLE_PARAMS, time,
                                      leaderboard_size=size)
            assert math.isfinite(points)
            assert 0.0 <= points <= PointsConstants.MAX_POINTS
