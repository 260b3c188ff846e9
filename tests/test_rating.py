import random

import pytest

from kzpoints.constants import LeaderboardKind
from kzpoints.utils.rating import RatedPoints, decayed_rating, rank_pooled_points


class TestDecayedRating:
    def test_known_value(self):
        assert decayed_rating([100.0, 50.0]) == pytest.approx(100.0 + 50.0 * 0.975)

    def test_empty(self):
        assert decayed_rating([]) == 0.0

    def test_order_invariant(self):
        points = [9000.0, 120.5, 4400.0, 4400.0, 7312.25, 10.0]
        shuffled = points[:]
        random.Random(3).shuffle(shuffled)
        assert decayed_rating(shuffled) == pytest.approx(decayed_rating(points))

    def test_lowering_any_value_lowers_rating(self):
        points = [9000.0, 6000.0, 4400.0, 1000.0]
        base = decayed_rating(points)
        for i in range(len(points)):
            lowered = points[:]
            lowered[i] -= 1.0
            assert decayed_rating(lowered) < base

    def test_custom_decay(self):
        assert decayed_rating([10.0, 10.0, 10.0], decay=0.5) == pytest.approx(17.5)


class TestPooledRanking:
    def test_pro_ranks_above_nub_on_equal_points(self):
        nub = RatedPoints(LeaderboardKind.NUB, filter_id=1, record_id=1, points=5000.0)
        pro = RatedPoints(LeaderboardKind.PRO, filter_id=2, record_id=2, points=5000.0)

        ranked = rank_pooled_points([nub, pro])

        assert [item.entry for item in ranked] == [pro, nub]
        assert [item.position for item in ranked] == [0, 1]

    def test_weights_follow_decay(self):
        entries = [
            RatedPoints(LeaderboardKind.NUB, filter_id=i, record_id=i, points=float(1000 * i))
            for i in range(1, 5)
        ]
        ranked = rank_pooled_points(entries)

        assert [item.entry.points for item in ranked] == [4000.0, 3000.0, 2000.0, 1000.0]
        assert [item.weight for item in ranked] == pytest.approx([0.975 ** n for n in range(4)])
        assert ranked[1].contribution == pytest.approx(3000.0 * 0.975)
