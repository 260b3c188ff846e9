"""
Rating aggregation.

A rating is the decayed sum of a player's best points: points are sorted
descending and the n-th value (zero-based) is weighted by `decay ** n`, so a
handful of best performances dominates while breadth is still rewarded.
"""

from dataclasses import dataclass
from typing import Iterable, List

from kzpoints.constants import LeaderboardKind, RatingConstants


@dataclass(frozen=True)
class RatedPoints:
    """One best-record entry taking part in a pooled ranking."""
    kind: LeaderboardKind
    filter_id: int
    record_id: int
    points: float


@dataclass(frozen=True)
class WeightedPoints:
    """A pooled entry with its zero-based position and decay weight."""
    entry: RatedPoints
    position: int
    weight: float

    @property
    def contribution(self) -> float:
        return self.entry.points * self.weight


def decayed_rating(points: Iterable[float], decay: float = RatingConstants.DECAY) -> float:
    """
    Calculate a rating from a set of points values.

    Args:
        points: Points of every best record for one leaderboard kind
        decay: Weight multiplier per position

    Returns:
        Sum of `points * decay ** n` over the values sorted descending
    """
    ordered = sorted(points, reverse=True)
    return sum(value * decay ** n for n, value in enumerate(ordered))


def rank_pooled_points(entries: Iterable[RatedPoints],
                       decay: float = RatingConstants.DECAY) -> List[WeightedPoints]:
    """
    Rank nub and pro entries together by points.

    Pro entries sort above nub entries of equal value; remaining ties go by
    filter and record id so the ordering is stable.
    """
    ordered = sorted(
        entries,
        key=lambda e: (-e.points, 0 if e.kind.is_pro else 1, e.filter_id, e.record_id)
    )
    return [
        WeightedPoints(entry=entry, position=n, weight=decay ** n)
        for n, entry in enumerate(ordered)
    ]
