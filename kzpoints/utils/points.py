"""
Points calculator: maps a run on a ranked leaderboard to points in [0, 10000].

Points are composed of three parts:
- a tier-dependent minimum every completion earns
- a rank bonus (25% of the remaining headroom) rewarding the top of the board
- a distribution part (75% of the remaining headroom) from the run's quantile
  within the fitted time distribution

All functions here are pure: identical inputs always give identical outputs,
which is what allows historical points to be recomputed and verified.
"""

import math
from typing import Optional

from kzpoints.constants import PointsConstants, Tier
from kzpoints.utils.distribution import DistributionParams


def minimum_points(tier: int, is_pro_leaderboard: bool) -> Optional[float]:
    """
    Calculate the minimum points awarded for completing a filter of a given tier.

    Args:
        tier: Tier of the leaderboard (1-10)
        is_pro_leaderboard: Whether this is the pro (no-teleport) leaderboard

    Returns:
        Minimum points, or None for tiers that are never ranked
    """
    tier = Tier(tier)
    if not tier.is_rankable:
        return None

    points = PointsConstants.TIER_MINIMUM_POINTS[tier]
    if is_pro_leaderboard:
        points += (PointsConstants.MAX_POINTS - points) * PointsConstants.PRO_MINIMUM_BONUS
    return points


def points_for_rank(leaderboard_size: int, rank: int) -> float:
    """
    Calculate the rank bonus portion (0.0 to 1.0) for a zero-based rank.

    The bonus shrinks linearly over the whole leaderboard, with additional
    steps for the top 100, the top 20, and the top five places.
    """
    leaderboard_size = max(leaderboard_size, rank + 1)
    portion = 0.5 * (1.0 - rank / leaderboard_size)

    if rank < 100:
        portion += (100 - rank) * 0.002
    if rank < 20:
        portion += (20 - rank) * 0.01
    if rank < len(PointsConstants.TOP_RANK_BONUS):
        portion += PointsConstants.TOP_RANK_BONUS[rank]

    return min(portion, 1.0)


def points_for_low_completion(tier: int, wr_time: float, time: float) -> float:
    """
    Calculate the distribution portion for leaderboards with few completions.

    A logistic curve over `time / wr_time` replaces the fitted distribution
    when there are too few entries for the fit to be trusted. Equals 1.0 at the
    world-record time and falls off faster on easier tiers.
    """
    if time <= wr_time:
        return 1.0

    x = 2.1 - 0.25 * int(tier)
    y = 1.0 + math.exp(x * -0.5)
    z = 1.0 + math.exp(x * (time / wr_time - 1.5))
    return min(max(y / z, 0.0), 1.0)


def distribution_portion(tier: int, params: DistributionParams, time: float,
                         leaderboard_size: Optional[int] = None) -> float:
    """Completion quantile of `time` in [0, 1] (better times closer to 1)."""
    size = params.leaderboard_size if leaderboard_size is None else leaderboard_size
    if size <= PointsConstants.LOW_COMPLETION_THRESHOLD:
        return points_for_low_completion(tier, params.wr_time, time)
    return params.quantile(time)


def calculate_points(tier: int, is_pro_leaderboard: bool, rank: int,
                     params: Optional[DistributionParams], time: float,
                     ranked: bool = True, leaderboard_size: Optional[int] = None) -> float:
    """
    Calculate the points for a run.

    Args:
        tier: Tier of the leaderboard the run is on
        is_pro_leaderboard: Whether the run is ranked on the pro leaderboard
        rank: Zero-based leaderboard position of the run (0 = best)
        params: Fitted distribution for the leaderboard, or None if not yet fit
        time: Completion time in seconds
        ranked: Whether the leaderboard awards points at all
        leaderboard_size: Current leaderboard size (defaults to the size at fit time)

    Returns:
        Points in [0, 10000]; 0 for unranked leaderboards or missing parameters
    """
    if params is None or not ranked:
        return 0.0

    minimum = minimum_points(tier, is_pro_leaderboard)
    if minimum is None:
        return 0.0

    size = params.leaderboard_size if leaderboard_size is None else leaderboard_size
    remaining = PointsConstants.MAX_POINTS - minimum

    rank_points = PointsConstants.RANK_SHARE * remaining * points_for_rank(size, rank)
    dist_points = PointsConstants.DISTRIBUTION_SHARE * remaining * distribution_portion(tier, params, time, size)

    total = minimum + rank_points + dist_points
    if not math.isfinite(total):
        return 0.0
    return min(max(total, 0.0), PointsConstants.MAX_POINTS)
