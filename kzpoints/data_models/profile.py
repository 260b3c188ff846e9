"""
Profile data models.

Provides immutable data transfer objects for player profile aggregation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from kzpoints.constants import LeaderboardKind


@dataclass(frozen=True)
class PlayerRatings:
    """Cached nub/pro ratings of a player."""
    player_id: int
    nub_rating: float
    pro_rating: float
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class FilterBest:
    """A player's best record on one filter and leaderboard kind."""
    filter_id: int
    course_name: str
    mode: str
    kind: LeaderboardKind
    record_id: int
    time: float
    points: float
    rank: int
    leaderboard_size: int


@dataclass(frozen=True)
class TopRecord:
    """Entry in the pooled most-valuable-records list."""
    position: int  # 0-based
    filter_id: int
    kind: LeaderboardKind
    record_id: int
    points: float
    weight: float  # decay ** position
    weighted_points: float


@dataclass(frozen=True)
class PlayerProfile:
    """Complete profile data for a player."""
    player_id: int
    player_name: str
    ratings: PlayerRatings
    bests: List[FilterBest]
    top_records: List[TopRecord]
