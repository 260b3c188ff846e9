"""
Leaderboard data models.

Provides immutable data transfer objects for leaderboard queries.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List

from kzpoints.constants import LeaderboardKind


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row."""
    rank: int  # 1-based
    player_id: int
    player_name: str
    record_id: int
    time: float
    points: float
    submitted_at: datetime


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    filter_id: int
    kind: LeaderboardKind
    entries: List[LeaderboardEntry]
    offset: int
    limit: int
    total_entries: int
