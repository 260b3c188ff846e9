"""
Engine-wide constants for the points engine.

This module contains the tier ladder, leaderboard kinds, record classification
states and the magic numbers used by the points formulas and the
recalculation queues.
"""

from enum import Enum, IntEnum


class Tier(IntEnum):
    """Ordinal difficulty class of a filter's leaderboard."""
    VERY_EASY = 1
    EASY = 2
    MEDIUM = 3
    ADVANCED = 4
    HARD = 5
    VERY_HARD = 6
    EXTREME = 7
    DEATH = 8
    UNFEASIBLE = 9
    IMPOSSIBLE = 10

    @property
    def is_rankable(self) -> bool:
        return self <= Tier.DEATH


class LeaderboardKind(Enum):
    NUB = "nub"  # Teleports allowed
    PRO = "pro"  # No teleports

    @property
    def is_pro(self) -> bool:
        return self is LeaderboardKind.PRO


class RecordStatus(Enum):
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"  # Excluded, pending human review
    CHEATED = "cheated"        # Excluded, confirmed
    HIDDEN = "hidden"          # Excluded, exploit/bug (not a cheating accusation)


# States a record may be submitted with
INITIAL_RECORD_STATES = frozenset({
    RecordStatus.NORMAL,
    RecordStatus.SUSPICIOUS,
    RecordStatus.HIDDEN,
})

# Legal reclassification edges (from -> allowed targets)
RECORD_STATUS_TRANSITIONS = {
    RecordStatus.NORMAL: frozenset({RecordStatus.SUSPICIOUS}),
    RecordStatus.SUSPICIOUS: frozenset({RecordStatus.CHEATED, RecordStatus.NORMAL}),
    RecordStatus.CHEATED: frozenset({RecordStatus.SUSPICIOUS}),
    RecordStatus.HIDDEN: frozenset(),
}


class PointsConstants:
    """Constants related to points calculations."""

    # Hard ceiling for any record (enforced by the storage layer as well)
    MAX_POINTS = 10_000.0

    # Leaderboards with at most this many entries use the low-completion curve
    LOW_COMPLETION_THRESHOLD = 50

    # Minimum points per rankable tier (nub leaderboard)
    TIER_MINIMUM_POINTS = {
        Tier.VERY_EASY: 0.0,
        Tier.EASY: 500.0,
        Tier.MEDIUM: 2000.0,
        Tier.ADVANCED: 3500.0,
        Tier.HARD: 5000.0,
        Tier.VERY_HARD: 6500.0,
        Tier.EXTREME: 8000.0,
        Tier.DEATH: 9500.0,
    }

    # Share of the remaining headroom added to the pro minimum
    PRO_MINIMUM_BONUS = 0.1

    # Split of the remaining headroom between rank bonus and distribution
    RANK_SHARE = 0.25
    DISTRIBUTION_SHARE = 0.75

    # Extra rank bonus for the top five places
    TOP_RANK_BONUS = (0.1, 0.06, 0.045, 0.03, 0.01)


class RatingConstants:
    """Constants related to rating aggregation."""

    # Weight multiplier per position in a player's sorted points list
    DECAY = 0.975


class QueuePriority:
    """Priorities used when enqueueing recalculation work."""

    # Stored as an unsigned small integer
    MAX = 65_535

    # A player's best record changed
    PLAYER_RECORD_CHANGED = 1

    # A record left or re-entered the normal state
    PLAYER_RECLASSIFIED = 10

    # Points shifted after a filter refit
    PLAYER_REFIT = 1
