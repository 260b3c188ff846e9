"""
Shared ranking utilities for leaderboard queries.

Rank is never stored: it is the 1-based position of a BestRecord row when a
filter's rows are ordered by time, ties going to the earlier submission.
Every query that needs a rank builds it from the CTE produced here so the
leaderboard, player profiles and points recomputation agree on ordering.
"""

from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.sql import Select

from kzpoints.constants import LeaderboardKind
from kzpoints.database.models import Record, Player, best_record_model


class RankingUtility:
    """Shared ranking logic for consistent CTE pattern usage."""

    @staticmethod
    def leaderboard_order(kind: LeaderboardKind):
        """ORDER BY clause for a leaderboard: time, then submission, then id."""
        best = best_record_model(kind)
        return (best.time.asc(), Record.submitted_at.asc(), best.record_id.asc())

    @staticmethod
    def create_leaderboard_cte(
        kind: LeaderboardKind,
        filter_id: Optional[int] = None,
        include_quarantined: bool = False
    ) -> Select:
        """
        Create a CTE ranking BestRecord rows within each filter.

        Args:
            kind: Leaderboard variant to rank
            filter_id: Restrict to a single filter (ranks are per filter either way)
            include_quarantined: Keep rows flagged as invariant violations

        Returns:
            CTE with filter/player/record ids, time, points, submitted_at,
            player_name, rank and leaderboard_size columns
        """
        best = best_record_model(kind)

        query = (
            select(
                best.filter_id,
                best.player_id,
                best.record_id,
                best.time,
                best.points,
                Record.submitted_at,
                Player.name.label('player_name'),
                func.row_number().over(
                    partition_by=best.filter_id,
                    order_by=RankingUtility.leaderboard_order(kind)
                ).label('rank'),
                func.count(best.player_id).over(
                    partition_by=best.filter_id
                ).label('leaderboard_size'),
            )
            .select_from(best)
            .join(Record, Record.id == best.record_id)
            .join(Player, Player.id == best.player_id)
        )

        if filter_id is not None:
            query = query.where(best.filter_id == filter_id)
        if not include_quarantined:
            query = query.where(best.quarantined.is_(False))

        return query.cte(f'ranked_{kind.value}_records')
