"""
Leaderboard service: read-side queries over the best-record tables.

Provides paged leaderboards per filter and kind, single-player rank lookups
and player profiles.
"""

import logging
from typing import Optional

from sqlalchemy import select, func

from kzpoints.constants import LeaderboardKind
from kzpoints.data_models.leaderboard import LeaderboardEntry, LeaderboardPage
from kzpoints.data_models.profile import FilterBest, PlayerProfile, PlayerRatings, TopRecord
from kzpoints.database.models import Filter, Player
from kzpoints.services.base import BaseService
from kzpoints.utils.points_exceptions import FilterNotFoundError, PlayerNotFoundError
from kzpoints.utils.rating import RatedPoints, rank_pooled_points
from kzpoints.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class LeaderboardService(BaseService):
    """Service for leaderboard queries and ranking."""

    def __init__(self, session_factory, rating_service=None):
        super().__init__(session_factory)
        self.rating_service = rating_service

    @staticmethod
    def _entry(row) -> LeaderboardEntry:
        return LeaderboardEntry(
            rank=row.rank,
            player_id=row.player_id,
            player_name=row.player_name,
            record_id=row.record_id,
            time=row.time,
            points=row.points,
            submitted_at=row.submitted_at,
        )

    async def get_leaderboard(self, filter_id: int, kind: LeaderboardKind,
                              offset: int = 0, limit: int = 20) -> LeaderboardPage:
        """
        Get one page of a filter's leaderboard.

        Args:
            filter_id: Filter to list
            kind: Leaderboard variant
            offset: Number of entries to skip
            limit: Page size (1 to MAX_PAGE_SIZE)

        Returns:
            LeaderboardPage with entries in rank order
        """
        if not isinstance(offset, int) or offset < 0:
            raise ValueError("offset must be a non-negative integer")
        if not isinstance(limit, int) or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        async with self.get_session() as session:
            if await session.get(Filter, filter_id) is None:
                raise FilterNotFoundError(filter_id)

            ranked = RankingUtility.create_leaderboard_cte(kind, filter_id=filter_id)
            total = await session.scalar(select(func.count()).select_from(ranked))

            result = await session.execute(
                select(ranked)
                .order_by(ranked.c.rank)
                .offset(offset)
                .limit(limit)
            )
            entries = [self._entry(row) for row in result.all()]

        return LeaderboardPage(
            filter_id=filter_id,
            kind=kind,
            entries=entries,
            offset=offset,
            limit=limit,
            total_entries=total or 0,
        )

    async def get_player_rank(self, filter_id: int, kind: LeaderboardKind,
                              player_id: int) -> Optional[LeaderboardEntry]:
        """Get a player's leaderboard entry on a filter, or None if they have no best record."""
        async with self.get_session() as session:
            ranked = RankingUtility.create_leaderboard_cte(kind, filter_id=filter_id)
            row = (await session.execute(
                select(ranked).where(ranked.c.player_id == player_id)
            )).first()
            return self._entry(row) if row is not None else None

    async def get_player_profile(self, player_id: int) -> PlayerProfile:
        """
        Get a player's ratings, per-filter bests and most valuable records.

        The top-records list pools both kinds by points (pro first on equal
        points) with the decay weight each position carries.
        """
        async with self.get_session() as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)

            bests = []
            pooled = []
            for kind in LeaderboardKind:
                ranked = RankingUtility.create_leaderboard_cte(kind)
                result = await session.execute(
                    select(ranked, Filter.course_name, Filter.mode)
                    .join(Filter, Filter.id == ranked.c.filter_id)
                    .where(ranked.c.player_id == player_id)
                    .order_by(ranked.c.filter_id)
                )
                for row in result.all():
                    bests.append(FilterBest(
                        filter_id=row.filter_id,
                        course_name=row.course_name,
                        mode=row.mode,
                        kind=kind,
                        record_id=row.record_id,
                        time=row.time,
                        points=row.points,
                        rank=row.rank,
                        leaderboard_size=row.leaderboard_size,
                    ))
                    pooled.append(RatedPoints(
                        kind=kind,
                        filter_id=row.filter_id,
                        record_id=row.record_id,
                        points=row.points,
                    ))

            ratings = PlayerRatings(
                player_id=player.id,
                nub_rating=player.nub_rating,
                pro_rating=player.pro_rating,
                updated_at=player.ratings_updated_at,
            )
            player_name = player.name

        decay = self.rating_service.decay if self.rating_service is not None else None
        weighted = rank_pooled_points(pooled, decay) if decay is not None else rank_pooled_points(pooled)
        top_records = [
            TopRecord(
                position=item.position,
                filter_id=item.entry.filter_id,
                kind=item.entry.kind,
                record_id=item.entry.record_id,
                points=item.entry.points,
                weight=item.weight,
                weighted_points=item.contribution,
            )
            for item in weighted
        ]

        return PlayerProfile(
            player_id=player_id,
            player_name=player_name,
            ratings=ratings,
            bests=bests,
            top_records=top_records,
        )
