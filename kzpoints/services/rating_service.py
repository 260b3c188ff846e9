"""
Rating service: persists each player's nub/pro rating as a cached projection
of their best-record rows.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kzpoints.config import Config
from kzpoints.constants import LeaderboardKind
from kzpoints.data_models.profile import PlayerRatings
from kzpoints.database.models import Player, Record, best_record_model
from kzpoints.services.base import BaseService
from kzpoints.services.best_records import BestRecordService
from kzpoints.utils.points_exceptions import PlayerNotFoundError
from kzpoints.utils.rating import decayed_rating

logger = logging.getLogger(__name__)


class RatingService(BaseService):
    """Computes and caches player ratings."""

    def __init__(self, session_factory, config_service=None):
        super().__init__(session_factory)
        self.config_service = config_service

    @property
    def decay(self) -> float:
        if self.config_service is not None:
            return float(self.config_service.get('rating.decay', Config.RATING_DECAY))
        return Config.RATING_DECAY

    async def calculate_ratings(self, session: AsyncSession, player_id: int) -> Dict[LeaderboardKind, float]:
        """
        Calculate both ratings from the player's current best-record rows.

        Rows referencing a record that no longer qualifies are quarantined and
        left out of the sum.
        """
        ratings = {}
        for kind in LeaderboardKind:
            best = best_record_model(kind)
            result = await session.execute(
                select(best, Record)
                .outerjoin(Record, Record.id == best.record_id)
                .where(best.player_id == player_id, best.quarantined.is_(False))
            )

            points = []
            for row, record in result.all():
                violation = BestRecordService.find_violation(row, record)
                if violation is not None:
                    BestRecordService.quarantine(row, violation)
                    continue
                points.append(row.points)

            ratings[kind] = decayed_rating(points, self.decay)
        return ratings

    async def recalculate_player(self, player_id: int) -> Optional[PlayerRatings]:
        """
        Recompute and persist a player's ratings.

        Returns:
            The new ratings, or None if the player no longer exists
        """
        async def recalculate():
            async with self.get_session() as session:
                player = await session.get(Player, player_id, with_for_update=True)
                if player is None:
                    logger.warning(f"Skipping rating refresh for unknown player {player_id}")
                    return None

                ratings = await self.calculate_ratings(session, player_id)
                player.nub_rating = ratings[LeaderboardKind.NUB]
                player.pro_rating = ratings[LeaderboardKind.PRO]
                player.ratings_updated_at = datetime.now(timezone.utc)

                logger.info(
                    f"Player {player_id} rating: nub {player.nub_rating:.2f}, pro {player.pro_rating:.2f}"
                )
                return PlayerRatings(
                    player_id=player_id,
                    nub_rating=player.nub_rating,
                    pro_rating=player.pro_rating,
                    updated_at=player.ratings_updated_at,
                )

        return await self.execute_with_retry(recalculate)

    async def get_ratings(self, player_id: int) -> PlayerRatings:
        """Get a player's cached ratings."""
        async with self.get_session() as session:
            player = await session.get(Player, player_id)
            if player is None:
                raise PlayerNotFoundError(player_id)
            return PlayerRatings(
                player_id=player.id,
                nub_rating=player.nub_rating,
                pro_rating=player.pro_rating,
                updated_at=player.ratings_updated_at,
            )
