"""
Filter Operations

Commands issued by the content-approval side: creating filters, changing
their grading, and requesting a recalculation. A grading change invalidates
the filter's points mapping, so it queues a refit even without new records.
"""

from typing import Optional

from kzpoints.config import Config
from kzpoints.constants import Tier
from kzpoints.database.models import Filter
from kzpoints.services.base import BaseService
from kzpoints.services.recalc_queue import RecalcQueue
from kzpoints.utils.logger import setup_logger
from kzpoints.utils.points_exceptions import FilterNotFoundError

logger = setup_logger(__name__)


class FilterOperations(BaseService):
    """Filter grading and recalculation commands."""

    def __init__(self, session_factory, queue: RecalcQueue, config_service=None):
        super().__init__(session_factory)
        self.queue = queue
        self.config_service = config_service

    def _grading_change_priority(self) -> int:
        if self.config_service is not None:
            return int(self.config_service.get('queue.grading_change_priority', Config.GRADING_CHANGE_PRIORITY))
        return Config.GRADING_CHANGE_PRIORITY

    @staticmethod
    def _validate_tier(tier: int) -> int:
        try:
            return int(Tier(tier))
        except ValueError:
            raise ValueError(f"tier must be between {int(Tier.VERY_EASY)} and {int(Tier.IMPOSSIBLE)}, got {tier}") from None

    async def create_filter(self, course_name: str, mode: str, nub_tier: int, pro_tier: int,
                            nub_ranked: bool = True, pro_ranked: bool = True) -> Filter:
        """Create a filter with its initial grading."""
        nub_tier = self._validate_tier(nub_tier)
        pro_tier = self._validate_tier(pro_tier)

        async with self.get_session() as session:
            filter = Filter(
                course_name=course_name,
                mode=mode,
                nub_tier=nub_tier,
                pro_tier=pro_tier,
                nub_ranked=nub_ranked,
                pro_ranked=pro_ranked,
            )
            session.add(filter)
            await session.flush()
            logger.info(f"Created filter {filter.id}: {course_name} ({mode}), tiers {nub_tier}/{pro_tier}")
            return filter

    async def update_grading(
        self,
        filter_id: int,
        nub_tier: Optional[int] = None,
        pro_tier: Optional[int] = None,
        nub_ranked: Optional[bool] = None,
        pro_ranked: Optional[bool] = None
    ) -> bool:
        """
        Change a filter's tiers or ranked flags.

        Args:
            filter_id: Filter to regrade
            nub_tier, pro_tier: New tiers (None keeps the current value)
            nub_ranked, pro_ranked: New ranked flags (None keeps the current value)

        Returns:
            True if anything changed (the filter is then queued for refit)
        """
        changes = {
            'nub_tier': None if nub_tier is None else self._validate_tier(nub_tier),
            'pro_tier': None if pro_tier is None else self._validate_tier(pro_tier),
            'nub_ranked': nub_ranked,
            'pro_ranked': pro_ranked,
        }

        async with self.get_session() as session:
            filter = await session.get(Filter, filter_id, with_for_update=True)
            if filter is None:
                raise FilterNotFoundError(filter_id)

            changed = False
            for field, value in changes.items():
                if value is not None and getattr(filter, field) != value:
                    setattr(filter, field, value)
                    changed = True

            if changed:
                await session.flush()
                await self.queue.enqueue_filter(filter_id, self._grading_change_priority(), session=session)
                logger.info(
                    f"Filter {filter_id} regraded: tiers {filter.nub_tier}/{filter.pro_tier}, "
                    f"ranked {filter.nub_ranked}/{filter.pro_ranked}"
                )
            return changed

    async def request_recalculation(self, filter_id: int, priority: Optional[int] = None) -> int:
        """
        Queue a filter for refit.

        Returns:
            The filter's effective pending priority
        """
        async with self.get_session() as session:
            if await session.get(Filter, filter_id) is None:
                raise FilterNotFoundError(filter_id)
            if priority is None:
                priority = self._grading_change_priority()
            return await self.queue.enqueue_filter(filter_id, priority, session=session)
