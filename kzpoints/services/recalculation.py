"""
Recalculation scheduler.

Workers drain the two recalculation queues:
- a popped filter is refit per leaderboard kind, its distribution parameters
  replaced, and every best-record row rescored; players whose points moved
  are queued for a rating refresh
- a popped player has both ratings recomputed and cached

Processing any entry is idempotent, so entries may run more than once. Fits
that fail (too few or degenerate times) leave the stored parameters alone and
are not retried until a new best time queues the filter again.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from redis.exceptions import RedisError
from sqlalchemy import select

from kzpoints.config import Config
from kzpoints.constants import LeaderboardKind, QueuePriority
from kzpoints.database.models import (
    Filter, DistributionParameters, FilterRecordCount, best_record_model
)
from kzpoints.services.base import BaseService
from kzpoints.services.best_records import BestRecordService
from kzpoints.services.rating_service import RatingService
from kzpoints.services.recalc_queue import RecalcQueue
from kzpoints.utils.distribution import DistributionFitter, DistributionParams, NormInvGaussFitter
from kzpoints.utils.points_exceptions import FitError

logger = logging.getLogger(__name__)


class RecalculationScheduler(BaseService):
    """Drains the filter and player queues with a pool of async workers."""

    def __init__(self, session_factory, queue: RecalcQueue,
                 best_records: BestRecordService, rating_service: RatingService,
                 fitter: Optional[DistributionFitter] = None,
                 config_service=None, redis_client=None,
                 poll_interval: Optional[float] = None):
        super().__init__(session_factory)
        self.queue = queue
        self.best_records = best_records
        self.rating_service = rating_service
        self.config_service = config_service
        self.fitter = fitter or NormInvGaussFitter(min_samples=self._config('points.min_fit_samples', Config.MIN_FIT_SAMPLES))
        self.redis_client = redis_client
        self.poll_interval = poll_interval if poll_interval is not None else Config.RECALC_POLL_INTERVAL

        self._stop_event = asyncio.Event()
        self._workers: List[asyncio.Task] = []

    def _config(self, key: str, default):
        if self.config_service is not None:
            return self.config_service.get(key, default)
        return default

    # Distributed locking

    async def _acquire_refit_lock(self, filter_id: int) -> bool:
        if self.redis_client is None:
            return True
        lock_key = f"kzpoints:refit_lock:{filter_id}"
        is_locked = await self.redis_client.set(lock_key, "1", ex=Config.REFIT_LOCK_TTL, nx=True)
        return bool(is_locked)

    async def _release_refit_lock(self, filter_id: int):
        if self.redis_client is None:
            return
        try:
            await self.redis_client.delete(f"kzpoints:refit_lock:{filter_id}")
        except RedisError as e:
            # The lock expires on its own after REFIT_LOCK_TTL
            logger.warning(f"Failed to release refit lock for filter {filter_id}: {e}")

    # Filter refits

    async def _load_times(self, filter_id: int) -> Optional[Tuple[Dict[LeaderboardKind, List[float]], int]]:
        """Ranked boards' times plus the best-time change count they reflect."""
        async with self.get_session() as session:
            filter = await session.get(Filter, filter_id)
            if filter is None:
                return None

            counter = await session.get(FilterRecordCount, filter_id)
            counted = counter.count if counter is not None else 0

            times = {}
            for kind in LeaderboardKind:
                if not filter.is_ranked(kind):
                    continue
                best = best_record_model(kind)
                result = await session.execute(
                    select(best.time)
                    .where(best.filter_id == filter_id, best.quarantined.is_(False))
                    .order_by(best.time.asc())
                )
                times[kind] = list(result.scalars().all())
            return times, counted

    async def _fit(self, filter_id: int, kind: LeaderboardKind,
                   times: List[float]) -> Optional[DistributionParams]:
        try:
            # Numeric fit runs off the event loop
            return await asyncio.to_thread(self.fitter.fit, times)
        except FitError as e:
            logger.warning(f"Skipping {kind.value} refit of filter {filter_id}: {e}")
            return None

    async def recalculate_filter(self, filter_id: int) -> Set[int]:
        """
        Refit a filter's distributions and rescore its best records.

        Args:
            filter_id: Filter to refit

        Returns:
            Ids of players whose points changed (already queued for refresh)
        """
        loaded = await self._load_times(filter_id)
        if loaded is None:
            logger.warning(f"Skipping refit of unknown filter {filter_id}")
            return set()
        times, counted = loaded

        fitted = {}
        for kind, kind_times in times.items():
            params = await self._fit(filter_id, kind, kind_times)
            if params is not None:
                fitted[kind] = params

        async def apply():
            async with self.get_session() as session:
                filter = await session.get(Filter, filter_id)
                if filter is None:
                    return set()

                for kind, params in fitted.items():
                    row = await session.get(DistributionParameters, (filter_id, kind), with_for_update=True)
                    if row is None:
                        row = DistributionParameters(filter_id=filter_id, kind=kind)
                        session.add(row)
                    row.a = params.a
                    row.b = params.b
                    row.loc = params.loc
                    row.scale = params.scale
                    row.top_scale = params.top_scale
                    row.wr_time = params.wr_time
                    row.leaderboard_size = params.leaderboard_size
                await session.flush()

                if fitted:
                    counter = await session.get(FilterRecordCount, filter_id, with_for_update=True)
                    if counter is not None:
                        # Changes committed after the times were loaded still count toward the next refit
                        counter.count = max(counter.count - counted, 0)

                # Nub first: pro points are floored by nub points
                changed = set()
                for kind in (LeaderboardKind.NUB, LeaderboardKind.PRO):
                    changed |= await self.best_records.recompute_points(session, filter, kind)

                for player_id in changed:
                    await self.queue.enqueue_player(player_id, QueuePriority.PLAYER_REFIT, session=session)
                return changed

        changed = await self.execute_with_retry(apply)
        logger.info(
            f"Recalculated filter {filter_id}: refit {', '.join(k.value for k in fitted) or 'nothing'}, "
            f"{len(changed)} players rescored"
        )
        return changed

    async def process_next_filter(self) -> bool:
        """
        Pop and process the highest-priority filter.

        Returns:
            True if the filter was processed, False if the queue was empty or
            the filter is locked by another instance
        """
        entry = await self.queue.pop_filter()
        if entry is None:
            return False
        filter_id, priority = entry

        if not await self._acquire_refit_lock(filter_id):
            logger.info(f"Refit of filter {filter_id} is locked by another instance; re-enqueueing")
            await self.queue.enqueue_filter(filter_id, priority)
            return False

        try:
            await self.recalculate_filter(filter_id)
        finally:
            await self._release_refit_lock(filter_id)
        return True

    # Player ratings

    async def process_next_player(self) -> bool:
        """
        Pop and process the highest-priority player.

        Returns:
            True if an entry was popped
        """
        entry = await self.queue.pop_player()
        if entry is None:
            return False
        player_id, _ = entry
        await self.rating_service.recalculate_player(player_id)
        return True

    # Worker pool

    async def run_worker(self, worker_id: int, stop_event: Optional[asyncio.Event] = None):
        """Drain both queues until `stop_event` is set."""
        stop_event = stop_event or self._stop_event
        logger.info(f"Recalculation worker {worker_id} started")

        while not stop_event.is_set():
            try:
                did_filter = await self.process_next_filter()
                did_player = await self.process_next_player()
                if not (did_filter or did_player):
                    await self.queue.wait_for_work(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Log error but keep the worker alive; the entry is dropped
                logger.error(f"Recalculation worker {worker_id} iteration failed: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

        logger.info(f"Recalculation worker {worker_id} stopped")

    def start(self, workers: Optional[int] = None):
        """Start the worker pool as background tasks."""
        if self._workers:
            return
        self._stop_event.clear()
        count = workers or Config.RECALC_WORKERS
        self._workers = [
            asyncio.create_task(self.run_worker(worker_id, self._stop_event))
            for worker_id in range(count)
        ]
        logger.info(f"Started {count} recalculation workers")

    async def stop(self):
        """Signal workers to stop and wait for in-flight entries to finish."""
        self._stop_event.set()
        self.queue.notify()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def drain(self) -> int:
        """
        Process queued work until both queues are empty.

        Returns:
            Number of entries processed
        """
        processed = 0
        while True:
            did_filter = await self.process_next_filter()
            did_player = await self.process_next_player()
            if not (did_filter or did_player):
                return processed
            processed += int(did_filter) + int(did_player)

    async def enqueue_all(self, priority: int = 1) -> int:
        """Queue every filter for refit."""
        async with self.get_session() as session:
            result = await session.execute(select(Filter.id).order_by(Filter.id))
            filter_ids = list(result.scalars().all())

            for filter_id in filter_ids:
                await self.queue.enqueue_filter(filter_id, priority, session=session)

        logger.info(f"Queued {len(filter_ids)} filters for recalculation")
        return len(filter_ids)
