"""
Best-record table maintenance.

Keeps `best_nub_records` / `best_pro_records` equal to each player's
minimum-time normal record per filter, computes their points, and queues the
follow-up work (player rating refresh, filter refit) a change implies.

All methods taking a session run inside the caller's transaction so a record
change and its best-record cascade commit together.
"""

import bisect
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Set

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from kzpoints.config import Config
from kzpoints.constants import LeaderboardKind, PointsConstants, QueuePriority, RecordStatus
from kzpoints.database.models import (
    Filter, Record, DistributionParameters, FilterRecordCount, best_record_model
)
from kzpoints.services.base import BaseService
from kzpoints.services.recalc_queue import RecalcQueue
from kzpoints.utils.distribution import DistributionParams
from kzpoints.utils.points import calculate_points
from kzpoints.utils.points_exceptions import FilterNotFoundError, InvariantViolation
from kzpoints.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NubFloor:
    """Scores a pro time as if it had been set on the filter's nub leaderboard."""
    tier: int
    params: DistributionParams
    times: List[float]  # Nub leaderboard times, ascending

    def points_for(self, time: float) -> float:
        faster = bisect.bisect_left(self.times, time)
        return calculate_points(
            self.tier, False, faster, self.params, time,
            leaderboard_size=max(len(self.times), faster + 1)
        )


class BestRecordService(BaseService):
    """Maintains the per-variant best-record tables."""

    def __init__(self, session_factory, queue: RecalcQueue, config_service=None):
        super().__init__(session_factory)
        self.queue = queue
        self.config_service = config_service

    def _refit_threshold(self) -> int:
        if self.config_service is not None:
            return int(self.config_service.get('points.refit_threshold', Config.REFIT_THRESHOLD))
        return Config.REFIT_THRESHOLD

    @staticmethod
    def _qualifying_conditions(kind: LeaderboardKind) -> list:
        conditions = [Record.status == RecordStatus.NORMAL]
        if kind.is_pro:
            conditions.append(Record.teleports == 0)
        return conditions

    @staticmethod
    async def find_best_record(session: AsyncSession, filter_id: int, player_id: int,
                               kind: LeaderboardKind) -> Optional[Record]:
        """Get the player's minimum-time qualifying record on a filter, if any."""
        return await session.scalar(
            select(Record)
            .where(
                Record.filter_id == filter_id,
                Record.player_id == player_id,
                *BestRecordService._qualifying_conditions(kind)
            )
            .order_by(Record.time.asc(), Record.submitted_at.asc(), Record.id.asc())
            .limit(1)
        )

    @staticmethod
    async def load_params(session: AsyncSession, filter_id: int,
                          kind: LeaderboardKind) -> Optional[DistributionParams]:
        row = await session.get(DistributionParameters, (filter_id, kind))
        return DistributionParams.from_row(row) if row is not None else None

    @staticmethod
    def find_violation(row, record: Optional[Record]) -> Optional[InvariantViolation]:
        """
        Check a best-record row against the record it references.

        Returns:
            The broken invariant, or None if the row is sound
        """
        reason = None
        if record is None:
            reason = f"references missing record {row.record_id}"
        elif not record.qualifies_for(row.kind):
            reason = f"references {record.status.value} record {record.id}"
        elif record.time != row.time:
            reason = f"time {row.time} differs from record {record.id} time {record.time}"
        elif not math.isfinite(row.points) or not 0 <= row.points <= PointsConstants.MAX_POINTS:
            reason = f"points {row.points} outside [0, {PointsConstants.MAX_POINTS:.0f}]"
        return None if reason is None else InvariantViolation(reason)

    @staticmethod
    def quarantine(row, violation: InvariantViolation):
        """Flag a row that broke an invariant so ratings and leaderboards skip it."""
        logger.critical(
            f"{violation} on {row.kind.value} best record "
            f"(filter {row.filter_id}, player {row.player_id}); row quarantined"
        )
        row.quarantined = True

    async def _nub_floor(self, session: AsyncSession, filter: Filter) -> Optional[NubFloor]:
        kind = LeaderboardKind.NUB
        if not filter.is_ranked(kind):
            return None
        params = await self.load_params(session, filter.id, kind)
        if params is None:
            return None

        best = best_record_model(kind)
        result = await session.execute(
            select(best.time)
            .where(best.filter_id == filter.id, best.quarantined.is_(False))
            .order_by(best.time.asc())
        )
        return NubFloor(tier=filter.nub_tier, params=params, times=list(result.scalars().all()))

    async def points_for_player(self, session: AsyncSession, filter: Filter,
                                kind: LeaderboardKind, player_id: int) -> float:
        """
        Compute points for a player's current best-record row.

        Uses the stored distribution parameters, which may be stale until the
        next refit of the filter.
        """
        ranked = RankingUtility.create_leaderboard_cte(kind, filter_id=filter.id)
        row = (await session.execute(
            select(ranked.c.time, ranked.c.rank, ranked.c.leaderboard_size)
            .where(ranked.c.player_id == player_id)
        )).first()
        if row is None:
            return 0.0

        params = await self.load_params(session, filter.id, kind)
        points = calculate_points(
            filter.tier_for(kind), kind.is_pro, row.rank - 1, params, row.time,
            ranked=filter.is_ranked(kind), leaderboard_size=row.leaderboard_size
        )
        if kind.is_pro and filter.is_ranked(kind):
            floor = await self._nub_floor(session, filter)
            if floor is not None:
                points = max(points, floor.points_for(row.time))
        return points

    async def refresh(self, session: AsyncSession, filter: Filter, player_id: int,
                      kind: LeaderboardKind) -> bool:
        """
        Bring one (filter, player, kind) best-record row in line with the records table.

        Returns:
            True if the row was inserted, replaced or deleted
        """
        best = best_record_model(kind)
        record = await self.find_best_record(session, filter.id, player_id, kind)
        current = await session.scalar(
            select(best)
            .where(best.filter_id == filter.id, best.player_id == player_id)
            .with_for_update()
        )

        if record is None:
            if current is None:
                return False
            await session.delete(current)
            await session.flush()
            logger.debug(f"Removed {kind.value} best record of player {player_id} on filter {filter.id}")
            return True

        if (current is not None and current.record_id == record.id
                and current.time == record.time and not current.quarantined):
            return False

        if current is None:
            current = best(
                filter_id=filter.id,
                player_id=player_id,
                record_id=record.id,
                time=record.time,
                points=0.0,
                quarantined=False,
            )
            session.add(current)
        else:
            current.record_id = record.id
            current.time = record.time
            current.quarantined = False
        await session.flush()

        current.points = await self.points_for_player(session, filter, kind, player_id)
        await session.flush()
        logger.debug(
            f"{kind.value} best record of player {player_id} on filter {filter.id} "
            f"is now record {record.id} ({record.time}s, {current.points:.1f} pts)"
        )
        return True

    async def refresh_pair(self, session: AsyncSession, filter_id: int, player_id: int,
                           player_priority: int) -> List[LeaderboardKind]:
        """
        Refresh both variants for a (filter, player) and queue follow-up work.

        Args:
            session: Caller's transaction
            filter_id: Filter the changed record belongs to
            player_id: Owner of the changed record
            player_priority: Rating refresh priority if anything changed

        Returns:
            Leaderboard kinds whose best-record row changed
        """
        filter = await session.get(Filter, filter_id)
        if filter is None:
            raise FilterNotFoundError(filter_id)

        changed = []
        for kind in LeaderboardKind:
            if await self.refresh(session, filter, player_id, kind):
                changed.append(kind)

        if changed:
            await self.queue.enqueue_player(player_id, player_priority, session=session)
            await self._note_best_time_change(session, filter)
        return changed

    async def _note_best_time_change(self, session: AsyncSession, filter: Filter):
        counter = await session.get(FilterRecordCount, filter.id, with_for_update=True)
        if counter is None:
            counter = FilterRecordCount(filter_id=filter.id, count=0)
            session.add(counter)
        counter.count += 1
        await session.flush()

        missing_params = False
        for kind in LeaderboardKind:
            if filter.is_ranked(kind) and await self.load_params(session, filter.id, kind) is None:
                missing_params = True

        if counter.count >= self._refit_threshold() or missing_params:
            await self.queue.enqueue_filter(filter.id, max(counter.count, 1), session=session)

    async def recompute_points(self, session: AsyncSession, filter: Filter,
                               kind: LeaderboardKind) -> Set[int]:
        """
        Recompute points for every best-record row of a leaderboard.

        Rows failing their invariants are quarantined first and excluded from
        ranking.

        Returns:
            Ids of players whose points changed
        """
        best = best_record_model(kind)
        result = await session.execute(
            select(best, Record)
            .outerjoin(Record, Record.id == best.record_id)
            .where(best.filter_id == filter.id, best.quarantined.is_(False))
            .with_for_update(of=best)
        )
        rows = {}
        for row, record in result.all():
            violation = self.find_violation(row, record)
            if violation is not None:
                self.quarantine(row, violation)
                continue
            rows[row.player_id] = row
        await session.flush()

        params = await self.load_params(session, filter.id, kind)
        tier = filter.tier_for(kind)
        ranked_flag = filter.is_ranked(kind)
        floor = await self._nub_floor(session, filter) if kind.is_pro and ranked_flag else None

        ranked = RankingUtility.create_leaderboard_cte(kind, filter_id=filter.id)
        ranking = await session.execute(
            select(ranked.c.player_id, ranked.c.time, ranked.c.rank, ranked.c.leaderboard_size)
            .order_by(ranked.c.rank)
        )

        changed = set()
        for player_id, time, rank, size in ranking.all():
            points = calculate_points(tier, kind.is_pro, rank - 1, params, time,
                                      ranked=ranked_flag, leaderboard_size=size)
            if floor is not None:
                points = max(points, floor.points_for(time))

            row = rows.get(player_id)
            if row is not None and row.points != points:
                row.points = points
                changed.add(player_id)

        await session.flush()
        return changed

    async def rebuild_filter(self, filter_id: int) -> Set[int]:
        """
        Rebuild a filter's best-record rows from the records table.

        Every player who had or now has a row is queued for a rating refresh.

        Returns:
            Ids of the affected players
        """
        async def rebuild():
            async with self.get_session() as session:
                filter = await session.get(Filter, filter_id)
                if filter is None:
                    raise FilterNotFoundError(filter_id)

                affected = set()
                for kind in LeaderboardKind:
                    best = best_record_model(kind)
                    previous = await session.execute(
                        select(best.player_id).where(best.filter_id == filter_id)
                    )
                    affected.update(previous.scalars().all())
                    await session.execute(
                        delete(best)
                        .where(best.filter_id == filter_id)
                        .execution_options(synchronize_session=False)
                    )

                    ordered = (
                        select(
                            Record.id, Record.player_id, Record.time,
                            func.row_number().over(
                                partition_by=Record.player_id,
                                order_by=(Record.time.asc(), Record.submitted_at.asc(), Record.id.asc())
                            ).label('position')
                        )
                        .where(Record.filter_id == filter_id, *self._qualifying_conditions(kind))
                        .subquery()
                    )
                    bests = await session.execute(
                        select(ordered.c.id, ordered.c.player_id, ordered.c.time)
                        .where(ordered.c.position == 1)
                    )
                    for record_id, player_id, time in bests.all():
                        session.add(best(
                            filter_id=filter_id,
                            player_id=player_id,
                            record_id=record_id,
                            time=time,
                            points=0.0,
                            quarantined=False,
                        ))
                        affected.add(player_id)
                    await session.flush()

                # Nub first: pro points are floored by nub points
                for kind in (LeaderboardKind.NUB, LeaderboardKind.PRO):
                    await self.recompute_points(session, filter, kind)

                for player_id in affected:
                    await self.queue.enqueue_player(
                        player_id, QueuePriority.PLAYER_RECORD_CHANGED, session=session
                    )

                logger.info(f"Rebuilt best records for filter {filter_id} ({len(affected)} players)")
                return affected

        return await self.execute_with_retry(rebuild)
