"""
Record Operations

Record lifecycle management: submission of new records and classification
changes. Each call is one transaction covering the record write and the
best-record cascade it causes, so no reader ever sees a best record pointing
at a record that has left the normal state.

Key functionality:
- submit_record(): validate and persist a record, refreshing best records
- reclassify(): move a record along a legal status edge
- get_record(): fetch a record by id
"""

import math
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from kzpoints.constants import (
    INITIAL_RECORD_STATES, RECORD_STATUS_TRANSITIONS, QueuePriority, RecordStatus
)
from kzpoints.database.models import Filter, Player, Record
from kzpoints.services.base import BaseService
from kzpoints.services.best_records import BestRecordService
from kzpoints.utils.logger import setup_logger
from kzpoints.utils.points_exceptions import (
    InvalidRecordError, InvalidTransitionError, RecordNotFoundError
)

logger = setup_logger(__name__)


class RecordOperations(BaseService):
    """Write path for records and their classification."""

    def __init__(self, session_factory, best_records: BestRecordService):
        super().__init__(session_factory)
        self.best_records = best_records

    @staticmethod
    def validate_transition(current: RecordStatus, target: RecordStatus):
        """Raise InvalidTransitionError unless `current -> target` is a legal edge."""
        if target not in RECORD_STATUS_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(current, target)

    async def submit_record(
        self,
        player_id: int,
        filter_id: int,
        time: float,
        teleports: int = 0,
        styles: int = 0,
        submitted_at: Optional[datetime] = None,
        status: RecordStatus = RecordStatus.NORMAL,
        player_name: Optional[str] = None
    ) -> Record:
        """
        Persist a new record and refresh the player's best records.

        Args:
            player_id: Submitting player (created on first submission)
            filter_id: Filter the run was set on
            time: Completion time in seconds (must be positive)
            teleports: Teleports used; only teleport-free runs reach the pro board
            styles: Style flags, stored as submitted
            submitted_at: Submission timestamp (defaults to now)
            status: Initial classification from the anti-cheat signal
            player_name: Display name used when the player is created

        Returns:
            The persisted record

        Raises:
            InvalidRecordError: Non-positive time, negative teleports or unknown filter
            InvalidTransitionError: `status` is not a legal initial state
        """
        if not isinstance(time, (int, float)) or not math.isfinite(time) or time <= 0:
            raise InvalidRecordError(f"time must be a positive number of seconds, got {time!r}")
        if teleports < 0:
            raise InvalidRecordError(f"teleport count cannot be negative, got {teleports}")
        if status not in INITIAL_RECORD_STATES:
            raise InvalidTransitionError("new", status)

        async def submit():
            async with self.get_session() as session:
                if await session.get(Filter, filter_id) is None:
                    raise InvalidRecordError(f"unknown filter {filter_id}")

                player = await session.get(Player, player_id)
                if player is None:
                    player = Player(id=player_id, name=player_name or str(player_id))
                    session.add(player)
                elif player_name and player.name != player_name:
                    player.name = player_name

                record = Record(
                    filter_id=filter_id,
                    player_id=player_id,
                    time=float(time),
                    teleports=teleports,
                    styles=styles,
                    submitted_at=submitted_at or datetime.now(timezone.utc),
                    status=status,
                )
                session.add(record)
                await session.flush()

                if status == RecordStatus.NORMAL:
                    await self.best_records.refresh_pair(
                        session, filter_id, player_id, QueuePriority.PLAYER_RECORD_CHANGED
                    )

                logger.info(
                    f"Record {record.id} submitted: player {player_id}, filter {filter_id}, "
                    f"{record.time}s, {teleports} teleports, {status.value}"
                )
                return record

        return await self.execute_with_retry(submit)

    async def reclassify(self, record_id: int, new_status: RecordStatus,
                         session: Optional[AsyncSession] = None) -> Record:
        """
        Change a record's classification and cascade to the best-record tables.

        Args:
            record_id: Record to reclassify
            new_status: Target state
            session: Run inside this transaction instead of a new one

        Returns:
            The updated record

        Raises:
            RecordNotFoundError: If the record does not exist
            InvalidTransitionError: If the edge is not legal
        """
        async def apply(session: AsyncSession) -> Record:
            record = await session.get(Record, record_id, with_for_update=True)
            if record is None:
                raise RecordNotFoundError(record_id)

            old_status = record.status
            self.validate_transition(old_status, new_status)

            record.status = new_status
            record.status_changed_at = datetime.now(timezone.utc)
            await session.flush()

            if RecordStatus.NORMAL in (old_status, new_status):
                await self.best_records.refresh_pair(
                    session, record.filter_id, record.player_id, QueuePriority.PLAYER_RECLASSIFIED
                )

            logger.info(f"Record {record_id} reclassified {old_status.value} -> {new_status.value}")
            return record

        if session is not None:
            return await apply(session)

        async def reclassify_in_new_session():
            async with self.get_session() as new_session:
                return await apply(new_session)

        return await self.execute_with_retry(reclassify_in_new_session)

    async def get_record(self, record_id: int) -> Record:
        async with self.get_session() as session:
            record = await session.get(Record, record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            return record
