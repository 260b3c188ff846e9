"""
Recalculation work queues.

Two max-priority sets of pending work: filters waiting for a refit and players
waiting for a rating refresh. Each key is pending at most once; enqueueing a
pending key again only ever raises its priority.

Two backends share the `RecalcQueue` interface:
- DatabaseRecalcQueue persists entries in `filters_to_recalculate` and
  `players_to_recalculate`, so pending work survives restarts and enqueues
  commit together with the change that caused them.
- MemoryRecalcQueue keeps entries in indexed heaps for a single process and
  applies enqueues made inside a transaction once it commits.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, delete, event
from sqlalchemy.ext.asyncio import AsyncSession

from kzpoints.config import Config
from kzpoints.constants import QueuePriority
from kzpoints.database.models import FilterToRecalculate, PlayerToRecalculate
from kzpoints.services.base import BaseService
from kzpoints.utils.priority_queue import IndexedPriorityQueue

logger = logging.getLogger(__name__)


def clamp_priority(priority: int) -> int:
    return min(max(int(priority), 0), QueuePriority.MAX)


class RecalcQueue(ABC):
    """Abstract base class for the filter and player work queues."""

    def __init__(self):
        self._work_available = asyncio.Event()

    def notify(self):
        """Wake workers blocked in `wait_for_work`."""
        self._work_available.set()

    async def wait_for_work(self, timeout: float) -> bool:
        """
        Wait until work may be available.

        Returns:
            True if woken by an enqueue, False on timeout
        """
        try:
            await asyncio.wait_for(self._work_available.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        self._work_available.clear()
        return True

    @abstractmethod
    async def enqueue_filter(self, filter_id: int, priority: int,
                             session: Optional[AsyncSession] = None) -> int:
        """
        Enqueue a filter for refit, or raise its pending priority.

        Args:
            filter_id: Filter to refit
            priority: Requested priority (clamped to 0..QueuePriority.MAX)
            session: Enqueue inside this transaction instead of a new one

        Returns:
            The filter's effective pending priority
        """
        pass

    @abstractmethod
    async def enqueue_player(self, player_id: int, priority: int,
                             session: Optional[AsyncSession] = None) -> int:
        """Enqueue a player for rating refresh; same semantics as `enqueue_filter`."""
        pass

    @abstractmethod
    async def pop_filter(self) -> Optional[Tuple[int, int]]:
        """Remove and return the highest-priority (filter_id, priority), or None."""
        pass

    @abstractmethod
    async def pop_player(self) -> Optional[Tuple[int, int]]:
        """Remove and return the highest-priority (player_id, priority), or None."""
        pass

    @abstractmethod
    async def pending_filters(self) -> List[Tuple[int, int]]:
        """Pending (filter_id, priority) pairs, highest priority first."""
        pass

    @abstractmethod
    async def pending_players(self) -> List[Tuple[int, int]]:
        """Pending (player_id, priority) pairs, highest priority first."""
        pass


class MemoryRecalcQueue(RecalcQueue):
    """
    In-process queues. Pending work is lost on restart.

    Enqueues made inside a caller's session are held in `session.info` and
    only reach the heaps once that session commits; a rollback or a close
    without commit discards them.
    """

    def __init__(self):
        super().__init__()
        self._filters: IndexedPriorityQueue[int] = IndexedPriorityQueue()
        self._players: IndexedPriorityQueue[int] = IndexedPriorityQueue()
        self._lock = asyncio.Lock()
        self._pending_key = f"kzpoints.recalc_queue.pending.{id(self)}"
        self._listening_key = f"kzpoints.recalc_queue.listening.{id(self)}"

    async def _push(self, heap: IndexedPriorityQueue, key: int, priority: int,
                    session: Optional[AsyncSession] = None) -> int:
        priority = clamp_priority(priority)
        if session is not None:
            return self._defer(session.sync_session, heap, key, priority)

        async with self._lock:
            effective = heap.push(key, priority)
        self.notify()
        return effective

    def _defer(self, sync_session, heap: IndexedPriorityQueue, key: int, priority: int) -> int:
        if not sync_session.in_transaction():
            # Start the transaction the held enqueues are tied to
            sync_session.begin()
        if self._listening_key not in sync_session.info:
            event.listen(sync_session, 'after_commit', self._apply_deferred)
            event.listen(sync_session, 'after_transaction_end', self._discard_deferred)
            sync_session.info[self._listening_key] = True

        pending = sync_session.info.setdefault(self._pending_key, {})
        slot = (id(heap), key)
        _, _, held = pending.get(slot, (heap, key, 0))
        pending[slot] = (heap, key, max(held, priority))
        return max(held, priority, heap.priority_of(key) or 0)

    def _apply_deferred(self, sync_session):
        pending = sync_session.info.pop(self._pending_key, None)
        if not pending:
            return
        # Runs on the event loop thread between awaits, so no other coroutine holds the heaps
        for heap, key, priority in pending.values():
            heap.push(key, priority)
        logger.debug(f"Applied {len(pending)} enqueues after commit")
        self.notify()

    def _discard_deferred(self, sync_session, transaction):
        if transaction.parent is not None:
            return
        pending = sync_session.info.pop(self._pending_key, None)
        if pending:
            logger.debug(f"Discarded {len(pending)} enqueues from an uncommitted transaction")

    async def _pop(self, heap: IndexedPriorityQueue) -> Optional[Tuple[int, int]]:
        async with self._lock:
            return heap.pop()

    @staticmethod
    def _listing(heap: IndexedPriorityQueue) -> List[Tuple[int, int]]:
        return sorted(heap, key=lambda item: -item[1])

    async def enqueue_filter(self, filter_id, priority, session=None):
        effective = await self._push(self._filters, filter_id, priority, session)
        logger.debug(f"Filter {filter_id} pending at priority {effective}")
        return effective

    async def enqueue_player(self, player_id, priority, session=None):
        effective = await self._push(self._players, player_id, priority, session)
        logger.debug(f"Player {player_id} pending at priority {effective}")
        return effective

    async def pop_filter(self):
        return await self._pop(self._filters)

    async def pop_player(self):
        return await self._pop(self._players)

    async def pending_filters(self):
        async with self._lock:
            return self._listing(self._filters)

    async def pending_players(self):
        async with self._lock:
            return self._listing(self._players)


class DatabaseRecalcQueue(RecalcQueue, BaseService):
    """Queues persisted in the database."""

    def __init__(self, session_factory):
        RecalcQueue.__init__(self)
        BaseService.__init__(self, session_factory)

    async def _push(self, model, key_column, key: int, priority: int,
                    session: Optional[AsyncSession]) -> int:
        priority = clamp_priority(priority)

        async def push(session: AsyncSession) -> int:
            entry = await session.scalar(
                select(model).where(key_column == key).with_for_update()
            )
            if entry is None:
                session.add(model(**{key_column.key: key}, priority=priority,
                                  enqueued_at=datetime.now(timezone.utc)))
                await session.flush()
                return priority
            if priority > entry.priority:
                entry.priority = priority
                await session.flush()
            return entry.priority

        if session is not None:
            effective = await push(session)
        else:
            async def push_in_new_session():
                async with self.get_session() as new_session:
                    return await push(new_session)
            effective = await self.execute_with_retry(push_in_new_session)

        self.notify()
        return effective

    async def _pop(self, model, key_column) -> Optional[Tuple[int, int]]:
        async def pop():
            while True:
                async with self.get_session() as session:
                    entry = await session.scalar(
                        select(model)
                        .order_by(model.priority.desc(), model.enqueued_at.asc())
                        .limit(1)
                    )
                    if entry is None:
                        return None
                    key = getattr(entry, key_column.key)
                    priority = entry.priority
                    result = await session.execute(
                        delete(model)
                        .where(key_column == key)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        return key, priority
                # Another worker popped it first; retry in a fresh transaction

        return await self.execute_with_retry(pop)

    async def _listing(self, model, key_column) -> List[Tuple[int, int]]:
        async with self.get_session() as session:
            result = await session.execute(
                select(key_column, model.priority)
                .order_by(model.priority.desc(), model.enqueued_at.asc())
            )
            return [(key, priority) for key, priority in result.all()]

    async def enqueue_filter(self, filter_id, priority, session=None):
        effective = await self._push(FilterToRecalculate, FilterToRecalculate.filter_id,
                                     filter_id, priority, session)
        logger.debug(f"Filter {filter_id} pending at priority {effective}")
        return effective

    async def enqueue_player(self, player_id, priority, session=None):
        effective = await self._push(PlayerToRecalculate, PlayerToRecalculate.player_id,
                                     player_id, priority, session)
        logger.debug(f"Player {player_id} pending at priority {effective}")
        return effective

    async def pop_filter(self):
        return await self._pop(FilterToRecalculate, FilterToRecalculate.filter_id)

    async def pop_player(self):
        return await self._pop(PlayerToRecalculate, PlayerToRecalculate.player_id)

    async def pending_filters(self):
        return await self._listing(FilterToRecalculate, FilterToRecalculate.filter_id)

    async def pending_players(self):
        return await self._listing(PlayerToRecalculate, PlayerToRecalculate.player_id)


def create_recalc_queue(session_factory, backend: Optional[str] = None) -> RecalcQueue:
    """Build the queue backend named by `backend` (defaults to Config.RECALC_QUEUE_BACKEND)."""
    backend = backend or Config.RECALC_QUEUE_BACKEND
    if backend == 'memory':
        return MemoryRecalcQueue()
    if backend == 'database':
        return DatabaseRecalcQueue(session_factory)
    raise ValueError(f"Unknown recalculation queue backend: {backend}")
