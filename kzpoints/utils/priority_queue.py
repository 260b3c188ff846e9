"""
Indexed max-priority queue with unique membership.

Entries live in an array-backed binary heap; a dict maps each key to its heap
slot so re-enqueueing an existing key raises its priority in place in
O(log n) instead of adding a duplicate.
"""

from dataclasses import dataclass
from typing import Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar('K', bound=Hashable)


@dataclass
class _Entry(Generic[K]):
    key: K
    priority: int
    sequence: int  # Insertion order, breaks priority ties first-in first-out


class IndexedPriorityQueue(Generic[K]):
    """Max-priority queue where each key appears at most once."""

    def __init__(self):
        self._heap: List[_Entry[K]] = []
        self._index: Dict[K, int] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._heap)

    def __contains__(self, key: K) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[Tuple[K, int]]:
        """Iterate over (key, priority) pairs in no particular order."""
        return ((entry.key, entry.priority) for entry in self._heap)

    def priority_of(self, key: K) -> Optional[int]:
        slot = self._index.get(key)
        return None if slot is None else self._heap[slot].priority

    def push(self, key: K, priority: int) -> int:
        """
        Enqueue a key, or raise its priority if it is already pending.

        Args:
            key: Entity identifier
            priority: Requested priority

        Returns:
            The key's effective priority after the push
        """
        slot = self._index.get(key)
        if slot is not None:
            entry = self._heap[slot]
            if priority > entry.priority:
                entry.priority = priority
                self._sift_up(slot)
            return entry.priority

        self._sequence += 1
        self._heap.append(_Entry(key, priority, self._sequence))
        self._index[key] = len(self._heap) - 1
        self._sift_up(len(self._heap) - 1)
        return priority

    def peek(self) -> Optional[Tuple[K, int]]:
        if not self._heap:
            return None
        top = self._heap[0]
        return top.key, top.priority

    def pop(self) -> Optional[Tuple[K, int]]:
        """Remove and return the highest-priority (key, priority), or None if empty."""
        if not self._heap:
            return None
        top = self._heap[0]
        self._remove_slot(0)
        return top.key, top.priority

    def remove(self, key: K) -> bool:
        slot = self._index.get(key)
        if slot is None:
            return False
        self._remove_slot(slot)
        return True

    def _remove_slot(self, slot: int):
        last = len(self._heap) - 1
        removed = self._heap[slot]
        if slot != last:
            self._swap(slot, last)
        self._heap.pop()
        del self._index[removed.key]
        if slot < len(self._heap):
            self._sift_down(slot)
            self._sift_up(slot)

    def _outranks(self, i: int, j: int) -> bool:
        a, b = self._heap[i], self._heap[j]
        if a.priority != b.priority:
            return a.priority > b.priority
        return a.sequence < b.sequence

    def _swap(self, i: int, j: int):
        self._heap[i], self._heap[j] = self._heap[j], self._heap[i]
        self._index[self._heap[i].key] = i
        self._index[self._heap[j].key] = j

    def _sift_up(self, slot: int):
        while slot > 0:
            parent = (slot - 1) // 2
            if not self._outranks(slot, parent):
                break
            self._swap(slot, parent)
            slot = parent

    def _sift_down(self, slot: int):
        size = len(self._heap)
        while True:
            best = slot
            for child in (2 * slot + 1, 2 * slot + 2):
                if child < size and self._outranks(child, best):
                    best = child
            if best == slot:
                break
            self._swap(slot, best)
            slot = best
