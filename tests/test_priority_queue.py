import random

from kzpoints.utils.priority_queue import IndexedPriorityQueue


class TestIndexedPriorityQueue:
    def test_pops_highest_priority_first(self):
        queue = IndexedPriorityQueue()
        queue.push('a', 1)
        queue.push('b', 10)
        queue.push('c', 5)

        assert [queue.pop() for _ in range(3)] == [('b', 10), ('c', 5), ('a', 1)]
        assert queue.pop() is None

    def test_reenqueue_keeps_maximum(self):
        queue = IndexedPriorityQueue()
        assert queue.push(7, 1) == 1
        assert queue.push(7, 5) == 5
        assert queue.push(7, 2) == 5

        assert len(queue) == 1
        assert queue.priority_of(7) == 5
        assert list(queue) == [(7, 5)]

    def test_equal_priorities_pop_in_insertion_order(self):
        queue = IndexedPriorityQueue()
        for key in ('x', 'y', 'z'):
            queue.push(key, 3)
        assert [queue.pop()[0] for _ in range(3)] == ['x', 'y', 'z']

    def test_raised_priority_moves_to_front(self):
        queue = IndexedPriorityQueue()
        queue.push('low', 1)
        queue.push('mid', 5)
        queue.push('low', 9)
        assert queue.peek() == ('low', 9)

    def test_remove(self):
        queue = IndexedPriorityQueue()
        queue.push('a', 1)
        queue.push('b', 2)

        assert queue.remove('a') is True
        assert queue.remove('a') is False
        assert 'a' not in queue
        assert 'b' in queue
        assert queue.pop() == ('b', 2)

    def test_matches_sorted_order_under_random_updates(self):
        rng = random.Random(99)
        queue = IndexedPriorityQueue()
        expected = {}

        for _ in range(2000):
            key = rng.randint(0, 150)
            if rng.random() < 0.2 and key in expected:
                queue.remove(key)
                del expected[key]
                continue
            priority = rng.randint(0, 1000)
            queue.push(key, priority)
            expected[key] = max(expected.get(key, priority), priority)

        assert len(queue) == len(expected)
        popped = []
        while queue:
            key, priority = queue.pop()
            assert expected.pop(key) == priority
            popped.append(priority)
        assert popped == sorted(popped, reverse=True)
        assert not expected
