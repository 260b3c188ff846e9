import math
import random

import pytest
from sqlalchemy import select

from kzpoints.constants import LeaderboardKind, QueuePriority, RecordStatus, RECORD_STATUS_TRANSITIONS
from kzpoints.database.models import BestNubRecord, BestProRecord, FilterRecordCount, best_record_model
from kzpoints.utils.points_exceptions import (
    InvalidRecordError, InvalidTransitionError, RecordNotFoundError
)
from conftest import at

PRO = LeaderboardKind.PRO
NUB = LeaderboardKind.NUB


async def best_row(db, kind, filter_id, player_id):
    model = best_record_model(kind)
    async with db.get_session() as session:
        return await session.scalar(
            select(model).where(model.filter_id == filter_id, model.player_id == player_id)
        )


async def board(engine, filter_id, kind):
    page = await engine.leaderboard.get_leaderboard(filter_id, kind, limit=100)
    return [(entry.rank, entry.player_id) for entry in page.entries]


@pytest.fixture
async def tier5_filter(engine):
    return (await engine.filters.create_filter("kz_scenario", "classic", 5, 5)).id


class TestSubmission:
    async def test_first_record_creates_player_and_best_rows(self, engine, tier5_filter):
        record = await engine.records.submit_record(1, tier5_filter, 30.0, player_name="alice")

        player = await engine.db.get_player(1)
        assert player.name == "alice"
        for kind in LeaderboardKind:
            row = await best_row(engine.db, kind, tier5_filter, 1)
            assert row.record_id == record.id
            assert row.time == 30.0

    async def test_teleport_run_only_reaches_nub_board(self, engine, tier5_filter):
        await engine.records.submit_record(1, tier5_filter, 25.0, teleports=3)

        assert await best_row(engine.db, NUB, tier5_filter, 1) is not None
        assert await best_row(engine.db, PRO, tier5_filter, 1) is None

    async def test_slower_record_does_not_replace_best(self, engine, tier5_filter):
        fast = await engine.records.submit_record(1, tier5_filter, 30.0)
        await engine.records.submit_record(1, tier5_filter, 35.0)

        assert (await best_row(engine.db, PRO, tier5_filter, 1)).record_id == fast.id

    async def test_non_normal_submission_is_not_ranked(self, engine, tier5_filter):
        record = await engine.records.submit_record(1, tier5_filter, 20.0, status=RecordStatus.SUSPICIOUS)

        assert await best_row(engine.db, NUB, tier5_filter, 1) is None
        assert (await engine.records.get_record(record.id)).status == RecordStatus.SUSPICIOUS

    async def test_points_are_zero_without_parameters(self, engine, tier5_filter):
        for player_id, time in ((1, 30.0), (2, 31.0), (3, 45.0)):
            await engine.records.submit_record(player_id, tier5_filter, time)

        for kind in LeaderboardKind:
            page = await engine.leaderboard.get_leaderboard(tier5_filter, kind)
            assert [entry.points for entry in page.entries] == [0.0, 0.0, 0.0]

    async def test_new_best_times_queue_filter_and_player(self, engine, tier5_filter):
        await engine.records.submit_record(1, tier5_filter, 30.0)
        await engine.records.submit_record(2, tier5_filter, 31.0)
        await engine.records.submit_record(1, tier5_filter, 29.0)

        assert await engine.queue.pending_filters() == [(tier5_filter, 3)]
        pending_players = dict(await engine.queue.pending_players())
        assert pending_players == {1: QueuePriority.PLAYER_RECORD_CHANGED, 2: QueuePriority.PLAYER_RECORD_CHANGED}

        async with engine.db.get_session() as session:
            counter = await session.get(FilterRecordCount, tier5_filter)
            assert counter.count == 3

    @pytest.mark.parametrize("time", [0.0, -1.5, math.nan, math.inf])
    async def test_rejects_invalid_time(self, engine, tier5_filter, time):
        with pytest.raises(InvalidRecordError):
            await engine.records.submit_record(1, tier5_filter, time)
        assert await engine.db.get_player(1) is None

    async def test_rejects_unknown_filter(self, engine):
        with pytest.raises(InvalidRecordError):
            await engine.records.submit_record(1, 404, 30.0)

    async def test_rejects_cheated_initial_state(self, engine, tier5_filter):
        with pytest.raises(InvalidTransitionError):
            await engine.records.submit_record(1, tier5_filter, 30.0, status=RecordStatus.CHEATED)


class TestLeaderboardScenario:
    async def test_ties_broken_by_submission_and_cheater_removed(self, engine, tier5_filter):
        p1 = await engine.records.submit_record(1, tier5_filter, 30.0, submitted_at=at(0))
        await engine.records.submit_record(2, tier5_filter, 32.0, submitted_at=at(10))
        await engine.records.submit_record(3, tier5_filter, 32.0, submitted_at=at(20))

        assert await board(engine, tier5_filter, PRO) == [(1, 1), (2, 2), (3, 3)]

        await engine.records.reclassify(p1.id, RecordStatus.SUSPICIOUS)
        await engine.records.reclassify(p1.id, RecordStatus.CHEATED)

        assert await board(engine, tier5_filter, PRO) == [(1, 2), (2, 3)]
        assert await best_row(engine.db, PRO, tier5_filter, 1) is None
        assert await engine.leaderboard.get_player_rank(tier5_filter, PRO, 1) is None

    async def test_arrival_order_does_not_change_tie_ranking(self, engine, tier5_filter):
        await engine.records.submit_record(3, tier5_filter, 32.0, submitted_at=at(20))
        await engine.records.submit_record(2, tier5_filter, 32.0, submitted_at=at(10))
        await engine.records.submit_record(1, tier5_filter, 30.0, submitted_at=at(0))

        assert await board(engine, tier5_filter, PRO) == [(1, 1), (2, 2), (3, 3)]


class TestReclassification:
    async def test_cascade_falls_back_to_next_best_record(self, engine, tier5_filter):
        best = await engine.records.submit_record(1, tier5_filter, 30.0, submitted_at=at(0))
        runner_up = await engine.records.submit_record(1, tier5_filter, 31.0, submitted_at=at(5))
        for player_id, time in ((2, 32.0), (3, 33.0), (4, 34.0)):
            await engine.records.submit_record(player_id, tier5_filter, time, submitted_at=at(player_id * 10))
        await engine.scheduler.drain()

        before = await engine.db.get_player(1)
        assert before.pro_rating > 0

        await engine.records.reclassify(best.id, RecordStatus.SUSPICIOUS)
        assert dict(await engine.queue.pending_players())[1] == QueuePriority.PLAYER_RECLASSIFIED
        await engine.scheduler.drain()

        row = await best_row(engine.db, PRO, tier5_filter, 1)
        assert row.record_id == runner_up.id
        after = await engine.db.get_player(1)
        assert after.pro_rating == pytest.approx(row.points)

    async def test_removing_only_record_clears_rating(self, engine, tier5_filter):
        only = await engine.records.submit_record(1, tier5_filter, 30.0)
        for player_id, time in ((2, 32.0), (3, 33.0)):
            await engine.records.submit_record(player_id, tier5_filter, time)
        await engine.scheduler.drain()
        assert (await engine.db.get_player(1)).nub_rating > 0

        await engine.records.reclassify(only.id, RecordStatus.SUSPICIOUS)
        await engine.scheduler.drain()

        player = await engine.db.get_player(1)
        assert player.nub_rating == 0.0
        assert player.pro_rating == 0.0

    async def test_suspicious_record_cleared_back_to_normal(self, engine, tier5_filter):
        record = await engine.records.submit_record(1, tier5_filter, 30.0, status=RecordStatus.SUSPICIOUS)

        await engine.records.reclassify(record.id, RecordStatus.NORMAL)

        assert (await best_row(engine.db, NUB, tier5_filter, 1)).record_id == record.id

    async def test_illegal_edge_is_rejected(self, engine, tier5_filter):
        record = await engine.records.submit_record(1, tier5_filter, 30.0)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.records.reclassify(record.id, RecordStatus.CHEATED)

        assert exc_info.value.current == RecordStatus.NORMAL
        assert (await engine.records.get_record(record.id)).status == RecordStatus.NORMAL
        assert await best_row(engine.db, NUB, tier5_filter, 1) is not None

    async def test_hidden_is_terminal(self, engine, tier5_filter):
        record = await engine.records.submit_record(1, tier5_filter, 30.0, status=RecordStatus.HIDDEN)

        for target in RecordStatus:
            with pytest.raises(InvalidTransitionError):
                await engine.records.reclassify(record.id, target)

    async def test_unknown_record(self, engine):
        with pytest.raises(RecordNotFoundError):
            await engine.records.reclassify(12345, RecordStatus.SUSPICIOUS)


class TestBestRecordInvariant:
    async def test_random_history_keeps_best_rows_exact(self, engine):
        rng = random.Random(2024)
        filter_ids = [
            (await engine.filters.create_filter(f"course_{i}", "classic", 4, 4)).id
            for i in range(2)
        ]
        records = {}  # record id -> (filter, player, time, teleports, submitted index, status)

        for step in range(120):
            if records and rng.random() < 0.35:
                record_id = rng.choice(list(records))
                filter_id, player_id, time, teleports, order, status = records[record_id]
                target = rng.choice(sorted(RECORD_STATUS_TRANSITIONS[status], key=lambda s: s.value) or [None])
                if target is None:
                    continue
                await engine.records.reclassify(record_id, target)
                records[record_id] = (filter_id, player_id, time, teleports, order, target)
            else:
                filter_id = rng.choice(filter_ids)
                player_id = rng.randint(1, 5)
                time = rng.choice([30.0, 31.5, 33.0, 33.0, 40.0, 55.25])
                teleports = rng.choice([0, 0, 2])
                status = rng.choice([RecordStatus.NORMAL] * 4 + [RecordStatus.SUSPICIOUS, RecordStatus.HIDDEN])
                record = await engine.records.submit_record(
                    player_id, filter_id, time, teleports=teleports,
                    submitted_at=at(step), status=status
                )
                records[record.id] = (filter_id, player_id, time, teleports, step, status)

        async with engine.db.get_session() as session:
            for kind, model in ((NUB, BestNubRecord), (PRO, BestProRecord)):
                rows = (await session.execute(select(model))).scalars().all()
                actual = {(row.filter_id, row.player_id): (row.record_id, row.time) for row in rows}

                expected = {}
                for record_id, (filter_id, player_id, time, teleports, order, status) in records.items():
                    if status != RecordStatus.NORMAL or (kind.is_pro and teleports != 0):
                        continue
                    key = (filter_id, player_id)
                    candidate = (time, order, record_id)
                    if key not in expected or candidate < expected[key]:
                        expected[key] = candidate

                assert actual == {key: (rid, time) for key, (time, _, rid) in expected.items()}
