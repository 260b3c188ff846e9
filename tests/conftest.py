"""
Shared fixtures for the points engine test suite.

Database tests run against a throwaway SQLite file through aiosqlite. The
scipy fitter is swapped for a deterministic one wherever a test exercises the
scheduler rather than the statistics.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from kzpoints.database.database import Database
from kzpoints.database.models import Player
from kzpoints.operations.filter_operations import FilterOperations
from kzpoints.operations.record_operations import RecordOperations
from kzpoints.services.best_records import BestRecordService
from kzpoints.services.configuration import ConfigurationService
from kzpoints.services.leaderboard import LeaderboardService
from kzpoints.services.rating_service import RatingService
from kzpoints.services.recalc_queue import create_recalc_queue
from kzpoints.services.recalculation import RecalculationScheduler
from kzpoints.utils.distribution import DistributionFitter, DistributionParams
from kzpoints.utils.points_exceptions import FitError

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)

# Parameters of a real, fitted Normal-Inverse-Gaussian leaderboard
EXAMPLE_PARAMS = DistributionParams(
    a=2.6294814553333743,
    b=2.511121972118702,
    loc=8.713014153227697,
    scale=2.2226724397990805,
    top_scale=0.9952929135343108,
    wr_time=7.6484375,
    leaderboard_size=165,
)


def at(seconds: int) -> datetime:
    """Submission timestamp `seconds` after a fixed base time."""
    return BASE_TIME + timedelta(seconds=seconds)


class StubFitter(DistributionFitter):
    """Deterministic fitter: fixed shape, anchored at the leaderboard's best time."""

    def __init__(self, min_samples: int = 3):
        self.min_samples = min_samples
        self.calls = []

    def fit(self, times):
        times = sorted(times)
        self.calls.append(times)
        if len(times) < self.min_samples:
            raise FitError(FitError.TOO_FEW_SAMPLES, f"{len(times)} < {self.min_samples}")

        wr_time = times[0]
        params = replace(EXAMPLE_PARAMS, loc=wr_time + 1.0, wr_time=wr_time,
                         leaderboard_size=len(times), top_scale=1.0)
        return replace(params, top_scale=params.sf(wr_time))

    def get_fitter_name(self) -> str:
        return "stub"


@pytest.fixture
async def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'points.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def fitter():
    return StubFitter(min_samples=3)


def build_engine(db: Database, backend: str, fitter: DistributionFitter,
                 config_service=None) -> SimpleNamespace:
    session_factory = db.session_factory
    queue = create_recalc_queue(session_factory, backend)
    best_records = BestRecordService(session_factory, queue, config_service)
    ratings = RatingService(session_factory, config_service)
    return SimpleNamespace(
        db=db,
        queue=queue,
        best_records=best_records,
        ratings=ratings,
        scheduler=RecalculationScheduler(
            session_factory, queue, best_records, ratings,
            fitter=fitter, config_service=config_service, poll_interval=0.05
        ),
        leaderboard=LeaderboardService(session_factory, ratings),
        records=RecordOperations(session_factory, best_records),
        filters=FilterOperations(session_factory, queue, config_service),
    )


@pytest.fixture
async def engine(db, fitter):
    return build_engine(db, 'database', fitter)


@pytest.fixture
async def memory_engine(db, fitter):
    return build_engine(db, 'memory', fitter)


@pytest.fixture
async def config_service(db):
    service = ConfigurationService(db.session_factory)
    await service.load_all()
    return service


async def add_players(db: Database, *player_ids: int):
    async with db.transaction() as session:
        for player_id in player_ids:
            session.add(Player(id=player_id, name=f"player{player_id}"))
