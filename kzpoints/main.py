import argparse
import asyncio
import logging
import signal
import traceback
from typing import Optional

from kzpoints.config import Config
from kzpoints.database.database import Database
from kzpoints.operations.filter_operations import FilterOperations
from kzpoints.operations.record_operations import RecordOperations
from kzpoints.services.best_records import BestRecordService
from kzpoints.services.configuration import ConfigurationService
from kzpoints.services.leaderboard import LeaderboardService
from kzpoints.services.rating_service import RatingService
from kzpoints.services.recalc_queue import RecalcQueue, create_recalc_queue
from kzpoints.services.recalculation import RecalculationScheduler
from kzpoints.utils.logger import setup_logger
from kzpoints.utils.redis_utils import RedisUtils

class PointsDaemon:
    """Wires the engine's services together and runs the recalculation workers."""

    def __init__(self, database_url: Optional[str] = None, queue_backend: Optional[str] = None,
                 fitter=None, use_redis: bool = True):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.queue_backend = queue_backend
        self.fitter = fitter
        self.use_redis = use_redis

        self.db: Optional[Database] = None
        self.redis_client = None
        self.config_service: Optional[ConfigurationService] = None
        self.queue: Optional[RecalcQueue] = None
        self.best_records: Optional[BestRecordService] = None
        self.rating_service: Optional[RatingService] = None
        self.scheduler: Optional[RecalculationScheduler] = None
        self.leaderboard: Optional[LeaderboardService] = None
        self.records: Optional[RecordOperations] = None
        self.filters: Optional[FilterOperations] = None

    async def setup(self):
        """Called when the daemon is starting up"""
        self.logger.info("Setting up points daemon...")

        self.db = Database(self.database_url)
        await self.db.initialize()
        session_factory = self.db.session_factory

        self.config_service = ConfigurationService(session_factory)
        await self.config_service.load_all()
        self.logger.info("Configuration service initialized")

        if self.use_redis:
            self.redis_client = await RedisUtils.create_redis_client()
        if self.redis_client is None:
            self.logger.info("Running without distributed refit locking")

        self.queue = create_recalc_queue(session_factory, self.queue_backend)
        self.best_records = BestRecordService(session_factory, self.queue, self.config_service)
        self.rating_service = RatingService(session_factory, self.config_service)
        self.scheduler = RecalculationScheduler(
            session_factory,
            self.queue,
            self.best_records,
            self.rating_service,
            fitter=self.fitter,
            config_service=self.config_service,
            redis_client=self.redis_client,
        )
        self.leaderboard = LeaderboardService(session_factory, self.rating_service)
        self.records = RecordOperations(session_factory, self.best_records)
        self.filters = FilterOperations(session_factory, self.queue, self.config_service)

        self.logger.info(f"Points daemon setup complete ({type(self.queue).__name__}, fitter: {self.scheduler.fitter.get_fitter_name()})")

    async def rebuild(self):
        """Rebuild every filter's best records and queue every filter for refit."""
        filter_ids = await self.db.get_all_filter_ids()
        for filter_id in filter_ids:
            await self.best_records.rebuild_filter(filter_id)
        await self.scheduler.enqueue_all()
        self.logger.info(f"Rebuilt {len(filter_ids)} filters")

    async def run_forever(self, workers: Optional[int] = None):
        """Run the worker pool until SIGINT/SIGTERM."""
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers; rely on KeyboardInterrupt
                pass

        self.scheduler.start(workers)
        await stop.wait()
        self.logger.info("Shutdown signal received")
        await self.scheduler.stop()

    async def close(self):
        """Cleanup when the daemon is shutting down"""
        self.logger.info("Shutting down points daemon...")

        if self.scheduler:
            await self.scheduler.stop()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.db:
            await self.db.close()

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='kzpoints', description='Leaderboard points recalculation daemon')
    parser.add_argument('--once', action='store_true', help='drain both queues and exit')
    parser.add_argument('--rebuild', action='store_true',
                        help='rebuild all best records and queue every filter before starting')
    parser.add_argument('--workers', type=int, default=None,
                        help=f'number of workers (default: RECALC_WORKERS={Config.RECALC_WORKERS})')
    parser.add_argument('--database-url', default=None, help='overrides DATABASE_URL')
    return parser.parse_args(argv)

async def run(args: argparse.Namespace):
    """Async entry point"""
    Config.validate()

    daemon = PointsDaemon(database_url=args.database_url)

    try:
        await daemon.setup()
        if args.rebuild:
            await daemon.rebuild()
        if args.once:
            processed = await daemon.scheduler.drain()
            daemon.logger.info(f"Processed {processed} queue entries")
        else:
            await daemon.run_forever(args.workers)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
        raise
    finally:
        await daemon.close()

def main(argv=None):
    """Console script entry point"""
    asyncio.run(run(parse_args(argv)))

if __name__ == "__main__":
    main()
