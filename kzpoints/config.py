import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Points engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///points.db')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Optional Redis for distributed refit locking
    REDIS_URL = os.getenv('REDIS_URL')
    REFIT_LOCK_TTL = int(os.getenv('REFIT_LOCK_TTL', 120))

    # Recalculation workers
    RECALC_WORKERS = int(os.getenv('RECALC_WORKERS', 2))
    RECALC_POLL_INTERVAL = float(os.getenv('RECALC_POLL_INTERVAL', 1.0))
    RECALC_QUEUE_BACKEND = os.getenv('RECALC_QUEUE_BACKEND', 'database')

    # Points settings
    REFIT_THRESHOLD = int(os.getenv('REFIT_THRESHOLD', 1))  # New best times before a refit is queued
    MIN_FIT_SAMPLES = int(os.getenv('MIN_FIT_SAMPLES', 5))
    GRADING_CHANGE_PRIORITY = int(os.getenv('GRADING_CHANGE_PRIORITY', 1000))

    # Rating settings
    RATING_DECAY = float(os.getenv('RATING_DECAY', 0.975))

    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Get the database URL with an async driver"""
        database_url = database_url or cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that configuration values make sense"""
        if cls.RECALC_WORKERS < 1:
            raise ValueError("RECALC_WORKERS must be at least 1")
        if cls.RECALC_POLL_INTERVAL <= 0:
            raise ValueError("RECALC_POLL_INTERVAL must be positive")
        if cls.RECALC_QUEUE_BACKEND not in ('database', 'memory'):
            raise ValueError("RECALC_QUEUE_BACKEND must be 'database' or 'memory'")
        if cls.REFIT_THRESHOLD < 1:
            raise ValueError("REFIT_THRESHOLD must be at least 1")
        if not 0 < cls.RATING_DECAY < 1:
            raise ValueError("RATING_DECAY must be between 0 and 1")
