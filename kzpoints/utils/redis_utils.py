"""
Redis utility module for centralized Redis configuration and connection logic.

Redis is optional: it only provides distributed refit locks when several
daemon instances share one database.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from kzpoints.config import Config

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        """Get Redis URL with security validation for production deployments."""
        redis_url = Config.REDIS_URL
        if not redis_url:
            return None

        if RedisUtils._validate_redis_security(redis_url):
            return redis_url

        logger.error("REDIS_URL environment variable contains insecure configuration")
        return None

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """Validate that Redis URL meets security requirements."""
        if not redis_url.startswith(('redis://', 'rediss://', 'unix://')):
            logger.error(f"Unsupported Redis URL scheme: {redis_url.split(':', 1)[0]}")
            return False

        if not Config.DEBUG:
            # Production mode - enforce TLS and credentials for remote hosts
            is_local = redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'unix://'))
            if not is_local and not redis_url.startswith('rediss://'):
                logger.error("Production Redis must use rediss:// (TLS) protocol")
                return False
            if not is_local and '@' not in redis_url:
                logger.error("Production Redis must include authentication credentials")
                return False

        return True

    @staticmethod
    async def create_redis_client() -> Optional[redis.Redis]:
        """Create a Redis client, or None when Redis is not configured or unreachable."""
        redis_url = RedisUtils.get_secure_redis_url()
        if not redis_url:
            return None

        try:
            client = redis.from_url(redis_url)
            await client.ping()
            logger.info("Successfully connected to Redis")
            return client
        except (redis.RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return None
