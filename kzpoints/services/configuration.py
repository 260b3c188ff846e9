"""
Configuration management service for the points engine.

Provides runtime-tunable overrides of the `Config` defaults, stored as JSON in
the `configuration` table and cached in memory.
"""

import json
import logging
from typing import Any, Dict
from sqlalchemy import select
from kzpoints.services.base import BaseService
from kzpoints.database.models import Configuration

logger = logging.getLogger(__name__)

class ConfigurationService(BaseService):
    """Manages engine configuration with simple caching."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self._cache: Dict[str, Any] = {}

    async def load_all(self):
        """Load all configurations from database into memory with error handling."""
        new_cache = {}
        async with self.get_session() as session:
            result = await session.execute(select(Configuration))
            configs = result.scalars().all()

            for config in configs:
                try:
                    new_cache[config.key] = json.loads(config.value)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON for config key '{config.key}', skipping")
                    continue

        self._cache = new_cache
        logger.info(f"Loaded {len(self._cache)} configuration parameters")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key.

        Args:
            key: Configuration key (e.g., 'rating.decay')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._cache.get(key, default)

    async def set(self, key: str, value: Any):
        """
        Set configuration value and persist to database with cache consistency.

        Args:
            key: Configuration key
            value: Configuration value (will be JSON-encoded)
        """
        async with self.get_session() as session:
            config = await session.get(Configuration, key)

            if config:
                old_value = config.value
                config.value = json.dumps(value)
            else:
                old_value = None
                session.add(Configuration(key=key, value=json.dumps(value)))

        logger.info(f"Configuration '{key}' changed from {old_value} to {json.dumps(value)}")

        # Reload after the write so the cache reflects what is stored
        await self.load_all()

    def list_all(self) -> Dict[str, Any]:
        return self._cache.copy()

    def get_by_category(self, category: str) -> Dict[str, Any]:
        """
        Get all configuration values for a specific category.

        Args:
            category: Configuration category (e.g., 'points', 'rating')

        Returns:
            Dictionary of configuration values for the category
        """
        prefix = f"{category}."
        return {
            key[len(prefix):]: value
            for key, value in self._cache.items()
            if key.startswith(prefix)
        }
