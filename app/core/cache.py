"""
Event summary cache with validation and invalidation

The cache is advisory: every failure is logged and reported as a miss.
Registration decisions never read from it.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Optional, Type
from datetime import datetime, timezone
from pydantic import BaseModel, ValidationError

from app.core.redis import get_redis
from app.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Versioned Redis cache for read models
    """

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Any]] = get_redis,
        enabled: bool = True,
        ttl: int = 300,
    ):
        self.logger = logging.getLogger(__name__)
        self._client_factory = client_factory
        self.enabled = enabled
        self.ttl = ttl
        # Cache version for invalidation coordination
        self.cache_version = "v1.0"

    def event_summary_key(self, event_id: Any, generation: int = 0) -> str:
        return f"{self.cache_version}:event_summary:{event_id}:g{generation}"

    def event_generation_key(self, event_id: Any) -> str:
        return f"{self.cache_version}:event_generation:{event_id}"

    async def event_generation(self, event_id: Any) -> Optional[int]:
        """
        Current invalidation generation for an event; None when the cache is unusable

        Summary keys embed the generation, so an entry computed before an
        invalidation is written under a key that is no longer read.
        """
        if not self.enabled:
            return None

        try:
            redis_client = await self._client_factory()
            value = await redis_client.get(self.event_generation_key(event_id))
            return int(value) if value else 0

        except Exception as e:
            self.logger.error(f"Error reading cache generation for event {event_id}: {e}")
            return None

    async def get_model(self, cache_key: str, response_model: Type[BaseModel]) -> Optional[BaseModel]:
        """
        Get a cached model, dropping entries that no longer validate
        """
        if not self.enabled:
            return None

        try:
            redis_client = await self._client_factory()
            cached_entry = await redis_client.get(cache_key)

            if not cached_entry:
                return None

            try:
                cache_entry = json.loads(cached_entry)
            except json.JSONDecodeError:
                self.logger.warning(f"Invalid JSON in cache key {cache_key}")
                await redis_client.delete(cache_key)
                return None

            if not isinstance(cache_entry, dict) or cache_entry.get("version") != self.cache_version:
                self.logger.info(f"Stale cache entry for key {cache_key}, invalidating")
                await redis_client.delete(cache_key)
                return None

            try:
                return response_model.model_validate(cache_entry.get("data"))
            except ValidationError as e:
                self.logger.warning(f"Validation failed for cache key {cache_key}: {e}")
                await redis_client.delete(cache_key)
                return None

        except Exception as e:
            self.logger.error(f"Error retrieving cache for key {cache_key}: {e}")
            return None

    async def set_model(self, cache_key: str, data: BaseModel, ttl: Optional[int] = None) -> bool:
        """
        Store a model with TTL and version metadata
        """
        if not self.enabled:
            return False

        ttl = ttl or self.ttl
        try:
            redis_client = await self._client_factory()
            cache_entry = {
                "data": data.model_dump(mode="json"),
                "cached_at": datetime.now(timezone.utc).isoformat(),
                "version": self.cache_version,
                "ttl": ttl
            }
            await redis_client.setex(cache_key, ttl, json.dumps(cache_entry, default=str))
            self.logger.debug(f"Cache set for key {cache_key} with TTL {ttl}")
            return True

        except Exception as e:
            self.logger.error(f"Error setting cache for key {cache_key}: {e}")
            return False

    async def invalidate_event(self, event_id: Any) -> int:
        """
        Invalidate cached read models for one event by advancing its generation
        """
        if not self.enabled:
            return 0

        try:
            redis_client = await self._client_factory()
            generation = await redis_client.incr(self.event_generation_key(event_id))
            cache_key = self.event_summary_key(event_id, generation - 1)
            deleted = await redis_client.delete(cache_key)
            self.logger.debug(f"Event {event_id} cache generation now {generation}, dropped {deleted} entries")
            return deleted

        except Exception as e:
            self.logger.error(f"Error invalidating cache for event {event_id}: {e}")
            return 0


# Global cache manager instance
cache_manager = CacheManager(enabled=settings.CACHE_ENABLED, ttl=settings.CACHE_TTL_EVENTS)
