"""
Redis cache of eligible-definition lists.
"""

import json
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger

from ..models import Definition
from ..persistence.base import DefinitionStore


class CachedDefinitionStore(DefinitionStore):
    """Caches ``list_eligible`` results of another store.

    Redis is an optimisation only: any Redis error falls through to the inner
    store. Management writes invalidate the affected trigger keys. Cached lists
    may outlive a validity window; the orchestrator filters windows itself.
    """

    ELIGIBLE_PREFIX = "automation:eligible:"

    def __init__(self, inner: DefinitionStore, redis_url: str, ttl_seconds: int = 30,
                 redis_client: Optional[redis.Redis] = None):
        self.inner = inner
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.redis = redis_client
        self.logger = get_logger("automation.cache.redis")

    async def start(self):
        await self.inner.start()
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        try:
            await self.redis.ping()
            self.logger.info("Redis definition cache started")
        except RedisError as e:
            self.logger.warning("Redis unavailable, reading through to store", error=str(e))

    async def stop(self):
        if self.redis:
            await self.redis.close()
        await self.inner.stop()

    def _key(self, trigger_key: str) -> str:
        return f"{self.ELIGIBLE_PREFIX}{trigger_key}"

    async def list_eligible(self, trigger_key: str) -> List[Definition]:
        key = self._key(trigger_key)
        try:
            cached = await self.redis.get(key)
        except RedisError as e:
            self.logger.warning("Cache read failed", trigger_key=trigger_key, error=str(e))
            cached = None

        if cached:
            try:
                return [Definition.from_dict(item) for item in json.loads(cached)]
            except (ValueError, KeyError, TypeError) as e:
                self.logger.warning("Discarding malformed cache entry", trigger_key=trigger_key, error=str(e))

        definitions = await self.inner.list_eligible(trigger_key)

        try:
            await self.redis.setex(
                key,
                self.ttl_seconds,
                json.dumps([d.to_dict() for d in definitions], default=str)
            )
        except RedisError as e:
            self.logger.warning("Cache write failed", trigger_key=trigger_key, error=str(e))

        return definitions

    async def invalidate(self, *trigger_keys: str) -> int:
        """Drop cached lists for the given trigger keys."""
        keys = [self._key(k) for k in trigger_keys if k]
        if not keys:
            return 0
        try:
            return await self.redis.delete(*keys)
        except RedisError as e:
            self.logger.warning("Cache invalidation failed", trigger_keys=list(trigger_keys), error=str(e))
            return 0

    async def get(self, definition_id: str) -> Optional[Definition]:
        return await self.inner.get(definition_id)

    async def increment_stats(self, definition_id: str, executed_at: datetime) -> None:
        await self.inner.increment_stats(definition_id, executed_at)

    async def save(self, definition: Definition) -> Definition:
        previous = await self.inner.get(definition.definition_id)
        saved = await self.inner.save(definition)
        await self.invalidate(saved.trigger_key, previous.trigger_key if previous else None)
        return saved

    async def delete(self, definition_id: str) -> bool:
        previous = await self.inner.get(definition_id)
        deleted = await self.inner.delete(definition_id)
        if previous:
            await self.invalidate(previous.trigger_key)
        return deleted

    async def set_enabled(self, definition_id: str, enabled: bool) -> Definition:
        definition = await self.inner.set_enabled(definition_id, enabled)
        await self.invalidate(definition.trigger_key)
        return definition

    async def list_definitions(self, trigger_key: Optional[str] = None) -> List[Definition]:
        return await self.inner.list_definitions(trigger_key)

    async def health_check(self) -> bool:
        return await self.inner.health_check()

    async def cache_health(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except RedisError:
            return False
