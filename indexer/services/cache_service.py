"""Redis cache for provider lookups (token prices)."""

import json
import logging
from typing import Optional, Any

import redis

from indexer.core.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Redis-backed caching service. Every failure degrades to a cache miss."""

    def __init__(self, url: Optional[str] = None):
        self._url = url or settings.REDIS_URL
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
        return self._client

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.debug("Cache read failed for %s: %s", key, e)
            return None
        return json.loads(raw) if raw else None

    def set_json(self, key: str, value: Any, ttl_seconds: int = 60) -> None:
        """Serialize and cache a JSON value with TTL."""
        try:
            self.client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.debug("Cache write failed for %s: %s", key, e)

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


cache_service = CacheService()
