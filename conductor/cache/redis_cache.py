"""
Redis Caching Layer with Multi-Tenant Support

Provides:
- Tenant schema validation report caching
- Tag frequency caching for tag suggestions
- Automatic serialization/deserialization
- Automatic tenant namespacing

Configuration (conductor.core.config):
- REDIS_URL: Redis connection string
- CACHE_TTL: Default cache TTL in seconds (default: 3600 = 1 hour)
- ENABLE_CACHE: Enable/disable caching (default: true)

Multi-Tenant Isolation:
All cache keys are prefixed with tenant:{tenant_id}: so tenants never
read each other's entries. Outside a tenant context keys fall back to
the global: namespace.

Example cache keys:
- tenant:uuid-1234:tag_freq
- global:schema_report:uuid-1234
"""

import json
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import redis.asyncio as redis

from conductor.core.config import settings
from conductor.middleware.logging_config import get_logger
from conductor.middleware.metrics import track_cache_access
from conductor.middleware.tenant_context import get_current_tenant_id

logger = get_logger(__name__)

# Cache key prefixes
PREFIX_SCHEMA_REPORT = "schema_report:"
PREFIX_TAG_FREQUENCIES = "tag_freq"


def _get_tenant_key(base_key: str, tenant_id: Optional[UUID] = None) -> str:
    """
    Prefix cache key with tenant ID (explicit or from context).

    Example:
        _get_tenant_key("tag_freq")
        # Returns: "tenant:abc-123:tag_freq"
    """
    tenant_id = tenant_id or get_current_tenant_id()
    if not tenant_id:
        return f"global:{base_key}"
    return f"tenant:{tenant_id}:{base_key}"


class RedisCache:
    """Redis cache client with automatic JSON serialization."""

    def __init__(self, url: str = None, enabled: bool = None, default_ttl: int = None):
        self.url = url or settings.redis_url
        self.enabled = settings.enable_cache if enabled is None else enabled
        self.default_ttl = default_ttl or settings.cache_ttl
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis. Disables the cache when Redis is unreachable."""
        if not self.enabled:
            logger.info("cache_disabled", reason="ENABLE_CACHE=false")
            return

        try:
            self.client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            await self.client.ping()
            logger.info("redis_connected", url=self.url)
        except Exception as e:
            logger.warning("redis_connection_failed", error=str(e), fallback="cache_disabled")
            self.client = None
            self.enabled = False

    async def disconnect(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("redis_disconnected")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache, or None if missing or the cache is off."""
        if not self.enabled or not self.client:
            return None

        try:
            value = await self.client.get(key)
        except Exception as e:
            logger.error("cache_get_failed", key=key, error=str(e))
            return None

        track_cache_access("redis", hit=value is not None)
        if value is None:
            return None
        logger.debug("cache_hit", key=key)
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache (serialized to JSON)."""
        if not self.enabled or not self.client:
            return False

        try:
            ttl = ttl or self.default_ttl
            await self.client.setex(key, timedelta(seconds=ttl), json.dumps(value, default=str))
            logger.debug("cache_set", key=key, ttl=ttl)
            return True
        except Exception as e:
            logger.error("cache_set_failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled or not self.client:
            return False

        try:
            await self.client.delete(key)
            logger.debug("cache_deleted", key=key)
            return True
        except Exception as e:
            logger.error("cache_delete_failed", key=key, error=str(e))
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern.

        Args:
            pattern: Key pattern (e.g., "tenant:abc-123:*")

        Returns:
            Number of keys deleted
        """
        if not self.enabled or not self.client:
            return 0

        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if not keys:
                return 0
            deleted = await self.client.delete(*keys)
            logger.info("cache_pattern_deleted", pattern=pattern, count=deleted)
            return deleted
        except Exception as e:
            logger.error("cache_pattern_delete_failed", pattern=pattern, error=str(e))
            return 0

    async def stats(self) -> Dict[str, Any]:
        if not self.enabled or not self.client:
            return {"enabled": False}
        try:
            info = await self.client.info("stats")
            return {
                "enabled": True,
                "keyspace_hits": info.get("keyspace_hits", 0),
                "keyspace_misses": info.get("keyspace_misses", 0),
            }
        except Exception as e:
            logger.error("cache_stats_failed", error=str(e))
            return {"enabled": True, "error": str(e)}


# ==================== Global Cache Instance ====================

cache = RedisCache()


# ==================== Helper Functions (Tenant-Aware) ====================

async def cache_schema_report(tenant_id: UUID, report: Dict[str, Any], ttl: int = 600):
    """Cache a tenant schema report (10 min default) in the global namespace."""
    await cache.set(f"global:{PREFIX_SCHEMA_REPORT}{tenant_id}", report, ttl=ttl)


async def get_cached_schema_report(tenant_id: UUID) -> Optional[Dict[str, Any]]:
    return await cache.get(f"global:{PREFIX_SCHEMA_REPORT}{tenant_id}")


async def invalidate_schema_report(tenant_id: UUID):
    await cache.delete(f"global:{PREFIX_SCHEMA_REPORT}{tenant_id}")


async def cache_tag_frequencies(frequencies: Dict[str, int], tenant_id: Optional[UUID] = None, ttl: int = 900):
    """Cache the tag frequency table of the current tenant (15 min default)."""
    await cache.set(_get_tenant_key(PREFIX_TAG_FREQUENCIES, tenant_id), frequencies, ttl=ttl)


async def get_cached_tag_frequencies(tenant_id: Optional[UUID] = None) -> Optional[Dict[str, int]]:
    return await cache.get(_get_tenant_key(PREFIX_TAG_FREQUENCIES, tenant_id))


async def invalidate_tenant_cache(tenant_id: UUID) -> int:
    """Drop every cached entry of a tenant."""
    deleted = await cache.delete_pattern(f"tenant:{tenant_id}:*")
    await invalidate_schema_report(tenant_id)
    return deleted
