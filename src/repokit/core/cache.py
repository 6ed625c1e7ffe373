"""Query result caching for repositories.

Repositories receive a ``QueryCache`` instead of sharing a module-level map.
Two backends are provided:

- ``MemoryQueryCache``: in-process, bounded LRU with per-entry TTL checked on read
- ``RedisQueryCache``: Valkey/Redis backed, values pickled, TTL enforced by the server

Keys are namespaced per model with ``build_key`` so repositories sharing one
cache never collide. Invalidation is coarse: any write through a repository clears the whole
cache.
"""

import pickle
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

import redis.asyncio as redis
from redis.asyncio import Redis

from repokit.core.config import settings
from repokit.core.logging import get_logger
from repokit.core.tracing import trace_cache

logger = get_logger(__name__)


class CacheErrorMessage:
    """Standardized cache error messages."""

    CREATE_CLIENT_NO_URL = "Valkey URL is not configured"
    CREATE_CLIENT_FAILED = "Failed to create Valkey client"
    CLOSE_CACHE_FAILED = "Failed to close cache connections"
    UNKNOWN_BACKEND = "Unknown cache backend"
    INVALID_CAPACITY = "CACHE_MAX_ENTRIES must be at least 1"


def build_key(namespace: str, key: str) -> str:
    """Scope a caller-supplied key to a namespace (usually the model name)."""
    return f"{namespace}:{key}"


@dataclass
class CacheEntry:
    """A cached value and the wall-clock instant (epoch millis) it expires at."""

    data: Any
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_ms <= now_ms


class QueryCache(ABC):
    """Interface repositories use to cache query results."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value`` for ``ttl`` seconds (backend default when None)."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""


class MemoryQueryCache(QueryCache):
    """Bounded in-process cache with TTL expiry on read.

    When full, the least recently used entry is evicted. Not locked: callers
    on one event loop never interleave inside a method.

    Args:
        max_entries: Capacity before LRU eviction kicks in
        default_ttl: TTL in seconds used when ``set`` gets none
        clock: Returns current time in seconds; injectable for tests
    """

    def __init__(
        self,
        max_entries: int | None = None,
        default_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries
        if self.max_entries < 1:
            raise ValueError(CacheErrorMessage.INVALID_CAPACITY)
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._now_ms()):
            self._entries.move_to_end(key)
            return entry.data
        self._entries.pop(key, None)
        return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        seconds = ttl if ttl is not None else self.default_ttl
        self._entries[key] = CacheEntry(data=value, expires_at_ms=self._now_ms() + seconds * 1000)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry", key=evicted)

    async def clear(self) -> None:
        self._entries.clear()


class RedisQueryCache(QueryCache):
    """Valkey/Redis backed cache.

    Values are pickled, so the client must be created with
    ``decode_responses=False``. Capacity is bounded by the server's
    ``maxmemory`` policy.

    Args:
        client: Async Redis client
        prefix: Prefix for every key this cache writes; ``clear`` only touches these
        default_ttl: TTL in seconds used when ``set`` gets none
    """

    def __init__(
        self,
        client: Redis,
        prefix: str | None = None,
        default_ttl: int | None = None,
    ) -> None:
        self.client = client
        self.prefix = prefix if prefix is not None else settings.cache_key_prefix
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_default_ttl

    @trace_cache("get")
    async def get(self, key: str) -> Any | None:
        payload = await self.client.get(self.prefix + key)
        if payload is None:
            return None
        return pickle.loads(payload)

    @trace_cache("set")
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        seconds = ttl if ttl is not None else self.default_ttl
        await self.client.set(self.prefix + key, pickle.dumps(value), ex=seconds)

    @trace_cache("clear")
    async def clear(self) -> None:
        keys = [key async for key in self.client.scan_iter(match=f"{self.prefix}*")]
        if keys:
            await self.client.delete(*keys)
            logger.debug("Cleared cache keys", count=len(keys))


def create_client(decode_responses: bool = False) -> Redis:
    """Create async Redis client with connection pooling.

    Returns:
        Redis: Configured async Redis client

    Connection Pool Configuration:
        - max_connections: Maximum connections in the pool (20)
        - decode_responses: False by default; cached values are pickled bytes
        - socket_connect_timeout: Timeout for socket connection (5s)
        - socket_keepalive: Enable TCP keepalive
        - health_check_interval: Health check interval (30s)

    Raises:
        ValueError: If Valkey URL is missing or the client cannot be created
    """
    try:
        if not settings.valkey_url:
            raise ValueError(CacheErrorMessage.CREATE_CLIENT_NO_URL)

        logger.info(
            "Creating async Valkey client",
            url=settings.valkey_url.split("@")[1] if "@" in settings.valkey_url else "***",
            max_connections=20,
        )

        client: Redis = redis.from_url(  # type: ignore[no-untyped-call]
            settings.valkey_url,
            decode_responses=decode_responses,
            max_connections=20,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

        return client
    except ValueError:
        raise
    except Exception as e:
        logger.error(
            f"Failed to create Valkey client due to configuration error: {e}"
        )
        raise ValueError(CacheErrorMessage.CREATE_CLIENT_FAILED) from e


def create_query_cache() -> QueryCache:
    """Build the cache backend named by ``settings.cache_backend``."""
    backend = settings.cache_backend.lower()
    if backend == "memory":
        return MemoryQueryCache()
    if backend == "redis":
        return RedisQueryCache(create_client())
    raise ValueError(f"{CacheErrorMessage.UNKNOWN_BACKEND}: {settings.cache_backend}")


# Process-wide default cache, created on first use
_query_cache: QueryCache | None = None


def get_query_cache() -> QueryCache:
    """Return the process-wide default cache used by repositories without one."""
    global _query_cache
    if _query_cache is None:
        _query_cache = create_query_cache()
    return _query_cache


def set_query_cache(cache: QueryCache | None) -> None:
    """Replace the process-wide default cache."""
    global _query_cache
    _query_cache = cache


@trace_cache()
async def check_cache_connection() -> bool:
    """Check if the default cache is usable.

    The memory backend is always available; the Redis backend is pinged.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        cache = get_query_cache()
        if isinstance(cache, RedisQueryCache):
            await cache.client.ping()
        logger.debug("Cache connection check passed")
        return True
    except Exception as e:
        logger.error(f"Cache connection check failed with error: {e}")
        return False


@trace_cache()
async def close_cache() -> None:
    """Close cache connections.

    Should be called during application shutdown.

    Raises:
        RuntimeError: If graceful shutdown fails
    """
    cache = _query_cache
    if not isinstance(cache, RedisQueryCache):
        return
    try:
        logger.info("Closing cache connections")
        await cache.client.aclose()
        if hasattr(cache.client, "connection_pool"):
            await cache.client.connection_pool.disconnect()
    except Exception as e:
        logger.error(f"Error closing cache connections: {e}")
        raise RuntimeError(CacheErrorMessage.CLOSE_CACHE_FAILED) from e
