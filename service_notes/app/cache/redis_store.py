"""
Redis-backed cache store for the Notes Service.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import redis.asyncio as redis

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import CacheUnavailableError
from shared.logging import get_logger
from .keys import CacheNamespace, make_key, namespace_pattern


class RedisCacheStore:
    """Namespaced key/value store with per-entry TTL.

    Every Redis call is bounded by ``operation_timeout`` and routed through a
    circuit breaker. Timeouts, Redis errors and an open breaker all surface as
    :class:`CacheUnavailableError` so callers can fall back to the database.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        client: Optional[redis.Redis] = None,
        operation_timeout: float = 0.25,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.redis_url = redis_url
        self.logger = get_logger("notes.cache.redis")
        self.redis: Optional[redis.Redis] = client
        self.operation_timeout = operation_timeout
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name="redis_cache",
        )

    async def start(self):
        """Start the Redis cache."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )

        try:
            await self.redis.ping()
            self.logger.info("Redis cache started")
        except (redis.RedisError, OSError) as e:
            # The service keeps serving from the database while Redis is down
            self.logger.warning("Redis cache unreachable at startup", error=str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis is not None:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self.redis

    async def _execute(self, action: str, func: Callable[..., Awaitable[Any]], *args) -> Any:
        async def bounded():
            return await asyncio.wait_for(func(*args), timeout=self.operation_timeout)

        try:
            return await self.breaker.call(bounded)
        except CircuitBreakerOpenException as e:
            raise CacheUnavailableError(str(e), {"action": action, "circuit": "open"}) from e
        except asyncio.TimeoutError as e:
            raise CacheUnavailableError(
                "Cache operation timed out",
                {"action": action, "timeout_seconds": self.operation_timeout},
            ) from e
        except (redis.RedisError, OSError) as e:
            raise CacheUnavailableError(str(e), {"action": action}) from e

    async def get(self, namespace: CacheNamespace, key: Any) -> Optional[str]:
        """Return the raw cached payload, or None when absent."""
        value = await self._execute("get", self._client().get, make_key(namespace, key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, namespace: CacheNamespace, key: Any, value: str, ttl: int) -> None:
        """Store a payload with its own expiry."""
        await self._execute("put", self._client().setex, make_key(namespace, key), ttl, value)

    async def evict(self, namespace: CacheNamespace, key: Any) -> None:
        """Remove a single entry."""
        await self._execute("evict", self._client().delete, make_key(namespace, key))

    async def evict_all(self, namespace: CacheNamespace) -> int:
        """Remove every entry in a namespace; returns the number of keys removed."""
        keys = await self.list_keys(namespace_pattern(namespace))
        if not keys:
            return 0
        await self._execute("evict_all", self._client().delete, *keys)
        return len(keys)

    async def list_keys(self, pattern: str) -> List[str]:
        """Enumerate keys matching a glob pattern."""
        keys = await self._execute("list_keys", self._client().keys, pattern)
        return [key.decode("utf-8") if isinstance(key, bytes) else key for key in keys]

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._execute("ping", self._client().ping)
            return True
        except CacheUnavailableError:
            return False
