from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Tuple, TypeVar

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from authgate.storage.common import blacklist_key, rate_limit_key
from authgate.storage.errors import StoreUnavailable

T = TypeVar("T")

_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisCache:
    """Thin Redis wrapper for rate-limit counters and the token blacklist."""

    DEFAULT_OPERATION_TIMEOUT = 2.0

    # Fixed window counter: read, capped INCR, first-hit PEXPIRE and PTTL in one
    # round trip. The counter stops at limit + 1 so a saturated window does not
    # keep growing while it is being hammered.
    _FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])

local current = tonumber(redis.call('GET', key) or '0')
if current <= limit then
  current = redis.call('INCR', key)
  if current == 1 then
    redis.call('PEXPIRE', key, window_ms)
  end
end

local ttl = redis.call('PTTL', key)
if ttl < 0 then
  redis.call('PEXPIRE', key, window_ms)
  ttl = window_ms
end
return {current, ttl}
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.redis_url = redis_url
        self.operation_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run one store round trip bounded by the operation timeout."""
        try:
            return await asyncio.wait_for(factory(), self.operation_timeout)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailable(
                f"redis {operation} timed out", operation=operation
            ) from exc
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailable(
                f"redis {operation} failed: {type(exc).__name__}", operation=operation
            ) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.operation_timeout,
            socket_connect_timeout=self.operation_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def increment_rate_counter(
        self, identifier: str, limit: int, window_ms: int
    ) -> Tuple[int, int]:
        key = rate_limit_key(identifier)
        count, ttl = await self._call(
            "increment_rate_counter",
            lambda: self._fixed_window(keys=[key], args=[limit, window_ms]),
        )
        return int(count), int(ttl)

    async def get_rate_counter(self, identifier: str) -> Tuple[int, int]:
        key = rate_limit_key(identifier)

        async def _read() -> Any:
            pipe = self.client.pipeline()
            pipe.get(key)
            pipe.pttl(key)
            return await pipe.execute()

        raw_count, ttl = await self._call("get_rate_counter", _read)
        return int(raw_count or 0), max(0, int(ttl))

    async def reset_rate_counter(self, identifier: str) -> bool:
        key = rate_limit_key(identifier)
        deleted = await self._call("reset_rate_counter", lambda: self.client.delete(key))
        return bool(deleted)

    async def blacklist_token(self, token_key: str, ttl_seconds: int) -> None:
        key = blacklist_key(token_key)
        await self._call(
            "blacklist_token",
            lambda: self.client.set(key, "1", ex=max(1, int(ttl_seconds))),
        )

    async def is_token_blacklisted(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        return bool(await self._call("is_token_blacklisted", lambda: self.client.exists(key)))

    async def unblacklist_token(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        return bool(await self._call("unblacklist_token", lambda: self.client.delete(key)))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so they can be awaited
    uniformly like RedisCache.
    """

    DEFAULT_OPERATION_TIMEOUT = 2.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
    ):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self.client.register_script(
            RedisCache._FIXED_WINDOW_SCRIPT
        )

    @staticmethod
    def _call(operation: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailable(
                f"redis {operation} failed: {type(exc).__name__}", operation=operation
            ) from exc

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self.client.ping()

    async def increment_rate_counter(
        self, identifier: str, limit: int, window_ms: int
    ) -> Tuple[int, int]:
        key = rate_limit_key(identifier)
        count, ttl = self._call(
            "increment_rate_counter",
            lambda: self._fixed_window(keys=[key], args=[limit, window_ms]),
        )
        return int(count), int(ttl)

    async def get_rate_counter(self, identifier: str) -> Tuple[int, int]:
        key = rate_limit_key(identifier)

        def _read() -> Any:
            pipe = self.client.pipeline()
            pipe.get(key)
            pipe.pttl(key)
            return pipe.execute()

        raw_count, ttl = self._call("get_rate_counter", _read)
        return int(raw_count or 0), max(0, int(ttl))

    async def reset_rate_counter(self, identifier: str) -> bool:
        key = rate_limit_key(identifier)
        return bool(self._call("reset_rate_counter", lambda: self.client.delete(key)))

    async def blacklist_token(self, token_key: str, ttl_seconds: int) -> None:
        key = blacklist_key(token_key)
        self._call(
            "blacklist_token",
            lambda: self.client.set(key, "1", ex=max(1, int(ttl_seconds))),
        )

    async def is_token_blacklisted(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        return bool(self._call("is_token_blacklisted", lambda: self.client.exists(key)))

    async def unblacklist_token(self, token_key: str) -> bool:
        key = blacklist_key(token_key)
        return bool(self._call("unblacklist_token", lambda: self.client.delete(key)))

    async def close(self) -> None:
        self.client.close()
