"""Redis-backed key-value store.

Uses ``redis.asyncio`` for non-blocking I/O.  Every key is namespaced
with ``key_prefix`` so several deployments can share one database.

Connection pooling is handled automatically by ``redis.asyncio`` —
the underlying ``ConnectionPool`` reuses TCP connections across calls.

Usage::

    from neural_seed.memory.redis_store import RedisKeyValueStore

    store = RedisKeyValueStore("redis://localhost:6379/0")
    # or with explicit options:
    store = RedisKeyValueStore(
        url="redis://redis-svc:6379/0",
        key_prefix="neural-seed:",
        max_connections=100,
    )
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from neural_seed.memory.kv_store import BaseKeyValueStore, KeyValuePipeline
from neural_seed.services.exceptions import StoreUnavailableError

P = ParamSpec("P")
R = TypeVar("R")


def _translate_errors(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Re-raise client errors as :class:`StoreUnavailableError`."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise StoreUnavailableError(f"{func.__name__}: {exc}") from exc

    return wrapper


class RedisPipeline(KeyValuePipeline):
    """Non-transactional Redis pipeline with key prefixing."""

    def __init__(self, pipe: Any, key: Callable[[str], str]) -> None:
        self._pipe = pipe
        self._key = key

    def set(self, key: str, value: str, ttl: int | None = None) -> RedisPipeline:
        self._pipe.set(self._key(key), value, ex=ttl)
        return self

    def delete(self, *keys: str) -> RedisPipeline:
        if keys:
            self._pipe.delete(*(self._key(k) for k in keys))
        return self

    def rpush(self, key: str, *values: str) -> RedisPipeline:
        if values:
            self._pipe.rpush(self._key(key), *values)
        return self

    def lpush(self, key: str, *values: str) -> RedisPipeline:
        if values:
            self._pipe.lpush(self._key(key), *values)
        return self

    def expire(self, key: str, ttl: int) -> RedisPipeline:
        self._pipe.expire(self._key(key), ttl)
        return self

    def sadd(self, key: str, *members: str) -> RedisPipeline:
        if members:
            self._pipe.sadd(self._key(key), *members)
        return self

    def srem(self, key: str, *members: str) -> RedisPipeline:
        if members:
            self._pipe.srem(self._key(key), *members)
        return self

    def incrby(self, key: str, amount: int) -> RedisPipeline:
        self._pipe.incrby(self._key(key), amount)
        return self

    @_translate_errors
    async def execute(self) -> list[Any]:
        return await self._pipe.execute(raise_on_error=True)


class RedisKeyValueStore(BaseKeyValueStore):
    """Redis store with prefixed keys and error translation.

    Pass ``client`` to reuse an existing ``redis.asyncio`` client
    (tests inject ``fakeredis`` this way).
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = "neural-seed:",
        max_connections: int = 50,
        client: aioredis.Redis | None = None,
    ) -> None:
        if client is None:
            client = aioredis.from_url(
                url,
                max_connections=max_connections,
                decode_responses=True,
            )
        self._redis = client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _strip(self, key: str) -> str:
        return key[len(self._prefix) :] if key.startswith(self._prefix) else key

    @_translate_errors
    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    @_translate_errors
    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        *,
        only_if_absent: bool = False,
    ) -> bool:
        result = await self._redis.set(
            self._key(key), value, ex=ttl, nx=only_if_absent
        )
        return bool(result)

    @_translate_errors
    async def incrby(self, key: str, amount: int) -> int:
        return await self._redis.incrby(self._key(key), amount)

    @_translate_errors
    async def ttl(self, key: str) -> int:
        return await self._redis.ttl(self._key(key))

    @_translate_errors
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._redis.expire(self._key(key), ttl))

    @_translate_errors
    async def persist(self, key: str) -> bool:
        return bool(await self._redis.persist(self._key(key)))

    @_translate_errors
    async def rpush(self, key: str, *values: str) -> int:
        return await self._redis.rpush(self._key(key), *values)

    @_translate_errors
    async def lpush(self, key: str, *values: str) -> int:
        return await self._redis.lpush(self._key(key), *values)

    @_translate_errors
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._redis.lrange(self._key(key), start, stop)

    @_translate_errors
    async def sadd(self, key: str, *members: str) -> int:
        return await self._redis.sadd(self._key(key), *members)

    @_translate_errors
    async def srem(self, key: str, *members: str) -> int:
        return await self._redis.srem(self._key(key), *members)

    @_translate_errors
    async def smembers(self, key: str) -> set[str]:
        return set(await self._redis.smembers(self._key(key)))

    @_translate_errors
    async def mget(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        return await self._redis.mget([self._key(k) for k in keys])

    @_translate_errors
    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._redis.delete(*(self._key(k) for k in keys))

    @_translate_errors
    async def scan_keys(self, pattern: str) -> list[str]:
        return [
            self._strip(key)
            async for key in self._redis.scan_iter(match=self._key(pattern), count=500)
        ]

    def pipeline(self) -> RedisPipeline:
        return RedisPipeline(self._redis.pipeline(transaction=False), self._key)

    @_translate_errors
    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        """Close the Redis connection pool.  Call during app shutdown."""
        await self._redis.aclose()
