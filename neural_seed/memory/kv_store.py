"""Key-value store adapter used by every stateful component.

The assistant keeps all shared state in one expiring key-value store.
Only single commands are atomic; pipelines batch commands to save round
trips but are never transactional and never roll back.

Implementations
---------------
- ``InMemoryKeyValueStore``  – dict-backed with TTLs, for dev / testing
- ``RedisKeyValueStore``     – production backend (:mod:`neural_seed.memory.redis_store`)
"""

from __future__ import annotations

import fnmatch
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from neural_seed.services.exceptions import StoreUnavailableError


class KeyValuePipeline(ABC):
    """Best-effort command batch.

    Commands are queued synchronously and sent by :meth:`execute`, which
    raises if any of them failed.  Commands that already ran are not undone.
    """

    @abstractmethod
    def set(self, key: str, value: str, ttl: int | None = None) -> KeyValuePipeline: ...

    @abstractmethod
    def delete(self, *keys: str) -> KeyValuePipeline: ...

    @abstractmethod
    def rpush(self, key: str, *values: str) -> KeyValuePipeline: ...

    @abstractmethod
    def lpush(self, key: str, *values: str) -> KeyValuePipeline: ...

    @abstractmethod
    def expire(self, key: str, ttl: int) -> KeyValuePipeline: ...

    @abstractmethod
    def sadd(self, key: str, *members: str) -> KeyValuePipeline: ...

    @abstractmethod
    def srem(self, key: str, *members: str) -> KeyValuePipeline: ...

    @abstractmethod
    def incrby(self, key: str, amount: int) -> KeyValuePipeline: ...

    @abstractmethod
    async def execute(self) -> list[Any]:
        """Send all queued commands and return their results in order."""


class BaseKeyValueStore(ABC):
    """Abstract async key-value store.

    Keys passed in and returned (including list and set members) are
    *logical* keys; implementations apply any namespace prefix themselves.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        *,
        only_if_absent: bool = False,
    ) -> bool:
        """Store *value*; returns ``False`` only when ``only_if_absent`` blocked the write."""

    @abstractmethod
    async def incrby(self, key: str, amount: int) -> int: ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining seconds; ``-1`` when the key has no expiry, ``-2`` when missing."""

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    async def persist(self, key: str) -> bool:
        """Remove the expiry from *key*."""

    @abstractmethod
    async def rpush(self, key: str, *values: str) -> int: ...

    @abstractmethod
    async def lpush(self, key: str, *values: str) -> int: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def srem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def smembers(self, key: str) -> set[str]: ...

    @abstractmethod
    async def mget(self, keys: list[str]) -> list[str | None]: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def scan_keys(self, pattern: str) -> list[str]:
        """Cursor-scan for keys matching a glob *pattern*.

        Only meant for legacy / migration paths, never for hot reads.
        """

    @abstractmethod
    def pipeline(self) -> KeyValuePipeline: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """Release connections.  Call during app shutdown."""


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class _QueuedPipeline(KeyValuePipeline):
    """Pipeline that replays queued commands against a store one by one."""

    def __init__(self, store: BaseKeyValueStore) -> None:
        self._store = store
        self._commands: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def _queue(self, name: str, *args: Any, **kwargs: Any) -> _QueuedPipeline:
        self._commands.append((name, args, kwargs))
        return self

    def set(self, key: str, value: str, ttl: int | None = None) -> _QueuedPipeline:
        return self._queue("set", key, value, ttl)

    def delete(self, *keys: str) -> _QueuedPipeline:
        return self._queue("delete", *keys)

    def rpush(self, key: str, *values: str) -> _QueuedPipeline:
        return self._queue("rpush", key, *values)

    def lpush(self, key: str, *values: str) -> _QueuedPipeline:
        return self._queue("lpush", key, *values)

    def expire(self, key: str, ttl: int) -> _QueuedPipeline:
        return self._queue("expire", key, ttl)

    def sadd(self, key: str, *members: str) -> _QueuedPipeline:
        return self._queue("sadd", key, *members)

    def srem(self, key: str, *members: str) -> _QueuedPipeline:
        return self._queue("srem", key, *members)

    def incrby(self, key: str, amount: int) -> _QueuedPipeline:
        return self._queue("incrby", key, amount)

    async def execute(self) -> list[Any]:
        commands, self._commands = self._commands, []
        results: list[Any] = []
        errors: list[Exception] = []
        for name, args, kwargs in commands:
            try:
                results.append(await getattr(self._store, name)(*args, **kwargs))
            except StoreUnavailableError as exc:
                results.append(exc)
                errors.append(exc)
        if errors:
            raise StoreUnavailableError(
                f"{len(errors)} of {len(commands)} pipelined commands failed: {errors[0]}"
            )
        return results


class InMemoryKeyValueStore(BaseKeyValueStore):
    """Dict-backed store with lazy TTL expiry — suitable for dev/testing only.

    Values are ``str`` (strings / counters), ``list[str]`` or ``set[str]``.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}

    # -- internals --------------------------------------------------------

    def _alive(self, key: str) -> bool:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)
        return key in self._data

    def _typed(self, key: str, kind: type) -> Any:
        if not self._alive(key):
            return None
        value = self._data[key]
        if not isinstance(value, kind):
            raise StoreUnavailableError(
                f"WRONGTYPE Operation against a key holding the wrong kind of value: {key}"
            )
        return value

    def _drop_if_empty(self, key: str) -> None:
        if not self._data.get(key):
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    # -- strings ----------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return self._typed(key, str)

    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        *,
        only_if_absent: bool = False,
    ) -> bool:
        if only_if_absent and self._alive(key):
            return False
        self._data[key] = str(value)
        if ttl is not None:
            self._expires_at[key] = self._clock() + ttl
        else:
            self._expires_at.pop(key, None)
        return True

    async def incrby(self, key: str, amount: int) -> int:
        current = self._typed(key, str)
        try:
            value = int(current or 0) + amount
        except ValueError as exc:
            raise StoreUnavailableError(f"value is not an integer: {key}") from exc
        self._data[key] = str(value)
        return value

    # -- expiry -----------------------------------------------------------

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        deadline = self._expires_at.get(key)
        if deadline is None:
            return -1
        return max(0, int(deadline - self._clock()))

    async def expire(self, key: str, ttl: int) -> bool:
        if not self._alive(key):
            return False
        self._expires_at[key] = self._clock() + ttl
        return True

    async def persist(self, key: str) -> bool:
        if not self._alive(key) or key not in self._expires_at:
            return False
        del self._expires_at[key]
        return True

    # -- lists ------------------------------------------------------------

    async def rpush(self, key: str, *values: str) -> int:
        items = self._typed(key, list)
        if items is None:
            items = self._data[key] = []
        items.extend(values)
        return len(items)

    async def lpush(self, key: str, *values: str) -> int:
        items = self._typed(key, list)
        if items is None:
            items = self._data[key] = []
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        items = self._typed(key, list)
        if not items:
            return []
        size = len(items)
        if start < 0:
            start = max(size + start, 0)
        if stop < 0:
            stop = size + stop
        return list(items[start : stop + 1])

    # -- sets -------------------------------------------------------------

    async def sadd(self, key: str, *members: str) -> int:
        current = self._typed(key, set)
        if current is None:
            current = self._data[key] = set()
        before = len(current)
        current.update(members)
        return len(current) - before

    async def srem(self, key: str, *members: str) -> int:
        current = self._typed(key, set)
        if not current:
            return 0
        removed = len(current & set(members))
        current.difference_update(members)
        self._drop_if_empty(key)
        return removed

    async def smembers(self, key: str) -> set[str]:
        return set(self._typed(key, set) or ())

    # -- multi-key --------------------------------------------------------

    async def mget(self, keys: list[str]) -> list[str | None]:
        values: list[str | None] = []
        for key in keys:
            value = self._data.get(key) if self._alive(key) else None
            values.append(value if isinstance(value, str) else None)
        return values

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                del self._data[key]
                self._expires_at.pop(key, None)
                removed += 1
        return removed

    async def scan_keys(self, pattern: str) -> list[str]:
        return [
            key
            for key in list(self._data)
            if self._alive(key) and fnmatch.fnmatchcase(key, pattern)
        ]

    def pipeline(self) -> KeyValuePipeline:
        return _QueuedPipeline(self)
