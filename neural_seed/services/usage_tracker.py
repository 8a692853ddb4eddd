"""Daily token / message accounting per identity and globally.

Counters are plain integers updated with atomic ``incrby`` so concurrent
workers never lose increments.  Each day's keys get a bookkeeping expiry
the first time they are touched and keep it, so they disappear at a fixed
time regardless of later traffic.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from neural_seed.config.models import BackendConfig, RetentionConfig
from neural_seed.memory.kv_store import BaseKeyValueStore
from neural_seed.models.domain import DailyUsage

logger = logging.getLogger(__name__)

MGET_CHUNK_SIZE = 100


def _as_int(raw: str | None) -> int:
    try:
        return int(raw) if raw is not None else 0
    except ValueError:
        return 0


class UsageTracker:
    def __init__(
        self,
        store: BaseKeyValueStore,
        retention: RetentionConfig,
        backend_config: BackendConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = retention.usage_ttl_seconds
        self.cost_per_token = backend_config.resolved_cost_per_token
        self._clock = clock

    def today(self) -> str:
        """Current UTC date as ``YYYY-MM-DD``."""
        return datetime.fromtimestamp(self._clock(), tz=UTC).date().isoformat()

    @staticmethod
    def usage_key(identity: str, date: str) -> str:
        return f"usage:{identity}:{date}"

    @staticmethod
    def index_key(date: str) -> str:
        return f"usage-index:{date}"

    @staticmethod
    def global_key(date: str, counter: str) -> str:
        return f"usage-global:{date}:{counter}"

    def estimate_cost(self, tokens: int) -> float:
        return tokens * self.cost_per_token

    async def track(self, identity: str, tokens_used: int) -> None:
        """Count one assistant message and its tokens for today.

        Raises:
            StoreUnavailableError: Callers treat accounting as best-effort.
        """
        date = self.today()
        base = self.usage_key(identity, date)
        counters = [
            f"{base}:tokens",
            f"{base}:messages",
            self.global_key(date, "tokens"),
            self.global_key(date, "messages"),
        ]
        index = self.index_key(date)

        await (
            self.store.pipeline()
            .incrby(counters[0], tokens_used)
            .incrby(counters[1], 1)
            .incrby(counters[2], tokens_used)
            .incrby(counters[3], 1)
            .sadd(index, base)
            .execute()
        )

        for key in [*counters, index]:
            if await self.store.ttl(key) < 0:
                await self.store.expire(key, self.ttl)

    async def daily_usage(self, date: str | None = None) -> list[DailyUsage]:
        """Per-identity totals for *date* (default today), heaviest first."""
        date = date or self.today()
        bases = sorted(await self.store.smembers(self.index_key(date)))
        results: list[DailyUsage] = []
        for i in range(0, len(bases), MGET_CHUNK_SIZE):
            chunk = bases[i : i + MGET_CHUNK_SIZE]
            keys = [f"{base}:{counter}" for base in chunk for counter in ("tokens", "messages")]
            values = await self.store.mget(keys)
            for j, base in enumerate(chunk):
                tokens = _as_int(values[2 * j])
                messages = _as_int(values[2 * j + 1])
                if not tokens and not messages:
                    continue
                identity = base.split(":")[1]
                results.append(
                    DailyUsage(
                        address=identity,
                        date=date,
                        tokens=tokens,
                        messages=messages,
                        estimated_cost=self.estimate_cost(tokens),
                    )
                )
        results.sort(key=lambda u: u.tokens, reverse=True)
        return results

    async def daily_totals(self, date: str | None = None) -> tuple[int, int]:
        """``(tokens, messages)`` across all identities for *date*."""
        date = date or self.today()
        tokens, messages = await self.store.mget(
            [self.global_key(date, "tokens"), self.global_key(date, "messages")]
        )
        return _as_int(tokens), _as_int(messages)
