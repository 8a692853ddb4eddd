"""Per-identity send-rate gate backed by the shared store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from neural_seed.config.models import LimitsConfig
from neural_seed.memory.kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """At most one accepted message per identity per window.

    The check and the record are separate round trips, so two requests
    racing inside the same window can both pass.
    """

    def __init__(
        self,
        store: BaseKeyValueStore,
        limits: LimitsConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.window_ms = limits.rate_limit_window_seconds * 1000
        self.record_ttl = limits.rate_limit_record_ttl_seconds
        self._clock = clock

    @staticmethod
    def _key(identity: str) -> str:
        return f"ratelimit:{identity}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def allowed(self, identity: str) -> bool:
        """Fails closed: a store error rejects the request."""
        try:
            raw = await self.store.get(self._key(identity))
        except Exception as e:
            logger.error(f"Rate limit check failed for {identity[:6]}...: {e}")
            return False

        if raw is None:
            return True
        try:
            last = int(raw)
        except ValueError:
            logger.warning(f"Ignoring unparseable rate limit record for {identity[:6]}...")
            return True
        return self._now_ms() - last >= self.window_ms

    async def record(self, identity: str) -> None:
        try:
            await self.store.set(
                self._key(identity), str(self._now_ms()), ttl=self.record_ttl
            )
        except Exception as e:
            logger.error(f"Failed to record rate limit for {identity[:6]}...: {e}")
