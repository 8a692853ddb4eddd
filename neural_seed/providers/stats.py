"""Per-user statistics providers.

The stats block is an optional enrichment of the prompt: every failure
here is reported to the caller as an exception and treated upstream as
"no stats".
"""

from __future__ import annotations

import logging
from typing import Any

from neural_seed.config.models import StatsConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.providers.base import BaseStatsProvider

logger = logging.getLogger(__name__)


class NullStatsProvider(BaseStatsProvider):
    """Used when no stats service is configured."""

    async def fetch_stats(self, identity: str) -> dict[str, Any] | None:
        return None


class HttpStatsProvider(BaseStatsProvider):
    """Fetches ``GET {url}/{identity}`` from the game stats service."""

    def __init__(self, config: StatsConfig, http_pool: HttpClientPool) -> None:
        if not config.url:
            raise ValueError("HttpStatsProvider requires stats.url")
        self.base_url = config.url.rstrip("/")
        self.http_client = http_pool.get("stats", timeout=config.timeout_seconds)

    async def fetch_stats(self, identity: str) -> dict[str, Any] | None:
        response = await self.http_client.get(f"{self.base_url}/{identity}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            logger.warning(f"Stats service returned a non-object body for {identity[:6]}...")
            return None
        return data or None


def build_stats_provider(config: StatsConfig, http_pool: HttpClientPool) -> BaseStatsProvider:
    if config.url:
        return HttpStatsProvider(config, http_pool)
    return NullStatsProvider()
