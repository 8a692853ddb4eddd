"""Neural Seed assistant — FastAPI entry point."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from neural_seed.api import admin
from neural_seed.api.router import router
from neural_seed.config.loader import load_config
from neural_seed.config.models import AssistantConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.core.telemetry import TelemetryService
from neural_seed.memory.kv_store import BaseKeyValueStore, InMemoryKeyValueStore
from neural_seed.memory.redis_store import RedisKeyValueStore
from neural_seed.providers.base import BaseBackend
from neural_seed.providers.factory import ProviderFactory
from neural_seed.providers.stats import build_stats_provider
from neural_seed.services.assistant import AssistantService
from neural_seed.services.dispatcher import BackendDispatcher
from neural_seed.services.prompt_composer import PromptComposer, load_static_segments

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request timeout middleware
# ---------------------------------------------------------------------------

REQUEST_TIMEOUT_SECONDS = 120  # 2 min max per request


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Cancel requests that exceed the configured timeout."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except TimeoutError:
            return Response(
                content='{"detail":"Request timed out"}',
                status_code=504,
                media_type="application/json",
            )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def create_store(config: AssistantConfig) -> BaseKeyValueStore:
    if config.store.url:
        return RedisKeyValueStore(
            config.store.url,
            key_prefix=config.store.key_prefix,
            max_connections=config.store.max_connections,
        )
    logger.warning(
        "No store.url configured — using the in-memory store. "
        "State is per-process and lost on restart."
    )
    return InMemoryKeyValueStore()


def create_backend(config: AssistantConfig, http_pool: HttpClientPool) -> BaseBackend:
    # Registration happens on import
    import neural_seed.providers.backends.anthropic  # noqa: F401
    import neural_seed.providers.backends.google  # noqa: F401
    import neural_seed.providers.backends.openai  # noqa: F401

    return ProviderFactory.create("backend", config.backend.provider, config.backend, http_pool)


def build_assistant(
    config: AssistantConfig, store: BaseKeyValueStore, http_pool: HttpClientPool
) -> AssistantService:
    backend = create_backend(config, http_pool)
    composer = PromptComposer(
        load_static_segments(config.prompt),
        history_limit=config.limits.history_limit,
    )
    return AssistantService(
        config,
        store,
        BackendDispatcher(backend, config.retry),
        composer,
        build_stats_provider(config.stats, http_pool),
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan — initialise and tear down shared resources."""
    # Startup
    config = load_config()
    telemetry = TelemetryService(config.telemetry)

    http_pool = HttpClientPool()
    store = create_store(config)
    app.state.assistant = build_assistant(config, store, http_pool)
    app.state.http_pool = http_pool

    logger.info(
        "Neural Seed started — backend: %s, model: %s",
        config.backend.provider,
        config.backend.model,
    )

    yield

    # Shutdown
    await store.close()
    await http_pool.close_all()
    telemetry.shutdown()
    logger.info("Neural Seed shutdown complete")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Neural Seed",
    description="In-game chat assistant with conversation memory",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(TimeoutMiddleware)
app.include_router(router)
app.include_router(admin.router)
