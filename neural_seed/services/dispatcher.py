"""Backend dispatcher: one configured backend wrapped in the retry policy."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from neural_seed.config.models import RetryConfig
from neural_seed.core.resilience import build_retry_policy, safe_execute
from neural_seed.core.telemetry import trace_span
from neural_seed.models.domain import BackendReply, PromptPayload
from neural_seed.providers.base import BaseBackend


class BackendDispatcher:
    """Sends composed prompts to the deployment's single backend.

    Retryable :class:`BackendError` s are retried with exponential backoff
    and jitter; anything else propagates on the first attempt.  There is
    no fail-over to another family.
    """

    def __init__(
        self,
        backend: BaseBackend,
        retry_config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self._policy = build_retry_policy(retry_config or RetryConfig(), sleep=sleep)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def model(self) -> str:
        return self.backend.model

    @trace_span("backend_dispatch")
    async def dispatch(self, payload: PromptPayload) -> BackendReply:
        return await safe_execute(self._policy, self.backend.send, payload)
