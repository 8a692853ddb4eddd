"""Resilience module — retry policies for backend calls.

Retries only errors the backend variant marked as transient (rate
limits, server errors, timeouts).  Auth and malformed-request failures
propagate on the first attempt.  Backoff is exponential with additive
jitter so concurrent workers do not retry in lockstep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from neural_seed.config.models import RetryConfig
from neural_seed.services.exceptions import BackendError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Status codes worth another attempt; every other 4xx is final
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.retryable


class CappedBackoff(wait_base):
    """Exponential delay plus random jitter, the sum capped at ``max_delay``."""

    def __init__(self, config: RetryConfig) -> None:
        self.exponential = wait_exponential(multiplier=config.base_delay_seconds, exp_base=2)
        self.jitter = wait_random(0, config.jitter_seconds)
        self.max_delay = config.max_delay_seconds

    def __call__(self, retry_state: RetryCallState) -> float:
        return min(self.exponential(retry_state) + self.jitter(retry_state), self.max_delay)


def build_retry_policy(
    config: RetryConfig,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> AsyncRetrying:
    """Create a retry policy: ``base * 2^attempt + U(0, jitter)``, capped."""
    return AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=CappedBackoff(config),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )


async def safe_execute(
    policy: AsyncRetrying,
    func: Callable[P, Awaitable[R]],
    *args: P.args,
    **kwargs: P.kwargs,
) -> R:
    """Execute an async function under *policy*.

    A fresh copy of the policy is used per call so concurrent callers
    never share attempt state.  When attempts are exhausted the last
    error is re-raised unchanged.
    """
    try:
        async for attempt in policy.copy():
            with attempt:
                return await func(*args, **kwargs)
    except BackendError as e:
        name = getattr(func, "__name__", "call")
        logger.error(f"Operation failed: {name} - {e}")
        raise
