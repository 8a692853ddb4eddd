"""Pytest configuration and fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from neural_seed.config.models import AssistantConfig, BackendConfig, RetryConfig
from neural_seed.memory.kv_store import InMemoryKeyValueStore
from neural_seed.models.domain import BackendReply, PromptPayload, PromptSegment, TokenUsage
from neural_seed.providers.base import BaseBackend
from neural_seed.services.dispatcher import BackendDispatcher
from neural_seed.services.prompt_composer import PromptComposer

ADDRESS = "0xAbC0000000000000000000000000000000000001"
OTHER_ADDRESS = "0xdef0000000000000000000000000000000000002"


class FakeClock:
    """Manually advanced wall clock (seconds since the epoch)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedBackend(BaseBackend):
    """Backend that plays back a list of replies / exceptions in order."""

    name = "scripted"

    def __init__(self, outcomes: list[BackendReply | Exception] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.payloads: list[PromptPayload] = []

    @property
    def model(self) -> str:
        return "gpt-4o-mini"

    async def send(self, payload: PromptPayload) -> BackendReply:
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else make_reply()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_reply(
    text: str = "Head to the Mint tab and pick a strain.",
    *,
    input_tokens: int = 20,
    cache_read_tokens: int = 100,
    output_tokens: int = 15,
    truncated: bool = False,
) -> BackendReply:
    return BackendReply(
        text=text,
        usage=TokenUsage(
            input_tokens=input_tokens,
            cache_read_tokens=cache_read_tokens,
            output_tokens=output_tokens,
        ),
        model="gpt-4o-mini",
        truncated=truncated,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store sharing the fake clock."""
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def config():
    """Assistant config with an instant retry policy."""
    return AssistantConfig(
        backend=BackendConfig(provider="openai", api_key="test-key"),
        retry=RetryConfig(base_delay_seconds=0, max_delay_seconds=0, jitter_seconds=0),
    )


@pytest.fixture
def composer():
    return PromptComposer(
        (
            PromptSegment("instructions", "You are a test assistant."),
            PromptSegment("knowledge", "Plants need water.", cache_breakpoint=True),
        )
    )


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def dispatcher(backend, config):
    return BackendDispatcher(backend, config.retry, sleep=AsyncMock())
