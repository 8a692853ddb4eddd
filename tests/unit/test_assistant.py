"""Unit tests for AssistantService (the chat turn orchestrator)."""

from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import ADDRESS, ScriptedBackend, make_reply

from neural_seed.config.models import BackendConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.models.domain import MessageType
from neural_seed.providers.backends.anthropic import AnthropicBackend
from neural_seed.providers.base import BaseStatsProvider
from neural_seed.services.assistant import FALLBACK_REPLY, AssistantService
from neural_seed.services.dispatcher import BackendDispatcher
from neural_seed.services.exceptions import (
    BackendError,
    MessageValidationError,
    RateLimitedError,
    StoreUnavailableError,
)

IDENTITY = ADDRESS.lower()


@pytest.fixture
def stats_provider():
    provider = AsyncMock(spec=BaseStatsProvider)
    provider.fetch_stats.return_value = None
    return provider


@pytest.fixture
def service(config, store, dispatcher, composer, stats_provider, clock):
    return AssistantService(config, store, dispatcher, composer, stats_provider, clock=clock)


def service_with(config, store, composer, clock, outcomes) -> tuple[AssistantService, ScriptedBackend]:
    backend = ScriptedBackend(outcomes)
    dispatcher = BackendDispatcher(backend, config.retry, sleep=AsyncMock())
    return AssistantService(config, store, dispatcher, composer, clock=clock), backend


@pytest.mark.asyncio
async def test_first_message_creates_titled_conversation(service, backend):
    exchange = await service.send_message(ADDRESS, "How do I mint a plant?")

    assert exchange.user_message.address == IDENTITY
    assert exchange.user_message.type == MessageType.USER
    assert exchange.assistant_message.type == MessageType.ASSISTANT
    assert exchange.assistant_message.display_name == "Neural Seed"
    assert exchange.assistant_message.tokens_used == 135
    assert exchange.user_message.conversation_id == exchange.assistant_message.conversation_id

    record = await service.conversations.get_conversation(IDENTITY, exchange.conversation_id)
    assert record.title == "Minting Plants"
    assert record.message_count == 2
    assert record.total_tokens == 135

    messages = await service.get_conversation_messages(exchange.conversation_id)
    assert [m.id for m in messages] == [exchange.user_message.id, exchange.assistant_message.id]
    assert backend.payloads[0].dynamic == "User Question: How do I mint a plant?"


@pytest.mark.asyncio
async def test_second_message_is_rate_limited_then_allowed(service, backend, clock):
    first = await service.send_message(ADDRESS, "How do I mint a plant?")

    with pytest.raises(RateLimitedError):
        await service.send_message(ADDRESS, "And then what?")

    clock.advance(10)
    second = await service.send_message(ADDRESS, "And then what?")

    assert second.conversation_id == first.conversation_id
    assert backend.payloads[1].dynamic.startswith(
        "Previous conversation:\nUser: How do I mint a plant?\nAssistant: "
    )
    assert backend.payloads[0].static_segments is backend.payloads[1].static_segments


@pytest.mark.asyncio
async def test_invalid_message_is_rejected_before_rate_limit(service, store):
    with pytest.raises(MessageValidationError) as exc_info:
        await service.send_message(ADDRESS, "x")

    assert exc_info.value.reason == "Message is too short"
    assert await store.get(f"ratelimit:{IDENTITY}") is None


@pytest.mark.asyncio
async def test_backend_failure_persists_fallback(config, store, composer, clock):
    service, backend = service_with(
        config, store, composer, clock, [BackendError("scripted", "invalid api key", status_code=401)]
    )

    exchange = await service.send_message(ADDRESS, "How do I mint a plant?")

    assert exchange.assistant_message.message == FALLBACK_REPLY
    assert exchange.assistant_message.tokens_used == 0
    assert len(backend.payloads) == 1

    messages = await service.get_conversation_messages(exchange.conversation_id)
    assert [m.message for m in messages] == ["How do I mint a plant?", FALLBACK_REPLY]
    assert await service.usage.daily_totals() == (0, 0)


@pytest.mark.asyncio
async def test_retryable_failures_exhausted_fall_back(config, store, composer, clock):
    overloaded = BackendError("scripted", "overloaded", status_code=503, retryable=True)
    service, backend = service_with(config, store, composer, clock, [overloaded] * 3)

    exchange = await service.send_message(ADDRESS, "hello there")

    assert exchange.assistant_message.message == FALLBACK_REPLY
    assert len(backend.payloads) == config.retry.max_attempts


@pytest.mark.asyncio
async def test_unexpected_dispatch_error_falls_back(config, store, composer, clock):
    service, backend = service_with(
        config, store, composer, clock, [TypeError("unsupported operand")]
    )

    exchange = await service.send_message(ADDRESS, "How do I mint a plant?")

    assert exchange.assistant_message.message == FALLBACK_REPLY
    assert len(backend.payloads) == 1
    record = await service.conversations.get_conversation(IDENTITY, exchange.conversation_id)
    assert record.message_count == 2


@pytest.mark.asyncio
async def test_malformed_backend_body_falls_back(config, store, composer, clock):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": None}],
                "usage": {"input_tokens": 10, "output_tokens": 1},
                "stop_reason": "end_turn",
            },
        )

    backend = AnthropicBackend(
        BackendConfig(provider="anthropic", api_key="k"),
        HttpClientPool(transport=httpx.MockTransport(handler)),
    )
    dispatcher = BackendDispatcher(backend, config.retry, sleep=AsyncMock())
    service = AssistantService(config, store, dispatcher, composer, clock=clock)

    exchange = await service.send_message(ADDRESS, "How do I mint a plant?")

    assert exchange.user_message.message == "How do I mint a plant?"
    assert exchange.assistant_message.message == FALLBACK_REPLY
    messages = await service.get_conversation_messages(exchange.conversation_id)
    assert [m.message for m in messages] == ["How do I mint a plant?", FALLBACK_REPLY]


@pytest.mark.asyncio
async def test_truncated_reply_is_flagged(config, store, composer, clock):
    service, _ = service_with(config, store, composer, clock, [make_reply("Cut", truncated=True)])

    exchange = await service.send_message(ADDRESS, "Tell me everything")

    assert exchange.assistant_message.truncated is True
    assert exchange.assistant_message.message == "Cut"


@pytest.mark.asyncio
async def test_stats_are_included_when_available(service, backend, stats_provider):
    stats_provider.fetch_stats.return_value = {"plants": 3}

    await service.send_message(ADDRESS, "How are my plants?")

    stats_provider.fetch_stats.assert_awaited_once_with(IDENTITY)
    assert "User's Current Stats:\n" in backend.payloads[0].dynamic
    assert '"plants": 3' in backend.payloads[0].dynamic


@pytest.mark.asyncio
async def test_stats_failure_does_not_block_reply(service, backend, stats_provider):
    stats_provider.fetch_stats.side_effect = RuntimeError("stats service down")

    exchange = await service.send_message(ADDRESS, "How are my plants?")

    assert exchange.assistant_message.message == make_reply().text
    assert "User's Current Stats" not in backend.payloads[0].dynamic


@pytest.mark.asyncio
async def test_usage_tracking_failure_is_tolerated(service, monkeypatch):
    monkeypatch.setattr(
        service.usage, "track", AsyncMock(side_effect=StoreUnavailableError("down"))
    )

    exchange = await service.send_message(ADDRESS, "hello there")

    assert exchange.assistant_message.message == make_reply().text


@pytest.mark.asyncio
async def test_store_failure_on_create_propagates(service, store, monkeypatch):
    monkeypatch.setattr(store, "sadd", AsyncMock(side_effect=StoreUnavailableError("down")))

    with pytest.raises(StoreUnavailableError):
        await service.send_message(ADDRESS, "hello there")


@pytest.mark.asyncio
async def test_rate_limit_helpers(service):
    assert await service.check_rate_limit(ADDRESS) is True
    await service.update_rate_limit(ADDRESS)
    assert await service.check_rate_limit(ADDRESS.lower()) is False


@pytest.mark.asyncio
async def test_usage_stats_and_daily_usage(service):
    await service.send_message(ADDRESS, "How do I mint a plant?")

    stats = await service.get_usage_stats()
    assert stats.total_conversations == 1
    assert stats.total_messages == 2
    assert stats.total_tokens == 135
    assert stats.daily_usage == 135
    assert stats.daily_messages == 1
    assert stats.cost_estimate == pytest.approx(135 * 0.15 / 1_000_000)

    usage = await service.get_daily_usage()
    assert [(u.address, u.tokens, u.messages) for u in usage] == [(IDENTITY, 135, 1)]


@pytest.mark.asyncio
async def test_delete_then_new_conversation(service):
    exchange = await service.send_message(ADDRESS, "How do I mint a plant?")

    assert await service.delete_conversation(exchange.conversation_id) is True
    assert await service.get_conversation_messages(exchange.conversation_id) == []
    assert await service.list_all_conversations() == []

    fresh = await service.get_or_create_conversation(ADDRESS)
    assert fresh != exchange.conversation_id
