"""Tests for the backend variants against a mocked HTTP transport."""

import json

import httpx
import pytest

from neural_seed.config.models import BackendConfig, BackendFamily
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.models.domain import PromptPayload, PromptSegment
from neural_seed.providers.backends.anthropic import AnthropicBackend
from neural_seed.providers.backends.google import GoogleBackend
from neural_seed.providers.backends.openai import OpenAIBackend
from neural_seed.providers.factory import ProviderFactory, register_provider
from neural_seed.services.exceptions import BackendError

PAYLOAD = PromptPayload(
    static_segments=(
        PromptSegment("instructions", "Be brief."),
        PromptSegment("knowledge", "Plants need water.", cache_breakpoint=True),
    ),
    dynamic="User Question: How do I water?",
)


def pool_for(handler) -> HttpClientPool:
    return HttpClientPool(transport=httpx.MockTransport(handler))


def json_response(status: int, body: dict) -> httpx.Response:
    return httpx.Response(status, json=body)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_openai_request_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return json_response(
            200,
            {
                "model": "gpt-4o-mini",
                "choices": [
                    {"message": {"role": "assistant", "content": "Use a can."}, "finish_reason": "stop"}
                ],
                "usage": {
                    "prompt_tokens": 120,
                    "completion_tokens": 30,
                    "prompt_tokens_details": {"cached_tokens": 100},
                },
            },
        )

    backend = OpenAIBackend(
        config=BackendConfig(provider="openai", api_key="sk-test"), http_pool=pool_for(handler)
    )
    reply = await backend.send(PAYLOAD)

    assert seen["url"] == "https://api.openai.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["max_tokens"] == 300
    assert seen["body"]["messages"] == [
        {"role": "system", "content": "Be brief.\n\nPlants need water."},
        {"role": "user", "content": "User Question: How do I water?"},
    ]

    assert reply.text == "Use a can."
    assert reply.usage.input_tokens == 20
    assert reply.usage.cache_read_tokens == 100
    assert reply.usage.output_tokens == 30
    assert reply.tokens_used == 150
    assert reply.truncated is False


@pytest.mark.asyncio
async def test_openai_length_finish_is_truncated():
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(
            200,
            {
                "choices": [{"message": {"content": "Use a"}, "finish_reason": "length"}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 300},
            },
        )

    backend = OpenAIBackend(
        config=BackendConfig(provider="openai", api_key="k"), http_pool=pool_for(handler)
    )
    reply = await backend.send(PAYLOAD)

    assert reply.truncated is True
    assert reply.tokens_used == 310


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_anthropic_cache_breakpoint_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return json_response(
            200,
            {
                "model": "claude-3-5-haiku-20241022",
                "content": [{"type": "text", "text": "Water daily."}],
                "stop_reason": "max_tokens",
                "usage": {
                    "input_tokens": 12,
                    "cache_read_input_tokens": 900,
                    "cache_creation_input_tokens": 0,
                    "output_tokens": 40,
                },
            },
        )

    backend = AnthropicBackend(
        config=BackendConfig(provider="claude", api_key="ant-key"), http_pool=pool_for(handler)
    )
    reply = await backend.send(PAYLOAD)

    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["headers"]["x-api-key"] == "ant-key"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["system"] == [
        {"type": "text", "text": "Be brief."},
        {"type": "text", "text": "Plants need water.", "cache_control": {"type": "ephemeral"}},
    ]
    assert seen["body"]["messages"] == [
        {"role": "user", "content": "User Question: How do I water?"}
    ]

    assert reply.text == "Water daily."
    assert reply.usage.cache_read_tokens == 900
    assert reply.tokens_used == 952
    assert reply.truncated is True


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_google_request_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["x-goog-api-key"]
        seen["body"] = json.loads(request.content)
        return json_response(
            200,
            {
                "candidates": [
                    {
                        "content": {"parts": [{"text": "Water "}, {"text": "at dawn."}]},
                        "finishReason": "STOP",
                    }
                ],
                "usageMetadata": {
                    "promptTokenCount": 500,
                    "cachedContentTokenCount": 400,
                    "candidatesTokenCount": 20,
                    "thoughtsTokenCount": 5,
                },
            },
        )

    backend = GoogleBackend(
        config=BackendConfig(provider="google", api_key="g-key"), http_pool=pool_for(handler)
    )
    reply = await backend.send(PAYLOAD)

    assert seen["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
    )
    assert seen["key"] == "g-key"
    assert seen["body"]["systemInstruction"] == {
        "parts": [{"text": "Be brief."}, {"text": "Plants need water."}]
    }
    assert seen["body"]["generationConfig"] == {"maxOutputTokens": 2048}

    assert reply.text == "Water at dawn."
    assert reply.usage.input_tokens == 100
    assert reply.usage.cache_read_tokens == 400
    assert reply.usage.output_tokens == 25
    assert reply.tokens_used == 525
    assert reply.truncated is False


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, retryable",
    [(429, True), (500, True), (503, True), (408, True), (401, False), (400, False), (404, False)],
)
async def test_http_status_classification(status, retryable):
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(status, {"error": {"message": "nope"}})

    backend = OpenAIBackend(
        config=BackendConfig(provider="openai", api_key="k"), http_pool=pool_for(handler)
    )

    with pytest.raises(BackendError) as exc_info:
        await backend.send(PAYLOAD)

    assert exc_info.value.status_code == status
    assert exc_info.value.retryable is retryable
    assert "nope" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_error_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = AnthropicBackend(
        config=BackendConfig(provider="anthropic", api_key="k"), http_pool=pool_for(handler)
    )

    with pytest.raises(BackendError) as exc_info:
        await backend.send(PAYLOAD)

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_undecodable_body_is_not_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    backend = GoogleBackend(
        config=BackendConfig(provider="google", api_key="k"), http_pool=pool_for(handler)
    )

    with pytest.raises(BackendError) as exc_info:
        await backend.send(PAYLOAD)

    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_unexpected_shape_is_not_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response(200, {"choices": []})

    backend = OpenAIBackend(
        config=BackendConfig(provider="openai", api_key="k"), http_pool=pool_for(handler)
    )

    with pytest.raises(BackendError) as exc_info:
        await backend.send(PAYLOAD)

    assert exc_info.value.retryable is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "backend_cls, family, body",
    [
        (AnthropicBackend, "anthropic", {"content": [{"type": "text", "text": None}]}),
        (
            AnthropicBackend,
            "anthropic",
            {"content": [{"type": "text", "text": "hi"}], "usage": {"output_tokens": "many"}},
        ),
        (AnthropicBackend, "anthropic", {"content": [], "usage": ["not", "a", "dict"]}),
        (GoogleBackend, "google", {"candidates": ["not-a-dict"]}),
        (GoogleBackend, "google", {"candidates": [{"content": {"parts": [42]}}]}),
        (OpenAIBackend, "openai", {"choices": [{"message": {"content": ["a", "list"]}}]}),
        (OpenAIBackend, "openai", {"choices": ["not-a-dict"]}),
    ],
)
async def test_body_with_wrong_field_types_is_backend_error(backend_cls, family, body):
    backend = backend_cls(
        config=BackendConfig(provider=family, api_key="k"),
        http_pool=pool_for(lambda r: json_response(200, body)),
    )

    with pytest.raises(BackendError, match="unexpected response shape") as exc_info:
        await backend.send(PAYLOAD)

    assert exc_info.value.retryable is False


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_factory_creates_registered_family():
    pool = HttpClientPool()
    backend = ProviderFactory.create(
        "backend", BackendFamily.ANTHROPIC, BackendConfig(provider="anthropic", api_key="k"), pool
    )
    assert isinstance(backend, AnthropicBackend)
    assert ("backend", "openai") in ProviderFactory.available("backend")


def test_factory_rejects_unknown_family():
    with pytest.raises(ValueError, match="No provider registered"):
        ProviderFactory.create("backend", "mistral", BackendConfig(api_key="k"), HttpClientPool())


def test_family_cannot_be_registered_twice():
    class SecondOpenAI(OpenAIBackend):
        pass

    with pytest.raises(ValueError, match="already registered by OpenAIBackend"):
        register_provider("backend", "openai")(SecondOpenAI)

    assert register_provider("backend", "openai")(OpenAIBackend) is OpenAIBackend
    assert ProviderFactory.available("backend").count(("backend", "openai")) == 1
