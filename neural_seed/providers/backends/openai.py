"""OpenAI Chat Completions backend."""

from __future__ import annotations

from typing import Any

from neural_seed.config.models import BackendConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.models.domain import BackendReply, PromptPayload, TokenUsage
from neural_seed.providers.backends.http import MAPPING_ERRORS, malformed, post_json
from neural_seed.providers.base import BaseBackend
from neural_seed.providers.factory import register_provider


@register_provider("backend", "openai")
class OpenAIBackend(BaseBackend):
    """Chat Completions with the static segments as one system message.

    OpenAI caches identical prompt prefixes automatically, so the only
    requirement is that the system message never changes between calls.
    """

    name = "openai"

    def __init__(self, config: BackendConfig, http_pool: HttpClientPool) -> None:
        self.config = config
        self.http_client = http_pool.get(self.name, timeout=config.timeout_seconds)

    @property
    def model(self) -> str:
        return self.config.model

    async def send(self, payload: PromptPayload) -> BackendReply:
        data = await post_json(
            self.http_client,
            self.name,
            f"{self.config.resolved_endpoint}/chat/completions",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            body={
                "model": self.model,
                "max_tokens": self.config.resolved_max_tokens,
                "messages": [
                    {"role": "system", "content": payload.system_text},
                    {"role": "user", "content": payload.dynamic},
                ],
            },
        )

        try:
            return self._to_reply(data)
        except MAPPING_ERRORS as e:
            raise malformed(self.name, repr(e)) from e

    def _to_reply(self, data: dict[str, Any]) -> BackendReply:
        choice = data["choices"][0]
        text = choice["message"]["content"] or ""

        usage = data.get("usage") or {}
        cached = (usage.get("prompt_tokens_details") or {}).get("cached_tokens") or 0
        prompt_tokens = usage.get("prompt_tokens") or 0

        return BackendReply(
            text=text,
            usage=TokenUsage(
                input_tokens=max(prompt_tokens - cached, 0),
                cache_read_tokens=cached,
                output_tokens=usage.get("completion_tokens") or 0,
            ),
            model=data.get("model") or self.model,
            truncated=choice.get("finish_reason") == "length",
        )
