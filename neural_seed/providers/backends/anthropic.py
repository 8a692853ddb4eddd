"""Anthropic Messages API backend."""

from __future__ import annotations

from typing import Any

from neural_seed.config.models import BackendConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.models.domain import BackendReply, PromptPayload, TokenUsage
from neural_seed.providers.backends.http import MAPPING_ERRORS, malformed, post_json
from neural_seed.providers.base import BaseBackend
from neural_seed.providers.factory import register_provider


@register_provider("backend", "anthropic")
class AnthropicBackend(BaseBackend):
    """Messages API with explicit prompt-cache breakpoints.

    Each static segment becomes its own system block; the block flagged as
    the cache breakpoint carries ``cache_control`` so the whole prefix up to
    and including it is served from the prompt cache on later calls.
    """

    name = "anthropic"

    def __init__(self, config: BackendConfig, http_pool: HttpClientPool) -> None:
        self.config = config
        self.http_client = http_pool.get(self.name, timeout=config.timeout_seconds)

    @property
    def model(self) -> str:
        return self.config.model

    @staticmethod
    def _system_blocks(payload: PromptPayload) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for segment in payload.static_segments:
            block: dict[str, Any] = {"type": "text", "text": segment.text}
            if segment.cache_breakpoint:
                block["cache_control"] = {"type": "ephemeral"}
            blocks.append(block)
        return blocks

    async def send(self, payload: PromptPayload) -> BackendReply:
        data = await post_json(
            self.http_client,
            self.name,
            f"{self.config.resolved_endpoint}/v1/messages",
            headers={
                "x-api-key": self.config.api_key or "",
                "anthropic-version": self.config.api_version,
            },
            body={
                "model": self.model,
                "max_tokens": self.config.resolved_max_tokens,
                "system": self._system_blocks(payload),
                "messages": [{"role": "user", "content": payload.dynamic}],
            },
        )
        try:
            return self._to_reply(data)
        except MAPPING_ERRORS as e:
            raise malformed(self.name, repr(e)) from e

    def _to_reply(self, data: dict[str, Any]) -> BackendReply:
        content = data.get("content")
        if not isinstance(content, list):
            raise malformed(self.name, "missing content list")
        text = "".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )

        usage = data.get("usage") or {}
        return BackendReply(
            text=text,
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens") or 0,
                cache_read_tokens=usage.get("cache_read_input_tokens") or 0,
                cache_write_tokens=usage.get("cache_creation_input_tokens") or 0,
                output_tokens=usage.get("output_tokens") or 0,
            ),
            model=data.get("model") or self.model,
            truncated=data.get("stop_reason") == "max_tokens",
        )
