"""Google Gemini ``generateContent`` backend."""

from __future__ import annotations

from typing import Any

from neural_seed.config.models import BackendConfig
from neural_seed.core.http_client_pool import HttpClientPool
from neural_seed.models.domain import BackendReply, PromptPayload, TokenUsage
from neural_seed.providers.backends.http import MAPPING_ERRORS, malformed, post_json
from neural_seed.providers.base import BaseBackend
from neural_seed.providers.factory import register_provider


@register_provider("backend", "google")
class GoogleBackend(BaseBackend):
    """Gemini with the static segments as the system instruction."""

    name = "google"

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
            f"{self.config.resolved_endpoint}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self.config.api_key or ""},
            body={
                "systemInstruction": {
                    "parts": [{"text": s.text} for s in payload.static_segments]
                },
                "contents": [{"role": "user", "parts": [{"text": payload.dynamic}]}],
                "generationConfig": {
                    "maxOutputTokens": self.config.resolved_max_tokens,
                },
            },
        )

        try:
            return self._to_reply(data)
        except MAPPING_ERRORS as e:
            raise malformed(self.name, repr(e)) from e

    def _to_reply(self, data: dict[str, Any]) -> BackendReply:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise malformed(self.name, "missing candidates[0]")
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts)

        usage = data.get("usageMetadata") or {}
        cached = usage.get("cachedContentTokenCount") or 0
        prompt_tokens = usage.get("promptTokenCount") or 0
        # Thinking models bill reasoning tokens as output
        output = (usage.get("candidatesTokenCount") or 0) + (
            usage.get("thoughtsTokenCount") or 0
        )

        return BackendReply(
            text=text,
            usage=TokenUsage(
                input_tokens=max(prompt_tokens - cached, 0),
                cache_read_tokens=cached,
                output_tokens=output,
            ),
            model=data.get("modelVersion") or self.model,
            truncated=candidate.get("finishReason") == "MAX_TOKENS",
        )
