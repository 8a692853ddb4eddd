"""Pydantic models for config.json assistant configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, field_validator

_PLACEHOLDER = re.compile(r"^\$\{\w+\}$")


def _unset_placeholder(value: object) -> object:
    """Treat an unresolved ``${ENV_VAR}`` placeholder as "not configured"."""
    if isinstance(value, str) and (not value.strip() or _PLACEHOLDER.match(value)):
        return None
    return value


# Optional string setting; an unresolved placeholder counts as unset
OptionalSetting = Annotated[str | None, BeforeValidator(_unset_placeholder)]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StoreConfig(BaseModel):
    """Shared key-value store connection.  No ``url`` → in-memory store."""

    url: OptionalSetting = None
    key_prefix: str = Field("neural-seed:", alias="keyPrefix")
    max_connections: int = Field(50, alias="maxConnections")

    model_config = {"populate_by_name": True}


class LimitsConfig(BaseModel):
    """Abuse limits and context sizing."""

    rate_limit_window_seconds: int = Field(10, alias="rateLimitWindowSeconds")
    # Bookkeeping expiry of the rate-limit key; longer than the window
    rate_limit_record_ttl_seconds: int = Field(3600, alias="rateLimitRecordTtlSeconds")
    min_message_length: int = Field(2, alias="minMessageLength")
    max_message_length: int = Field(300, alias="maxMessageLength")
    history_limit: int = Field(10, alias="historyLimit")

    model_config = {"populate_by_name": True}


class RetentionConfig(BaseModel):
    """TTLs for persisted conversation data and usage counters."""

    message_ttl_seconds: int = Field(7 * 24 * 60 * 60, alias="messageTtlSeconds")
    usage_ttl_seconds: int = Field(48 * 60 * 60, alias="usageTtlSeconds")

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class BackendFamily(StrEnum):
    """Supported text-generation backend families."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


@dataclass(frozen=True)
class FamilyDefaults:
    """Per-family defaults used when the config leaves a field out."""

    models: tuple[str, ...]
    default_model: str
    max_tokens: int
    cost_per_token: float
    endpoint: str
    model_prefixes: tuple[str, ...]


BACKEND_DEFAULTS: dict[BackendFamily, FamilyDefaults] = {
    BackendFamily.OPENAI: FamilyDefaults(
        models=("gpt-4o-mini", "gpt-4o", "gpt-3.5-turbo"),
        default_model="gpt-4o-mini",
        max_tokens=300,
        cost_per_token=0.15 / 1_000_000,
        endpoint="https://api.openai.com/v1",
        model_prefixes=("gpt-", "o1", "o3", "o4"),
    ),
    BackendFamily.ANTHROPIC: FamilyDefaults(
        models=(
            "claude-3-haiku-20240307",
            "claude-3-5-sonnet-20240620",
            "claude-3-5-haiku-20241022",
            "claude-haiku-4-5-20251001",
        ),
        default_model="claude-3-5-haiku-20241022",
        max_tokens=1024,
        cost_per_token=1 / 1_000_000,
        endpoint="https://api.anthropic.com",
        model_prefixes=("claude-",),
    ),
    BackendFamily.GOOGLE: FamilyDefaults(
        models=("gemini-2.0-flash", "gemini-1.5-pro", "gemini-3-flash-preview"),
        default_model="gemini-2.0-flash",
        max_tokens=2048,
        cost_per_token=0.35 / 1_000_000,
        endpoint="https://generativelanguage.googleapis.com/v1beta",
        model_prefixes=("gemini-",),
    ),
}


class BackendConfig(BaseModel):
    """The single active backend for this deployment."""

    provider: BackendFamily = BackendFamily.OPENAI
    model_name: OptionalSetting = Field(None, alias="modelName")
    api_key: OptionalSetting = Field(None, alias="apiKey")
    endpoint: OptionalSetting = None
    max_tokens: int | None = Field(None, alias="maxTokens")
    timeout_seconds: float = Field(30.0, alias="timeoutSeconds")
    cost_per_token: float | None = Field(None, alias="costPerToken")
    # Anthropic only
    api_version: str = Field("2023-06-01", alias="apiVersion")

    model_config = {"populate_by_name": True}

    @field_validator("provider", mode="before")
    @classmethod
    def _normalise_provider(cls, value: object) -> object:
        if _unset_placeholder(value) is None:
            return BackendFamily.OPENAI
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "claude":
                return BackendFamily.ANTHROPIC
        return value

    @property
    def defaults(self) -> FamilyDefaults:
        return BACKEND_DEFAULTS[self.provider]

    @property
    def model(self) -> str:
        return self.model_name or self.defaults.default_model

    @property
    def resolved_max_tokens(self) -> int:
        return self.max_tokens or self.defaults.max_tokens

    @property
    def resolved_endpoint(self) -> str:
        return (self.endpoint or self.defaults.endpoint).rstrip("/")

    @property
    def resolved_cost_per_token(self) -> float:
        if self.cost_per_token is not None:
            return self.cost_per_token
        return self.defaults.cost_per_token

    def problems(self) -> list[str]:
        """Return human-readable configuration errors (empty when valid)."""
        errors: list[str] = []
        if not self.api_key:
            errors.append(f"apiKey is required when using the {self.provider} backend")
        if self.model_name:
            known = self.model_name in self.defaults.models
            prefixed = self.model_name.startswith(self.defaults.model_prefixes)
            if not (known or prefixed):
                expected = ", ".join(self.defaults.model_prefixes)
                errors.append(
                    f"Invalid model {self.model_name} for provider {self.provider}. "
                    f"Expected models starting with {expected}"
                )
        return errors


class RetryConfig(BaseModel):
    """Backoff for retryable backend failures: ``base * 2^attempt + jitter``."""

    max_attempts: int = Field(3, alias="maxAttempts", ge=1)
    base_delay_seconds: float = Field(0.5, alias="baseDelaySeconds", ge=0)
    max_delay_seconds: float = Field(8.0, alias="maxDelaySeconds", ge=0)
    jitter_seconds: float = Field(0.5, alias="jitterSeconds", ge=0)

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Prompt / collaborators
# ---------------------------------------------------------------------------


class PromptConfig(BaseModel):
    """Static prompt content, read once at startup."""

    assistant_name: str = Field("Neural Seed", alias="assistantName")
    instructions_path: str | None = Field(None, alias="instructionsPath")
    knowledge_path: str | None = Field(None, alias="knowledgePath")

    model_config = {"populate_by_name": True}


class StatsConfig(BaseModel):
    """Per-user statistics service.  No ``url`` → prompts carry no stats."""

    url: OptionalSetting = None
    timeout_seconds: float = Field(5.0, alias="timeoutSeconds")

    model_config = {"populate_by_name": True}


class AdminConfig(BaseModel):
    """Admin endpoints are disabled unless an ``apiKey`` is set."""

    api_key: OptionalSetting = Field(None, alias="apiKey")

    model_config = {"populate_by_name": True}


class TelemetryConfig(BaseModel):
    """Logging level and tracing exporter selection."""

    service_name: str = Field("neural-seed", alias="serviceName")
    log_level: str = Field("INFO", alias="logLevel")
    console_spans: bool = Field(False, alias="consoleSpans")

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Top-level
# ---------------------------------------------------------------------------


class AssistantConfig(BaseModel):
    """Complete configuration for one assistant deployment."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    model_config = {"populate_by_name": True}
