"""Domain models shared across the application.

Conversations and messages are persisted as JSON using the camelCase
aliases, so records written by older deployments stay readable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MessageType(StrEnum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class Conversation(BaseModel):
    """A bounded message thread owned by one identity."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    address: str
    title: str
    created_at: int = Field(alias="createdAt")
    last_message_at: int = Field(alias="lastMessageAt")
    message_count: int = Field(0, alias="messageCount")
    total_tokens: int = Field(0, alias="totalTokens")
    model: str = ""


class Message(BaseModel):
    """A single persisted chat message.  Immutable once written."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    conversation_id: str = Field(alias="conversationId")
    address: str
    type: MessageType
    message: str
    timestamp: int
    model: str = ""
    tokens_used: int = Field(0, alias="tokensUsed")
    display_name: str = Field("", alias="displayName")
    truncated: bool = False


class UsageStats(BaseModel):
    """Aggregate usage figures for the admin dashboard."""

    model_config = ConfigDict(populate_by_name=True)

    total_conversations: int = Field(0, alias="totalConversations")
    total_messages: int = Field(0, alias="totalMessages")
    total_tokens: int = Field(0, alias="totalTokens")
    daily_usage: int = Field(0, alias="dailyUsage")
    daily_messages: int = Field(0, alias="dailyMessages")
    cost_estimate: float = Field(0.0, alias="costEstimate")
    daily_cost_estimate: float = Field(0.0, alias="dailyCostEstimate")


class DailyUsage(BaseModel):
    """Token / message totals for one identity on one UTC day."""

    model_config = ConfigDict(populate_by_name=True)

    address: str
    date: str
    tokens: int = 0
    messages: int = 0
    estimated_cost: float = Field(0.0, alias="estimatedCost")


# ---------------------------------------------------------------------------
# Prompt / backend exchange
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PromptSegment:
    """A block of static instructional content.

    ``cache_breakpoint`` marks the end of the prefix a backend may reuse
    from its prompt cache.
    """

    name: str
    text: str
    cache_breakpoint: bool = False


@dataclass(frozen=True)
class PromptPayload:
    """Backend-agnostic prompt: stable static segments + one per-turn block."""

    static_segments: tuple[PromptSegment, ...]
    dynamic: str

    @property
    def system_text(self) -> str:
        return "\n\n".join(segment.text for segment in self.static_segments)


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by a backend, normalised across families."""

    input_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self) -> None:
        for name in ("input_tokens", "cache_read_tokens", "cache_write_tokens", "output_tokens"):
            if not isinstance(getattr(self, name), int):
                raise TypeError(f"{name} must be an int, got {getattr(self, name)!r}")

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.cache_read_tokens
            + self.cache_write_tokens
            + self.output_tokens
        )


@dataclass(frozen=True)
class BackendReply:
    """Normalised completion returned by every backend variant."""

    text: str
    usage: TokenUsage
    model: str
    truncated: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.text, str) or not isinstance(self.model, str):
            raise TypeError("reply text and model must be strings")

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens


@dataclass(frozen=True)
class ChatExchange:
    """Result of one ``send_message`` call."""

    user_message: Message
    assistant_message: Message

    @property
    def conversation_id(self) -> str:
        return self.user_message.conversation_id
