"""Request and response schemas for the API layer."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from neural_seed.models.domain import (
    ChatExchange,
    Conversation,
    DailyUsage,
    Message,
    UsageStats,
)


class SendMessageRequest(BaseModel):
    """Incoming chat message.

    Fields are loosely typed on purpose: shape problems are reported as
    400s with the same wording as the length checks.
    """

    address: Any = None
    message: Any = None


class SendMessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user_message: Message = Field(alias="userMessage")
    assistant_message: Message = Field(alias="assistantMessage")
    conversation_id: str = Field(alias="conversationId")

    @classmethod
    def from_exchange(cls, exchange: ChatExchange) -> SendMessageResponse:
        return cls(
            user_message=exchange.user_message,
            assistant_message=exchange.assistant_message,
            conversation_id=exchange.conversation_id,
        )


class MessagesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message] = Field(default_factory=list)
    conversation_id: str = Field(alias="conversationId")
    count: int = 0
    timestamp: int


class ConversationsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversations: list[Conversation] = Field(default_factory=list)
    count: int = 0
    stats: UsageStats | None = None
    include_stats: bool = Field(False, alias="includeStats")


class DeleteConversationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    conversation_id: str = Field(alias="conversationId")


class DailyUsageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    usage: list[DailyUsage] = Field(default_factory=list)
    total_tokens: int = Field(0, alias="totalTokens")
    total_messages: int = Field(0, alias="totalMessages")
    estimated_cost: float = Field(0.0, alias="estimatedCost")


class HealthResponse(BaseModel):
    """Health-check response."""

    status: str = "ok"
    backend: str
    model: str
    store: str
