"""Assistant orchestrator — one chat turn end to end.

Flow for :meth:`AssistantService.send_message`::

    validate → rate-limit gate → record → resolve conversation
      → history + stats → compose → persist user message
      → dispatch (retried) → persist assistant message → track usage

The user's message is always persisted before the backend is called, so a
backend failure never loses it; the caller then receives a fixed fallback
reply instead of the error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from neural_seed.config.models import AssistantConfig
from neural_seed.core.telemetry import trace_span
from neural_seed.memory.kv_store import BaseKeyValueStore
from neural_seed.models.domain import (
    ChatExchange,
    Conversation,
    DailyUsage,
    Message,
    MessageType,
    UsageStats,
)
from neural_seed.providers.base import BaseStatsProvider
from neural_seed.providers.stats import NullStatsProvider
from neural_seed.services.conversation_store import ConversationStore, normalize_identity
from neural_seed.services.dispatcher import BackendDispatcher
from neural_seed.services.exceptions import (
    MessageValidationError,
    RateLimitedError,
)
from neural_seed.services.prompt_composer import PromptComposer, format_stats
from neural_seed.services.rate_limiter import RateLimiter
from neural_seed.services.usage_tracker import UsageTracker
from neural_seed.services.validation import validate_message

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "Sorry, I encountered an error while processing your request. Please try again later."
)


class AssistantService:
    """Stateless per request; all shared state lives in the store.

    Usage::

        service = AssistantService(config, store, dispatcher, composer)
        exchange = await service.send_message("0xabc...", "How do I mint a plant?")
    """

    def __init__(
        self,
        config: AssistantConfig,
        store: BaseKeyValueStore,
        dispatcher: BackendDispatcher,
        composer: PromptComposer,
        stats_provider: BaseStatsProvider | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self.dispatcher = dispatcher
        self.composer = composer
        self.stats_provider = stats_provider or NullStatsProvider()
        self.rate_limiter = RateLimiter(store, config.limits, clock=clock)
        self.conversations = ConversationStore(
            store,
            config.retention,
            config.prompt,
            model=dispatcher.model,
            clock=clock,
        )
        self.usage = UsageTracker(store, config.retention, config.backend, clock=clock)

    # -- gatekeeping --------------------------------------------------------

    def validate_message(self, text: object) -> str | None:
        return validate_message(text, self.config.limits)

    async def check_rate_limit(self, identity: str) -> bool:
        return await self.rate_limiter.allowed(normalize_identity(identity))

    async def update_rate_limit(self, identity: str) -> None:
        await self.rate_limiter.record(normalize_identity(identity))

    # -- chat ---------------------------------------------------------------

    async def _stats_block(self, identity: str) -> str | None:
        try:
            return format_stats(await self.stats_provider.fetch_stats(identity))
        except Exception as e:
            logger.warning(f"Failed to fetch user stats for {identity[:6]}..., continuing without: {e}")
            return None

    @trace_span("send_message")
    async def send_message(self, identity: str, text: str) -> ChatExchange:
        """Run one chat turn.

        Raises:
            MessageValidationError: Text failed the length checks.
            RateLimitedError: The identity sent within the current window.
            StoreUnavailableError: The conversation or user message could
                not be written.
        """
        reason = self.validate_message(text)
        if reason:
            raise MessageValidationError(reason)

        identity = normalize_identity(identity)
        if not await self.rate_limiter.allowed(identity):
            raise RateLimitedError(identity)
        await self.rate_limiter.record(identity)

        message = text.strip()
        conversation_id = await self.conversations.resolve_active_conversation(
            identity, seed_message=message
        )
        history = await self.conversations.get_messages(
            conversation_id, limit=self.config.limits.history_limit
        )
        payload = self.composer.compose(message, history, await self._stats_block(identity))

        user_message = await self.conversations.append_message(
            identity, conversation_id, message, MessageType.USER
        )

        try:
            reply = await self.dispatcher.dispatch(payload)
        except Exception as e:
            logger.error(
                f"Backend failure (backend={self.dispatcher.backend_name}, "
                f"model={self.dispatcher.model}, identity={identity[:6]}...): "
                f"{type(e).__name__}: {e}"
            )
            assistant_message = await self.conversations.append_message(
                identity, conversation_id, FALLBACK_REPLY, MessageType.ASSISTANT
            )
            return ChatExchange(user_message=user_message, assistant_message=assistant_message)

        if reply.truncated:
            logger.warning(
                f"Reply truncated at max output tokens "
                f"(model={self.dispatcher.model}, conversation={conversation_id})"
            )

        assistant_message = await self.conversations.append_message(
            identity,
            conversation_id,
            reply.text,
            MessageType.ASSISTANT,
            tokens_used=reply.tokens_used,
            truncated=reply.truncated,
        )
        logger.info(
            f"Reply sent (conversation={conversation_id}, tokens={reply.tokens_used}, "
            f"cache_read={reply.usage.cache_read_tokens})"
        )

        try:
            await self.usage.track(identity, reply.tokens_used)
        except Exception as e:
            logger.warning(f"Failed to track usage for {identity[:6]}...: {e}")

        return ChatExchange(user_message=user_message, assistant_message=assistant_message)

    async def get_conversation_messages(self, conversation_id: str, limit: int = 50) -> list[Message]:
        return await self.conversations.get_messages(conversation_id, limit=limit)

    async def get_or_create_conversation(self, identity: str) -> str:
        return await self.conversations.resolve_active_conversation(identity)

    # -- admin --------------------------------------------------------------

    async def list_all_conversations(self) -> list[Conversation]:
        return await self.conversations.list_conversations()

    async def get_usage_stats(self) -> UsageStats:
        conversations = await self.list_all_conversations()
        total_tokens = sum(c.total_tokens for c in conversations)
        try:
            daily_tokens, daily_messages = await self.usage.daily_totals()
        except Exception as e:
            logger.error(f"Error calculating daily usage: {e}")
            daily_tokens, daily_messages = 0, 0

        return UsageStats(
            total_conversations=len(conversations),
            total_messages=sum(c.message_count for c in conversations),
            total_tokens=total_tokens,
            daily_usage=daily_tokens,
            daily_messages=daily_messages,
            cost_estimate=self.usage.estimate_cost(total_tokens),
            daily_cost_estimate=self.usage.estimate_cost(daily_tokens),
        )

    async def get_daily_usage(self, date: str | None = None) -> list[DailyUsage]:
        return await self.usage.daily_usage(date)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await self.conversations.delete_conversation(conversation_id)
