"""Conversation and message persistence over the shared key-value store.

Key layout (logical keys; the store adapter adds its namespace prefix)::

    conversation:{identity}:{id}                 Conversation JSON
    conversation-active-pointer:{identity}       id of the active conversation
    message:{conversation_id}:{ts_ms}:{msg_id}   Message JSON
    conversation-message-order:{conversation_id} list of message keys, oldest first
    conversation-order-migrated:{conversation_id} one-shot backfill marker
    conversation-index                           set of conversation record keys

Every key expires after the retention window.  Nothing is ever locked:
counters on the conversation record are read-modify-write and may
under-count under concurrent appends.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from collections.abc import Callable

from pydantic import ValidationError

from neural_seed.config.models import PromptConfig, RetentionConfig
from neural_seed.memory.kv_store import BaseKeyValueStore
from neural_seed.models.domain import Conversation, Message, MessageType

logger = logging.getLogger(__name__)

CONVERSATION_INDEX_KEY = "conversation-index"
MGET_CHUNK_SIZE = 100

# First matching rule wins
_TITLE_RULES: list[tuple[Callable[[str], bool], str]] = [
    (lambda t: "mint" in t and "plant" in t, "Minting Plants"),
    (lambda t: "mint" in t and "land" in t, "Minting Land"),
    (lambda t: "plant" in t and ("care" in t or "feed" in t), "Plant Care"),
    (lambda t: "swap" in t or "token" in t, "Token Swapping"),
    (lambda t: "land" in t or "building" in t, "Land Management"),
    (lambda t: "item" in t or "shop" in t, "Items & Shop"),
    (lambda t: "attack" in t or "raid" in t, "Combat & Attacks"),
    (lambda t: "stake" in t, "Staking & LEAF"),
    (lambda t: "help" in t or "how" in t, "Game Help"),
    (lambda t: "wallet" in t or "connect" in t, "Wallet Issues"),
    (lambda t: "transfer" in t or "asset" in t, "Asset Transfer"),
]

_ADDRESS_LIKE = re.compile(r"^0x[0-9a-fA-F]{8,}$")


def normalize_identity(identity: str) -> str:
    return identity.strip().lower()


def generate_title(seed_message: str | None) -> str:
    """Short human-readable title derived from the first message."""
    if not seed_message or not seed_message.strip():
        return "New Conversation"

    lowered = seed_message.lower()
    for matches, title in _TITLE_RULES:
        if matches(lowered):
            return title

    title = " ".join(seed_message.split()[:3])
    if len(title) > 20:
        return title[:20] + "..."
    return title


def format_display_name(identity: str) -> str:
    """``0x1234...abcd`` for wallet addresses, the identity itself otherwise."""
    if _ADDRESS_LIKE.match(identity):
        return f"{identity[:6]}...{identity[-4:]}"
    return identity


def chunked(keys: list[str], size: int = MGET_CHUNK_SIZE) -> list[list[str]]:
    return [keys[i : i + size] for i in range(0, len(keys), size)]


def _message_timestamp(key: str) -> int:
    """Timestamp embedded in ``message:{cid}:{ts}:{mid}``; 0 when unparseable."""
    try:
        return int(key.rsplit(":", 2)[1])
    except (IndexError, ValueError):
        return 0


class ConversationStore:
    """Active-conversation resolution, message append/read, admin listing."""

    def __init__(
        self,
        store: BaseKeyValueStore,
        retention: RetentionConfig,
        prompt_config: PromptConfig | None = None,
        *,
        model: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = retention.message_ttl_seconds
        self.assistant_name = (prompt_config or PromptConfig()).assistant_name
        self.model = model
        self._clock = clock

    # -- keys -------------------------------------------------------------

    @staticmethod
    def conversation_key(identity: str, conversation_id: str) -> str:
        return f"conversation:{identity}:{conversation_id}"

    @staticmethod
    def pointer_key(identity: str) -> str:
        return f"conversation-active-pointer:{identity}"

    @staticmethod
    def order_key(conversation_id: str) -> str:
        return f"conversation-message-order:{conversation_id}"

    @staticmethod
    def migration_marker_key(conversation_id: str) -> str:
        return f"conversation-order-migrated:{conversation_id}"

    @staticmethod
    def message_key(conversation_id: str, timestamp: int, message_id: str) -> str:
        return f"message:{conversation_id}:{timestamp}:{message_id}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # -- conversations ----------------------------------------------------

    async def resolve_active_conversation(
        self, identity: str, seed_message: str | None = None
    ) -> str:
        """Return the identity's active conversation id, creating one if needed.

        Raises:
            StoreUnavailableError: If a new conversation cannot be written.
        """
        identity = normalize_identity(identity)
        pointer = self.pointer_key(identity)

        try:
            active_id = await self.store.get(pointer)
        except Exception as e:
            logger.warning(f"Active conversation lookup failed for {identity[:6]}...: {e}")
            active_id = None
        if active_id:
            return active_id

        recovered = await self._recover_pointer(identity)
        if recovered:
            return recovered

        now = self._now_ms()
        conversation = Conversation(
            id=uuid.uuid4().hex,
            address=identity,
            title=generate_title(seed_message),
            created_at=now,
            last_message_at=now,
            model=self.model,
        )
        record_key = self.conversation_key(identity, conversation.id)

        await (
            self.store.pipeline()
            .set(record_key, conversation.model_dump_json(by_alias=True), ttl=self.ttl)
            .set(pointer, conversation.id, ttl=self.ttl)
            .sadd(CONVERSATION_INDEX_KEY, record_key)
            .execute()
        )
        logger.info(f"Created conversation {conversation.id} for {identity[:6]}...")
        return conversation.id

    async def _recover_pointer(self, identity: str) -> str | None:
        """Re-point an identity at its newest surviving conversation record.

        Covers pointers that expired (or were never written) while the
        record itself is still live.  Lookup failures are logged and treated
        as "nothing to recover".
        """
        try:
            keys = await self.store.scan_keys(self.conversation_key(identity, "*"))
            candidates: list[tuple[str, Conversation]] = []
            for chunk in chunked(sorted(keys)):
                for key, raw in zip(chunk, await self.store.mget(chunk)):
                    conversation = self._parse_conversation(raw)
                    if conversation is not None:
                        candidates.append((key, conversation))
            if not candidates:
                return None

            record_key, conversation = max(candidates, key=lambda c: c[1].last_message_at)
            await (
                self.store.pipeline()
                .set(self.pointer_key(identity), conversation.id, ttl=self.ttl)
                .sadd(CONVERSATION_INDEX_KEY, record_key)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Existing conversation lookup failed for {identity[:6]}...: {e}")
            return None

        logger.info(f"Restored active conversation {conversation.id} for {identity[:6]}...")
        return conversation.id

    async def get_conversation(self, identity: str, conversation_id: str) -> Conversation | None:
        raw = await self.store.get(
            self.conversation_key(normalize_identity(identity), conversation_id)
        )
        return self._parse_conversation(raw)

    @staticmethod
    def _parse_conversation(raw: str | None) -> Conversation | None:
        if raw is None:
            return None
        try:
            return Conversation.model_validate_json(raw)
        except ValidationError:
            return None

    # -- messages ---------------------------------------------------------

    async def append_message(
        self,
        identity: str,
        conversation_id: str,
        content: str,
        type: MessageType,
        tokens_used: int = 0,
        truncated: bool = False,
    ) -> Message:
        """Persist one message and bump the conversation's counters.

        Raises:
            StoreUnavailableError: If the message itself cannot be written.
        """
        identity = normalize_identity(identity)
        timestamp = self._now_ms()
        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            address=identity,
            type=type,
            message=content.strip(),
            timestamp=timestamp,
            model=self.model,
            tokens_used=tokens_used,
            display_name=(
                self.assistant_name
                if type == MessageType.ASSISTANT
                else format_display_name(identity)
            ),
            truncated=truncated,
        )
        key = self.message_key(conversation_id, timestamp, message.id)
        order_key = self.order_key(conversation_id)

        await (
            self.store.pipeline()
            .set(key, message.model_dump_json(by_alias=True), ttl=self.ttl)
            .rpush(order_key, key)
            .expire(order_key, self.ttl)
            .execute()
        )

        record_key = self.conversation_key(identity, conversation_id)
        conversation = self._parse_conversation(await self.store.get(record_key))
        if conversation is None:
            logger.warning(
                f"Conversation {conversation_id} has no record; skipping metadata update"
            )
            return message

        conversation.last_message_at = timestamp
        conversation.message_count += 1
        conversation.total_tokens += tokens_used
        await self.store.set(
            record_key, conversation.model_dump_json(by_alias=True), ttl=self.ttl
        )
        return message

    async def get_messages(self, conversation_id: str, limit: int = 50) -> list[Message]:
        """Last *limit* messages, oldest first.  Store failures yield ``[]``."""
        if limit <= 0:
            return []
        try:
            keys = await self.store.lrange(self.order_key(conversation_id), -limit, -1)
            if not keys:
                keys = await self._repair_order(conversation_id, limit)
            if not keys:
                return []
            messages: list[Message] = []
            for chunk in chunked(keys):
                for raw in await self.store.mget(chunk):
                    if raw is None:
                        continue
                    try:
                        messages.append(Message.model_validate_json(raw))
                    except ValidationError:
                        logger.warning(f"Skipping malformed message in {conversation_id}")
            return messages
        except Exception as e:
            logger.error(f"Error fetching messages for {conversation_id}: {e}")
            return []

    async def _repair_order(self, conversation_id: str, limit: int) -> list[str]:
        """Rebuild the order list for messages written before it existed.

        Only the caller that wins the set-if-absent marker writes the list
        back; everyone else returns the same reconstruction read-only.
        """
        legacy = await self.store.scan_keys(f"message:{conversation_id}:*")
        if not legacy:
            return []
        ordered = sorted(legacy, key=lambda k: (_message_timestamp(k), k))

        marker = self.migration_marker_key(conversation_id)
        claimed = await self.store.set(marker, "1", ttl=self.ttl, only_if_absent=True)
        if claimed:
            order_key = self.order_key(conversation_id)
            present = set(await self.store.lrange(order_key, 0, -1))
            missing = [k for k in ordered if k not in present]
            if missing:
                # lpush prepends one at a time, so push newest first
                await self.store.lpush(order_key, *reversed(missing))
            await self.store.expire(order_key, self.ttl)
            logger.info(
                f"Backfilled {len(missing)} message keys for conversation {conversation_id}"
            )
        return ordered[-limit:]

    # -- admin ------------------------------------------------------------

    async def _record_keys(self, conversation_id: str) -> list[str]:
        suffix = f":{conversation_id}"
        members = await self.store.smembers(CONVERSATION_INDEX_KEY)
        keys = [m for m in members if m.endswith(suffix)]
        if not keys:
            keys = await self.store.scan_keys(f"conversation:*:{conversation_id}")
        return keys

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Remove every key belonging to a conversation.  Never raises."""
        try:
            order_key = self.order_key(conversation_id)
            message_keys = set(await self.store.lrange(order_key, 0, -1))
            message_keys.update(await self.store.scan_keys(f"message:{conversation_id}:*"))
            record_keys = await self._record_keys(conversation_id)

            owners = {key.split(":")[1] for key in record_keys if key.count(":") >= 2}
            stale_pointers: list[str] = []
            for owner in owners:
                if await self.store.get(self.pointer_key(owner)) == conversation_id:
                    stale_pointers.append(self.pointer_key(owner))

            pipe = self.store.pipeline()
            if message_keys:
                pipe.delete(*sorted(message_keys))
            if record_keys:
                pipe.delete(*record_keys)
                pipe.srem(CONVERSATION_INDEX_KEY, *record_keys)
            if stale_pointers:
                pipe.delete(*stale_pointers)
            pipe.delete(order_key, self.migration_marker_key(conversation_id))
            await pipe.execute()
        except Exception as e:
            logger.error(f"Error deleting conversation {conversation_id}: {e}")
            return False

        logger.info(
            f"Deleted conversation {conversation_id} ({len(message_keys)} messages)"
        )
        return True

    async def list_conversations(self) -> list[Conversation]:
        """All live conversations, most recently active first."""
        keys = sorted(await self.store.smembers(CONVERSATION_INDEX_KEY))
        conversations: list[Conversation] = []
        expired: list[str] = []
        for chunk in chunked(keys):
            for key, raw in zip(chunk, await self.store.mget(chunk)):
                if raw is None:
                    expired.append(key)
                    continue
                conversation = self._parse_conversation(raw)
                if conversation is not None:
                    conversations.append(conversation)

        if expired:
            try:
                await self.store.srem(CONVERSATION_INDEX_KEY, *expired)
            except Exception as e:
                logger.warning(f"Failed to prune {len(expired)} expired index entries: {e}")

        conversations.sort(key=lambda c: c.last_message_at, reverse=True)
        return conversations
