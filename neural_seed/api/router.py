"""Chat and health endpoints.

Domain exceptions raised by :class:`AssistantService` are mapped to HTTP
statuses here; handlers themselves hold no state.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query

from neural_seed.api.dependencies import get_assistant, require_address
from neural_seed.api.schemas import (
    HealthResponse,
    MessagesResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from neural_seed.memory.redis_store import RedisKeyValueStore
from neural_seed.services.assistant import AssistantService
from neural_seed.services.exceptions import (
    MessageValidationError,
    RateLimitedError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Chat"])

MAX_MESSAGES_LIMIT = 100


@router.post("/chat/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    assistant: AssistantService = Depends(get_assistant),
) -> SendMessageResponse:
    """Send one message to the assistant and return both sides of the turn."""
    address = require_address(request.address)

    try:
        exchange = await assistant.send_message(address, request.message)
    except MessageValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.reason)
    except RateLimitedError as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    except StoreUnavailableError as exc:
        logger.error(f"Store unavailable while sending message: {exc}")
        raise HTTPException(
            status_code=503, detail="Chat is temporarily unavailable. Please try again later."
        )

    return SendMessageResponse.from_exchange(exchange)


@router.get("/chat/messages", response_model=MessagesResponse)
async def get_messages(
    address: str | None = Query(None),
    conversation_id: str | None = Query(None, alias="conversationId"),
    limit: int = Query(50),
    assistant: AssistantService = Depends(get_assistant),
) -> MessagesResponse:
    """Recent messages of a conversation (the caller's active one by default)."""
    address = require_address(address)
    if limit > MAX_MESSAGES_LIMIT:
        raise HTTPException(status_code=400, detail=f"Limit cannot exceed {MAX_MESSAGES_LIMIT}")
    if limit < 1:
        raise HTTPException(status_code=400, detail="Limit must be positive")

    try:
        conversation_id = conversation_id or await assistant.get_or_create_conversation(address)
    except StoreUnavailableError as exc:
        logger.error(f"Store unavailable while resolving conversation: {exc}")
        raise HTTPException(status_code=503, detail="Chat is temporarily unavailable.")

    messages = await assistant.get_conversation_messages(conversation_id, limit=limit)
    return MessagesResponse(
        messages=messages,
        conversation_id=conversation_id,
        count=len(messages),
        timestamp=int(time.time() * 1000),
    )


# ------------------------------------------------------------------
# Health & utility endpoints
# ------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(
    assistant: AssistantService = Depends(get_assistant),
) -> HealthResponse:
    """Health check — active backend and store reachability."""
    kind = "redis" if isinstance(assistant.store, RedisKeyValueStore) else "memory"
    try:
        reachable = await assistant.store.ping()
    except StoreUnavailableError:
        reachable = False

    return HealthResponse(
        status="ok" if reachable else "degraded",
        backend=assistant.dispatcher.backend_name,
        model=assistant.dispatcher.model,
        store=kind if reachable else f"{kind} (unreachable)",
    )
