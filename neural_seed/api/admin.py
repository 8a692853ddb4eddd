"""Admin endpoints: conversation listing, inspection, deletion and usage.

Every route requires ``X-Admin-Key``; every action is logged.
"""

from __future__ import annotations

import logging
import re
import time

from fastapi import APIRouter, Depends, HTTPException, Query

from neural_seed.api.dependencies import get_assistant, require_admin
from neural_seed.api.schemas import (
    ConversationsResponse,
    DailyUsageResponse,
    DeleteConversationResponse,
    MessagesResponse,
)
from neural_seed.services.assistant import AssistantService
from neural_seed.services.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)

MAX_ADMIN_MESSAGES_LIMIT = 200
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@router.get("/conversations", response_model=ConversationsResponse)
async def list_conversations(
    include_stats: bool = Query(False, alias="includeStats"),
    assistant: AssistantService = Depends(get_assistant),
) -> ConversationsResponse:
    logger.info(f"Admin: listing conversations (includeStats={include_stats})")
    try:
        conversations = await assistant.list_all_conversations()
        stats = await assistant.get_usage_stats() if include_stats else None
    except StoreUnavailableError as exc:
        logger.error(f"Admin: conversation listing failed: {exc}")
        raise HTTPException(status_code=503, detail="Store unavailable")

    return ConversationsResponse(
        conversations=conversations,
        count=len(conversations),
        stats=stats,
        include_stats=include_stats,
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessagesResponse)
async def conversation_messages(
    conversation_id: str,
    limit: int = Query(100),
    assistant: AssistantService = Depends(get_assistant),
) -> MessagesResponse:
    if limit > MAX_ADMIN_MESSAGES_LIMIT:
        raise HTTPException(
            status_code=400, detail=f"Limit cannot exceed {MAX_ADMIN_MESSAGES_LIMIT}"
        )
    if limit < 1:
        raise HTTPException(status_code=400, detail="Limit must be positive")

    logger.info(f"Admin: reading messages of conversation {conversation_id} (limit={limit})")
    messages = await assistant.get_conversation_messages(conversation_id, limit=limit)

    return MessagesResponse(
        messages=messages,
        conversation_id=conversation_id,
        count=len(messages),
        timestamp=int(time.time() * 1000),
    )


@router.delete("/conversations/{conversation_id}", response_model=DeleteConversationResponse)
async def delete_conversation(
    conversation_id: str,
    assistant: AssistantService = Depends(get_assistant),
) -> DeleteConversationResponse:
    logger.info(f"Admin: deleting conversation {conversation_id}")
    if not await assistant.delete_conversation(conversation_id):
        raise HTTPException(status_code=500, detail="Failed to delete conversation")
    return DeleteConversationResponse(conversation_id=conversation_id)


@router.get("/usage", response_model=DailyUsageResponse)
async def daily_usage(
    date: str | None = Query(None, description="UTC date, YYYY-MM-DD (default today)"),
    assistant: AssistantService = Depends(get_assistant),
) -> DailyUsageResponse:
    if date is not None and not _DATE_PATTERN.match(date):
        raise HTTPException(status_code=400, detail="Date must be YYYY-MM-DD")

    day = date or assistant.usage.today()
    logger.info(f"Admin: reading usage for {day}")
    try:
        usage = await assistant.get_daily_usage(day)
    except StoreUnavailableError as exc:
        logger.error(f"Admin: usage lookup failed: {exc}")
        raise HTTPException(status_code=503, detail="Store unavailable")

    total_tokens = sum(u.tokens for u in usage)
    return DailyUsageResponse(
        date=day,
        usage=usage,
        total_tokens=total_tokens,
        total_messages=sum(u.messages for u in usage),
        estimated_cost=assistant.usage.estimate_cost(total_tokens),
    )
