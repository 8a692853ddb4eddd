"""FastAPI dependency injection — service lookup and admin authentication."""

from __future__ import annotations

import logging
import re
import secrets

from fastapi import Depends, Header, HTTPException, Request

from neural_seed.services.assistant import AssistantService

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def get_assistant(request: Request) -> AssistantService:
    """Retrieve the :class:`AssistantService` from app state."""
    return request.app.state.assistant


def require_address(address: object) -> str:
    """Validate a wallet address parameter or raise a 400."""
    if not address or not isinstance(address, str):
        raise HTTPException(status_code=400, detail="Address is required")
    if not ADDRESS_PATTERN.match(address.strip()):
        raise HTTPException(status_code=400, detail="Invalid wallet address format")
    return address.strip()


async def require_admin(
    request: Request,
    x_admin_key: str = Header("", alias="X-Admin-Key", description="Admin API key"),
    assistant: AssistantService = Depends(get_assistant),
) -> None:
    """Reject the request unless ``X-Admin-Key`` matches the configured key.

    With no key configured every admin request is rejected.
    """
    expected = assistant.config.admin.api_key
    if not expected or not secrets.compare_digest(x_admin_key.encode(), expected.encode()):
        logger.warning(
            f"Rejected admin request {request.method} {request.url.path} "
            f"from {request.client.host if request.client else 'unknown'}"
        )
        raise HTTPException(status_code=401, detail="Unauthorized")
