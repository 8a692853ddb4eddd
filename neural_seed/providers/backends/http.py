"""HTTP plumbing shared by the backend variants.

Every variant issues exactly one POST per attempt.  Failures are
classified here so the retry policy only has to look at
:attr:`BackendError.retryable`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from neural_seed.core.resilience import is_retryable_status
from neural_seed.services.exceptions import BackendError

logger = logging.getLogger(__name__)

# Raised while mapping a decoded body that does not match the API shape
MAPPING_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValidationError)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort extraction of the provider's error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase


async def post_json(
    client: httpx.AsyncClient,
    backend: str,
    url: str,
    *,
    headers: dict[str, str],
    body: dict[str, Any],
) -> dict[str, Any]:
    """POST *body* and return the decoded JSON object.

    Raises:
        BackendError: retryable for transport failures, timeouts, 408/409/429
            and 5xx; non-retryable for other statuses and undecodable bodies.
    """
    try:
        response = await client.post(url, headers=headers, json=body)
    except httpx.TimeoutException as e:
        raise BackendError(backend, f"request timed out: {e}", retryable=True) from e
    except httpx.TransportError as e:
        raise BackendError(backend, f"transport error: {e}", retryable=True) from e

    if response.is_error:
        raise BackendError(
            backend,
            _error_detail(response),
            status_code=response.status_code,
            retryable=is_retryable_status(response.status_code),
        )

    try:
        data = response.json()
    except ValueError as e:
        raise BackendError(backend, "response body is not valid JSON") from e
    if not isinstance(data, dict):
        raise BackendError(backend, "response body is not a JSON object")
    return data


def malformed(backend: str, detail: str) -> BackendError:
    """Non-retryable error for a response that does not match the API shape."""
    logger.warning(f"Unexpected {backend} response shape: {detail}")
    return BackendError(backend, f"unexpected response shape: {detail}")
