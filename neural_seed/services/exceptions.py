"""Application-specific exceptions."""

from __future__ import annotations


class MessageValidationError(Exception):
    """Raised when inbound chat text fails the length checks.

    ``reason`` is safe to show to the user verbatim.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class RateLimitedError(Exception):
    """Raised when an identity sends again before its window has elapsed."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(
            "Rate limit exceeded. Please wait before sending another message to the AI."
        )


class StoreUnavailableError(Exception):
    """Raised when the shared key-value store cannot serve a command."""


class ConfigurationError(Exception):
    """Raised when the assistant configuration is invalid at startup."""


class BackendError(Exception):
    """Raised when a text-generation backend call fails.

    ``retryable`` is decided from the HTTP status (or transport failure)
    by the backend variant that raised it.
    """

    def __init__(
        self,
        backend: str,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.backend = backend
        self.status_code = status_code
        self.retryable = retryable
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{backend} backend error{status}: {message}")
