"""Inbound chat text validation."""

from __future__ import annotations

from neural_seed.config.models import LimitsConfig


def validate_message(text: object, limits: LimitsConfig | None = None) -> str | None:
    """Return ``None`` when *text* is acceptable, else a user-facing reason.

    Length is measured on the trimmed text.
    """
    limits = limits or LimitsConfig()
    if not isinstance(text, str) or not text.strip():
        return "Message is required"

    length = len(text.strip())
    if length < limits.min_message_length:
        return "Message is too short"
    if length > limits.max_message_length:
        return f"Message is too long (max {limits.max_message_length} characters)"
    return None
