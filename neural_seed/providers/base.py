"""Abstract base classes for external collaborators.

Backends turn a composed :class:`PromptPayload` into a normalised
:class:`BackendReply`; stats providers supply the optional per-user
statistics block of the prompt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from neural_seed.models.domain import BackendReply, PromptPayload


class BaseBackend(ABC):
    """One text-generation backend family."""

    #: Registry name, also used in logs and error messages
    name: str = ""

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier sent with every request."""
        ...

    @abstractmethod
    async def send(self, payload: PromptPayload) -> BackendReply:
        """Run one completion.

        Raises:
            BackendError: With ``retryable`` set from the failure class.
        """
        ...


class BaseStatsProvider(ABC):
    """Look up gameplay statistics for an identity."""

    @abstractmethod
    async def fetch_stats(self, identity: str) -> dict[str, Any] | None:
        """Return the stats document, or ``None`` when there is nothing to show."""
        ...
