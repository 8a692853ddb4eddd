"""Prompt composition: static cacheable segments + one per-turn block.

Static segments are loaded once at startup and reused as the *same*
tuple for every request, so backends with prefix caching can serve them
from cache.  Everything that varies per request (history, stats, the
question) lives in the dynamic block only.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from neural_seed.config.models import PromptConfig
from neural_seed.models.domain import Message, MessageType, PromptPayload, PromptSegment

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = """\
You are {name}, a helpful in-game assistant for an onchain farming game.

Keep answers short and direct; most players read on a phone.
When the player's current stats are included, refer to the exact values shown.
Never invent prices, contract addresses, leaderboard positions or game state.
Never give financial advice.
If a question is outside what you know, say so and point the player to the
relevant tab of the app or to the community channels."""


def load_static_segments(config: PromptConfig) -> tuple[PromptSegment, ...]:
    """Read the instruction / knowledge files named in *config*.

    The last segment is the cache breakpoint.  Missing files fail loudly at
    startup rather than silently shipping an empty prompt.
    """
    texts: list[tuple[str, str]] = []
    for name, path in (
        ("instructions", config.instructions_path),
        ("knowledge", config.knowledge_path),
    ):
        if not path:
            continue
        text = Path(path).read_text(encoding="utf-8").strip()
        if text:
            texts.append((name, text))

    if not any(name == "instructions" for name, _ in texts):
        texts.insert(0, ("instructions", DEFAULT_INSTRUCTIONS.format(name=config.assistant_name)))

    last = len(texts) - 1
    segments = tuple(
        PromptSegment(name=name, text=text, cache_breakpoint=i == last)
        for i, (name, text) in enumerate(texts)
    )
    logger.info(
        f"Loaded {len(segments)} static prompt segments "
        f"({sum(len(s.text) for s in segments)} chars)"
    )
    return segments


def format_stats(stats: dict[str, Any] | None) -> str | None:
    if not stats:
        return None
    return json.dumps(stats, indent=2, ensure_ascii=False, default=str)


class PromptComposer:
    """Builds :class:`PromptPayload` s around one fixed set of static segments."""

    def __init__(self, static_segments: tuple[PromptSegment, ...], history_limit: int = 10) -> None:
        if not static_segments:
            raise ValueError("PromptComposer needs at least one static segment")
        self.static_segments = tuple(static_segments)
        self.history_limit = history_limit

    def compose(
        self,
        message: str,
        history: list[Message] | None = None,
        stats_block: str | None = None,
    ) -> PromptPayload:
        dynamic = ""

        recent = (history or [])[-self.history_limit :] if self.history_limit > 0 else []
        if recent:
            lines = "\n".join(
                f"{'User' if m.type == MessageType.USER else 'Assistant'}: {m.message}"
                for m in recent
            )
            dynamic += f"Previous conversation:\n{lines}\n\n"

        if stats_block:
            dynamic += f"User's Current Stats:\n{stats_block}\n\n"

        dynamic += f"User Question: {message}"
        return PromptPayload(static_segments=self.static_segments, dynamic=dynamic)
