"""Unit tests for prompt composition."""

import pytest

from neural_seed.config.models import PromptConfig
from neural_seed.models.domain import Message, MessageType, PromptSegment
from neural_seed.services.prompt_composer import (
    PromptComposer,
    format_stats,
    load_static_segments,
)


def message(type: MessageType, text: str, index: int = 0) -> Message:
    return Message(
        id=f"m{index}",
        conversation_id="c1",
        address="0xabc",
        type=type,
        message=text,
        timestamp=index,
    )


def test_question_only(composer):
    payload = composer.compose("How do I water?")
    assert payload.dynamic == "User Question: How do I water?"


def test_static_segments_are_the_same_object_every_call(composer):
    first = composer.compose("one", stats_block='{"plants": 1}')
    second = composer.compose(
        "two", [message(MessageType.USER, "earlier")], stats_block='{"plants": 2}'
    )

    assert first.static_segments is second.static_segments
    assert first.system_text == second.system_text
    assert "one" not in first.system_text
    assert "plants" not in first.system_text


def test_all_sections_in_order(composer):
    history = [
        message(MessageType.USER, "What is SEED?", 1),
        message(MessageType.ASSISTANT, "The main token.", 2),
    ]

    payload = composer.compose("And LEAF?", history, stats_block='{"seed": "12.5"}')

    assert payload.dynamic == (
        "Previous conversation:\n"
        "User: What is SEED?\n"
        "Assistant: The main token.\n\n"
        "User's Current Stats:\n"
        '{"seed": "12.5"}\n\n'
        "User Question: And LEAF?"
    )


def test_history_is_capped_to_most_recent():
    composer = PromptComposer((PromptSegment("instructions", "x", cache_breakpoint=True),), history_limit=2)
    history = [message(MessageType.USER, f"q{i}", i) for i in range(5)]

    payload = composer.compose("now", history)

    assert "q2" not in payload.dynamic
    assert "User: q3\nUser: q4" in payload.dynamic


def test_system_text_joins_segments(composer):
    payload = composer.compose("hi")
    assert payload.system_text == "You are a test assistant.\n\nPlants need water."


def test_composer_requires_static_content():
    with pytest.raises(ValueError):
        PromptComposer(())


def test_load_static_segments_from_files(tmp_path):
    instructions = tmp_path / "instructions.md"
    knowledge = tmp_path / "knowledge.md"
    instructions.write_text("Be brief.\n", encoding="utf-8")
    knowledge.write_text("Plants need water.\n", encoding="utf-8")

    segments = load_static_segments(
        PromptConfig(instructions_path=str(instructions), knowledge_path=str(knowledge))
    )

    assert [s.name for s in segments] == ["instructions", "knowledge"]
    assert [s.text for s in segments] == ["Be brief.", "Plants need water."]
    assert [s.cache_breakpoint for s in segments] == [False, True]


def test_load_static_segments_default_instructions():
    segments = load_static_segments(PromptConfig(assistant_name="Sprout"))

    assert len(segments) == 1
    assert segments[0].cache_breakpoint is True
    assert segments[0].text.startswith("You are Sprout")


def test_knowledge_only_gets_default_instructions_first(tmp_path):
    knowledge = tmp_path / "knowledge.md"
    knowledge.write_text("Facts.", encoding="utf-8")

    segments = load_static_segments(PromptConfig(knowledge_path=str(knowledge)))

    assert [s.name for s in segments] == ["instructions", "knowledge"]
    assert segments[-1].cache_breakpoint is True


def test_missing_prompt_file_fails_loudly(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_static_segments(PromptConfig(instructions_path=str(tmp_path / "nope.md")))


def test_format_stats():
    assert format_stats(None) is None
    assert format_stats({}) is None
    assert '"plants": 3' in format_stats({"plants": 3})
