"""Unit tests for session memory and prompt assembly."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.constants import MessageOrigin
from app.models.entities import Message
from app.repositories.memory import InMemoryMessageStore
from app.services.session_context import (
    RELATED_FOOTER,
    RELATED_HEADER,
    ContextBuilder,
    SessionMemory,
    format_prompt,
)


def _message(session_id: str, content: str, tags: list[str], origin=MessageOrigin.ASSISTANT):
    return Message(
        id=f"{session_id}-{len(content)}",
        session_id=session_id,
        origin=origin,
        content=content,
        tags=tags,
    )


def test_prompt_unmodified_without_history_or_related() -> None:
    assert format_prompt("What is GraphQL?", [], []) == "What is GraphQL?"


def test_prompt_includes_related_excerpts() -> None:
    related = [_message("other", "GraphQL lets clients pick fields.", ["#graphql"])]
    prompt = format_prompt("Tell me about #graphql caching", [], related)

    lines = prompt.splitlines()
    assert lines[0] == RELATED_HEADER
    assert "Previous Conversation 1:" in lines
    assert "Assistant: GraphQL lets clients pick fields." in lines
    assert RELATED_FOOTER in lines
    assert lines[-3:] == [
        "Now, responding to the current query:",
        "Human: Tell me about #graphql caching",
        "Assistant:",
    ]


def test_prompt_excerpts_are_truncated() -> None:
    related = [_message("other", "x" * 40, ["#graphql"], origin=MessageOrigin.USER)]
    prompt = format_prompt("q", [], related, excerpt_chars=10)

    assert f"Human: {'x' * 10}..." in prompt.splitlines()


def test_prompt_history_precedes_related() -> None:
    history = [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]
    related = [_message("other", "old answer", ["#graphql"])]
    prompt = format_prompt("next", history, related)

    assert prompt.index("### Recent conversation:") < prompt.index(RELATED_HEADER)
    assert "Human: hi\nAssistant: hello" in prompt


@pytest.mark.asyncio
async def test_memory_is_bounded_per_session() -> None:
    memory = SessionMemory(None, max_turns=2)
    for i in range(5):
        await memory.append("s1", f"q{i}", f"a{i}")

    recent = await memory.recent("s1")
    assert [e["content"] for e in recent] == ["q3", "a3", "q4", "a4"]
    assert [e["content"] for e in await memory.recent("s1", turns=1)] == ["q4", "a4"]
    assert await memory.recent("s2") == []


@pytest.mark.asyncio
async def test_memory_falls_back_to_local_copy_when_redis_fails() -> None:
    redis = MagicMock()
    redis.lrange = AsyncMock(side_effect=ConnectionError("redis down"))
    pipe = MagicMock()
    pipe.execute = AsyncMock(side_effect=ConnectionError("redis down"))
    redis.pipeline.return_value = pipe
    memory = SessionMemory(AsyncMock(return_value=redis), max_turns=4)

    await memory.append("s1", "question", "answer")

    assert [e["content"] for e in await memory.recent("s1")] == ["question", "answer"]


@pytest.mark.asyncio
async def test_memory_reads_from_redis() -> None:
    redis = MagicMock()
    redis.lrange = AsyncMock(
        return_value=['{"role": "user", "content": "q"}', "garbage", '{"role": "assistant", "content": "a"}']
    )
    memory = SessionMemory(AsyncMock(return_value=redis), max_turns=4)

    assert await memory.recent("s1") == [
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
    ]
    redis.lrange.assert_awaited_once_with("session_memory:s1", -8, -1)


@pytest.mark.asyncio
async def test_related_lookup_excludes_current_session() -> None:
    store = InMemoryMessageStore()
    await store.save_message(_message("s1", "same session", ["#graphql"]))
    await store.save_message(_message("s2", "other session", ["#GraphQL"]))
    await store.save_message(_message("s3", "unrelated", ["#rust"]))
    builder = ContextBuilder(store, SessionMemory(None), related_limit=3)

    related = await builder.related_messages("s1", ["#graphql"])

    assert [m.content for m in related] == ["other session"]


@pytest.mark.asyncio
async def test_related_lookup_failure_degrades_silently() -> None:
    store = MagicMock()
    store.find_messages_by_tags = AsyncMock(side_effect=ConnectionError("db down"))
    builder = ContextBuilder(store, SessionMemory(None))

    prompt = await builder.build_prompt("s1", "plain question", ["#graphql"])

    assert prompt == "plain question"
