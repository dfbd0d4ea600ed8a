"""Unit tests for the in-process stores and the keyed lock."""

import asyncio

import pytest

from app.core.constants import MessageOrigin
from app.core.exceptions import SynonymCycleError
from app.core.locks import KeyedLock
from app.models.entities import Message
from app.repositories.memory import InMemoryMessageStore, InMemoryTagStore


def _message(message_id: str, session_id: str = "s1", tags=None) -> Message:
    return Message(
        id=message_id,
        session_id=session_id,
        origin=MessageOrigin.USER,
        content=f"message {message_id}",
        tags=tags or [],
    )


@pytest.mark.asyncio
async def test_synonym_cycles_are_rejected() -> None:
    store = InMemoryTagStore(seed_synonyms=False)
    await store.add_synonym("k8s", "kubernetes")

    with pytest.raises(SynonymCycleError):
        await store.add_synonym("kubernetes", "k8s")
    with pytest.raises(SynonymCycleError):
        await store.add_synonym("Rust", "rust")

    assert await store.resolve_synonym("K8S") == "kubernetes"
    assert await store.resolve_synonym("kubernetes") is None


@pytest.mark.asyncio
async def test_seed_synonyms_loaded_by_default() -> None:
    store = InMemoryTagStore()

    assert await store.resolve_synonym("js") == "javascript"
    assert await store.resolve_synonym("react") == "reactjs"
    assert await InMemoryTagStore(seed_synonyms=False).resolve_synonym("js") is None


@pytest.mark.asyncio
async def test_block_is_idempotent_and_updates_reason() -> None:
    store = InMemoryTagStore()
    await store.block_tag("Spam", "noise")
    await store.block_tag("spam", "still noise")

    blocked = await store.list_blocked()
    assert [(b.name, b.reason) for b in blocked] == [("spam", "still noise")]
    assert await store.is_blocked("SPAM")
    assert await store.unblock_tag("spam")
    assert not await store.unblock_tag("spam")


@pytest.mark.asyncio
async def test_list_tags_ranks_by_usage() -> None:
    store = InMemoryTagStore()
    for name in ["rust", "python", "python", "go-lang", "python", "rust"]:
        await store.upsert_tag_usage(name)

    ranked = await store.list_tags(limit=2)
    assert [(t.name, t.usage_count) for t in ranked] == [("python", 3), ("rust", 2)]


@pytest.mark.asyncio
async def test_saved_tags_are_deduplicated() -> None:
    store = InMemoryMessageStore()
    await store.save_message(_message("m1", tags=["#a", "#a", "#A"]))

    stored = await store.get_message("m1")
    assert stored.tags == ["#a"]


@pytest.mark.asyncio
async def test_message_tag_add_and_remove() -> None:
    store = InMemoryMessageStore()
    await store.save_message(_message("m1", tags=["#graphql"]))

    updated = await store.add_message_tag("m1", "#GraphQL")
    assert updated.tags == ["#graphql"]

    updated = await store.add_message_tag("m1", "#redis")
    assert updated.tags == ["#graphql", "#redis"]

    updated = await store.remove_message_tag("m1", "GRAPHQL")
    assert updated.tags == ["#redis"]

    assert await store.add_message_tag("missing", "#redis") is None
    assert await store.remove_message_tag("missing", "#redis") is None


@pytest.mark.asyncio
async def test_returned_messages_are_copies() -> None:
    store = InMemoryMessageStore()
    await store.save_message(_message("m1", tags=["#graphql"]))

    fetched = await store.get_message("m1")
    fetched.tags.append("#mutated")

    assert (await store.get_message("m1")).tags == ["#graphql"]


@pytest.mark.asyncio
async def test_session_history_is_oldest_first_and_limited() -> None:
    store = InMemoryMessageStore()
    for i in range(4):
        await store.save_message(_message(f"m{i}"))
    await store.save_message(_message("other", session_id="s2"))

    history = await store.fetch_session_messages("s1", limit=3)

    assert [m.id for m in history] == ["m1", "m2", "m3"]
    assert await store.get_session("s2") is not None
    assert await store.fetch_session_messages("s1", limit=0) == []


@pytest.mark.asyncio
async def test_keyed_lock_serializes_and_cleans_up() -> None:
    locks = KeyedLock()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("python"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0
