"""Unit tests for blocked-list, synonym and usage handling in TagResolver."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.entities import Tag
from app.repositories.memory import InMemoryTagStore
from app.services.tag_resolver import TagResolver


@pytest.fixture
def store() -> InMemoryTagStore:
    return InMemoryTagStore()


@pytest.mark.asyncio
async def test_synonym_rewrites_short_alias(store: InMemoryTagStore) -> None:
    resolver = TagResolver(store)

    assert await resolver.resolve(["#js"]) == ["#javascript"]
    assert (await store.get_tag("javascript")).usage_count == 1
    assert await store.get_tag("js") is None


@pytest.mark.asyncio
async def test_synonyms_are_one_level_only(store: InMemoryTagStore) -> None:
    await store.add_synonym("frontend", "react")
    resolver = TagResolver(store)

    # react -> reactjs exists, but the replacement is not looked up again
    assert await resolver.resolve(["#frontend"]) == ["#react"]


@pytest.mark.asyncio
async def test_blocked_tag_falls_back_to_default(store: InMemoryTagStore) -> None:
    await store.block_tag("blockedword", "spam")
    resolver = TagResolver(store)

    assert await resolver.resolve(["#BlockedWord"]) == ["#conversation"]
    assert await store.get_tag("blockedword") is None
    assert (await store.get_tag("conversation")).usage_count == 1


@pytest.mark.asyncio
async def test_blocked_synonym_target_is_dropped(store: InMemoryTagStore) -> None:
    await store.block_tag("javascript")
    resolver = TagResolver(store)

    assert await resolver.resolve(["#js"]) == ["#conversation"]
    assert await resolver.resolve(["#js", "#typescript"]) == ["#typescript"]
    assert await store.get_tag("javascript") is None


@pytest.mark.asyncio
async def test_output_is_canonical_and_deduplicated(store: InMemoryTagStore) -> None:
    resolver = TagResolver(store)

    result = await resolver.resolve(["#GraphQL", "graphql", "#Caching", "#the"])

    assert result == ["#graphql", "#caching"]


@pytest.mark.asyncio
async def test_empty_input_stays_empty(store: InMemoryTagStore) -> None:
    resolver = TagResolver(store)

    assert await resolver.resolve([]) == []
    assert await resolver.resolve(["#", None]) == []
    assert await store.list_tags() == []


@pytest.mark.asyncio
async def test_resolving_twice_increments_by_two(store: InMemoryTagStore) -> None:
    resolver = TagResolver(store)

    await resolver.resolve(["#graphql"])
    await resolver.resolve(["#GraphQL"])

    assert (await store.get_tag("graphql")).usage_count == 2


class _InterleavingTagStore(InMemoryTagStore):
    """Yields between reading and writing the counter, like a round trip to a database."""

    def __init__(self) -> None:
        super().__init__()
        self.waiting_peak = 0

    async def upsert_tag_usage(self, name: str) -> int:
        key = name.lower()
        async with self._tag_locks.hold(key):
            self.waiting_peak = max(self.waiting_peak, self._tag_locks._refs[key])
            current = self._tags.get(key)
            count = current.usage_count if current else 0
            await asyncio.sleep(0)
            if current is None:
                current = Tag(name=key)
                self._tags[key] = current
            current.usage_count = count + 1
            return current.usage_count


@pytest.mark.asyncio
async def test_concurrent_resolutions_do_not_lose_increments() -> None:
    store = _InterleavingTagStore()
    resolver = TagResolver(store)

    await asyncio.gather(*(resolver.resolve(["#kubernetes"]) for _ in range(50)))

    assert (await store.get_tag("kubernetes")).usage_count == 50
    # The per-tag lock really was contended, and is released afterwards
    assert store.waiting_peak > 1
    assert len(store._tag_locks) == 0


@pytest.mark.asyncio
async def test_store_outage_with_only_excluded_candidates_uses_fallback() -> None:
    store = MagicMock()
    store.is_blocked = AsyncMock(side_effect=ConnectionError("db down"))
    store.upsert_tag_usage = AsyncMock()
    resolver = TagResolver(store)

    assert await resolver.resolve(["#the", "#ai"]) == ["#conversation"]
    store.upsert_tag_usage.assert_not_called()


@pytest.mark.asyncio
async def test_preview_does_not_record_usage(store: InMemoryTagStore) -> None:
    resolver = TagResolver(store)

    assert await resolver.resolve(["#graphql"], record_usage=False) == ["#graphql"]
    assert await store.get_tag("graphql") is None


@pytest.mark.asyncio
async def test_store_outage_returns_filtered_candidates() -> None:
    store = MagicMock()
    store.is_blocked = AsyncMock(side_effect=ConnectionError("db down"))
    store.upsert_tag_usage = AsyncMock()
    resolver = TagResolver(store)

    result = await resolver.resolve(["#GraphQL", "#the", "#graphql", "#caching"])

    assert result == ["#graphql", "#caching"]
    store.upsert_tag_usage.assert_not_called()


@pytest.mark.asyncio
async def test_usage_failure_does_not_fail_resolution() -> None:
    store = MagicMock()
    store.is_blocked = AsyncMock(return_value=False)
    store.resolve_synonym = AsyncMock(return_value=None)
    store.upsert_tag_usage = AsyncMock(side_effect=ConnectionError("db down"))
    resolver = TagResolver(store)

    assert await resolver.resolve(["#graphql", "#caching"]) == ["#graphql", "#caching"]
    assert store.upsert_tag_usage.await_count == 2


@pytest.mark.asyncio
async def test_custom_fallback_tag(store: InMemoryTagStore) -> None:
    await store.block_tag("nsfw")
    resolver = TagResolver(store, fallback_tag="#General")

    assert await resolver.resolve(["#nsfw"]) == ["#general"]
