"""In-process tag and message stores.

Selected with ``STORE_BACKEND=memory`` for local runs without Postgres, and
used directly by the test suite. Tag usage updates are serialized per tag
name with a keyed lock since there is no database upsert to lean on.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from datetime import UTC, datetime

from app.core.constants import TagDefaults
from app.core.exceptions import SynonymCycleError
from app.core.locks import KeyedLock
from app.models.entities import BlockedTag, Message, Session, Tag, TagSynonym
from app.services.tag_normalizer import dedupe_tags, parse_tags


class InMemoryTagStore:
    def __init__(self, seed_synonyms: bool = True):
        self._tags: dict[str, Tag] = {}
        self._blocked: dict[str, BlockedTag] = {}
        self._synonyms: dict[str, str] = {}
        self._tag_locks = KeyedLock()
        self._synonym_lock = asyncio.Lock()
        if seed_synonyms:
            self._synonyms.update(TagDefaults.SEED_SYNONYMS)

    async def upsert_tag_usage(self, name: str) -> int:
        key = name.lower()
        async with self._tag_locks.hold(key):
            tag = self._tags.get(key)
            if tag is None:
                tag = Tag(name=key, usage_count=0)
                self._tags[key] = tag
            tag.usage_count += 1
            return tag.usage_count

    async def is_blocked(self, name: str) -> bool:
        return name.lower() in self._blocked

    async def resolve_synonym(self, name: str) -> str | None:
        return self._synonyms.get(name.lower())

    async def block_tag(self, name: str, reason: str = "") -> BlockedTag:
        key = name.lower()
        existing = self._blocked.get(key)
        if existing is not None:
            existing.reason = reason
            return copy.copy(existing)
        blocked = BlockedTag(name=key, reason=reason)
        self._blocked[key] = blocked
        return copy.copy(blocked)

    async def unblock_tag(self, name: str) -> bool:
        return self._blocked.pop(name.lower(), None) is not None

    async def list_blocked(self) -> list[BlockedTag]:
        return [copy.copy(self._blocked[k]) for k in sorted(self._blocked)]

    async def add_synonym(self, original: str, better: str) -> TagSynonym:
        original, better = original.lower(), better.lower()
        if original == better:
            raise SynonymCycleError(f"#{original} cannot be a synonym of itself")
        async with self._synonym_lock:
            if self._synonyms.get(better) == original:
                raise SynonymCycleError(f"#{better} already rewrites to #{original}")
            self._synonyms[original] = better
        return TagSynonym(original_tag=original, better_tag=better)

    async def remove_synonym(self, original: str) -> bool:
        return self._synonyms.pop(original.lower(), None) is not None

    async def list_synonyms(self) -> list[TagSynonym]:
        return [TagSynonym(original_tag=k, better_tag=self._synonyms[k]) for k in sorted(self._synonyms)]

    async def get_tag(self, name: str) -> Tag | None:
        tag = self._tags.get(name.lower())
        return copy.copy(tag) if tag else None

    async def list_tags(self, limit: int = 20) -> list[Tag]:
        ranked = sorted(self._tags.values(), key=lambda t: (-t.usage_count, t.name))
        return [copy.copy(t) for t in ranked[:limit]]

    async def ping(self) -> None:
        return None


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, Message] = {}

    async def touch_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(id=session_id)
            self._sessions[session_id] = session
        else:
            session.last_activity = datetime.now(UTC)
        return copy.copy(session)

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return copy.copy(session) if session else None

    async def save_message(self, message: Message) -> Message:
        self._sessions.setdefault(message.session_id, Session(id=message.session_id))
        stored = copy.deepcopy(message)
        stored.tags = dedupe_tags(stored.tags)
        self._messages[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_message(self, message_id: str) -> Message | None:
        message = self._messages.get(message_id)
        return copy.deepcopy(message) if message else None

    async def add_message_tag(self, message_id: str, tag: str) -> Message | None:
        message = self._messages.get(message_id)
        if message is None:
            return None
        message.tags = dedupe_tags([*message.tags, tag])
        return copy.deepcopy(message)

    async def remove_message_tag(self, message_id: str, tag: str) -> Message | None:
        message = self._messages.get(message_id)
        if message is None:
            return None
        targets = {t.key for t in parse_tags([tag])}
        message.tags = [str(t) for t in parse_tags(message.tags) if t.key not in targets]
        return copy.deepcopy(message)

    async def find_messages_by_tags(
        self,
        tags: Sequence[str],
        exclude_session_id: str | None = None,
        limit: int = 3,
    ) -> list[Message]:
        keys = {t.key for t in parse_tags(tags)}
        if not keys or limit <= 0:
            return []
        matches = [
            m
            for m in self._messages.values()
            if m.session_id != exclude_session_id and keys & {t.key for t in parse_tags(m.tags)}
        ]
        matches.sort(key=lambda m: m.created_at, reverse=True)
        return [copy.deepcopy(m) for m in matches[:limit]]

    async def fetch_session_messages(self, session_id: str, limit: int = 50) -> list[Message]:
        history = [m for m in self._messages.values() if m.session_id == session_id]
        history.sort(key=lambda m: m.created_at)
        return [copy.deepcopy(m) for m in history[-limit:]] if limit > 0 else []
