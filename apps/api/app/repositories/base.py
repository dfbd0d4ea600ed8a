"""Storage contracts shared by the Postgres and in-memory backends.

Tag names passed to these methods are canonical keys: lower-case, no ``#``.
Callers convert at the edge with ``app.services.tag_normalizer``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from app.models.entities import BlockedTag, Message, Session, Tag, TagSynonym


class TagStore(Protocol):
    async def upsert_tag_usage(self, name: str) -> int: ...

    async def is_blocked(self, name: str) -> bool: ...

    async def resolve_synonym(self, name: str) -> str | None: ...

    async def block_tag(self, name: str, reason: str = "") -> BlockedTag: ...

    async def unblock_tag(self, name: str) -> bool: ...

    async def list_blocked(self) -> list[BlockedTag]: ...

    async def add_synonym(self, original: str, better: str) -> TagSynonym: ...

    async def remove_synonym(self, original: str) -> bool: ...

    async def list_synonyms(self) -> list[TagSynonym]: ...

    async def get_tag(self, name: str) -> Tag | None: ...

    async def list_tags(self, limit: int = 20) -> list[Tag]: ...

    async def ping(self) -> None: ...


class MessageStore(Protocol):
    async def touch_session(self, session_id: str) -> Session: ...

    async def get_session(self, session_id: str) -> Session | None: ...

    async def save_message(self, message: Message) -> Message: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def add_message_tag(self, message_id: str, tag: str) -> Message | None: ...

    async def remove_message_tag(self, message_id: str, tag: str) -> Message | None: ...

    async def find_messages_by_tags(
        self,
        tags: Sequence[str],
        exclude_session_id: str | None = None,
        limit: int = 3,
    ) -> list[Message]: ...

    async def fetch_session_messages(self, session_id: str, limit: int = 50) -> list[Message]: ...
