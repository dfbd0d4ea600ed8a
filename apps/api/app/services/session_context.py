"""Short-term session memory and related-conversation prompt context."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Awaitable, Callable, Sequence

import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]
from redis.asyncio import Redis

from app.core.constants import MessageOrigin, RedisKeys
from app.core.metrics import tag_store_errors_total
from app.models.entities import Message
from app.repositories.base import MessageStore

logger = structlog.get_logger(__name__)

_LOCAL_SESSIONS = 10000

RELATED_HEADER = "### Related conversations on these topics:"
RELATED_FOOTER = "### End of related conversations"
HISTORY_HEADER = "### Recent conversation:"


class SessionMemory:
    """Bounded list of recent turns per session.

    Redis is the shared copy (RPUSH + LTRIM + EXPIRE in one pipeline). A
    per-process TTLCache of deques mirrors it and serves reads whenever Redis
    is absent or failing.
    """

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[Redis]] | None,
        max_turns: int = 4,
        ttl: int = 86400,
    ):
        self._redis_factory = redis_factory
        self._max_entries = max_turns * 2
        self._ttl = ttl
        self._local: TTLCache = TTLCache(maxsize=_LOCAL_SESSIONS, ttl=ttl)

    def _local_turns(self, session_id: str) -> deque:
        turns = self._local.get(session_id)
        if turns is None:
            turns = deque(maxlen=self._max_entries)
        # Re-set on every access so active sessions keep a fresh TTL
        self._local[session_id] = turns
        return turns

    async def append(self, session_id: str, user_text: str, assistant_text: str) -> None:
        entries = [
            {"role": MessageOrigin.USER.value, "content": user_text},
            {"role": MessageOrigin.ASSISTANT.value, "content": assistant_text},
        ]
        self._local_turns(session_id).extend(entries)
        if self._redis_factory is None or self._max_entries == 0:
            return
        try:
            redis = await self._redis_factory()
            key = RedisKeys.SESSION_MEMORY.format(session_id=session_id)
            pipe = redis.pipeline(transaction=True)
            for entry in entries:
                pipe.rpush(key, json.dumps(entry, ensure_ascii=False))
            pipe.ltrim(key, -self._max_entries, -1)
            pipe.expire(key, self._ttl)
            await pipe.execute()
        except Exception as exc:
            logger.warning("session_memory.write_error", session_id=session_id, error=str(exc))

    async def recent(self, session_id: str, turns: int | None = None) -> list[dict]:
        limit = self._max_entries if turns is None else min(turns * 2, self._max_entries)
        if limit <= 0:
            return []
        if self._redis_factory is not None:
            try:
                redis = await self._redis_factory()
                key = RedisKeys.SESSION_MEMORY.format(session_id=session_id)
                raw_entries: list[str] = await redis.lrange(key, -limit, -1)
                return [e for e in (self._decode(raw) for raw in raw_entries) if e]
            except Exception as exc:
                logger.warning("session_memory.read_error", session_id=session_id, error=str(exc))
        return list(self._local_turns(session_id))[-limit:]

    @staticmethod
    def _decode(raw: str) -> dict | None:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict):
            return None
        role, content = parsed.get("role"), parsed.get("content")
        if role in {"user", "assistant"} and isinstance(content, str):
            return {"role": role, "content": content}
        return None


def _speaker(role: str) -> str:
    return "Human" if role == MessageOrigin.USER.value else "Assistant"


def _excerpt(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def format_prompt(
    message: str,
    history: Sequence[dict],
    related: Sequence[Message],
    excerpt_chars: int = 500,
) -> str:
    if not history and not related:
        return message

    lines: list[str] = []
    if history:
        lines.append(HISTORY_HEADER)
        lines.extend(f"{_speaker(turn['role'])}: {turn['content']}" for turn in history)
        lines.append("")
    if related:
        lines.append(RELATED_HEADER)
        lines.append("")
        for i, record in enumerate(related, start=1):
            lines.append(f"Previous Conversation {i}:")
            lines.append(f"{_speaker(record.origin.value)}: {_excerpt(record.content, excerpt_chars)}")
            lines.append("")
        lines.append(RELATED_FOOTER)
        lines.append("")
    lines.append("Now, responding to the current query:")
    lines.append(f"Human: {message}")
    lines.append("Assistant:")
    return "\n".join(lines)


class ContextBuilder:
    def __init__(
        self,
        messages: MessageStore,
        memory: SessionMemory,
        related_limit: int = 3,
        excerpt_chars: int = 500,
    ):
        self._messages = messages
        self._memory = memory
        self._related_limit = related_limit
        self._excerpt_chars = excerpt_chars

    async def related_messages(self, session_id: str, tags: Sequence[str]) -> list[Message]:
        if not tags or self._related_limit <= 0:
            return []
        try:
            return await self._messages.find_messages_by_tags(
                tags, exclude_session_id=session_id, limit=self._related_limit
            )
        except Exception as exc:
            tag_store_errors_total.labels(operation="find_messages_by_tags").inc()
            logger.warning("context.related_lookup_failed", session_id=session_id, error=str(exc))
            return []

    async def build_prompt(
        self,
        session_id: str,
        message: str,
        tags: Sequence[str],
        history_turns: int | None = None,
    ) -> str:
        history = await self._memory.recent(session_id, history_turns)
        related = await self.related_messages(session_id, tags)
        logger.info(
            "context.built",
            session_id=session_id,
            history_entries=len(history),
            related_count=len(related),
        )
        return format_prompt(message, history, related, self._excerpt_chars)
