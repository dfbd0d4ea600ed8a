"""MessageRepository: asyncpg queries for sessions and tagged messages."""

from collections.abc import Sequence

from app.core.db import PoolBackedRepository
from app.models.entities import Message, Session
from app.services.tag_normalizer import dedupe_tags, parse_tags

_MESSAGE_COLUMNS = "id, session_id, origin, content, tags, created_at"


class MessageRepository(PoolBackedRepository):
    async def touch_session(self, session_id: str) -> Session:
        """Create the session on first sight, otherwise bump last_activity."""
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO sessions (id, created_at, last_activity)
                VALUES ($1, NOW(), NOW())
                ON CONFLICT (id) DO UPDATE SET last_activity = NOW()
                RETURNING id, created_at, last_activity
                """,
                session_id,
            )
        return Session(id=row["id"], created_at=row["created_at"], last_activity=row["last_activity"])

    async def get_session(self, session_id: str) -> Session | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, created_at, last_activity FROM sessions WHERE id = $1", session_id
            )
        if row is None:
            return None
        return Session(id=row["id"], created_at=row["created_at"], last_activity=row["last_activity"])

    async def save_message(self, message: Message) -> Message:
        async with self._connection() as conn, conn.transaction():
            await conn.execute(
                """
                INSERT INTO sessions (id, created_at, last_activity)
                VALUES ($1, NOW(), NOW())
                ON CONFLICT (id) DO NOTHING
                """,
                message.session_id,
            )
            row = await conn.fetchrow(
                f"""
                INSERT INTO messages (id, session_id, origin, content, tags, created_at)
                VALUES ($1::uuid, $2, $3, $4, $5::text[], $6)
                RETURNING {_MESSAGE_COLUMNS}
                """,
                message.id,
                message.session_id,
                message.origin.value,
                message.content,
                dedupe_tags(message.tags),
                message.created_at,
            )
        return Message.from_row(row)

    async def get_message(self, message_id: str) -> Message | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = $1::uuid", message_id
            )
        return Message.from_row(row) if row else None

    async def _rewrite_tags(self, message_id: str, transform) -> Message | None:
        async with self._connection() as conn, conn.transaction():
            current = await conn.fetchval(
                "SELECT tags FROM messages WHERE id = $1::uuid FOR UPDATE", message_id
            )
            if current is None:
                return None
            row = await conn.fetchrow(
                f"""
                UPDATE messages SET tags = $2::text[]
                WHERE id = $1::uuid
                RETURNING {_MESSAGE_COLUMNS}
                """,
                message_id,
                dedupe_tags(transform(list(current))),
            )
        return Message.from_row(row)

    async def add_message_tag(self, message_id: str, tag: str) -> Message | None:
        return await self._rewrite_tags(message_id, lambda tags: [*tags, tag])

    async def remove_message_tag(self, message_id: str, tag: str) -> Message | None:
        targets = {t.key for t in parse_tags([tag])}
        return await self._rewrite_tags(
            message_id, lambda tags: [t for t in parse_tags(tags) if t.key not in targets]
        )

    async def find_messages_by_tags(
        self,
        tags: Sequence[str],
        exclude_session_id: str | None = None,
        limit: int = 3,
    ) -> list[Message]:
        """Most recent messages from other sessions sharing at least one tag.

        Matching ignores case and the ``#`` prefix on both sides.
        """
        keys = [t.key for t in parse_tags(tags)]
        if not keys or limit <= 0:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE ($2::text IS NULL OR session_id <> $2)
                  AND EXISTS (
                      SELECT 1 FROM unnest(tags) AS t(tag)
                      WHERE lower(ltrim(t.tag, '#')) = ANY($1::text[])
                  )
                ORDER BY created_at DESC
                LIMIT $3
                """,
                keys,
                exclude_session_id,
                limit,
            )
        return [Message.from_row(r) for r in rows]

    async def fetch_session_messages(self, session_id: str, limit: int = 50) -> list[Message]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM (
                    SELECT {_MESSAGE_COLUMNS}
                    FROM messages
                    WHERE session_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2
                ) recent
                ORDER BY created_at ASC
                """,
                session_id,
                limit,
            )
        return [Message.from_row(r) for r in rows]
