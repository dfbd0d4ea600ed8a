"""TagRepository: asyncpg queries for the tag vocabulary, blocked list and synonyms."""

from app.core.db import PoolBackedRepository
from app.core.exceptions import SynonymCycleError
from app.models.entities import BlockedTag, Tag, TagSynonym


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``DELETE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class TagRepository(PoolBackedRepository):
    async def upsert_tag_usage(self, name: str) -> int:
        """Insert the tag with usage_count 1 or increment it in one statement.

        Concurrent callers never lose increments: the conflict branch updates
        the row under Postgres' row lock.
        """
        async with self._connection() as conn:
            return await conn.fetchval(
                """
                INSERT INTO tags (name, usage_count, first_used)
                VALUES ($1, 1, NOW())
                ON CONFLICT (name) DO UPDATE SET usage_count = tags.usage_count + 1
                RETURNING usage_count
                """,
                name,
            )

    async def is_blocked(self, name: str) -> bool:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM blocked_tags WHERE name = lower($1))",
                name,
            )

    async def resolve_synonym(self, name: str) -> str | None:
        async with self._connection() as conn:
            return await conn.fetchval(
                "SELECT better_tag FROM tag_synonyms WHERE original_tag = lower($1)",
                name,
            )

    async def block_tag(self, name: str, reason: str = "") -> BlockedTag:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO blocked_tags (name, reason, created_at)
                VALUES (lower($1), $2, NOW())
                ON CONFLICT (name) DO UPDATE SET reason = EXCLUDED.reason
                RETURNING name, reason, created_at
                """,
                name,
                reason,
            )
        return BlockedTag(name=row["name"], reason=row["reason"], created_at=row["created_at"])

    async def unblock_tag(self, name: str) -> bool:
        async with self._connection() as conn:
            status = await conn.execute("DELETE FROM blocked_tags WHERE name = lower($1)", name)
        return _affected(status) > 0

    async def list_blocked(self) -> list[BlockedTag]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT name, reason, created_at FROM blocked_tags ORDER BY name"
            )
        return [BlockedTag(name=r["name"], reason=r["reason"], created_at=r["created_at"]) for r in rows]

    async def add_synonym(self, original: str, better: str) -> TagSynonym:
        """Map ``original`` to ``better``, refusing mappings that would cycle."""
        original, better = original.lower(), better.lower()
        if original == better:
            raise SynonymCycleError(f"#{original} cannot be a synonym of itself")

        async with self._connection() as conn, conn.transaction():
            # Serializes concurrent synonym edits so two inverse inserts cannot both pass
            await conn.execute("LOCK TABLE tag_synonyms IN SHARE ROW EXCLUSIVE MODE")
            reverse = await conn.fetchval(
                "SELECT 1 FROM tag_synonyms WHERE original_tag = $1 AND better_tag = $2",
                better,
                original,
            )
            if reverse:
                raise SynonymCycleError(f"#{better} already rewrites to #{original}")
            await conn.execute(
                """
                INSERT INTO tag_synonyms (original_tag, better_tag)
                VALUES ($1, $2)
                ON CONFLICT (original_tag) DO UPDATE SET better_tag = EXCLUDED.better_tag
                """,
                original,
                better,
            )
        return TagSynonym(original_tag=original, better_tag=better)

    async def remove_synonym(self, original: str) -> bool:
        async with self._connection() as conn:
            status = await conn.execute(
                "DELETE FROM tag_synonyms WHERE original_tag = lower($1)", original
            )
        return _affected(status) > 0

    async def list_synonyms(self) -> list[TagSynonym]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT original_tag, better_tag FROM tag_synonyms ORDER BY original_tag"
            )
        return [TagSynonym(original_tag=r["original_tag"], better_tag=r["better_tag"]) for r in rows]

    async def get_tag(self, name: str) -> Tag | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT name, usage_count, first_used FROM tags WHERE name = lower($1)", name
            )
        if row is None:
            return None
        return Tag(name=row["name"], usage_count=row["usage_count"], first_used=row["first_used"])

    async def list_tags(self, limit: int = 20) -> list[Tag]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT name, usage_count, first_used
                FROM tags
                ORDER BY usage_count DESC, name
                LIMIT $1
                """,
                limit,
            )
        return [
            Tag(name=r["name"], usage_count=r["usage_count"], first_used=r["first_used"])
            for r in rows
        ]

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.fetchval("SELECT 1")
