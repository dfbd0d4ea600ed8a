import asyncio
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlparse

import asyncpg
import structlog

from app.core.config import settings
from app.core.constants import DatabasePool

logger = structlog.get_logger(__name__)

_pool: asyncpg.Pool | None = None
_pool_lock = asyncio.Lock()


def _parse_db_url(url: str) -> dict[str, Any]:
    """Parse DATABASE_URL into asyncpg connection parameters.

    asyncpg does not accept SQLAlchemy driver suffixes (postgresql+asyncpg://),
    so they are stripped before parsing.
    """
    normalised = re.sub(r"^postgresql\+\w+://", "postgresql://", url)
    parsed = urlparse(normalised)
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username or "tagrelay",
        "password": parsed.password or "tagrelay",
        "database": parsed.path.lstrip("/") or "tagrelay",
    }


async def get_db_pool() -> asyncpg.Pool:
    """Return the shared asyncpg pool, creating it on first call."""
    global _pool

    if _pool is None:
        async with _pool_lock:
            if _pool is None:
                db_params = _parse_db_url(settings.DATABASE_URL)
                logger.info(
                    "db.pool.create",
                    host=db_params["host"],
                    port=db_params["port"],
                    min_size=DatabasePool.MIN_SIZE,
                    max_size=DatabasePool.MAX_SIZE,
                )
                _pool = await asyncpg.create_pool(
                    **db_params,
                    min_size=DatabasePool.MIN_SIZE,
                    max_size=DatabasePool.MAX_SIZE,
                )
                logger.info("db.pool.created", pool_size=_pool.get_size())
    return _pool  # type: ignore[return-value]


async def close_db_pools():
    global _pool
    if _pool:
        logger.info("db.pool.closing", pool_size=_pool.get_size())
        await _pool.close()
        _pool = None


PoolFactory = Callable[[], Awaitable[asyncpg.Pool]]


class PoolBackedRepository:
    """Base for asyncpg repositories; the pool is resolved on each call."""

    def __init__(self, get_pool: PoolFactory = get_db_pool):
        self._get_pool = get_pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            yield conn
