import asyncio

import redis.asyncio as redis
import structlog

from app.core.config import settings

logger = structlog.get_logger(__name__)

_redis_client: redis.Redis | None = None
_redis_lock = asyncio.Lock()


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def get_redis() -> redis.Redis:
    """Return the shared Redis client, creating and pinging it on first call."""
    global _redis_client

    if _redis_client is None:
        async with _redis_lock:
            if _redis_client is None:
                logger.info("redis.connecting", url=_redacted(settings.REDIS_URL))
                client = redis.from_url(
                    settings.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=50,
                )
                await client.ping()
                _redis_client = client
                logger.info("redis.connected")
    return _redis_client


async def close_redis():
    global _redis_client
    if _redis_client:
        logger.info("redis.closing")
        await _redis_client.aclose()
        _redis_client = None
