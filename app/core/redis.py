"""Shared Redis connection backing the pipeline job queue."""

import logging
from typing import Any, Awaitable, cast

from redis.asyncio import Redis

from app.config import settings

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None


class RedisQueueClient:
    """List-queue commands used by the pipeline task manager.

    Replies are decoded to ``str`` so job payloads can be parsed as JSON directly.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def llen(self, key: str) -> int:
        return int(await cast(Awaitable[int], self._client.llen(key)))

    async def rpush(self, key: str, payload: str) -> int:
        return int(await cast(Awaitable[int], self._client.rpush(key, payload)))

    async def blpop(self, key: str, *, timeout: int) -> tuple[str, str] | None:
        """Block until a job arrives or ``timeout`` seconds pass.

        Redis hands each element to exactly one blocked client, so a run id is
        never dequeued by two workers.
        """
        reply = await cast(Awaitable[list[Any] | None], self._client.blpop([key], timeout=timeout))
        if not reply or len(reply) < 2:
            return None
        queue_key, payload = reply[0], reply[1]
        return str(queue_key), str(payload)


def get_redis_client() -> Redis:
    """Lazily create the process-wide client from ``REDIS_URL``."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            # Worker connections sit in BLPOP for long stretches.
            health_check_interval=30,
        )
        logger.info("Redis client created", extra={"redis_url": _redacted(settings.redis_url)})
    return _redis_client


def get_redis_queue_client() -> RedisQueueClient:
    return RedisQueueClient(get_redis_client())


def _redacted(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if "@" not in rest:
        return url
    return f"{scheme}{sep}***@{rest.split('@', 1)[1]}"


async def close_redis() -> None:
    """Close the shared client; the next caller gets a fresh one."""
    global _redis_client
    if _redis_client is None:
        return
    client, _redis_client = _redis_client, None
    await client.aclose()
    logger.info("Redis connection closed")
