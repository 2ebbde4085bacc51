"""Redis connection management and the generation job queue.

Redis holds two kinds of state:
- Dispatcher counters (provider:{name}:*), see mediagen.providers.dispatcher
- The generation job queue (LPUSH by the API, BRPOP by workers)

Configuration via RedisConfig and DispatcherConfig.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from mediagen.app.config import get_settings
from mediagen.app.metrics.collector import (
    QUEUE_DEPTH,
    REDIS_CONNECTED_WORKERS,
    REDIS_POOL_ACTIVE,
)
from mediagen.core.logging_schema import LogEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Job queue (List)
# =============================================================================


class GenerationQueue:
    """FIFO job queue on a Redis list.

    LPUSH on enqueue, BRPOP on dequeue. A job is a JSON object carrying
    at least generation_id. Malformed entries are dropped on read.
    """

    def __init__(self, client: redis.Redis, key: str | None = None) -> None:
        self._client = client
        self._key = key or get_settings().dispatcher.queue_key

    @property
    def key(self) -> str:
        return self._key

    async def push(self, job: dict[str, Any]) -> int:
        """Append a job. Returns the queue length after the push."""
        length = await self._client.lpush(self._key, json.dumps(job))
        QUEUE_DEPTH.set(length)
        return length

    async def pop(self, timeout: int) -> dict[str, Any] | None:
        """Block up to `timeout` seconds for the next job."""
        item = await self._client.brpop([self._key], timeout=timeout)
        if item is None:
            return None

        _key, raw = item
        try:
            job = json.loads(raw)
        except (TypeError, ValueError):
            job = None
        if not isinstance(job, dict) or not job.get("generation_id"):
            logger.warning(
                "Dropping malformed queue entry",
                extra={"event": LogEvent.JOB_INVALID, "raw": str(raw)[:200]},
            )
            return None
        return job

    async def length(self) -> int:
        length = await self._client.llen(self._key)
        QUEUE_DEPTH.set(length)
        return length


# =============================================================================
# Client Management
# =============================================================================

_client: redis.Redis | None = None
_queue: GenerationQueue | None = None


async def init_redis() -> None:
    global _client

    settings = get_settings()
    _client = redis.from_url(
        settings.redis.url,
        decode_responses=True,
        max_connections=settings.redis.max_connections,
    )
    try:
        await _client.ping()
    except redis.ConnectionError as e:
        REDIS_CONNECTED_WORKERS.set(0)
        logger.error(
            "Redis connection failed",
            extra={"event": LogEvent.REDIS_CONNECTION_ERROR, "error": str(e)},
        )
        raise

    REDIS_CONNECTED_WORKERS.set(1)
    logger.info(
        "Redis connected: %s (max_connections=%d)",
        settings.redis.url,
        settings.redis.max_connections,
    )


async def close_redis() -> None:
    global _client, _queue

    if _client:
        await _client.aclose()
        _client = None
        _queue = None
        REDIS_CONNECTED_WORKERS.set(0)
        logger.info("Redis disconnected")


def get_redis() -> redis.Redis:
    if _client is None:
        raise RuntimeError("Redis not initialized")
    return _client


def get_queue() -> GenerationQueue:
    global _queue

    if _client is None:
        raise RuntimeError("Redis not initialized")
    if _queue is None:
        _queue = GenerationQueue(_client)
    return _queue


def update_pool_metrics() -> None:
    if _client is None:
        return
    pool = _client.connection_pool
    REDIS_POOL_ACTIVE.set(len(getattr(pool, "_in_use_connections", ())))
