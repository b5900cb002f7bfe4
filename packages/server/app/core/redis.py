"""Redis connection management and cross-instance sweep locks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis
from redis.exceptions import LockError
import structlog

from app.core.config import get_settings

settings = get_settings()
log = structlog.get_logger()

LOCK_PREFIX = "campus_chat:lock:"

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None


@asynccontextmanager
async def sweep_lock(client: redis.Redis, name: str, timeout: int | None = None) -> AsyncIterator[bool]:
    """Non-blocking named lock. Yields False when another instance holds it.

    The lock expires after ``timeout`` seconds so a crashed holder never
    blocks the sweep forever.
    """
    lock = client.lock(
        f"{LOCK_PREFIX}{name}",
        timeout=timeout or settings.sweep_lock_timeout_seconds,
        blocking=False,
    )
    acquired = await lock.acquire()
    if not acquired:
        log.info("sweep.lock_busy", lock=name)
        yield False
        return
    try:
        yield True
    finally:
        try:
            await lock.release()
        except LockError:
            # Expired while the sweep was still running
            log.warning("sweep.lock_expired", lock=name)
