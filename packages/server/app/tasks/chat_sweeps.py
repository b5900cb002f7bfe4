"""
ARQ background tasks: scheduled-message dispatch and retention purge.

Dispatch runs every minute, the retention purge hourly. Each job takes a
Redis lock first so overlapping worker instances skip instead of racing.
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.database import async_session_factory, session_scope
from app.core.log_config import configure_logging
from app.core.redis import get_redis, sweep_lock
from app.models.base import utcnow
from app.services.scheduling import dispatch_due, sweep_expired

log = structlog.get_logger()
settings = get_settings()

DISPATCH_LOCK = "dispatch_scheduled_messages"
PURGE_LOCK = "purge_expired_messages"


async def _redis_for(ctx: dict):
    return ctx.get("redis") or await get_redis()


async def dispatch_scheduled_messages(ctx: dict) -> int:
    """Materialize due scheduled messages. Returns the number dispatched."""
    session_factory = ctx.get("session_factory", async_session_factory)
    async with sweep_lock(await _redis_for(ctx), DISPATCH_LOCK) as acquired:
        if not acquired:
            return 0
        return await dispatch_due(session_factory, utcnow())


async def purge_expired_messages(ctx: dict) -> int:
    """Hard-delete messages past their channel's retention. Returns the number deleted."""
    session_factory = ctx.get("session_factory", async_session_factory)
    async with sweep_lock(await _redis_for(ctx), PURGE_LOCK) as acquired:
        if not acquired:
            return 0
        async with session_scope(session_factory) as session:
            purged = await sweep_expired(session, utcnow())

    total = sum(purged.values())
    if total:
        log.info("retention.batch_purged", channels=len(purged), deleted=total)
    return total


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    log.info("chat_sweeps.worker_started")


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [dispatch_scheduled_messages, purge_expired_messages]
    cron_jobs = [
        cron(dispatch_scheduled_messages, second=0, run_at_startup=True),
        # Hourly, off the top of the hour
        cron(purge_expired_messages, minute=15),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
