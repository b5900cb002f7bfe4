"""
Tests for the ARQ sweep jobs: Redis lock guarding and wiring to the services.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

from app.models.base import utcnow
from app.models.scheduled_message import ScheduledMessage
from app.tasks.chat_sweeps import (
    DISPATCH_LOCK,
    PURGE_LOCK,
    WorkerSettings,
    dispatch_scheduled_messages,
    purge_expired_messages,
)


class _FakeLock:
    def __init__(self, available: bool):
        self.available = available
        self.released = False

    async def acquire(self) -> bool:
        return self.available

    async def release(self) -> None:
        self.released = True


class _FakeRedis:
    """Just enough of redis.asyncio.Redis for sweep_lock."""

    def __init__(self, available: bool = True):
        self.available = available
        self.locks: dict[str, _FakeLock] = {}

    def lock(self, name: str, timeout=None, blocking=True) -> _FakeLock:
        lock = _FakeLock(self.available)
        self.locks[name] = lock
        return lock


class TestDispatchJob:
    async def test_skips_when_lock_is_held(self, session_factory):
        redis = _FakeRedis(available=False)
        with patch("app.tasks.chat_sweeps.dispatch_due", new=AsyncMock()) as dispatch:
            result = await dispatch_scheduled_messages({"redis": redis, "session_factory": session_factory})
        assert result == 0
        dispatch.assert_not_awaited()
        assert redis.locks[f"campus_chat:lock:{DISPATCH_LOCK}"].released is False

    async def test_dispatches_and_releases_lock(self, session, session_factory, channel):
        session.add(
            ScheduledMessage(
                channel_id=channel.id,
                sender_kind="faculty",
                staff_id=3,
                body="Lab moved to room 4",
                scheduled_at=utcnow() - timedelta(minutes=1),
            )
        )
        await session.commit()

        redis = _FakeRedis()
        result = await dispatch_scheduled_messages({"redis": redis, "session_factory": session_factory})
        assert result == 1
        assert redis.locks[f"campus_chat:lock:{DISPATCH_LOCK}"].released is True


class TestPurgeJob:
    async def test_skips_when_lock_is_held(self, session_factory):
        with patch("app.tasks.chat_sweeps.sweep_expired", new=AsyncMock()) as sweep:
            result = await purge_expired_messages(
                {"redis": _FakeRedis(available=False), "session_factory": session_factory}
            )
        assert result == 0
        sweep.assert_not_awaited()

    async def test_returns_total_deleted(self, session_factory):
        redis = _FakeRedis()
        with patch(
            "app.tasks.chat_sweeps.sweep_expired", new=AsyncMock(return_value={1: 3, 2: 4})
        ) as sweep:
            result = await purge_expired_messages({"redis": redis, "session_factory": session_factory})
        assert result == 7
        sweep.assert_awaited_once()
        assert redis.locks[f"campus_chat:lock:{PURGE_LOCK}"].released is True


class TestWorkerSettings:
    def test_cron_jobs_registered(self):
        coroutines = {job.coroutine for job in WorkerSettings.cron_jobs}
        assert coroutines == {dispatch_scheduled_messages, purge_expired_messages}
        assert set(WorkerSettings.functions) == coroutines
