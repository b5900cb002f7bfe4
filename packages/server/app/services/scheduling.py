"""
Scheduled messages and retention.

Both sweeps act over all channels and bypass caller scoping. They are driven by
the ARQ worker in ``app.tasks.chat_sweeps``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import SessionFactory, session_scope
from app.core.errors import Forbidden, ValidationFailed
from app.core.identity import Caller, actor_columns, actor_from_columns, same_actor, sender_kind_for
from app.models.base import as_utc, utcnow
from app.models.channel import Channel, ChannelSettings
from app.models.message import MAX_BODY_LENGTH, Message, PollVote
from app.models.scheduled_message import ScheduledMessage
from app.services.channels import clamp_retention_days, get_accessible_channel, students_can_send
from campus_chat_shared.schemas.common import MessageKind, ScheduledStatus
from campus_chat_shared.schemas.messages import ScheduledMessageCreate, ScheduledMessageRead

log = structlog.get_logger()


class ChannelUnavailable(Exception):
    """The target channel of a due scheduled message is missing or inactive."""


def to_scheduled_read(row: ScheduledMessage) -> ScheduledMessageRead:
    sender = actor_from_columns(row.student_id, row.staff_id, row.sender_kind)
    return ScheduledMessageRead(
        id=row.id,
        channel_id=row.channel_id,
        sender_kind=row.sender_kind,
        sender_id=sender.id if sender else 0,
        body=row.body,
        scheduled_at=row.scheduled_at,
        status=row.status,
        sent_at=row.sent_at,
        message_id=row.message_id,
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# Caller-facing
# ---------------------------------------------------------------------------


async def create_scheduled_message(
    session: AsyncSession,
    channel_id: int,
    caller: Caller,
    req: ScheduledMessageCreate,
    now: Optional[datetime] = None,
) -> ScheduledMessage:
    await get_accessible_channel(session, channel_id, caller)
    if caller.is_student and not await students_can_send(session, channel_id):
        raise Forbidden("Students cannot send messages in this channel", reason="students_cannot_send")

    body = (req.body or "").strip()[:MAX_BODY_LENGTH]
    if not body:
        raise ValidationFailed("Message body is required", reason="empty_message")

    now = as_utc(now) if now is not None else utcnow()
    scheduled_at = as_utc(req.scheduled_at)
    if scheduled_at <= now:
        raise ValidationFailed("scheduled_at must be in the future", reason="scheduled_at_not_future")

    row = ScheduledMessage(
        channel_id=channel_id,
        sender_kind=sender_kind_for(caller.actor).value,
        body=body,
        scheduled_at=scheduled_at,
        **actor_columns(caller.actor),
    )
    session.add(row)
    await session.flush()

    log.info(
        "scheduled_message.created",
        scheduled_id=row.id,
        channel_id=channel_id,
        sender=caller.key,
        scheduled_at=scheduled_at.isoformat(),
    )
    return row


async def list_scheduled_messages(
    session: AsyncSession,
    channel_id: int,
    caller: Caller,
    status: Optional[ScheduledStatus] = None,
) -> list[ScheduledMessage]:
    """Moderators see every scheduled message in the channel, others only their own."""
    await get_accessible_channel(session, channel_id, caller)

    stmt = select(ScheduledMessage).where(ScheduledMessage.channel_id == channel_id)
    if status is not None:
        stmt = stmt.where(ScheduledMessage.status == status.value)
    result = await session.execute(stmt.order_by(ScheduledMessage.scheduled_at, ScheduledMessage.id))
    rows = result.scalars().all()

    if caller.can_moderate:
        return list(rows)
    return [
        r for r in rows
        if same_actor(actor_from_columns(r.student_id, r.staff_id, r.sender_kind), caller.actor)
    ]


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


async def _dispatch_one(session: AsyncSession, scheduled_id: int, now: datetime) -> Optional[int]:
    """Claim and materialize one row. Returns the new message id, or None if already claimed."""
    claim = await session.execute(
        update(ScheduledMessage)
        .where(
            ScheduledMessage.id == scheduled_id,
            ScheduledMessage.status == ScheduledStatus.PENDING.value,
        )
        .values(status=ScheduledStatus.SENT.value, sent_at=now)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        return None

    row = await session.get(ScheduledMessage, scheduled_id)
    channel = await session.get(Channel, row.channel_id)
    if channel is None or not channel.active:
        raise ChannelUnavailable(f"channel {row.channel_id} is not active")

    message = Message(
        channel_id=row.channel_id,
        sender_kind=row.sender_kind,
        student_id=row.student_id,
        staff_id=row.staff_id,
        body=row.body,
        kind=MessageKind.TEXT.value,
        created_at=now,
    )
    session.add(message)
    await session.flush()

    row.message_id = message.id
    session.add(row)
    await session.flush()
    return message.id


async def dispatch_due(session_factory: SessionFactory, now: Optional[datetime] = None) -> int:
    """Materialize every pending scheduled message due at ``now``.

    Each row is claimed and materialized in its own transaction, so a failure
    leaves that row pending for the next run without affecting the others.
    Returns the number of messages created.
    """
    now = as_utc(now) if now is not None else utcnow()

    async with session_factory() as session:
        result = await session.execute(
            select(ScheduledMessage.id)
            .where(
                ScheduledMessage.status == ScheduledStatus.PENDING.value,
                ScheduledMessage.scheduled_at <= now,
            )
            .order_by(ScheduledMessage.scheduled_at, ScheduledMessage.id)
        )
        due_ids = [row[0] for row in result.all()]

    dispatched = 0
    for scheduled_id in due_ids:
        try:
            async with session_scope(session_factory) as session:
                message_id = await _dispatch_one(session, scheduled_id, now)
        except ChannelUnavailable as exc:
            # Stays pending; retried every run until the channel is reactivated
            log.warning("scheduled_message.channel_unavailable", scheduled_id=scheduled_id, error=str(exc))
            continue
        except Exception:
            log.exception("scheduled_message.dispatch_failed", scheduled_id=scheduled_id)
            continue
        if message_id is not None:
            dispatched += 1
            log.info("scheduled_message.dispatched", scheduled_id=scheduled_id, message_id=message_id)

    if due_ids:
        log.info("scheduled_message.batch_dispatched", due=len(due_ids), dispatched=dispatched)
    return dispatched


async def sweep_expired(session: AsyncSession, now: Optional[datetime] = None) -> dict[int, int]:
    """Hard-delete messages (and their votes) older than each channel's retention.

    Returns deleted-message counts for the channels that lost any messages.
    """
    now = as_utc(now) if now is not None else utcnow()

    result = await session.execute(
        select(Channel.id, ChannelSettings.auto_delete_after_days)
        .select_from(Channel)
        .outerjoin(ChannelSettings, ChannelSettings.channel_id == Channel.id)
        .order_by(Channel.id)
    )

    purged: dict[int, int] = {}
    for channel_id, days in result.all():
        retention = clamp_retention_days(days)
        cutoff = now - timedelta(days=retention)
        expired = select(Message.id).where(Message.channel_id == channel_id, Message.created_at < cutoff)

        await session.execute(
            delete(PollVote)
            .where(PollVote.message_id.in_(expired))
            .execution_options(synchronize_session=False)
        )
        deleted = await session.execute(
            delete(Message)
            .where(Message.channel_id == channel_id, Message.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount:
            purged[channel_id] = deleted.rowcount
            log.info(
                "retention.channel_purged",
                channel_id=channel_id,
                retention_days=retention,
                deleted=deleted.rowcount,
            )
    return purged
