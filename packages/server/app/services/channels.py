"""
Channel directory service: channel existence, visibility scoping, explicit
membership and per-channel settings.

Handles:
- Visible-channel listing per caller (students, unrestricted staff, college-scoped staff)
- Club channels with transitive membership through approved club members
- Channel creation with club auto-enrollment
- Settings read (with defaults) and clamped upsert
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import and_, false, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound
from app.core.identity import Actor, Caller, StaffActor, StudentActor, actor_columns, actor_key
from app.models.base import utcnow
from app.models.channel import Channel, ChannelMembership, ChannelSettings
from app.models.people import ClubMember, StaffUser, Student
from campus_chat_shared.schemas.channels import (
    ChannelCreate,
    ChannelRead,
    ChannelSettingsRead,
    ChannelSettingsUpdate,
)
from campus_chat_shared.schemas.common import ActorKind, ChannelType, StaffRole

log = structlog.get_logger()

DEFAULT_RETENTION_DAYS = 30
MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 30
CLUB_APPROVED = "approved"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def clamp_retention_days(value: Optional[int]) -> int:
    """Effective retention window: missing or zero means the default, else clamp to [1, 30]."""
    if not value:
        return DEFAULT_RETENTION_DAYS
    return max(MIN_RETENTION_DAYS, min(MAX_RETENTION_DAYS, int(value)))


def to_channel_read(channel: Channel, is_member: bool = False) -> ChannelRead:
    return ChannelRead(
        id=channel.id,
        type=channel.type,
        name=channel.name,
        subject_ref=channel.subject_ref,
        club_ref=channel.club_ref,
        event_ref=channel.event_ref,
        college_ref=channel.college_ref,
        active=channel.active,
        is_member=is_member,
        created_at=channel.created_at,
    )


def _member_exists(actor: Actor):
    return (
        select(ChannelMembership.id)
        .where(
            ChannelMembership.channel_id == Channel.id,
            ChannelMembership.member_key == actor_key(actor),
        )
        .exists()
    )


def _approved_club_member_exists(student_id: int):
    return (
        select(ClubMember.id)
        .where(
            ClubMember.club_id == Channel.club_ref,
            ClubMember.student_id == student_id,
            ClubMember.status == CLUB_APPROVED,
        )
        .exists()
    )


def _visibility_clause(caller: Caller):
    """SQL predicate selecting the channels a caller may see (besides `active`)."""
    actor = caller.actor
    if isinstance(actor, StudentActor):
        return or_(
            _member_exists(actor),
            and_(Channel.type == ChannelType.CLUB.value, _approved_club_member_exists(actor.id)),
        )
    if caller.unrestricted:
        return None
    if caller.college_ids:
        return or_(_member_exists(actor), Channel.college_ref.in_(caller.college_ids))
    return or_(_member_exists(actor), false())


async def _member_channel_ids(session: AsyncSession, actor: Actor) -> set[int]:
    result = await session.execute(
        select(ChannelMembership.channel_id).where(ChannelMembership.member_key == actor_key(actor))
    )
    return {row[0] for row in result.all()}


# ---------------------------------------------------------------------------
# Lookup & visibility
# ---------------------------------------------------------------------------


async def get_accessible_channel(session: AsyncSession, channel_id: int, caller: Caller) -> Channel:
    """Active channel visible to the caller, else NotFound.

    Never-existed, deactivated and out-of-scope channels look the same.
    """
    stmt = select(Channel).where(Channel.id == channel_id, Channel.active.is_(True))
    clause = _visibility_clause(caller)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    channel = result.scalar_one_or_none()
    if channel is None:
        raise NotFound("Channel not found", reason="channel_not_found")
    return channel


async def list_visible_channels(session: AsyncSession, caller: Caller) -> list[ChannelRead]:
    """All active channels the caller can see, ordered by name, with membership info."""
    stmt = select(Channel).where(Channel.active.is_(True))
    clause = _visibility_clause(caller)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt.order_by(Channel.name, Channel.id))
    channels = result.scalars().all()

    member_ids = await _member_channel_ids(session, caller.actor)
    return [to_channel_read(ch, ch.id in member_ids) for ch in channels]


async def get_channel_by_club(
    session: AsyncSession, club_id: int, caller: Optional[Caller] = None
) -> Optional[Channel]:
    """First active channel bound to the club, or None. Scoped to ``caller`` when given."""
    stmt = select(Channel).where(Channel.club_ref == club_id, Channel.active.is_(True))
    clause = _visibility_clause(caller) if caller is not None else None
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt.order_by(Channel.id).limit(1))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Create / membership / deactivate
# ---------------------------------------------------------------------------


async def add_member(session: AsyncSession, channel_id: int, actor: Actor) -> bool:
    """Enroll an actor explicitly. Returns False if already a member."""
    key = actor_key(actor)
    existing = await session.execute(
        select(ChannelMembership.id).where(
            ChannelMembership.channel_id == channel_id,
            ChannelMembership.member_key == key,
        )
    )
    if existing.scalar_one_or_none() is not None:
        return False

    session.add(ChannelMembership(channel_id=channel_id, member_key=key, **actor_columns(actor)))
    await session.flush()
    return True


async def enroll_member(
    session: AsyncSession,
    channel_id: int,
    member_type: ActorKind,
    member_id: int,
    caller: Caller,
) -> bool:
    """Moderator-driven enrollment of an existing student or staff user."""
    await get_accessible_channel(session, channel_id, caller)

    if member_type == ActorKind.STUDENT:
        person = await session.get(Student, member_id)
        actor: Actor = StudentActor(member_id)
    else:
        person = await session.get(StaffUser, member_id)
        actor = StaffActor(member_id, person.role if person else StaffRole.ADMIN.value)
    if person is None:
        raise NotFound("Member not found", reason="member_not_found")

    added = await add_member(session, channel_id, actor)
    log.info("channel.member_added", channel_id=channel_id, member=actor_key(actor), added=added, by=caller.key)
    return added


async def create_channel(session: AsyncSession, req: ChannelCreate, caller: Caller) -> Channel:
    """Create a channel; club channels enroll every currently-approved club member."""
    channel = Channel(
        type=req.type.value,
        name=req.name.strip(),
        subject_ref=req.subject_ref,
        club_ref=req.club_ref,
        event_ref=req.event_ref,
        college_ref=req.college_ref,
        created_by=caller.actor.id if isinstance(caller.actor, StaffActor) else None,
    )
    session.add(channel)
    await session.flush()

    enrolled = 0
    if req.type == ChannelType.CLUB:
        result = await session.execute(
            select(ClubMember.student_id).where(
                ClubMember.club_id == req.club_ref,
                ClubMember.status == CLUB_APPROVED,
            )
        )
        for student_id in sorted({row[0] for row in result.all()}):
            if await add_member(session, channel.id, StudentActor(student_id)):
                enrolled += 1

    log.info(
        "channel.created",
        channel_id=channel.id,
        type=channel.type,
        creator=caller.key,
        enrolled=enrolled,
    )
    return channel


async def deactivate_channel(session: AsyncSession, channel_id: int, caller: Caller) -> None:
    channel = await get_accessible_channel(session, channel_id, caller)
    channel.active = False
    session.add(channel)
    await session.flush()
    log.info("channel.deactivated", channel_id=channel_id, by=caller.key)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


async def get_channel_settings(session: AsyncSession, channel_id: int) -> ChannelSettingsRead:
    """Effective settings; (students_can_send=True, 30 days) when no row exists."""
    row = await session.get(ChannelSettings, channel_id)
    if row is None:
        return ChannelSettingsRead(channel_id=channel_id)
    return ChannelSettingsRead(
        channel_id=channel_id,
        students_can_send=row.students_can_send,
        auto_delete_after_days=clamp_retention_days(row.auto_delete_after_days),
    )


async def put_channel_settings(
    session: AsyncSession,
    channel_id: int,
    update: ChannelSettingsUpdate,
    caller: Caller,
) -> ChannelSettingsRead:
    """Upsert settings, creating the row lazily; retention is clamped to [1, 30]."""
    await get_accessible_channel(session, channel_id, caller)

    row = await session.get(ChannelSettings, channel_id)
    if row is None:
        row = ChannelSettings(channel_id=channel_id)

    if update.students_can_send is not None:
        row.students_can_send = update.students_can_send
    if update.auto_delete_after_days is not None:
        row.auto_delete_after_days = clamp_retention_days(update.auto_delete_after_days)
    if isinstance(caller.actor, StaffActor):
        row.updated_by = caller.actor.id
    row.updated_at = utcnow()

    session.add(row)
    await session.flush()
    log.info(
        "channel.settings_updated",
        channel_id=channel_id,
        students_can_send=row.students_can_send,
        auto_delete_after_days=row.auto_delete_after_days,
    )
    return await get_channel_settings(session, channel_id)


async def students_can_send(session: AsyncSession, channel_id: int) -> bool:
    row = await session.get(ChannelSettings, channel_id)
    return True if row is None else row.students_can_send
