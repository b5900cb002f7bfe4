"""
Message store: post, list, edit, moderate and soft-delete channel messages.

Handles:
- Send permission (students_can_send) and sender-kind resolution
- Cursor pagination on the monotonically increasing message id
- Enrichment of a page in a fixed number of queries (names, votes, voters)
- The 5-minute self-edit window and terminal soft delete
"""

from __future__ import annotations

import posixpath
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Forbidden, NotFound, ValidationFailed
from app.core.identity import (
    Caller,
    StaffActor,
    StudentActor,
    actor_columns,
    actor_from_columns,
    actor_key,
    display_names,
    name_of,
    same_actor,
    sender_kind_for,
)
from app.models.base import as_utc, utcnow
from app.models.message import MAX_ATTACHMENT_URL_LENGTH, MAX_BODY_LENGTH, Message, PollVote
from app.services.channels import get_accessible_channel, students_can_send
from app.services.polls import build_poll_options, build_poll_read
from campus_chat_shared.schemas.common import AttachmentKind, MessageKind
from campus_chat_shared.schemas.messages import MessagePost, MessageRead

log = structlog.get_logger()

EDIT_WINDOW = timedelta(minutes=5)
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def within_edit_window(created_at: datetime, now: Optional[datetime] = None) -> bool:
    """True while at most EDIT_WINDOW has elapsed since creation (inclusive)."""
    now = as_utc(now) if now is not None else utcnow()
    return now - as_utc(created_at) <= EDIT_WINDOW


def clamp_page_size(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_PAGE_SIZE
    return min(limit, MAX_PAGE_SIZE)


def infer_attachment_kind(url: str) -> AttachmentKind:
    ext = posixpath.splitext(url.split("?", 1)[0])[1].lower()
    return AttachmentKind.IMAGE if ext in IMAGE_EXTENSIONS else AttachmentKind.FILE


def sender_of(message: Message):
    return actor_from_columns(message.student_id, message.staff_id, message.sender_kind)


def deleter_of(message: Message):
    return actor_from_columns(message.deleted_by_student_id, message.deleted_by_staff_id)


async def get_message_for_caller(
    session: AsyncSession, message_id: int, caller: Caller, include_own_hidden: bool = False
) -> Message:
    """Message in a channel the caller can see.

    Hidden messages exist only for moderators, and for their sender when
    ``include_own_hidden`` is set.
    """
    message = await session.get(Message, message_id)
    if message is not None and message.hidden and not caller.can_moderate:
        if not (include_own_hidden and same_actor(sender_of(message), caller.actor)):
            message = None
    if message is None:
        raise NotFound("Message not found", reason="message_not_found")
    await get_accessible_channel(session, message.channel_id, caller)
    return message


def _ensure_live(message: Message) -> None:
    if message.deleted:
        raise NotFound("Message was deleted", reason="message_deleted")


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------


async def post_message(
    session: AsyncSession,
    channel_id: int,
    caller: Caller,
    req: MessagePost,
) -> Message:
    """Post a text/attachment message or a poll (question in ``body``)."""
    await get_accessible_channel(session, channel_id, caller)

    if caller.is_student and not await students_can_send(session, channel_id):
        raise Forbidden("Students cannot send messages in this channel", reason="students_cannot_send")

    body = (req.body or "").strip()[:MAX_BODY_LENGTH]
    attachment_url = (req.attachment_url or "").strip() or None
    if attachment_url and len(attachment_url) > MAX_ATTACHMENT_URL_LENGTH:
        raise ValidationFailed("Attachment URL is too long", reason="attachment_url_too_long")

    is_poll = req.kind == MessageKind.POLL or bool(req.poll_options)
    options = None
    if is_poll:
        if not body:
            raise ValidationFailed("A poll needs a question", reason="poll_question_required")
        options = build_poll_options(req.poll_options)
    elif not body and not attachment_url:
        raise ValidationFailed("Message body or attachment is required", reason="empty_message")

    attachment_kind = None
    if attachment_url:
        attachment_kind = (req.attachment_kind or infer_attachment_kind(attachment_url)).value

    message = Message(
        channel_id=channel_id,
        sender_kind=sender_kind_for(caller.actor).value,
        body=body,
        attachment_url=attachment_url,
        attachment_kind=attachment_kind,
        kind=(MessageKind.POLL if is_poll else MessageKind.TEXT).value,
        options=options,
        option_counts=[0] * len(options) if options else None,
        **actor_columns(caller.actor),
    )
    session.add(message)
    await session.flush()

    log.info(
        "message.posted",
        message_id=message.id,
        channel_id=channel_id,
        sender=caller.key,
        kind=message.kind,
    )
    return message


# ---------------------------------------------------------------------------
# List & enrich
# ---------------------------------------------------------------------------


async def list_messages(
    session: AsyncSession,
    channel_id: int,
    caller: Caller,
    before: Optional[int] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[MessageRead]:
    """One page of messages older than ``before``, oldest first."""
    await get_accessible_channel(session, channel_id, caller)

    stmt = select(Message).where(Message.channel_id == channel_id)
    if before is not None:
        stmt = stmt.where(Message.id < before)
    if not caller.can_moderate:
        stmt = stmt.where(Message.hidden.is_(False))
    stmt = stmt.order_by(Message.id.desc()).limit(clamp_page_size(limit))

    result = await session.execute(stmt)
    messages = list(reversed(result.scalars().all()))
    return await enrich_messages(session, messages, caller, now=now)


async def _my_votes(session: AsyncSession, poll_ids: list[int], caller: Caller) -> dict[int, int]:
    if not poll_ids:
        return {}
    result = await session.execute(
        select(PollVote.message_id, PollVote.option_index).where(
            PollVote.message_id.in_(poll_ids),
            PollVote.voter_key == caller.key,
        )
    )
    return {mid: idx for mid, idx in result.all()}


async def _voter_names(session: AsyncSession, poll_ids: list[int]) -> dict[int, dict[int, list[str]]]:
    """message id -> option index -> voter names, in vote order."""
    if not poll_ids:
        return {}
    result = await session.execute(
        select(PollVote)
        .where(PollVote.message_id.in_(poll_ids))
        .order_by(PollVote.message_id, PollVote.id)
    )
    votes = result.scalars().all()
    voters = [actor_from_columns(v.voter_student_id, v.voter_staff_id) for v in votes]
    names = await display_names(session, voters)

    by_message: dict[int, dict[int, list[str]]] = defaultdict(lambda: defaultdict(list))
    for vote, voter in zip(votes, voters):
        by_message[vote.message_id][vote.option_index].append(name_of(names, voter))
    return by_message


async def enrich_messages(
    session: AsyncSession,
    messages: Sequence[Message],
    caller: Caller,
    now: Optional[datetime] = None,
) -> list[MessageRead]:
    """Attach names, caller-relative flags and poll blocks to a page of messages."""
    if not messages:
        return []
    now = as_utc(now) if now is not None else utcnow()

    senders = {m.id: sender_of(m) for m in messages}
    deleters = {m.id: deleter_of(m) for m in messages if m.deleted}
    names = await display_names(session, [*senders.values(), *deleters.values()])

    live_polls = [m for m in messages if m.kind == MessageKind.POLL.value and not m.deleted]
    my_votes = await _my_votes(session, [m.id for m in live_polls], caller)
    voter_poll_ids = [
        m.id for m in live_polls if caller.is_super_admin or same_actor(senders[m.id], caller.actor)
    ]
    voters = await _voter_names(session, voter_poll_ids)

    out = []
    for m in messages:
        sender = senders[m.id]
        is_own = same_actor(sender, caller.actor)
        is_text = m.kind == MessageKind.TEXT.value
        live = not m.deleted

        poll = None
        if live and m.kind == MessageKind.POLL.value:
            poll = build_poll_read(
                m,
                my_vote=my_votes.get(m.id),
                voters=voters.get(m.id, {}) if m.id in voter_poll_ids else None,
            )

        out.append(
            MessageRead(
                id=m.id,
                channel_id=m.channel_id,
                kind=m.kind,
                sender_kind=m.sender_kind,
                sender_id=sender.id if sender else 0,
                sender_name=name_of(names, sender),
                body=m.body if live else None,
                attachment_url=m.attachment_url if live else None,
                attachment_kind=m.attachment_kind if live else None,
                hidden=m.hidden,
                deleted=m.deleted,
                deleted_at=m.deleted_at,
                deleted_by_name=name_of(names, deleters[m.id]) if m.deleted else None,
                created_at=m.created_at,
                edited_at=m.edited_at,
                is_own=is_own,
                can_edit=is_own and is_text and live and within_edit_window(m.created_at, now),
                can_edit_any=caller.is_super_admin and is_text and live,
                can_edit_poll=(
                    live
                    and m.kind == MessageKind.POLL.value
                    and (is_own or caller.is_super_admin)
                ),
                poll=poll,
            )
        )
    return out


async def enrich_message(session: AsyncSession, message: Message, caller: Caller) -> MessageRead:
    return (await enrich_messages(session, [message], caller))[0]


# ---------------------------------------------------------------------------
# Edit / moderate / delete
# ---------------------------------------------------------------------------


async def edit_message(
    session: AsyncSession,
    message_id: int,
    caller: Caller,
    body: str,
    now: Optional[datetime] = None,
) -> Message:
    """Edit a text message: super-admins always, owners within EDIT_WINDOW."""
    message = await get_message_for_caller(session, message_id, caller)
    _ensure_live(message)
    if message.kind != MessageKind.TEXT.value:
        raise ValidationFailed("Polls are edited through the poll endpoint", reason="not_a_text_message")

    if not caller.is_super_admin:
        if not same_actor(sender_of(message), caller.actor):
            raise Forbidden("You can only edit your own messages", reason="not_message_owner")
        if not within_edit_window(message.created_at, now):
            raise Forbidden("Messages can only be edited for 5 minutes", reason="edit_window_expired")

    body = (body or "").strip()[:MAX_BODY_LENGTH]
    if not body and not message.attachment_url:
        raise ValidationFailed("Message body is required", reason="empty_message")

    message.body = body
    message.edited_at = as_utc(now) if now is not None else utcnow()
    session.add(message)
    await session.flush()

    log.info("message.edited", message_id=message_id, by=caller.key)
    return message


async def moderate_message(session: AsyncSession, message_id: int, caller: Caller, hidden: bool) -> Message:
    if not caller.can_moderate:
        raise Forbidden("Moderator access required", reason="moderator_required")
    message = await get_message_for_caller(session, message_id, caller)
    _ensure_live(message)

    message.hidden = hidden
    message.moderated_by = caller.actor.id if isinstance(caller.actor, StaffActor) else None
    message.moderated_at = utcnow()
    session.add(message)
    await session.flush()

    log.info("message.moderated", message_id=message_id, hidden=hidden, by=caller.key)
    return message


async def soft_delete_message(session: AsyncSession, message_id: int, caller: Caller) -> Message:
    """Mark deleted (terminal). Allowed for the sender or a moderator."""
    message = await get_message_for_caller(session, message_id, caller, include_own_hidden=True)
    _ensure_live(message)

    if not (caller.can_moderate or same_actor(sender_of(message), caller.actor)):
        raise Forbidden("You can only delete your own messages", reason="not_message_owner")

    message.deleted = True
    message.deleted_at = utcnow()
    message.deleted_by_student_id = caller.actor.id if isinstance(caller.actor, StudentActor) else None
    message.deleted_by_staff_id = caller.actor.id if isinstance(caller.actor, StaffActor) else None
    session.add(message)
    await session.flush()

    log.info("message.deleted", message_id=message_id, by=actor_key(caller.actor))
    return message
