"""
Poll engine: option parsing, voting and poll edits.

Poll state always lives on the message row as two parallel JSON arrays,
``options`` and ``option_counts``. Counts are a cache of the vote rows and are
re-tallied from them on every vote, under a row lock on the message, so two
racing voters can never leave them out of step with the votes.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, InternalError, NotFound, ValidationFailed
from app.core.identity import Caller, actor_columns, actor_from_columns, same_actor
from app.models.base import utcnow
from app.models.message import MAX_BODY_LENGTH, Message, PollVote
from app.services.channels import get_accessible_channel
from campus_chat_shared.schemas.common import LegacyVote, MessageKind
from campus_chat_shared.schemas.messages import PollOptionVoters, PollRead

log = structlog.get_logger()

POLL_MAX_OPTIONS = 20
POLL_MIN_OPTIONS = 2
DEFAULT_POLL_OPTIONS = ["Yes", "No"]
VOTER_NAMES_SHOWN = 20

_LEGACY_INDEX = {LegacyVote.YES: 0, LegacyVote.NO: 1}


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def clean_poll_options(raw: Optional[Iterable[object]]) -> list[str]:
    """Trim, drop empties and cap at POLL_MAX_OPTIONS."""
    cleaned = [str(o).strip() for o in (raw or ()) if o is not None]
    return [o for o in cleaned if o][:POLL_MAX_OPTIONS]


def build_poll_options(raw: Optional[Sequence[object]]) -> list[str]:
    """Options for a new poll. No options at all means the default yes/no pair."""
    if not raw:
        return list(DEFAULT_POLL_OPTIONS)
    options = clean_poll_options(raw)
    if len(options) < POLL_MIN_OPTIONS:
        raise ValidationFailed("A poll needs at least two options", reason="too_few_poll_options")
    return options


def parse_poll(message: Message) -> tuple[list[str], list[int]]:
    """Validated (options, counts) of a stored poll; malformed rows are a server fault."""
    options, counts = message.options, message.option_counts
    if (
        not isinstance(options, list)
        or not isinstance(counts, list)
        or len(options) != len(counts)
        or len(options) < POLL_MIN_OPTIONS
        or not all(isinstance(o, str) for o in options)
        or not all(isinstance(c, int) and c >= 0 for c in counts)
    ):
        raise InternalError(f"Malformed poll data on message {message.id}", reason="malformed_poll")
    return list(options), list(counts)


def legacy_label(option_count: int, option_index: Optional[int]) -> Optional[LegacyVote]:
    """yes/no label for a vote, only defined on two-option polls."""
    if option_count != 2 or option_index not in (0, 1):
        return None
    return LegacyVote.YES if option_index == 0 else LegacyVote.NO


def resolve_option_index(
    option_count: int,
    option_index: Optional[int],
    legacy_vote: Optional[LegacyVote],
) -> int:
    if legacy_vote is not None:
        if option_count != 2:
            raise ValidationFailed(
                "yes/no votes are only accepted on two-option polls",
                reason="legacy_vote_not_supported",
            )
        mapped = _LEGACY_INDEX[legacy_vote]
        if option_index is not None and option_index != mapped:
            raise ValidationFailed("option_index and legacy_vote disagree", reason="invalid_option")
        return mapped

    if option_index is None:
        raise ValidationFailed("option_index is required", reason="invalid_option")
    if not 0 <= option_index < option_count:
        raise ValidationFailed("Option index out of range", reason="invalid_option")
    return option_index


async def tally_votes(session: AsyncSession, message_id: int, option_count: int) -> list[int]:
    result = await session.execute(
        select(PollVote.option_index, func.count(PollVote.id))
        .where(PollVote.message_id == message_id)
        .group_by(PollVote.option_index)
    )
    counts = [0] * option_count
    for index, count in result.all():
        if 0 <= index < option_count:
            counts[index] = count
    return counts


def build_poll_read(
    message: Message,
    my_vote: Optional[int] = None,
    voters: Optional[dict[int, list[str]]] = None,
) -> PollRead:
    """Caller-facing poll block.

    ``voters`` maps option index to every voter name; when given, names are
    capped per option while the count stays exact.
    """
    options, counts = parse_poll(message)
    two_option = len(options) == 2

    voter_blocks = None
    if voters is not None:
        voter_blocks = [
            PollOptionVoters(
                option_index=i,
                count=counts[i],
                names=voters.get(i, [])[:VOTER_NAMES_SHOWN],
            )
            for i in range(len(options))
        ]

    return PollRead(
        options=options,
        option_counts=counts,
        total_votes=sum(counts),
        my_vote=my_vote,
        my_legacy_vote=legacy_label(len(options), my_vote),
        yes_count=counts[0] if two_option else None,
        no_count=counts[1] if two_option else None,
        voters=voter_blocks,
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def _get_live_poll(
    session: AsyncSession, message_id: int, caller: Caller, *, lock: bool = False
) -> Message:
    stmt = select(Message).where(Message.id == message_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    message = result.scalar_one_or_none()
    if message is None or (message.hidden and not caller.can_moderate):
        raise NotFound("Message not found", reason="message_not_found")
    await get_accessible_channel(session, message.channel_id, caller)
    if message.deleted:
        raise NotFound("Message was deleted", reason="message_deleted")
    if message.kind != MessageKind.POLL.value:
        raise ValidationFailed("Message is not a poll", reason="not_a_poll")
    return message


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def vote(
    session: AsyncSession,
    message_id: int,
    caller: Caller,
    option_index: Optional[int] = None,
    legacy_vote: Optional[LegacyVote] = None,
) -> PollRead:
    """Record the caller's single vote and return the refreshed poll."""
    message = await _get_live_poll(session, message_id, caller, lock=True)
    options, _ = parse_poll(message)
    index = resolve_option_index(len(options), option_index, legacy_vote)

    existing = await session.execute(
        select(PollVote.id).where(PollVote.message_id == message_id, PollVote.voter_key == caller.key)
    )
    if existing.scalar_one_or_none() is not None:
        raise Conflict("You have already voted on this poll", reason="already_voted")

    label = legacy_label(len(options), index)
    session.add(
        PollVote(
            message_id=message_id,
            voter_key=caller.key,
            option_index=index,
            legacy_vote=label.value if label else None,
            **actor_columns(caller.actor, student="voter_student_id", staff="voter_staff_id"),
        )
    )
    try:
        await session.flush()
    except IntegrityError:
        # A concurrent request inserted the same voter first
        raise Conflict("You have already voted on this poll", reason="already_voted")

    message.option_counts = await tally_votes(session, message_id, len(options))
    session.add(message)
    await session.flush()

    log.info("poll.vote_recorded", message_id=message_id, voter=caller.key, option_index=index)
    return build_poll_read(message, my_vote=index)


async def edit_poll(
    session: AsyncSession,
    message_id: int,
    caller: Caller,
    question: Optional[str] = None,
    options: Optional[Sequence[object]] = None,
) -> Message:
    """Change the question and/or replace the options.

    Replacing options deletes every vote and resets counts to zeros in the
    same transaction.
    """
    message = await _get_live_poll(session, message_id, caller, lock=True)
    poster = actor_from_columns(message.student_id, message.staff_id, message.sender_kind)
    if not (caller.is_super_admin or same_actor(poster, caller.actor)):
        raise Forbidden("Only the poll's author can edit it", reason="not_message_owner")

    if question is None and options is None:
        raise ValidationFailed("Nothing to update", reason="empty_update")

    if question is not None:
        question = question.strip()
        if not question:
            raise ValidationFailed("Poll question cannot be empty", reason="empty_message")
        message.body = question[:MAX_BODY_LENGTH]

    reset = False
    if options is not None:
        new_options = clean_poll_options(options)
        if len(new_options) < POLL_MIN_OPTIONS:
            raise ValidationFailed("A poll needs at least two options", reason="too_few_poll_options")
        await session.execute(
            delete(PollVote)
            .where(PollVote.message_id == message_id)
            .execution_options(synchronize_session=False)
        )
        message.options = new_options
        message.option_counts = [0] * len(new_options)
        reset = True

    message.edited_at = utcnow()
    session.add(message)
    await session.flush()

    log.info("poll.edited", message_id=message_id, by=caller.key, votes_reset=reset)
    return message
