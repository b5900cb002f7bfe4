"""
Tests for the poll engine.

Covers:
- Option parsing helpers and stored-poll validation
- One vote per voter (service check, database constraint, racing requests)
- Legacy yes/no mapping on two-option polls
- Poll edits: question only, and option replacement resetting votes
- Voter name visibility (poster / super-admin only, capped per option)
"""

from __future__ import annotations

import pytest
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from app.core.errors import Conflict, Forbidden, InternalError, ValidationFailed
from app.core.identity import Caller, StudentActor
from app.models.message import Message, PollVote
from app.models.people import Student
from app.services.channels import add_member
from app.services.messages import list_messages, post_message
from app.services.polls import (
    VOTER_NAMES_SHOWN,
    build_poll_options,
    clean_poll_options,
    edit_poll,
    legacy_label,
    parse_poll,
    resolve_option_index,
    vote,
)
from campus_chat_shared.schemas.common import LegacyVote, MessageKind
from campus_chat_shared.schemas.messages import MessagePost


async def _poll(session, channel, caller, options=None, question="Lunch?"):
    req = MessagePost(body=question, kind=MessageKind.POLL, poll_options=options or [])
    return await post_message(session, channel.id, caller, req)


async def _vote_rows(session, message_id: int) -> int:
    result = await session.execute(
        select(func.count(PollVote.id)).where(PollVote.message_id == message_id)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestOptionHelpers:
    def test_clean_trims_and_drops_empties(self):
        assert clean_poll_options([" a ", "", None, "b", "   "]) == ["a", "b"]

    def test_build_defaults(self):
        assert build_poll_options([]) == ["Yes", "No"]
        assert build_poll_options(None) == ["Yes", "No"]

    def test_build_rejects_single_option(self):
        with pytest.raises(ValidationFailed):
            build_poll_options(["one", ""])

    def test_legacy_label_only_for_two_options(self):
        assert legacy_label(2, 0) == LegacyVote.YES
        assert legacy_label(2, 1) == LegacyVote.NO
        assert legacy_label(3, 0) is None
        assert legacy_label(2, None) is None

    def test_resolve_legacy(self):
        assert resolve_option_index(2, None, LegacyVote.YES) == 0
        assert resolve_option_index(2, None, LegacyVote.NO) == 1
        assert resolve_option_index(2, 1, LegacyVote.NO) == 1

    def test_resolve_legacy_on_multi_option_poll(self):
        with pytest.raises(ValidationFailed) as exc_info:
            resolve_option_index(3, None, LegacyVote.YES)
        assert exc_info.value.reason == "legacy_vote_not_supported"

    @pytest.mark.parametrize("index", [-1, 3, None])
    def test_resolve_out_of_range(self, index):
        with pytest.raises(ValidationFailed):
            resolve_option_index(3, index, None)

    def test_parse_rejects_malformed_poll(self):
        msg = Message(id=9, channel_id=1, sender_kind="admin", kind="poll", options=["a", "b"], option_counts=[0])
        with pytest.raises(InternalError):
            parse_poll(msg)


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------


class TestVoting:
    async def test_vote_counts(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty, options=["Pizza", "Pasta", "Salad"])

        result = await vote(session, poll.id, callers.asha, option_index=1)
        assert result.option_counts == [0, 1, 0]
        assert result.my_vote == 1
        assert result.yes_count is None

        result = await vote(session, poll.id, callers.ben, option_index=1)
        result = await vote(session, poll.id, callers.faculty, option_index=2)
        assert result.option_counts == [0, 2, 1]
        assert result.total_votes == 3 == await _vote_rows(session, poll.id)

    async def test_second_vote_conflicts(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        await vote(session, poll.id, callers.asha, option_index=0)

        with pytest.raises(Conflict) as exc_info:
            await vote(session, poll.id, callers.asha, option_index=1)
        assert exc_info.value.reason == "already_voted"

        refreshed = await session.get(Message, poll.id)
        assert refreshed.option_counts == [1, 0]

    async def test_unique_constraint_backs_single_vote(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        await session.commit()

        session.add(PollVote(message_id=poll.id, voter_key="student:1", voter_student_id=1, option_index=0))
        session.add(PollVote(message_id=poll.id, voter_key="student:1", voter_student_id=1, option_index=1))
        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()

    async def test_racing_vote_from_same_voter(self, session, session_factory, callers, channel, monkeypatch):
        poll = await _poll(session, channel, callers.faculty)
        poll_id = poll.id
        await vote(session, poll.id, callers.ben, option_index=0)
        await session.commit()

        # A second request from Asha commits right after this one's duplicate check
        original_execute = session.execute
        raced = []

        async def _execute(statement, *args, **kwargs):
            result = await original_execute(statement, *args, **kwargs)
            if not raced and "chat_poll_votes.voter_key" in str(statement):
                raced.append(True)
                async with session_factory() as other:
                    await vote(other, poll.id, callers.asha, option_index=1)
                    await other.commit()
            return result

        monkeypatch.setattr(session, "execute", _execute)
        with pytest.raises(Conflict) as exc_info:
            await vote(session, poll.id, callers.asha, option_index=0)
        assert exc_info.value.reason == "already_voted"
        assert raced == [True]
        await session.rollback()

        async with session_factory() as fresh:
            stored = await fresh.get(Message, poll_id)
            voters = await fresh.execute(
                select(func.count(func.distinct(PollVote.voter_key))).where(PollVote.message_id == poll_id)
            )
        assert stored.option_counts == [1, 1]
        assert sum(stored.option_counts) == voters.scalar_one() == 2

    async def test_legacy_yes_no(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)

        result = await vote(session, poll.id, callers.asha, legacy_vote=LegacyVote.YES)
        assert result.my_vote == 0
        assert result.my_legacy_vote == LegacyVote.YES
        result = await vote(session, poll.id, callers.ben, legacy_vote=LegacyVote.NO)
        assert result.yes_count == 1
        assert result.no_count == 1

        stored = await session.execute(
            select(PollVote.voter_key, PollVote.legacy_vote).where(PollVote.message_id == poll.id)
        )
        assert dict(stored.all()) == {"student:1": "yes", "student:2": "no"}

    async def test_out_of_range_index(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        with pytest.raises(ValidationFailed):
            await vote(session, poll.id, callers.asha, option_index=2)

    async def test_vote_on_text_message(self, session, callers, channel):
        msg = await post_message(session, channel.id, callers.asha, MessagePost(body="not a poll"))
        with pytest.raises(ValidationFailed) as exc_info:
            await vote(session, msg.id, callers.ben, option_index=0)
        assert exc_info.value.reason == "not_a_poll"


# ---------------------------------------------------------------------------
# Poll edits
# ---------------------------------------------------------------------------


class TestEditPoll:
    async def test_replace_options_resets_votes(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty, options=["A", "B"])
        await vote(session, poll.id, callers.asha, option_index=0)
        await vote(session, poll.id, callers.ben, option_index=1)

        edited = await edit_poll(session, poll.id, callers.faculty, options=["X", "Y", "Z"])
        assert edited.options == ["X", "Y", "Z"]
        assert edited.option_counts == [0, 0, 0]
        assert await _vote_rows(session, poll.id) == 0

        # Voters may vote again on the new options
        result = await vote(session, poll.id, callers.asha, option_index=2)
        assert result.option_counts == [0, 0, 1]

    async def test_question_only_keeps_votes(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        await vote(session, poll.id, callers.asha, option_index=0)

        edited = await edit_poll(session, poll.id, callers.faculty, question="Lunch tomorrow?")
        assert edited.body == "Lunch tomorrow?"
        assert edited.option_counts == [1, 0]
        assert await _vote_rows(session, poll.id) == 1

    async def test_replace_needs_two_valid_options(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        await vote(session, poll.id, callers.asha, option_index=0)

        with pytest.raises(ValidationFailed):
            await edit_poll(session, poll.id, callers.faculty, options=["Only", " "])
        assert await _vote_rows(session, poll.id) == 1

    async def test_only_poster_or_super_admin(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        with pytest.raises(Forbidden):
            await edit_poll(session, poll.id, callers.asha, question="mine now")
        with pytest.raises(Forbidden):
            await edit_poll(session, poll.id, callers.admin, question="moderators are not authors")

        edited = await edit_poll(session, poll.id, callers.super_admin, question="Fixed by admin")
        assert edited.body == "Fixed by admin"


# ---------------------------------------------------------------------------
# Voter visibility
# ---------------------------------------------------------------------------


class TestVoterNames:
    async def test_voters_visible_to_poster_only(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        await vote(session, poll.id, callers.asha, option_index=0)

        (poster_view,) = await list_messages(session, channel.id, callers.faculty)
        assert poster_view.can_edit_poll is True
        assert poster_view.poll.voters[0].names == ["Asha"]
        assert poster_view.poll.voters[1].names == []

        (voter_view,) = await list_messages(session, channel.id, callers.asha)
        assert voter_view.poll.voters is None
        assert voter_view.poll.my_vote == 0
        assert voter_view.can_edit_poll is False

        (admin_view,) = await list_messages(session, channel.id, callers.super_admin)
        assert admin_view.poll.voters is not None

    async def test_voter_names_capped_with_exact_count(self, session, callers, channel):
        poll = await _poll(session, channel, callers.faculty)
        voters = 25
        for i in range(voters):
            student = Student(id=100 + i, admission_number=f"V{i:03d}", name=f"Voter {i}", college_id=1)
            session.add(student)
            await session.flush()
            await add_member(session, channel.id, StudentActor(student.id))
            await vote(session, poll.id, Caller(StudentActor(student.id)), option_index=0)

        (view,) = await list_messages(session, channel.id, callers.faculty)
        yes = view.poll.voters[0]
        assert yes.count == voters
        assert len(yes.names) == VOTER_NAMES_SHOWN
        assert view.poll.yes_count == voters
