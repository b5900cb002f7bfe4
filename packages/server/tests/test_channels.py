"""
Tests for the channel directory and channel settings.

Covers:
- Visibility per caller (students, college-scoped staff, unrestricted staff)
- Club channels: auto-enrollment and transitive visibility through approved members
- Deactivation as uniform not-found
- Explicit enrollment (idempotent) and create validation
- Settings defaults, clamping and upsert
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlmodel import select

from app.core.errors import NotFound
from app.models.channel import ChannelMembership, ChannelSettings
from app.models.people import ClubMember
from app.services.channels import (
    add_member,
    clamp_retention_days,
    create_channel,
    deactivate_channel,
    enroll_member,
    get_accessible_channel,
    get_channel_by_club,
    get_channel_settings,
    list_visible_channels,
    put_channel_settings,
    students_can_send,
)
from campus_chat_shared.schemas.channels import ChannelCreate, ChannelSettingsUpdate
from campus_chat_shared.schemas.common import ActorKind, ChannelType

CLUB_ID = 7


async def _club_channel(session, callers):
    ch = await create_channel(
        session,
        ChannelCreate(type=ChannelType.CLUB, name="Robotics Club", club_ref=CLUB_ID, college_ref=1),
        callers.admin,
    )
    await session.commit()
    return ch


async def _event_channel(session, callers, college_ref=2):
    ch = await create_channel(
        session,
        ChannelCreate(type=ChannelType.EVENT, name="Sports Day", event_ref=5, college_ref=college_ref),
        callers.super_admin,
    )
    await session.commit()
    return ch


# ---------------------------------------------------------------------------
# Create validation
# ---------------------------------------------------------------------------


class TestChannelCreateSchema:
    def test_matching_ref_required(self):
        with pytest.raises(ValidationError, match="club_ref is required"):
            ChannelCreate(type=ChannelType.CLUB, name="Chess")

    def test_foreign_ref_rejected(self):
        with pytest.raises(ValidationError, match="subject_ref is not allowed"):
            ChannelCreate(type=ChannelType.EVENT, name="Fest", event_ref=1, subject_ref=2)

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            ChannelCreate(type=ChannelType.SUBJECT, name="   ", subject_ref=1)


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestVisibility:
    async def test_student_sees_only_enrolled_channels(self, session, callers, channel):
        await _event_channel(session, callers)

        asha = await list_visible_channels(session, callers.asha)
        assert [c.id for c in asha] == [channel.id]
        assert asha[0].is_member is True

        assert await list_visible_channels(session, callers.cara) == []

    async def test_club_channel_auto_enrolls_approved_members(self, session, callers):
        ch = await _club_channel(session, callers)

        result = await session.execute(
            select(ChannelMembership.member_key).where(ChannelMembership.channel_id == ch.id)
        )
        assert [row[0] for row in result.all()] == ["student:1"]

        ben = await list_visible_channels(session, callers.ben)
        assert ch.id not in [c.id for c in ben]

    async def test_club_membership_grants_visibility_without_enrollment(self, session, callers):
        ch = await _club_channel(session, callers)

        result = await session.execute(
            select(ClubMember).where(ClubMember.club_id == CLUB_ID, ClubMember.student_id == 2)
        )
        membership = result.scalar_one()
        membership.status = "approved"
        await session.commit()

        ben = {c.id: c for c in await list_visible_channels(session, callers.ben)}
        assert ch.id in ben
        assert ben[ch.id].is_member is False
        assert (await get_accessible_channel(session, ch.id, callers.ben)).id == ch.id

    async def test_college_scoped_staff(self, session, callers, channel):
        other_college = await _event_channel(session, callers, college_ref=2)

        visible = [c.id for c in await list_visible_channels(session, callers.faculty)]
        assert channel.id in visible
        assert other_college.id not in visible

        with pytest.raises(NotFound):
            await get_accessible_channel(session, other_college.id, callers.faculty)

    async def test_explicit_membership_overrides_college_scope(self, session, callers):
        ch = await _event_channel(session, callers, college_ref=2)
        await add_member(session, ch.id, callers.faculty.actor)
        await session.commit()

        visible = {c.id: c for c in await list_visible_channels(session, callers.faculty)}
        assert visible[ch.id].is_member is True

    async def test_unrestricted_staff_sees_everything(self, session, callers, channel):
        event = await _event_channel(session, callers)
        visible = [c.id for c in await list_visible_channels(session, callers.super_admin)]
        assert set(visible) == {channel.id, event.id}

    async def test_deactivated_channel_is_not_found(self, session, callers, channel):
        await deactivate_channel(session, channel.id, callers.admin)
        await session.commit()

        assert await list_visible_channels(session, callers.asha) == []
        with pytest.raises(NotFound) as exc_info:
            await get_accessible_channel(session, channel.id, callers.super_admin)
        assert exc_info.value.reason == "channel_not_found"

    async def test_unknown_channel_is_not_found(self, session, callers):
        with pytest.raises(NotFound):
            await get_accessible_channel(session, 999, callers.super_admin)


# ---------------------------------------------------------------------------
# Lookup & membership
# ---------------------------------------------------------------------------


class TestDirectory:
    async def test_get_channel_by_club(self, session, callers):
        assert await get_channel_by_club(session, CLUB_ID) is None
        ch = await _club_channel(session, callers)
        found = await get_channel_by_club(session, CLUB_ID)
        assert found is not None and found.id == ch.id

    async def test_get_channel_by_club_is_scoped_to_caller(self, session, callers):
        ch = await _club_channel(session, callers)
        assert (await get_channel_by_club(session, CLUB_ID, callers.asha)).id == ch.id
        assert await get_channel_by_club(session, CLUB_ID, callers.cara) is None
        assert await get_channel_by_club(session, 999, callers.super_admin) is None

    async def test_add_member_is_idempotent(self, session, callers, channel):
        assert await add_member(session, channel.id, callers.asha.actor) is False
        assert await add_member(session, channel.id, callers.cara.actor) is True
        assert await add_member(session, channel.id, callers.cara.actor) is False

    async def test_enroll_unknown_member(self, session, callers, channel):
        with pytest.raises(NotFound) as exc_info:
            await enroll_member(session, channel.id, ActorKind.STUDENT, 404, callers.admin)
        assert exc_info.value.reason == "member_not_found"

    async def test_enroll_staff_member(self, session, callers, channel):
        added = await enroll_member(session, channel.id, ActorKind.STAFF, 2, callers.admin)
        assert added is True


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestRetentionClamp:
    @pytest.mark.parametrize(
        "value,expected",
        [(None, 30), (0, 30), (-4, 1), (1, 1), (7, 7), (30, 30), (45, 30)],
    )
    def test_clamp(self, value, expected):
        assert clamp_retention_days(value) == expected


class TestChannelSettings:
    async def test_defaults_without_row(self, session, channel):
        settings = await get_channel_settings(session, channel.id)
        assert settings.students_can_send is True
        assert settings.auto_delete_after_days == 30
        assert await session.get(ChannelSettings, channel.id) is None

    async def test_put_clamps_and_upserts(self, session, callers, channel):
        updated = await put_channel_settings(
            session, channel.id, ChannelSettingsUpdate(auto_delete_after_days=90), callers.admin
        )
        assert updated.auto_delete_after_days == 30
        assert updated.students_can_send is True

        updated = await put_channel_settings(
            session, channel.id, ChannelSettingsUpdate(students_can_send=False), callers.admin
        )
        assert updated.students_can_send is False
        assert updated.auto_delete_after_days == 30
        assert await students_can_send(session, channel.id) is False

        row = await session.get(ChannelSettings, channel.id)
        assert row.updated_by == 2

    async def test_out_of_scope_moderator_cannot_change_channel(self, session, callers):
        ch = await _event_channel(session, callers, college_ref=2)

        with pytest.raises(NotFound):
            await put_channel_settings(
                session, ch.id, ChannelSettingsUpdate(students_can_send=False), callers.admin
            )
        with pytest.raises(NotFound):
            await enroll_member(session, ch.id, ActorKind.STUDENT, 3, callers.admin)
        with pytest.raises(NotFound):
            await deactivate_channel(session, ch.id, callers.admin)

        assert await students_can_send(session, ch.id) is True
        assert (await get_accessible_channel(session, ch.id, callers.super_admin)).active is True

    async def test_put_on_inactive_channel(self, session, callers, channel):
        await deactivate_channel(session, channel.id, callers.admin)
        with pytest.raises(NotFound):
            await put_channel_settings(
                session, channel.id, ChannelSettingsUpdate(auto_delete_after_days=5), callers.admin
            )
