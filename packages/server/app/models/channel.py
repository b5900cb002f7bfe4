"""Channel, membership and per-channel settings models."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, IntIDMixin, utcnow


class Channel(IntIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "chat_channels"

    type: str = Field(nullable=False, index=True)  # subject | club | event
    name: str = Field(nullable=False)
    subject_ref: Optional[int] = Field(default=None, index=True)
    club_ref: Optional[int] = Field(default=None, index=True)
    event_ref: Optional[int] = Field(default=None, index=True)
    college_ref: Optional[int] = Field(default=None, index=True)
    active: bool = Field(default=True, nullable=False)
    created_by: Optional[int] = Field(default=None, foreign_key="staff_users.id")


class ChannelMembership(IntIDMixin, SQLModel, table=True):
    __tablename__ = "chat_channel_members"
    __table_args__ = (
        UniqueConstraint("channel_id", "member_key", name="uq_chat_channel_members_member"),
    )

    channel_id: int = Field(foreign_key="chat_channels.id", nullable=False, index=True)
    member_key: str = Field(nullable=False, index=True)  # student:<id> | staff:<id>
    student_id: Optional[int] = Field(default=None, foreign_key="students.id")
    staff_id: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    joined_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())


class ChannelSettings(SQLModel, table=True):
    __tablename__ = "chat_channel_settings"

    channel_id: int = Field(foreign_key="chat_channels.id", primary_key=True)
    students_can_send: bool = Field(default=True, nullable=False)
    auto_delete_after_days: int = Field(default=30, nullable=False)
    updated_by: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    updated_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
