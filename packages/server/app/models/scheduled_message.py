"""Scheduled message model (pending → sent exactly once via the dispatch sweep)."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, IntIDMixin


class ScheduledMessage(IntIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "chat_scheduled_messages"

    channel_id: int = Field(foreign_key="chat_channels.id", nullable=False, index=True)
    sender_kind: str = Field(nullable=False)  # student | faculty | admin
    student_id: Optional[int] = Field(default=None, foreign_key="students.id")
    staff_id: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    body: str = Field(nullable=False, sa_type=sa.Text)
    scheduled_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime())
    status: str = Field(default="pending", nullable=False, index=True)  # pending | sent
    sent_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    # Not a foreign key: retention may purge the materialized message
    message_id: Optional[int] = None
