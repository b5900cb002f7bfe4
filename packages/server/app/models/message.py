"""Message and poll-vote models.

Message ids are monotonically increasing and double as the pagination cursor.
Poll state always lives in the generic ``options`` / ``option_counts`` arrays;
the yes/no label on a vote only exists for two-option polls.
"""

from datetime import datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, IntIDMixin

MAX_BODY_LENGTH = 4000
MAX_ATTACHMENT_URL_LENGTH = 500


class Message(IntIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_channel_cursor", "channel_id", "id"),
        Index("ix_chat_messages_channel_created", "channel_id", "created_at"),
    )

    channel_id: int = Field(foreign_key="chat_channels.id", nullable=False)
    sender_kind: str = Field(nullable=False)  # student | faculty | admin
    student_id: Optional[int] = Field(default=None, foreign_key="students.id", index=True)
    staff_id: Optional[int] = Field(default=None, foreign_key="staff_users.id", index=True)
    body: str = Field(default="", nullable=False, sa_type=sa.Text)
    attachment_url: Optional[str] = Field(default=None, max_length=MAX_ATTACHMENT_URL_LENGTH)
    attachment_kind: Optional[str] = None  # image | file
    kind: str = Field(default="text", nullable=False)  # text | poll
    options: Optional[List[str]] = Field(default=None, sa_column=sa.Column(sa.JSON, nullable=True))
    option_counts: Optional[List[int]] = Field(default=None, sa_column=sa.Column(sa.JSON, nullable=True))
    hidden: bool = Field(default=False, nullable=False)
    moderated_by: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    moderated_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    deleted: bool = Field(default=False, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    deleted_by_student_id: Optional[int] = Field(default=None, foreign_key="students.id")
    deleted_by_staff_id: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    edited_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())


class PollVote(IntIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "chat_poll_votes"
    __table_args__ = (
        UniqueConstraint("message_id", "voter_key", name="uq_chat_poll_votes_voter"),
    )

    message_id: int = Field(foreign_key="chat_messages.id", nullable=False, index=True)
    voter_key: str = Field(nullable=False)  # student:<id> | staff:<id>
    voter_student_id: Optional[int] = Field(default=None, foreign_key="students.id")
    voter_staff_id: Optional[int] = Field(default=None, foreign_key="staff_users.id")
    option_index: int = Field(nullable=False)
    legacy_vote: Optional[str] = None  # yes | no, two-option polls only
