"""Message, poll and scheduled-message schemas shared across server and frontend codegen."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import AttachmentKind, LegacyVote, MessageKind, ScheduledStatus, SenderKind


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class MessagePost(BaseModel):
    """Request body for POST /chat/channels/{id}/messages.

    Either ``body`` or ``attachment_url`` is required. Supplying
    ``poll_options`` (or ``kind="poll"``) posts a poll whose question is ``body``.
    """
    body: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_kind: Optional[AttachmentKind] = None
    kind: MessageKind = MessageKind.TEXT
    poll_options: List[str] = Field(default_factory=list)


class MessageEdit(BaseModel):
    body: str


class PollEdit(BaseModel):
    question: Optional[str] = None
    options: Optional[List[str]] = None


class ModerateRequest(BaseModel):
    hidden: bool


class VoteRequest(BaseModel):
    """Either a 0-based option index or, for two-option polls, a legacy yes/no."""
    option_index: Optional[int] = None
    legacy_vote: Optional[LegacyVote] = None


class ScheduledMessageCreate(BaseModel):
    body: str
    scheduled_at: datetime


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class PollOptionVoters(BaseModel):
    option_index: int
    count: int
    names: List[str] = Field(default_factory=list)


class PollRead(BaseModel):
    options: List[str]
    option_counts: List[int]
    total_votes: int = 0
    my_vote: Optional[int] = None
    my_legacy_vote: Optional[LegacyVote] = None
    yes_count: Optional[int] = None
    no_count: Optional[int] = None
    voters: Optional[List[PollOptionVoters]] = None


class MessageRead(BaseModel):
    id: int
    channel_id: int
    kind: MessageKind
    sender_kind: SenderKind
    sender_id: int
    sender_name: str
    body: Optional[str] = None
    attachment_url: Optional[str] = None
    attachment_kind: Optional[AttachmentKind] = None
    hidden: bool = False
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by_name: Optional[str] = None
    created_at: datetime
    edited_at: Optional[datetime] = None
    is_own: bool = False
    can_edit: bool = False
    can_edit_any: bool = False
    can_edit_poll: bool = False
    poll: Optional[PollRead] = None


class MessageListResponse(BaseModel):
    data: List[MessageRead] = Field(default_factory=list)


class AttachmentRead(BaseModel):
    url: str
    attachment_kind: AttachmentKind


class ScheduledMessageRead(BaseModel):
    id: int
    channel_id: int
    sender_kind: SenderKind
    sender_id: int
    body: str
    scheduled_at: datetime
    status: ScheduledStatus
    sent_at: Optional[datetime] = None
    message_id: Optional[int] = None
    created_at: datetime


class ScheduledMessageListResponse(BaseModel):
    data: List[ScheduledMessageRead] = Field(default_factory=list)
