"""Channel-related Pydantic schemas shared between the server and client codegen."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .common import CHANNEL_REF_FIELD, ActorKind, ChannelType


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class ChannelCreate(BaseModel):
    """Request body for POST /chat/channels.

    Exactly one of subject_ref / club_ref / event_ref must be set, and it must
    be the one matching ``type``.
    """
    type: ChannelType
    name: str = Field(min_length=1, max_length=200)
    subject_ref: Optional[int] = None
    club_ref: Optional[int] = None
    event_ref: Optional[int] = None
    college_ref: Optional[int] = None

    @model_validator(mode="after")
    def _check_refs(self) -> "ChannelCreate":
        if not self.name.strip():
            raise ValueError("name must not be blank")
        expected = CHANNEL_REF_FIELD[self.type]
        for field_name in CHANNEL_REF_FIELD.values():
            value = getattr(self, field_name)
            if field_name == expected and value is None:
                raise ValueError(f"{field_name} is required for {self.type.value} channels")
            if field_name != expected and value is not None:
                raise ValueError(f"{field_name} is not allowed for {self.type.value} channels")
        return self


class ChannelRead(BaseModel):
    id: int
    type: ChannelType
    name: str
    subject_ref: Optional[int] = None
    club_ref: Optional[int] = None
    event_ref: Optional[int] = None
    college_ref: Optional[int] = None
    active: bool = True
    is_member: bool = False
    created_at: datetime


class ChannelListResponse(BaseModel):
    data: List[ChannelRead] = Field(default_factory=list)


class ChannelCreated(BaseModel):
    id: int


class ChannelMemberAdd(BaseModel):
    """Request body for POST /chat/channels/{id}/members."""
    member_type: ActorKind
    member_id: int


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class ChannelSettingsRead(BaseModel):
    channel_id: int
    students_can_send: bool = True
    auto_delete_after_days: int = 30


class ChannelSettingsUpdate(BaseModel):
    """Partial update; out-of-range retention values are clamped, not rejected."""
    students_can_send: Optional[bool] = None
    auto_delete_after_days: Optional[int] = None
