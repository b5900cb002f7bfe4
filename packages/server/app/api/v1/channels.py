"""
Channel endpoints: directory, settings, messages, attachments, scheduled messages.

- GET / : List channels visible to the caller
- POST / : Create a channel (moderator)
- GET /by-club/{club_id} : Channel bound to a club
- DELETE /{channel_id} : Deactivate a channel (moderator)
- POST /{channel_id}/members : Enroll a student or staff user (moderator)
- GET|PUT /{channel_id}/settings : Per-channel settings
- GET|POST /{channel_id}/messages : Cursor-paginated history / post
- POST /{channel_id}/attachments : Upload an attachment
- GET|POST /{channel_id}/scheduled-messages : Scheduled messages
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller, require_moderator
from app.core.database import get_session
from app.core.identity import Caller
from app.services.attachments import MAX_ATTACHMENT_BYTES, store_attachment
from app.services.channels import (
    create_channel,
    deactivate_channel,
    enroll_member,
    get_accessible_channel,
    get_channel_by_club,
    get_channel_settings,
    list_visible_channels,
    put_channel_settings,
    to_channel_read,
)
from app.services.messages import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, enrich_message, list_messages, post_message
from app.services.scheduling import create_scheduled_message, list_scheduled_messages, to_scheduled_read
from campus_chat_shared.schemas.channels import (
    ChannelCreate,
    ChannelCreated,
    ChannelListResponse,
    ChannelMemberAdd,
    ChannelRead,
    ChannelSettingsRead,
    ChannelSettingsUpdate,
)
from campus_chat_shared.schemas.common import ScheduledStatus
from campus_chat_shared.schemas.messages import (
    AttachmentRead,
    MessageListResponse,
    MessagePost,
    MessageRead,
    ScheduledMessageCreate,
    ScheduledMessageListResponse,
    ScheduledMessageRead,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


@router.get("", response_model=ChannelListResponse)
async def list_channels_endpoint(
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """List all active channels the caller can see."""
    return {"data": await list_visible_channels(session, caller)}


@router.post("", response_model=ChannelCreated, status_code=status.HTTP_201_CREATED)
async def create_channel_endpoint(
    body: ChannelCreate,
    caller: Caller = Depends(require_moderator),
    session: AsyncSession = Depends(get_session),
):
    channel = await create_channel(session, body, caller)
    return ChannelCreated(id=channel.id)


@router.get("/by-club/{club_id}", response_model=Optional[ChannelRead])
async def get_channel_by_club_endpoint(
    club_id: int,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """The club's channel, or null when it has none the caller can see."""
    channel = await get_channel_by_club(session, club_id, caller)
    return to_channel_read(channel) if channel is not None else None


@router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_channel_endpoint(
    channel_id: int,
    caller: Caller = Depends(require_moderator),
    session: AsyncSession = Depends(get_session),
):
    await deactivate_channel(session, channel_id, caller)


@router.post("/{channel_id}/members")
async def add_member_endpoint(
    channel_id: int,
    body: ChannelMemberAdd,
    caller: Caller = Depends(require_moderator),
    session: AsyncSession = Depends(get_session),
):
    added = await enroll_member(session, channel_id, body.member_type, body.member_id, caller)
    return {"added": added}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@router.get("/{channel_id}/settings", response_model=ChannelSettingsRead)
async def get_settings_endpoint(
    channel_id: int,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    await get_accessible_channel(session, channel_id, caller)
    return await get_channel_settings(session, channel_id)


@router.put("/{channel_id}/settings", response_model=ChannelSettingsRead)
async def put_settings_endpoint(
    channel_id: int,
    body: ChannelSettingsUpdate,
    caller: Caller = Depends(require_moderator),
    session: AsyncSession = Depends(get_session),
):
    return await put_channel_settings(session, channel_id, body, caller)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{channel_id}/messages", response_model=MessageListResponse)
async def list_messages_endpoint(
    channel_id: int,
    before: Optional[int] = Query(None, ge=1, description="Return messages with id < before"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Cursor-based message history, oldest first within the page."""
    return {"data": await list_messages(session, channel_id, caller, before=before, limit=limit)}


@router.post("/{channel_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def post_message_endpoint(
    channel_id: int,
    body: MessagePost,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    message = await post_message(session, channel_id, caller, body)
    return await enrich_message(session, message, caller)


@router.post("/{channel_id}/attachments", response_model=AttachmentRead, status_code=status.HTTP_201_CREATED)
async def upload_attachment_endpoint(
    channel_id: int,
    file: UploadFile = File(...),
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Store an attachment; the returned URL is then posted as a message."""
    await get_accessible_channel(session, channel_id, caller)
    # One byte past the limit is enough to reject oversized uploads
    data = await file.read(MAX_ATTACHMENT_BYTES + 1)
    return await store_attachment(file.filename, file.content_type, data)


# ---------------------------------------------------------------------------
# Scheduled messages
# ---------------------------------------------------------------------------


@router.get("/{channel_id}/scheduled-messages", response_model=ScheduledMessageListResponse)
async def list_scheduled_endpoint(
    channel_id: int,
    status_filter: Optional[ScheduledStatus] = Query(None, alias="status"),
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_scheduled_messages(session, channel_id, caller, status=status_filter)
    return {"data": [to_scheduled_read(r) for r in rows]}


@router.post(
    "/{channel_id}/scheduled-messages",
    response_model=ScheduledMessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_scheduled_endpoint(
    channel_id: int,
    body: ScheduledMessageCreate,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    row = await create_scheduled_message(session, channel_id, caller, body)
    return to_scheduled_read(row)
