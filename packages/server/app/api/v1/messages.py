"""
Message endpoints: edit, poll edit, moderation, soft delete, voting.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_caller, require_moderator
from app.core.database import get_session
from app.core.identity import Caller
from app.services.messages import edit_message, enrich_message, moderate_message, soft_delete_message
from app.services.polls import edit_poll, vote
from campus_chat_shared.schemas.messages import (
    MessageEdit,
    MessageRead,
    ModerateRequest,
    PollEdit,
    PollRead,
    VoteRequest,
)

router = APIRouter()


@router.patch("/{message_id}", response_model=MessageRead)
async def edit_message_endpoint(
    message_id: int,
    body: MessageEdit,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Edit a text message (own within 5 minutes, or any as super-admin)."""
    message = await edit_message(session, message_id, caller, body.body)
    return await enrich_message(session, message, caller)


@router.patch("/{message_id}/poll", response_model=MessageRead)
async def edit_poll_endpoint(
    message_id: int,
    body: PollEdit,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    """Change a poll's question and/or options. New options clear all votes."""
    message = await edit_poll(session, message_id, caller, question=body.question, options=body.options)
    return await enrich_message(session, message, caller)


@router.patch("/{message_id}/moderate", response_model=MessageRead)
async def moderate_message_endpoint(
    message_id: int,
    body: ModerateRequest,
    caller: Caller = Depends(require_moderator),
    session: AsyncSession = Depends(get_session),
):
    message = await moderate_message(session, message_id, caller, body.hidden)
    return await enrich_message(session, message, caller)


@router.delete("/{message_id}", response_model=MessageRead)
async def delete_message_endpoint(
    message_id: int,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    message = await soft_delete_message(session, message_id, caller)
    return await enrich_message(session, message, caller)


@router.post("/{message_id}/vote", response_model=PollRead)
async def vote_endpoint(
    message_id: int,
    body: VoteRequest,
    caller: Caller = Depends(get_caller),
    session: AsyncSession = Depends(get_session),
):
    return await vote(session, message_id, caller, option_index=body.option_index, legacy_vote=body.legacy_vote)
