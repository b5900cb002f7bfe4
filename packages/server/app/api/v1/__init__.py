"""
API v1 Router

All chat endpoints are prefixed with /chat.
"""

from fastapi import APIRouter

from . import channels, messages

router = APIRouter()

router.include_router(channels.router, prefix="/chat/channels", tags=["Channels"])
router.include_router(messages.router, prefix="/chat/messages", tags=["Messages"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/chat/channels",
            "/chat/channels/{channel_id}/messages",
            "/chat/channels/{channel_id}/settings",
            "/chat/channels/{channel_id}/scheduled-messages",
            "/chat/messages/{message_id}",
        ],
    }
