"""
Chat attachment uploads.

Only records a URL and a coarse media kind; the bytes are written to the
configured upload directory and served as static files.
"""

from __future__ import annotations

import asyncio
import os
import secrets
import time
from pathlib import Path

import structlog

from app.core.config import get_settings
from app.core.errors import ValidationFailed
from campus_chat_shared.schemas.common import AttachmentKind
from campus_chat_shared.schemas.messages import AttachmentRead

log = structlog.get_logger()

MAX_ATTACHMENT_BYTES = 20 * 1024

# content type -> (attachment kind, stored extension)
ALLOWED_CONTENT_TYPES: dict[str, tuple[AttachmentKind, str]] = {
    "image/jpeg": (AttachmentKind.IMAGE, ".jpg"),
    "image/png": (AttachmentKind.IMAGE, ".png"),
    "image/gif": (AttachmentKind.IMAGE, ".gif"),
    "image/webp": (AttachmentKind.IMAGE, ".webp"),
    "application/pdf": (AttachmentKind.FILE, ".pdf"),
}


def attachment_filename(extension: str) -> str:
    return f"chat_{int(time.time() * 1000)}_{secrets.token_hex(4)}{extension}"


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as buffer:
        buffer.write(data)


async def store_attachment(filename: str | None, content_type: str | None, data: bytes) -> AttachmentRead:
    """Validate and persist one upload, returning its public URL and kind."""
    content_type = (content_type or "").split(";", 1)[0].strip().lower()
    allowed = ALLOWED_CONTENT_TYPES.get(content_type)
    if allowed is None:
        raise ValidationFailed(
            "Only JPEG, PNG, GIF, WebP images and PDF files are allowed",
            reason="unsupported_attachment_type",
        )
    if not data:
        raise ValidationFailed("Attachment is empty", reason="empty_attachment")
    if len(data) > MAX_ATTACHMENT_BYTES:
        raise ValidationFailed("Attachment exceeds the 20 KB limit", reason="attachment_too_large")

    kind, extension = allowed
    original_ext = os.path.splitext(filename or "")[1].lower()
    if original_ext in {".jpg", ".jpeg"} and extension == ".jpg":
        extension = original_ext

    settings = get_settings()
    stored_name = attachment_filename(extension)
    await asyncio.to_thread(_write, Path(settings.upload_dir) / stored_name, data)

    url = f"{settings.upload_url_prefix.rstrip('/')}/{stored_name}"
    log.info("attachment.stored", url=url, kind=kind.value, size=len(data))
    return AttachmentRead(url=url, attachment_kind=kind)
