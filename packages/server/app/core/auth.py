"""
Caller authentication for Campus Chat.

Identity verification and role evaluation happen in the upstream identity
service, which issues signed JWTs. This module only:
- decodes and verifies those tokens (Bearer header or session cookie)
- turns the claims into a Principal
- resolves the Principal to a chat actor and its capabilities
- provides FastAPI dependencies for caller / moderator access
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import Forbidden, Unauthenticated
from app.core.identity import Caller, Principal, build_caller, resolve_actor
from campus_chat_shared.schemas.common import ActorKind

log = structlog.get_logger()
settings = get_settings()

SESSION_COOKIE = "chat_session"
CSRF_COOKIE = "chat_csrf"

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    subject: str,
    *,
    kind: ActorKind,
    role: str,
    admission_number: Optional[str] = None,
    permissions: Iterable[str] = (),
    unrestricted: bool = False,
    college_ids: Iterable[int] = (),
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed caller token. Returns (token, jti).

    Production tokens come from the identity service; this mirrors its claim
    layout for local tooling and tests.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(hours=1))
    payload = {
        "sub": subject,
        "kind": kind.value,
        "role": role,
        "admission_number": admission_number,
        "permissions": list(permissions),
        "scope": {"unrestricted": unrestricted, "college_ids": list(college_ids)},
        "iat": now,
        "exp": exp,
        "jti": jti,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def principal_from_claims(claims: dict) -> Principal:
    """Build a Principal from verified claims. Raises Unauthenticated on bad shape."""
    try:
        kind = ActorKind(claims.get("kind"))
    except ValueError:
        raise Unauthenticated("Token has no caller kind", reason="invalid_token")

    subject = claims.get("sub")
    if not subject:
        raise Unauthenticated("Token has no subject", reason="invalid_token")

    scope = claims.get("scope") or {}
    try:
        college_ids = tuple(int(c) for c in scope.get("college_ids") or ())
    except (TypeError, ValueError):
        raise Unauthenticated("Token scope is malformed", reason="invalid_token")

    return Principal(
        subject=str(subject),
        kind=kind,
        role=str(claims.get("role") or kind.value),
        admission_number=claims.get("admission_number"),
        permissions=frozenset(claims.get("permissions") or ()),
        unrestricted=bool(scope.get("unrestricted", False)),
        college_ids=college_ids,
    )


def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

async def get_principal(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
) -> Principal:
    token = _extract_token(request, authorization)
    if not token:
        raise Unauthenticated()
    try:
        claims = decode_jwt(token)
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired session", reason="invalid_token")
    return principal_from_claims(claims)


async def get_caller(
    request: Request,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> Caller:
    """Main authentication dependency: principal → actor → caller."""
    actor = await resolve_actor(session, principal)
    if actor is None:
        raise Forbidden("No chat identity for this account", reason="identity_not_found")
    caller = build_caller(principal, actor)
    request.state.caller = caller
    return caller


# ---------------------------------------------------------------------------
# Authorization dependencies (capability checks)
# ---------------------------------------------------------------------------

async def require_moderator(caller: Caller = Depends(get_caller)) -> Caller:
    """Requires the moderate capability (or super-admin)."""
    if not caller.can_moderate:
        raise Forbidden("Moderator access required", reason="moderator_required")
    return caller
