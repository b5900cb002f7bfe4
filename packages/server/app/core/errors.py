"""
Error taxonomy and exception handlers.

Every failure a caller can act on maps to a stable ``code`` (the kind) plus a
``reason`` (the specific cause), rendered in the same envelope the CSRF
middleware uses::

    {"error": {"code": "conflict", "reason": "already_voted", "message": "...", "status": 409}}

Anything else is logged server-side and surfaced as an opaque internal error.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from campus_chat_shared.schemas.common import ErrorBody, ErrorCode

log = structlog.get_logger()


class ChatError(HTTPException):
    """Base class for caller-visible chat errors."""

    status_code: int = 400
    code: ErrorCode = ErrorCode.VALIDATION
    default_message: str = "Request failed"
    default_reason: str = "error"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        self.message = message or self.default_message
        self.reason = reason or self.default_reason
        super().__init__(status_code=self.status_code, detail=self.message)

    def to_body(self) -> ErrorBody:
        return ErrorBody(
            code=self.code,
            reason=self.reason,
            message=self.message,
            status=self.status_code,
        )


class ValidationFailed(ChatError):
    status_code = 422
    code = ErrorCode.VALIDATION
    default_message = "Invalid request"
    default_reason = "invalid_request"


class Unauthenticated(ChatError):
    status_code = 401
    code = ErrorCode.UNAUTHENTICATED
    default_message = "Authentication required"
    default_reason = "authentication_required"


class Forbidden(ChatError):
    status_code = 403
    code = ErrorCode.FORBIDDEN
    default_message = "You are not allowed to do this"
    default_reason = "forbidden"


class NotFound(ChatError):
    status_code = 404
    code = ErrorCode.NOT_FOUND
    default_message = "Not found"
    default_reason = "not_found"


class Conflict(ChatError):
    status_code = 409
    code = ErrorCode.CONFLICT
    default_message = "Conflict"
    default_reason = "conflict"


class InternalError(ChatError):
    status_code = 500
    code = ErrorCode.INTERNAL
    default_message = "Internal error"
    default_reason = "internal_error"


def _error_response(body: ErrorBody) -> JSONResponse:
    return JSONResponse(status_code=body.status, content={"error": body.model_dump(mode="json")})


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if isinstance(exc, InternalError):
        # Detail stays in the server log only
        log.error("request.internal_error", path=request.url.path, reason=exc.reason, detail=exc.message)
        return _error_response(InternalError().to_body())
    return _error_response(exc.to_body())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else "Invalid request"
    return _error_response(ValidationFailed(message, reason="invalid_request").to_body())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unhandled_error", path=request.url.path, method=request.method)
    return _error_response(InternalError().to_body())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
