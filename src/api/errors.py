"""
Exception handlers - domain errors to HTTP envelopes.

Routes let AuthError subclasses propagate; the handlers registered here
turn them into ErrorResponse bodies with a status code looked up by
walking the exception's class hierarchy. Storage outages raised by
psycopg surface as 503 so clients can tell "try again later" apart from
"your input was wrong".
"""

import logging
from typing import Any

import psycopg
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from psycopg_pool import PoolTimeout

from src.api.models import ErrorResponse
from src.domain.exceptions import (
    AccountInactive,
    AccountLocked,
    AlreadyVerified,
    AuthError,
    DuplicateEmail,
    EmailNotVerified,
    Expired,
    Forbidden,
    InvalidCode,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ServiceUnavailable,
    TooManyAttempts,
    WeakPassword,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[AuthError], int] = {
    DuplicateEmail: status.HTTP_409_CONFLICT,
    AlreadyVerified: status.HTTP_409_CONFLICT,
    WeakPassword: status.HTTP_400_BAD_REQUEST,
    InvalidCode: status.HTTP_400_BAD_REQUEST,
    Expired: status.HTTP_400_BAD_REQUEST,
    TooManyAttempts: status.HTTP_429_TOO_MANY_REQUESTS,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    InvalidToken: status.HTTP_401_UNAUTHORIZED,
    EmailNotVerified: status.HTTP_403_FORBIDDEN,
    AccountInactive: status.HTTP_403_FORBIDDEN,
    Forbidden: status.HTTP_403_FORBIDDEN,
    AccountLocked: status.HTTP_423_LOCKED,
    NotFound: status.HTTP_404_NOT_FOUND,
    ServiceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: AuthError) -> int:
    """Most specific mapped status for exc (subclasses inherit their parent's)."""
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


def error_data(exc: AuthError) -> dict[str, Any] | None:
    """Extra fields a client needs to recover on its own."""
    if isinstance(exc, AccountLocked):
        return {"locked_until": exc.locked_until.isoformat()}
    if isinstance(exc, EmailNotVerified):
        return {"email": exc.email, "requires_verification": True}
    if isinstance(exc, WeakPassword):
        return {"errors": exc.errors}
    if isinstance(exc, InvalidCredentials) and exc.attempts_remaining is not None:
        return {"attempts_remaining": exc.attempts_remaining}
    return None


def error_response(
    status_code: int, code: str, message: str, data: dict[str, Any] | None = None
) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, data=data)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return error_response(status_code, exc.code, exc.message, error_data(exc))


async def storage_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    unavailable = ServiceUnavailable()
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE, unavailable.code, unavailable.message
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(psycopg.OperationalError, storage_unavailable_handler)
    app.add_exception_handler(PoolTimeout, storage_unavailable_handler)
