"""Typed authentication errors and their HTTP mapping.

Every failure the auth core can report is a subclass of :class:`AuthError`
carrying:

* ``category``: one of :class:`ErrorCategory`, which decides how the
  error is logged and how much of it the client is allowed to see;
* ``status_code`` and ``client_message``: what the HTTP layer returns;
* ``reason``: the specific, server-side-only explanation.

Authentication-class errors share one generic client message so
the response never reveals whether an email exists or why a token was
rejected.
"""

from enum import Enum
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from timekeeper.core.logging import logger


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    INFRASTRUCTURE = "infrastructure"


GENERIC_AUTH_MESSAGE = "Authentication failed"


class AuthError(Exception):
    """Base class for all auth-core failures."""

    category: ErrorCategory = ErrorCategory.AUTHENTICATION
    status_code: int = status.HTTP_401_UNAUTHORIZED
    client_message: str = GENERIC_AUTH_MESSAGE

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.client_message
        super().__init__(self.reason)


# Validation-class: safe to show to the client as-is.


class EmailAlreadyExists(AuthError):
    category = ErrorCategory.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    client_message = "A user with this email already exists"


class InvalidCurrentPassword(AuthError):
    category = ErrorCategory.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST
    client_message = "Current password is incorrect"


class SessionNotFound(AuthError):
    category = ErrorCategory.VALIDATION
    status_code = status.HTTP_404_NOT_FOUND
    client_message = "Session not found"


# Authentication-class: generic message, reason logged.


class InvalidCredentials(AuthError):
    client_message = "Invalid email or password"


class InvalidRefreshToken(AuthError):
    client_message = "Invalid refresh token"


class InvalidTokenKind(AuthError):
    pass


class SignatureInvalid(AuthError):
    pass


class TokenExpired(AuthError):
    pass


class TokenRevoked(AuthError):
    """Access token was blacklisted by a logout."""


class UserNotFound(AuthError):
    """The token outlived its user; reported to the client as an auth failure."""

    category = ErrorCategory.NOT_FOUND


# Infrastructure-class.


class ServiceUnavailable(AuthError):
    category = ErrorCategory.INFRASTRUCTURE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    client_message = "Service temporarily unavailable"


class RateLimited(AuthError):
    category = ErrorCategory.VALIDATION
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    client_message = "Too many login attempts, try again later"


def error_response(exc: AuthError) -> JSONResponse:
    """Build the client-facing response for ``exc`` and log it by category."""

    name = type(exc).__name__
    if exc.category is ErrorCategory.INFRASTRUCTURE:
        logger.critical("{}: {}", name, exc.reason)
    elif exc.category in (ErrorCategory.AUTHENTICATION, ErrorCategory.NOT_FOUND):
        logger.warning("{}: {}", name, exc.reason)
    else:
        logger.info("{}: {}", name, exc.reason)

    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.client_message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError):
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException):
        body: Dict[str, Any] = {"message": exc.detail or "HTTP error"}
        return JSONResponse(
            status_code=exc.status_code, content=body, headers=exc.headers
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError):
        body: Dict[str, Any] = {
            "message": "Validation error",
            "errors": jsonable_encoder(exc.errors()),
        }
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def _generic_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "Unhandled error on {} {}", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500, content={"message": "Internal server error"}
        )
