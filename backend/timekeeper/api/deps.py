"""
Reusable FastAPI dependencies for the auth routes.

- Wiring: builds the auth service from settings and the shared session factory.
- Authentication: extracts and validates the bearer access token.
- Rate limiting for the login endpoint.
Keep this layer thin: no business rules here.
"""
from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from timekeeper.config.config import settings
from timekeeper.core import rate_limit
from timekeeper.core.errors import RateLimited, SignatureInvalid
from timekeeper.core.logging import logger
from timekeeper.core.security import get_client_ip, get_request_info
from timekeeper.db.session import AsyncSessionLocal
from timekeeper.schemas.auth import RequestInfo, UserSummary
from timekeeper.services.auth_service import AuthService
from timekeeper.services.credential_store import CredentialStore
from timekeeper.services.token_issuer import TokenIssuer, TokenSettings
from timekeeper.services.token_ledger import TokenLedger

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_auth_service() -> AuthService:
    """Build the process-wide auth service from ``settings``."""
    return AuthService(
        store=CredentialStore(AsyncSessionLocal),
        issuer=TokenIssuer(TokenSettings.from_settings(settings)),
        ledger=TokenLedger(
            AsyncSessionLocal, retention=timedelta(days=settings.TOKEN_RETENTION_DAYS)
        ),
        max_active_sessions=settings.MAX_ACTIVE_SESSIONS,
        store_timeout=settings.STORE_TIMEOUT_SECONDS,
    )


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


def request_info(request: Request) -> RequestInfo:
    return get_request_info(request, settings.TRUST_FORWARDED_FOR)


RequestInfoDep = Annotated[RequestInfo, Depends(request_info)]


def bearer_token(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> str | None:
    """Return the raw bearer token, or None when the header is absent."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials


async def get_current_user(
    service: AuthServiceDep,
    token: Annotated[str | None, Depends(bearer_token)],
) -> UserSummary:
    """Validate the access token and return the current user.

    Only accepts access tokens that are neither blacklisted nor older than
    a logout from all devices.
    """
    if token is None:
        raise SignatureInvalid("missing bearer token")
    return await service.authenticate(token)


CurrentUser = Annotated[UserSummary, Depends(get_current_user)]


def login_rate_limit(request: Request) -> None:
    """Allow ``LOGIN_RATE_LIMIT`` login attempts per IP per window."""
    ip = get_client_ip(request, settings.TRUST_FORWARDED_FOR)
    if not rate_limit.allow(
        (ip, request.url.path),
        limit=settings.LOGIN_RATE_LIMIT,
        window_seconds=settings.LOGIN_RATE_WINDOW_SECONDS,
    ):
        logger.warning("Rate limit exceeded for login attempt from ip={}", ip)
        raise RateLimited(f"login rate limit exceeded for ip={ip}")
