"""Authentication routes with refresh token rotation and session management.

Endpoints:
    - POST   /auth/register: Create a company + admin (returns tokens)
    - POST   /auth/login: Login (returns access + refresh tokens)
    - POST   /auth/refresh: Exchange a refresh token for a new pair (rotation)
    - POST   /auth/change-password: Change the current user's password
    - POST   /auth/logout: Revoke the refresh token, blacklist the access token
    - POST   /auth/logout-all: Revoke all of the user's sessions
    - GET    /auth/sessions: List the user's active sessions
    - DELETE /auth/sessions/{session_id}: Revoke one session
    - GET    /auth/me: Current user

The refresh token is returned in the body and also set as an HttpOnly
cookie; refresh and logout accept either.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from timekeeper.api.deps import (
    AuthServiceDep,
    CurrentUser,
    RequestInfoDep,
    bearer_token,
    login_rate_limit,
)
from timekeeper.core.errors import InvalidRefreshToken
from timekeeper.core.time import utcnow
from timekeeper.schemas.auth import (
    AuthResponse,
    AuthResult,
    ChangePasswordRequest,
    LoginRequest,
    LogoutAllResult,
    LogoutRequest,
    MessageResponse,
    RegisterRequest,
    SessionListResponse,
    TokenRefresh,
    UserSummary,
)

REFRESH_COOKIE = "refresh_token"

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(
    request: Request,
    result: AuthResult,
    message: str,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Return the auth body and set the refresh token as HttpOnly cookie."""
    body = AuthResponse(
        message=message,
        user=result.user,
        **result.tokens.model_dump(),
    )
    resp = JSONResponse(content=body.model_dump(mode="json"), status_code=status_code)
    max_age = int(
        (result.tokens.refresh_expires_at - utcnow()).total_seconds()
    )
    resp.set_cookie(
        key=REFRESH_COOKIE,
        value=result.tokens.refresh_token,
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
        max_age=max_age,
        path="/",
    )
    return resp


@router.post(
    "/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED
)
async def register(
    request: Request,
    payload: RegisterRequest,
    service: AuthServiceDep,
    info: RequestInfoDep,
):
    """Register a company with its administrator and open a session.

    Raises:
        EmailAlreadyExists: 400 if the email is taken.
    """
    result = await service.register(
        payload.email, payload.password, payload.company_name, info
    )
    return _token_response(
        request,
        result,
        "Company and administrator registered",
        status_code=status.HTTP_201_CREATED,
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(login_rate_limit)],
)
async def login(
    request: Request,
    payload: LoginRequest,
    service: AuthServiceDep,
    info: RequestInfoDep,
):
    """Authenticate by email and password and issue access + refresh tokens.

    Raises:
        InvalidCredentials: 401 on unknown email or wrong password.
        RateLimited: 429 when the IP exceeded the login attempt limit.
    """
    result = await service.login(payload.email, payload.password, info)
    return _token_response(request, result, "Logged in")


@router.post("/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    service: AuthServiceDep,
    info: RequestInfoDep,
    payload: Annotated[TokenRefresh | None, Body()] = None,
):
    """Exchange a refresh token (body or cookie) for a new token pair.

    The presented refresh token is revoked; replaying it later fails.
    """
    raw = (payload.refresh_token if payload else None) or request.cookies.get(
        REFRESH_COOKIE
    )
    if not raw:
        raise InvalidRefreshToken("no refresh token provided")
    result = await service.refresh(raw, info)
    return _token_response(request, result, "Token refreshed")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: CurrentUser,
    service: AuthServiceDep,
):
    """Change the current user's password. Other sessions stay logged in."""
    return await service.change_password(
        current_user.id, payload.current_password, payload.new_password
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    service: AuthServiceDep,
    info: RequestInfoDep,
    access_token: Annotated[str | None, Depends(bearer_token)],
    payload: Annotated[LogoutRequest | None, Body()] = None,
):
    """Log out; always succeeds.

    Revokes the refresh token (body or cookie) and blacklists the bearer
    access token when they are still usable, then clears the cookie.
    """
    raw = (payload.refresh_token if payload else None) or request.cookies.get(
        REFRESH_COOKIE
    )
    result = await service.logout(raw, access_token, info)
    response.delete_cookie(REFRESH_COOKIE, path="/")
    return result


@router.post("/logout-all", response_model=LogoutAllResult)
async def logout_all_devices(
    response: Response,
    current_user: CurrentUser,
    service: AuthServiceDep,
):
    """Revoke all sessions of the current user (logout everywhere).

    Useful when a user suspects account compromise or wants to force
    re-authentication on all devices.
    """
    count = await service.logout_all_devices(current_user.id)
    response.delete_cookie(REFRESH_COOKIE, path="/")
    return LogoutAllResult(revoked_count=count)


@router.get("/sessions", response_model=SessionListResponse)
async def get_active_sessions(current_user: CurrentUser, service: AuthServiceDep):
    """Return active (non-revoked, unexpired) sessions with device info and IP."""
    sessions = await service.get_user_active_sessions(current_user.id)
    return SessionListResponse(active_sessions=sessions)


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: int, current_user: CurrentUser, service: AuthServiceDep
):
    """Revoke one of the current user's sessions.

    Raises:
        SessionNotFound: 404 if the session is not the user's or not active.
    """
    return await service.revoke_session(current_user.id, session_id)


@router.get("/me", response_model=UserSummary)
async def read_users_me(current_user: CurrentUser):
    """Return the current authenticated user's information."""
    return current_user
