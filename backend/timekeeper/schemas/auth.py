"""Pydantic schemas for the authentication core and its endpoints.

Includes request bodies, token/claim shapes, the user summary and the
session projection returned by the auth service.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class RequestInfo(BaseModel):
    """Opaque request descriptors passed through from the HTTP layer."""

    ip_address: str | None = None
    user_agent: str | None = None


class TokenClaims(BaseModel):
    """Decoded, verified JWT payload.

    Attributes:
        user_id: Subject (user id), carried as the ``sub`` claim.
        email: Email of the user at issuance.
        company_id: Tenant the user belongs to.
        jti: Unique token identifier used for revocation.
        device_info: Device descriptor supplied at issuance.
        token_type: ``access`` or ``refresh``.
        iat: Issued-at, to the microsecond (``iat_us``) when present.
        exp: Expires-at.
    """

    user_id: int
    email: str
    company_id: int
    jti: str
    device_info: str | None = None
    token_type: TokenKind
    iat: datetime
    exp: datetime


class TokenPair(BaseModel):
    """Matched access/refresh tokens produced by the issuer."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    refresh_expires_at: datetime
    access_jti: str = Field(exclude=True)
    refresh_jti: str = Field(exclude=True)


class UserSummary(BaseModel):
    """Public user representation returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    company_id: int
    company_name: str | None = None
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class AuthResult(BaseModel):
    """User summary plus a fresh token pair."""

    user: UserSummary
    tokens: TokenPair


class SessionInfo(BaseModel):
    """One active refresh token, as shown to its owner."""

    id: int
    device_info: str
    ip_address: str | None = None
    created_at: datetime
    expires_at: datetime


class LogoutAllResult(BaseModel):
    revoked_count: int


class MessageResponse(BaseModel):
    message: str


# Request bodies


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    company_name: str = Field(min_length=2, max_length=100)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: EmailStr) -> str:
        return str(v).lower()

    @field_validator("company_name")
    @classmethod
    def _strip_company(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("company_name must contain at least 2 characters")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: EmailStr) -> str:
        return str(v).lower()


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)


class TokenRefresh(BaseModel):
    """Request body for refreshing tokens (falls back to the cookie)."""

    refresh_token: str | None = None


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class AuthResponse(BaseModel):
    """Body returned by register, login and refresh."""

    message: str
    user: UserSummary
    access_token: str
    refresh_token: str
    token_type: str
    expires_at: datetime
    refresh_expires_at: datetime


class SessionListResponse(BaseModel):
    active_sessions: list[SessionInfo]
