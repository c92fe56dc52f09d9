"""Application settings loaded from environment for the Timekeeper backend.

This module defines the :class:`Settings` model (based on Pydantic's
``BaseSettings``) and instantiates ``settings`` which is imported by the
wiring layer (FastAPI dependencies, database session, logging).

Notable fields include the database connection URL, the two JWT signing
secrets (access and refresh tokens are signed with different keys), token
lifetimes, the per-user session cap and the login rate limit.
"""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    """Environment-backed application settings.

    Attributes:
        DATABASE_URL_ASYNC: Async database URL for SQLAlchemy.
        DB_ECHO: Whether SQLAlchemy echoes emitted SQL.

        JWT_ACCESS_SECRET: Signing secret for access tokens.
        JWT_REFRESH_SECRET: Signing secret for refresh tokens.
        JWT_ALGORITHM: JWT signing algorithm.
        JWT_ISSUER: Value of the ``iss`` claim.
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime in minutes.
        REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime in days.

        MAX_ACTIVE_SESSIONS: Maximum active refresh tokens per user.
        TOKEN_RETENTION_DAYS: Days a terminal ledger row is kept before purge.
        STORE_TIMEOUT_SECONDS: Timeout applied to every store call.

        LOGIN_RATE_LIMIT: Login attempts allowed per IP within the window.
        LOGIN_RATE_WINDOW_SECONDS: Length of the login rate-limit window.
        TRUST_FORWARDED_FOR: Read the client IP from the last
            ``X-Forwarded-For`` entry (only behind a trusted reverse proxy).

        CORS_ORIGINS: Origins allowed by the CORS middleware.
        LOG_LEVEL: Minimum log level for the loguru sink.
    """

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./timekeeper.db"
    DB_ECHO: bool = False

    JWT_ACCESS_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "timekeeper"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    MAX_ACTIVE_SESSIONS: int = 5
    TOKEN_RETENTION_DAYS: int = 7
    STORE_TIMEOUT_SECONDS: float = 5.0

    LOGIN_RATE_LIMIT: int = 5
    LOGIN_RATE_WINDOW_SECONDS: int = 15 * 60
    TRUST_FORWARDED_FOR: bool = False

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]
    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def _check_distinct_secrets(self):
        # NOTE: one leaked key must not be enough to forge both token kinds.
        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self


settings = Settings()
