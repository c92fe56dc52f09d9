from __future__ import annotations

import os

os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite://")

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from timekeeper.db.session import initialize_database  # noqa: E402
from timekeeper.schemas.auth import RequestInfo  # noqa: E402
from timekeeper.services.auth_service import AuthService  # noqa: E402
from timekeeper.services.credential_store import CredentialStore  # noqa: E402
from timekeeper.services.token_issuer import TokenIssuer, TokenSettings  # noqa: E402
from timekeeper.services.token_ledger import TokenLedger  # noqa: E402

REQUEST = RequestInfo(ip_address="127.0.0.1", user_agent="Test Browser")
PASSWORD = "secret123"


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await initialize_database(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def token_settings():
    return TokenSettings(
        access_secret="access-secret-for-tests",
        refresh_secret="refresh-secret-for-tests",
    )


@pytest.fixture
def issuer(token_settings):
    return TokenIssuer(token_settings)


@pytest.fixture
def ledger(session_factory):
    return TokenLedger(session_factory)


@pytest.fixture
def store(session_factory):
    return CredentialStore(session_factory)


@pytest.fixture
def service(store, issuer, ledger):
    return AuthService(store, issuer, ledger, max_active_sessions=5)


@pytest.fixture
async def user(store):
    return await store.create("owner@example.com", PASSWORD, "Acme Corp")


async def count_rows(session_factory, model, *criteria) -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count()).select_from(model).where(*criteria)
        )
        return result.scalar_one()
