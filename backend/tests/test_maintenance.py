from __future__ import annotations

from datetime import timedelta

from conftest import count_rows
from timekeeper.core import rate_limit
from timekeeper.core.time import utcnow
from timekeeper.models.auth import RefreshToken, TokenBlacklist
from timekeeper.services.maintenance import purge_tokens


async def test_purge_tokens(ledger, user, session_factory):
    await ledger.record(user.id, "ancient", utcnow() - timedelta(days=30))
    await ledger.record(user.id, "live", utcnow() + timedelta(days=7))
    await ledger.blacklist_access_token("gone", user.id, utcnow() - timedelta(minutes=1))

    assert await purge_tokens(ledger) == 2
    assert await purge_tokens(ledger) == 0
    assert await count_rows(session_factory, RefreshToken) == 1
    assert await count_rows(session_factory, TokenBlacklist) == 0


def test_rate_limit_window():
    rate_limit.reset()
    key = ("10.0.0.1", "/auth/login")

    assert all(rate_limit.allow(key, limit=3, window_seconds=60) for _ in range(3))
    assert rate_limit.allow(key, limit=3, window_seconds=60) is False
    # other identifiers are counted separately
    assert rate_limit.allow(("10.0.0.2", "/auth/login"), limit=3) is True
    # a zero-length window forgets every earlier attempt
    assert rate_limit.allow(key, limit=3, window_seconds=0) is True
    rate_limit.reset()


def test_rate_limit_forgets_idle_clients():
    rate_limit.reset()

    for i in range(20):
        rate_limit.allow((f"10.9.{i}.1", "/auth/login"), limit=5, window_seconds=0)

    assert len(rate_limit.BUCKET) == 1
    rate_limit.reset()
