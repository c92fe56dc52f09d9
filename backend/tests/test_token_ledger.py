from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select, update

from conftest import count_rows
from timekeeper.core.security import hash_token
from timekeeper.core.time import utcnow
from timekeeper.models.auth import RefreshToken, TokenBlacklist
from timekeeper.services.token_ledger import TokenStatus


def _in(days: float = 7):
    return utcnow() + timedelta(days=days)


async def test_record_stores_hash_only(ledger, user, session_factory):
    record = await ledger.record(user.id, "raw-refresh-token", _in(), "Chrome", "10.0.0.1")

    async with session_factory() as db:
        row = (await db.execute(select(RefreshToken))).scalars().one()
    assert row.id == record.id
    assert row.token_hash == hash_token("raw-refresh-token")
    assert row.token_hash != "raw-refresh-token"
    assert record.device_info == "Chrome"
    assert record.ip_address == "10.0.0.1"
    assert record.revoked is False


async def test_lookup_distinguishes_failure_kinds(ledger, user):
    assert (await ledger.lookup_active("never-issued")).status is TokenStatus.NOT_FOUND

    active = await ledger.record(user.id, "active-token", _in())
    lookup = await ledger.lookup_active("active-token")
    assert lookup.is_active
    assert lookup.record.id == active.id

    revoked = await ledger.record(user.id, "revoked-token", _in())
    await ledger.revoke(revoked.id)
    assert (await ledger.lookup_active("revoked-token")).status is TokenStatus.REVOKED

    await ledger.record(user.id, "stale-token", _in(-1))
    assert (await ledger.lookup_active("stale-token")).status is TokenStatus.EXPIRED


async def test_revoke_is_idempotent(ledger, user):
    old = await ledger.record(user.id, "old-token", _in())
    new = await ledger.record(user.id, "new-token", _in())

    assert await ledger.revoke(old.id, replaced_by_token_id=new.id) is True
    assert await ledger.revoke(old.id) is False

    lookup = await ledger.lookup_active("old-token")
    assert lookup.status is TokenStatus.REVOKED
    assert lookup.record.replaced_by_token_id == new.id
    assert lookup.record.revoked_at is not None


async def test_revoke_unknown_id_is_noop(ledger):
    assert await ledger.revoke(9999) is False


async def test_revoke_all_for_user(ledger, user, store):
    other = await store.create("other@example.com", "secret123", "Other Co")
    for i in range(3):
        await ledger.record(user.id, f"token-{i}", _in())
    await ledger.record(other.id, "other-token", _in())

    assert await ledger.revoke_all_for_user(user.id) == 3
    assert await ledger.get_active_for_user(user.id) == []
    assert len(await ledger.get_active_for_user(other.id)) == 1
    assert await ledger.revoke_all_for_user(user.id) == 0


async def test_active_sessions_newest_first(ledger, user):
    first = await ledger.record(user.id, "first", _in())
    second = await ledger.record(user.id, "second", _in())

    active = await ledger.get_active_for_user(user.id)
    assert [r.id for r in active] == [second.id, first.id]


async def test_session_cap_revokes_oldest(ledger, user):
    records = [await ledger.record(user.id, f"token-{i}", _in()) for i in range(5)]

    assert await ledger.enforce_session_cap(user.id, 5) == 1

    active_ids = [r.id for r in await ledger.get_active_for_user(user.id)]
    assert len(active_ids) == 4
    assert records[0].id not in active_ids
    assert (await ledger.lookup_active("token-0")).status is TokenStatus.REVOKED


async def test_session_cap_under_limit_is_noop(ledger, user):
    for i in range(3):
        await ledger.record(user.id, f"token-{i}", _in())
    assert await ledger.enforce_session_cap(user.id, 5) == 0
    assert len(await ledger.get_active_for_user(user.id)) == 3


async def test_blacklist_duplicate_is_noop(ledger, user):
    assert await ledger.blacklist_access_token("jti-1", user.id, _in(0.01)) is True
    assert await ledger.blacklist_access_token("jti-1", user.id, _in(0.01)) is False
    assert await ledger.is_blacklisted("jti-1") is True
    assert await ledger.is_blacklisted("jti-2") is False


async def test_expired_blacklist_entry_counts_as_absent(ledger, user):
    await ledger.blacklist_access_token("old-jti", user.id, _in(-0.01))
    assert await ledger.is_blacklisted("old-jti") is False


async def test_user_wide_marker(ledger, user):
    issued_before = utcnow() - timedelta(minutes=1)
    await ledger.blacklist_user(user.id, _in(0.01))

    assert await ledger.is_user_logged_out_since(user.id, issued_before) is True
    assert (
        await ledger.is_user_logged_out_since(user.id, utcnow() + timedelta(seconds=5))
        is False
    )
    assert await ledger.is_user_logged_out_since(user.id + 1, issued_before) is False


async def test_purge_expired_is_idempotent(ledger, user, session_factory):
    await ledger.record(user.id, "long-gone", _in(-8))
    await ledger.record(user.id, "recently-expired", _in(-1))
    revoked = await ledger.record(user.id, "revoked-long-ago", _in())
    await ledger.revoke(revoked.id)
    async with session_factory() as db:
        await db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == revoked.id)
            .values(revoked_at=utcnow() - timedelta(days=8))
        )
        await db.commit()
    await ledger.record(user.id, "live", _in())
    await ledger.blacklist_access_token("expired-jti", user.id, _in(-0.01))
    await ledger.blacklist_access_token("live-jti", user.id, _in(0.01))

    assert await ledger.purge_expired() == 3
    assert await ledger.purge_expired() == 0

    assert await count_rows(session_factory, RefreshToken) == 2
    assert await count_rows(session_factory, TokenBlacklist) == 1


async def test_blacklist_stats(ledger, user):
    await ledger.blacklist_access_token("a", user.id, _in(0.01), reason="logout")
    await ledger.blacklist_access_token("b", user.id, _in(-0.01), reason="logout")
    await ledger.blacklist_user(user.id, _in(0.01))

    stats = await ledger.blacklist_stats()
    assert stats.total_blacklisted == 3
    assert stats.active_blacklisted == 2
    assert stats.logout_count == 2
    assert stats.security_logout_count == 1


async def test_blacklist_stats_empty(ledger):
    stats = await ledger.blacklist_stats()
    assert stats.total_blacklisted == 0
    assert stats.active_blacklisted == 0


async def test_session_cap_ties_fall_back_to_insertion_order(
    ledger, user, session_factory
):
    records = [await ledger.record(user.id, f"token-{i}", _in()) for i in range(3)]
    same_moment = utcnow() - timedelta(minutes=1)
    async with session_factory() as db:
        await db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user.id)
            .values(created_at=same_moment)
        )
        await db.commit()

    assert await ledger.enforce_session_cap(user.id, 3) == 1

    active_ids = [r.id for r in await ledger.get_active_for_user(user.id)]
    assert active_ids == [records[2].id, records[1].id]


async def test_record_truncates_long_ip_address(ledger, user):
    record = await ledger.record(user.id, "spoofed", _in(), ip_address="1" * 300)
    assert record.ip_address == "1" * 64


async def test_user_wide_marker_spares_later_tokens(ledger, user):
    await ledger.blacklist_user(user.id, _in(0.01))
    issued_after = utcnow()

    assert await ledger.is_user_logged_out_since(user.id, issued_after) is False
    assert (
        await ledger.is_user_logged_out_since(
            user.id, issued_after - timedelta(milliseconds=500)
        )
        is True
    )
