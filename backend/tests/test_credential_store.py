from __future__ import annotations

import pytest

from conftest import PASSWORD, count_rows
from timekeeper.core.errors import EmailAlreadyExists
from timekeeper.models.auth import Company, User


async def test_create_user_with_company(store, user):
    assert user.email == "owner@example.com"
    assert user.company_name == "Acme Corp"
    assert user.password_hash != PASSWORD
    assert user.last_login_at is None


async def test_find_by_email_is_case_insensitive(store, user):
    found = await store.find_by_email("OWNER@Example.com")
    assert found is not None
    assert found.id == user.id
    assert found.company_id == user.company_id


async def test_find_missing_user(store):
    assert await store.find_by_email("nobody@example.com") is None
    assert await store.find_by_id(12345) is None


async def test_duplicate_email_rolls_back_company(store, user, session_factory):
    with pytest.raises(EmailAlreadyExists):
        await store.create("Owner@Example.com", "another-pass", "Second Corp")

    assert await count_rows(session_factory, User) == 1
    assert await count_rows(session_factory, Company) == 1


async def test_password_update_and_verify(store, user):
    assert store.verify_password(PASSWORD, user.password_hash)
    assert not store.verify_password("wrong", user.password_hash)

    await store.update_password(user.id, "new-secret")

    reloaded = await store.find_by_id(user.id)
    assert store.verify_password("new-secret", reloaded.password_hash)
    assert not store.verify_password(PASSWORD, reloaded.password_hash)


async def test_update_last_login(store, user):
    await store.update_last_login(user.id)
    reloaded = await store.find_by_id(user.id)
    assert reloaded.last_login_at is not None
    assert reloaded.last_login_at.tzinfo is not None
