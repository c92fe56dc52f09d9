from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from timekeeper.config.config import Settings
from timekeeper.core.time import utcnow
from timekeeper.core.errors import InvalidTokenKind, SignatureInvalid, TokenExpired
from timekeeper.schemas.auth import TokenKind
from timekeeper.services.token_issuer import TokenIssuer, TokenSettings

USER = SimpleNamespace(id=42, email="a@b.com", company_id=7)


def test_access_token_round_trip(issuer):
    pair = issuer.issue(USER, "Firefox on Linux")

    claims = issuer.verify(pair.access_token, TokenKind.ACCESS)

    assert claims.user_id == 42
    assert claims.company_id == 7
    assert claims.email == "a@b.com"
    assert claims.jti == pair.access_jti
    assert claims.device_info == "Firefox on Linux"
    assert claims.token_type is TokenKind.ACCESS
    # exp is whole seconds, iat keeps microseconds
    assert timedelta(seconds=899) < claims.exp - claims.iat <= timedelta(minutes=15)


def test_refresh_token_round_trip(issuer):
    pair = issuer.issue(USER)

    claims = issuer.verify(pair.refresh_token, TokenKind.REFRESH)

    assert claims.user_id == 42
    assert claims.jti == pair.refresh_jti
    assert timedelta(days=7, seconds=-1) < claims.exp - claims.iat <= timedelta(days=7)


def test_access_and_refresh_have_distinct_jti(issuer):
    pair = issuer.issue(USER)
    assert pair.access_jti != pair.refresh_jti
    assert pair.token_type == "Bearer"
    assert pair.refresh_expires_at > pair.expires_at


def test_access_token_rejected_as_refresh(issuer):
    pair = issuer.issue(USER)
    with pytest.raises(InvalidTokenKind):
        issuer.verify(pair.access_token, TokenKind.REFRESH)


def test_refresh_token_rejected_as_access(issuer):
    pair = issuer.issue(USER)
    with pytest.raises(InvalidTokenKind):
        issuer.verify(pair.refresh_token, TokenKind.ACCESS)


def test_garbage_token_is_signature_invalid(issuer):
    with pytest.raises(SignatureInvalid):
        issuer.verify("invalid.refresh.token", TokenKind.REFRESH)


def test_token_from_other_keys_is_rejected(issuer):
    other = TokenIssuer(
        TokenSettings(access_secret="other-access", refresh_secret="other-refresh")
    )
    pair = other.issue(USER)
    with pytest.raises(SignatureInvalid):
        issuer.verify(pair.access_token, TokenKind.ACCESS)


def test_expired_token(token_settings):
    expired = TokenIssuer(
        token_settings.model_copy(update={"access_ttl": timedelta(seconds=-5)})
    )
    pair = expired.issue(USER)
    with pytest.raises(TokenExpired):
        expired.verify(pair.access_token, TokenKind.ACCESS)


def test_token_settings_from_settings():
    settings = Settings(
        JWT_ACCESS_SECRET="a-secret",
        JWT_REFRESH_SECRET="r-secret",
        ACCESS_TOKEN_EXPIRE_MINUTES=5,
        REFRESH_TOKEN_EXPIRE_DAYS=30,
    )
    config = TokenSettings.from_settings(settings)
    assert config.access_secret == "a-secret"
    assert config.refresh_secret == "r-secret"
    assert config.access_ttl == timedelta(minutes=5)
    assert config.refresh_ttl == timedelta(days=30)


def test_settings_reject_shared_secret():
    with pytest.raises(ValueError):
        Settings(JWT_ACCESS_SECRET="same", JWT_REFRESH_SECRET="same")


def test_issued_at_keeps_microseconds(issuer):
    before = utcnow()
    pair = issuer.issue(USER)
    after = utcnow()

    access = issuer.verify(pair.access_token, TokenKind.ACCESS)
    refresh = issuer.verify(pair.refresh_token, TokenKind.REFRESH)

    assert before <= access.iat <= after
    assert access.iat == refresh.iat
