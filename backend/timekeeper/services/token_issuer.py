"""Signing and verification of access/refresh JWT pairs.

Access and refresh tokens are signed with different secrets, so leaking one
key is not enough to forge the other kind of token. Each token carries its
own ``jti`` so that a single token can be revoked or blacklisted without
touching the user's other tokens.

The issuer has no side effects: persisting the refresh token is the
caller's job (see :class:`~timekeeper.services.token_ledger.TokenLedger`).
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from timekeeper.config.config import Settings
from timekeeper.core.errors import InvalidTokenKind, SignatureInvalid, TokenExpired
from timekeeper.core.time import utcnow
from timekeeper.schemas.auth import TokenClaims, TokenKind, TokenPair

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _issued_at(payload: dict) -> datetime:
    if "iat_us" in payload:
        return EPOCH + timedelta(microseconds=int(payload["iat_us"]))
    return datetime.fromtimestamp(payload["iat"], tz=timezone.utc)


class TokenSettings(BaseModel):
    """Key material and lifetimes the issuer is constructed with."""

    model_config = ConfigDict(frozen=True)

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    issuer: str = "timekeeper"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenSettings":
        return cls(
            access_secret=settings.JWT_ACCESS_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )


class TokenIssuer:
    """Creates and verifies signed token pairs."""

    def __init__(self, config: TokenSettings):
        self._config = config

    @property
    def access_ttl(self) -> timedelta:
        return self._config.access_ttl

    def _secret_for(self, kind: TokenKind) -> str:
        if kind is TokenKind.ACCESS:
            return self._config.access_secret
        return self._config.refresh_secret

    def _encode(
        self, claims: dict, kind: TokenKind, jti: str, issued_at: datetime, ttl: timedelta
    ) -> tuple[str, datetime]:
        expires_at = issued_at + ttl
        payload = {
            **claims,
            "jti": jti,
            "token_type": kind.value,
            "iat": issued_at,
            # NOTE: "iat" is whole seconds; logout-all markers need microseconds
            "iat_us": (issued_at - EPOCH) // timedelta(microseconds=1),
            "exp": expires_at,
        }
        token = jwt.encode(
            payload, self._secret_for(kind), algorithm=self._config.algorithm
        )
        return token, expires_at

    def issue(self, user, device_info: str | None = None) -> TokenPair:
        """Create a matched access/refresh pair for ``user``.

        Args:
            user: Any object exposing ``id``, ``email`` and ``company_id``.
            device_info: Device descriptor embedded in both tokens.

        Returns:
            TokenPair: Both encoded tokens, their expiries and their jtis.
        """
        issued_at = utcnow()
        claims = {
            "sub": str(user.id),
            "email": user.email,
            "company_id": user.company_id,
            "device_info": device_info,
            "iss": self._config.issuer,
        }
        # NOTE: access and refresh tokens never share a jti
        access_jti = str(uuid4())
        refresh_jti = str(uuid4())

        access_token, expires_at = self._encode(
            claims, TokenKind.ACCESS, access_jti, issued_at, self._config.access_ttl
        )
        refresh_token, refresh_expires_at = self._encode(
            claims, TokenKind.REFRESH, refresh_jti, issued_at, self._config.refresh_ttl
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            refresh_expires_at=refresh_expires_at,
            access_jti=access_jti,
            refresh_jti=refresh_jti,
        )

    def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Verify ``token`` and return its claims.

        The kind is checked before the signature, so presenting a refresh
        token where an access token is expected fails as
        ``InvalidTokenKind`` rather than as a signature error.

        Raises:
            InvalidTokenKind: The token's ``token_type`` is not ``expected_kind``.
            TokenExpired: The token is past its ``exp``.
            SignatureInvalid: The token is malformed or its signature is wrong.
        """
        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as exc:
            raise SignatureInvalid(f"malformed {expected_kind.value} token: {exc}")

        kind = unverified.get("token_type")
        if kind != expected_kind.value:
            raise InvalidTokenKind(
                f"expected {expected_kind.value} token, got {kind!r}"
            )

        try:
            payload = jwt.decode(
                token,
                self._secret_for(expected_kind),
                algorithms=[self._config.algorithm],
                issuer=self._config.issuer,
                options={"require": ["sub", "jti", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired(f"{expected_kind.value} token expired")
        except jwt.InvalidTokenError as exc:
            raise SignatureInvalid(f"invalid {expected_kind.value} token: {exc}")

        try:
            return TokenClaims(
                user_id=int(payload["sub"]),
                email=payload.get("email"),
                company_id=payload.get("company_id"),
                jti=payload["jti"],
                device_info=payload.get("device_info"),
                token_type=TokenKind(kind),
                iat=_issued_at(payload),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError, OverflowError, ValidationError) as exc:
            raise SignatureInvalid(f"unexpected claims in {kind} token: {exc}")
