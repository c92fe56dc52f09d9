"""Authentication service: the only entry point route handlers use.

REFRESH TOKEN LIFECYCLE:

1. REGISTER / LOGIN:
   - Credentials are checked against the credential store
   - On login the per-user session cap is enforced *before* the new session
     is recorded, so the cap always leaves room for it
   - A new access/refresh pair is issued; the refresh token's hash is
     recorded in the ledger together with device info and IP

2. REFRESH (rotation):
   - The refresh token must verify as kind "refresh" and be active in the
     ledger (not unknown, not revoked, not expired)
   - A new pair is issued and the new refresh record is committed first
   - Only then is the old record revoked, pointing at its successor
   - A replayed (already rotated) token therefore always fails, and when
     two requests race with the same token only one revoke succeeds; the
     loser's freshly created record is revoked again and it fails too

3. LOGOUT:
   - Best effort: revoke the refresh token and blacklist the access token
     if they are usable; always reports success

4. LOGOUT ALL DEVICES:
   - Revokes every active refresh token and inserts a user-wide blacklist
     marker that rejects all previously issued access tokens

Every store call is bounded by a timeout. Timeouts and connection failures
surface as ``ServiceUnavailable``; they are not retried here.
"""

import asyncio
from typing import Awaitable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

from timekeeper.core.errors import (
    AuthError,
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidRefreshToken,
    InvalidTokenKind,
    ServiceUnavailable,
    SessionNotFound,
    SignatureInvalid,
    TokenExpired,
    TokenRevoked,
    UserNotFound,
)
from timekeeper.core.logging import logger
from timekeeper.core.time import utcnow
from timekeeper.schemas.auth import (
    AuthResult,
    MessageResponse,
    RequestInfo,
    SessionInfo,
    TokenKind,
    UserSummary,
)
from timekeeper.services.credential_store import CredentialStore, StoredUser
from timekeeper.services.token_issuer import TokenIssuer
from timekeeper.services.token_ledger import TokenLedger

T = TypeVar("T")

DEFAULT_MAX_ACTIVE_SESSIONS = 5
UNKNOWN_DEVICE = "Unknown device"


def _summary(user: StoredUser, **overrides) -> UserSummary:
    data = user.model_dump(exclude={"password_hash"})
    data.update(overrides)
    return UserSummary(**data)


class AuthService:
    """Registration, login, rotation, logout and session management."""

    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        ledger: TokenLedger,
        max_active_sessions: int = DEFAULT_MAX_ACTIVE_SESSIONS,
        store_timeout: float = 5.0,
    ):
        self._users = store
        self._issuer = issuer
        self._ledger = ledger
        self._max_active_sessions = max_active_sessions
        self._store_timeout = store_timeout

    async def _store(self, awaitable: Awaitable[T]) -> T:
        """Await a store/ledger call under the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            logger.critical("Store call timed out after {}s", self._store_timeout)
            raise ServiceUnavailable("store call timed out") from exc
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.critical("Store unavailable: {}", exc)
            raise ServiceUnavailable(f"store unavailable: {exc}") from exc

    async def _start_session(
        self, user: StoredUser, request_info: RequestInfo
    ):
        tokens = self._issuer.issue(user, request_info.user_agent)
        record = await self._store(
            self._ledger.record(
                user.id,
                tokens.refresh_token,
                tokens.refresh_expires_at,
                device_info=request_info.user_agent,
                ip_address=request_info.ip_address,
            )
        )
        return tokens, record

    async def _discard_registration(self, user: StoredUser) -> None:
        try:
            await self._store(self._users.delete(user.id, user.company_id))
        except AuthError as exc:
            logger.critical(
                "User id={} registered without a session and could not be removed: {}",
                user.id,
                exc.reason,
            )

    async def register(
        self,
        email: str,
        password: str,
        company_name: str,
        request_info: RequestInfo | None = None,
    ) -> AuthResult:
        """Create a company with its first user and open a session.

        If the first session cannot be recorded the new user and company are
        removed again, so a retry with the same email can succeed.

        Raises:
            EmailAlreadyExists: The email is already registered.
        """
        request_info = request_info or RequestInfo()
        if await self._store(self._users.find_by_email(email)) is not None:
            raise EmailAlreadyExists(f"registration for existing email {email}")

        user = await self._store(self._users.create(email, password, company_name))
        try:
            tokens, _ = await self._start_session(user, request_info)
        except Exception:
            await self._discard_registration(user)
            raise
        logger.info("Registered user id={} company id={}", user.id, user.company_id)
        return AuthResult(user=_summary(user), tokens=tokens)

    async def login(
        self, email: str, password: str, request_info: RequestInfo | None = None
    ) -> AuthResult:
        """Authenticate by email and password and open a new session.

        Raises:
            InvalidCredentials: Unknown email or wrong password (the client
                cannot tell which).
        """
        request_info = request_info or RequestInfo()
        user = await self._store(self._users.find_by_email(email))
        if user is None:
            raise InvalidCredentials(f"login for unknown email {email}")
        if not self._users.verify_password(password, user.password_hash):
            raise InvalidCredentials(f"wrong password for user_id={user.id}")

        await self._store(self._users.update_last_login(user.id))
        await self._store(
            self._ledger.enforce_session_cap(user.id, self._max_active_sessions)
        )
        tokens, _ = await self._start_session(user, request_info)
        logger.info("User id={} logged in from {}", user.id, request_info.ip_address)
        return AuthResult(user=_summary(user, last_login_at=utcnow()), tokens=tokens)

    async def refresh(
        self, raw_refresh_token: str, request_info: RequestInfo | None = None
    ) -> AuthResult:
        """Exchange a refresh token for a new pair, rotating the refresh token.

        Raises:
            InvalidRefreshToken: The token is malformed, of the wrong kind,
                expired, unknown or already revoked.
            UserNotFound: The token's user no longer exists.
        """
        request_info = request_info or RequestInfo()
        try:
            claims = self._issuer.verify(raw_refresh_token, TokenKind.REFRESH)
        except (InvalidTokenKind, SignatureInvalid, TokenExpired) as exc:
            raise InvalidRefreshToken(f"{type(exc).__name__}: {exc.reason}") from exc

        lookup = await self._store(self._ledger.lookup_active(raw_refresh_token))
        if not lookup.is_active:
            raise InvalidRefreshToken(f"refresh token {lookup.status.value}")
        old = lookup.record
        if old.user_id != claims.user_id:
            raise InvalidRefreshToken(
                f"refresh token id={old.id} subject mismatch ({claims.user_id})"
            )

        user = await self._store(self._users.find_by_id(old.user_id))
        if user is None:
            raise UserNotFound(f"user id={old.user_id} deleted since token issuance")

        # NOTE: successor is committed before the old record is revoked
        tokens, new = await self._start_session(user, request_info)
        rotated = await self._store(
            self._ledger.revoke(old.id, replaced_by_token_id=new.id)
        )
        if not rotated:
            await self._store(self._ledger.revoke(new.id))
            raise InvalidRefreshToken(
                f"refresh token id={old.id} was rotated by a concurrent request"
            )

        logger.info("Rotated refresh token id={} -> id={}", old.id, new.id)
        return AuthResult(user=_summary(user), tokens=tokens)

    async def change_password(
        self, user_id: int, current_password: str, new_password: str
    ) -> MessageResponse:
        """Replace the user's password. Existing sessions stay valid.

        Raises:
            UserNotFound: No such user.
            InvalidCurrentPassword: ``current_password`` does not match.
        """
        user = await self._store(self._users.find_by_id(user_id))
        if user is None:
            raise UserNotFound(f"password change for missing user id={user_id}")
        if not self._users.verify_password(current_password, user.password_hash):
            raise InvalidCurrentPassword(f"wrong current password for user_id={user_id}")

        await self._store(self._users.update_password(user_id, new_password))
        return MessageResponse(message="Password changed successfully")

    async def logout(
        self,
        raw_refresh_token: str | None = None,
        access_token: str | None = None,
        request_info: RequestInfo | None = None,
    ) -> MessageResponse:
        """Best-effort logout that always reports success.

        The refresh token is revoked if it is active and the access token is
        blacklisted until its natural expiry if it verifies. Unusable inputs
        and store failures are logged, never raised.
        """
        if raw_refresh_token:
            try:
                lookup = await self._store(
                    self._ledger.lookup_active(raw_refresh_token)
                )
                if lookup.is_active:
                    await self._store(self._ledger.revoke(lookup.record.id))
                else:
                    logger.debug("Logout with {} refresh token", lookup.status.value)
            except AuthError as exc:
                logger.warning("Logout could not revoke refresh token: {}", exc.reason)

        if access_token:
            try:
                claims = self._issuer.verify(access_token, TokenKind.ACCESS)
                await self._store(
                    self._ledger.blacklist_access_token(
                        claims.jti, claims.user_id, claims.exp, reason="logout"
                    )
                )
            except AuthError as exc:
                logger.debug("Logout skipped access token: {}", exc.reason)

        ip = request_info.ip_address if request_info else None
        logger.info("Logout processed for ip={}", ip)
        return MessageResponse(message="Logged out successfully")

    async def logout_all_devices(self, user_id: int) -> int:
        """Revoke every session of ``user_id`` and reject its access tokens.

        Returns:
            int: Number of refresh tokens revoked.
        """
        count = await self._store(self._ledger.revoke_all_for_user(user_id))
        await self._store(
            self._ledger.blacklist_user(
                user_id, utcnow() + self._issuer.access_ttl, reason="security_logout"
            )
        )
        logger.info("User id={} logged out from all devices ({} sessions)", user_id, count)
        return count

    async def get_user_active_sessions(self, user_id: int) -> list[SessionInfo]:
        records = await self._store(self._ledger.get_active_for_user(user_id))
        return [
            SessionInfo(
                id=record.id,
                device_info=record.device_info or UNKNOWN_DEVICE,
                ip_address=record.ip_address,
                created_at=record.created_at,
                expires_at=record.expires_at,
            )
            for record in records
        ]

    async def revoke_session(self, user_id: int, session_id: int) -> MessageResponse:
        """Revoke one of the user's own active sessions.

        Raises:
            SessionNotFound: ``session_id`` is not an active session of this user.
        """
        records = await self._store(self._ledger.get_active_for_user(user_id))
        if session_id not in {record.id for record in records}:
            raise SessionNotFound(
                f"session id={session_id} is not active for user_id={user_id}"
            )
        await self._store(self._ledger.revoke(session_id))
        return MessageResponse(message="Session revoked successfully")

    async def authenticate(self, access_token: str) -> UserSummary:
        """Resolve a bearer access token to its user.

        Raises:
            InvalidTokenKind, SignatureInvalid, TokenExpired: Verification failed.
            TokenRevoked: The token was logged out or predates a logout from
                all devices.
            UserNotFound: The token's user no longer exists.
        """
        claims = self._issuer.verify(access_token, TokenKind.ACCESS)
        if await self._store(self._ledger.is_blacklisted(claims.jti)):
            raise TokenRevoked(f"access token jti={claims.jti} is blacklisted")
        if await self._store(
            self._ledger.is_user_logged_out_since(claims.user_id, claims.iat)
        ):
            raise TokenRevoked(
                f"access token jti={claims.jti} predates logout from all devices"
            )

        user = await self._store(self._users.find_by_id(claims.user_id))
        if user is None:
            raise UserNotFound(f"user id={claims.user_id} no longer exists")
        return _summary(user)
