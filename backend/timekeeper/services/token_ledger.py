"""Durable bookkeeping of refresh tokens and blacklisted access tokens.

Refresh tokens are stored as a sha-256 hash only; the raw value never
reaches the database. A record is active until it is revoked (explicit,
one-way) or its expiry passes (implicit). Every state change is a
compare-and-set ``UPDATE ... WHERE revoked = false`` whose affected row
count tells the caller whether *it* performed the transition, which is what
makes a replayed refresh token lose against the first use.

Each method opens its own session and commits before returning, so a write
is durable by the time the awaiting caller continues.
"""

from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.core.logging import logger
from timekeeper.core.security import hash_token
from timekeeper.core.time import as_utc, utcnow
from timekeeper.models.auth import RefreshToken as RefreshTokenModel
from timekeeper.models.auth import TokenBlacklist as TokenBlacklistModel

DEFAULT_RETENTION = timedelta(days=7)


class TokenStatus(str, Enum):
    ACTIVE = "active"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    EXPIRED = "expired"


class TokenRecord(BaseModel):
    """Read-only view of a refresh-token ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    expires_at: datetime
    created_at: datetime
    revoked: bool
    revoked_at: datetime | None = None
    replaced_by_token_id: int | None = None
    device_info: str | None = None
    ip_address: str | None = None

    @field_validator("expires_at", "created_at", "revoked_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class TokenLookup(BaseModel):
    """Outcome of :meth:`TokenLedger.lookup_active`."""

    status: TokenStatus
    record: TokenRecord | None = None

    @property
    def is_active(self) -> bool:
        return self.status is TokenStatus.ACTIVE


class BlacklistStats(BaseModel):
    total_blacklisted: int
    active_blacklisted: int
    logout_count: int
    security_logout_count: int


class TokenLedger:
    """Refresh-token records, access-token blacklist and maintenance."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retention: timedelta = DEFAULT_RETENTION,
    ):
        self._session_factory = session_factory
        self._retention = retention

    # Refresh tokens

    async def record(
        self,
        user_id: int,
        raw_refresh_token: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> TokenRecord:
        """Persist the hash of ``raw_refresh_token`` with its metadata.

        Returns:
            TokenRecord: The committed record (its ``id`` is assigned).
        """
        async with self._session_factory() as db:
            row = RefreshTokenModel(
                user_id=user_id,
                token_hash=hash_token(raw_refresh_token),
                expires_at=expires_at,
                created_at=utcnow(),
                revoked=False,
                revoked_at=None,
                replaced_by_token_id=None,
                device_info=device_info[:255] if device_info else None,
                ip_address=ip_address[:64] if ip_address else None,
            )
            db.add(row)
            await db.commit()
            record = TokenRecord.model_validate(row)
        logger.info("Recorded refresh token id={} for user_id={}", record.id, user_id)
        return record

    async def lookup_active(self, raw_refresh_token: str) -> TokenLookup:
        """Resolve a raw refresh token to its ledger state.

        Unlike the other ledger operations this distinguishes *why* a token
        is unusable: never issued, already revoked (e.g. reused after
        rotation), or simply stale.
        """
        token_hash = hash_token(raw_refresh_token)
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokenModel).where(
                    RefreshTokenModel.token_hash == token_hash
                )
            )
            row = result.scalars().first()
            if row is None:
                return TokenLookup(status=TokenStatus.NOT_FOUND)
            record = TokenRecord.model_validate(row)

        if record.revoked:
            return TokenLookup(status=TokenStatus.REVOKED, record=record)
        if record.expires_at <= utcnow():
            return TokenLookup(status=TokenStatus.EXPIRED, record=record)
        return TokenLookup(status=TokenStatus.ACTIVE, record=record)

    async def get_active_for_user(self, user_id: int) -> list[TokenRecord]:
        """Return the user's active records, newest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokenModel)
                .where(
                    RefreshTokenModel.user_id == user_id,
                    RefreshTokenModel.revoked == False,  # noqa: E712
                    RefreshTokenModel.expires_at > utcnow(),
                )
                .order_by(
                    RefreshTokenModel.created_at.desc(), RefreshTokenModel.id.desc()
                )
            )
            return [TokenRecord.model_validate(row) for row in result.scalars().all()]

    async def revoke(
        self, token_id: int, replaced_by_token_id: int | None = None
    ) -> bool:
        """Mark a record revoked.

        Revoking an unknown or already revoked record is a no-op.

        Returns:
            bool: True if this call performed the transition.
        """
        values = {"revoked": True, "revoked_at": utcnow()}
        if replaced_by_token_id is not None:
            values["replaced_by_token_id"] = replaced_by_token_id

        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.id == token_id,
                    RefreshTokenModel.revoked == False,  # noqa: E712
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        revoked = result.rowcount == 1
        if revoked:
            logger.info(
                "Revoked refresh token id={} replaced_by={}",
                token_id,
                replaced_by_token_id,
            )
        else:
            logger.debug("Refresh token id={} already terminal or unknown", token_id)
        return revoked

    async def _revoke_where(self, *criteria) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(RefreshTokenModel.revoked == False, *criteria)  # noqa: E712
                .values(revoked=True, revoked_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount

    async def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every active record of ``user_id``; returns how many."""
        count = await self._revoke_where(
            RefreshTokenModel.user_id == user_id,
            RefreshTokenModel.expires_at > utcnow(),
        )
        logger.info("Revoked all refresh tokens for user_id={} (count={})", user_id, count)
        return count

    async def enforce_session_cap(self, user_id: int, max_active: int) -> int:
        """Make room for one more session under a cap of ``max_active``.

        Keeps at most ``max_active - 1`` of the newest active records and
        revokes the rest.

        Returns:
            int: Number of records revoked.
        """
        if max_active < 1:
            raise ValueError("max_active must be at least 1")

        active = await self.get_active_for_user(user_id)
        if len(active) < max_active:
            return 0

        excess = [record.id for record in active[max_active - 1 :]]
        count = await self._revoke_where(RefreshTokenModel.id.in_(excess))
        logger.info(
            "Session cap {} reached for user_id={}, revoked {} oldest",
            max_active,
            user_id,
            count,
        )
        return count

    # Access-token blacklist

    async def _insert_blacklist(self, row: TokenBlacklistModel) -> bool:
        async with self._session_factory() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
        return True

    async def blacklist_access_token(
        self, jti: str, user_id: int, expires_at: datetime, reason: str = "logout"
    ) -> bool:
        """Blacklist an access token until ``expires_at``.

        Returns:
            bool: False when the jti was already blacklisted.
        """
        inserted = await self._insert_blacklist(
            TokenBlacklistModel(
                token_jti=jti, user_id=user_id, expires_at=expires_at, reason=reason
            )
        )
        if inserted:
            logger.info("Blacklisted access token jti={} reason={}", jti, reason)
        return inserted

    async def blacklist_user(
        self, user_id: int, expires_at: datetime, reason: str = "security_logout"
    ) -> None:
        """Insert a user-wide marker rejecting the user's earlier access tokens.

        Already issued access-token jtis are not tracked, so this marker is
        how a logout from all devices reaches them; see
        :meth:`is_user_logged_out_since`.
        """
        await self._insert_blacklist(
            TokenBlacklistModel(
                token_jti=f"user:{user_id}:*:{uuid4().hex}",
                user_id=user_id,
                expires_at=expires_at,
                reason=reason,
                user_wide=True,
                created_at=utcnow(),
            )
        )
        logger.info("Blacklisted all access tokens of user_id={}", user_id)

    async def is_blacklisted(self, jti: str) -> bool:
        """True while a blacklist row for ``jti`` has not expired."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(TokenBlacklistModel.id).where(
                    TokenBlacklistModel.token_jti == jti,
                    TokenBlacklistModel.expires_at > utcnow(),
                )
            )
            return result.first() is not None

    async def is_user_logged_out_since(self, user_id: int, issued_at: datetime) -> bool:
        """True if a live user-wide marker was written after ``issued_at``.

        Both sides carry microseconds, so a token issued right after a logout
        from all devices stays valid.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.max(TokenBlacklistModel.created_at)).where(
                    TokenBlacklistModel.user_id == user_id,
                    TokenBlacklistModel.user_wide == True,  # noqa: E712
                    TokenBlacklistModel.expires_at > utcnow(),
                )
            )
            marker = as_utc(result.scalar())
        if marker is None:
            return False
        return as_utc(issued_at) < marker

    # Maintenance

    async def purge_expired(self) -> int:
        """Delete rows that no longer matter.

        Refresh-token rows go once they have been expired or revoked for
        longer than the retention period; blacklist rows go as soon as they
        expire. Safe to run repeatedly and concurrently.

        Returns:
            int: Total number of rows deleted.
        """
        now = utcnow()
        cutoff = now - self._retention
        async with self._session_factory() as db:
            tokens = await db.execute(
                delete(RefreshTokenModel)
                .where(
                    or_(
                        RefreshTokenModel.expires_at < cutoff,
                        and_(
                            RefreshTokenModel.revoked == True,  # noqa: E712
                            RefreshTokenModel.revoked_at < cutoff,
                        ),
                    )
                )
                .execution_options(synchronize_session=False)
            )
            blacklist = await db.execute(
                delete(TokenBlacklistModel)
                .where(TokenBlacklistModel.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        logger.info(
            "Purged {} refresh tokens and {} blacklist entries",
            tokens.rowcount,
            blacklist.rowcount,
        )
        return tokens.rowcount + blacklist.rowcount

    async def blacklist_stats(self) -> BlacklistStats:
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    func.count(TokenBlacklistModel.id),
                    func.sum(case((TokenBlacklistModel.expires_at > now, 1), else_=0)),
                    func.sum(case((TokenBlacklistModel.reason == "logout", 1), else_=0)),
                    func.sum(
                        case(
                            (TokenBlacklistModel.reason == "security_logout", 1),
                            else_=0,
                        )
                    ),
                )
            )
            total, active, logout, security = result.one()
        return BlacklistStats(
            total_blacklisted=total or 0,
            active_blacklisted=active or 0,
            logout_count=logout or 0,
            security_logout_count=security or 0,
        )
