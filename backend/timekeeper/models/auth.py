"""Authentication models: tenants, users, refresh tokens and the blacklist.

Refresh tokens are stored as a sha-256 hash of the raw token together with
device metadata so they may be revoked, rotated and listed as sessions.
Blacklist rows invalidate access tokens (by jti) before their natural expiry.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from timekeeper.core.time import utcnow
from timekeeper.db.session import Base


class Company(Base):
    """A tenant. Every administrator account belongs to exactly one company.

    Attributes:
        id: Primary key.
        name: Display name given at registration.
        created_at: Creation timestamp.
    """

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    users = relationship("User", back_populates="company")


class User(Base):
    """Database model representing an administrator account.

    Attributes:
        id: Primary key.
        email: Unique login email, stored lower-cased.
        password_hash: Password hash produced by pwdlib.
        company_id: Foreign key to `companies.id`.
        last_login_at: Timestamp of the last successful login.
        created_at: Account creation timestamp.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    company = relationship("Company", back_populates="users", lazy="joined")


class RefreshToken(Base):
    """Ledger record of an issued refresh token.

    Only the hash of the token is stored. A record is active until it is
    revoked or expires; both are terminal.

    Attributes:
        id: Primary key.
        user_id: Foreign key to `users.id`.
        token_hash: Hex sha-256 of the raw refresh token.
        expires_at: Expiration timestamp.
        created_at: Record creation timestamp.
        revoked: Whether the token was revoked.
        revoked_at: When the token was revoked.
        replaced_by_token_id: Successor record created by rotation.
        device_info: Optional device description (user agent).
        ip_address: Optional originating IP address.
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (Index("ix_refresh_tokens_user_revoked", "user_id", "revoked"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by_token_id = Column(
        Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True
    )

    # NOTE: Device/session tracking
    device_info = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)


class TokenBlacklist(Base):
    """Access-token identifiers that must be rejected before they expire.

    Rows with ``user_wide`` set are logout-everywhere markers: every access
    token of that user issued before ``created_at`` is rejected.

    Attributes:
        id: Primary key.
        token_jti: Blacklisted jti, or a synthetic key for user-wide markers.
        user_id: Owner of the token.
        expires_at: When the row stops mattering.
        reason: ``logout`` or ``security_logout``.
        user_wide: Marker for a logout from all devices.
        created_at: Insertion timestamp.
    """

    __tablename__ = "token_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    token_jti = Column(String(128), unique=True, nullable=False, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String(32), nullable=False, default="logout")
    user_wide = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
