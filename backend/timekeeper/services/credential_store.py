"""User and tenant persistence used by the auth service.

Emails are compared case-insensitively and stored lower-cased. Registration
creates the company and its first user in one transaction, so a rejected
duplicate email never leaves an orphan company behind.
"""

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timekeeper.core.errors import EmailAlreadyExists
from timekeeper.core.logging import logger
from timekeeper.core.security import get_password_hash, verify_password
from timekeeper.core.time import as_utc, utcnow
from timekeeper.models.auth import Company as CompanyModel
from timekeeper.models.auth import User as UserModel


class StoredUser(BaseModel):
    """Internal user model including the password hash."""

    id: int
    email: str
    password_hash: str
    company_id: int
    company_name: str | None = None
    created_at: datetime | None = None
    last_login_at: datetime | None = None


def _to_stored(row: UserModel) -> StoredUser:
    return StoredUser(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        company_id=row.company_id,
        company_name=row.company.name if row.company else None,
        created_at=as_utc(row.created_at),
        last_login_at=as_utc(row.last_login_at),
    )


class CredentialStore:
    """Async access to users, companies and password verification."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_email(self, email: str) -> StoredUser | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(UserModel).where(func.lower(UserModel.email) == email.lower())
            )
            row = result.scalars().first()
            return _to_stored(row) if row else None

    async def find_by_id(self, user_id: int) -> StoredUser | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(UserModel).where(UserModel.id == user_id)
            )
            row = result.scalars().first()
            return _to_stored(row) if row else None

    async def create(self, email: str, password: str, company_name: str) -> StoredUser:
        """Create a company and its first user.

        Raises:
            EmailAlreadyExists: Another user already owns ``email``.
        """
        email = email.lower()
        now = utcnow()
        async with self._session_factory() as db:
            company = CompanyModel(name=company_name, created_at=now)
            user = UserModel(
                email=email,
                password_hash=get_password_hash(password),
                company=company,
                created_at=now,
                last_login_at=None,
            )
            db.add_all([company, user])
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise EmailAlreadyExists(f"email {email} taken (concurrent insert)")
            stored = _to_stored(user)
        logger.info(
            "Created user id={} for company id={}", stored.id, stored.company_id
        )
        return stored

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return verify_password(plain_password, hashed_password)

    async def update_password(self, user_id: int, new_password: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(password_hash=get_password_hash(new_password))
            )
            await db.commit()
        logger.info("Password changed for user_id={}", user_id)

    async def update_last_login(self, user_id: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(last_login_at=utcnow())
            )
            await db.commit()

    async def delete(self, user_id: int, company_id: int) -> None:
        """Remove a user together with its company (undoes :meth:`create`)."""
        async with self._session_factory() as db:
            await db.execute(delete(UserModel).where(UserModel.id == user_id))
            await db.execute(delete(CompanyModel).where(CompanyModel.id == company_id))
            await db.commit()
        logger.info("Deleted user id={} and company id={}", user_id, company_id)
