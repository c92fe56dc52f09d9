"""Password hashing, refresh-token hashing and request metadata helpers."""

import hashlib

from fastapi import Request
from pwdlib import PasswordHash

from timekeeper.schemas.auth import RequestInfo

password_hash = PasswordHash.recommended()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a stored hash.

    Args:
        plain_password: The clear-text password provided by the user.
        hashed_password: The stored password hash to verify against.

    Returns:
        bool: True if the password matches, False otherwise.
    """
    return password_hash.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a plain password using the recommended algorithm (argon2)."""
    return password_hash.hash(password)


def hash_token(raw_token: str) -> str:
    """Return the hex sha-256 digest stored in place of a raw refresh token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def get_device_info(request: Request) -> str:
    """Extract device information (user-agent) from a request.

    Args:
        request: FastAPI request object.

    Returns:
        str: Truncated user-agent string (max 255 characters).
    """

    user_agent = request.headers.get("user-agent", "Unknown")
    return user_agent[:255]


def get_client_ip(request: Request, trust_forwarded: bool = False) -> str:
    """Determine the client's IP address from the request.

    `X-Forwarded-For` is client-controlled, so it is only read when
    ``trust_forwarded`` is set (the app runs behind one reverse proxy), and
    then only its last entry, which that proxy appended. Otherwise the
    direct peer address is used.

    Args:
        request: FastAPI request object.
        trust_forwarded: Use the last `X-Forwarded-For` entry if present.

    Returns:
        str: Client IP address or "Unknown" if it cannot be determined.
    """

    forwarded = request.headers.get("x-forwarded-for") if trust_forwarded else None
    if forwarded:
        return forwarded.split(",")[-1].strip()
    return request.client.host if request.client else "Unknown"


def get_request_info(request: Request, trust_forwarded: bool = False) -> RequestInfo:
    return RequestInfo(
        ip_address=get_client_ip(request, trust_forwarded),
        user_agent=get_device_info(request),
    )
