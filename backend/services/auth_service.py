"""Authentication service: JWT tokens, password hashing and API keys."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select

from backend.models.user import ApiKey, User
from backend.services.datetime_service import format_iso, now_utc, parse_iso

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.config import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
API_KEY_PREFIX = "hub_"
_API_KEY_DISPLAY_LENGTH = len(API_KEY_PREFIX) + 8
_DUMMY_PASSWORD_HASH = bcrypt.hashpw(b"hub-dummy-password", bcrypt.gensalt()).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(data: dict[str, Any], secret_key: str, expires_minutes: int = 60) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire, "type": "access"})
    return str(jwt.encode(to_encode, secret_key, algorithm=ALGORITHM))


def hash_token(token: str) -> str:
    """Hash a token value (SHA-256) for safe storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None


def is_api_key(value: str) -> bool:
    return value.startswith(API_KEY_PREFIX)


async def authenticate_user(session: AsyncSession, username: str, password: str) -> User | None:
    """Authenticate a user by username and password."""
    stmt = select(User).where(User.username == username)
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        # Run a dummy hash check to reduce username timing side channels.
        verify_password(password, _DUMMY_PASSWORD_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def create_user_access_token(user: User, settings: Settings) -> str:
    return create_access_token(
        {"sub": str(user.id), "username": user.username, "is_admin": user.is_admin},
        settings.secret_key,
        settings.access_token_expire_minutes,
    )


def create_api_key_value() -> str:
    """Generate an API key: ``hub_`` followed by 32 hex characters."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


async def create_api_key(
    session: AsyncSession,
    user_id: int,
    name: str,
    expires_days: int | None,
) -> tuple[ApiKey, str]:
    """Create and persist an API key. The plaintext value is returned only here."""
    now = now_utc()
    key_value = create_api_key_value()
    expires_at = (
        format_iso(now + timedelta(days=expires_days)) if expires_days is not None else None
    )
    api_key = ApiKey(
        user_id=user_id,
        name=name,
        key_hash=hash_token(key_value),
        key_prefix=key_value[:_API_KEY_DISPLAY_LENGTH],
        created_at=format_iso(now),
        expires_at=expires_at,
    )
    session.add(api_key)
    await session.commit()
    await session.refresh(api_key)
    return api_key, key_value


async def list_api_keys(session: AsyncSession, user_id: int) -> list[ApiKey]:
    """List active and historical API keys for a user."""
    stmt = (
        select(ApiKey)
        .where(ApiKey.user_id == user_id)
        .order_by(ApiKey.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def revoke_api_key(session: AsyncSession, user_id: int, key_id: int) -> bool:
    """Revoke an API key owned by the user."""
    stmt = select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user_id)
    result = await session.execute(stmt)
    api_key = result.scalar_one_or_none()
    if api_key is None:
        return False
    if api_key.revoked_at is None:
        api_key.revoked_at = format_iso(now_utc())
    await session.commit()
    return True


async def authenticate_api_key(
    session: AsyncSession,
    key_value: str,
) -> tuple[User, ApiKey] | None:
    """Resolve an API key to its user, stamping ``last_used_at``."""
    stmt = select(ApiKey).where(ApiKey.key_hash == hash_token(key_value))
    result = await session.execute(stmt)
    api_key = result.scalar_one_or_none()
    if api_key is None or api_key.revoked_at is not None:
        return None

    if api_key.expires_at is not None:
        expires = parse_iso(api_key.expires_at)
        if expires is None or expires <= now_utc():
            api_key.revoked_at = format_iso(now_utc())
            await session.commit()
            return None

    user = await session.get(User, api_key.user_id)
    if user is None:
        return None

    api_key.last_used_at = format_iso(now_utc())
    await session.commit()
    return user, api_key


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def ensure_admin_user(session: AsyncSession, settings: Settings) -> None:
    """Create the admin user if it doesn't exist."""
    existing = await get_user_by_username(session, settings.admin_username)
    if existing is None:
        now = format_iso(now_utc())
        admin = User(
            username=settings.admin_username,
            password_hash=hash_password(settings.admin_password),
            display_name="Admin",
            is_admin=True,
            created_at=now,
            updated_at=now,
        )
        session.add(admin)
        await session.commit()
        logger.info("Created admin user %s", settings.admin_username)
