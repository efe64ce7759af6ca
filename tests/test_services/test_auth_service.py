"""Tests for password hashing, access tokens and API keys."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from jose import jwt

from backend.models.user import ApiKey
from backend.services.auth_service import (
    ALGORITHM,
    API_KEY_PREFIX,
    authenticate_api_key,
    authenticate_user,
    create_access_token,
    create_api_key,
    decode_access_token,
    ensure_admin_user,
    get_user_by_username,
    hash_password,
    is_api_key,
    list_api_keys,
    revoke_api_key,
    verify_password,
)
from backend.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.config import Settings


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("s3cret-pass")
        assert hashed.startswith("$2")
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("other", hashed)


class TestAccessTokens:
    def test_round_trip(self, test_settings: Settings) -> None:
        token = create_access_token({"sub": "7"}, test_settings.secret_key)

        payload = decode_access_token(token, test_settings.secret_key)

        assert payload is not None
        assert payload["sub"] == "7"
        assert payload["type"] == "access"

    def test_expired_token_is_rejected(self, test_settings: Settings) -> None:
        token = create_access_token({"sub": "7"}, test_settings.secret_key, expires_minutes=-1)
        assert decode_access_token(token, test_settings.secret_key) is None

    def test_wrong_secret_or_type_is_rejected(self, test_settings: Settings) -> None:
        token = create_access_token({"sub": "7"}, test_settings.secret_key)
        assert decode_access_token(token, "another-secret-key-of-enough-length!!") is None

        refresh = jwt.encode({"sub": "7", "type": "refresh"}, test_settings.secret_key, ALGORITHM)
        assert decode_access_token(refresh, test_settings.secret_key) is None

    def test_garbage_is_rejected(self, test_settings: Settings) -> None:
        assert decode_access_token("not-a-jwt", test_settings.secret_key) is None
        assert decode_access_token("", test_settings.secret_key) is None


class TestUsers:
    async def test_authenticate_user(self, db_session: AsyncSession, user_id: int) -> None:
        user = await authenticate_user(db_session, "alice", "password-for-tests")
        assert user is not None
        assert user.id == user_id
        assert await authenticate_user(db_session, "alice", "wrong") is None
        assert await authenticate_user(db_session, "nobody", "password-for-tests") is None

    async def test_ensure_admin_user_is_idempotent(
        self, db_session: AsyncSession, test_settings: Settings
    ) -> None:
        await ensure_admin_user(db_session, test_settings)
        await ensure_admin_user(db_session, test_settings)

        admin = await get_user_by_username(db_session, "admin")
        assert admin is not None
        assert admin.is_admin


class TestApiKeys:
    async def test_create_and_authenticate(self, db_session: AsyncSession, user_id: int) -> None:
        api_key, value = await create_api_key(db_session, user_id, "laptop", None)

        assert is_api_key(value)
        assert value.startswith(API_KEY_PREFIX)
        assert api_key.key_hash != value
        assert value.startswith(api_key.key_prefix)

        resolved = await authenticate_api_key(db_session, value)
        assert resolved is not None
        user, key = resolved
        assert user.id == user_id
        assert key.last_used_at is not None

    async def test_unknown_key(self, db_session: AsyncSession, user_id: int) -> None:
        assert await authenticate_api_key(db_session, f"{API_KEY_PREFIX}deadbeef") is None

    async def test_revoked_key_is_rejected(self, db_session: AsyncSession, user_id: int) -> None:
        api_key, value = await create_api_key(db_session, user_id, "old", None)

        assert await revoke_api_key(db_session, user_id, api_key.id)
        assert await authenticate_api_key(db_session, value) is None
        assert not await revoke_api_key(db_session, user_id, 9999)

    async def test_other_users_cannot_revoke(
        self,
        db_session: AsyncSession,
        user_id: int,
        user_factory: Callable[[str], Awaitable[int]],
    ) -> None:
        api_key, _ = await create_api_key(db_session, user_id, "mine", None)
        bob = await user_factory("bob")

        assert not await revoke_api_key(db_session, bob, api_key.id)
        assert await list_api_keys(db_session, bob) == []

    async def test_expired_key_is_revoked_on_use(
        self, db_session: AsyncSession, user_id: int
    ) -> None:
        api_key, value = await create_api_key(db_session, user_id, "short", 1)
        api_key.expires_at = format_iso(now_utc() - timedelta(minutes=1))
        await db_session.commit()

        assert await authenticate_api_key(db_session, value) is None
        stored = await db_session.get(ApiKey, api_key.id)
        assert stored is not None
        assert stored.revoked_at is not None
