"""Shared API dependencies: DB session, auth, row store, sync context."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.models.user import User
from backend.services.auth_service import (
    authenticate_api_key,
    decode_access_token,
    get_user_by_username,
    is_api_key,
)
from backend.services.store import RowStore
from backend.services.sync_context import SyncContext

security = HTTPBearer(auto_error=False)

API_KEY_HEADER = "x-hub-api-key"


@dataclass(frozen=True)
class Identity:
    """The authenticated caller.

    Plain values only, so the identity stays usable after the session rolls
    back a failed write.
    """

    user_id: int
    username: str
    is_admin: bool = False
    api_key_id: int | None = None

    @classmethod
    def from_user(cls, user: User, api_key_id: int | None = None) -> Identity:
        return cls(
            user_id=user.id,
            username=user.username,
            is_admin=user.is_admin,
            api_key_id=api_key_id,
        )


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_identity(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session: AsyncSession = Depends(get_session),
) -> Identity | None:
    """Resolve the caller from an API key header, a bearer API key or a bearer JWT."""
    header_key = request.headers.get(API_KEY_HEADER)
    if header_key:
        resolved = await authenticate_api_key(session, header_key)
        if resolved is None:
            return None
        user, api_key = resolved
        return Identity.from_user(user, api_key.id)

    if credentials is None:
        return None
    token_value = credentials.credentials
    if is_api_key(token_value):
        resolved = await authenticate_api_key(session, token_value)
        if resolved is None:
            return None
        user, api_key = resolved
        return Identity.from_user(user, api_key.id)

    settings: Settings = request.app.state.settings
    payload = decode_access_token(token_value, settings.secret_key)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if not isinstance(user_id, (str, int)) or (
        isinstance(user_id, str) and not user_id.isdigit()
    ):
        return None
    user = await session.get(User, int(user_id))
    return Identity.from_user(user) if user is not None else None


async def require_auth(
    identity: Annotated[Identity | None, Depends(get_current_identity)],
) -> Identity:
    """Require authentication. Raises 401 if not authenticated."""
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_sync_auth(
    identity: Annotated[Identity | None, Depends(get_current_identity)],
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Identity:
    """Like ``require_auth``, but falls back to the admin user when anonymous sync is enabled."""
    if identity is not None:
        return identity
    if settings.allow_anonymous_sync:
        admin = await get_user_by_username(session, settings.admin_username)
        if admin is not None:
            return Identity.from_user(admin)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_store(
    session: Annotated[AsyncSession, Depends(get_session)],
    identity: Annotated[Identity, Depends(require_auth)],
) -> RowStore:
    """Row store scoped to the authenticated caller."""
    return RowStore(session, identity.user_id)


def get_sync_context(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    identity: Annotated[Identity, Depends(require_sync_auth)],
) -> SyncContext:
    """Build the per-request sync context from process-wide app state."""
    return SyncContext(
        store=RowStore(session, identity.user_id),
        settings=request.app.state.settings,
        locks=request.app.state.source_locks,
        github=getattr(request.app.state, "github_client", None),
        api_key_id=identity.api_key_id,
    )
