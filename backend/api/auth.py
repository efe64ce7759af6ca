"""Authentication API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import Identity, get_session, get_settings, require_auth
from backend.config import Settings
from backend.models.user import ApiKey
from backend.schemas.auth import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyResponse,
    LoginRequest,
    TokenResponse,
    UserResponse,
)
from backend.services.auth_service import (
    authenticate_user,
    create_api_key,
    create_user_access_token,
    list_api_keys,
    revoke_api_key,
)
from backend.services.rate_limit_service import LoginThrottle

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_key(request: Request, username: str) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip = forwarded_for.split(",", maxsplit=1)[0].strip()
    elif request.client and request.client.host:
        ip = request.client.host
    else:
        ip = "unknown"
    return f"login:{ip}:{username.lower()}"


def _raise_if_throttled(throttle: LoginThrottle, key: str) -> None:
    retry_after = throttle.retry_after(key)
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed login attempts",
            headers={"Retry-After": str(retry_after)},
        )


def _api_key_response(api_key: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        created_at=api_key.created_at,
        expires_at=api_key.expires_at,
        last_used_at=api_key.last_used_at,
        revoked_at=api_key.revoked_at,
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Exchange username and password for a bearer token."""
    throttle: LoginThrottle = request.app.state.login_throttle
    key = _client_key(request, body.username)
    _raise_if_throttled(throttle, key)

    user = await authenticate_user(session, body.username, body.password)
    if user is None:
        throttle.record_failure(key)
        _raise_if_throttled(throttle, key)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    throttle.reset(key)
    return TokenResponse(
        access_token=create_user_access_token(user, settings),
        expires_in=settings.access_token_expire_minutes * 60,
    )


@router.get("/me", response_model=UserResponse)
async def me(
    identity: Annotated[Identity, Depends(require_auth)],
) -> UserResponse:
    """Get current user info."""
    return UserResponse(
        id=identity.user_id,
        username=identity.username,
        is_admin=identity.is_admin,
        via_api_key=identity.api_key_id is not None,
    )


@router.post("/api-keys", response_model=ApiKeyCreateResponse, status_code=201)
async def create_key(
    body: ApiKeyCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    identity: Annotated[Identity, Depends(require_auth)],
) -> ApiKeyCreateResponse:
    """Create an API key for CLI usage."""
    api_key, key_value = await create_api_key(
        session=session,
        user_id=identity.user_id,
        name=body.name,
        expires_days=body.expires_days,
    )
    return ApiKeyCreateResponse(**_api_key_response(api_key).model_dump(), key=key_value)


@router.get("/api-keys", response_model=list[ApiKeyResponse])
async def list_keys(
    session: Annotated[AsyncSession, Depends(get_session)],
    identity: Annotated[Identity, Depends(require_auth)],
) -> list[ApiKeyResponse]:
    """List API keys for the current user."""
    api_keys = await list_api_keys(session, identity.user_id)
    return [_api_key_response(api_key) for api_key in api_keys]


@router.delete("/api-keys/{key_id}", status_code=204)
async def revoke_key(
    key_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    identity: Annotated[Identity, Depends(require_auth)],
) -> Response:
    """Revoke an API key."""
    revoked = await revoke_api_key(session, identity.user_id, key_id)
    if not revoked:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found",
        )
    return Response(status_code=204)
