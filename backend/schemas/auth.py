"""Authentication schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request."""

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=200)


class TokenResponse(BaseModel):
    """JWT access token response."""

    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class ApiKeyCreateRequest(BaseModel):
    """Request to create an API key."""

    name: str = Field(min_length=1, max_length=100)
    expires_days: int | None = Field(default=None, ge=1, le=3650)


class ApiKeyResponse(BaseModel):
    """API key metadata."""

    id: int
    name: str
    key_prefix: str
    created_at: str
    expires_at: str | None = None
    last_used_at: str | None = None
    revoked_at: str | None = None


class ApiKeyCreateResponse(ApiKeyResponse):
    """Created key metadata including the one-time plaintext key."""

    key: str


class UserResponse(BaseModel):
    """User info response."""

    id: int
    username: str
    is_admin: bool = False
    via_api_key: bool = False
