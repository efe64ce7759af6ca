"""Sync API endpoints: local-file push, GitHub sync, status and clear."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from backend.api.deps import get_sync_context
from backend.services.github_sync_service import sync_github_source
from backend.services.local_sync_service import (
    LocalSyncRequest,
    PushedFile,
    clear_source_files,
    get_sync_status,
    push_local_files,
)
from backend.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

_MAX_FILES_PER_PUSH = 5000


def _check_relative_path(value: str) -> str:
    """Reject paths that could escape the source root."""
    if not value or "\x00" in value:
        raise ValueError("Invalid file path")
    normalized = value.replace("\\", "/")
    if normalized.startswith("/") or posixpath.isabs(normalized):
        raise ValueError(f"File path must be relative: {value}")
    parts = normalized.split("/")
    if any(part in {"", ".", ".."} for part in parts):
        raise ValueError(f"Invalid file path: {value}")
    return normalized


# ── Schemas ──────────────────────────────────────────


class SyncFileItem(BaseModel):
    """Single file pushed by the CLI."""

    path: str = Field(min_length=1, max_length=1000)
    name: str | None = Field(default=None, max_length=255)
    content: str
    size: int | None = Field(default=None, ge=0)
    mime_type: str | None = Field(default=None, max_length=200)
    file_hash: str | None = Field(default=None, max_length=128)

    @field_validator("path")
    @classmethod
    def _validate_path(cls, value: str) -> str:
        return _check_relative_path(value)


class SyncPushRequest(BaseModel):
    source_id: int
    files: list[SyncFileItem] = Field(default_factory=list, max_length=_MAX_FILES_PER_PUSH)
    deleted_paths: list[str] = Field(default_factory=list)
    dry_run: bool = False
    delete_missing: bool = False

    @field_validator("deleted_paths")
    @classmethod
    def _validate_deleted_paths(cls, values: list[str]) -> list[str]:
        return [_check_relative_path(value) for value in values]


class SyncPushResponse(BaseModel):
    source_id: int
    files_added: int
    files_updated: int
    files_deleted: int
    files_unchanged: int
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    added_paths: list[str] = Field(default_factory=list)
    updated_paths: list[str] = Field(default_factory=list)
    deleted_paths: list[str] = Field(default_factory=list)
    synced_at: str | None = None
    dry_run: bool = False
    status: str


class GitHubSyncRequest(BaseModel):
    source_id: int


class GitHubSyncResponse(BaseModel):
    source_id: int
    files_added: int
    files_updated: int
    files_unchanged: int
    files_skipped: int
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    synced_at: str | None = None
    status: str


class SyncLogEntry(BaseModel):
    id: int
    flow: str
    status: str
    files_added: int
    files_updated: int
    files_deleted: int
    error_message: str | None = None
    started_at: str
    completed_at: str | None = None


class SyncStatusResponse(BaseModel):
    source: dict[str, Any]
    file_count: int
    recent_logs: list[SyncLogEntry]


class SyncClearResponse(BaseModel):
    source_id: int
    files_deleted: int


# ── Endpoints ────────────────────────────────────────


@router.get("", response_model=SyncStatusResponse)
async def sync_status(
    source_id: int,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> SyncStatusResponse:
    """Source, stored file count and recent sync history."""
    report = await get_sync_status(ctx, source_id)
    return SyncStatusResponse(
        source={key: value for key, value in report.source.items() if key != "user_id"},
        file_count=report.file_count,
        recent_logs=[SyncLogEntry.model_validate(log) for log in report.recent_logs],
    )


@router.post("", response_model=SyncPushResponse)
async def sync_push(
    body: SyncPushRequest,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> SyncPushResponse:
    """Push locally collected files into a local_sync source."""
    request = LocalSyncRequest(
        source_id=body.source_id,
        files=[
            PushedFile(
                path=item.path,
                content=item.content,
                name=item.name,
                size=item.size,
                mime_type=item.mime_type,
                file_hash=item.file_hash,
            )
            for item in body.files
        ],
        deleted_paths=body.deleted_paths,
        dry_run=body.dry_run,
        delete_missing=body.delete_missing,
    )
    result = await push_local_files(ctx, request)
    return SyncPushResponse(**asdict(result))


@router.delete("", response_model=SyncClearResponse)
async def sync_clear(
    source_id: int,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> SyncClearResponse:
    """Remove every stored file of a source and reset its sync time."""
    removed = await clear_source_files(ctx, source_id)
    return SyncClearResponse(source_id=source_id, files_deleted=removed)


@router.post("/github", response_model=GitHubSyncResponse)
async def sync_github(
    body: GitHubSyncRequest,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> GitHubSyncResponse:
    """Mirror the text files of a GitHub source's repository."""
    result = await sync_github_source(ctx, body.source_id)
    return GitHubSyncResponse(**asdict(result))
