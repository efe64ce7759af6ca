"""Source and file schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from backend.models.source import SourceMode


class SourceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    mode: SourceMode
    path: str = Field(min_length=1, max_length=2000)
    branch: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class SourceUpdate(BaseModel):
    """Partial update; the mode of a source cannot change."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    path: str | None = Field(default=None, min_length=1, max_length=2000)
    branch: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class SourceResponse(BaseModel):
    id: int
    name: str
    mode: SourceMode
    path: str
    branch: str | None = None
    description: str | None = None
    synced_at: str | None = None
    created_at: str
    updated_at: str


class SourceDeleteResponse(BaseModel):
    id: int
    files_deleted: int


class FileResponse(BaseModel):
    """Stored file metadata; ``content`` is only filled for single-file reads."""

    id: int
    source_id: int
    path: str
    name: str
    size: int
    mime_type: str
    file_hash: str
    content: str | None = None
    created_at: str
    updated_at: str


class FileUploadRequest(BaseModel):
    source_id: int
    path: str = Field(min_length=1, max_length=1000)
    content: str
    mime_type: str | None = Field(default=None, max_length=200)


class DeleteCountResponse(BaseModel):
    deleted: int
