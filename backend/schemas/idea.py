"""Idea schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from backend.models.idea import IdeaStatus


class IdeaCreate(BaseModel):
    """New idea. Tags and refs are taken from the content when omitted."""

    content: str = Field(min_length=1, max_length=10000)
    status: IdeaStatus = IdeaStatus.INBOX
    done: bool = False
    tags: list[str] | None = None
    refs: list[str] | None = None
    source_ref: str | None = Field(default=None, max_length=200)


class IdeaBulkUpdate(BaseModel):
    """Apply the same changes to several ideas."""

    ids: list[int] = Field(min_length=1)
    content: str | None = Field(default=None, min_length=1, max_length=10000)
    status: IdeaStatus | None = None
    done: bool | None = None
    tags: list[str] | None = None
    refs: list[str] | None = None


class IdeaResponse(BaseModel):
    id: int
    content: str
    status: IdeaStatus
    done: bool
    tags: list[str] = Field(default_factory=list)
    refs: list[str] = Field(default_factory=list)
    source_ref: str | None = None
    created_at: str
    updated_at: str


class IdeasPushRequest(BaseModel):
    """Contents of a local ideas.md file to reconcile against stored ideas."""

    content: str = ""
    delete_remote: bool = False
    dry_run: bool = False


class IdeasPushResponse(BaseModel):
    created: int
    updated: int
    deleted: int
    unchanged: int
    kept_remote: int
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    planned_creates: list[str] = Field(default_factory=list)
    planned_updates: list[str] = Field(default_factory=list)
    planned_deletes: list[str] = Field(default_factory=list)
    dry_run: bool = False
    status: str


class IdeasPullRequest(BaseModel):
    """Optional local file contents, used when merging."""

    content: str | None = None
    merge: bool = False


class IdeasPullResponse(BaseModel):
    content: str
    remote_count: int
    local_only_count: int
    inbox: int
    active: int
    archive: int
    archive_truncated: bool
