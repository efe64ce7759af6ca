"""Idea endpoints, including ideas.md push/pull."""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.api.deps import get_store, get_sync_context
from backend.models.idea import IdeaStatus
from backend.schemas.idea import (
    IdeaBulkUpdate,
    IdeaCreate,
    IdeaResponse,
    IdeasPullRequest,
    IdeasPullResponse,
    IdeasPushRequest,
    IdeasPushResponse,
)
from backend.schemas.source import DeleteCountResponse
from backend.services import idea_service
from backend.services.ideas_sync_service import pull_ideas, push_ideas
from backend.services.store import RowStore
from backend.services.sync_context import SyncContext

router = APIRouter(prefix="/api/ideas", tags=["ideas"])


@router.get("", response_model=list[IdeaResponse])
async def list_ideas(
    store: Annotated[RowStore, Depends(get_store)],
    status_filter: Annotated[IdeaStatus | None, Query(alias="status")] = None,
    done: bool | None = None,
    tag: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[IdeaResponse]:
    rows = await idea_service.list_ideas(
        store, status=status_filter, done=done, tag=tag, limit=limit, offset=offset
    )
    return [IdeaResponse.model_validate(row) for row in rows]


@router.post("", response_model=IdeaResponse, status_code=201)
async def create_idea(
    body: IdeaCreate,
    store: Annotated[RowStore, Depends(get_store)],
) -> IdeaResponse:
    row = await idea_service.create_idea(
        store,
        body.content,
        status=body.status,
        done=body.done,
        tags=body.tags,
        refs=body.refs,
        source_ref=body.source_ref,
    )
    return IdeaResponse.model_validate(row)


@router.patch("", response_model=list[IdeaResponse])
async def update_ideas(
    body: IdeaBulkUpdate,
    store: Annotated[RowStore, Depends(get_store)],
) -> list[IdeaResponse]:
    patch = body.model_dump(exclude_unset=True, exclude={"ids"})
    if not patch:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")
    rows = await idea_service.update_ideas(store, body.ids, patch)
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ideas not found")
    return [IdeaResponse.model_validate(row) for row in rows]


@router.delete("", response_model=DeleteCountResponse)
async def delete_ideas(
    store: Annotated[RowStore, Depends(get_store)],
    ids: Annotated[list[int], Query(min_length=1)],
) -> DeleteCountResponse:
    return DeleteCountResponse(deleted=await idea_service.delete_ideas(store, ids))


@router.post("/sync/push", response_model=IdeasPushResponse)
async def push_ideas_file(
    body: IdeasPushRequest,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> IdeasPushResponse:
    """Reconcile stored ideas with the contents of a local ideas.md."""
    result = await push_ideas(
        ctx, body.content, delete_remote=body.delete_remote, dry_run=body.dry_run
    )
    return IdeasPushResponse(**asdict(result))


@router.post("/sync/pull", response_model=IdeasPullResponse)
async def pull_ideas_file(
    body: IdeasPullRequest,
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> IdeasPullResponse:
    """Render stored ideas as ideas.md, optionally merged with local-only ideas."""
    result = await pull_ideas(ctx, body.content, merge=body.merge)
    return IdeasPullResponse(**asdict(result))
