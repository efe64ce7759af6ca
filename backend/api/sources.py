"""Source and stored file endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.api.deps import get_settings, get_store
from backend.config import Settings
from backend.models.source import SourceMode
from backend.schemas.source import (
    DeleteCountResponse,
    FileResponse,
    FileUploadRequest,
    SourceCreate,
    SourceDeleteResponse,
    SourceResponse,
    SourceUpdate,
)
from backend.services import file_service, source_service
from backend.services.store import RowStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sources"])


@router.get("/sources", response_model=list[SourceResponse])
async def list_sources(
    store: Annotated[RowStore, Depends(get_store)],
    mode: SourceMode | None = None,
) -> list[SourceResponse]:
    rows = await source_service.list_sources(store, mode)
    return [SourceResponse.model_validate(row) for row in rows]


@router.post("/sources", response_model=SourceResponse, status_code=201)
async def create_source(
    body: SourceCreate,
    store: Annotated[RowStore, Depends(get_store)],
) -> SourceResponse:
    row = await source_service.create_source(
        store,
        name=body.name,
        mode=body.mode,
        path=body.path,
        branch=body.branch,
        description=body.description,
    )
    return SourceResponse.model_validate(row)


@router.get("/sources/{source_id}", response_model=SourceResponse)
async def get_source(
    source_id: int,
    store: Annotated[RowStore, Depends(get_store)],
) -> SourceResponse:
    return SourceResponse.model_validate(await source_service.get_source(store, source_id))


@router.patch("/sources/{source_id}", response_model=SourceResponse)
async def update_source(
    source_id: int,
    body: SourceUpdate,
    store: Annotated[RowStore, Depends(get_store)],
) -> SourceResponse:
    patch = body.model_dump(exclude_unset=True)
    row = await source_service.update_source(store, source_id, patch)
    return SourceResponse.model_validate(row)


@router.delete("/sources/{source_id}", response_model=SourceDeleteResponse)
async def delete_source(
    source_id: int,
    store: Annotated[RowStore, Depends(get_store)],
) -> SourceDeleteResponse:
    """Delete a source together with its stored files and sync history."""
    removed = await source_service.delete_source(store, source_id)
    return SourceDeleteResponse(id=source_id, files_deleted=removed)


@router.get("/files", response_model=list[FileResponse])
async def list_files(
    store: Annotated[RowStore, Depends(get_store)],
    source_id: int | None = None,
) -> list[FileResponse]:
    rows = await file_service.list_files(store, source_id)
    return [FileResponse.model_validate(row) for row in rows]


@router.get("/files/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: int,
    store: Annotated[RowStore, Depends(get_store)],
) -> FileResponse:
    row = await file_service.get_file(store, file_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse.model_validate(row)


@router.post("/files/upload", response_model=FileResponse, status_code=201)
async def upload_file(
    body: FileUploadRequest,
    store: Annotated[RowStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> FileResponse:
    """Store a single text file in a source, replacing any file at the same path."""
    if len(body.content.encode("utf-8")) > settings.sync_max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large (max {settings.sync_max_file_size} bytes)",
        )
    row = await file_service.upload_file(
        store, body.source_id, body.path, body.content, body.mime_type
    )
    return FileResponse.model_validate(row)


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: int,
    store: Annotated[RowStore, Depends(get_store)],
) -> None:
    if await file_service.delete_files(store, [file_id]) == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")


@router.delete("/files", response_model=DeleteCountResponse)
async def delete_files(
    store: Annotated[RowStore, Depends(get_store)],
    ids: Annotated[list[int] | None, Query()] = None,
    source_id: int | None = None,
) -> DeleteCountResponse:
    """Bulk delete by id list, or every file of one source."""
    if ids:
        return DeleteCountResponse(deleted=await file_service.delete_files(store, ids))
    if source_id is not None:
        await source_service.get_source(store, source_id)
        return DeleteCountResponse(deleted=await file_service.delete_source_files(store, source_id))
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Either ids or source_id is required",
    )
