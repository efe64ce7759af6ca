"""Local-file push sync: files collected by the CLI replace stored file rows.

Explicit ``deleted_paths`` are always honored. Stored files that are simply
absent from the push are only removed when ``delete_missing`` is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from backend.models.source import FileRecord, Source, SourceMode
from backend.services.diff_service import FILE_PATH_MATCH, compute_diff
from backend.services.file_service import build_file_row
from backend.services.hash_service import hash_content
from backend.services.source_service import get_source, mark_synced, require_mode
from backend.services.store import StoreError
from backend.services.sync_log_service import (
    SyncFlow,
    SyncPhase,
    SyncRun,
    SyncStatus,
    finalize_sync_log,
    list_recent_sync_logs,
    start_sync_log,
)

if TYPE_CHECKING:
    from backend.services.sync_context import SyncContext

logger = logging.getLogger(__name__)


@dataclass
class PushedFile:
    """One file as sent by the client."""

    path: str
    content: str
    name: str | None = None
    size: int | None = None
    mime_type: str | None = None
    file_hash: str | None = None


@dataclass
class LocalSyncRequest:
    source_id: int
    files: list[PushedFile] = field(default_factory=list)
    deleted_paths: list[str] = field(default_factory=list)
    dry_run: bool = False
    delete_missing: bool = False


@dataclass
class LocalSyncResult:
    source_id: int
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    added_paths: list[str] = field(default_factory=list)
    updated_paths: list[str] = field(default_factory=list)
    deleted_paths: list[str] = field(default_factory=list)
    synced_at: str | None = None
    dry_run: bool = False
    status: SyncStatus = SyncStatus.SYNCING


@dataclass
class SyncStatusReport:
    source: dict[str, Any]
    file_count: int
    recent_logs: list[dict[str, Any]]


def _collect(request: LocalSyncRequest, run: SyncRun) -> list[dict[str, Any]]:
    """Normalize pushed files into file rows with server-side fingerprints."""
    rows: list[dict[str, Any]] = []
    seen: set[str] = set()
    for pushed in request.files:
        if pushed.path in seen:
            run.warn(f"{pushed.path}: duplicate path in request, later copy ignored")
            continue
        seen.add(pushed.path)
        if pushed.file_hash and pushed.file_hash != hash_content(pushed.content):
            run.warn(f"{pushed.path}: client fingerprint does not match content, recomputed")
        row = build_file_row(
            pushed.path, pushed.content, name=pushed.name, mime_type=pushed.mime_type
        )
        row["source_id"] = request.source_id
        rows.append(row)
    return rows


def _result(run: SyncRun, request: LocalSyncRequest) -> LocalSyncResult:
    return LocalSyncResult(
        source_id=request.source_id,
        files_added=run.added,
        files_updated=run.updated,
        files_deleted=run.deleted,
        files_unchanged=run.unchanged,
        errors=list(run.errors),
        warnings=list(run.warnings),
        dry_run=request.dry_run,
        status=run.status,
    )


async def push_local_files(ctx: SyncContext, request: LocalSyncRequest) -> LocalSyncResult:
    """Apply one push from the CLI to the stored file rows of a local_sync source.

    The source is looked up with the caller's identity; once resolved, all
    row operations are scoped to the source owner.
    """
    source = await get_source(ctx.store, request.source_id)
    require_mode(source, SourceMode.LOCAL_SYNC)
    store = ctx.store.scoped(source["user_id"])
    cap = ctx.settings.sync_error_message_cap

    log_id = None
    if not request.dry_run:
        log_id = await start_sync_log(
            store, SyncFlow.LOCAL_SYNC, source_id=request.source_id, api_key_id=ctx.api_key_id
        )
    run = SyncRun(flow=SyncFlow.LOCAL_SYNC, source_id=request.source_id)

    run.advance(SyncPhase.FETCHING_REMOTE)
    remote_result = await store.select(FileRecord, {"source_id": request.source_id})
    if isinstance(remote_result, StoreError):
        run.fail(f"Could not load stored files: {remote_result}")
        await finalize_sync_log(store, log_id, run, cap)
        remote_result.unwrap()
    remote: list[dict[str, Any]] = remote_result.value

    run.advance(SyncPhase.COLLECTING_LOCAL)
    local = _collect(request, run)
    pushed_paths = {row["path"] for row in local}

    run.advance(SyncPhase.DIFFING)
    diff = compute_diff(local, remote, FILE_PATH_MATCH)
    remote_by_path = {row["path"]: row for row in remote}
    deletions: dict[int, str] = {}
    for path in request.deleted_paths:
        if path in pushed_paths:
            run.warn(f"{path}: listed as deleted but also pushed, keeping pushed file")
            continue
        existing = remote_by_path.get(path)
        if existing is not None:
            deletions[existing["id"]] = path
    if request.delete_missing:
        for orphan in diff.to_delete:
            deletions.setdefault(orphan.remote_id, orphan.key)

    if request.dry_run:
        run.added = len(diff.to_create)
        run.updated = len(diff.to_update)
        run.deleted = len(deletions)
        run.unchanged = diff.unchanged
        run.finalize()
        result = _result(run, request)
        result.added_paths = [row["path"] for row in diff.to_create]
        result.updated_paths = [update.key for update in diff.to_update]
        result.deleted_paths = list(deletions.values())
        return result

    run.unchanged = diff.unchanged
    added_paths: list[str] = []
    updated_paths: list[str] = []
    deleted_paths: list[str] = []

    run.advance(SyncPhase.APPLYING)
    async with ctx.locks.lock_for(request.source_id):
        for row in diff.to_create:
            created = await store.insert(FileRecord, row)
            if isinstance(created, StoreError):
                run.record_error(row["path"], f"insert failed ({created.kind}): {created}")
                continue
            run.added += 1
            added_paths.append(row["path"])
        for update in diff.to_update:
            updated = await store.update(FileRecord, {"id": update.remote_id}, update.changes)
            if isinstance(updated, StoreError):
                run.record_error(update.key, f"update failed ({updated.kind}): {updated}")
                continue
            run.updated += 1
            updated_paths.append(update.key)
        for file_id, path in deletions.items():
            removed = await store.delete(FileRecord, {"id": file_id})
            if isinstance(removed, StoreError):
                run.record_error(path, f"delete failed ({removed.kind}): {removed}")
                continue
            if removed.value:
                run.deleted += 1
                deleted_paths.append(path)

    synced_at = None
    if run.final_status() in (SyncStatus.SUCCESS, SyncStatus.PARTIAL):
        synced_at = await mark_synced(store, request.source_id)
        if synced_at is None:
            run.record_error(f"source {request.source_id}", "could not record last-synced time")
    status = run.finalize()
    result = _result(run, request)
    result.synced_at = synced_at
    await finalize_sync_log(store, log_id, run, cap)
    result.added_paths = added_paths
    result.updated_paths = updated_paths
    result.deleted_paths = deleted_paths
    logger.info(
        "Local sync of source %d finished: %s (+%d ~%d -%d =%d, %d error(s))",
        request.source_id,
        status,
        run.added,
        run.updated,
        run.deleted,
        run.unchanged,
        len(run.errors),
    )
    return result


async def get_sync_status(ctx: SyncContext, source_id: int) -> SyncStatusReport:
    """Source row, stored file count and the most recent sync logs."""
    source = await get_source(ctx.store, source_id)
    store = ctx.store.scoped(source["user_id"])
    file_count = (await store.count(FileRecord, {"source_id": source_id})).unwrap()
    logs = await list_recent_sync_logs(store, source_id, ctx.settings.sync_recent_log_limit)
    return SyncStatusReport(source=source, file_count=file_count, recent_logs=logs)


async def clear_source_files(ctx: SyncContext, source_id: int) -> int:
    """Remove every stored file of a source and reset its last-synced time."""
    source = await get_source(ctx.store, source_id)
    store = ctx.store.scoped(source["user_id"])
    async with ctx.locks.lock_for(source_id):
        removed = (await store.delete(FileRecord, {"source_id": source_id})).unwrap()
        (await store.update(Source, {"id": source_id}, {"synced_at": None})).unwrap()
    logger.info("Cleared %d file(s) from source %d", removed, source_id)
    return removed
