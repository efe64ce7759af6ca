"""Tests for the local-file push sync orchestrator."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import pytest

from backend.exceptions import SourceModeError, SourceNotFoundError
from backend.models.source import FileRecord, Source
from backend.models.sync import SyncLog
from backend.services.hash_service import hash_content
from backend.services.local_sync_service import (
    LocalSyncRequest,
    PushedFile,
    clear_source_files,
    get_sync_status,
    push_local_files,
)
from backend.services.store import RowStore, StoreError, StoreErrorKind, StoreResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.models.base import Base
    from backend.services.sync_context import SyncContext


class FailingInsertStore(RowStore):
    """Row store whose file inserts fail for selected paths."""

    def __init__(
        self, session: AsyncSession, owner_id: int | None, fail_paths: frozenset[str]
    ) -> None:
        super().__init__(session, owner_id)
        self.fail_paths = fail_paths

    def scoped(self, owner_id: int | None) -> RowStore:
        return FailingInsertStore(self.session, owner_id, self.fail_paths)

    async def insert(self, model: type[Base], row: Mapping[str, Any]) -> StoreResult[Any]:
        if model is FileRecord and row.get("path") in self.fail_paths:
            return StoreError(StoreErrorKind.UNKNOWN, "simulated write failure")
        return await super().insert(model, row)


class SourceUpdateFailingStore(RowStore):
    """Row store whose writes to the sources table fail."""

    def scoped(self, owner_id: int | None) -> RowStore:
        return SourceUpdateFailingStore(self.session, owner_id)

    async def update(
        self, model: type[Base], filters: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> StoreResult[Any]:
        if model is Source:
            return StoreError(StoreErrorKind.NETWORK, "simulated network failure")
        return await super().update(model, filters, patch)


async def _local_source(store: RowStore, name: str = "notes") -> int:
    row = (
        await store.insert(Source, {"name": name, "mode": "local_sync", "path": "/home/me/notes"})
    ).unwrap()
    source_id: int = row["id"]
    return source_id


def _push(source_id: int, files: dict[str, str], **kwargs: Any) -> LocalSyncRequest:
    return LocalSyncRequest(
        source_id=source_id,
        files=[PushedFile(path=path, content=content) for path, content in files.items()],
        **kwargs,
    )


async def _snapshot(store: RowStore, source_id: int) -> list[tuple[str, str, str]]:
    rows = (await store.select(FileRecord, {"source_id": source_id}, order_by=("path",))).unwrap()
    return [(row["path"], row["file_hash"], row["updated_at"]) for row in rows]


class TestPushLocalFiles:
    async def test_first_push_creates_everything(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)

        result = await push_local_files(
            sync_ctx, _push(source_id, {"a.txt": "alpha", "docs/b.md": "# B"})
        )

        assert result.status == "success"
        assert result.files_added == 2
        assert sorted(result.added_paths) == ["a.txt", "docs/b.md"]
        assert result.synced_at is not None
        rows = (await store.select(FileRecord, {"source_id": source_id})).unwrap()
        by_path = {row["path"]: row for row in rows}
        assert by_path["docs/b.md"]["name"] == "b.md"
        assert by_path["docs/b.md"]["mime_type"] == "text/markdown"
        assert by_path["a.txt"]["file_hash"] == hash_content("alpha")
        assert by_path["a.txt"]["size"] == 5

    async def test_same_push_twice_is_unchanged(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        request = _push(source_id, {"a.txt": "alpha", "b.txt": "beta"})
        await push_local_files(sync_ctx, request)

        second = await push_local_files(sync_ctx, request)

        assert second.status == "success"
        assert second.files_unchanged == 2
        assert second.files_added == second.files_updated == second.files_deleted == 0

    async def test_changed_content_updates(self, sync_ctx: SyncContext, store: RowStore) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "alpha"}))

        result = await push_local_files(sync_ctx, _push(source_id, {"a.txt": "alpha v2"}))

        assert result.files_updated == 1
        assert result.updated_paths == ["a.txt"]
        row = (await store.select(FileRecord, {"path": "a.txt"})).unwrap()[0]
        assert row["content"] == "alpha v2"
        assert row["size"] == 8

    async def test_deleted_paths_are_removed(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a", "b.txt": "b"}))

        result = await push_local_files(
            sync_ctx, _push(source_id, {"a.txt": "a"}, deleted_paths=["b.txt", "never-was.txt"])
        )

        assert result.files_deleted == 1
        assert result.deleted_paths == ["b.txt"]
        assert [p for p, _, _ in await _snapshot(store, source_id)] == ["a.txt"]

    async def test_unlisted_remote_files_are_kept_without_delete_missing(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a", "b.txt": "b"}))

        kept = await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a"}))
        assert kept.files_deleted == 0
        assert len(await _snapshot(store, source_id)) == 2

        pruned = await push_local_files(
            sync_ctx, _push(source_id, {"a.txt": "a"}, delete_missing=True)
        )
        assert pruned.deleted_paths == ["b.txt"]

    async def test_path_both_pushed_and_deleted_is_kept(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a"}))

        result = await push_local_files(
            sync_ctx, _push(source_id, {"a.txt": "a"}, deleted_paths=["a.txt"])
        )

        assert result.files_deleted == 0
        assert any("a.txt" in warning for warning in result.warnings)

    async def test_partial_failure_keeps_other_writes(
        self, sync_ctx: SyncContext, store: RowStore, db_session: AsyncSession, user_id: int
    ) -> None:
        source_id = await _local_source(store)
        failing = FailingInsertStore(db_session, user_id, frozenset({"b.txt"}))
        ctx = replace(sync_ctx, store=failing)

        result = await push_local_files(
            ctx, _push(source_id, {"a.txt": "a", "b.txt": "b", "c.txt": "c"})
        )

        assert result.status == "partial"
        assert result.files_added == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("b.txt:")
        assert [p for p, _, _ in await _snapshot(store, source_id)] == ["a.txt", "c.txt"]
        log = (await store.select(SyncLog, {"source_id": source_id})).unwrap()[0]
        assert log["status"] == "partial"
        assert log["files_added"] == 2
        assert "b.txt" in log["error_message"]

    async def test_every_item_failing_is_an_error(
        self, sync_ctx: SyncContext, store: RowStore, db_session: AsyncSession, user_id: int
    ) -> None:
        source_id = await _local_source(store)
        failing = FailingInsertStore(db_session, user_id, frozenset({"a.txt"}))

        result = await push_local_files(
            replace(sync_ctx, store=failing), _push(source_id, {"a.txt": "a"})
        )

        assert result.status == "error"
        assert result.synced_at is None

    async def test_unrecorded_sync_time_is_an_error(
        self, sync_ctx: SyncContext, store: RowStore, db_session: AsyncSession, user_id: int
    ) -> None:
        source_id = await _local_source(store)
        ctx = replace(sync_ctx, store=SourceUpdateFailingStore(db_session, user_id))

        result = await push_local_files(ctx, _push(source_id, {"a.txt": "a", "b.txt": "b"}))

        assert result.status == "partial"
        assert result.files_added == 2
        assert result.synced_at is None
        assert any("last-synced" in error for error in result.errors)
        stored = (await store.get(Source, source_id)).unwrap()
        assert stored["synced_at"] is None
        log = (await store.select(SyncLog, {"source_id": source_id})).unwrap()[0]
        assert log["status"] == "partial"
        assert "last-synced" in log["error_message"]

    async def test_dry_run_never_mutates(self, sync_ctx: SyncContext, store: RowStore) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a", "b.txt": "b"}))
        before = await _snapshot(store, source_id)
        logs_before = (await store.count(SyncLog)).unwrap()

        result = await push_local_files(
            sync_ctx,
            _push(
                source_id,
                {"a.txt": "changed", "new.txt": "n"},
                deleted_paths=["b.txt"],
                dry_run=True,
            ),
        )

        assert result.dry_run is True
        assert result.added_paths == ["new.txt"]
        assert result.updated_paths == ["a.txt"]
        assert result.deleted_paths == ["b.txt"]
        assert await _snapshot(store, source_id) == before
        assert (await store.count(SyncLog)).unwrap() == logs_before

    async def test_duplicate_paths_and_bad_client_hash_warn(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        request = LocalSyncRequest(
            source_id=source_id,
            files=[
                PushedFile(path="a.txt", content="first", file_hash="not-the-hash"),
                PushedFile(path="a.txt", content="second"),
            ],
        )

        result = await push_local_files(sync_ctx, request)

        assert result.files_added == 1
        assert len(result.warnings) == 2
        row = (await store.select(FileRecord, {"path": "a.txt"})).unwrap()[0]
        assert row["content"] == "first"
        assert row["file_hash"] == hash_content("first")

    async def test_github_source_is_rejected(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        row = (
            await store.insert(Source, {"name": "gh", "mode": "github", "path": "o/r"})
        ).unwrap()

        with pytest.raises(SourceModeError, match="local_sync"):
            await push_local_files(sync_ctx, _push(row["id"], {"a.txt": "a"}))

    async def test_source_of_another_user_is_not_found(
        self,
        sync_ctx: SyncContext,
        store: RowStore,
        user_factory: Callable[[str], Awaitable[int]],
    ) -> None:
        other_store = store.scoped(await user_factory("mallory"))
        source_id = await _local_source(other_store)

        with pytest.raises(SourceNotFoundError):
            await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a"}))


class TestStatusAndClear:
    async def test_status_reports_counts_and_logs(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a", "b.txt": "b"}))

        report = await get_sync_status(sync_ctx, source_id)

        assert report.file_count == 2
        assert report.source["id"] == source_id
        assert [log["status"] for log in report.recent_logs] == ["success"]

    async def test_clear_removes_files_and_resets_sync_time(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        source_id = await _local_source(store)
        await push_local_files(sync_ctx, _push(source_id, {"a.txt": "a"}))

        removed = await clear_source_files(sync_ctx, source_id)

        assert removed == 1
        assert await _snapshot(store, source_id) == []
        assert (await store.get(Source, source_id)).unwrap()["synced_at"] is None
