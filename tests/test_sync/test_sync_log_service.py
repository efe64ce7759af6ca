"""Tests for sync run state and the sync log."""

from __future__ import annotations

import pytest

from backend.models.source import Source
from backend.models.sync import SyncLog
from backend.services.store import RowStore
from backend.services.sync_log_service import (
    SyncFlow,
    SyncPhase,
    SyncRun,
    SyncStatus,
    finalize_sync_log,
    list_recent_sync_logs,
    start_sync_log,
    summarize_errors,
)


def _run_to_applying(run: SyncRun) -> SyncRun:
    run.advance(SyncPhase.FETCHING_REMOTE)
    run.advance(SyncPhase.COLLECTING_LOCAL)
    run.advance(SyncPhase.DIFFING)
    run.advance(SyncPhase.APPLYING)
    return run


class TestSyncRunPhases:
    def test_snapshots_in_either_order(self) -> None:
        run = SyncRun(flow=SyncFlow.LOCAL_SYNC)
        run.advance(SyncPhase.COLLECTING_LOCAL)
        run.advance(SyncPhase.FETCHING_REMOTE)
        run.advance(SyncPhase.DIFFING)
        assert run.phase == SyncPhase.DIFFING

    def test_diffing_requires_both_snapshots(self) -> None:
        run = SyncRun(flow=SyncFlow.GITHUB)
        run.advance(SyncPhase.FETCHING_REMOTE)
        with pytest.raises(RuntimeError, match="both snapshots"):
            run.advance(SyncPhase.DIFFING)

    def test_cannot_skip_to_applying(self) -> None:
        run = SyncRun(flow=SyncFlow.GITHUB)
        with pytest.raises(RuntimeError, match="Illegal"):
            run.advance(SyncPhase.APPLYING)

    def test_finalized_exactly_once(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.GITHUB))
        run.finalize()
        with pytest.raises(RuntimeError):
            run.finalize()

    def test_cannot_abort_while_applying(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.GITHUB))
        with pytest.raises(RuntimeError, match="applying"):
            run.fail("upstream gone")


class TestSyncRunStatus:
    def test_new_run_is_pending_and_syncing(self) -> None:
        run = SyncRun(flow=SyncFlow.GITHUB)
        assert run.phase == SyncPhase.PENDING
        assert run.status == SyncStatus.SYNCING
        assert {status.value for status in SyncStatus} == {
            "syncing",
            "success",
            "partial",
            "error",
        }

    def test_success_without_errors(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC))
        run.added = 2
        assert run.finalize() == SyncStatus.SUCCESS
        assert run.completed_at is not None

    def test_success_when_nothing_changed(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC))
        assert run.finalize() == SyncStatus.SUCCESS

    def test_partial_when_some_items_failed(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC))
        run.added = 1
        run.record_error("b.txt", "boom")
        assert run.finalize() == SyncStatus.PARTIAL
        assert run.errors == ["b.txt: boom"]

    def test_unchanged_items_count_as_successes(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC))
        run.unchanged = 3
        run.record_error("b.txt", "boom")
        assert run.finalize() == SyncStatus.PARTIAL

    def test_error_when_every_item_failed(self) -> None:
        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC))
        run.record_error("a.txt", "boom")
        run.record_error("b.txt", "boom")
        assert run.finalize() == SyncStatus.ERROR

    def test_fatal_failure_is_error(self) -> None:
        run = SyncRun(flow=SyncFlow.GITHUB)
        run.advance(SyncPhase.FETCHING_REMOTE)
        run.fail("GitHub API error: 404 Not Found")
        assert run.status == SyncStatus.ERROR
        assert run.phase == SyncPhase.FINALIZED
        assert run.fatal


class TestSummarizeErrors:
    def test_none_without_errors(self) -> None:
        assert summarize_errors([], 10) is None

    def test_caps_and_counts_the_rest(self) -> None:
        errors = [f"f{n}: bad" for n in range(13)]
        summary = summarize_errors(errors, 10)
        assert summary is not None
        assert summary.count("bad") == 10
        assert summary.endswith("(and 3 more)")


class TestSyncLogRows:
    async def test_start_and_finalize(self, store: RowStore) -> None:
        source = (
            await store.insert(Source, {"name": "s", "mode": "local_sync", "path": "/p"})
        ).unwrap()
        log_id = await start_sync_log(
            store, SyncFlow.LOCAL_SYNC, source_id=source["id"], api_key_id=7
        )
        assert log_id is not None

        run = _run_to_applying(SyncRun(flow=SyncFlow.LOCAL_SYNC, source_id=source["id"]))
        run.added = 2
        run.deleted = 1
        run.record_error("x.txt", "nope")
        run.finalize()
        await finalize_sync_log(store, log_id, run, error_cap=10)

        row = (await store.get(SyncLog, log_id)).unwrap()
        assert row["status"] == "partial"
        assert row["files_added"] == 2
        assert row["files_deleted"] == 1
        assert row["error_message"] == "x.txt: nope"
        assert row["api_key_id"] == 7
        assert row["completed_at"] is not None

    async def test_finalize_requires_finalized_run(self, store: RowStore) -> None:
        log_id = await start_sync_log(store, SyncFlow.IDEAS_PUSH)
        with pytest.raises(RuntimeError):
            await finalize_sync_log(store, log_id, SyncRun(flow=SyncFlow.IDEAS_PUSH), 10)

    async def test_recent_logs_newest_first(self, store: RowStore) -> None:
        source = (
            await store.insert(Source, {"name": "s", "mode": "local_sync", "path": "/p"})
        ).unwrap()
        ids = [
            await start_sync_log(store, SyncFlow.LOCAL_SYNC, source_id=source["id"])
            for _ in range(3)
        ]

        logs = await list_recent_sync_logs(store, source["id"], limit=2)

        assert [log["id"] for log in logs] == [ids[2], ids[1]]
