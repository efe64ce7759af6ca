"""Tests for ideas.md push and pull."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from backend.filesystem.ideas_markdown import parse_ideas_content
from backend.models.idea import Idea
from backend.models.sync import SyncLog
from backend.services.idea_service import create_idea
from backend.services.ideas_sync_service import PUSH_SOURCE_REF, pull_ideas, push_ideas
from backend.services.store import RowStore, StoreError, StoreErrorKind, StoreResult

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.models.base import Base
    from backend.services.sync_context import SyncContext

IDEAS_MD = """# Ideas

## Inbox

- [ ] buy milk #errand @file:notes/milk.md
- [ ] learn rust #learning

## Active

- [x] write blog post #writing

## Archive

_No archived ideas_
"""


class FailingIdeaInsertStore(RowStore):
    """Row store whose idea inserts fail for selected contents."""

    def __init__(
        self, session: AsyncSession, owner_id: int | None, fail_contents: frozenset[str]
    ) -> None:
        super().__init__(session, owner_id)
        self.fail_contents = fail_contents

    def scoped(self, owner_id: int | None) -> RowStore:
        return FailingIdeaInsertStore(self.session, owner_id, self.fail_contents)

    async def insert(self, model: type[Base], row: Mapping[str, Any]) -> StoreResult[Any]:
        if model is Idea and row.get("content") in self.fail_contents:
            return StoreError(StoreErrorKind.UNKNOWN, "simulated write failure")
        return await super().insert(model, row)


async def _contents(store: RowStore) -> dict[str, dict[str, object]]:
    rows = (await store.select(Idea)).unwrap()
    return {str(row["content"]): row for row in rows}


class TestPushIdeas:
    async def test_first_push_creates_ideas(self, sync_ctx: SyncContext, store: RowStore) -> None:
        result = await push_ideas(sync_ctx, IDEAS_MD)

        assert result.status == "success"
        assert result.created == 3
        stored = await _contents(store)
        milk = stored["buy milk #errand @file:notes/milk.md"]
        assert milk["tags"] == ["errand"]
        assert milk["refs"] == ["@file:notes/milk.md"]
        assert milk["source_ref"] == PUSH_SOURCE_REF
        post = stored["write blog post #writing"]
        assert post["status"] == "active"
        assert post["done"] is True

    async def test_push_is_idempotent(self, sync_ctx: SyncContext) -> None:
        await push_ideas(sync_ctx, IDEAS_MD)

        again = await push_ideas(sync_ctx, IDEAS_MD)

        assert again.unchanged == 3
        assert again.created == again.updated == again.deleted == 0

    async def test_moving_an_idea_updates_status(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        await push_ideas(sync_ctx, IDEAS_MD)
        moved = IDEAS_MD.replace("_No archived ideas_", "- [x] LEARN RUST #learning").replace(
            "- [ ] learn rust #learning\n", ""
        )

        result = await push_ideas(sync_ctx, moved)

        assert result.updated == 1
        assert result.planned_updates == ["learn rust #learning"]
        row = (await _contents(store))["learn rust #learning"]
        assert row["status"] == "archive"
        assert row["done"] is True

    async def test_remote_only_ideas_kept_unless_delete_remote(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        await push_ideas(sync_ctx, IDEAS_MD)
        await create_idea(store, "captured from the web #inbox")

        kept = await push_ideas(sync_ctx, IDEAS_MD)
        assert kept.kept_remote == 1
        assert kept.deleted == 0
        assert "captured from the web #inbox" in await _contents(store)

        removed = await push_ideas(sync_ctx, IDEAS_MD, delete_remote=True)
        assert removed.deleted == 1
        assert removed.kept_remote == 0
        assert "captured from the web #inbox" not in await _contents(store)

    async def test_dry_run_plans_without_writing(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        await create_idea(store, "old idea")

        result = await push_ideas(sync_ctx, IDEAS_MD, delete_remote=True, dry_run=True)

        assert result.dry_run is True
        assert result.created == 3
        assert result.deleted == 1
        assert result.planned_deletes == ["old idea"]
        assert list(await _contents(store)) == ["old idea"]
        assert (await store.count(SyncLog)).unwrap() == 0

    async def test_duplicate_local_lines_are_pushed_once(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        text = "## Inbox\n- [ ] same thing\n- [ ] Same Thing \n"

        first = await push_ideas(sync_ctx, text)
        second = await push_ideas(sync_ctx, text)

        assert first.created == 1
        assert len(first.warnings) == 1
        assert second.created == 0
        assert (await store.count(Idea)).unwrap() == 1

    async def test_real_push_writes_log_without_source(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        await push_ideas(sync_ctx, IDEAS_MD)

        logs = (await store.select(SyncLog)).unwrap()
        assert len(logs) == 1
        assert logs[0]["flow"] == "ideas_push"
        assert logs[0]["source_id"] is None
        assert logs[0]["files_added"] == 3

    async def test_failed_create_keeps_other_ideas(
        self, sync_ctx: SyncContext, store: RowStore, db_session: AsyncSession, user_id: int
    ) -> None:
        failing = FailingIdeaInsertStore(db_session, user_id, frozenset({"learn rust #learning"}))

        result = await push_ideas(replace(sync_ctx, store=failing), IDEAS_MD)

        assert result.status == "partial"
        assert result.created == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("learn rust #learning:")
        assert set(await _contents(store)) == {
            "buy milk #errand @file:notes/milk.md",
            "write blog post #writing",
        }
        log = (await store.select(SyncLog)).unwrap()[0]
        assert log["status"] == "partial"
        assert log["files_added"] == 2

        retry = await push_ideas(sync_ctx, IDEAS_MD)
        assert retry.created == 1
        assert retry.unchanged == 2


class TestPullIdeas:
    async def test_pull_renders_stored_ideas(self, sync_ctx: SyncContext, store: RowStore) -> None:
        await create_idea(store, "first")
        await create_idea(store, "second")

        result = await pull_ideas(sync_ctx)

        doc = parse_ideas_content(result.content)
        assert [idea.content for idea in doc.inbox] == ["second", "first"]
        assert result.remote_count == 2
        assert result.inbox == 2
        assert "_No active ideas_" in result.content

    async def test_merge_keeps_local_only_ideas(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        await create_idea(store, "Buy milk")
        local = "## Inbox\n- [ ] buy MILK\n## Active\n- [ ] local plan\n"

        result = await pull_ideas(sync_ctx, local, merge=True)

        doc = parse_ideas_content(result.content)
        assert [idea.content for idea in doc.inbox] == ["Buy milk"]
        assert [idea.content for idea in doc.active] == ["local plan"]
        assert result.local_only_count == 1

    async def test_pull_without_merge_ignores_local(self, sync_ctx: SyncContext) -> None:
        result = await pull_ideas(sync_ctx, "- [ ] local only\n", merge=False)

        assert result.local_only_count == 0
        assert parse_ideas_content(result.content).all_ideas() == []

    async def test_archive_truncation_is_reported(
        self, sync_ctx: SyncContext, store: RowStore
    ) -> None:
        from backend.models.idea import IdeaStatus

        for n in range(22):
            await create_idea(store, f"archived {n}", status=IdeaStatus.ARCHIVE, done=True)

        result = await pull_ideas(sync_ctx)

        assert result.archive == 22
        assert result.archive_truncated is True
        assert "_... and 2 more archived ideas_" in result.content
