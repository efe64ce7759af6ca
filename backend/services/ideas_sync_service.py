"""Ideas push/pull between an ideas.md document and stored idea rows.

Ideas have no stable id in the file, so they are matched on normalized
content. Push keeps remote-only ideas unless ``delete_remote`` is set; pull
is read-only against the store and returns the rendered document.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from backend.filesystem.ideas_markdown import (
    ARCHIVE_DISPLAY_LIMIT,
    ParsedIdea,
    generate_ideas_content,
    parse_ideas_content,
)
from backend.models.idea import Idea, IdeaStatus
from backend.services.diff_service import IDEA_CONTENT_MATCH, compute_diff, normalize_content
from backend.services.store import StoreError
from backend.services.sync_log_service import (
    SyncFlow,
    SyncPhase,
    SyncRun,
    SyncStatus,
    finalize_sync_log,
    start_sync_log,
)

if TYPE_CHECKING:
    from backend.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

PUSH_SOURCE_REF = "cli:push-ideas"


@dataclass
class IdeasPushResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    kept_remote: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    planned_creates: list[str] = field(default_factory=list)
    planned_updates: list[str] = field(default_factory=list)
    planned_deletes: list[str] = field(default_factory=list)
    dry_run: bool = False
    status: SyncStatus = SyncStatus.SYNCING


@dataclass
class IdeasPullResult:
    content: str
    remote_count: int
    local_only_count: int = 0
    inbox: int = 0
    active: int = 0
    archive: int = 0
    archive_truncated: bool = False


def _local_record(idea: ParsedIdea) -> dict[str, Any]:
    record = asdict(idea)
    record["status"] = idea.status.value
    return record


def _row_to_idea(row: dict[str, Any]) -> ParsedIdea:
    try:
        status = IdeaStatus(row["status"])
    except ValueError:
        status = IdeaStatus.INBOX
    return ParsedIdea(
        content=row["content"],
        status=status,
        done=bool(row["done"]),
        tags=list(row.get("tags") or []),
        refs=list(row.get("refs") or []),
    )


async def push_ideas(
    ctx: SyncContext,
    content: str,
    *,
    delete_remote: bool = False,
    dry_run: bool = False,
) -> IdeasPushResult:
    """Reconcile stored ideas with an ideas.md document.

    Unlike plain ``compute_diff``, which turns a repeated local key into a
    second create, later lines whose normalized content repeats an earlier
    line are dropped here with a warning. Pushing the same file twice then
    stays a no-op instead of growing a duplicate on every push.
    """
    store = ctx.store
    cap = ctx.settings.sync_error_message_cap
    log_id = None
    if not dry_run:
        log_id = await start_sync_log(store, SyncFlow.IDEAS_PUSH, api_key_id=ctx.api_key_id)
    run = SyncRun(flow=SyncFlow.IDEAS_PUSH)

    run.advance(SyncPhase.COLLECTING_LOCAL)
    document = parse_ideas_content(content)
    local: list[dict[str, Any]] = []
    seen: set[str] = set()
    for idea in document.all_ideas():
        key = normalize_content(idea.content)
        if key in seen:
            run.warn(f"line {idea.line_number}: duplicate idea ignored: {idea.content}")
            continue
        seen.add(key)
        local.append(_local_record(idea))

    run.advance(SyncPhase.FETCHING_REMOTE)
    remote_result = await store.select(Idea, order_by=("created_at", "id"))
    if isinstance(remote_result, StoreError):
        run.fail(f"Could not load stored ideas: {remote_result}")
        await finalize_sync_log(store, log_id, run, cap)
        remote_result.unwrap()
    remote: list[dict[str, Any]] = remote_result.value

    run.advance(SyncPhase.DIFFING)
    diff = compute_diff(local, remote, IDEA_CONTENT_MATCH)
    remote_content = {row["id"]: row["content"] for row in remote}
    result = IdeasPushResult(
        unchanged=diff.unchanged,
        dry_run=dry_run,
        planned_creates=[record["content"] for record in diff.to_create],
        planned_updates=[remote_content[update.remote_id] for update in diff.to_update],
        planned_deletes=[remote_content[orphan.remote_id] for orphan in diff.to_delete],
    )
    if not delete_remote:
        result.kept_remote = len(diff.to_delete)

    if dry_run:
        run.finalize()
        result.created = len(diff.to_create)
        result.updated = len(diff.to_update)
        result.deleted = len(diff.to_delete) if delete_remote else 0
        result.warnings = list(run.warnings)
        result.status = run.status
        return result

    run.unchanged = diff.unchanged
    run.advance(SyncPhase.APPLYING)
    for record in diff.to_create:
        created = await store.insert(
            Idea,
            {
                "content": record["content"],
                "status": record["status"],
                "done": record["done"],
                "tags": record["tags"],
                "refs": record["refs"],
                "source_ref": PUSH_SOURCE_REF,
            },
        )
        if isinstance(created, StoreError):
            run.record_error(record["content"], f"create failed ({created.kind}): {created}")
        else:
            run.added += 1
    for update in diff.to_update:
        updated = await store.update(Idea, {"id": update.remote_id}, update.changes)
        if isinstance(updated, StoreError):
            label = remote_content[update.remote_id]
            run.record_error(label, f"update failed ({updated.kind}): {updated}")
        else:
            run.updated += 1
    if delete_remote:
        for orphan in diff.to_delete:
            removed = await store.delete(Idea, {"id": orphan.remote_id})
            if isinstance(removed, StoreError):
                label = remote_content[orphan.remote_id]
                run.record_error(label, f"delete failed ({removed.kind}): {removed}")
            elif removed.value:
                run.deleted += 1

    status = run.finalize()
    await finalize_sync_log(store, log_id, run, cap)
    logger.info(
        "Ideas push finished: %s (+%d ~%d -%d =%d, kept %d, %d error(s))",
        status,
        run.added,
        run.updated,
        run.deleted,
        run.unchanged,
        result.kept_remote,
        len(run.errors),
    )
    result.created = run.added
    result.updated = run.updated
    result.deleted = run.deleted
    result.errors = list(run.errors)
    result.warnings = list(run.warnings)
    result.status = status
    return result


async def pull_ideas(
    ctx: SyncContext,
    local_content: str | None = None,
    *,
    merge: bool = False,
) -> IdeasPullResult:
    """Render stored ideas as an ideas.md document, newest first.

    With ``merge``, local ideas whose normalized content has no stored
    counterpart are appended to their sections instead of being dropped.
    """
    rows = (await ctx.store.select(Idea, order_by=("-created_at", "-id"))).unwrap()
    ideas = [_row_to_idea(row) for row in rows]

    local_only: list[ParsedIdea] = []
    if merge and local_content:
        known = {normalize_content(idea.content) for idea in ideas}
        for idea in parse_ideas_content(local_content).all_ideas():
            key = normalize_content(idea.content)
            if key in known:
                continue
            known.add(key)
            local_only.append(idea)

    combined = [*ideas, *local_only]
    counts = {status: 0 for status in IdeaStatus}
    for idea in combined:
        counts[idea.status] += 1
    return IdeasPullResult(
        content=generate_ideas_content(combined),
        remote_count=len(ideas),
        local_only_count=len(local_only),
        inbox=counts[IdeaStatus.INBOX],
        active=counts[IdeaStatus.ACTIVE],
        archive=counts[IdeaStatus.ARCHIVE],
        archive_truncated=counts[IdeaStatus.ARCHIVE] > ARCHIVE_DISPLAY_LIMIT,
    )
