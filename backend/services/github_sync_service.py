"""GitHub-tree sync: mirror a repository's text files into stored file rows.

The upstream tree is authoritative for the files it contains, but files
that disappear upstream are never deleted from the store.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from backend.exceptions import UpstreamFetchError
from backend.models.source import FileRecord, SourceMode
from backend.services.diff_service import FILE_PATH_MATCH, compute_diff
from backend.services.file_service import build_file_row
from backend.services.github_client import parse_repo_path
from backend.services.source_service import get_source, mark_synced, require_mode
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
    from backend.config import Settings
    from backend.services.store import RowStore
    from backend.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset(
    {
        # Code
        "js", "jsx", "ts", "tsx", "mjs", "cjs", "py", "pyi", "pyw", "rb", "rake",
        "gemspec", "go", "mod", "sum", "rs", "toml", "java", "kt", "kts", "scala",
        "c", "h", "cpp", "hpp", "cc", "cxx", "hxx", "cs", "fs", "fsx", "swift", "m",
        "mm", "php", "phtml", "lua", "r", "jl", "ex", "exs", "erl", "hrl", "clj",
        "cljs", "cljc", "edn", "hs", "lhs", "ml", "mli", "v", "sv", "svh", "vhd",
        "vhdl", "asm", "s", "pl", "pm", "t", "dart", "zig", "nim", "cr", "d",
        # Web
        "html", "htm", "xhtml", "css", "scss", "sass", "less", "styl", "vue",
        "svelte", "astro",
        # Data and config
        "json", "jsonc", "json5", "yaml", "yml", "xml", "xsl", "xslt", "ini", "cfg",
        "conf", "env", "example", "properties", "lock",
        # Documentation
        "md", "markdown", "mdx", "rst", "txt", "text", "adoc", "asciidoc",
        # Shell
        "sh", "bash", "zsh", "fish", "ps1", "psm1", "psd1", "bat", "cmd",
        # Build
        "makefile", "cmake", "dockerfile", "gradle",
        # Other
        "sql", "graphql", "gql", "proto", "tf", "tfvars", "prisma", "gitignore",
        "gitattributes", "editorconfig", "eslintrc", "prettierrc",
    }
)  # fmt: skip


@dataclass
class GitHubSyncResult:
    source_id: int
    files_added: int = 0
    files_updated: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    synced_at: str | None = None
    status: SyncStatus = SyncStatus.SYNCING


def should_sync_file(path: str, size: int | None, settings: Settings) -> bool:
    """Allow-listed text files no larger than the configured limit.

    Extensionless files (``Makefile``, ``Dockerfile``) match on their name.
    """
    if size is not None and size > settings.github_max_file_size:
        return False
    name = posixpath.basename(path).lower()
    ext = name.rsplit(".", 1)[-1] if "." in name else name
    return ext in ALLOWED_EXTENSIONS


async def _abort(
    store: RowStore, settings: Settings, run: SyncRun, log_id: int | None, message: str
) -> None:
    run.fail(message)
    await finalize_sync_log(store, log_id, run, settings.sync_error_message_cap)
    logger.error("GitHub sync of source %s aborted: %s", run.source_id, message)


async def sync_github_source(ctx: SyncContext, source_id: int) -> GitHubSyncResult:
    """Run one GitHub-tree sync pass for a source.

    Raises SourceNotFoundError, SourceModeError or ValueError before any log
    is written, and UpstreamFetchError after marking the log ``error`` when
    the tree cannot be fetched. Per-file failures are collected in the result.
    """
    source = await get_source(ctx.store, source_id)
    require_mode(source, SourceMode.GITHUB)
    owner, repo = parse_repo_path(source["path"])
    github = ctx.github
    if github is None:
        raise UpstreamFetchError("GitHub client is not configured")

    # Rows belong to the source owner, whoever triggered the sync.
    store = ctx.store.scoped(source["user_id"])
    branch = source.get("branch") or await github.get_default_branch(owner, repo)
    logger.info("GitHub sync of source %d (%s/%s@%s) started", source_id, owner, repo, branch)

    log_id = await start_sync_log(
        store, SyncFlow.GITHUB, source_id=source_id, api_key_id=ctx.api_key_id
    )
    run = SyncRun(flow=SyncFlow.GITHUB, source_id=source_id)

    run.advance(SyncPhase.FETCHING_REMOTE)
    remote_result = await store.select(FileRecord, {"source_id": source_id})
    if isinstance(remote_result, StoreError):
        message = f"Could not load stored files: {remote_result}"
        await _abort(store, ctx.settings, run, log_id, message)
        remote_result.unwrap()
    remote: list[dict[str, Any]] = remote_result.value

    run.advance(SyncPhase.COLLECTING_LOCAL)
    try:
        tree = await github.get_tree(owner, repo, branch)
    except UpstreamFetchError as exc:
        await _abort(store, ctx.settings, run, log_id, str(exc))
        raise
    if tree.truncated:
        run.warn("Repository tree was truncated - some files may be missing")

    candidates = [
        entry
        for entry in tree.blobs()
        if should_sync_file(entry.path, entry.size, ctx.settings)
    ]
    upstream: list[dict[str, Any]] = []
    for index, entry in enumerate(candidates):
        if index > 0 and ctx.settings.github_fetch_delay_seconds > 0:
            await asyncio.sleep(ctx.settings.github_fetch_delay_seconds)
        try:
            blob = await github.get_blob_text(entry.url)
        except (UpstreamFetchError, ValueError) as exc:
            run.record_error(entry.path, f"fetch failed: {exc}")
            run.skipped += 1
            continue
        row = build_file_row(entry.path, blob.content)
        row["source_id"] = source_id
        upstream.append(row)

    run.advance(SyncPhase.DIFFING)
    diff = compute_diff(upstream, remote, FILE_PATH_MATCH)
    run.unchanged = diff.unchanged

    run.advance(SyncPhase.APPLYING)
    async with ctx.locks.lock_for(source_id):
        for row in diff.to_create:
            created = await store.insert(FileRecord, row)
            if isinstance(created, StoreError):
                run.record_error(row["path"], f"insert failed ({created.kind}): {created}")
            else:
                run.added += 1
        for update in diff.to_update:
            updated = await store.update(FileRecord, {"id": update.remote_id}, update.changes)
            if isinstance(updated, StoreError):
                run.record_error(update.key, f"update failed ({updated.kind}): {updated}")
            else:
                run.updated += 1

    synced_at = None
    if run.final_status() in (SyncStatus.SUCCESS, SyncStatus.PARTIAL):
        synced_at = await mark_synced(store, source_id)
        if synced_at is None:
            run.record_error(f"source {source_id}", "could not record last-synced time")
    status = run.finalize()
    await finalize_sync_log(store, log_id, run, ctx.settings.sync_error_message_cap)
    logger.info(
        "GitHub sync of source %d finished: %s (+%d ~%d =%d skipped %d, %d error(s))",
        source_id,
        status,
        run.added,
        run.updated,
        run.unchanged,
        run.skipped,
        len(run.errors),
    )
    return GitHubSyncResult(
        source_id=source_id,
        files_added=run.added,
        files_updated=run.updated,
        files_unchanged=run.unchanged,
        files_skipped=run.skipped,
        errors=list(run.errors),
        warnings=list(run.warnings),
        synced_at=synced_at,
        status=status,
    )
