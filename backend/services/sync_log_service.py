"""Sync run state and the sync log audit trail."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from backend.models.sync import SyncLog
from backend.services.datetime_service import now_iso
from backend.services.store import StoreError

if TYPE_CHECKING:
    from backend.services.store import RowStore

logger = logging.getLogger(__name__)


class SyncFlow(StrEnum):
    """Which reconciliation flow produced a sync log entry."""

    GITHUB = "github"
    LOCAL_SYNC = "local_sync"
    IDEAS_PUSH = "ideas_push"


class SyncStatus(StrEnum):
    SYNCING = "syncing"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class SyncPhase(StrEnum):
    """Phases of one reconciliation run, in order."""

    PENDING = "pending"
    FETCHING_REMOTE = "fetching_remote"
    COLLECTING_LOCAL = "collecting_local"
    DIFFING = "diffing"
    APPLYING = "applying"
    FINALIZED = "finalized"


_TRANSITIONS: dict[SyncPhase, frozenset[SyncPhase]] = {
    SyncPhase.PENDING: frozenset(
        {SyncPhase.FETCHING_REMOTE, SyncPhase.COLLECTING_LOCAL, SyncPhase.FINALIZED}
    ),
    SyncPhase.FETCHING_REMOTE: frozenset(
        {SyncPhase.COLLECTING_LOCAL, SyncPhase.DIFFING, SyncPhase.FINALIZED}
    ),
    SyncPhase.COLLECTING_LOCAL: frozenset(
        {SyncPhase.FETCHING_REMOTE, SyncPhase.DIFFING, SyncPhase.FINALIZED}
    ),
    SyncPhase.DIFFING: frozenset({SyncPhase.APPLYING, SyncPhase.FINALIZED}),
    SyncPhase.APPLYING: frozenset({SyncPhase.FINALIZED}),
    SyncPhase.FINALIZED: frozenset(),
}
_SNAPSHOT_PHASES = frozenset({SyncPhase.FETCHING_REMOTE, SyncPhase.COLLECTING_LOCAL})


@dataclass
class SyncRun:
    """Mutable state of one reconciliation run.

    Phases advance in order; both snapshot phases must have run before
    diffing. A run is finalized exactly once.
    """

    flow: SyncFlow
    source_id: int | None = None
    phase: SyncPhase = SyncPhase.PENDING
    added: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fatal: bool = False
    status: SyncStatus = SyncStatus.SYNCING
    completed_at: str | None = None
    _visited: set[SyncPhase] = field(default_factory=set, repr=False)

    def advance(self, phase: SyncPhase) -> None:
        """Move to ``phase``, raising RuntimeError on an illegal transition."""
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal sync phase transition: {self.phase} -> {phase}")
        if phase == SyncPhase.DIFFING and not _SNAPSHOT_PHASES <= self._visited:
            raise RuntimeError("Cannot diff before both snapshots are collected")
        self._visited.add(phase)
        self.phase = phase

    def record_error(self, key: str, message: str) -> None:
        """Record a per-item failure; the run continues."""
        self.errors.append(f"{key}: {message}")

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def successes(self) -> int:
        """Items that reached the desired state, unchanged ones included."""
        return self.added + self.updated + self.deleted + self.unchanged

    def final_status(self) -> SyncStatus:
        if self.fatal:
            return SyncStatus.ERROR
        if not self.errors:
            return SyncStatus.SUCCESS
        if self.successes > 0:
            return SyncStatus.PARTIAL
        return SyncStatus.ERROR

    def fail(self, message: str) -> None:
        """Abort the run before applying: no mutations follow."""
        if self.phase == SyncPhase.APPLYING:
            raise RuntimeError("Cannot abort a run that has started applying changes")
        self.fatal = True
        self.errors.append(message)
        self.finalize()

    def finalize(self) -> SyncStatus:
        """Close the run and fix its final status."""
        self.advance(SyncPhase.FINALIZED)
        self.status = self.final_status()
        self.completed_at = now_iso()
        return self.status


def summarize_errors(errors: list[str], cap: int) -> str | None:
    """Join at most ``cap`` errors for persistence."""
    if not errors:
        return None
    summary = "; ".join(errors[:cap])
    if len(errors) > cap:
        summary += f" (and {len(errors) - cap} more)"
    return summary


async def start_sync_log(
    store: RowStore,
    flow: SyncFlow,
    *,
    source_id: int | None = None,
    api_key_id: int | None = None,
) -> int | None:
    """Insert a ``syncing`` log entry. A failure is logged and the run goes on without one."""
    result = await store.insert(
        SyncLog,
        {
            "source_id": source_id,
            "flow": flow.value,
            "status": SyncStatus.SYNCING.value,
            "api_key_id": api_key_id,
            "started_at": now_iso(),
        },
    )
    if isinstance(result, StoreError):
        logger.warning("Could not create sync log for %s (source %s): %s", flow, source_id, result)
        return None
    log_id: int = result.value["id"]
    return log_id


async def finalize_sync_log(
    store: RowStore,
    log_id: int | None,
    run: SyncRun,
    error_cap: int,
) -> None:
    """Write the final counts and capped error summary of a finalized run."""
    if log_id is None:
        return
    if run.phase != SyncPhase.FINALIZED:
        raise RuntimeError("Sync log can only be finalized for a finalized run")
    result = await store.update(
        SyncLog,
        {"id": log_id},
        {
            "status": run.status.value,
            "files_added": run.added,
            "files_updated": run.updated,
            "files_deleted": run.deleted,
            "error_message": summarize_errors(run.errors, error_cap),
            "completed_at": run.completed_at or now_iso(),
        },
    )
    if isinstance(result, StoreError):
        logger.warning("Could not finalize sync log %d: %s", log_id, result)


async def list_recent_sync_logs(
    store: RowStore,
    source_id: int,
    limit: int = 5,
) -> list[dict[str, Any]]:
    """Most recent log entries for a source, newest first."""
    result = await store.select(
        SyncLog,
        {"source_id": source_id},
        order_by=("-started_at", "-id"),
        limit=limit,
    )
    return result.unwrap()
