"""Per-call context handed to the sync orchestrators."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backend.config import Settings
    from backend.services.github_client import GitHubClient
    from backend.services.store import RowStore


class SourceLockRegistry:
    """Advisory locks keyed by source id.

    Runs against the same source serialize their apply phase; runs against
    different sources never contend. Safe under asyncio's single-threaded
    model since lock creation has no await point.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def lock_for(self, source_id: int) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[source_id] = lock
        return lock


@dataclass
class SyncContext:
    """Everything one orchestrator run needs, built once per request.

    ``store`` is scoped to the caller. ``api_key_id`` is recorded on sync logs
    when the caller authenticated with an API key.
    """

    store: RowStore
    settings: Settings
    locks: SourceLockRegistry
    github: GitHubClient | None = None
    api_key_id: int | None = None
