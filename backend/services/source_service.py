"""Source lookup and CRUD."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from backend.exceptions import SourceModeError, SourceNotFoundError
from backend.models.source import FileRecord, Source, SourceMode
from backend.models.sync import SyncLog
from backend.services.datetime_service import now_iso
from backend.services.store import StoreError, StoreErrorKind

if TYPE_CHECKING:
    from backend.services.store import RowStore

logger = logging.getLogger(__name__)

_REPO_PART = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_source_path(mode: SourceMode, path: str) -> str:
    """Check that ``path`` makes sense for ``mode`` and return it normalized."""
    value = path.strip()
    if not value:
        raise ValueError("Source path must not be empty")
    if mode == SourceMode.GITHUB:
        parts = value.strip("/").split("/")
        if len(parts) != 2 or not all(_REPO_PART.match(part) for part in parts):
            raise ValueError("GitHub source path must look like 'owner/repo'")
        return "/".join(parts)
    if mode == SourceMode.LINK:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("Link source path must be an http(s) URL")
    return value


async def get_source(store: RowStore, source_id: int) -> dict[str, Any]:
    """Return the source row, raising SourceNotFoundError if it is missing or not owned."""
    result = await store.get(Source, source_id)
    if isinstance(result, StoreError):
        if result.kind == StoreErrorKind.NOT_FOUND:
            raise SourceNotFoundError(source_id)
        result.unwrap()
    return result.value


def require_mode(source: dict[str, Any], mode: SourceMode) -> None:
    if source["mode"] != mode.value:
        raise SourceModeError(mode.value, str(source["mode"]))


async def list_sources(store: RowStore, mode: SourceMode | None = None) -> list[dict[str, Any]]:
    filters: dict[str, Any] = {}
    if mode is not None:
        filters["mode"] = mode.value
    return (await store.select(Source, filters, order_by=("name", "id"))).unwrap()


async def create_source(
    store: RowStore,
    *,
    name: str,
    mode: SourceMode,
    path: str,
    branch: str | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    row = {
        "name": name,
        "mode": mode.value,
        "path": validate_source_path(mode, path),
        "branch": branch,
        "description": description,
    }
    source = (await store.insert(Source, row)).unwrap()
    logger.info("Created %s source %d (%s)", mode, source["id"], name)
    return source


async def update_source(
    store: RowStore,
    source_id: int,
    patch: dict[str, Any],
) -> dict[str, Any]:
    """Update mutable source fields. The mode cannot change."""
    source = await get_source(store, source_id)
    values = {key: value for key, value in patch.items() if key != "mode"}
    if "path" in values and values["path"] is not None:
        values["path"] = validate_source_path(SourceMode(source["mode"]), values["path"])
    if not values:
        return source
    rows = (await store.update(Source, {"id": source_id}, values)).unwrap()
    return rows[0]


async def mark_synced(
    store: RowStore, source_id: int, synced_at: str | None = None
) -> str | None:
    """Stamp the source's last-synced time.

    Returns the stored timestamp, or None when the update did not persist.
    """
    timestamp = synced_at or now_iso()
    result = await store.update(Source, {"id": source_id}, {"synced_at": timestamp})
    if isinstance(result, StoreError):
        logger.warning("Could not update synced_at for source %d: %s", source_id, result)
        return None
    return timestamp


async def delete_source(store: RowStore, source_id: int) -> int:
    """Delete a source with its file rows and sync logs. Returns the number of files removed."""
    await get_source(store, source_id)
    removed = (await store.delete(FileRecord, {"source_id": source_id})).unwrap()
    (await store.delete(SyncLog, {"source_id": source_id})).unwrap()
    (await store.delete(Source, {"id": source_id})).unwrap()
    logger.info("Deleted source %d and %d file(s)", source_id, removed)
    return removed
