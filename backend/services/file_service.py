"""Stored file rows: listing, manual upload and deletion."""

from __future__ import annotations

import mimetypes
import posixpath
from typing import TYPE_CHECKING, Any

from backend.models.source import FileRecord
from backend.services.hash_service import hash_content
from backend.services.source_service import get_source

if TYPE_CHECKING:
    from collections.abc import Sequence

    from backend.services.store import RowStore

DEFAULT_MIME_TYPE = "text/plain"

# Source-code types that the mimetypes registry does not know or maps to
# something unhelpful for text display.
_MIME_OVERRIDES = {
    "js": "application/javascript",
    "jsx": "application/javascript",
    "ts": "application/typescript",
    "tsx": "application/typescript",
    "json": "application/json",
    "html": "text/html",
    "css": "text/css",
    "md": "text/markdown",
    "py": "text/x-python",
    "go": "text/x-go",
    "rs": "text/x-rust",
    "java": "text/x-java",
    "c": "text/x-c",
    "h": "text/x-c",
    "cpp": "text/x-c++",
    "hpp": "text/x-c++",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "xml": "text/xml",
    "sql": "text/x-sql",
    "sh": "text/x-shellscript",
    "txt": "text/plain",
}


def guess_mime_type(path: str) -> str:
    """Content type label for a stored file, defaulting to text/plain."""
    name = posixpath.basename(path)
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    if ext in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[ext]
    guessed, _ = mimetypes.guess_type(name, strict=False)
    return guessed or DEFAULT_MIME_TYPE


def file_name(path: str) -> str:
    return posixpath.basename(path) or path


def build_file_row(
    path: str,
    content: str,
    *,
    name: str | None = None,
    mime_type: str | None = None,
) -> dict[str, Any]:
    """Build a file record from text content with a server-computed fingerprint."""
    return {
        "path": path,
        "name": name or file_name(path),
        "content": content,
        "size": len(content.encode("utf-8")),
        "mime_type": mime_type or guess_mime_type(path),
        "file_hash": hash_content(content),
    }


async def list_files(
    store: RowStore,
    source_id: int | None = None,
    *,
    include_content: bool = False,
) -> list[dict[str, Any]]:
    filters: dict[str, Any] = {}
    if source_id is not None:
        filters["source_id"] = source_id
    rows = (await store.select(FileRecord, filters, order_by=("source_id", "path"))).unwrap()
    if not include_content:
        for row in rows:
            row.pop("content", None)
    return rows


async def get_file(store: RowStore, file_id: int) -> dict[str, Any] | None:
    result = await store.select(FileRecord, {"id": file_id}, limit=1)
    rows = result.unwrap()
    return rows[0] if rows else None


async def upload_file(
    store: RowStore,
    source_id: int,
    path: str,
    content: str,
    mime_type: str | None = None,
) -> dict[str, Any]:
    """Store one text file in a source, replacing any file at the same path."""
    await get_source(store, source_id)
    row = build_file_row(path, content, mime_type=mime_type)
    row["source_id"] = source_id
    return (await store.upsert(FileRecord, row, ("source_id", "path"))).unwrap()


async def delete_files(store: RowStore, file_ids: Sequence[int]) -> int:
    if not file_ids:
        return 0
    return (await store.delete(FileRecord, {"id": list(file_ids)})).unwrap()


async def delete_source_files(store: RowStore, source_id: int) -> int:
    return (await store.delete(FileRecord, {"source_id": source_id})).unwrap()
