"""Idea CRUD."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from backend.filesystem.ideas_markdown import extract_refs, extract_tags
from backend.models.idea import Idea, IdeaStatus
from backend.services.store import StoreError, StoreErrorKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from backend.services.store import RowStore

_MUTABLE_FIELDS = frozenset({"content", "status", "done", "tags", "refs", "source_ref"})


async def list_ideas(
    store: RowStore,
    *,
    status: IdeaStatus | None = None,
    done: bool | None = None,
    tag: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    """Ideas newest first, optionally filtered."""
    filters: dict[str, Any] = {}
    if status is not None:
        filters["status"] = status.value
    if done is not None:
        filters["done"] = done
    if tag is None:
        return (
            await store.select(
                Idea, filters, order_by=("-created_at", "-id"), limit=limit, offset=offset
            )
        ).unwrap()
    # Tags live in a JSON column, so the tag filter runs here.
    rows = (await store.select(Idea, filters, order_by=("-created_at", "-id"))).unwrap()
    tagged = [row for row in rows if tag in (row.get("tags") or [])]
    return tagged[offset : offset + limit]


async def create_idea(
    store: RowStore,
    content: str,
    *,
    status: IdeaStatus = IdeaStatus.INBOX,
    done: bool = False,
    tags: list[str] | None = None,
    refs: list[str] | None = None,
    source_ref: str | None = None,
) -> dict[str, Any]:
    """Create an idea; tags and refs default to the tokens found in its content."""
    text = content.strip()
    if not text:
        raise ValueError("Idea content must not be empty")
    row = {
        "content": text,
        "status": status.value,
        "done": done,
        "tags": list(dict.fromkeys(tags)) if tags is not None else extract_tags(text),
        "refs": list(dict.fromkeys(refs)) if refs is not None else extract_refs(text),
        "source_ref": source_ref,
    }
    return (await store.insert(Idea, row)).unwrap()


async def update_ideas(
    store: RowStore,
    idea_ids: Sequence[int],
    patch: dict[str, Any],
) -> list[dict[str, Any]]:
    """Apply the same patch to several ideas. Unknown fields are ignored."""
    values = {key: value for key, value in patch.items() if key in _MUTABLE_FIELDS}
    if "status" in values and values["status"] is not None:
        values["status"] = IdeaStatus(values["status"]).value
    if "content" in values:
        text = str(values["content"]).strip()
        if not text:
            raise ValueError("Idea content must not be empty")
        values["content"] = text
    if not idea_ids or not values:
        return []
    result = await store.update(Idea, {"id": list(idea_ids)}, values)
    if isinstance(result, StoreError) and result.kind == StoreErrorKind.NOT_FOUND:
        return []
    return result.unwrap()


async def delete_ideas(store: RowStore, idea_ids: Sequence[int]) -> int:
    if not idea_ids:
        return 0
    return (await store.delete(Idea, {"id": list(idea_ids)})).unwrap()
