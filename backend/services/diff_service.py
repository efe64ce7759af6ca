"""Diff engine: partition local vs. remote records into create/update/delete.

Two matching strategies are provided:

- ``FILE_PATH_MATCH`` pairs file records by path (the caller scopes remote
  rows to one source) and compares fingerprint, size and MIME type.
- ``IDEA_CONTENT_MATCH`` pairs ideas by normalized content (trimmed and
  lowercased) and compares status, done flag, tags and refs. Editing an
  idea's text therefore yields a create plus an orphaned remote idea, not an
  update.

Both local and remote records are plain mappings.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

Record = Mapping[str, Any]


def normalize_content(text: str) -> str:
    """Matching key for ideas: trim and lowercase."""
    return text.strip().lower()


@dataclass(frozen=True)
class MatchStrategy:
    """How local and remote records correspond and which fields are compared.

    ``compare`` returns only the fields whose local value should be written
    to the remote record; an empty dict means the pair is unchanged.
    """

    name: str
    local_key: Callable[[Record], str]
    remote_key: Callable[[Record], str]
    compare: Callable[[Record, Record], dict[str, Any]]


@dataclass
class RecordUpdate:
    """A matched remote record and the changed fields to write to it."""

    remote_id: Any
    key: str
    changes: dict[str, Any]


@dataclass
class RecordDelete:
    """A remote record with no local counterpart."""

    remote_id: Any
    key: str


@dataclass
class DiffResult:
    to_create: list[Record] = field(default_factory=list)
    to_update: list[RecordUpdate] = field(default_factory=list)
    to_delete: list[RecordDelete] = field(default_factory=list)
    unchanged: int = 0

    @property
    def matched(self) -> int:
        return self.unchanged + len(self.to_update)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_create or self.to_update or self.to_delete)


def _same_set(left: Sequence[str] | None, right: Sequence[str] | None) -> bool:
    return sorted(left or []) == sorted(right or [])


def _compare_files(local: Record, remote: Record) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if local.get("file_hash") != remote.get("file_hash"):
        changes["file_hash"] = local.get("file_hash")
        changes["content"] = local.get("content")
        if local.get("name"):
            changes["name"] = local["name"]
    if local.get("size") != remote.get("size"):
        changes["size"] = local.get("size")
    if local.get("mime_type") != remote.get("mime_type"):
        changes["mime_type"] = local.get("mime_type")
    return changes


def _compare_ideas(local: Record, remote: Record) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if str(local.get("status")) != str(remote.get("status")):
        changes["status"] = str(local.get("status"))
    if bool(local.get("done")) != bool(remote.get("done")):
        changes["done"] = bool(local.get("done"))
    if not _same_set(local.get("tags"), remote.get("tags")):
        changes["tags"] = list(local.get("tags") or [])
    if not _same_set(local.get("refs"), remote.get("refs")):
        changes["refs"] = list(local.get("refs") or [])
    return changes


FILE_PATH_MATCH = MatchStrategy(
    name="path",
    local_key=lambda record: str(record["path"]),
    remote_key=lambda record: str(record["path"]),
    compare=_compare_files,
)

IDEA_CONTENT_MATCH = MatchStrategy(
    name="content",
    local_key=lambda record: normalize_content(str(record["content"])),
    remote_key=lambda record: normalize_content(str(record["content"])),
    compare=_compare_ideas,
)


def compute_diff(
    local: Sequence[Record],
    remote: Sequence[Record],
    strategy: MatchStrategy,
    *,
    remote_id_field: str = "id",
) -> DiffResult:
    """Compute the change set that makes ``remote`` reflect ``local``.

    Remote records are indexed by key; when several share a key the first
    one is the match candidate and the rest end up in ``to_delete``. Each
    remote record is claimed at most once, so a local record whose key was
    already claimed by an earlier local record becomes a create.

    Invariants: ``len(to_create) + matched == len(local)`` and
    ``len(to_delete) + matched == len(remote)``.
    """
    result = DiffResult()

    remote_by_key: dict[str, int] = {}
    for index, record in enumerate(remote):
        remote_by_key.setdefault(strategy.remote_key(record), index)

    claimed: set[int] = set()
    for record in local:
        key = strategy.local_key(record)
        index = remote_by_key.get(key)
        if index is None or index in claimed:
            result.to_create.append(record)
            continue
        claimed.add(index)
        candidate = remote[index]
        changes = strategy.compare(record, candidate)
        if changes:
            result.to_update.append(
                RecordUpdate(remote_id=candidate[remote_id_field], key=key, changes=changes)
            )
        else:
            result.unchanged += 1

    for index, record in enumerate(remote):
        if index not in claimed:
            result.to_delete.append(
                RecordDelete(remote_id=record[remote_id_field], key=strategy.remote_key(record))
            )

    return result
