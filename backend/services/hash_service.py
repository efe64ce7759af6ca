"""Content fingerprints.

One SHA-256 hex digest is used for every call site (uploads, local sync,
GitHub sync and the CLI), so identical content always has the same
fingerprint regardless of where it was computed.
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

HASH_ALGORITHM = "sha256"
_CHUNK_SIZE = 8192


def hash_bytes(data: bytes) -> str:
    """Compute the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_content(content: str) -> str:
    """Compute the fingerprint of text content (UTF-8 encoded)."""
    return hash_bytes(content.encode("utf-8"))


def hash_file(file_path: Path) -> str:
    """Compute SHA-256 hash of a file."""
    sha = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest()
