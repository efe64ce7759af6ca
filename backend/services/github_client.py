"""Minimal GitHub REST client for repository trees and blobs."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from backend.exceptions import UpstreamFetchError

logger = logging.getLogger(__name__)

USER_AGENT = "Hub-App"
DEFAULT_BRANCH = "main"

_REPO_PART = re.compile(r"^[A-Za-z0-9_.-]+$")


def parse_repo_path(path: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its parts, raising ValueError otherwise."""
    parts = path.strip().strip("/").split("/")
    if len(parts) != 2 or not all(_REPO_PART.match(part) for part in parts):
        raise ValueError(f"Invalid GitHub repository path: {path!r} (expected 'owner/repo')")
    if any(part in {".", ".."} for part in parts):
        raise ValueError(f"Invalid GitHub repository path: {path!r}")
    return parts[0], parts[1]


@dataclass
class GitHubTreeEntry:
    path: str
    type: str
    size: int | None
    url: str


@dataclass
class GitHubTree:
    entries: list[GitHubTreeEntry] = field(default_factory=list)
    truncated: bool = False

    def blobs(self) -> list[GitHubTreeEntry]:
        return [entry for entry in self.entries if entry.type == "blob"]


@dataclass
class GitHubBlob:
    content: str
    size: int


class GitHubClient:
    """Async GitHub API client.

    The caller owns ``http_client`` and closes it; an optional token is sent
    as a bearer credential. Unauthenticated calls are subject to stricter
    upstream rate limits.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str = "https://api.github.com",
        token: str | None = None,
    ) -> None:
        self._http = http_client
        self.api_url = api_url.rstrip("/")
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def _get_json(self, url: str) -> Any:
        try:
            resp = await self._http.get(url, headers=self.headers)
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"GitHub request failed: {exc}") from exc
        if resp.status_code != 200:
            raise UpstreamFetchError(
                f"GitHub API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamFetchError("GitHub API returned invalid JSON") from exc

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Repository default branch; ``main`` when it cannot be determined."""
        try:
            data = await self._get_json(f"{self.api_url}/repos/{owner}/{repo}")
        except UpstreamFetchError as exc:
            logger.warning("Falling back to %s for %s/%s: %s", DEFAULT_BRANCH, owner, repo, exc)
            return DEFAULT_BRANCH
        branch = data.get("default_branch") if isinstance(data, dict) else None
        return branch if isinstance(branch, str) and branch else DEFAULT_BRANCH

    async def get_tree(self, owner: str, repo: str, branch: str) -> GitHubTree:
        """Fetch the full recursive tree of ``branch``."""
        data = await self._get_json(
            f"{self.api_url}/repos/{owner}/{repo}/git/trees/{branch}?recursive=1"
        )
        if not isinstance(data, dict) or not isinstance(data.get("tree"), list):
            raise UpstreamFetchError("GitHub tree response is missing 'tree'")
        entries = [
            GitHubTreeEntry(
                path=str(item.get("path", "")),
                type=str(item.get("type", "")),
                size=item.get("size"),
                url=str(item.get("url", "")),
            )
            for item in data["tree"]
            if isinstance(item, dict)
        ]
        return GitHubTree(entries=entries, truncated=bool(data.get("truncated", False)))

    async def get_blob_text(self, url: str) -> GitHubBlob:
        """Fetch a blob and decode it as UTF-8 text.

        Raises UpstreamFetchError on a failed request and ValueError when the
        content is not text.
        """
        data = await self._get_json(url)
        if not isinstance(data, dict):
            raise UpstreamFetchError("GitHub blob response is not an object")
        raw = data.get("content") or ""
        encoding = data.get("encoding", "base64")
        if encoding == "base64":
            try:
                payload = base64.b64decode(raw)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("Blob content is not valid base64") from exc
        else:
            payload = str(raw).encode("utf-8")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError("Blob content is not UTF-8 text") from exc
        if "\x00" in text:
            raise ValueError("Blob content looks binary")
        return GitHubBlob(content=text, size=int(data.get("size", len(payload))))
