"""Hub command line client: local directory sync and ideas.md push/pull."""

from __future__ import annotations

import argparse
import fnmatch
import json
import os
import shutil
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from backend.filesystem.ideas_markdown import DEFAULT_IDEAS_TEMPLATE, parse_ideas_content
from backend.services.file_service import guess_mime_type
from backend.services.hash_service import hash_content

CONFIG_FILE = ".hubrc"
MANIFEST_FILE = ".hub-manifest.json"
DEFAULT_IDEAS_FILE = "ideas.md"
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
API_KEY_HEADER = "x-hub-api-key"

DEFAULT_EXCLUDES = [
    "node_modules",
    ".git",
    ".next",
    "dist",
    "build",
    ".turbo",
    "*.log",
    ".DS_Store",
    ".env*",
]

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class CliError(Exception):
    """Configuration or usage problem; reported to the user with exit code 1."""


@dataclass
class SourceConfig:
    id: int
    name: str
    local_path: str
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDES))
    description: str | None = None


@dataclass
class HubConfig:
    server: str
    api_key: str | None = None
    sources: list[SourceConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HubConfig:
        server = data.get("server")
        if not isinstance(server, str) or not server:
            raise CliError(f"{CONFIG_FILE} has no server configured")
        sources = [SourceConfig(**entry) for entry in data.get("sources", [])]
        return cls(server=server, api_key=data.get("api_key"), sources=sources)

    def find_source(self, name: str) -> SourceConfig | None:
        for source in self.sources:
            if source.name == name:
                return source
        return None


@dataclass
class LocalFile:
    path: str
    content: str
    size: int
    file_hash: str
    mime_type: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": Path(self.path).name,
            "content": self.content,
            "size": self.size,
            "mime_type": self.mime_type,
            "file_hash": self.file_hash,
        }


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def load_config(dir_path: Path) -> HubConfig:
    """Load the CLI config, raising ``CliError`` when it is missing or unreadable."""
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        raise CliError(f"No {CONFIG_FILE} found. Run 'hub init --server <url>' first.")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CliError(f"Invalid {CONFIG_FILE}: {exc}") from exc
    if not isinstance(data, dict):
        raise CliError(f"Invalid {CONFIG_FILE}: expected a JSON object")
    try:
        return HubConfig.from_dict(data)
    except TypeError as exc:
        raise CliError(f"Invalid source entry in {CONFIG_FILE}: {exc}") from exc


def save_config(dir_path: Path, config: HubConfig) -> None:
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(asdict(config), indent=2) + "\n", encoding="utf-8")


def is_excluded(rel_path: str, patterns: list[str]) -> bool:
    """Match any path component, or the whole relative path, against the patterns."""
    parts = rel_path.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


def collect_local_files(
    root: Path,
    exclude: list[str],
    max_size: int = DEFAULT_MAX_FILE_SIZE,
) -> tuple[list[LocalFile], list[str]]:
    """Collect readable UTF-8 text files under ``root``.

    Returns the files plus human-readable notes for the ones skipped.
    """
    files: list[LocalFile] = []
    skipped: list[str] = []
    for dirpath, dirs, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        dirs[:] = sorted(
            d
            for d in dirs
            if not d.startswith(".")
            and not is_excluded(d if rel_dir == "." else f"{rel_dir}/{d}", exclude)
        )
        for filename in sorted(filenames):
            if filename in {MANIFEST_FILE, CONFIG_FILE}:
                continue
            full = Path(dirpath) / filename
            rel = full.relative_to(root).as_posix()
            if is_excluded(rel, exclude):
                continue
            try:
                size = full.stat().st_size
                if size > max_size:
                    skipped.append(f"{rel} (larger than {max_size} bytes)")
                    continue
                data = full.read_bytes()
            except OSError as exc:
                skipped.append(f"{rel} ({exc.strerror or exc})")
                continue
            if b"\x00" in data:
                skipped.append(f"{rel} (binary)")
                continue
            try:
                content = data.decode("utf-8")
            except UnicodeDecodeError:
                skipped.append(f"{rel} (not UTF-8)")
                continue
            files.append(
                LocalFile(
                    path=rel,
                    content=content,
                    size=len(data),
                    file_hash=hash_content(content),
                    mime_type=guess_mime_type(rel),
                )
            )
    return files, skipped


def load_manifest(root: Path) -> dict[str, str]:
    """Paths and hashes recorded by the last successful sync of ``root``."""
    manifest_path = root / MANIFEST_FILE
    if not manifest_path.exists():
        return {}
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        print(f"  Warning: ignoring unreadable {MANIFEST_FILE}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(key): str(value) for key, value in data.items()}


def save_manifest(root: Path, files: list[LocalFile]) -> None:
    data = {item.path: item.file_hash for item in files}
    (root / MANIFEST_FILE).write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


def compute_deleted_paths(manifest: dict[str, str], files: list[LocalFile]) -> list[str]:
    """Paths synced last time that no longer exist locally."""
    current = {item.path for item in files}
    return sorted(path for path in manifest if path not in current)


class HubClient:
    """Thin JSON client for the Hub API."""

    def __init__(
        self,
        server_url: str,
        api_key: str | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {API_KEY_HEADER: api_key} if api_key else {}
        self.client = http_client or httpx.Client(
            base_url=self.server_url,
            headers=headers,
            timeout=60.0,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HubClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        resp = self.client.request(method, url, **kwargs)
        resp.raise_for_status()
        return resp.json()

    def health(self) -> dict[str, Any]:
        result: dict[str, Any] = self._request("GET", "/api/health")
        return result

    def create_source(self, name: str, path: str, description: str | None) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "POST",
            "/api/sources",
            json={
                "name": name,
                "mode": "local_sync",
                "path": path,
                "description": description,
            },
        )
        return result

    def sync_source(
        self,
        source_id: int,
        files: list[LocalFile],
        deleted_paths: list[str],
        *,
        dry_run: bool = False,
        delete_missing: bool = False,
    ) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "POST",
            "/api/sync",
            json={
                "source_id": source_id,
                "files": [item.to_payload() for item in files],
                "deleted_paths": deleted_paths,
                "dry_run": dry_run,
                "delete_missing": delete_missing,
            },
        )
        return result

    def sync_status(self, source_id: int) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "GET", "/api/sync", params={"source_id": source_id}
        )
        return result

    def push_ideas(self, content: str, *, delete_remote: bool, dry_run: bool) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "POST",
            "/api/ideas/sync/push",
            json={"content": content, "delete_remote": delete_remote, "dry_run": dry_run},
        )
        return result

    def pull_ideas(self, content: str | None, *, merge: bool) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "POST",
            "/api/ideas/sync/pull",
            json={"content": content, "merge": merge},
        )
        return result

    def create_idea(self, content: str, tags: list[str] | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": content, "source_ref": "cli:idea"}
        if tags:
            payload["tags"] = tags
        result: dict[str, Any] = self._request("POST", "/api/ideas", json=payload)
        return result


def _print_problems(result: dict[str, Any]) -> None:
    for warning in result.get("warnings", []):
        print(f"  Warning: {warning}")
    for error in result.get("errors", []):
        print(f"  Warning: {error}")


# ── Commands ─────────────────────────────────────────


def cmd_init(args: argparse.Namespace, workdir: Path) -> int:
    config_path = workdir / CONFIG_FILE
    if config_path.exists() and not args.force:
        raise CliError(f"{CONFIG_FILE} already exists. Use --force to overwrite it.")
    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        raise CliError(str(exc)) from exc
    save_config(workdir, HubConfig(server=server_url, api_key=args.api_key))
    print(f"Initialized Hub config in {config_path}")
    return 0


def cmd_add(args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig) -> int:
    local_dir = (workdir / args.path).resolve()
    if not local_dir.is_dir():
        raise CliError(f"Not a directory: {args.path}")
    name = args.name or local_dir.name
    if config.find_source(name) is not None:
        raise CliError(f"A source named '{name}' is already configured")

    created = client.create_source(name, str(local_dir), args.description)
    config.sources.append(
        SourceConfig(
            id=int(created["id"]),
            name=name,
            local_path=args.path,
            exclude=list(args.exclude or DEFAULT_EXCLUDES),
            description=args.description,
        )
    )
    save_config(workdir, config)
    print(f"Added source '{name}' (id {created['id']}) for {local_dir}")
    return 0


def _sync_one(
    client: HubClient,
    workdir: Path,
    source: SourceConfig,
    *,
    dry_run: bool,
    delete_missing: bool,
) -> bool:
    """Sync one configured source. Returns False when the run failed outright."""
    root = (workdir / source.local_path).resolve()
    print(f"{source.name}: {root}")
    if not root.is_dir():
        print(f"  Error: local path does not exist: {root}")
        return False

    files, skipped = collect_local_files(root, source.exclude)
    for note in skipped:
        print(f"  Skip: {note}")
    deleted_paths = compute_deleted_paths(load_manifest(root), files)

    result = client.sync_source(
        source.id, files, deleted_paths, dry_run=dry_run, delete_missing=delete_missing
    )
    prefix = "Would sync" if dry_run else "Synced"
    print(
        f"  {prefix}: {result['files_added']} added, {result['files_updated']} updated, "
        f"{result['files_deleted']} deleted, {result['files_unchanged']} unchanged"
    )
    if dry_run:
        for path in result.get("added_paths", []):
            print(f"    + {path}")
        for path in result.get("updated_paths", []):
            print(f"    ~ {path}")
        for path in result.get("deleted_paths", []):
            print(f"    - {path}")
    _print_problems(result)

    if not dry_run:
        save_manifest(root, files)
    return result.get("status") != "error"


def cmd_sync(args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig) -> int:
    if args.all:
        targets = list(config.sources)
    elif args.source:
        found = config.find_source(args.source)
        if found is None:
            raise CliError(f"No source named '{args.source}' in {CONFIG_FILE}")
        targets = [found]
    elif len(config.sources) == 1:
        targets = list(config.sources)
    else:
        raise CliError("Specify a source name or --all")
    if not targets:
        raise CliError("No sources configured. Run 'hub add <path>' first.")

    failed = 0
    for source in targets:
        if not _sync_one(
            client,
            workdir,
            source,
            dry_run=args.dry_run,
            delete_missing=args.delete_missing,
        ):
            failed += 1
    if failed:
        print(f"{failed} of {len(targets)} source(s) failed to sync.")
        return 1
    return 0


def cmd_status(
    args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig
) -> int:
    print(f"Server: {config.server}")
    if not config.sources:
        print("No sources configured.")
        return 0
    for source in config.sources:
        report = client.sync_status(source.id)
        synced_at = report["source"].get("synced_at") or "never"
        print(f"{source.name} (id {source.id})")
        print(f"  Local path: {source.local_path}")
        print(f"  Files:      {report['file_count']}")
        print(f"  Last sync:  {synced_at}")
        for log in report.get("recent_logs", []):
            line = (
                f"    {log['started_at']} {log['status']}: +{log['files_added']} "
                f"~{log['files_updated']} -{log['files_deleted']}"
            )
            if log.get("error_message"):
                line += f" ({log['error_message']})"
            print(line)
    return 0


def cmd_health(
    args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig
) -> int:
    report = client.health()
    print(f"Server:   {config.server}")
    print(f"Status:   {report['status']}")
    print(f"Version:  {report['version']}")
    print(f"Database: {report['database']}")
    return 0 if report["status"] == "ok" else 1


def cmd_push_ideas(
    args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig
) -> int:
    file_path = workdir / args.file
    if not file_path.exists() and args.create:
        file_path.write_text(DEFAULT_IDEAS_TEMPLATE, encoding="utf-8")
        print(f"Created {args.file}")
    content = file_path.read_text(encoding="utf-8") if file_path.exists() else ""

    local = parse_ideas_content(content)
    print(
        f"Local ideas: {len(local.inbox)} inbox, {len(local.active)} active, "
        f"{len(local.archive)} archive"
    )

    result = client.push_ideas(content, delete_remote=args.delete_remote, dry_run=args.dry_run)
    if args.dry_run:
        print(
            f"Would create {len(result['planned_creates'])}, "
            f"update {len(result['planned_updates'])}, "
            f"delete {len(result['planned_deletes'])}; {result['unchanged']} unchanged"
        )
        for content_line in result["planned_creates"][:5]:
            print(f"    + {content_line}")
        if len(result["planned_creates"]) > 5:
            print(f"    ... and {len(result['planned_creates']) - 5} more")
    else:
        print(
            f"Pushed: {result['created']} created, {result['updated']} updated, "
            f"{result['deleted']} deleted, {result['unchanged']} unchanged"
        )
    if result.get("kept_remote"):
        print(f"  {result['kept_remote']} remote-only idea(s) kept (use --delete-remote)")
    _print_problems(result)
    return 1 if result.get("status") == "error" else 0


def _ask_pull_action() -> str:
    while True:
        answer = input("Local file exists. [o]verwrite, [m]erge or [c]ancel? ").strip().lower()
        if answer in {"o", "overwrite"}:
            return "overwrite"
        if answer in {"m", "merge"}:
            return "merge"
        if answer in {"c", "cancel", ""}:
            return "cancel"


def cmd_pull_ideas(
    args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig
) -> int:
    file_path = workdir / args.file
    exists = file_path.exists()
    merge = args.merge
    if exists and not args.force and not merge:
        action = _ask_pull_action()
        if action == "cancel":
            print("Cancelled.")
            return 0
        merge = action == "merge"

    local_content = file_path.read_text(encoding="utf-8") if exists else None
    result = client.pull_ideas(local_content if merge else None, merge=merge)

    if exists and (args.backup or merge):
        backup_path = file_path.with_name(f"{file_path.name}.backup.{int(time.time() * 1000)}")
        try:
            shutil.copyfile(file_path, backup_path)
            print(f"  Backup created: {backup_path.name}")
        except OSError as exc:
            print(f"  Warning: could not create backup: {exc}")

    file_path.write_text(result["content"], encoding="utf-8")
    total = result["inbox"] + result["active"] + result["archive"]
    print(
        f"Wrote {total} ideas to {args.file} "
        f"({result['remote_count']} remote, {result['local_only_count']} local-only)"
    )
    if result.get("archive_truncated"):
        print("  Archive section truncated in the rendered file")
    return 0


def cmd_idea(args: argparse.Namespace, workdir: Path, client: HubClient, config: HubConfig) -> int:
    content = " ".join(args.content).strip()
    if not content:
        raise CliError("Idea text is empty")
    created = client.create_idea(content, args.tags)
    print(f"Captured idea #{created['id']}: {created['content']}")
    if created.get("tags"):
        print(f"  Tags: {', '.join(created['tags'])}")
    return 0


_COMMANDS = {
    "add": cmd_add,
    "sync": cmd_sync,
    "status": cmd_status,
    "health": cmd_health,
    "push-ideas": cmd_push_ideas,
    "pull-ideas": cmd_pull_ideas,
    "idea": cmd_idea,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hub",
        description="Sync local content and ideas with a Hub server",
    )
    parser.add_argument("--dir", "-d", default=".", help="Directory holding .hubrc")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")

    init = subparsers.add_parser("init", help="Create the .hubrc configuration")
    init.add_argument("--server", "-s", required=True, help="Server URL")
    init.add_argument("--api-key", help="API key (hub_...)")
    init.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")

    add = subparsers.add_parser("add", help="Register a local directory as a source")
    add.add_argument("path")
    add.add_argument("--name", "-n")
    add.add_argument("--description")
    add.add_argument("--exclude", nargs="+", help="Glob patterns to exclude")

    sync = subparsers.add_parser("sync", help="Push local files to the server")
    sync.add_argument("source", nargs="?")
    sync.add_argument("--all", "-a", action="store_true", help="Sync every configured source")
    sync.add_argument("--dry-run", action="store_true")
    sync.add_argument(
        "--delete-missing",
        action="store_true",
        help="Delete stored files that were not pushed",
    )

    subparsers.add_parser("status", help="Show sync status of configured sources")
    subparsers.add_parser("health", help="Check server and database health")

    push = subparsers.add_parser("push-ideas", help="Push a local ideas.md")
    push.add_argument("file", nargs="?", default=DEFAULT_IDEAS_FILE)
    push.add_argument("--create", action="store_true", help="Create the file if missing")
    push.add_argument("--delete-remote", action="store_true")
    push.add_argument("--dry-run", action="store_true")

    pull = subparsers.add_parser("pull-ideas", help="Write stored ideas to ideas.md")
    pull.add_argument("file", nargs="?", default=DEFAULT_IDEAS_FILE)
    pull.add_argument("--force", "-f", action="store_true", help="Overwrite without prompting")
    pull.add_argument("--merge", action="store_true", help="Keep local-only ideas")
    pull.add_argument("--backup", action="store_true", help="Back up the file before writing")

    idea = subparsers.add_parser("idea", help="Capture an idea into the inbox")
    idea.add_argument("content", nargs="+")
    idea.add_argument("--tags", "-t", nargs="+")

    return parser


def run(argv: list[str] | None = None) -> int:
    """Parse arguments and run one command, returning the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    workdir = Path(args.dir).resolve()

    if args.command is None:
        parser.print_help()
        return 1

    try:
        if args.command == "init":
            return cmd_init(args, workdir)

        config = load_config(workdir)
        try:
            server_url = validate_server_url(config.server, args.allow_insecure_http)
        except ValueError as exc:
            raise CliError(str(exc)) from exc

        with HubClient(server_url, config.api_key) as client:
            return _COMMANDS[args.command](args, workdir, client, config)
    except CliError as exc:
        print(f"Error: {exc}")
        return 1
    except httpx.HTTPStatusError as exc:
        detail = exc.response.text[:200]
        print(f"Error: server returned {exc.response.status_code}: {detail}")
        return 1
    except httpx.HTTPError as exc:
        print(f"Error: could not reach server: {exc}")
        return 1


def main() -> None:
    """CLI entry point."""
    code = run()
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
