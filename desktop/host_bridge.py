"""Host bridge: filesystem and git commands for native imports.

The engine only talks to the ``HostBridge`` protocol. ``LocalHostBridge``
implements it on the local filesystem, running blocking work on worker
threads so the event loop never stalls.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from desktop.errors import HostBridgeError
from desktop.git_service import GitService
from desktop.tree import REQUEST_SUFFIX, request_title

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_SKIPPED_DIRS = frozenset({".git"})


@dataclass(frozen=True)
class DiscoveredCollection:
    name: str
    path: str


@dataclass(frozen=True)
class DiscoveredRequest:
    title: str
    path: str


class HostBridge(Protocol):
    async def pick_directory(self) -> str | None: ...

    async def discover_collections(
        self, root: str, workspace_name: str
    ) -> list[DiscoveredCollection]: ...

    async def list_requests(self, collection_path: str) -> list[DiscoveredRequest]: ...

    async def read_text_file(self, path: str) -> str | None: ...

    async def write_text_file(self, path: str, contents: str) -> None: ...

    async def write_scoped_text_file(self, root: str, relative_path: str, contents: str) -> None: ...

    async def detect_git_repo(self, path: str) -> str | None: ...

    async def git_commit_paths(self, repo_root: str, paths: list[str], message: str) -> None: ...

    async def read_environment_file(self, scope_path: str, env_name: str) -> str | None: ...


def resolve_scoped_path(root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` inside ``root``. Raises HostBridgeError on any escape."""
    normalized = relative_path.replace("\\", "/").strip()
    segments = [segment for segment in normalized.split("/") if segment not in ("", ".")]
    if not normalized or normalized.startswith("/") or not segments or ".." in segments:
        msg = f"Refusing to write outside the imported directory: {relative_path}"
        raise HostBridgeError(msg)
    resolved_root = root.resolve()
    target = resolved_root.joinpath(*segments).resolve()
    if not target.is_relative_to(resolved_root):
        msg = f"Refusing to write outside the imported directory: {relative_path}"
        raise HostBridgeError(msg)
    return target


def _find_collections(
    root: Path, directory: Path, workspace_name: str, out: list[DiscoveredCollection]
) -> None:
    try:
        children = sorted(directory.iterdir())
    except OSError as exc:
        msg = f"Failed to read directory {directory}: {exc}"
        raise HostBridgeError(msg) from exc

    has_requests = any(child.is_file() and child.name.endswith(REQUEST_SUFFIX) for child in children)
    if has_requests:
        relative = directory.relative_to(root).as_posix()
        name = workspace_name if relative == "." else relative
        out.append(DiscoveredCollection(name=name, path=str(directory)))

    for child in children:
        if child.is_dir() and child.name not in _SKIPPED_DIRS:
            _find_collections(root, child, workspace_name, out)


def _discover_collections(root: str, workspace_name: str) -> list[DiscoveredCollection]:
    root_path = Path(root)
    if not root_path.exists():
        return []
    found: list[DiscoveredCollection] = []
    _find_collections(root_path, root_path, workspace_name, found)
    return sorted(found, key=lambda c: c.name)


def _list_requests(collection_path: str) -> list[DiscoveredRequest]:
    directory = Path(collection_path)
    try:
        children = list(directory.iterdir())
    except OSError as exc:
        msg = f"Failed to read {collection_path}: {exc}"
        raise HostBridgeError(msg) from exc
    requests = [
        DiscoveredRequest(title=request_title(child.name), path=str(child))
        for child in children
        if child.is_file() and child.name.endswith(REQUEST_SUFFIX)
    ]
    return sorted(requests, key=lambda r: r.title)


def _read_text_file(path: str) -> str | None:
    target = Path(path)
    if not target.exists():
        return None
    return target.read_text(encoding="utf-8")


def _write_text_file(target: Path, contents: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(contents, encoding="utf-8")


def _git_commit_paths(repo_root: str, paths: list[str], message: str) -> None:
    try:
        GitService(Path(repo_root)).commit_paths(paths, message)
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        msg = f"git commit failed: {stderr or exc}"
        raise HostBridgeError(msg) from exc


def _detect_git_repo(path: str) -> str | None:
    try:
        return GitService(Path(path)).repo_root()
    except (subprocess.CalledProcessError, OSError) as exc:
        msg = f"Failed to detect git repository for {path}: {exc}"
        raise HostBridgeError(msg) from exc


class LocalHostBridge:
    """Filesystem-backed host bridge.

    ``directory_picker`` supplies the interactive folder choice; without one,
    ``pick_directory`` reports a cancelled pick.
    """

    def __init__(self, directory_picker: Callable[[], str | None] | None = None) -> None:
        self._directory_picker = directory_picker

    async def pick_directory(self) -> str | None:
        if self._directory_picker is None:
            return None
        return await asyncio.to_thread(self._directory_picker)

    async def discover_collections(
        self, root: str, workspace_name: str
    ) -> list[DiscoveredCollection]:
        """Every directory under ``root`` holding a request file, sorted by name."""
        return await asyncio.to_thread(_discover_collections, root, workspace_name)

    async def list_requests(self, collection_path: str) -> list[DiscoveredRequest]:
        return await asyncio.to_thread(_list_requests, collection_path)

    async def read_text_file(self, path: str) -> str | None:
        return await asyncio.to_thread(_read_text_file, path)

    async def write_text_file(self, path: str, contents: str) -> None:
        await asyncio.to_thread(_write_text_file, Path(path), contents)

    async def write_scoped_text_file(self, root: str, relative_path: str, contents: str) -> None:
        """Write a file under ``root``, creating parents. Paths escaping ``root`` are refused."""
        target = resolve_scoped_path(Path(root), relative_path)
        await asyncio.to_thread(_write_text_file, target, contents)

    async def detect_git_repo(self, path: str) -> str | None:
        return await asyncio.to_thread(_detect_git_repo, path)

    async def git_commit_paths(self, repo_root: str, paths: list[str], message: str) -> None:
        await asyncio.to_thread(_git_commit_paths, repo_root, paths, message)

    async def read_environment_file(self, scope_path: str, env_name: str) -> str | None:
        return await asyncio.to_thread(_read_text_file, str(Path(scope_path) / f".env.{env_name}"))
