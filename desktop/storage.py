"""Storage strategies: one interface over every place an import's files can live.

Callers pick a strategy with :func:`resolve_storage_strategy` and never branch
on backend or storage kind themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from desktop.browser import ensure_read_write_permission, write_file_to_handle
from desktop.errors import InvalidPathError, StorageUnavailableError, UnsupportedOperationError
from desktop.git_service import sanitize_commit_paths
from desktop.records import BackendKind, StorageKind
from desktop.remote_client import RemoteCommitRequest
from desktop.tree import sanitize_relative_path

if TYPE_CHECKING:
    from desktop.host_bridge import HostBridge
    from desktop.records import ImportRecord
    from desktop.remote_client import RemoteBackendClient

logger = logging.getLogger(__name__)

MISSING_PATH = "Imported path is missing for native workspace"
MISSING_HANDLE = "Imported web directory handle is missing"
NO_WRITE_PERMISSION = "No write permission for selected directory"
MISSING_REPO_ROOT = "Git repository root is missing for imported workspace"
MISSING_REMOTE_TARGET = "Remote repository details are missing for imported workspace"
REMOTE_STAGES_EDITS = "remote-git workspaces stage edits for commit instead of saving"
NOTHING_TO_COMMIT = "No staged file contents to commit"
NO_BACKEND = "Remote backend is not configured"
INVALID_PATH = "Refusing to write outside the imported directory"


def _target_path(relative_path: str) -> str:
    """Sanitized form of ``relative_path``; raises InvalidPathError when it is unsafe."""
    target = sanitize_relative_path(relative_path)
    if target is None:
        msg = f"{INVALID_PATH}: {relative_path}"
        raise InvalidPathError(msg)
    return target


class StrategyKind(StrEnum):
    DIRECT_NATIVE = "direct-native"
    DIRECT_BROWSER = "direct-browser"
    LOCAL_GIT = "local-git"
    REMOTE_GIT = "remote-git"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a precondition check; ``reason`` explains a refusal."""

    ok: bool
    reason: str | None = None

    @classmethod
    def passed(cls) -> CheckResult:
        return cls(ok=True)

    @classmethod
    def failed(cls, reason: str) -> CheckResult:
        return cls(ok=False, reason=reason)


class StorageStrategy:
    """Base strategy: saving is required, committing is optional."""

    kind: StrategyKind
    supports_commit = False

    async def check_save(self, record: ImportRecord, relative_path: str, content: str) -> CheckResult:
        raise NotImplementedError

    async def save(self, record: ImportRecord, relative_path: str, content: str) -> None:
        raise NotImplementedError

    async def check_commit(self, record: ImportRecord, paths: list[str]) -> CheckResult:
        return CheckResult.failed(f"{self.kind} storage does not support commits")

    async def commit(self, record: ImportRecord, paths: list[str], message: str) -> None:
        msg = f"{self.kind} storage does not support commits"
        raise UnsupportedOperationError(msg)


class DirectNativeStrategy(StorageStrategy):
    kind = StrategyKind.DIRECT_NATIVE

    def __init__(self, bridge: HostBridge) -> None:
        self._bridge = bridge

    async def check_save(self, record: ImportRecord, relative_path: str, content: str) -> CheckResult:
        if not record.path:
            return CheckResult.failed(MISSING_PATH)
        if sanitize_relative_path(relative_path) is None:
            return CheckResult.failed(INVALID_PATH)
        return CheckResult.passed()

    async def save(self, record: ImportRecord, relative_path: str, content: str) -> None:
        if not record.path:
            raise StorageUnavailableError(MISSING_PATH)
        target = _target_path(relative_path)
        await self._bridge.write_scoped_text_file(record.path, target, content)


class DirectBrowserStrategy(StorageStrategy):
    kind = StrategyKind.DIRECT_BROWSER

    async def check_save(self, record: ImportRecord, relative_path: str, content: str) -> CheckResult:
        if record.handle is None:
            return CheckResult.failed(MISSING_HANDLE)
        if sanitize_relative_path(relative_path) is None:
            return CheckResult.failed(INVALID_PATH)
        if not await ensure_read_write_permission(record.handle):
            return CheckResult.failed(NO_WRITE_PERMISSION)
        return CheckResult.passed()

    async def save(self, record: ImportRecord, relative_path: str, content: str) -> None:
        if record.handle is None:
            raise StorageUnavailableError(MISSING_HANDLE)
        await write_file_to_handle(record.handle, _target_path(relative_path), content)


class LocalGitStrategy(DirectNativeStrategy):
    """Saves like a direct native import; commits through the host's git."""

    kind = StrategyKind.LOCAL_GIT
    supports_commit = True

    async def check_save(self, record: ImportRecord, relative_path: str, content: str) -> CheckResult:
        if record.path and not record.git_repo_root:
            return CheckResult.failed(MISSING_REPO_ROOT)
        return await super().check_save(record, relative_path, content)

    async def check_commit(self, record: ImportRecord, paths: list[str]) -> CheckResult:
        if not record.git_repo_root:
            return CheckResult.failed(MISSING_REPO_ROOT)
        if not record.path:
            return CheckResult.failed(MISSING_PATH)
        return CheckResult.passed()

    async def commit(self, record: ImportRecord, paths: list[str], message: str) -> None:
        """Commit repo-relative ``paths`` in the import's repository. Unsafe paths are dropped."""
        if not record.git_repo_root:
            raise StorageUnavailableError(MISSING_REPO_ROOT)
        await self._bridge.git_commit_paths(
            record.git_repo_root, sanitize_commit_paths(paths), message
        )


class RemoteGitStrategy(StorageStrategy):
    """Edits are staged on the import record and committed through the backend."""

    kind = StrategyKind.REMOTE_GIT
    supports_commit = True

    def __init__(self, remote: RemoteBackendClient | None) -> None:
        self._remote = remote

    async def check_save(self, record: ImportRecord, relative_path: str, content: str) -> CheckResult:
        return CheckResult.failed(REMOTE_STAGES_EDITS)

    async def save(self, record: ImportRecord, relative_path: str, content: str) -> None:
        raise UnsupportedOperationError(REMOTE_STAGES_EDITS)

    async def check_commit(self, record: ImportRecord, paths: list[str]) -> CheckResult:
        if not (
            record.remote_owner
            and record.remote_repo
            and record.remote_branch
            and record.remote_workspace_path
        ):
            return CheckResult.failed(MISSING_REMOTE_TARGET)
        if not any(path in record.pending_file_contents for path in paths):
            return CheckResult.failed(NOTHING_TO_COMMIT)
        if self._remote is None:
            return CheckResult.failed(NO_BACKEND)
        return CheckResult.passed()

    async def commit(self, record: ImportRecord, paths: list[str], message: str) -> None:
        """Send the staged contents of ``paths`` as one remote commit."""
        if self._remote is None:
            raise StorageUnavailableError(NO_BACKEND)
        if not (
            record.remote_owner
            and record.remote_repo
            and record.remote_branch
            and record.remote_workspace_path
        ):
            raise StorageUnavailableError(MISSING_REMOTE_TARGET)
        files = {
            path: record.pending_file_contents[path]
            for path in paths
            if path in record.pending_file_contents
        }
        await self._remote.commit(
            RemoteCommitRequest(
                owner=record.remote_owner,
                repo=record.remote_repo,
                branch=record.remote_branch,
                workspace_path=record.remote_workspace_path,
                message=message,
                files=files,
            )
        )


def resolve_storage_strategy(
    record: ImportRecord,
    bridge: HostBridge,
    remote: RemoteBackendClient | None = None,
) -> StorageStrategy:
    """Pick the strategy for an import from its backend kind and storage kind alone."""
    if record.storage_kind == StorageKind.REMOTE_GIT:
        return RemoteGitStrategy(remote)
    if record.backend == BackendKind.BROWSER:
        return DirectBrowserStrategy()
    if record.storage_kind == StorageKind.GIT:
        return LocalGitStrategy(bridge)
    return DirectNativeStrategy(bridge)
