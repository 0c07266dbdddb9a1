"""Commit orchestration: turn an import's pending paths into one git commit."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from desktop.errors import CommitBlockedError, StorageUnavailableError, UnsupportedOperationError
from desktop.records import StorageKind
from desktop.storage import resolve_storage_strategy
from desktop.tree import relative_path

if TYPE_CHECKING:
    from desktop.host_bridge import HostBridge
    from desktop.locks import ImportLocks
    from desktop.records import ImportRecord
    from desktop.remote_client import RemoteBackendClient
    from desktop.repository import CollectionsRepository
    from desktop.store import LocalStore
    from desktop.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """Workspace-relative paths that went into the commit, and its message."""

    committed_paths: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def committed_count(self) -> int:
        return len(self.committed_paths)


def to_repo_paths(record: ImportRecord, paths: list[str]) -> list[str]:
    """Translate workspace-relative paths into paths relative to the git repository root."""
    if not record.git_repo_root or not record.path:
        return list(paths)
    prefix = relative_path(record.git_repo_root, record.path)
    if prefix == ".":
        return list(paths)
    return [f"{prefix}/{path}" for path in paths]


class CommitOrchestrator:
    """Commits pending edits once every queued write of the import has landed.

    Pending state is cleared only after the commit succeeded, so a failed
    attempt can be retried unchanged.
    """

    def __init__(
        self,
        store: LocalStore,
        bridge: HostBridge,
        repository: CollectionsRepository,
        sync_queue: SyncQueue,
        locks: ImportLocks,
        *,
        remote: RemoteBackendClient | None = None,
        default_message: str = "chore(eshttp): sync workspace changes",
    ) -> None:
        self._store = store
        self._bridge = bridge
        self._repository = repository
        self._queue = sync_queue
        self._locks = locks
        self._remote = remote
        self._default_message = default_message

    async def commit_workspace_changes(
        self, workspace_id: str, message: str | None = None
    ) -> CommitResult:
        commit_message = (message or "").strip() or self._default_message
        record = await self._repository.get_import_for_workspace(workspace_id)
        strategy = resolve_storage_strategy(record, self._bridge, self._remote)
        if not strategy.supports_commit:
            msg = f"Commit is not supported for {strategy.kind} storage"
            raise UnsupportedOperationError(msg)

        await self._queue.flush()
        blocking = [e for e in await self._store.list_sync_queue() if e.import_id == record.id]
        if any(entry.error for entry in blocking):
            msg = "Resolve failed sync writes before committing"
            raise CommitBlockedError(msg)
        if blocking:
            msg = "Wait for pending sync writes to finish before committing"
            raise CommitBlockedError(msg)

        # The import lock is held until pending state is cleared, so a write
        # flushed during the commit records its path again afterwards.
        async with self._locks.for_import(record.id):
            record = await self._store.get_import(record.id) or record
            paths = list(record.pending_paths)
            if not paths:
                logger.info("Nothing to commit for import %s", record.id)
                return CommitResult(committed_paths=[], message=commit_message)

            check = await strategy.check_commit(record, paths)
            if not check.ok:
                raise StorageUnavailableError(check.reason or "Commit is unavailable")

            staged = dict(record.pending_file_contents)
            if record.storage_kind == StorageKind.GIT:
                await strategy.commit(record, to_repo_paths(record, paths), commit_message)
            else:
                await strategy.commit(record, paths, commit_message)

            current = await self._store.get_import(record.id)
            if current is not None:
                self._clear_committed(current, paths, staged)
                await self._store.put_import(current)

        logger.info("Committed %d paths for import %s", len(paths), record.id)
        return CommitResult(committed_paths=paths, message=commit_message)

    @staticmethod
    def _clear_committed(record: ImportRecord, paths: list[str], staged: dict[str, str]) -> None:
        """Drop committed paths, keeping remote edits whose staged text differs from what was sent."""
        for path in paths:
            if path in record.pending_file_contents:
                if record.pending_file_contents[path] != staged.get(path):
                    continue
                del record.pending_file_contents[path]
            if path in record.pending_paths:
                record.pending_paths.remove(path)
