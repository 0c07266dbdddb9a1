"""Write-ahead sync queue and the background loop that drains it."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from desktop.errors import NotFoundError, StorageUnavailableError
from desktop.records import StorageKind, SyncQueueEntry
from desktop.storage import resolve_storage_strategy

if TYPE_CHECKING:
    from desktop.host_bridge import HostBridge
    from desktop.locks import ImportLocks
    from desktop.remote_client import RemoteBackendClient
    from desktop.store import LocalStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FlushResult:
    applied: int
    failed: int


class SyncQueue:
    """Persists writes before they reach storage and applies them oldest-first.

    An entry is removed only after its write succeeded. A failed write stays
    queued with its error message and is retried on every later flush.
    """

    def __init__(
        self,
        store: LocalStore,
        bridge: HostBridge,
        locks: ImportLocks,
        *,
        remote: RemoteBackendClient | None = None,
        interval_seconds: float = 2.0,
    ) -> None:
        self._store = store
        self._bridge = bridge
        self._locks = locks
        self._remote = remote
        self._interval = interval_seconds
        self._flush_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def enqueue_write(self, import_id: str, relative_path: str, content: str) -> SyncQueueEntry:
        entry = SyncQueueEntry(
            id=str(uuid.uuid4()),
            import_id=import_id,
            relative_path=relative_path,
            content=content,
            created_at=now_ms(),
        )
        await self._store.put_sync_entry(entry)
        logger.debug("Queued write of %s for import %s", relative_path, import_id)
        return entry

    async def flush(self) -> FlushResult:
        """Apply every queued write once. Flushes never overlap."""
        async with self._flush_lock:
            applied = 0
            failed = 0
            for entry in await self._store.list_sync_queue():
                try:
                    await self._apply(entry)
                except Exception as exc:  # every failure is recorded on the entry
                    failed += 1
                    entry.error = str(exc) or type(exc).__name__
                    await self._store.put_sync_entry(entry)
                    logger.warning(
                        "Sync write of %s for import %s failed: %s",
                        entry.relative_path,
                        entry.import_id,
                        entry.error,
                    )
                else:
                    applied += 1
            if applied or failed:
                logger.info("Sync flush applied %d writes, %d failed", applied, failed)
            return FlushResult(applied=applied, failed=failed)

    async def _apply(self, entry: SyncQueueEntry) -> None:
        record = await self._store.get_import(entry.import_id)
        if record is None:
            msg = f"Import {entry.import_id} not found"
            raise NotFoundError(msg)
        strategy = resolve_storage_strategy(record, self._bridge, self._remote)
        check = await strategy.check_save(record, entry.relative_path, entry.content)
        if not check.ok:
            raise StorageUnavailableError(check.reason or "Storage is unavailable")
        await strategy.save(record, entry.relative_path, entry.content)

        if record.storage_kind == StorageKind.GIT:
            async with self._locks.for_import(record.id):
                current = await self._store.get_import(record.id)
                if current is not None and entry.relative_path not in current.pending_paths:
                    current.add_pending_path(entry.relative_path)
                    await self._store.put_import(current)
        await self._store.delete_sync_entry(entry.id)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("Sync flush loop iteration failed")

    def start(self) -> None:
        """Start the periodic flush. Calling it again while running does nothing."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="eshttp-sync-flush")
        logger.info("Sync loop started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        """Cancel future flushes; a flush already in progress finishes first."""
        if self._task is None:
            return
        task, self._task = self._task, None
        async with self._flush_lock:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync loop stopped")
