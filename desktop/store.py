"""Local structured store: imports, editable workspace caches and the sync queue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.database import ensure_sqlite_directory
from desktop.errors import NotFoundError
from desktop.models import ImportRow, StoreBase, SyncQueueRow, WorkspaceCacheRow
from desktop.records import CachedWorkspace, ImportRecord, SyncQueueEntry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from desktop.browser import DirectoryHandle

logger = logging.getLogger(__name__)


class LocalStore:
    """Async SQLite persistence for sync engine records.

    Every call runs in its own short transaction. Browser directory handles
    cannot be persisted, so they live in an in-process map keyed by import id
    and are attached to records as they are loaded.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        ensure_sqlite_directory(database_url)
        self._engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._handles: dict[str, DirectoryHandle] = {}

    async def init(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(StoreBase.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    def attach_handle(self, import_id: str, handle: DirectoryHandle) -> None:
        self._handles[import_id] = handle

    def _hydrate_import(self, document: dict[str, Any]) -> ImportRecord:
        record = ImportRecord.from_dict(document)
        record.handle = self._handles.get(record.id)
        return record

    # ── Imports ──────────────────────────────────────────

    async def list_imports(self) -> list[ImportRecord]:
        """All imports, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ImportRow.document).order_by(ImportRow.created_at, ImportRow.id)
            )
            return [self._hydrate_import(doc) for doc in result.scalars()]

    async def get_import(self, import_id: str) -> ImportRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ImportRow, import_id)
            return self._hydrate_import(row.document) if row is not None else None

    async def put_import(self, record: ImportRecord) -> None:
        if record.handle is not None:
            self._handles[record.id] = record.handle
        async with self._session_factory() as session:
            await session.merge(
                ImportRow(id=record.id, created_at=record.created_at, document=record.to_dict())
            )
            await session.commit()

    async def update_import(self, import_id: str, **changes: Any) -> ImportRecord:
        """Apply attribute changes to a stored import and persist it."""
        record = await self.get_import(import_id)
        if record is None:
            msg = f"Import {import_id} not found"
            raise NotFoundError(msg)
        for key, value in changes.items():
            setattr(record, key, value)
        await self.put_import(record)
        return record

    # ── Workspace cache ──────────────────────────────────

    async def get_cached_workspace(self, import_id: str) -> CachedWorkspace | None:
        async with self._session_factory() as session:
            row = await session.get(WorkspaceCacheRow, import_id)
            return CachedWorkspace.from_dict(row.document) if row is not None else None

    async def put_cached_workspace(self, cache: CachedWorkspace) -> None:
        async with self._session_factory() as session:
            await session.merge(WorkspaceCacheRow(import_id=cache.import_id, document=cache.to_dict()))
            await session.commit()

    # ── Sync queue ───────────────────────────────────────

    async def list_sync_queue(self) -> list[SyncQueueEntry]:
        """Queued writes in the order they were enqueued."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SyncQueueRow.document).order_by(
                    SyncQueueRow.created_at, literal_column("sync_queue.rowid")
                )
            )
            return [SyncQueueEntry.from_dict(doc) for doc in result.scalars()]

    async def put_sync_entry(self, entry: SyncQueueEntry) -> None:
        """Insert an entry, or overwrite the stored entry with the same id."""
        async with self._session_factory() as session:
            await session.merge(
                SyncQueueRow(
                    id=entry.id,
                    import_id=entry.import_id,
                    created_at=entry.created_at,
                    document=entry.to_dict(),
                )
            )
            await session.commit()

    async def delete_sync_entry(self, entry_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(SyncQueueRow).where(SyncQueueRow.id == entry_id))
            await session.commit()
