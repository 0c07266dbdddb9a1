"""Wiring of the sync engine components into one explicitly owned object."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from desktop.commit import CommitOrchestrator
from desktop.host_bridge import LocalHostBridge
from desktop.locks import ImportLocks
from desktop.remote_client import RemoteBackendClient
from desktop.repository import CollectionsRepository
from desktop.store import LocalStore
from desktop.sync_queue import SyncQueue

if TYPE_CHECKING:
    from types import TracebackType

    from desktop.config import DesktopSettings
    from desktop.host_bridge import HostBridge

logger = logging.getLogger(__name__)


class SyncEngine:
    """Owns the store, the sync loop and the backend client of one editor session."""

    def __init__(
        self,
        store: LocalStore,
        repository: CollectionsRepository,
        sync_queue: SyncQueue,
        commits: CommitOrchestrator,
        remote: RemoteBackendClient | None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.sync_queue = sync_queue
        self.commits = commits
        self.remote = remote

    async def __aenter__(self) -> SyncEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop the flush loop, then release the backend client and the store."""
        await self.sync_queue.stop()
        if self.remote is not None:
            await self.remote.aclose()
        await self.store.close()
        logger.info("Sync engine closed")


async def open_sync_engine(
    settings: DesktopSettings,
    *,
    bridge: HostBridge | None = None,
    remote: RemoteBackendClient | None = None,
    start_sync_loop: bool = False,
) -> SyncEngine:
    """Create the store schema and assemble an engine from ``settings``.

    Without an explicit ``remote`` a client for ``settings.backend_url`` is
    created; pass ``bridge`` to replace the local filesystem bridge.
    """
    store = LocalStore(settings.database_url, echo=settings.debug)
    await store.init()

    host = bridge if bridge is not None else LocalHostBridge()
    client = remote
    if client is None:
        client = RemoteBackendClient(
            settings.backend_url, timeout=settings.request_timeout_seconds
        )
    locks = ImportLocks()
    queue = SyncQueue(
        store,
        host,
        locks,
        remote=client,
        interval_seconds=settings.sync_interval_seconds,
    )
    repository = CollectionsRepository(store, host, queue, locks, remote=client)
    commits = CommitOrchestrator(
        store,
        host,
        repository,
        queue,
        locks,
        remote=client,
        default_message=settings.default_commit_message,
    )
    engine = SyncEngine(store, repository, queue, commits, client)
    if start_sync_loop:
        queue.start()
    logger.info("Sync engine ready (store %s)", settings.database_url)
    return engine
