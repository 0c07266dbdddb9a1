"""Per-import locks serializing read-modify-write of cached snapshots and import records."""

from __future__ import annotations

import asyncio


class ImportLocks:
    """Hands out one ``asyncio.Lock`` per import id.

    Saves, icon updates, collection creation, flush bookkeeping and commit
    clearing of one import run one at a time. Different imports never block
    each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_import(self, import_id: str) -> asyncio.Lock:
        lock = self._locks.get(import_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[import_id] = lock
        return lock
