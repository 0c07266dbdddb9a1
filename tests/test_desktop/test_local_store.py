"""Tests for sync engine records and the local structured store."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from desktop.browser import LocalDirectoryHandle
from desktop.errors import NotFoundError
from desktop.records import (
    BackendKind,
    CachedCollection,
    CachedRequest,
    CachedWorkspace,
    ImportRecord,
    StorageKind,
    SyncQueueEntry,
)
from desktop.store import LocalStore

if TYPE_CHECKING:
    from pathlib import Path


def _record(import_id: str = "imp-1", created_at: int = 1, **kwargs: object) -> ImportRecord:
    return ImportRecord(
        id=import_id,
        name="api",
        backend=BackendKind.NATIVE,
        created_at=created_at,
        path="/work/api",
        storage_kind=StorageKind.DIRECT,
        **kwargs,  # type: ignore[arg-type]
    )


class TestImportRecord:
    def test_dict_roundtrip(self) -> None:
        record = _record(pending_paths=["a.http"], pending_file_contents={"a.http": "GET /"})
        assert ImportRecord.from_dict(record.to_dict()) == record

    def test_handle_never_serialized(self, tmp_path: Path) -> None:
        record = _record(handle=LocalDirectoryHandle(tmp_path))
        assert "handle" not in record.to_dict()

    def test_legacy_record_without_storage_kind(self) -> None:
        data = _record().to_dict()
        data["storage_kind"] = None
        del data["pending_paths"]
        loaded = ImportRecord.from_dict(data)
        assert loaded.storage_kind is None
        assert loaded.pending_paths == []

    def test_pending_paths_deduplicated_in_order(self) -> None:
        record = _record()
        for path in ("b.http", "a.http", "b.http"):
            record.add_pending_path(path)
        assert record.pending_paths == ["b.http", "a.http"]


class TestCachedWorkspace:
    def test_roundtrip_and_lookup(self) -> None:
        cache = CachedWorkspace(
            import_id="imp-1",
            root_name="api",
            collections=[
                CachedCollection(
                    relative_path="users",
                    name="users",
                    requests=[CachedRequest(file_name="list.http", title="list", text="GET /")],
                    icon_svg="<svg/>",
                )
            ],
        )
        loaded = CachedWorkspace.from_dict(cache.to_dict())
        assert loaded == cache
        collection = loaded.find_collection("users")
        assert collection is not None
        assert collection.find_request("list.http") is not None
        assert loaded.find_collection("missing") is None


class TestLocalStore:
    async def test_imports_listed_oldest_first(self, store: LocalStore) -> None:
        await store.put_import(_record("late", created_at=20))
        await store.put_import(_record("early", created_at=10))
        assert [r.id for r in await store.list_imports()] == ["early", "late"]

    async def test_put_overwrites(self, store: LocalStore) -> None:
        await store.put_import(_record())
        await store.put_import(_record(pending_paths=["x.http"]))
        loaded = await store.get_import("imp-1")
        assert loaded is not None
        assert loaded.pending_paths == ["x.http"]

    async def test_update_import(self, store: LocalStore) -> None:
        await store.put_import(_record())
        updated = await store.update_import("imp-1", storage_kind=StorageKind.GIT, git_repo_root="/work")
        assert updated.storage_kind == StorageKind.GIT
        loaded = await store.get_import("imp-1")
        assert loaded is not None
        assert loaded.git_repo_root == "/work"

    async def test_update_missing_import(self, store: LocalStore) -> None:
        with pytest.raises(NotFoundError):
            await store.update_import("nope", name="x")

    async def test_handle_reattached_on_load(self, store: LocalStore, tmp_path: Path) -> None:
        handle = LocalDirectoryHandle(tmp_path)
        record = ImportRecord(
            id="web", name="dir", backend=BackendKind.BROWSER, created_at=1, handle=handle
        )
        await store.put_import(record)
        loaded = await store.get_import("web")
        assert loaded is not None
        assert loaded.handle is handle

    async def test_handle_lost_across_store_instances(self, store: LocalStore, tmp_path: Path) -> None:
        record = ImportRecord(
            id="web",
            name="dir",
            backend=BackendKind.BROWSER,
            created_at=1,
            handle=LocalDirectoryHandle(tmp_path),
        )
        await store.put_import(record)
        other = LocalStore(f"sqlite+aiosqlite:///{tmp_path / 'desktop.db'}")
        try:
            loaded = await other.get_import("web")
        finally:
            await other.close()
        assert loaded is not None
        assert loaded.handle is None

    async def test_cached_workspace(self, store: LocalStore) -> None:
        assert await store.get_cached_workspace("imp-1") is None
        cache = CachedWorkspace(import_id="imp-1", root_name="api")
        await store.put_cached_workspace(cache)
        cache.collections.append(CachedCollection(relative_path=".", name="api"))
        await store.put_cached_workspace(cache)
        loaded = await store.get_cached_workspace("imp-1")
        assert loaded is not None
        assert [c.relative_path for c in loaded.collections] == ["."]

    async def test_sync_queue_order_and_rewrite(self, store: LocalStore) -> None:
        first = SyncQueueEntry(id="1", import_id="imp", relative_path="a.http", content="A", created_at=5)
        second = SyncQueueEntry(id="2", import_id="imp", relative_path="b.http", content="B", created_at=5)
        early = SyncQueueEntry(id="0", import_id="imp", relative_path="c.http", content="C", created_at=1)
        for entry in (first, second, early):
            await store.put_sync_entry(entry)
        assert [e.id for e in await store.list_sync_queue()] == ["0", "1", "2"]

        first.error = "disk full"
        await store.put_sync_entry(first)
        queue = await store.list_sync_queue()
        assert [e.id for e in queue] == ["0", "1", "2"]
        assert queue[1].error == "disk full"

        await store.delete_sync_entry("1")
        assert [e.id for e in await store.list_sync_queue()] == ["0", "2"]
