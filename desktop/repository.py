"""Import registry and the dual-view workspace tree.

Every import yields up to two workspace nodes: a readonly one read live from
its backend, and an editable one built from the cached snapshot once the
import has been edited. Ids are deterministic so they survive reloads.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from desktop.browser import (
    ensure_read_write_permission,
    read_file_from_handle,
    scan_web_collections,
)
from desktop.errors import NotFoundError, RemoteAuthRequiredError, StorageUnavailableError
from desktop.records import (
    BackendKind,
    CachedCollection,
    CachedRequest,
    CachedWorkspace,
    ImportRecord,
    StorageKind,
)
from desktop.sync_queue import now_ms
from desktop.tree import (
    EDITABLE_SUFFIX,
    ICON_FILE_NAME,
    Collection,
    CollectionLocation,
    RequestFile,
    RequestLocation,
    SaveResult,
    SyncState,
    TreeCollection,
    Workspace,
    WorkspaceLocation,
    WorkspaceMode,
    WorkspaceTreeNode,
    basename,
    build_sync_state,
    collection_id,
    environment_relative_path,
    icon_relative_path,
    join_fs_path,
    normalize_collection_path,
    relative_path,
    request_id,
    request_relative_path,
    request_title,
    workspace_id,
)

if TYPE_CHECKING:
    from desktop.browser import DirectoryHandle
    from desktop.host_bridge import HostBridge
    from desktop.locks import ImportLocks
    from desktop.remote_client import RemoteBackendClient
    from desktop.store import LocalStore
    from desktop.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

READONLY = WorkspaceMode.READONLY
EDITABLE = WorkspaceMode.EDITABLE


@dataclass(frozen=True)
class RemoteImportResult:
    imported: int
    requires_auth: bool
    first_workspace_id: str | None = None


class CollectionsRepository:
    """Creates imports, builds the workspace tree and applies edits to it.

    Lookups by id go through indexes rebuilt from scratch by ``load_tree``.
    Edits to an import's cached snapshot and pending state are serialized by
    the shared per-import locks.
    """

    def __init__(
        self,
        store: LocalStore,
        bridge: HostBridge,
        sync_queue: SyncQueue,
        locks: ImportLocks,
        *,
        remote: RemoteBackendClient | None = None,
    ) -> None:
        self._store = store
        self._bridge = bridge
        self._queue = sync_queue
        self._locks = locks
        self._remote = remote
        self._requests: dict[str, RequestLocation] = {}
        self._collections: dict[str, CollectionLocation] = {}
        self._workspaces: dict[str, WorkspaceLocation] = {}

    # ── Imports ──────────────────────────────────────────

    async def import_native_directory(self, path: str | None = None) -> str | None:
        """Register a local directory. Returns its readonly workspace id, or None if the pick was cancelled."""
        selected = path if path is not None else await self._bridge.pick_directory()
        if not selected:
            return None
        repo_root = await self._bridge.detect_git_repo(selected)
        record = ImportRecord(
            id=str(uuid.uuid4()),
            name=basename(selected),
            backend=BackendKind.NATIVE,
            created_at=now_ms(),
            path=selected,
            storage_kind=StorageKind.GIT if repo_root else StorageKind.DIRECT,
            git_repo_root=repo_root,
        )
        await self._store.put_import(record)
        logger.info("Imported %s (%s)", selected, record.storage_kind)
        return workspace_id(READONLY, record.id)

    async def import_browser_directory(self, handle: DirectoryHandle) -> str:
        if not await ensure_read_write_permission(handle):
            msg = "Read/write permission was not granted for the selected directory."
            raise StorageUnavailableError(msg)
        record = ImportRecord(
            id=str(uuid.uuid4()),
            name=handle.name,
            backend=BackendKind.BROWSER,
            created_at=now_ms(),
            handle=handle,
            storage_kind=StorageKind.DIRECT,
        )
        await self._store.put_import(record)
        logger.info("Imported browser directory %s", handle.name)
        return workspace_id(READONLY, record.id)

    async def import_remote_workspaces(self) -> RemoteImportResult:
        """Import every workspace the backend finds in the user's repositories.

        A workspace already imported from the same repository, branch and path
        is refreshed in place unless it has uncommitted edits.
        """
        if self._remote is None:
            msg = "Remote backend is not configured"
            raise StorageUnavailableError(msg)
        try:
            snapshots = await self._remote.list_workspaces()
        except RemoteAuthRequiredError:
            return RemoteImportResult(imported=0, requires_auth=True)

        existing = {
            (r.remote_owner, r.remote_repo, r.remote_branch, r.remote_workspace_path): r
            for r in await self._store.list_imports()
            if r.storage_kind == StorageKind.REMOTE_GIT
        }
        first: str | None = None
        imported = 0
        for snapshot in snapshots:
            key = (
                snapshot["owner"],
                snapshot["repo"],
                snapshot["branch"],
                snapshot["workspace_path"],
            )
            record = existing.get(key)
            if record is None:
                record = ImportRecord(
                    id=str(uuid.uuid4()),
                    name=f"{snapshot['owner']}/{snapshot['repo']}:{snapshot['workspace_name']}",
                    backend=BackendKind.NATIVE,
                    created_at=now_ms(),
                    storage_kind=StorageKind.REMOTE_GIT,
                    remote_owner=snapshot["owner"],
                    remote_repo=snapshot["repo"],
                    remote_branch=snapshot["branch"],
                    remote_workspace_path=snapshot["workspace_path"],
                )
                await self._store.put_import(record)
            if not record.pending_paths:
                async with self._locks.for_import(record.id):
                    await self._store.put_cached_workspace(_snapshot_to_cache(record, snapshot))
            imported += 1
            if first is None:
                first = workspace_id(EDITABLE, record.id)
        logger.info("Imported %d remote workspaces", imported)
        return RemoteImportResult(imported=imported, requires_auth=False, first_workspace_id=first)

    async def get_import_for_workspace(self, workspace_id_value: str) -> ImportRecord:
        location = self._workspaces.get(workspace_id_value)
        if location is None:
            msg = "Workspace not found in workspace tree"
            raise NotFoundError(msg)
        return await self._require_import(location.import_id)

    async def _require_import(self, import_id: str) -> ImportRecord:
        record = await self._store.get_import(import_id)
        if record is None:
            msg = "Import metadata not found"
            raise NotFoundError(msg)
        return record

    async def _backfill_storage_kind(self, record: ImportRecord) -> ImportRecord:
        """Give legacy native imports a storage kind, probing for an enclosing git repository."""
        if record.storage_kind is not None:
            return record
        if record.backend == BackendKind.BROWSER or not record.path:
            return await self._store.update_import(record.id, storage_kind=StorageKind.DIRECT)
        repo_root = await self._bridge.detect_git_repo(record.path)
        logger.info("Backfilled storage kind of import %s", record.id)
        if repo_root:
            return await self._store.update_import(
                record.id, storage_kind=StorageKind.GIT, git_repo_root=repo_root
            )
        return await self._store.update_import(record.id, storage_kind=StorageKind.DIRECT)

    # ── Tree ─────────────────────────────────────────────

    async def load_tree(self) -> list[WorkspaceTreeNode]:
        """Rebuild every index and return one or two nodes per import, in import order."""
        self._requests.clear()
        self._collections.clear()
        self._workspaces.clear()

        queue = await self._store.list_sync_queue()
        nodes: list[WorkspaceTreeNode] = []
        for stored in await self._store.list_imports():
            record = await self._backfill_storage_kind(stored)
            sync_state = build_sync_state(record.id, queue)

            # Remote imports have no live backend to read; only their cache is shown.
            if record.storage_kind != StorageKind.REMOTE_GIT:
                if record.backend == BackendKind.NATIVE:
                    readonly = await self._load_readonly_native(record, sync_state)
                else:
                    readonly = await self._load_readonly_browser(record, sync_state)
                if readonly is not None:
                    nodes.append(readonly)

            cache = await self._store.get_cached_workspace(record.id)
            if cache is not None:
                nodes.append(self._load_editable(cache, record, sync_state))
        return nodes

    async def _load_readonly_native(
        self, record: ImportRecord, sync_state: SyncState
    ) -> WorkspaceTreeNode | None:
        if not record.path:
            return None
        ws_id = workspace_id(READONLY, record.id)
        self._workspaces[ws_id] = WorkspaceLocation(
            READONLY, BackendKind.NATIVE, record.id, root_path=record.path
        )
        node = WorkspaceTreeNode(
            workspace=Workspace(id=ws_id, name=record.name, uri=record.path),
            mode=READONLY,
            import_id=record.id,
            sync_state=sync_state,
        )

        for discovered in await self._bridge.discover_collections(record.path, record.name):
            rel = relative_path(record.path, discovered.path)
            coll_id = collection_id(READONLY, record.id, rel)
            self._collections[coll_id] = CollectionLocation(
                READONLY, BackendKind.NATIVE, record.id, ws_id, rel, absolute_path=discovered.path
            )
            requests: list[RequestFile] = []
            for discovered_request in await self._bridge.list_requests(discovered.path):
                file_name = basename(discovered_request.path)
                req_id = request_id(READONLY, record.id, rel, file_name)
                self._requests[req_id] = RequestLocation(
                    READONLY,
                    BackendKind.NATIVE,
                    record.id,
                    ws_id,
                    coll_id,
                    file_name,
                    rel,
                    request_relative_path(rel, file_name),
                    absolute_path=discovered_request.path,
                )
                requests.append(
                    RequestFile(
                        id=req_id,
                        collection_id=coll_id,
                        title=discovered_request.title,
                        uri=discovered_request.path,
                    )
                )
            icon_svg = await self._bridge.read_text_file(join_fs_path(discovered.path, ICON_FILE_NAME))
            node.collections.append(
                TreeCollection(
                    relative_path=rel,
                    collection=Collection(
                        id=coll_id, workspace_id=ws_id, name=discovered.name, uri=discovered.path
                    ),
                    icon_svg=icon_svg,
                    requests=requests,
                )
            )
        return node

    async def _load_readonly_browser(
        self, record: ImportRecord, sync_state: SyncState
    ) -> WorkspaceTreeNode | None:
        if record.handle is None:
            return None
        ws_id = workspace_id(READONLY, record.id)
        self._workspaces[ws_id] = WorkspaceLocation(READONLY, BackendKind.BROWSER, record.id)
        node = WorkspaceTreeNode(
            workspace=Workspace(id=ws_id, name=record.name, uri=f"web://{record.id}"),
            mode=READONLY,
            import_id=record.id,
            sync_state=sync_state,
        )

        for snapshot in await scan_web_collections(record.handle):
            rel = snapshot.relative_path
            coll_id = collection_id(READONLY, record.id, rel)
            self._collections[coll_id] = CollectionLocation(
                READONLY, BackendKind.BROWSER, record.id, ws_id, rel
            )
            requests: list[RequestFile] = []
            for file_name in snapshot.request_file_names:
                req_id = request_id(READONLY, record.id, rel, file_name)
                req_rel = request_relative_path(rel, file_name)
                self._requests[req_id] = RequestLocation(
                    READONLY, BackendKind.BROWSER, record.id, ws_id, coll_id, file_name, rel, req_rel
                )
                requests.append(
                    RequestFile(
                        id=req_id,
                        collection_id=coll_id,
                        title=request_title(file_name),
                        uri=f"web://{record.id}/{req_rel}",
                    )
                )
            node.collections.append(
                TreeCollection(
                    relative_path=rel,
                    collection=Collection(
                        id=coll_id,
                        workspace_id=ws_id,
                        name=record.name if rel == "." else snapshot.name,
                        uri=f"web://{record.id}/{rel}",
                    ),
                    icon_svg=snapshot.icon_svg,
                    requests=requests,
                )
            )
        return node

    def _load_editable(
        self, cache: CachedWorkspace, record: ImportRecord, sync_state: SyncState
    ) -> WorkspaceTreeNode:
        ws_id = workspace_id(EDITABLE, record.id)
        native_root = record.path if record.backend == BackendKind.NATIVE else None
        self._workspaces[ws_id] = WorkspaceLocation(
            EDITABLE, record.backend, record.id, root_path=native_root
        )
        node = WorkspaceTreeNode(
            workspace=Workspace(
                id=ws_id, name=f"{cache.root_name}{EDITABLE_SUFFIX}", uri=f"cache://{record.id}"
            ),
            mode=EDITABLE,
            import_id=record.id,
            sync_state=sync_state,
        )

        for entry in cache.collections:
            rel = entry.relative_path
            coll_id = collection_id(EDITABLE, record.id, rel)
            self._collections[coll_id] = CollectionLocation(
                EDITABLE,
                record.backend,
                record.id,
                ws_id,
                rel,
                absolute_path=join_fs_path(native_root, rel) if native_root else None,
            )
            requests: list[RequestFile] = []
            for cached in entry.requests:
                req_id = request_id(EDITABLE, record.id, rel, cached.file_name)
                req_rel = request_relative_path(rel, cached.file_name)
                self._requests[req_id] = RequestLocation(
                    EDITABLE,
                    record.backend,
                    record.id,
                    ws_id,
                    coll_id,
                    cached.file_name,
                    rel,
                    req_rel,
                    absolute_path=join_fs_path(native_root, req_rel) if native_root else None,
                )
                requests.append(
                    RequestFile(
                        id=req_id,
                        collection_id=coll_id,
                        title=cached.title,
                        uri=f"cache://{record.id}/{req_rel}",
                    )
                )
            node.collections.append(
                TreeCollection(
                    relative_path=rel,
                    collection=Collection(
                        id=coll_id,
                        workspace_id=ws_id,
                        name=entry.name,
                        uri=f"cache://{record.id}/{rel}",
                    ),
                    icon_svg=entry.icon_svg,
                    requests=requests,
                )
            )
        return node

    # ── Reads ────────────────────────────────────────────

    async def read_request_text(self, request_id_value: str) -> str:
        location = self._requests.get(request_id_value)
        if location is None:
            msg = "Request not found in workspace tree"
            raise NotFoundError(msg)

        if location.mode == EDITABLE:
            cache = await self._store.get_cached_workspace(location.import_id)
            if cache is None:
                msg = "Editable cache workspace not found"
                raise NotFoundError(msg)
            collection = cache.find_collection(location.collection_relative_path)
            cached = collection.find_request(location.file_name) if collection else None
            if cached is None:
                msg = "Cached request not found"
                raise NotFoundError(msg)
            return cached.text

        if location.backend == BackendKind.NATIVE:
            if not location.absolute_path:
                msg = "Readonly request path is missing"
                raise StorageUnavailableError(msg)
            text = await self._bridge.read_text_file(location.absolute_path)
            if text is None:
                msg = f"Failed to read request file: {location.absolute_path}"
                raise NotFoundError(msg)
            return text

        record = await self._require_import(location.import_id)
        if record.handle is None:
            msg = "Web directory handle is missing for import"
            raise StorageUnavailableError(msg)
        text = await read_file_from_handle(record.handle, location.request_relative_path)
        if text is None:
            msg = f"Failed to read request file: {location.request_relative_path}"
            raise NotFoundError(msg)
        return text

    async def read_workspace_environment(self, workspace_id_value: str, env_name: str) -> str | None:
        """Contents of ``.env.<env_name>`` at the workspace root, or None."""
        location = self._workspaces.get(workspace_id_value)
        if location is None:
            return None
        if location.backend == BackendKind.NATIVE:
            if not location.root_path:
                return None
            return await self._bridge.read_environment_file(location.root_path, env_name)
        record = await self._store.get_import(location.import_id)
        if record is None or record.handle is None:
            return None
        return await read_file_from_handle(record.handle, environment_relative_path(".", env_name))

    async def read_collection_environment(self, collection_id_value: str, env_name: str) -> str | None:
        """Contents of ``.env.<env_name>`` in the collection directory, or None."""
        location = self._collections.get(collection_id_value)
        if location is None:
            return None
        if location.backend == BackendKind.NATIVE:
            scope = location.absolute_path
            if scope is None:
                workspace = self._workspaces.get(location.workspace_id)
                scope = workspace.root_path if workspace else None
            if not scope:
                return None
            return await self._bridge.read_environment_file(scope, env_name)
        record = await self._store.get_import(location.import_id)
        if record is None or record.handle is None:
            return None
        return await read_file_from_handle(
            record.handle, environment_relative_path(location.relative_path, env_name)
        )

    # ── Edits ────────────────────────────────────────────

    async def ensure_editable_workspace(self, import_id: str) -> CachedWorkspace:
        """Snapshot the readonly tree into the cache unless a snapshot already exists."""
        async with self._locks.for_import(import_id):
            return await self._ensure_cache(import_id)

    async def _ensure_cache(self, import_id: str) -> CachedWorkspace:
        existing = await self._store.get_cached_workspace(import_id)
        if existing is not None:
            return existing
        record = await self._require_import(import_id)
        if record.storage_kind == StorageKind.REMOTE_GIT:
            msg = "Remote workspace snapshot is missing; import it again"
            raise StorageUnavailableError(msg)
        if record.backend == BackendKind.NATIVE:
            cache = await self._snapshot_native(record)
        else:
            cache = await self._snapshot_browser(record)
        await self._store.put_cached_workspace(cache)
        logger.info("Promoted import %s to editable", import_id)
        return cache

    async def _snapshot_native(self, record: ImportRecord) -> CachedWorkspace:
        if not record.path:
            msg = "Missing imported directory path"
            raise StorageUnavailableError(msg)
        collections: list[CachedCollection] = []
        for discovered in await self._bridge.discover_collections(record.path, record.name):
            requests = [
                CachedRequest(
                    file_name=basename(r.path),
                    title=r.title,
                    text=await self._bridge.read_text_file(r.path) or "",
                )
                for r in await self._bridge.list_requests(discovered.path)
            ]
            collections.append(
                CachedCollection(
                    relative_path=relative_path(record.path, discovered.path),
                    name=discovered.name,
                    requests=requests,
                    icon_svg=await self._bridge.read_text_file(
                        join_fs_path(discovered.path, ICON_FILE_NAME)
                    ),
                )
            )
        return CachedWorkspace(import_id=record.id, root_name=record.name, collections=collections)

    async def _snapshot_browser(self, record: ImportRecord) -> CachedWorkspace:
        if record.handle is None:
            msg = "Missing imported directory handle"
            raise StorageUnavailableError(msg)
        collections: list[CachedCollection] = []
        for snapshot in await scan_web_collections(record.handle):
            requests = [
                CachedRequest(
                    file_name=file_name,
                    title=request_title(file_name),
                    text=await read_file_from_handle(
                        record.handle, request_relative_path(snapshot.relative_path, file_name)
                    )
                    or "",
                )
                for file_name in snapshot.request_file_names
            ]
            collections.append(
                CachedCollection(
                    relative_path=snapshot.relative_path,
                    name=record.name if snapshot.relative_path == "." else snapshot.name,
                    requests=requests,
                    icon_svg=snapshot.icon_svg,
                )
            )
        return CachedWorkspace(import_id=record.id, root_name=record.name, collections=collections)

    async def _record_write(self, import_id: str, relative_path_value: str, content: str) -> None:
        """Route an edit to the sync queue, or stage it for commit on remote imports.

        Must be called with the import lock held.
        """
        record = await self._require_import(import_id)
        if record.storage_kind == StorageKind.REMOTE_GIT:
            record.pending_file_contents[relative_path_value] = content
            record.add_pending_path(relative_path_value)
            await self._store.put_import(record)
            return
        await self._queue.enqueue_write(import_id, relative_path_value, content)

    async def save_request_text(self, request_id_value: str, text: str) -> SaveResult:
        """Store request text in the editable snapshot, promoting the import first if needed."""
        location = self._requests.get(request_id_value)
        if location is None:
            msg = "Request not found in workspace tree"
            raise NotFoundError(msg)
        import_id = location.import_id

        async with self._locks.for_import(import_id):
            cache = await self._ensure_cache(import_id)
            collection = cache.find_collection(location.collection_relative_path)
            if collection is None:
                msg = "Editable collection not found"
                raise NotFoundError(msg)
            cached = collection.find_request(location.file_name)
            if cached is None:
                cached = CachedRequest(
                    file_name=location.file_name, title=request_title(location.file_name), text=text
                )
                collection.requests.append(cached)
            cached.text = text
            await self._store.put_cached_workspace(cache)
            await self._record_write(import_id, location.request_relative_path, text)

        return SaveResult(
            workspace_id=workspace_id(EDITABLE, import_id),
            collection_id=collection_id(EDITABLE, import_id, location.collection_relative_path),
            request_id=request_id(
                EDITABLE, import_id, location.collection_relative_path, location.file_name
            ),
        )

    async def set_collection_icon(self, collection_id_value: str, icon_svg: str) -> SaveResult:
        """Set a collection's icon markup and write it to ``icon.svg`` beside its requests."""
        location = self._collections.get(collection_id_value)
        if location is None:
            msg = "Collection not found in workspace tree"
            raise NotFoundError(msg)
        import_id = location.import_id

        async with self._locks.for_import(import_id):
            cache = await self._ensure_cache(import_id)
            collection = cache.find_collection(location.relative_path)
            if collection is None:
                msg = "Editable collection missing"
                raise NotFoundError(msg)
            collection.icon_svg = icon_svg
            await self._store.put_cached_workspace(cache)
            await self._record_write(import_id, icon_relative_path(location.relative_path), icon_svg)

        return SaveResult(
            workspace_id=workspace_id(EDITABLE, import_id),
            collection_id=collection_id(EDITABLE, import_id, location.relative_path),
        )

    async def create_collection(self, workspace_id_value: str, path: str) -> SaveResult:
        """Add an empty collection at ``path`` and seed it with an empty ``.env.default``."""
        location = self._workspaces.get(workspace_id_value)
        if location is None:
            msg = "Workspace not found in workspace tree"
            raise NotFoundError(msg)
        rel = normalize_collection_path(path)
        if rel is None:
            msg = "Collection path must be a non-empty relative path."
            raise ValueError(msg)
        import_id = location.import_id

        async with self._locks.for_import(import_id):
            cache = await self._ensure_cache(import_id)
            if cache.find_collection(rel) is not None:
                msg = f"Collection already exists at: {rel}"
                raise ValueError(msg)
            cache.collections.append(CachedCollection(relative_path=rel, name=rel))
            cache.collections.sort(key=lambda c: c.relative_path)
            await self._store.put_cached_workspace(cache)
            await self._record_write(import_id, environment_relative_path(rel, "default"), "")

        return SaveResult(
            workspace_id=workspace_id(EDITABLE, import_id),
            collection_id=collection_id(EDITABLE, import_id, rel),
        )


def _snapshot_to_cache(record: ImportRecord, snapshot: dict[str, Any]) -> CachedWorkspace:
    return CachedWorkspace(
        import_id=record.id,
        root_name=record.name,
        collections=[
            CachedCollection(
                relative_path=c["relative_path"],
                name=c["name"],
                icon_svg=c.get("icon_svg"),
                requests=[
                    CachedRequest(file_name=r["file_name"], title=r["title"], text=r["text"])
                    for r in c.get("requests", [])
                ],
            )
            for c in snapshot.get("collections", [])
        ],
    )
