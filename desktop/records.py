"""Persistent records of the local structured store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from desktop.browser import DirectoryHandle


class BackendKind(StrEnum):
    """Where an import's files live."""

    NATIVE = "native"
    BROWSER = "browser"


class StorageKind(StrEnum):
    """How edits reach the import's files."""

    DIRECT = "direct"
    GIT = "git"
    REMOTE_GIT = "remote-git"


@dataclass
class ImportRecord:
    """A root directory the user has imported.

    ``handle`` is a process-local capability for browser imports and is never
    serialized; the store re-attaches it on load. ``pending_paths`` holds
    workspace-relative paths awaiting commit, deduplicated in arrival order.
    """

    id: str
    name: str
    backend: BackendKind
    created_at: int
    path: str | None = None
    handle: DirectoryHandle | None = field(default=None, compare=False, repr=False)
    storage_kind: StorageKind | None = None
    git_repo_root: str | None = None
    remote_owner: str | None = None
    remote_repo: str | None = None
    remote_branch: str | None = None
    remote_workspace_path: str | None = None
    pending_paths: list[str] = field(default_factory=list)
    pending_file_contents: dict[str, str] = field(default_factory=dict)

    def add_pending_path(self, path: str) -> None:
        if path not in self.pending_paths:
            self.pending_paths.append(path)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "handle"}
        data["backend"] = self.backend.value
        data["storage_kind"] = self.storage_kind.value if self.storage_kind else None
        data["pending_paths"] = list(self.pending_paths)
        data["pending_file_contents"] = dict(self.pending_file_contents)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportRecord:
        values = dict(data)
        values.pop("handle", None)
        values["backend"] = BackendKind(values["backend"])
        storage_kind = values.get("storage_kind")
        values["storage_kind"] = StorageKind(storage_kind) if storage_kind else None
        values["pending_paths"] = list(values.get("pending_paths") or [])
        values["pending_file_contents"] = dict(values.get("pending_file_contents") or {})
        return cls(**values)


@dataclass
class CachedRequest:
    file_name: str
    title: str
    text: str


@dataclass
class CachedCollection:
    relative_path: str
    name: str
    requests: list[CachedRequest] = field(default_factory=list)
    icon_svg: str | None = None

    def find_request(self, file_name: str) -> CachedRequest | None:
        return next((r for r in self.requests if r.file_name == file_name), None)


@dataclass
class CachedWorkspace:
    """Editable snapshot of one import, the source of truth once it exists."""

    import_id: str
    root_name: str
    collections: list[CachedCollection] = field(default_factory=list)

    def find_collection(self, relative_path: str) -> CachedCollection | None:
        return next((c for c in self.collections if c.relative_path == relative_path), None)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedWorkspace:
        collections = [
            CachedCollection(
                relative_path=c["relative_path"],
                name=c["name"],
                requests=[CachedRequest(**r) for r in c.get("requests", [])],
                icon_svg=c.get("icon_svg"),
            )
            for c in data.get("collections", [])
        ]
        return cls(import_id=data["import_id"], root_name=data["root_name"], collections=collections)


@dataclass
class SyncQueueEntry:
    """A write waiting to reach backing storage. ``error`` holds the last failure."""

    id: str
    import_id: str
    relative_path: str
    content: str
    created_at: int
    type: str = "write"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncQueueEntry:
        return cls(**data)
