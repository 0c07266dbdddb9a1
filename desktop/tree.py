"""Workspace tree nodes, synthetic ids and the location indexes behind them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from desktop.records import BackendKind, SyncQueueEntry

EDITABLE_SUFFIX = " (editable)"
ICON_FILE_NAME = "icon.svg"
REQUEST_SUFFIX = ".http"


class WorkspaceMode(StrEnum):
    READONLY = "readonly"
    EDITABLE = "editable"


class SyncState(StrEnum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


@dataclass(frozen=True)
class Workspace:
    id: str
    name: str
    uri: str


@dataclass(frozen=True)
class Collection:
    id: str
    workspace_id: str
    name: str
    uri: str


@dataclass(frozen=True)
class RequestFile:
    id: str
    collection_id: str
    title: str
    uri: str


@dataclass
class TreeCollection:
    relative_path: str
    collection: Collection
    icon_svg: str | None
    requests: list[RequestFile] = field(default_factory=list)


@dataclass
class WorkspaceTreeNode:
    workspace: Workspace
    mode: WorkspaceMode
    import_id: str
    sync_state: SyncState
    collections: list[TreeCollection] = field(default_factory=list)


@dataclass(frozen=True)
class WorkspaceLocation:
    mode: WorkspaceMode
    backend: BackendKind
    import_id: str
    root_path: str | None = None


@dataclass(frozen=True)
class CollectionLocation:
    mode: WorkspaceMode
    backend: BackendKind
    import_id: str
    workspace_id: str
    relative_path: str
    absolute_path: str | None = None


@dataclass(frozen=True)
class RequestLocation:
    mode: WorkspaceMode
    backend: BackendKind
    import_id: str
    workspace_id: str
    collection_id: str
    file_name: str
    collection_relative_path: str
    request_relative_path: str
    absolute_path: str | None = None


@dataclass(frozen=True)
class SaveResult:
    """Editable ids an edit landed on; callers reselect these after a reload."""

    workspace_id: str
    collection_id: str
    request_id: str | None = None


def workspace_id(mode: WorkspaceMode, import_id: str) -> str:
    return f"workspace:{mode}:{import_id}"


def collection_id(mode: WorkspaceMode, import_id: str, relative_path: str) -> str:
    return f"collection:{mode}:{import_id}:{relative_path}"


def request_id(mode: WorkspaceMode, import_id: str, relative_path: str, file_name: str) -> str:
    return f"request:{mode}:{import_id}:{relative_path}:{file_name}"


def request_relative_path(collection_relative_path: str, file_name: str) -> str:
    if collection_relative_path == ".":
        return file_name
    return f"{collection_relative_path}/{file_name}"


def icon_relative_path(collection_relative_path: str) -> str:
    return request_relative_path(collection_relative_path, ICON_FILE_NAME)


def environment_relative_path(collection_relative_path: str, env_name: str) -> str:
    return request_relative_path(collection_relative_path, f".env.{env_name}")


def request_title(file_name: str) -> str:
    if file_name.endswith(REQUEST_SUFFIX):
        return file_name[: -len(REQUEST_SUFFIX)]
    return file_name


def _normalize(value: str) -> str:
    return value.replace("\\", "/")


def relative_path(root: str, value: str) -> str:
    """Path of ``value`` below ``root``; ``"."`` for the root itself or anything outside it."""
    root_norm = _normalize(root).rstrip("/")
    value_norm = _normalize(value)
    if value_norm == root_norm or not value_norm.startswith(f"{root_norm}/"):
        return "."
    return value_norm[len(root_norm) + 1 :]


def join_fs_path(base: str, *parts: str) -> str:
    output = base.rstrip("/\\")
    for part in parts:
        if not part or part == ".":
            continue
        cleaned = part.lstrip("/\\")
        output = f"{output}/{cleaned}"
    return output


def basename(path: str) -> str:
    sections = [section for section in _normalize(path).split("/") if section]
    return sections[-1] if sections else path


def sanitize_relative_path(path: str) -> str | None:
    """Normalize a path below an import root. None for empty, absolute or ``..``-bearing paths.

    Backslashes become slashes, surrounding whitespace is trimmed and ``.``
    segments are dropped.
    """
    value = _normalize(path).strip()
    if not value or value.startswith("/") or (len(value) > 1 and value[1] == ":"):
        return None
    segments = [segment for segment in value.split("/") if segment not in ("", ".")]
    if not segments or ".." in segments:
        return None
    return "/".join(segments)


def normalize_collection_path(path: str) -> str | None:
    """Clean a user-supplied collection path. None when empty or when it has ``.``/``..`` segments."""
    normalized = _normalize(path).strip("/")
    if not normalized or normalized == ".":
        return None
    segments = [segment.strip() for segment in normalized.split("/")]
    segments = [segment for segment in segments if segment]
    if not segments or any(segment in (".", "..") for segment in segments):
        return None
    return "/".join(segments)


def build_sync_state(import_id: str, queue: Iterable[SyncQueueEntry]) -> SyncState:
    entries = [entry for entry in queue if entry.import_id == import_id]
    if any(entry.error for entry in entries):
        return SyncState.ERROR
    return SyncState.PENDING if entries else SyncState.SYNCED
