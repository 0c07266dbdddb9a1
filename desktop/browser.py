"""Sandboxed directory handles for browser imports.

A ``DirectoryHandle`` mirrors the subset of the File System Access API the
engine needs. ``LocalDirectoryHandle`` backs one with a real directory, with
an injectable permission state so denial paths can be exercised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from desktop.tree import ICON_FILE_NAME, REQUEST_SUFFIX

logger = logging.getLogger(__name__)

PermissionState = Literal["granted", "denied", "prompt"]
EntryKind = Literal["file", "directory"]


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    kind: EntryKind


class DirectoryHandle(Protocol):
    name: str

    async def list_entries(self) -> list[DirectoryEntry]: ...

    async def get_directory(self, name: str, create: bool = False) -> DirectoryHandle: ...

    async def read_file(self, name: str) -> str: ...

    async def write_file(self, name: str, contents: str) -> None: ...


@dataclass
class WebCollectionSnapshot:
    relative_path: str
    name: str
    request_file_names: list[str]
    icon_svg: str | None


class LocalDirectoryHandle:
    """A directory handle over a local path.

    ``permission`` is the current read-write grant. When it is ``"prompt"``,
    ``request_permission`` resolves it to ``prompt_result``.
    """

    def __init__(
        self,
        path: Path,
        permission: PermissionState = "granted",
        prompt_result: PermissionState = "granted",
    ) -> None:
        self.path = path
        self.name = path.name
        self.permission = permission
        self.prompt_result = prompt_result

    async def query_permission(self, mode: str = "readwrite") -> PermissionState:
        return self.permission

    async def request_permission(self, mode: str = "readwrite") -> PermissionState:
        if self.permission == "prompt":
            self.permission = self.prompt_result
        return self.permission

    async def list_entries(self) -> list[DirectoryEntry]:
        def _scan() -> list[DirectoryEntry]:
            return [
                DirectoryEntry(child.name, "directory" if child.is_dir() else "file")
                for child in self.path.iterdir()
            ]

        return await asyncio.to_thread(_scan)

    async def get_directory(self, name: str, create: bool = False) -> LocalDirectoryHandle:
        target = self.path / name
        if not target.is_dir():
            if not create:
                raise FileNotFoundError(str(target))
            await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        return LocalDirectoryHandle(target, self.permission, self.prompt_result)

    async def read_file(self, name: str) -> str:
        return await asyncio.to_thread((self.path / name).read_text, encoding="utf-8")

    async def write_file(self, name: str, contents: str) -> None:
        await asyncio.to_thread((self.path / name).write_text, contents, encoding="utf-8")


async def ensure_read_write_permission(handle: DirectoryHandle) -> bool:
    """Query, then interactively request, read-write access.

    Handles without a permission API are treated as already granted.
    """
    query = getattr(handle, "query_permission", None)
    request = getattr(handle, "request_permission", None)
    if query is None or request is None:
        return True
    if await query("readwrite") == "granted":
        return True
    return await request("readwrite") == "granted"


def _split(relative_path: str) -> list[str]:
    return [segment for segment in relative_path.replace("\\", "/").split("/") if segment]


async def read_file_from_handle(root: DirectoryHandle, relative_path: str) -> str | None:
    """Read a file below ``root``. Returns None when any part of the path is missing."""
    segments = _split(relative_path)
    if not segments:
        return None
    file_name = segments.pop()
    current = root
    try:
        for segment in segments:
            current = await current.get_directory(segment)
        return await current.read_file(file_name)
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
        return None


async def write_file_to_handle(root: DirectoryHandle, relative_path: str, contents: str) -> None:
    """Write a file below ``root``, creating intermediate directories."""
    segments = _split(relative_path)
    if not segments or ".." in segments:
        msg = f"Invalid target path: {relative_path}"
        raise ValueError(msg)
    file_name = segments.pop()
    current = root
    for segment in segments:
        current = await current.get_directory(segment, create=True)
    await current.write_file(file_name, contents)


async def scan_web_collections(
    root: DirectoryHandle, current_path: tuple[str, ...] = ()
) -> list[WebCollectionSnapshot]:
    """Walk a handle depth-first, one snapshot per directory holding request files."""
    request_file_names: list[str] = []
    directories: list[str] = []
    for entry in await root.list_entries():
        if entry.kind == "file":
            if entry.name.endswith(REQUEST_SUFFIX):
                request_file_names.append(entry.name)
        elif entry.kind == "directory" and entry.name != ".git":
            directories.append(entry.name)

    relative_path = "/".join(current_path) if current_path else "."
    results: list[WebCollectionSnapshot] = []
    if request_file_names:
        results.append(
            WebCollectionSnapshot(
                relative_path=relative_path,
                name=relative_path,
                request_file_names=sorted(request_file_names),
                icon_svg=await read_file_from_handle(root, ICON_FILE_NAME),
            )
        )

    for name in sorted(directories):
        child = await root.get_directory(name)
        results.extend(await scan_web_collections(child, (*current_path, name)))
    return results
