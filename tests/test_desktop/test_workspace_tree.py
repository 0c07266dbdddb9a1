"""Tests for tree ids and path helpers."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from desktop.records import SyncQueueEntry
from desktop.tree import (
    SyncState,
    WorkspaceMode,
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
    sanitize_relative_path,
    workspace_id,
)


def _entry(import_id: str, error: str | None = None) -> SyncQueueEntry:
    return SyncQueueEntry(
        id=f"{import_id}-{error}",
        import_id=import_id,
        relative_path="a",
        content="",
        created_at=1,
        error=error,
    )


class TestIds:
    def test_formats(self) -> None:
        assert workspace_id(WorkspaceMode.READONLY, "i") == "workspace:readonly:i"
        assert collection_id(WorkspaceMode.EDITABLE, "i", "a/b") == "collection:editable:i:a/b"
        assert request_id(WorkspaceMode.EDITABLE, "i", ".", "x.http") == "request:editable:i:.:x.http"


class TestPaths:
    def test_request_paths(self) -> None:
        assert request_relative_path(".", "a.http") == "a.http"
        assert request_relative_path("users", "a.http") == "users/a.http"
        assert icon_relative_path(".") == "icon.svg"
        assert icon_relative_path("users") == "users/icon.svg"
        assert environment_relative_path("users", "default") == "users/.env.default"

    def test_relative_path(self) -> None:
        assert relative_path("/w/api", "/w/api") == "."
        assert relative_path("/w/api/", "/w/api/users/x") == "users/x"
        assert relative_path("C:\\w\\api", "C:\\w\\api\\users") == "users"
        assert relative_path("/w/api", "/w/apis/users") == "."

    def test_join_and_basename(self) -> None:
        assert join_fs_path("/w/api/", ".", "users", "/list.http") == "/w/api/users/list.http"
        assert basename("/w/api/") == "api"
        assert basename("C:\\w\\api") == "api"

    def test_normalize_collection_path(self) -> None:
        assert normalize_collection_path(" /a\\ b /c/ ") == "a/b/c"
        assert normalize_collection_path("a//b") == "a/b"
        assert normalize_collection_path("..") is None
        assert normalize_collection_path("  ") is None

    def test_sanitize_relative_path(self) -> None:
        assert sanitize_relative_path(" users\\./list.http ") == "users/list.http"
        assert sanitize_relative_path("a//b.http") == "a/b.http"
        for unsafe in ("", " ", ".", "/etc/passwd", "C:\\x.http", "../x.http", "a/../../b"):
            assert sanitize_relative_path(unsafe) is None

    @given(st.text(max_size=30))
    def test_normalized_paths_are_relative(self, raw: str) -> None:
        result = normalize_collection_path(raw)
        if result is not None:
            segments = result.split("/")
            assert all(segments)
            assert ".." not in segments
            assert "." not in segments
            assert not result.startswith("/")


class TestSyncState:
    def test_precedence(self) -> None:
        assert build_sync_state("a", []) == SyncState.SYNCED
        assert build_sync_state("a", [_entry("b", "boom")]) == SyncState.SYNCED
        assert build_sync_state("a", [_entry("a")]) == SyncState.PENDING
        assert build_sync_state("a", [_entry("a"), _entry("a", "boom")]) == SyncState.ERROR
