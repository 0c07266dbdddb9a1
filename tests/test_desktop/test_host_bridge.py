"""Tests for the local filesystem host bridge."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from desktop.errors import HostBridgeError
from desktop.host_bridge import LocalHostBridge, resolve_scoped_path
from desktop.tree import request_title

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "api"
    (root / "users").mkdir(parents=True)
    (root / "users" / "nested").mkdir()
    (root / "empty").mkdir()
    (root / ".git").mkdir()
    (root / "health.http").write_text("GET /health\n")
    (root / "users" / "list.http").write_text("GET /users\n")
    (root / "users" / "create.http").write_text("POST /users\n")
    (root / "users" / "notes.md").write_text("notes\n")
    (root / "users" / "nested" / "get.http").write_text("GET /users/1\n")
    (root / ".git" / "hook.http").write_text("ignored\n")
    return root


class TestDiscovery:
    async def test_collections_sorted_and_git_skipped(
        self, bridge: LocalHostBridge, workspace: Path
    ) -> None:
        collections = await bridge.discover_collections(str(workspace), "api")
        assert [c.name for c in collections] == ["api", "users", "users/nested"]
        assert collections[0].path == str(workspace)

    async def test_missing_root(self, bridge: LocalHostBridge, tmp_path: Path) -> None:
        assert await bridge.discover_collections(str(tmp_path / "gone"), "gone") == []

    async def test_list_requests(self, bridge: LocalHostBridge, workspace: Path) -> None:
        requests = await bridge.list_requests(str(workspace / "users"))
        assert [r.title for r in requests] == ["create", "list"]
        assert requests[1].path == str(workspace / "users" / "list.http")

    def test_request_title(self) -> None:
        assert request_title("list.http") == "list"
        assert request_title("icon.svg") == "icon.svg"


class TestFiles:
    async def test_read_missing_file(self, bridge: LocalHostBridge, tmp_path: Path) -> None:
        assert await bridge.read_text_file(str(tmp_path / "missing.http")) is None

    async def test_scoped_write_creates_parents(
        self, bridge: LocalHostBridge, workspace: Path
    ) -> None:
        await bridge.write_scoped_text_file(str(workspace), "orders/new/create.http", "POST /o\n")
        assert (workspace / "orders" / "new" / "create.http").read_text() == "POST /o\n"

    @pytest.mark.parametrize("relative", ["../escape.http", "/abs.http", "a/../../b.http", ""])
    async def test_scoped_write_refuses_escape(
        self, bridge: LocalHostBridge, workspace: Path, relative: str
    ) -> None:
        with pytest.raises(HostBridgeError, match="outside the imported directory"):
            await bridge.write_scoped_text_file(str(workspace), relative, "x")

    def test_symlink_escape_refused(self, tmp_path: Path, workspace: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (workspace / "link").symlink_to(outside)
        with pytest.raises(HostBridgeError):
            resolve_scoped_path(workspace, "link/file.http")

    async def test_environment_file(self, bridge: LocalHostBridge, workspace: Path) -> None:
        (workspace / ".env.default").write_text("HOST=localhost\n")
        assert await bridge.read_environment_file(str(workspace), "default") == "HOST=localhost\n"
        assert await bridge.read_environment_file(str(workspace), "prod") is None


class TestPicker:
    async def test_without_picker_pick_is_cancelled(self, bridge: LocalHostBridge) -> None:
        assert await bridge.pick_directory() is None

    async def test_picker_result(self, tmp_path: Path) -> None:
        picker = LocalHostBridge(directory_picker=lambda: str(tmp_path))
        assert await picker.pick_directory() == str(tmp_path)


class TestGit:
    async def test_detect_repo(self, bridge: LocalHostBridge, git_repo: Path) -> None:
        assert await bridge.detect_git_repo(str(git_repo)) == str(git_repo.resolve())

    async def test_detect_outside_repo(self, bridge: LocalHostBridge, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        assert await bridge.detect_git_repo(str(plain)) is None

    async def test_commit_paths(
        self, bridge: LocalHostBridge, git_repo: Path, git: Callable[..., str]
    ) -> None:
        (git_repo / "a.http").write_text("GET /a\n")
        await bridge.git_commit_paths(str(git_repo), ["a.http"], "Add a")
        assert git("log", "-1", "--format=%s") == "Add a"

    async def test_commit_failure_wrapped(self, bridge: LocalHostBridge, git_repo: Path) -> None:
        with pytest.raises(HostBridgeError, match="git commit failed"):
            await bridge.git_commit_paths(str(git_repo), ["missing.http"], "Add")
