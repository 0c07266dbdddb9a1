"""Tests for committing pending workspace edits."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from desktop.commit import CommitOrchestrator, to_repo_paths
from desktop.errors import (
    CommitBlockedError,
    HostBridgeError,
    UnsupportedOperationError,
    WriteScopeRequiredError,
)
from desktop.host_bridge import LocalHostBridge
from desktop.records import BackendKind, ImportRecord, StorageKind
from desktop.remote_client import RemoteBackendClient
from desktop.repository import CollectionsRepository
from desktop.sync_queue import SyncQueue

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

    from desktop.locks import ImportLocks
    from desktop.store import LocalStore

FILES = {
    "health.http": "GET /health\n",
    "users/list.http": "GET /users\n",
}


@pytest.fixture
def repo_workspace(
    git_repo: Path,
    git: Callable[..., str],
    write_tree: Callable[[Path, dict[str, str]], Path],
) -> Path:
    """A committed workspace two levels below the repository root."""
    workspace = write_tree(git_repo / "workspaces" / "api", FILES)
    git("add", ".")
    git("commit", "-q", "-m", "Add workspace")
    return workspace


async def _import(repository: CollectionsRepository, path: Path) -> str:
    ws_id = await repository.import_native_directory(str(path))
    assert ws_id is not None
    await repository.load_tree()
    return ws_id.rsplit(":", 1)[1]


class TestRepoPaths:
    def test_workspace_below_repo_root(self) -> None:
        record = ImportRecord(
            id="i",
            name="api",
            backend=BackendKind.NATIVE,
            created_at=1,
            path="/repo/workspaces/api",
            git_repo_root="/repo",
        )
        assert to_repo_paths(record, ["users/list.http"]) == ["workspaces/api/users/list.http"]

    def test_workspace_is_repo_root(self) -> None:
        record = ImportRecord(
            id="i",
            name="repo",
            backend=BackendKind.NATIVE,
            created_at=1,
            path="/repo",
            git_repo_root="/repo",
        )
        assert to_repo_paths(record, ["a.http"]) == ["a.http"]


class TestLocalGitCommit:
    async def test_commits_pending_paths(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        store: LocalStore,
        repo_workspace: Path,
        git: Callable[..., str],
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        await repository.save_request_text(
            f"request:readonly:{import_id}:users:list.http", "GET /users?page=2\n"
        )
        (repo_workspace / "health.http").write_text("dirty, not pending\n")

        result = await commits.commit_workspace_changes(
            f"workspace:editable:{import_id}", "Update list"
        )

        assert result.committed_paths == ["users/list.http"]
        assert result.committed_count == 1
        assert git("log", "-1", "--format=%s") == "Update list"
        committed = git("show", "--name-only", "--format=", "HEAD").splitlines()
        assert committed == ["workspaces/api/users/list.http"]
        record = await store.get_import(import_id)
        assert record is not None
        assert record.pending_paths == []

    async def test_default_message(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        repo_workspace: Path,
        git: Callable[..., str],
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        await repository.save_request_text(f"request:readonly:{import_id}:.:health.http", "x")
        result = await commits.commit_workspace_changes(f"workspace:readonly:{import_id}", "   ")
        assert result.message == "chore(eshttp): sync workspace changes"
        assert git("log", "-1", "--format=%s") == "chore(eshttp): sync workspace changes"

    async def test_nothing_pending(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        repo_workspace: Path,
        git: Callable[..., str],
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        before = git("rev-parse", "HEAD")
        result = await commits.commit_workspace_changes(f"workspace:readonly:{import_id}")
        assert result.committed_count == 0
        assert git("rev-parse", "HEAD") == before

    async def test_failed_sync_write_blocks(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        store: LocalStore,
        repo_workspace: Path,
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        await repository.save_request_text(f"request:readonly:{import_id}:.:health.http", "x")
        await store.update_import(import_id, path=None)

        with pytest.raises(CommitBlockedError, match="Resolve failed sync writes"):
            await commits.commit_workspace_changes(f"workspace:readonly:{import_id}")

    async def test_pending_sync_write_blocks(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        sync_queue: SyncQueue,
        repo_workspace: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        await repository.save_request_text(f"request:readonly:{import_id}:.:health.http", "x")

        async def no_flush() -> None:
            return None

        monkeypatch.setattr(sync_queue, "flush", no_flush)
        with pytest.raises(CommitBlockedError, match="Wait for pending sync writes"):
            await commits.commit_workspace_changes(f"workspace:readonly:{import_id}")

    async def test_git_failure_keeps_pending(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        store: LocalStore,
        repo_workspace: Path,
    ) -> None:
        import_id = await _import(repository, repo_workspace)
        await store.update_import(import_id, pending_paths=["never-written.http"])

        with pytest.raises(HostBridgeError):
            await commits.commit_workspace_changes(f"workspace:readonly:{import_id}")

        record = await store.get_import(import_id)
        assert record is not None
        assert record.pending_paths == ["never-written.http"]

    async def test_direct_storage_unsupported(
        self,
        repository: CollectionsRepository,
        commits: CommitOrchestrator,
        tmp_path: Path,
        write_tree: Callable[[Path, dict[str, str]], Path],
    ) -> None:
        import_id = await _import(repository, write_tree(tmp_path / "plain", FILES))
        with pytest.raises(UnsupportedOperationError, match="direct-native"):
            await commits.commit_workspace_changes(f"workspace:readonly:{import_id}")


class PausingBridge(LocalHostBridge):
    """Holds a finished git commit open until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.committed = asyncio.Event()
        self.release = asyncio.Event()

    async def git_commit_paths(self, repo_root: str, paths: list[str], message: str) -> None:
        await super().git_commit_paths(repo_root, paths, message)
        self.committed.set()
        await self.release.wait()


class TestWriteDuringCommit:
    async def test_write_flushed_mid_commit_stays_pending(
        self,
        store: LocalStore,
        locks: ImportLocks,
        repo_workspace: Path,
        git: Callable[..., str],
    ) -> None:
        bridge = PausingBridge()
        queue = SyncQueue(store, bridge, locks, interval_seconds=0.05)
        repository = CollectionsRepository(store, bridge, queue, locks)
        commits = CommitOrchestrator(store, bridge, repository, queue, locks)
        import_id = await _import(repository, repo_workspace)
        request = f"request:readonly:{import_id}:users:list.http"
        await repository.save_request_text(request, "GET /v2\n")

        commit_task = asyncio.create_task(
            commits.commit_workspace_changes(f"workspace:readonly:{import_id}", "v2")
        )
        await bridge.committed.wait()

        async def edit_and_flush() -> None:
            await repository.save_request_text(request, "GET /v3\n")
            await queue.flush()

        edit_task = asyncio.create_task(edit_and_flush())
        await asyncio.sleep(0.05)
        bridge.release.set()
        result = await commit_task
        await edit_task

        assert result.committed_paths == ["users/list.http"]
        assert git("log", "-1", "--format=%s") == "v2"
        assert (repo_workspace / "users" / "list.http").read_text() == "GET /v3\n"
        assert git("diff", "--name-only") == "workspaces/api/users/list.http"
        record = await store.get_import(import_id)
        assert record is not None
        assert record.pending_paths == ["users/list.http"]


SNAPSHOT: dict[str, Any] = {
    "owner": "octo",
    "repo": "api-specs",
    "branch": "main",
    "workspace_path": ".eshttp/workspaces/api",
    "workspace_name": "api",
    "collections": [
        {
            "relative_path": ".",
            "name": "api",
            "icon_svg": None,
            "requests": [{"file_name": "list.http", "title": "list", "text": "GET /\n"}],
        }
    ],
}


class FakeBackend:
    def __init__(self) -> None:
        self.commits: list[dict[str, Any]] = []
        self.write_scope = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/github/workspaces":
            return httpx.Response(200, json={"workspaces": [SNAPSHOT]})
        if not self.write_scope:
            return httpx.Response(
                403,
                json={
                    "error": "WRITE_SCOPE_REQUIRED",
                    "reauth_url": "http://test/api/auth/github/start?intent=write",
                },
            )
        self.commits.append(json.loads(request.content))
        return httpx.Response(200, json={"committed_files": 1, "commit_sha": "sha-1"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def remote(backend: FakeBackend) -> AsyncGenerator[RemoteBackendClient]:
    async with RemoteBackendClient(
        "http://test", transport=httpx.MockTransport(backend.handler)
    ) as client:
        yield client


@pytest.fixture
def remote_repository(
    store: LocalStore,
    bridge: LocalHostBridge,
    sync_queue: SyncQueue,
    locks: ImportLocks,
    remote: RemoteBackendClient,
) -> CollectionsRepository:
    return CollectionsRepository(store, bridge, sync_queue, locks, remote=remote)


@pytest.fixture
def remote_commits(
    store: LocalStore,
    bridge: LocalHostBridge,
    remote_repository: CollectionsRepository,
    sync_queue: SyncQueue,
    locks: ImportLocks,
    remote: RemoteBackendClient,
) -> CommitOrchestrator:
    return CommitOrchestrator(
        store, bridge, remote_repository, sync_queue, locks, remote=remote
    )


async def _import_remote(repository: CollectionsRepository) -> str:
    result = await repository.import_remote_workspaces()
    assert result.first_workspace_id is not None
    await repository.load_tree()
    return result.first_workspace_id


class TestRemoteCommit:
    async def test_commits_staged_contents(
        self,
        remote_repository: CollectionsRepository,
        remote_commits: CommitOrchestrator,
        backend: FakeBackend,
        store: LocalStore,
    ) -> None:
        ws_id = await _import_remote(remote_repository)
        import_id = ws_id.rsplit(":", 1)[1]
        await remote_repository.save_request_text(f"request:editable:{import_id}:.:list.http", "v2")

        result = await remote_commits.commit_workspace_changes(ws_id, "Remote update")

        assert result.committed_paths == ["list.http"]
        (sent,) = backend.commits
        assert sent["workspace_path"] == ".eshttp/workspaces/api"
        assert sent["message"] == "Remote update"
        assert sent["files"] == {"list.http": "v2"}
        record = await store.get_import(import_id)
        assert record is not None
        assert record.pending_paths == []
        assert record.pending_file_contents == {}

    async def test_write_scope_required_keeps_pending(
        self,
        remote_repository: CollectionsRepository,
        remote_commits: CommitOrchestrator,
        backend: FakeBackend,
        store: LocalStore,
    ) -> None:
        backend.write_scope = False
        ws_id = await _import_remote(remote_repository)
        import_id = ws_id.rsplit(":", 1)[1]
        await remote_repository.save_request_text(f"request:editable:{import_id}:.:list.http", "v2")

        with pytest.raises(WriteScopeRequiredError) as excinfo:
            await remote_commits.commit_workspace_changes(ws_id)

        assert excinfo.value.reauth_url.endswith("intent=write")
        record = await store.get_import(import_id)
        assert record is not None
        assert record.pending_file_contents == {"list.http": "v2"}

    async def test_nothing_staged(
        self,
        remote_repository: CollectionsRepository,
        remote_commits: CommitOrchestrator,
        backend: FakeBackend,
    ) -> None:
        ws_id = await _import_remote(remote_repository)
        result = await remote_commits.commit_workspace_changes(ws_id)
        assert result.committed_count == 0
        assert backend.commits == []


class TestClearCommitted:
    def test_restaged_content_survives(self) -> None:
        record = ImportRecord(
            id="i",
            name="r",
            backend=BackendKind.NATIVE,
            created_at=1,
            storage_kind=StorageKind.REMOTE_GIT,
            pending_paths=["a.http", "b.http", "c.http"],
            pending_file_contents={"a.http": "committed", "b.http": "edited again", "c.http": "later"},
        )
        staged = {"a.http": "committed", "b.http": "original"}

        CommitOrchestrator._clear_committed(record, ["a.http", "b.http"], staged)

        assert record.pending_paths == ["b.http", "c.http"]
        assert record.pending_file_contents == {"b.http": "edited again", "c.http": "later"}
