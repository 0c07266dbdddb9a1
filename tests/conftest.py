"""Shared test fixtures for eshttp."""

from __future__ import annotations

import base64
import hashlib
import json
import os
import subprocess
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.database import create_engine, init_schema
from backend.main import create_app
from backend.services.crypto_service import b64url_encode
from desktop.commit import CommitOrchestrator
from desktop.config import DesktopSettings
from desktop.host_bridge import LocalHostBridge
from desktop.locks import ImportLocks
from desktop.repository import CollectionsRepository
from desktop.store import LocalStore
from desktop.sync_queue import SyncQueue

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

TEST_ENCRYPTION_KEY = b64url_encode(bytes(range(32)))
TEST_ORIGIN = "http://test"


class FakeGitHub:
    """In-memory GitHub served through ``httpx.MockTransport``.

    Holds one user, a list of repositories with recursive trees and blobs,
    and records every request for assertions.
    """

    def __init__(self) -> None:
        self.user: dict[str, Any] = {"id": 42, "login": "octo"}
        self.token_scope = "read:user"
        self.repos: list[dict[str, Any]] = []
        self.trees: dict[str, dict[str, Any]] = {}
        self.blobs: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.created_blobs: list[str] = []
        self.ref_updates: list[dict[str, Any]] = []
        self.fail_ref_update = False
        self.raise_on_request: Exception | None = None

    def add_repo(
        self,
        name: str,
        files: dict[str, str | bytes],
        *,
        owner: str = "octo",
        branch: str = "main",
        truncated: bool = False,
    ) -> None:
        """Add a repository whose default-branch tree holds ``files``."""
        self.repos.append({"owner": {"login": owner}, "name": name, "default_branch": branch})
        entries = []
        for path, text in files.items():
            data = text if isinstance(text, bytes) else text.encode()
            sha = hashlib.sha1(data).hexdigest()
            self.blobs[sha] = data
            entries.append({"path": path, "type": "blob", "sha": sha, "mode": "100644"})
        self.trees[f"{owner}/{name}@{branch}"] = {
            "sha": f"tree-{name}",
            "truncated": truncated,
            "tree": entries,
        }

    def blob_fetches(self) -> list[str]:
        return [
            r.url.path.rsplit("/", 1)[-1]
            for r in self.requests
            if r.method == "GET" and "/git/blobs/" in r.url.path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:  # noqa: PLR0911
        self.requests.append(request)
        if self.raise_on_request is not None:
            raise self.raise_on_request
        path = request.url.path
        if path == "/login/oauth/access_token":
            return httpx.Response(200, json={"access_token": "gho_test", "scope": self.token_scope})
        if path == "/user":
            return httpx.Response(200, json=self.user)
        if path == "/user/repos":
            page = int(request.url.params.get("page", "1"))
            per_page = int(request.url.params.get("per_page", "100"))
            start = (page - 1) * per_page
            return httpx.Response(200, json=self.repos[start : start + per_page])

        parts = path.split("/")
        # /repos/{owner}/{repo}/git/...
        if len(parts) < 6 or parts[1] != "repos" or parts[4] != "git":
            return httpx.Response(404, json={"message": "Not Found"})
        owner, repo, kind = parts[2], parts[3], parts[5]
        rest = "/".join(parts[6:])

        if kind == "trees" and request.method == "GET":
            tree = self.trees.get(f"{owner}/{repo}@{rest}")
            if tree is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=tree)
        if kind == "blobs" and request.method == "GET":
            data = self.blobs[rest]
            content = base64.b64encode(data).decode()
            return httpx.Response(200, json={"encoding": "base64", "content": content})
        if kind == "ref":
            return httpx.Response(200, json={"object": {"sha": "parent-sha"}})
        if kind == "commits" and request.method == "GET":
            return httpx.Response(200, json={"sha": rest, "tree": {"sha": "base-tree"}})
        if kind == "blobs" and request.method == "POST":
            body = json.loads(request.content)
            self.created_blobs.append(base64.b64decode(body["content"]).decode())
            return httpx.Response(201, json={"sha": f"new-blob-{len(self.created_blobs)}"})
        if kind == "trees" and request.method == "POST":
            return httpx.Response(201, json={"sha": "new-tree"})
        if kind == "commits" and request.method == "POST":
            return httpx.Response(201, json={"sha": "new-commit"})
        if kind == "refs" and request.method == "PATCH":
            if self.fail_ref_update:
                return httpx.Response(422, json={"message": "Update is not a fast forward"})
            self.ref_updates.append(json.loads(request.content))
            return httpx.Response(200, json={"object": {"sha": "new-commit"}})
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
async def github_http(fake_github: FakeGitHub) -> AsyncGenerator[httpx.AsyncClient]:
    """Outbound client whose requests are answered by the fake GitHub."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_github.handler)) as client:
        yield client


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        app_origin=TEST_ORIGIN,
        github_client_id="client-id",
        github_client_secret="client-secret",
        github_webhook_secret="webhook-secret",
        github_api_url="https://api.github.test",
        github_oauth_url="https://github.test/login/oauth",
        session_encryption_key=TEST_ENCRYPTION_KEY,
    )


@pytest.fixture
async def db_session(test_settings: Settings) -> AsyncGenerator[AsyncSession]:
    """Create a test database session on a fresh schema."""
    engine, session_factory = create_engine(test_settings)
    await init_schema(engine)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@asynccontextmanager
async def create_test_client(
    settings: Settings, http_client: httpx.AsyncClient
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema, outbound
    client) because ASGITransport does not trigger it.
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.http_client = http_client
    await init_schema(engine)

    async with AsyncClient(transport=ASGITransport(app=app), base_url=TEST_ORIGIN) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
async def client(
    test_settings: Settings, github_http: httpx.AsyncClient
) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, github_http) as ac:
        yield ac


# ── Desktop ──────────────────────────────────────────


def run_git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
        env={**os.environ, "GIT_CONFIG_NOSYSTEM": "1"},
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """An initialized repository with one commit."""
    repo = (tmp_path / "repo").resolve()
    repo.mkdir()
    run_git(repo, "init", "-q")
    run_git(repo, "config", "user.email", "eshttp@localhost")
    run_git(repo, "config", "user.name", "eshttp")
    (repo / "README.md").write_text("readme\n")
    run_git(repo, "add", "README.md")
    run_git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def git(git_repo: Path) -> Callable[..., str]:
    """Run git inside ``git_repo`` and return stdout."""

    def _git(*args: str) -> str:
        return run_git(git_repo, *args)

    return _git


@pytest.fixture
def desktop_settings(tmp_path: Path) -> DesktopSettings:
    return DesktopSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'desktop.db'}",
        backend_url=TEST_ORIGIN,
        sync_interval_seconds=0.05,
    )


@pytest.fixture
async def store(desktop_settings: DesktopSettings) -> AsyncGenerator[LocalStore]:
    local_store = LocalStore(desktop_settings.database_url)
    await local_store.init()
    yield local_store
    await local_store.close()


@pytest.fixture
def bridge() -> LocalHostBridge:
    return LocalHostBridge()


@pytest.fixture
def locks() -> ImportLocks:
    return ImportLocks()


@pytest.fixture
def sync_queue(store: LocalStore, bridge: LocalHostBridge, locks: ImportLocks) -> SyncQueue:
    return SyncQueue(store, bridge, locks, interval_seconds=0.05)


@pytest.fixture
def repository(
    store: LocalStore, bridge: LocalHostBridge, sync_queue: SyncQueue, locks: ImportLocks
) -> CollectionsRepository:
    return CollectionsRepository(store, bridge, sync_queue, locks)


@pytest.fixture
def commits(
    store: LocalStore,
    bridge: LocalHostBridge,
    repository: CollectionsRepository,
    sync_queue: SyncQueue,
    locks: ImportLocks,
) -> CommitOrchestrator:
    return CommitOrchestrator(store, bridge, repository, sync_queue, locks)


@pytest.fixture
def write_tree() -> Callable[[Path, dict[str, str]], Path]:
    """Write files (relative path to text) below a root directory and return the root."""

    def _write(root: Path, files: dict[str, str]) -> Path:
        for relative, text in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text)
        return root

    return _write
