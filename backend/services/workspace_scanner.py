"""Discover eshttp workspaces in a user's GitHub repositories."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from backend.schemas.github import CollectionSnapshot, RequestSnapshot, WorkspaceSnapshot
from backend.services.path_service import basename, dirname, normalize_relative_path

if TYPE_CHECKING:
    from backend.services.github_service import GitHubClient, GitHubRepo, GitTreeEntry

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = ".eshttp/workspaces/"
REQUEST_SUFFIX = ".http"
ICON_FILE_NAME = "icon.svg"


def request_title(file_name: str) -> str:
    """Display title of a request file: its name without the ``.http`` suffix."""
    if file_name.endswith(REQUEST_SUFFIX):
        return file_name[: -len(REQUEST_SUFFIX)]
    return file_name


def list_workspace_roots(entries: list[GitTreeEntry]) -> list[str]:
    """Return sorted ``.eshttp/workspaces/<name>`` roots holding at least one request blob."""
    roots: set[str] = set()
    for entry in entries:
        if (
            entry.type != "blob"
            or not entry.path.endswith(REQUEST_SUFFIX)
            or not entry.path.startswith(WORKSPACE_PREFIX)
        ):
            continue
        workspace_name = entry.path[len(WORKSPACE_PREFIX) :].split("/", 1)[0]
        if workspace_name:
            roots.add(f"{WORKSPACE_PREFIX}{workspace_name}")
    return sorted(roots)


def _relative_to_workspace(workspace_path: str, full_path: str) -> str | None:
    if full_path == workspace_path:
        return "."
    if not full_path.startswith(f"{workspace_path}/"):
        return None
    return full_path[len(workspace_path) + 1 :]


class BlobTextCache:
    """Per-scan blob cache keyed by content sha.

    Identical file contents share a sha, so each distinct blob is fetched at
    most once per scan.
    """

    def __init__(self, client: GitHubClient, owner: str, repo: str) -> None:
        self._client = client
        self._owner = owner
        self._repo = repo
        self._texts: dict[str, str] = {}

    async def text_for(self, sha: str) -> str:
        cached = self._texts.get(sha)
        if cached is not None:
            return cached
        text = await self._client.fetch_blob_text(self._owner, self._repo, sha)
        self._texts[sha] = text
        return text


async def build_workspace_snapshot(
    repo: GitHubRepo,
    workspace_path: str,
    entries: list[GitTreeEntry],
    blobs: BlobTextCache,
) -> WorkspaceSnapshot | None:
    """Group a workspace's request blobs into collections. Returns None when nothing resolves."""
    sha_by_path = {
        entry.path: entry.sha
        for entry in entries
        if entry.type == "blob" and _relative_to_workspace(workspace_path, entry.path) is not None
    }
    if not sha_by_path:
        return None

    drafts: dict[str, CollectionSnapshot] = {}
    for path, sha in sha_by_path.items():
        if not path.endswith(REQUEST_SUFFIX):
            continue
        relative_path = _relative_to_workspace(workspace_path, path)
        if not relative_path or relative_path == ".":
            continue
        collection_path = normalize_relative_path(dirname(relative_path))
        if collection_path is None:
            continue

        file_name = basename(relative_path)
        draft = drafts.setdefault(
            collection_path,
            CollectionSnapshot(relative_path=collection_path, name=collection_path),
        )
        draft.requests.append(
            RequestSnapshot(
                file_name=file_name,
                title=request_title(file_name),
                text=await blobs.text_for(sha),
            )
        )

    for collection_path, draft in drafts.items():
        if collection_path == ".":
            icon_path = f"{workspace_path}/{ICON_FILE_NAME}"
        else:
            icon_path = f"{workspace_path}/{collection_path}/{ICON_FILE_NAME}"
        icon_sha = sha_by_path.get(icon_path)
        if icon_sha is not None:
            draft.icon_svg = await blobs.text_for(icon_sha)

    collections = sorted(drafts.values(), key=lambda c: c.relative_path)
    for collection in collections:
        collection.requests.sort(key=lambda r: r.file_name)
    if not collections:
        return None

    return WorkspaceSnapshot(
        owner=repo.owner,
        repo=repo.name,
        branch=repo.default_branch,
        workspace_path=workspace_path,
        workspace_name=basename(workspace_path),
        collections=collections,
    )


async def extract_workspaces_from_repos(
    client: GitHubClient, max_repos: int
) -> list[WorkspaceSnapshot]:
    """Scan the user's most recently updated repositories for workspaces.

    Truncated trees are skipped since they cannot be trusted to be complete.
    """
    repos = await client.list_user_repos(max_repos)
    snapshots: list[WorkspaceSnapshot] = []
    for repo in repos:
        tree = await client.get_tree(repo.owner, repo.name, repo.default_branch)
        if tree.truncated:
            logger.warning(
                "Skipping %s/%s: tree for %s is truncated", repo.owner, repo.name, repo.default_branch
            )
            continue

        blobs = BlobTextCache(client, repo.owner, repo.name)
        for workspace_path in list_workspace_roots(tree.entries):
            snapshot = await build_workspace_snapshot(repo, workspace_path, tree.entries, blobs)
            if snapshot is not None:
                snapshots.append(snapshot)

    logger.info("Found %d workspaces across %d repositories", len(snapshots), len(repos))
    return snapshots
