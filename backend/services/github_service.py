"""GitHub REST and OAuth client."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from backend.exceptions import GitHubAPIError, GitHubOAuthError
from backend.services.path_service import join_repo_path, normalize_relative_path
from backend.services.session_service import parse_scopes

if TYPE_CHECKING:
    import httpx

    from backend.config import Settings
    from backend.schemas.github import CommitPayload

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
_ERROR_BODY_LIMIT = 300
_BLOB_MODE = "100644"


@dataclass(frozen=True)
class GitHubToken:
    access_token: str
    scopes: list[str]


@dataclass(frozen=True)
class GitHubUser:
    id: str
    login: str


@dataclass(frozen=True)
class GitHubRepo:
    owner: str
    name: str
    default_branch: str
    private: bool = False


@dataclass(frozen=True)
class GitTreeEntry:
    path: str
    type: str
    sha: str
    mode: str = ""


@dataclass(frozen=True)
class GitTree:
    sha: str
    truncated: bool
    entries: list[GitTreeEntry]


def _segment(value: str) -> str:
    return quote(value, safe="")


async def exchange_code_for_token(
    http: httpx.AsyncClient,
    settings: Settings,
    *,
    code: str,
    code_verifier: str,
) -> GitHubToken:
    """Trade an authorization code (plus PKCE verifier) for an access token."""
    response = await http.post(
        f"{settings.github_oauth_url}/access_token",
        data={
            "client_id": settings.github_client_id,
            "client_secret": settings.github_client_secret,
            "code": code,
            "redirect_uri": settings.github_redirect_uri,
            "code_verifier": code_verifier,
        },
        headers={"Accept": "application/json"},
    )
    if response.is_error:
        msg = f"GitHub OAuth token exchange failed ({response.status_code})"
        raise GitHubOAuthError(msg)

    payload = response.json()
    access_token = payload.get("access_token")
    if not access_token:
        msg = (
            payload.get("error_description")
            or payload.get("error")
            or "GitHub OAuth token exchange failed"
        )
        raise GitHubOAuthError(msg)

    scopes = sorted(set(parse_scopes(payload.get("scope") or "")))
    return GitHubToken(access_token=access_token, scopes=scopes)


class GitHubClient:
    """Authenticated GitHub REST client for one access token.

    The underlying ``httpx.AsyncClient`` is owned by the caller so a single
    connection pool (and its timeout) can be shared across requests.
    """

    def __init__(self, http: httpx.AsyncClient, access_token: str, api_url: str) -> None:
        self._http = http
        self._access_token = access_token
        self._api_url = api_url.rstrip("/")

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        response = await self._http.request(
            method,
            f"{self._api_url}{path}",
            json=json,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._access_token}",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
        )
        if response.is_error:
            body = response.text[:_ERROR_BODY_LIMIT]
            msg = f"GitHub API request failed ({response.status_code}): {body}"
            raise GitHubAPIError(response.status_code, msg)
        return response.json()

    def _repo_path(self, owner: str, repo: str) -> str:
        return f"/repos/{_segment(owner)}/{_segment(repo)}"

    async def fetch_user(self) -> GitHubUser:
        user = await self._request("GET", "/user")
        return GitHubUser(id=str(user["id"]), login=user["login"])

    async def list_user_repos(self, max_repos: int) -> list[GitHubRepo]:
        """List the user's repositories, most recently updated first, up to ``max_repos``."""
        repos: list[GitHubRepo] = []
        page_size = min(100, max(1, max_repos))
        page = 1
        while len(repos) < max_repos:
            items = await self._request(
                "GET",
                f"/user/repos?per_page={page_size}&page={page}&sort=updated&direction=desc",
            )
            if not items:
                break
            repos.extend(
                GitHubRepo(
                    owner=item["owner"]["login"],
                    name=item["name"],
                    default_branch=item["default_branch"],
                    private=bool(item.get("private", False)),
                )
                for item in items
            )
            if len(items) < page_size:
                break
            page += 1
        return repos[:max_repos]

    async def get_tree(self, owner: str, repo: str, branch: str) -> GitTree:
        """Fetch the full recursive tree of a branch in one call."""
        data = await self._request(
            "GET",
            f"{self._repo_path(owner, repo)}/git/trees/{_segment(branch)}?recursive=1",
        )
        entries = [
            GitTreeEntry(
                path=entry["path"],
                type=entry["type"],
                sha=entry["sha"],
                mode=entry.get("mode", ""),
            )
            for entry in data.get("tree", [])
        ]
        return GitTree(sha=data["sha"], truncated=bool(data.get("truncated")), entries=entries)

    async def fetch_blob_text(self, owner: str, repo: str, sha: str) -> str:
        blob = await self._request("GET", f"{self._repo_path(owner, repo)}/git/blobs/{_segment(sha)}")
        encoding = blob.get("encoding")
        if encoding != "base64":
            msg = f"Unsupported blob encoding: {encoding}"
            raise GitHubAPIError(502, msg)
        # Undecodable bytes become U+FFFD.
        return base64.b64decode(blob["content"].replace("\n", "")).decode("utf-8", errors="replace")

    async def commit_workspace_files(self, payload: CommitPayload) -> str:
        """Create one commit on ``payload.branch`` holding every file. Returns the commit sha.

        The ref update is not forced, so a branch that moved since the parent
        commit was read makes the whole commit fail instead of clobbering it.
        """
        workspace_path = normalize_relative_path(payload.workspace_path)
        if workspace_path is None:
            raise ValueError("Invalid workspace path")
        if not payload.files:
            raise ValueError("No files provided for commit")

        repo_path = self._repo_path(payload.owner, payload.repo)
        ref = await self._request("GET", f"{repo_path}/git/ref/heads/{_segment(payload.branch)}")
        parent_sha = ref["object"]["sha"]
        parent = await self._request("GET", f"{repo_path}/git/commits/{_segment(parent_sha)}")

        tree_entries: list[dict[str, str]] = []
        for relative_path, text in payload.files.items():
            full_path = join_repo_path(workspace_path, relative_path)
            if full_path is None or full_path == ".":
                msg = f"Invalid commit path: {relative_path}"
                raise ValueError(msg)
            blob = await self._request(
                "POST",
                f"{repo_path}/git/blobs",
                json={
                    "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
                    "encoding": "base64",
                },
            )
            tree_entries.append(
                {"path": full_path, "mode": _BLOB_MODE, "type": "blob", "sha": blob["sha"]}
            )

        tree = await self._request(
            "POST",
            f"{repo_path}/git/trees",
            json={"base_tree": parent["tree"]["sha"], "tree": tree_entries},
        )
        commit = await self._request(
            "POST",
            f"{repo_path}/git/commits",
            json={"message": payload.message, "tree": tree["sha"], "parents": [parent_sha]},
        )
        await self._request(
            "PATCH",
            f"{repo_path}/git/refs/heads/{_segment(payload.branch)}",
            json={"sha": commit["sha"], "force": False},
        )
        logger.info(
            "Committed %d files to %s/%s@%s (%s)",
            len(tree_entries),
            payload.owner,
            payload.repo,
            payload.branch,
            commit["sha"],
        )
        return str(commit["sha"])
