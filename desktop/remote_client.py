"""Client for the eshttp backend: workspace listing and remote commits."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from desktop.errors import RemoteAuthRequiredError, RemoteBackendError, WriteScopeRequiredError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass
class RemoteCommitRequest:
    owner: str
    repo: str
    branch: str
    workspace_path: str
    message: str
    files: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "repo": self.repo,
            "branch": self.branch,
            "workspace_path": self.workspace_path,
            "message": self.message,
            "files": dict(self.files),
        }


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"


class RemoteBackendClient:
    """Calls the backend on behalf of the editor.

    The backend only accepts commits from its own origin, so every request
    carries an ``Origin`` header equal to ``base_url``. Session cookies live in
    the underlying client's cookie jar.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        cookies: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            cookies=cookies,
            headers={"Origin": self.base_url},
        )

    async def __aenter__(self) -> RemoteBackendClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_workspaces(self) -> list[dict[str, Any]]:
        """Workspace snapshots of the signed-in user. Raises RemoteAuthRequiredError on 401."""
        response = await self._client.get("/api/github/workspaces")
        if response.status_code == 401:
            raise RemoteAuthRequiredError("Not authenticated with GitHub")
        if response.is_error:
            raise RemoteBackendError(response.status_code, _error_detail(response))
        workspaces: list[dict[str, Any]] = response.json().get("workspaces", [])
        return workspaces

    async def commit(self, request: RemoteCommitRequest) -> str:
        """Submit a commit. Returns the new commit sha.

        A 403 carrying ``WRITE_SCOPE_REQUIRED`` raises WriteScopeRequiredError
        with the URL that upgrades the session.
        """
        response = await self._client.post("/api/github/commit", json=request.to_json())
        if response.status_code == 403:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict) and body.get("error") == WriteScopeRequiredError.code:
                raise WriteScopeRequiredError(str(body.get("reauth_url", "")))
        if response.status_code == 401:
            raise RemoteAuthRequiredError("Not authenticated with GitHub")
        if response.is_error:
            raise RemoteBackendError(response.status_code, _error_detail(response))
        commit_sha: str = response.json()["commit_sha"]
        logger.info("Remote commit %s for %s/%s", commit_sha, request.owner, request.repo)
        return commit_sha
