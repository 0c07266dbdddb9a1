"""GitHub workspace and commit schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RequestSnapshot(BaseModel):
    """A request file rehydrated from a git blob."""

    file_name: str
    title: str
    text: str


class CollectionSnapshot(BaseModel):
    """A directory of request files inside a remote workspace."""

    relative_path: str
    name: str
    icon_svg: str | None = None
    requests: list[RequestSnapshot] = Field(default_factory=list)


class WorkspaceSnapshot(BaseModel):
    """A workspace discovered under the marker directory of a repository."""

    owner: str
    repo: str
    branch: str
    workspace_path: str
    workspace_name: str
    collections: list[CollectionSnapshot]


class WorkspaceListResponse(BaseModel):
    workspaces: list[WorkspaceSnapshot]


class CommitPayload(BaseModel):
    """A validated, normalized commit request.

    ``files`` maps workspace-relative paths to their full new contents.
    """

    owner: str
    repo: str
    branch: str
    workspace_path: str
    message: str
    files: dict[str, str]


class CommitResponse(BaseModel):
    committed_files: int
    commit_sha: str


class SessionStatusResponse(BaseModel):
    authenticated: bool
    login: str | None = None
    scopes: list[str] = Field(default_factory=list)
    can_write: bool = False


class WriteScopeRequiredResponse(BaseModel):
    error: str = "WRITE_SCOPE_REQUIRED"
    reauth_url: str


class WebhookAcceptedResponse(BaseModel):
    ok: bool = True
    event: str
    delivery: str | None = None
