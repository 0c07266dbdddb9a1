"""GitHub workspace listing, commit and webhook endpoints."""

from __future__ import annotations

import json
import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.api.deps import (
    get_github_session,
    get_http_client,
    get_settings,
    require_github_session,
)
from backend.api.http_utils import is_same_origin, normalize_return_to, request_origin
from backend.config import Settings
from backend.schemas.github import (
    CommitResponse,
    WebhookAcceptedResponse,
    WorkspaceListResponse,
    WriteScopeRequiredResponse,
)
from backend.services.commit_validation import validate_commit_payload
from backend.services.github_service import GitHubClient
from backend.services.oauth_service import authorize_path
from backend.services.session_service import AuthenticatedGitHubSession, has_write_scope
from backend.services.webhook_service import verify_signature
from backend.services.workspace_scanner import extract_workspaces_from_repos

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/github", tags=["github"])


@router.get("/workspaces", response_model=WorkspaceListResponse)
async def list_workspaces(
    github_session: Annotated[AuthenticatedGitHubSession, Depends(require_github_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> WorkspaceListResponse:
    """Scan the caller's recently updated repositories for workspaces."""
    client = GitHubClient(http, github_session.access_token, settings.github_api_url)
    snapshots = await extract_workspaces_from_repos(client, settings.github_repo_scan_limit)
    return WorkspaceListResponse(workspaces=snapshots)


@router.post(
    "/commit",
    response_model=CommitResponse,
    responses={403: {"model": WriteScopeRequiredResponse}},
)
async def commit_files(
    request: Request,
    github_session: Annotated[AuthenticatedGitHubSession | None, Depends(get_github_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> CommitResponse | JSONResponse:
    """Commit a batch of workspace files in a single GitHub commit."""
    if not is_same_origin(request, settings.app_origin):
        raise HTTPException(status_code=403, detail="Cross-origin commit requests are not allowed")
    if github_session is None:
        raise HTTPException(status_code=401, detail="Not authenticated with GitHub")

    if not has_write_scope(github_session.scopes):
        return_to = normalize_return_to(request.headers.get("referer"), settings.app_origin)
        if return_to == "/":
            return_to = normalize_return_to(
                request.query_params.get("returnTo"), settings.app_origin
            )
        origin = request_origin(request, settings.app_origin)
        body = WriteScopeRequiredResponse(
            reauth_url=f"{origin}{authorize_path('write', return_to)}"
        )
        logger.info("Commit by %s requires write scope", github_session.github_login)
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=body.model_dump())

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raw = None
    payload = validate_commit_payload(raw)
    if payload is None:
        raise HTTPException(status_code=400, detail="Invalid commit payload")

    client = GitHubClient(http, github_session.access_token, settings.github_api_url)
    commit_sha = await client.commit_workspace_files(payload)
    return CommitResponse(committed_files=len(payload.files), commit_sha=commit_sha)


@router.post("/webhook", response_model=WebhookAcceptedResponse)
async def receive_webhook(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> JSONResponse:
    """Accept a signed GitHub webhook delivery."""
    if not settings.github_webhook_secret:
        logger.error("Webhook received but GITHUB_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret is not configured")

    signature = request.headers.get("x-hub-signature-256")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")
    event = request.headers.get("x-github-event")
    if not event:
        raise HTTPException(status_code=400, detail="Missing webhook event")

    payload = await request.body()
    if not verify_signature(payload, settings.github_webhook_secret, signature):
        logger.warning("Rejected webhook %s with invalid signature", event)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from exc

    delivery = request.headers.get("x-github-delivery")
    body = WebhookAcceptedResponse(event=event, delivery=delivery)
    if event == "ping":
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump())
    logger.info("Accepted webhook %s (delivery %s)", event, delivery)
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump())
