"""GitHub OAuth endpoints: start, callback, session status, logout."""

from __future__ import annotations

import logging
from typing import Annotated, Literal

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import (
    get_encryption_key,
    get_github_session,
    get_http_client,
    get_session,
    get_settings,
)
from backend.api.http_utils import (
    append_auth_result,
    clear_session_cookie,
    is_same_origin,
    normalize_return_to,
    set_session_cookie,
)
from backend.config import Settings
from backend.exceptions import InvalidOrExpiredStateError
from backend.schemas.github import SessionStatusResponse
from backend.services.github_service import GitHubClient, exchange_code_for_token
from backend.services.oauth_service import (
    consume_oauth_state_by_raw_state,
    create_authorization_url,
)
from backend.services.session_service import (
    AuthenticatedGitHubSession,
    create_session,
    has_write_scope,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/github", tags=["auth"])

_NO_STORE = {"Cache-Control": "no-store"}


@router.get("/start")
async def start_authorization(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    intent: Literal["read", "write"] = "read",
    return_to: Annotated[str | None, Query(alias="returnTo")] = None,
) -> RedirectResponse:
    """Begin a PKCE authorization and redirect to GitHub."""
    url = await create_authorization_url(
        session,
        settings,
        intent=intent,
        return_to=normalize_return_to(return_to, settings.app_origin),
    )
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND, headers=_NO_STORE)


@router.get("/callback")
async def authorization_callback(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    key: Annotated[bytes, Depends(get_encryption_key)],
    code: str | None = None,
    state: str | None = None,
) -> RedirectResponse:
    """Finish an authorization: consume state, exchange the code, open a session."""
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing OAuth code or state")

    try:
        oauth_state = await consume_oauth_state_by_raw_state(session, state)
    except InvalidOrExpiredStateError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    token = await exchange_code_for_token(
        http, settings, code=code, code_verifier=oauth_state.code_verifier
    )
    user = await GitHubClient(http, token.access_token, settings.github_api_url).fetch_user()

    session_token = await create_session(
        session,
        key,
        github_user_id=user.id,
        github_login=user.login,
        access_token=token.access_token,
        scopes=token.scopes,
    )

    destination = append_auth_result(oauth_state.return_to, oauth_state.intent)
    response = RedirectResponse(destination, status_code=status.HTTP_302_FOUND, headers=_NO_STORE)
    set_session_cookie(response, settings, session_token)
    return response


@router.get("/session", response_model=SessionStatusResponse)
async def session_status(
    response: Response,
    github_session: Annotated[AuthenticatedGitHubSession | None, Depends(get_github_session)],
) -> SessionStatusResponse:
    """Report whether the caller holds a GitHub session and whether it can write."""
    response.headers["Cache-Control"] = "no-store"
    if github_session is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(
        authenticated=True,
        login=github_session.github_login,
        scopes=github_session.scopes,
        can_write=has_write_scope(github_session.scopes),
    )


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Clear the session cookie."""
    if not is_same_origin(request, settings.app_origin):
        raise HTTPException(status_code=403, detail="Cross-origin logout requests are not allowed")
    response = Response(status_code=204)
    clear_session_cookie(response, settings)
    return response
