"""Shared API dependencies: DB session, GitHub HTTP client, GitHub session."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.exceptions import InternalServerError
from backend.services.session_service import AuthenticatedGitHubSession, read_session


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared outbound HTTP client used for GitHub calls."""
    client: httpx.AsyncClient = request.app.state.http_client
    return client


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_encryption_key(settings: Annotated[Settings, Depends(get_settings)]) -> bytes:
    """Decoded session encryption key. A bad key is a server misconfiguration."""
    try:
        return settings.encryption_key
    except ValueError as exc:
        raise InternalServerError(str(exc)) from exc


async def get_github_session(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session: Annotated[AsyncSession, Depends(get_session)],
    key: Annotated[bytes, Depends(get_encryption_key)],
) -> AuthenticatedGitHubSession | None:
    """Resolve the session cookie, or None if absent or invalid."""
    token = request.cookies.get(settings.session_cookie_name)
    return await read_session(session, key, token)


async def require_github_session(
    github_session: Annotated[AuthenticatedGitHubSession | None, Depends(get_github_session)],
) -> AuthenticatedGitHubSession:
    """Require a GitHub session. Raises 401 if not authenticated."""
    if github_session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated with GitHub",
        )
    return github_session
