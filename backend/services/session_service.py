"""GitHub sessions: encrypted access tokens keyed by hashed cookie tokens."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import update

from backend.models.oauth import GitHubSession
from backend.services.crypto_service import (
    decrypt_secret,
    encrypt_secret,
    random_token,
    sha256_b64url,
)
from backend.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_WRITE_SCOPES = frozenset({"repo", "public_repo"})
_SCOPE_SEPARATOR_RE = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class AuthenticatedGitHubSession:
    github_user_id: str
    github_login: str
    scopes: list[str]
    access_token: str


def normalize_scopes(scopes: Iterable[str]) -> str:
    """Deduplicate, sort and space-join a scope list."""
    return " ".join(sorted({scope.strip() for scope in scopes if scope.strip()}))


def parse_scopes(scopes_text: str) -> list[str]:
    """Split a scope string on whitespace or commas, as GitHub reports them."""
    return [scope for scope in _SCOPE_SEPARATOR_RE.split(scopes_text) if scope]


def has_write_scope(scopes: Iterable[str]) -> bool:
    return not _WRITE_SCOPES.isdisjoint(scopes)


async def save_github_session(
    session: AsyncSession,
    *,
    session_hash: str,
    github_user_id: str,
    github_login: str,
    access_token_cipher: str,
    scopes: Iterable[str],
) -> None:
    """Insert or refresh a session row."""
    now = format_iso(now_utc())
    record = await session.get(GitHubSession, session_hash)
    if record is None:
        record = GitHubSession(session_hash=session_hash, created_at=now)
        session.add(record)
    record.github_user_id = github_user_id
    record.github_login = github_login
    record.access_token_cipher = access_token_cipher
    record.scopes_text = normalize_scopes(scopes)
    record.updated_at = now
    record.last_used_at = now
    await session.commit()


async def get_github_session(session: AsyncSession, session_hash: str) -> GitHubSession | None:
    return await session.get(GitHubSession, session_hash)


async def touch_github_session(session: AsyncSession, session_hash: str) -> None:
    """Bump the usage timestamps of a session."""
    now = format_iso(now_utc())
    await session.execute(
        update(GitHubSession)
        .where(GitHubSession.session_hash == session_hash)
        .values(last_used_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def create_session(
    session: AsyncSession,
    key: bytes,
    *,
    github_user_id: str,
    github_login: str,
    access_token: str,
    scopes: Iterable[str],
) -> str:
    """Store a new session and return its plaintext token for the cookie.

    Only the token's hash is persisted; the access token is stored encrypted.
    """
    session_token = random_token(32)
    await save_github_session(
        session,
        session_hash=sha256_b64url(session_token),
        github_user_id=github_user_id,
        github_login=github_login,
        access_token_cipher=encrypt_secret(access_token, key),
        scopes=scopes,
    )
    logger.info("Created GitHub session for %s", github_login)
    return session_token


async def read_session(
    session: AsyncSession, key: bytes, session_token: str | None
) -> AuthenticatedGitHubSession | None:
    """Resolve a cookie token to an authenticated session, touching it on success."""
    if not session_token:
        return None

    session_hash = sha256_b64url(session_token)
    record = await get_github_session(session, session_hash)
    if record is None:
        return None

    try:
        access_token = decrypt_secret(record.access_token_cipher, key)
    except ValueError:
        logger.warning("Discarding GitHub session %s: token could not be decrypted", session_hash)
        return None

    result = AuthenticatedGitHubSession(
        github_user_id=record.github_user_id,
        github_login=record.github_login,
        scopes=parse_scopes(record.scopes_text),
        access_token=access_token,
    )
    await touch_github_session(session, session_hash)
    return result
