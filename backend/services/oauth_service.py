"""GitHub OAuth authorization: PKCE, single-use state, authorize URLs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal
from urllib.parse import urlencode

from sqlalchemy import and_, delete, or_, update

from backend.exceptions import InvalidOrExpiredStateError
from backend.models.oauth import OAuthState
from backend.services.crypto_service import pkce_code_challenge, random_token, sha256_b64url
from backend.services.datetime_service import format_iso, iso_ago, iso_in, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.config import Settings

logger = logging.getLogger(__name__)

AuthIntent = Literal["read", "write"]

_USED_STATE_RETENTION_SECONDS = 60 * 60 * 24


@dataclass(frozen=True)
class ConsumedOAuthState:
    code_verifier: str
    intent: AuthIntent
    return_to: str


def scopes_for_intent(intent: AuthIntent) -> list[str]:
    """GitHub scopes requested for an authorization intent."""
    if intent == "write":
        return ["read:user", "repo"]
    return ["read:user"]


def authorize_path(intent: AuthIntent, return_to: str) -> str:
    """Backend-relative path that starts an authorization with the given intent."""
    query = urlencode({"intent": intent, "returnTo": return_to})
    return f"/api/auth/github/start?{query}"


async def save_oauth_state(
    session: AsyncSession,
    *,
    state_hash: str,
    code_verifier: str,
    intent: AuthIntent,
    return_to: str,
    ttl_seconds: int,
) -> None:
    """Upsert a pending state, then sweep expired and day-old used states."""
    now = format_iso(now_utc())
    record = await session.get(OAuthState, state_hash)
    if record is None:
        record = OAuthState(state_hash=state_hash, created_at=now)
        session.add(record)
    record.code_verifier = code_verifier
    record.intent = intent
    record.return_to = return_to
    record.expires_at = iso_in(ttl_seconds)
    record.used_at = None

    await session.execute(
        delete(OAuthState)
        .where(
            or_(
                OAuthState.expires_at < now,
                and_(
                    OAuthState.used_at.is_not(None),
                    OAuthState.used_at < iso_ago(_USED_STATE_RETENTION_SECONDS),
                ),
            )
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def consume_oauth_state(session: AsyncSession, state_hash: str) -> ConsumedOAuthState | None:
    """Atomically mark a state as used.

    Succeeds only while the state is unused and unexpired. The check and the
    update are one conditional statement, so two racing callbacks cannot both
    win.
    """
    now = format_iso(now_utc())
    stmt = (
        update(OAuthState)
        .where(
            OAuthState.state_hash == state_hash,
            OAuthState.used_at.is_(None),
            OAuthState.expires_at > now,
        )
        .values(used_at=now)
        .returning(OAuthState.code_verifier, OAuthState.intent, OAuthState.return_to)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    row = result.first()
    await session.commit()
    if row is None:
        return None
    intent: AuthIntent = "write" if row.intent == "write" else "read"
    return ConsumedOAuthState(
        code_verifier=row.code_verifier, intent=intent, return_to=row.return_to
    )


async def create_authorization_url(
    session: AsyncSession,
    settings: Settings,
    *,
    intent: AuthIntent,
    return_to: str,
) -> str:
    """Persist a fresh state/verifier pair and return the GitHub authorize URL.

    ``return_to`` must already be normalized to a same-origin target.
    """
    state = random_token(32)
    code_verifier = random_token(64)

    await save_oauth_state(
        session,
        state_hash=sha256_b64url(state),
        code_verifier=code_verifier,
        intent=intent,
        return_to=return_to,
        ttl_seconds=settings.oauth_state_ttl_seconds,
    )

    params = {
        "client_id": settings.github_client_id,
        "redirect_uri": settings.github_redirect_uri,
        "scope": " ".join(scopes_for_intent(intent)),
        "state": state,
        "code_challenge": pkce_code_challenge(code_verifier),
        "code_challenge_method": "S256",
    }
    if intent == "write":
        params["prompt"] = "consent"

    logger.info("Issued GitHub OAuth state (intent=%s)", intent)
    return f"{settings.github_oauth_url}/authorize?{urlencode(params)}"


async def consume_oauth_state_by_raw_state(session: AsyncSession, state: str) -> ConsumedOAuthState:
    """Consume the state carried by a callback. Raises InvalidOrExpiredStateError on any miss."""
    consumed = await consume_oauth_state(session, sha256_b64url(state))
    if consumed is None:
        logger.warning("Rejected OAuth callback with unknown, used or expired state")
        raise InvalidOrExpiredStateError()
    return consumed
