"""OAuth state and GitHub session models."""

from __future__ import annotations

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base


class OAuthState(Base):
    """A pending OAuth authorization, keyed by the hash of its state value.

    The raw state only ever travels through the browser; the database holds
    its hash so a leaked row cannot be replayed.
    """

    __tablename__ = "oauth_states"

    state_hash: Mapped[str] = mapped_column(String, primary_key=True)
    code_verifier: Mapped[str] = mapped_column(Text, nullable=False)
    intent: Mapped[str] = mapped_column(String, nullable=False)
    return_to: Mapped[str] = mapped_column(Text, nullable=False, default="/")
    expires_at: Mapped[str] = mapped_column(Text, nullable=False)
    used_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_oauth_states_expires_at", "expires_at"),)


class GitHubSession(Base):
    """An authenticated GitHub session, keyed by the hash of the cookie token."""

    __tablename__ = "github_sessions"

    session_hash: Mapped[str] = mapped_column(String, primary_key=True)
    github_user_id: Mapped[str] = mapped_column(String, nullable=False)
    github_login: Mapped[str] = mapped_column(String, nullable=False)
    access_token_cipher: Mapped[str] = mapped_column(Text, nullable=False)
    scopes_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
    last_used_at: Mapped[str] = mapped_column(Text, nullable=False)
