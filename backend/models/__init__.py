"""SQLAlchemy ORM models for the eshttp backend."""

from backend.models.base import Base
from backend.models.oauth import GitHubSession, OAuthState

__all__ = [
    "Base",
    "GitHubSession",
    "OAuthState",
]
