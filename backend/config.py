"""Application configuration loaded from environment variables."""

from __future__ import annotations

import base64
import binascii
import os
from urllib.parse import urlsplit

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SESSION_TTL_DEFAULT = 60 * 60 * 24 * 30
_OAUTH_STATE_TTL_DEFAULT = 60 * 10


def normalize_origin(value: str) -> str:
    """Reduce a URL or bare host to ``scheme://host[:port]``.

    Values without a scheme are treated as https hosts. Returns an empty
    string when nothing usable is left.
    """
    value = value.strip()
    if not value:
        return ""
    if "://" not in value:
        value = f"https://{value}"
    parts = urlsplit(value)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def _infer_deployment_origin() -> str:
    """Guess the public origin from hosting platform variables."""
    env = os.environ.get("VERCEL_ENV", "")
    production_url = os.environ.get("VERCEL_PROJECT_PRODUCTION_URL", "")
    branch_url = os.environ.get("VERCEL_BRANCH_URL", "")
    deployment_url = os.environ.get("VERCEL_URL", "")
    if env == "production":
        candidates = (production_url, deployment_url)
    else:
        candidates = (branch_url, deployment_url)
    for candidate in candidates:
        origin = normalize_origin(candidate)
        if origin:
            return origin
    return ""


def decode_encryption_key(value: str) -> bytes:
    """Decode a base64url session encryption key. Raises ValueError unless it is 32 bytes."""
    padded = value + "=" * (-len(value) % 4)
    try:
        key = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError("SESSION_ENCRYPTION_KEY must be base64url encoded") from exc
    if len(key) != 32:
        raise ValueError("SESSION_ENCRYPTION_KEY must decode to 32 bytes")
    return key


class Settings(BaseSettings):
    """eshttp backend settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/eshttp.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Public origin used for redirects and same-origin checks
    app_origin: str = ""

    # GitHub OAuth app
    github_client_id: str = ""
    github_client_secret: str = ""
    github_redirect_uri: str = ""
    github_webhook_secret: str = ""
    github_api_url: str = "https://api.github.com"
    github_oauth_url: str = "https://github.com/login/oauth"
    github_timeout_seconds: float = Field(default=15.0, gt=0)
    github_repo_scan_limit: int = Field(default=20, ge=1)

    # Sessions
    session_cookie_name: str = "eshttp_github_session"
    session_ttl_seconds: int = Field(default=_SESSION_TTL_DEFAULT, ge=1)
    oauth_state_ttl_seconds: int = Field(default=_OAUTH_STATE_TTL_DEFAULT, ge=1)
    session_encryption_key: str = ""

    # Response hardening
    security_headers_enabled: bool = True

    @field_validator("app_origin")
    @classmethod
    def _normalize_app_origin(cls, value: str) -> str:
        return normalize_origin(value)

    @model_validator(mode="after")
    def _fill_derived_urls(self) -> Settings:
        if not self.app_origin:
            self.app_origin = _infer_deployment_origin()
        if not self.github_redirect_uri and self.app_origin:
            self.github_redirect_uri = f"{self.app_origin}/api/auth/github/callback"
        return self

    @property
    def encryption_key(self) -> bytes:
        """The decoded AES-256 key for session tokens. Raises ValueError when invalid."""
        return decode_encryption_key(self.session_encryption_key)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        try:
            decode_encryption_key(self.session_encryption_key)
        except ValueError as exc:
            violations.append(str(exc))
        if not self.app_origin:
            violations.append("APP_ORIGIN must be configured in production")
        if not self.github_client_id or not self.github_client_secret:
            violations.append("GITHUB_CLIENT_ID and GITHUB_CLIENT_SECRET must be configured")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
