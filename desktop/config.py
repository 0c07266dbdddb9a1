"""Sync engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DesktopSettings(BaseSettings):
    """Settings for the local workspace sync engine."""

    model_config = SettingsConfigDict(
        env_prefix="ESHTTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Local structured store
    database_url: str = "sqlite+aiosqlite:///data/db/eshttp-desktop.db"

    # Remote backend
    backend_url: str = "http://localhost:8000"
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Sync
    sync_interval_seconds: float = Field(default=2.0, gt=0)
    default_commit_message: str = "chore(eshttp): sync workspace changes"


def configure_logging(debug: bool) -> None:
    """Configure logging for an embedding process."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
