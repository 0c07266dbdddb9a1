"""Tables of the local structured store.

Each table keeps its record as a JSON document next to the columns used for
lookup and ordering.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class StoreBase(DeclarativeBase):
    pass


class ImportRow(StoreBase):
    __tablename__ = "imports"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class WorkspaceCacheRow(StoreBase):
    __tablename__ = "workspace_cache"

    import_id: Mapped[str] = mapped_column(String, primary_key=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class SyncQueueRow(StoreBase):
    __tablename__ = "sync_queue"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    import_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    __table_args__ = (Index("idx_sync_queue_created_at", "created_at"),)
