"""SQLAlchemy models for the index sync service.

These models are stored in the 'indexing' schema, separate from the
e-commerce tables but in the same database.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Schema for all index sync tables
SCHEMA = "indexing"


class Base(DeclarativeBase):
    """Base class for all models."""

    __table_args__ = {"schema": SCHEMA}


# =============================================================================
# Sync Logs
# =============================================================================


class SyncLog(Base):
    """Last run report of a sync job, keyed by a fixed name.

    Overwritten in place on every run; no history is kept.
    """

    __tablename__ = "sync_logs"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)  # 'LastProductSyncLog'
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = ({"schema": SCHEMA},)
