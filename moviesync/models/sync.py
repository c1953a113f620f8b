"""Sync checkpoint model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from moviesync.models.base import Base, UTCDateTime


class SyncMetadata(Base):
    """Key/value row holding durable sync state as a JSON document.

    ``version`` is bumped on every write and used for compare-and-swap updates.
    """

    __tablename__ = "sync_metadata"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
