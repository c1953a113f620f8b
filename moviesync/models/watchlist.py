"""Watchlist, episode snapshot and notification models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from moviesync.models.base import Base, UTCDateTime
from moviesync.services.datetime_service import now_utc


class WatchlistEntry(Base):
    """A movie saved to a user's watchlist."""

    __tablename__ = "watchlist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    movie_slug: Mapped[str] = mapped_column(Text, nullable=False)
    added_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=now_utc
    )

    __table_args__ = (Index("idx_watchlist_movie_slug", "movie_slug"),)


class EpisodeSnapshot(Base):
    """Episode count last seen for a movie, used to detect new episodes."""

    __tablename__ = "watchlist_episode_snapshots"

    movie_slug: Mapped[str] = mapped_column(Text, primary_key=True)
    episode_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_episode_slug: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=now_utc
    )


class Notification(Base):
    """In-app notification delivered to a single user."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    movie_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=now_utc
    )

    __table_args__ = (Index("idx_notifications_user_id", "user_id"),)
