"""Movie and episode models (source of truth for the search index)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from moviesync.models.base import Base, UTCDateTime
from moviesync.services.datetime_service import now_utc


class Movie(Base):
    """A movie or TV show as stored by the catalogue importer."""

    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    movie_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    origin_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumb_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type: Mapped[str | None] = mapped_column(Text, nullable=True)
    quality: Mapped[str | None] = mapped_column(Text, nullable=True)
    lang: Mapped[str | None] = mapped_column(Text, nullable=True)
    time: Mapped[str | None] = mapped_column(Text, nullable=True)
    view: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(Text, nullable=True)
    trailer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    categories: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    countries: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    actors: Mapped[str | None] = mapped_column(Text, nullable=True)
    directors: Mapped[str | None] = mapped_column(Text, nullable=True)
    modified_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=now_utc
    )

    __table_args__ = (Index("idx_movies_modified_at", "modified_at"),)


class Episode(Base):
    """A playable episode belonging to a movie."""

    __tablename__ = "episodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    movie_slug: Mapped[str] = mapped_column(Text, nullable=False)
    server_name: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    link_embed: Mapped[str] = mapped_column(Text, nullable=False)
    link_m3u8: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_episodes_movie_slug", "movie_slug"),)
