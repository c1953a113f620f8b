"""Catalogue reads used by the sync engine."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from moviesync.models.movie import Episode, Movie
from moviesync.services.base import MoviePage
from moviesync.services.datetime_service import as_utc

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_EPISODE_NUMBER_RE = re.compile(r"\b(?:episode|ep|tập)\s*(\d+)", re.IGNORECASE)
_ANY_NUMBER_RE = re.compile(r"(\d+)")


def episode_sort_key(episode: Episode) -> tuple[int, int, str]:
    """Order episodes by the number in their name ("Episode 3", "Tập 3", "3").

    Names without a number sort after numbered ones, alphabetically.
    """
    match = _EPISODE_NUMBER_RE.search(episode.name) or _ANY_NUMBER_RE.search(episode.name)
    if match is None:
        return (1, 0, episode.name)
    return (0, int(match.group(1)), episode.name)


class MovieStorage:
    """Read-only catalogue access; every call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_movies(self, page: int, page_size: int) -> MoviePage:
        """Return one 1-indexed page of movies ordered by slug."""
        if page < 1:
            msg = f"page must be >= 1, got {page}"
            raise ValueError(msg)
        if page_size < 1:
            msg = f"page_size must be >= 1, got {page_size}"
            raise ValueError(msg)

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Movie))
            result = await session.execute(
                select(Movie)
                .order_by(Movie.slug)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return MoviePage(data=list(result.scalars().all()), total=total or 0)

    async def get_all_movie_slugs(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(Movie.slug).order_by(Movie.slug))
            return list(result.scalars().all())

    async def get_episodes_by_movie_slug(self, movie_slug: str) -> list[Episode]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Episode).where(Episode.movie_slug == movie_slug)
            )
            return sorted(result.scalars().all(), key=episode_sort_key)

    async def get_movies_modified_since(self, since: datetime) -> list[Movie]:
        """Return movies modified strictly after ``since``, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Movie)
                .where(Movie.modified_at > as_utc(since))
                .order_by(Movie.modified_at.desc())
            )
            return list(result.scalars().all())

    async def get_movie_by_slug(self, slug: str) -> Movie | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Movie).where(Movie.slug == slug))
            return result.scalar_one_or_none()

    async def get_movie_count(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Movie))
            return count or 0

    async def get_episode_count(self) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Episode))
            return count or 0
