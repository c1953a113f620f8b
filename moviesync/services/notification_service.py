"""New-episode notifications for users watching a movie."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from moviesync.models.movie import Movie
from moviesync.models.watchlist import EpisodeSnapshot, Notification, WatchlistEntry
from moviesync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from moviesync.services.base import MovieStore

logger = logging.getLogger(__name__)

NEW_EPISODE_TYPE = "new_episode"
NEW_EPISODE_TITLE = "New Episode Available!"


def new_episode_message(movie_name: str, new_count: int) -> str:
    plural = "s" if new_count > 1 else ""
    return f'{new_count} new episode{plural} added to "{movie_name}"'


class WatchlistNotificationService:
    """Compares episode lists against stored snapshots and notifies watchers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: MovieStore,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage

    async def check_and_notify(self, movie_slug: str) -> int:
        """Notify watchers if ``movie_slug`` gained episodes since the last snapshot.

        Returns the number of notifications created. The snapshot is updated
        whether or not anyone was notified, but is left untouched while the
        movie row itself is missing.
        """
        episodes = await self._storage.get_episodes_by_movie_slug(movie_slug)
        if not episodes:
            return 0
        current_count = len(episodes)
        latest_slug = episodes[-1].slug

        created = 0
        async with self._session_factory() as session:
            movie = await session.scalar(select(Movie).where(Movie.slug == movie_slug))
            if movie is None:
                logger.debug("Movie %s not found, skipping notifications", movie_slug)
                return 0
            snapshot = await session.get(EpisodeSnapshot, movie_slug)
            previous_count = snapshot.episode_count if snapshot else 0
            previous_latest = snapshot.last_episode_slug if snapshot else None

            if current_count > previous_count or latest_slug != previous_latest:
                created = await self._notify_watchers(
                    session,
                    movie,
                    new_count=max(current_count - previous_count, 1),
                    total=current_count,
                )

            if snapshot is None:
                session.add(
                    EpisodeSnapshot(
                        movie_slug=movie_slug,
                        episode_count=current_count,
                        last_episode_slug=latest_slug,
                        updated_at=now_utc(),
                    )
                )
            else:
                snapshot.episode_count = current_count
                snapshot.last_episode_slug = latest_slug
                snapshot.updated_at = now_utc()
            await session.commit()
        return created

    async def initialize_snapshot(self, movie_slug: str) -> None:
        """Record the current episode list unless a snapshot already exists.

        Called when a movie is added to a watchlist so that episodes already
        published do not trigger notifications.
        """
        episodes = await self._storage.get_episodes_by_movie_slug(movie_slug)
        async with self._session_factory() as session:
            if await session.get(EpisodeSnapshot, movie_slug) is not None:
                return
            session.add(
                EpisodeSnapshot(
                    movie_slug=movie_slug,
                    episode_count=len(episodes),
                    last_episode_slug=episodes[-1].slug if episodes else None,
                    updated_at=now_utc(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("Snapshot for %s created concurrently", movie_slug)
                return
        logger.info("Initialized episode snapshot for %s: %d episodes", movie_slug, len(episodes))

    async def _notify_watchers(
        self,
        session: AsyncSession,
        movie: Movie,
        *,
        new_count: int,
        total: int,
    ) -> int:
        movie_slug = movie.slug
        result = await session.execute(
            select(WatchlistEntry.user_id)
            .where(WatchlistEntry.movie_slug == movie_slug)
            .distinct()
        )
        watchers = list(result.scalars().all())
        if not watchers:
            logger.debug("No watchers for %s, skipping notifications", movie_slug)
            return 0

        message = new_episode_message(movie.name, new_count)
        for user_id in watchers:
            session.add(
                Notification(
                    user_id=user_id,
                    type=NEW_EPISODE_TYPE,
                    title=NEW_EPISODE_TITLE,
                    message=message,
                    data={
                        "movieSlug": movie_slug,
                        "movieName": movie.name,
                        "newEpisodeCount": new_count,
                        "totalEpisodes": total,
                    },
                    movie_id=movie.id,
                    is_read=False,
                    created_at=now_utc(),
                )
            )
        logger.info("Created %d new-episode notifications for %s", len(watchers), movie.name)
        return len(watchers)
