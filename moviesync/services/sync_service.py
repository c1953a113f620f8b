"""Sync coordinator: keeps the search index in step with the movie catalogue.

One ``DataSyncService`` instance is built at startup and shared through
``app.state``. It owns the in-memory watermark, the full-sync guard and the
periodic incremental trigger; storage, the index client, the notification hook
and the checkpoint store are injected.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from moviesync.exceptions import MovieNotFoundError, SyncAlreadyRunningError
from moviesync.services.base import (
    BatchSyncResult,
    ChangeAction,
    DataType,
    SyncResult,
    SyncStatus,
    ValidationResult,
)
from moviesync.services.datetime_service import days_ago, now_utc
from moviesync.services.scheduler import PeriodicScheduler, parse_interval

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from moviesync.config import Settings
    from moviesync.services.base import EpisodeNotifier, MovieStore, SearchIndex
    from moviesync.services.checkpoint_service import CheckpointStore

logger = logging.getLogger(__name__)

EPISODE_PROGRESS_STEP = 1000
_MAX_ERROR_SUMMARY = 500


@dataclass
class SyncOptions:
    """Tunables for the sync pipelines."""

    batch_size: int = 100
    enable_scheduled_sync: bool = True
    sync_interval: str = "every 2 hours"
    auto_sync: bool = False
    batch_delay: float = 0.1
    episode_delay: float = 0.05
    fallback_window_days: int = 7

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            msg = f"batch_size must be positive, got {self.batch_size}"
            raise ValueError(msg)
        if self.batch_delay < 0 or self.episode_delay < 0:
            msg = "Sync delays must not be negative"
            raise ValueError(msg)
        if self.fallback_window_days < 1:
            msg = f"fallback_window_days must be >= 1, got {self.fallback_window_days}"
            raise ValueError(msg)
        parse_interval(self.sync_interval)

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncOptions:
        return cls(
            batch_size=settings.sync_batch_size,
            enable_scheduled_sync=settings.sync_enable_scheduled,
            sync_interval=settings.sync_interval,
            auto_sync=settings.sync_auto,
            batch_delay=settings.sync_batch_delay_seconds,
            episode_delay=settings.sync_episode_delay_seconds,
            fallback_window_days=settings.sync_fallback_window_days,
        )


def _summarize_errors(errors: Sequence[str]) -> str | None:
    """Condense a run's item-level errors into the checkpoint's ``lastError``."""
    if not errors:
        return None
    summary = f"{len(errors)} error(s); first: {errors[0]}"
    if len(summary) > _MAX_ERROR_SUMMARY:
        summary = summary[: _MAX_ERROR_SUMMARY - 3] + "..."
    return summary


def _document_count(health: Mapping[str, Any], index: str) -> int:
    try:
        count = health["indexes"]["indices"][index]["total"]["docs"]["count"]
    except (KeyError, TypeError):
        return 0
    return int(count or 0)


class DataSyncService:
    """Coordinates full, incremental and targeted syncs into the search index."""

    def __init__(
        self,
        storage: MovieStore,
        index: SearchIndex,
        notifier: EpisodeNotifier,
        checkpoints: CheckpointStore,
        options: SyncOptions | None = None,
    ) -> None:
        self._storage = storage
        self._index = index
        self._notifier = notifier
        self._checkpoints = checkpoints
        self.options = options or SyncOptions()
        self.is_full_sync_running = False
        self.last_sync_time: datetime | None = None
        self.scheduler: PeriodicScheduler | None = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the checkpoint, start the periodic trigger and catch up once.

        Exceptions from the catch-up incremental sync propagate; the periodic
        trigger is already running by then.
        """
        await self.load_last_sync_time()

        if self.options.enable_scheduled_sync:
            self.scheduler = PeriodicScheduler(
                "incremental-sync",
                parse_interval(self.options.sync_interval),
                self.incremental_sync,
            )
            self.scheduler.start()
            logger.info("Scheduled incremental sync %s", self.options.sync_interval)

        logger.info("Running initial incremental sync")
        await self.incremental_sync()

    async def shutdown(self) -> None:
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None

    def is_auto_sync_enabled(self) -> bool:
        return self.options.auto_sync

    # ── Checkpoint ───────────────────────────────────────────────────

    async def load_last_sync_time(self) -> None:
        """Seed ``last_sync_time`` from the stored checkpoint; never raises."""
        try:
            checkpoint = await self._checkpoints.load()
        except Exception as exc:
            logger.error("Failed to load last sync time: %s", exc)
            return
        if checkpoint is not None and checkpoint.last_sync_time is not None:
            self.last_sync_time = checkpoint.last_sync_time
            logger.info("Last sync time: %s", self.last_sync_time.isoformat())
        else:
            logger.info("No previous sync checkpoint found")

    async def persist_last_sync_time(
        self, is_full_sync: bool, last_error: str | None = None
    ) -> None:
        """Write the in-memory watermark to the checkpoint row; never raises.

        If the stored watermark is newer than ours (a later run finished
        first), it is adopted in memory.
        """
        sync_time = self.last_sync_time or now_utc()
        try:
            stored = await self._checkpoints.persist(
                sync_time, is_full_sync=is_full_sync, last_error=last_error
            )
        except Exception as exc:
            logger.error("Failed to persist last sync time: %s", exc)
            return
        if stored.last_sync_time is not None and stored.last_sync_time > sync_time:
            self.last_sync_time = stored.last_sync_time

    # ── Pipelines ────────────────────────────────────────────────────

    async def full_sync(self) -> SyncResult:
        """Rebuild both indices from storage.

        Raises:
            SyncAlreadyRunningError: If another full sync is in flight.
        """
        if self.is_full_sync_running:
            msg = "Full sync is already in progress"
            raise SyncAlreadyRunningError(msg)

        self.is_full_sync_running = True
        started_at = now_utc()
        result = SyncResult()
        try:
            logger.info("Starting full sync")
            await self._index.reindex()
            await self._sync_all_movies(result)
            await self._sync_all_episodes(result)

            self.last_sync_time = started_at
            await self.persist_last_sync_time(
                is_full_sync=True, last_error=_summarize_errors(result.errors)
            )
            logger.info(
                "Full sync completed: %d movies, %d episodes, %d errors",
                result.movies,
                result.episodes,
                len(result.errors),
            )
            return result
        except Exception as exc:
            logger.error("Full sync failed: %s", exc, exc_info=True)
            raise
        finally:
            self.is_full_sync_running = False

    async def _sync_all_movies(self, result: SyncResult) -> None:
        page = 1
        while True:
            batch = await self._storage.get_movies(page, self.options.batch_size)
            if not batch.data:
                break
            try:
                await self._index.index_movies(batch.data)
                result.movies += len(batch.data)
                logger.info("Synced movie batch %d (%d movies)", page, result.movies)
            except Exception as exc:
                message = f"Failed to sync movie batch {page}: {exc}"
                logger.error(message)
                result.errors.append(message)
            page += 1
            await asyncio.sleep(self.options.batch_delay)

    async def _sync_all_episodes(self, result: SyncResult) -> None:
        slugs = await self._storage.get_all_movie_slugs()
        for slug in slugs:
            try:
                episodes = await self._storage.get_episodes_by_movie_slug(slug)
                if episodes:
                    await self._index.index_episodes(episodes)
                    before = result.episodes
                    result.episodes += len(episodes)
                    if result.episodes // EPISODE_PROGRESS_STEP > before // EPISODE_PROGRESS_STEP:
                        logger.info("Synced %d episodes so far", result.episodes)
            except Exception as exc:
                message = f"Failed to sync episodes for movie {slug}: {exc}"
                logger.error(message)
                result.errors.append(message)
            await asyncio.sleep(self.options.episode_delay)

    async def incremental_sync(self) -> SyncResult:
        """Index movies modified since the watermark, then notify watchers."""
        started_at = now_utc()
        result = SyncResult()
        try:
            since = self.last_sync_time or days_ago(
                self.options.fallback_window_days, now=started_at
            )
            logger.info("Starting incremental sync since %s", since.isoformat())
            movies = await self._storage.get_movies_modified_since(since)

            if not movies:
                logger.info("No movies modified since last sync")
            else:
                size = self.options.batch_size
                for offset in range(0, len(movies), size):
                    chunk = movies[offset : offset + size]
                    try:
                        await self._index.index_movies(chunk)
                        result.movies += len(chunk)
                    except Exception as exc:
                        message = f"Failed to sync movie batch {offset // size + 1}: {exc}"
                        logger.error(message)
                        result.errors.append(message)

                for movie in movies:
                    try:
                        episodes = await self._storage.get_episodes_by_movie_slug(movie.slug)
                        if episodes:
                            await self._index.index_episodes(episodes)
                            result.episodes += len(episodes)
                        await self._notifier.check_and_notify(movie.slug)
                    except Exception as exc:
                        message = f"Failed to sync episodes for movie {movie.slug}: {exc}"
                        logger.error(message)
                        result.errors.append(message)

            self.last_sync_time = started_at
            await self.persist_last_sync_time(
                is_full_sync=False, last_error=_summarize_errors(result.errors)
            )
            logger.info(
                "Incremental sync completed: %d movies, %d episodes, %d errors",
                result.movies,
                result.episodes,
                len(result.errors),
            )
            return result
        except Exception as exc:
            logger.error("Incremental sync failed: %s", exc, exc_info=True)
            raise

    # ── Single-entity operations ─────────────────────────────────────

    async def sync_single_movie(self, slug: str) -> None:
        """Index one movie and its episodes.

        Raises:
            MovieNotFoundError: If storage has no movie with ``slug``.
        """
        movie = await self._storage.get_movie_by_slug(slug)
        if movie is None:
            raise MovieNotFoundError(slug)
        await self._index.index_movie(movie)
        episodes = await self._storage.get_episodes_by_movie_slug(slug)
        if episodes:
            await self._index.index_episodes(episodes)
        logger.info("Synced movie %s (%d episodes)", slug, len(episodes))

    async def delete_synced_movie(self, slug: str) -> None:
        await self._index.delete_movie(slug)
        logger.info("Deleted movie %s from the index", slug)

    async def sync_batch(self, slugs: Sequence[str]) -> BatchSyncResult:
        """Sync each slug in turn; one failure never stops the rest."""
        result = BatchSyncResult()
        for slug in slugs:
            try:
                await self.sync_single_movie(slug)
                result.success += 1
            except Exception as exc:
                result.failed += 1
                result.errors.append(f"{slug}: {exc}")
                logger.error("Failed to sync movie %s: %s", slug, exc)
        return result

    async def handle_data_change(
        self,
        entity_type: DataType | str,
        action: ChangeAction | str,
        data: Mapping[str, Any],
    ) -> None:
        """Route a data-change event to the matching index operation.

        Raises:
            ValueError: For an unknown type or action, or a payload without
                the ``slug`` the operation needs.
        """
        entity_type = DataType(entity_type)
        action = ChangeAction(action)
        logger.info("Handling %s %s event", entity_type, action)

        if entity_type is DataType.MOVIE:
            slug = _require_slug(data)
            if action is ChangeAction.DELETE:
                await self.delete_synced_movie(slug)
            else:
                await self.sync_single_movie(slug)
        elif action is ChangeAction.DELETE:
            await self._index.delete_episode(_require_slug(data))
        else:
            await self._index.index_episode(data)

    # ── Introspection ────────────────────────────────────────────────

    async def get_sync_status(self) -> SyncStatus:
        health = await self._index.get_health()
        metadata: dict[str, Any] | None = None
        try:
            checkpoint = await self._checkpoints.load()
            if checkpoint is not None:
                metadata = checkpoint.to_dict()
        except Exception as exc:
            logger.error("Failed to read sync metadata: %s", exc)
        return SyncStatus(
            is_full_sync_running=self.is_full_sync_running,
            last_sync_time=self.last_sync_time,
            elasticsearch_health=health,
            metadata=metadata,
        )

    async def validate_sync(self) -> ValidationResult:
        """Compare storage counts with index document counts. Never repairs."""
        db_movie_count = await self._storage.get_movie_count()
        db_episode_count = await self._storage.get_episode_count()
        movie_health, episode_health = await asyncio.gather(
            self._index.get_health(), self._index.get_health()
        )
        es_movie_count = _document_count(movie_health, self._index.movie_index)
        es_episode_count = _document_count(episode_health, self._index.episode_index)
        return ValidationResult(
            db_movie_count=db_movie_count,
            es_movie_count=es_movie_count,
            db_episode_count=db_episode_count,
            es_episode_count=es_episode_count,
            is_in_sync=(
                db_movie_count == es_movie_count and db_episode_count == es_episode_count
            ),
        )


def _require_slug(data: Mapping[str, Any]) -> str:
    slug = data.get("slug")
    if not isinstance(slug, str) or not slug:
        msg = "Data change payload requires a 'slug'"
        raise ValueError(msg)
    return slug
