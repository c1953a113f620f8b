"""Collaborator protocols and result types for the search-index sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from moviesync.models.movie import Episode, Movie


class DataType(StrEnum):
    """Kind of entity named by a data-change event."""

    MOVIE = "movie"
    EPISODE = "episode"


class ChangeAction(StrEnum):
    """What happened to the entity named by a data-change event."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class MoviePage:
    """One page of movies from storage."""

    data: list[Movie]
    total: int


@dataclass
class SyncResult:
    """Outcome of a full or incremental sync.

    A non-empty ``errors`` list means partial failure; the run still counts as
    completed and the checkpoint has advanced.
    """

    movies: int = 0
    episodes: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class BatchSyncResult:
    """Outcome of syncing an explicit list of movie slugs."""

    success: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SyncStatus:
    """Read-only snapshot of the sync engine."""

    is_full_sync_running: bool
    last_sync_time: datetime | None
    elasticsearch_health: dict[str, Any]
    metadata: dict[str, Any] | None = None


@dataclass
class ValidationResult:
    """Source-of-truth counts compared with search index document counts."""

    db_movie_count: int
    es_movie_count: int
    db_episode_count: int
    es_episode_count: int
    is_in_sync: bool


@runtime_checkable
class MovieStore(Protocol):
    """Read access to the relational catalogue."""

    async def get_movies(self, page: int, page_size: int) -> MoviePage:
        """Return a 1-indexed page; an empty ``data`` list marks the end."""
        ...

    async def get_all_movie_slugs(self) -> list[str]: ...

    async def get_episodes_by_movie_slug(self, movie_slug: str) -> list[Episode]: ...

    async def get_movies_modified_since(self, since: datetime) -> list[Movie]: ...

    async def get_movie_by_slug(self, slug: str) -> Movie | None: ...

    async def get_movie_count(self) -> int: ...

    async def get_episode_count(self) -> int: ...


@runtime_checkable
class SearchIndex(Protocol):
    """Write access to the search index plus health reporting."""

    movie_index: str
    episode_index: str

    async def index_movies(self, movies: Sequence[Movie]) -> None: ...

    async def index_movie(self, movie: Movie) -> None: ...

    async def index_episodes(self, episodes: Sequence[Episode]) -> None: ...

    async def index_episode(self, episode: Episode | Mapping[str, Any]) -> None: ...

    async def delete_movie(self, slug: str) -> None: ...

    async def delete_episode(self, slug: str) -> None: ...

    async def reindex(self) -> None:
        """Drop and recreate all indices. Destructive."""
        ...

    async def get_health(self) -> dict[str, Any]: ...


@runtime_checkable
class EpisodeNotifier(Protocol):
    """Hook told about every movie an incremental sync touched."""

    async def check_and_notify(self, movie_slug: str) -> int:
        """Return the number of notifications created."""
        ...
