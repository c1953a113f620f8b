"""SQLAlchemy ORM models for MovieSync."""

from moviesync.models.base import Base
from moviesync.models.movie import Episode, Movie
from moviesync.models.sync import SyncMetadata
from moviesync.models.watchlist import EpisodeSnapshot, Notification, WatchlistEntry

__all__ = [
    "Base",
    "Episode",
    "EpisodeSnapshot",
    "Movie",
    "Notification",
    "SyncMetadata",
    "WatchlistEntry",
]
