"""Shared test fixtures for MovieSync."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from moviesync.config import Settings
from moviesync.database import create_engine, create_tables
from moviesync.main import create_app
from moviesync.models.movie import Episode, Movie
from moviesync.services.checkpoint_service import CheckpointStore
from moviesync.services.datetime_service import now_utc
from moviesync.services.search_index import episode_document, movie_document
from moviesync.services.storage_service import MovieStorage
from moviesync.services.sync_service import DataSyncService, SyncOptions

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping, Sequence
    from datetime import datetime
    from pathlib import Path

TEST_ADMIN_TOKEN = "test-admin-token-with-at-least-32-characters"


class FakeSearchIndex:
    """In-memory stand-in for ``ElasticsearchService``.

    Stores the same documents the real client would send and records every
    call as ``(operation, argument)`` in ``calls``.
    """

    def __init__(self) -> None:
        self.movie_index = "movies"
        self.episode_index = "episodes"
        self.movies: dict[str, dict[str, Any]] = {}
        self.episodes: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.health_error: str | None = None

    async def index_movies(self, movies: Sequence[Movie]) -> None:
        self.calls.append(("index_movies", [m.slug for m in movies]))
        for movie in movies:
            self.movies[movie.slug] = movie_document(movie)

    async def index_movie(self, movie: Movie) -> None:
        self.calls.append(("index_movie", movie.slug))
        self.movies[movie.slug] = movie_document(movie)

    async def index_episodes(self, episodes: Sequence[Episode]) -> None:
        self.calls.append(("index_episodes", [e.slug for e in episodes]))
        for episode in episodes:
            self.episodes[episode.slug] = episode_document(episode)

    async def index_episode(self, episode: Episode | Mapping[str, Any]) -> None:
        doc = episode_document(episode)
        self.calls.append(("index_episode", doc["slug"]))
        self.episodes[doc["slug"]] = doc

    async def delete_movie(self, slug: str) -> None:
        self.calls.append(("delete_movie", slug))
        self.movies.pop(slug, None)
        for episode_slug in [s for s, d in self.episodes.items() if d["movieSlug"] == slug]:
            del self.episodes[episode_slug]

    async def delete_episode(self, slug: str) -> None:
        self.calls.append(("delete_episode", slug))
        self.episodes.pop(slug, None)

    async def reindex(self) -> None:
        self.calls.append(("reindex", None))
        self.movies.clear()
        self.episodes.clear()

    async def get_health(self) -> dict[str, Any]:
        if self.health_error is not None:
            return {"error": self.health_error}
        return {
            "cluster": {"status": "green"},
            "indexes": {
                "indices": {
                    self.movie_index: {"total": {"docs": {"count": len(self.movies)}}},
                    self.episode_index: {"total": {"docs": {"count": len(self.episodes)}}},
                }
            },
        }

    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeNotifier:
    """Records which movies the incremental pipeline asked about."""

    def __init__(self) -> None:
        self.checked: list[str] = []

    async def check_and_notify(self, movie_slug: str) -> int:
        self.checked.append(movie_slug)
        return 0


def make_movie(
    slug: str,
    *,
    modified_at: datetime | None = None,
    **fields: Any,
) -> Movie:
    """Build an unsaved movie row with sensible defaults."""
    fields.setdefault("name", slug.replace("-", " ").title())
    fields.setdefault("categories", [])
    fields.setdefault("countries", [])
    return Movie(
        movie_id=f"id-{slug}",
        slug=slug,
        modified_at=modified_at or now_utc() - timedelta(hours=1),
        **fields,
    )


def make_episodes(movie_slug: str, count: int, *, start: int = 1) -> list[Episode]:
    """Build ``count`` unsaved episodes named ``Episode <n>``."""
    return [
        Episode(
            name=f"Episode {n}",
            slug=f"{movie_slug}-ep-{n}",
            movie_slug=movie_slug,
            server_name="Vietsub #1",
            link_embed=f"https://player.example.com/{movie_slug}/{n}",
        )
        for n in range(start, start + count)
    ]


async def seed(
    session_factory: async_sessionmaker[AsyncSession],
    *rows: Movie | Episode | Sequence[Movie | Episode],
) -> None:
    """Insert rows (or lists of rows) and commit."""
    async with session_factory() as session:
        for row in rows:
            if isinstance(row, (Movie, Episode)):
                session.add(row)
            else:
                session.add_all(row)
        await session.commit()


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    sync_service: DataSyncService | None = None,
    search_index: FakeSearchIndex | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with the app state the lifespan would set up.

    ASGITransport does not run the lifespan, so the engine and the sync
    service are attached by hand.
    """
    app = create_app(settings)
    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.search_index = search_index
    app.state.sync_service = sync_service
    await create_tables(engine)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        admin_api_token=TEST_ADMIN_TOKEN,
        sync_batch_delay_seconds=0,
        sync_episode_delay_seconds=0,
        sync_enable_scheduled=False,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with all tables."""
    engine, _ = create_engine(test_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(
    db_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def storage(session_factory: async_sessionmaker[AsyncSession]) -> MovieStorage:
    return MovieStorage(session_factory)


@pytest.fixture
def checkpoint_store(session_factory: async_sessionmaker[AsyncSession]) -> CheckpointStore:
    return CheckpointStore(session_factory)


@pytest.fixture
def fake_index() -> FakeSearchIndex:
    return FakeSearchIndex()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def sync_options() -> SyncOptions:
    return SyncOptions(
        batch_size=2,
        enable_scheduled_sync=False,
        batch_delay=0,
        episode_delay=0,
    )


@pytest.fixture
async def sync_service(
    storage: MovieStorage,
    fake_index: FakeSearchIndex,
    fake_notifier: FakeNotifier,
    checkpoint_store: CheckpointStore,
    sync_options: SyncOptions,
) -> AsyncGenerator[DataSyncService]:
    service = DataSyncService(
        storage=storage,
        index=fake_index,
        notifier=fake_notifier,
        checkpoints=checkpoint_store,
        options=sync_options,
    )
    yield service
    await service.shutdown()
