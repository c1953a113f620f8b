"""Elasticsearch index client for movies and episodes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from elasticsearch import ApiError, AsyncElasticsearch, NotFoundError
from elasticsearch.helpers import async_bulk

from moviesync.exceptions import IndexingError
from moviesync.services.datetime_service import format_iso

if TYPE_CHECKING:
    from collections.abc import Sequence

    from moviesync.config import Settings
    from moviesync.models.movie import Episode, Movie

logger = logging.getLogger(__name__)

_COUNT_RETRY_ON_CONFLICT = 3

_TEXT_ANALYSIS: dict[str, Any] = {
    "analysis": {
        "analyzer": {
            "movie_analyzer": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding", "stop"],
            },
            "autocomplete_analyzer": {
                "type": "custom",
                "tokenizer": "edge_ngram_tokenizer",
                "filter": ["lowercase", "asciifolding"],
            },
        },
        "tokenizer": {
            "edge_ngram_tokenizer": {
                "type": "edge_ngram",
                "min_gram": 2,
                "max_gram": 20,
                "token_chars": ["letter", "digit"],
            }
        },
    }
}

_NAMED_REF: dict[str, Any] = {
    "type": "nested",
    "properties": {
        "id": {"type": "keyword"},
        "name": {
            "type": "text",
            "analyzer": "movie_analyzer",
            "fields": {"keyword": {"type": "keyword"}},
        },
        "slug": {"type": "keyword"},
    },
}

MOVIE_MAPPINGS: dict[str, Any] = {
    "properties": {
        "movieId": {"type": "keyword"},
        "slug": {"type": "keyword"},
        "name": {
            "type": "text",
            "analyzer": "movie_analyzer",
            "fields": {
                "autocomplete": {
                    "type": "text",
                    "analyzer": "autocomplete_analyzer",
                    "search_analyzer": "movie_analyzer",
                },
                "keyword": {"type": "keyword"},
            },
        },
        "originName": {
            "type": "text",
            "analyzer": "movie_analyzer",
            "fields": {
                "autocomplete": {
                    "type": "text",
                    "analyzer": "autocomplete_analyzer",
                    "search_analyzer": "movie_analyzer",
                }
            },
        },
        "description": {"type": "text", "analyzer": "movie_analyzer"},
        "type": {"type": "keyword"},
        "status": {"type": "keyword"},
        "year": {"type": "integer"},
        "quality": {"type": "keyword"},
        "lang": {"type": "keyword"},
        "view": {"type": "integer"},
        "actors": {
            "type": "text",
            "analyzer": "movie_analyzer",
            "fields": {"keyword": {"type": "keyword"}},
        },
        "directors": {
            "type": "text",
            "analyzer": "movie_analyzer",
            "fields": {"keyword": {"type": "keyword"}},
        },
        "categories": _NAMED_REF,
        "countries": _NAMED_REF,
        "thumbUrl": {"type": "keyword", "index": False},
        "posterUrl": {"type": "keyword", "index": False},
        "trailerUrl": {"type": "keyword", "index": False},
        "modifiedAt": {"type": "date"},
        "episodeCount": {"type": "integer"},
    }
}

EPISODE_MAPPINGS: dict[str, Any] = {
    "properties": {
        "slug": {"type": "keyword"},
        "movieSlug": {"type": "keyword"},
        "name": {"type": "text"},
        "serverName": {"type": "keyword"},
        "filename": {"type": "keyword"},
        "linkEmbed": {"type": "keyword", "index": False},
        "linkM3u8": {"type": "keyword", "index": False},
    }
}


def movie_document(movie: Movie) -> dict[str, Any]:
    """Build the search document for a movie.

    ``episodeCount`` starts at zero and is refreshed when episodes are indexed.
    """
    return {
        "movieId": movie.movie_id,
        "slug": movie.slug,
        "name": movie.name,
        "originName": movie.origin_name,
        "posterUrl": movie.poster_url,
        "thumbUrl": movie.thumb_url,
        "year": movie.year,
        "type": movie.type,
        "quality": movie.quality,
        "lang": movie.lang,
        "time": movie.time,
        "view": movie.view,
        "description": movie.description,
        "status": movie.status,
        "trailerUrl": movie.trailer_url,
        "categories": list(movie.categories or []),
        "countries": list(movie.countries or []),
        "actors": movie.actors,
        "directors": movie.directors,
        "modifiedAt": format_iso(movie.modified_at) if movie.modified_at else None,
        "episodeCount": 0,
    }


_EPISODE_FIELDS = {
    "name": "name",
    "slug": "slug",
    "movie_slug": "movieSlug",
    "server_name": "serverName",
    "filename": "filename",
    "link_embed": "linkEmbed",
    "link_m3u8": "linkM3u8",
}


def episode_document(episode: Episode | Mapping[str, Any]) -> dict[str, Any]:
    """Build the search document for an episode.

    Accepts an ORM row or a webhook payload using either snake_case or
    camelCase keys.
    """
    if isinstance(episode, Mapping):
        doc: dict[str, Any] = {}
        for attr, key in _EPISODE_FIELDS.items():
            if key in episode:
                doc[key] = episode[key]
            elif attr in episode:
                doc[key] = episode[attr]
        if not doc.get("slug") or not doc.get("movieSlug"):
            msg = "Episode payload requires 'slug' and 'movieSlug'"
            raise ValueError(msg)
        return doc
    return {key: getattr(episode, attr) for attr, key in _EPISODE_FIELDS.items()}


def _body(response: Any) -> Any:
    """Unwrap an elasticsearch-py API response into plain data."""
    return getattr(response, "body", response)


class ElasticsearchService:
    """Writes movie and episode documents and reports index health.

    Documents are keyed by slug, so every write is an idempotent upsert.
    """

    def __init__(self, client: AsyncElasticsearch, index_prefix: str = "") -> None:
        self.client = client
        self.movie_index = f"{index_prefix}movies"
        self.episode_index = f"{index_prefix}episodes"

    async def initialize(self) -> None:
        """Check connectivity and create missing indices.

        Raises:
            ConnectionError: If the cluster does not answer a ping.
        """
        if not await self.client.ping():
            msg = "Could not ping Elasticsearch"
            raise ConnectionError(msg)
        logger.info("Elasticsearch connection established")
        await self.create_indexes()

    async def create_indexes(self) -> None:
        """Create the movie and episode indices if they do not exist."""
        for index, mappings, settings in (
            (self.movie_index, MOVIE_MAPPINGS, _TEXT_ANALYSIS),
            (self.episode_index, EPISODE_MAPPINGS, None),
        ):
            if await self.client.indices.exists(index=index):
                continue
            await self.client.indices.create(index=index, mappings=mappings, settings=settings)
            logger.info("Created index %s", index)

    async def close(self) -> None:
        await self.client.close()

    async def index_movie(self, movie: Movie) -> None:
        await self.client.index(
            index=self.movie_index, id=movie.slug, document=movie_document(movie)
        )

    async def index_movies(self, movies: Sequence[Movie]) -> None:
        if not movies:
            return
        actions = [
            {"_index": self.movie_index, "_id": movie.slug, "_source": movie_document(movie)}
            for movie in movies
        ]
        await self._bulk(self.movie_index, actions)
        logger.debug("Indexed %d movies", len(movies))

    async def index_episode(self, episode: Episode | Mapping[str, Any]) -> None:
        doc = episode_document(episode)
        await self.client.index(index=self.episode_index, id=doc["slug"], document=doc)
        await self._update_movie_episode_count(doc["movieSlug"])

    async def index_episodes(self, episodes: Sequence[Episode]) -> None:
        if not episodes:
            return
        actions: list[dict[str, Any]] = []
        movie_slugs: list[str] = []
        for episode in episodes:
            doc = episode_document(episode)
            actions.append({"_index": self.episode_index, "_id": doc["slug"], "_source": doc})
            if doc["movieSlug"] not in movie_slugs:
                movie_slugs.append(doc["movieSlug"])
        await self._bulk(self.episode_index, actions)
        logger.debug("Indexed %d episodes", len(episodes))
        for movie_slug in movie_slugs:
            await self._update_movie_episode_count(movie_slug)

    async def delete_movie(self, slug: str) -> None:
        """Remove a movie and all of its episodes. Missing documents are not an error."""
        try:
            await self.client.delete(index=self.movie_index, id=slug)
        except NotFoundError:
            logger.info("Movie %s was not in the index", slug)
        await self.client.delete_by_query(
            index=self.episode_index,
            query={"term": {"movieSlug": slug}},
        )

    async def delete_episode(self, slug: str) -> None:
        """Remove one episode and refresh its movie's episode count."""
        try:
            found = _body(await self.client.get(index=self.episode_index, id=slug))
        except NotFoundError:
            logger.info("Episode %s was not in the index", slug)
            return
        await self.client.delete(index=self.episode_index, id=slug)
        movie_slug = (found.get("_source") or {}).get("movieSlug")
        if movie_slug:
            await self._update_movie_episode_count(movie_slug)

    async def reindex(self) -> None:
        """Drop both indices and recreate them empty."""
        logger.info("Dropping indices %s, %s", self.movie_index, self.episode_index)
        await self.client.indices.delete(
            index=[self.movie_index, self.episode_index],
            ignore_unavailable=True,
        )
        await self.create_indexes()

    async def get_health(self) -> dict[str, Any]:
        """Return cluster health and index stats, or ``{"error": ...}`` if unreachable."""
        try:
            cluster, stats = await asyncio.gather(
                self.client.cluster.health(),
                self.client.indices.stats(index=[self.movie_index, self.episode_index]),
            )
        except Exception as exc:
            logger.error("Failed to get Elasticsearch health: %s", exc)
            return {"error": str(exc)}
        return {"cluster": _body(cluster), "indexes": _body(stats)}

    async def _bulk(self, index: str, actions: list[dict[str, Any]]) -> None:
        _, errors = await async_bulk(self.client, actions, raise_on_error=False)
        if not errors:
            return
        failed = [str(info.get("_id")) for item in errors for info in item.values()]
        raise IndexingError(index, failed)

    async def _update_movie_episode_count(self, movie_slug: str) -> None:
        """Refresh ``episodeCount`` on the movie document.

        The episodes themselves are already written, so a failed refresh is
        logged and left for the next sync of the movie.
        """
        try:
            counted = _body(
                await self.client.count(
                    index=self.episode_index,
                    query={"term": {"movieSlug": movie_slug}},
                )
            )
            await self.client.update(
                index=self.movie_index,
                id=movie_slug,
                doc={"episodeCount": counted["count"]},
                retry_on_conflict=_COUNT_RETRY_ON_CONFLICT,
            )
        except NotFoundError:
            logger.debug("Movie %s not indexed yet; episode count not updated", movie_slug)
        except ApiError as exc:
            logger.warning("Failed to update episode count for %s: %s", movie_slug, exc)


def create_elasticsearch_service(settings: Settings) -> ElasticsearchService:
    """Build the index client from application settings."""
    kwargs: dict[str, Any] = {
        "hosts": [settings.elasticsearch_url],
        "verify_certs": settings.elasticsearch_verify_certs,
        "request_timeout": settings.elasticsearch_request_timeout,
    }
    if settings.elasticsearch_username:
        kwargs["basic_auth"] = (settings.elasticsearch_username, settings.elasticsearch_password)
    logger.info("Connecting to Elasticsearch at %s", settings.elasticsearch_url)
    return ElasticsearchService(
        AsyncElasticsearch(**kwargs),
        index_prefix=settings.elasticsearch_index_prefix,
    )
