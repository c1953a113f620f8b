"""Tests for application startup and global exception handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from elastic_transport import ConnectionError as TransportConnectionError
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from moviesync.exceptions import IndexingError, InternalServerError
from moviesync.main import create_app
from moviesync.services.sync_service import DataSyncService
from tests.conftest import FakeSearchIndex

if TYPE_CHECKING:
    from fastapi import FastAPI

    from moviesync.config import Settings


class _StartupIndex(FakeSearchIndex):
    """Fake index that also tracks the lifecycle calls made by the lifespan."""

    def __init__(self, fail_initialize: bool = False) -> None:
        super().__init__()
        self.fail_initialize = fail_initialize
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        if self.fail_initialize:
            raise ConnectionError("Could not ping Elasticsearch")
        self.initialized = True

    async def close(self) -> None:
        self.closed = True


async def _get(app: FastAPI, path: str) -> tuple[int, str]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.get(path)
    return resp.status_code, resp.json()["detail"]


class TestGlobalExceptionHandlers:
    @pytest.mark.asyncio
    async def test_indexing_error_returns_502(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        @app.get("/test-indexing-error")
        async def _raise() -> None:
            raise IndexingError("movies", ["a", "b"])

        assert await _get(app, "/test-indexing-error") == (
            502,
            "Search index rejected the update",
        )

    @pytest.mark.asyncio
    async def test_transport_error_returns_503(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        @app.get("/test-transport-error")
        async def _raise() -> None:
            raise TransportConnectionError("connection refused")

        assert await _get(app, "/test-transport-error") == (503, "Search index unavailable")

    @pytest.mark.asyncio
    async def test_operational_error_returns_503(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        @app.get("/test-operational-error")
        async def _raise() -> None:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        assert await _get(app, "/test-operational-error") == (
            503,
            "Database temporarily unavailable",
        )

    @pytest.mark.asyncio
    async def test_internal_server_error_hides_details(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        @app.get("/test-internal-error")
        async def _raise() -> None:
            raise InternalServerError("password=hunter2 in connection string")

        assert await _get(app, "/test-internal-error") == (500, "Internal server error")

    @pytest.mark.asyncio
    async def test_value_error_returns_422(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        @app.get("/test-value-error")
        async def _raise() -> None:
            raise ValueError("Unknown data type: trailer")

        assert await _get(app, "/test-value-error") == (422, "Unknown data type: trailer")


class TestLifespan:
    @pytest.mark.asyncio
    async def test_sync_disabled(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"sync_enabled": False})
        app = create_app(settings)

        async with app.router.lifespan_context(app):
            assert app.state.sync_service is None
            assert app.state.search_index is None
            assert app.state.session_factory is not None

    @pytest.mark.asyncio
    async def test_sync_enabled_wires_service(self, test_settings: Settings) -> None:
        index = _StartupIndex()
        app = create_app(test_settings)

        with patch(
            "moviesync.services.search_index.create_elasticsearch_service", return_value=index
        ):
            async with app.router.lifespan_context(app):
                service = app.state.sync_service
                assert isinstance(service, DataSyncService)
                assert app.state.search_index is index
                assert index.initialized is True
                assert service.last_sync_time is not None
                assert service.scheduler is None

        assert index.closed is True

    @pytest.mark.asyncio
    async def test_unreachable_index_aborts_startup(self, test_settings: Settings) -> None:
        index = _StartupIndex(fail_initialize=True)
        app = create_app(test_settings)

        with (
            patch(
                "moviesync.services.search_index.create_elasticsearch_service",
                return_value=index,
            ),
            pytest.raises(ConnectionError),
        ):
            async with app.router.lifespan_context(app):
                pass

        assert index.closed is True

    @pytest.mark.asyncio
    async def test_insecure_production_config_aborts_startup(
        self, test_settings: Settings
    ) -> None:
        settings = test_settings.model_copy(update={"debug": False, "admin_api_token": "short"})
        app = create_app(settings)

        with pytest.raises(ValueError, match="Insecure production configuration"):
            async with app.router.lifespan_context(app):
                pass
