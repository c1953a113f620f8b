"""Tests for the health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from moviesync import __version__
from tests.conftest import FakeSearchIndex, create_test_client

if TYPE_CHECKING:
    from moviesync.config import Settings


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_healthy(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings, search_index=FakeSearchIndex()) as ac:
            resp = await ac.get("/api/health")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "version": __version__,
            "database": "ok",
            "elasticsearch": "ok",
        }

    @pytest.mark.asyncio
    async def test_sync_disabled(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as ac:
            resp = await ac.get("/api/health")

        body = resp.json()
        assert body["status"] == "ok"
        assert body["elasticsearch"] == "disabled"

    @pytest.mark.asyncio
    async def test_unreachable_index_degrades(self, test_settings: Settings) -> None:
        index = FakeSearchIndex()
        index.health_error = "connection refused"
        async with create_test_client(test_settings, search_index=index) as ac:
            resp = await ac.get("/api/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["elasticsearch"] == "error"
        assert "connection refused" not in resp.text

    @pytest.mark.asyncio
    async def test_does_not_require_token(self, test_settings: Settings) -> None:
        async with create_test_client(test_settings) as ac:
            resp = await ac.get("/api/health", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 200
