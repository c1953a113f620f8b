"""Tests for the operator sync CLI."""

from __future__ import annotations

import json

import httpx
import pytest

from cli.sync_admin import TOKEN_ENV, SyncAdminClient, main, validate_server_url

_RUN = {
    "status": "partial",
    "message": "Full sync completed with 1 error(s)",
    "result": {"movies": 12, "episodes": 340, "errors": ["Failed to sync movie batch 2: boom"]},
}

_STATUS = {
    "auto_sync": False,
    "last_sync": "2026-05-01T12:00:00Z",
    "is_full_sync_running": False,
    "metadata": {
        "lastSyncTime": "2026-05-01T12:00:00Z",
        "lastFullSync": "2026-04-30T00:00:00Z",
        "syncCount": 9,
        "lastError": None,
    },
    "health": {"cluster": {"status": "green"}},
    "validation": {
        "db_movies": 12,
        "es_movies": 11,
        "db_episodes": 340,
        "es_episodes": 340,
        "is_in_sync": False,
    },
}


def _transport(seen: list[httpx.Request], status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"detail": "Full sync is already in progress"})
        path = request.url.path
        if path == "/api/sync/status":
            return httpx.Response(200, json=_STATUS)
        if path == "/api/sync/batch":
            slugs = json.loads(request.content)["movie_slugs"]
            return httpx.Response(
                200,
                json={"success": len(slugs), "failed": 0, "total": len(slugs), "errors": []},
            )
        return httpx.Response(200, json=_RUN)

    return httpx.MockTransport(handler)


class TestValidateServerUrl:
    def test_rejects_insecure_http_for_remote_hosts(self) -> None:
        with pytest.raises(ValueError, match="HTTPS is required"):
            validate_server_url("http://search.example.com")

    def test_allows_https_and_strips_slash(self) -> None:
        assert validate_server_url("https://search.example.com/") == "https://search.example.com"

    def test_allows_http_for_localhost(self) -> None:
        assert validate_server_url("http://127.0.0.1:8000") == "http://127.0.0.1:8000"

    def test_allows_insecure_http_when_flag_enabled(self) -> None:
        assert (
            validate_server_url("http://search.internal:8000", allow_insecure_http=True)
            == "http://search.internal:8000"
        )

    def test_rejects_missing_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme and host"):
            validate_server_url("search.example.com")


class TestSyncAdminClient:
    def test_sends_bearer_token(self) -> None:
        seen: list[httpx.Request] = []
        with SyncAdminClient("http://localhost:8000", "secret", transport=_transport(seen)) as c:
            c.incremental_sync()

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/sync/incremental"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    def test_raises_on_error_status(self) -> None:
        seen: list[httpx.Request] = []
        transport = _transport(seen, status_code=409)
        with (
            SyncAdminClient("http://localhost:8000", "secret", transport=transport) as c,
            pytest.raises(httpx.HTTPStatusError),
        ):
            c.full_sync()


class TestMain:
    def test_full_prints_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        seen: list[httpx.Request] = []
        main(["--token", "secret", "full"], transport=_transport(seen))

        out = capsys.readouterr().out
        assert "Full sync completed with 1 error(s)" in out
        assert "Movies:   12" in out
        assert "Error: Failed to sync movie batch 2: boom" in out
        assert seen[0].url.path == "/api/sync/full"

    def test_status_prints_drift(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(TOKEN_ENV, "from-env")
        seen: list[httpx.Request] = []
        main(["status"], transport=_transport(seen))

        out = capsys.readouterr().out
        assert "Sync count:        9" in out
        assert "12 in DB, 11 indexed" in out
        assert "In sync:           NO" in out
        assert seen[0].headers["Authorization"] == "Bearer from-env"

    def test_batch(self, capsys: pytest.CaptureFixture[str]) -> None:
        seen: list[httpx.Request] = []
        main(["-t", "secret", "batch", "alpha", "beta"], transport=_transport(seen))

        assert "Synced 2/2 movie(s), 0 failed" in capsys.readouterr().out
        assert json.loads(seen[0].content) == {"movie_slugs": ["alpha", "beta"]}

    def test_missing_token_exits(
        self, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(TOKEN_ENV, raising=False)
        with pytest.raises(SystemExit) as exc_info:
            main(["status"], transport=_transport([]))

        assert exc_info.value.code == 1
        assert "No admin token" in capsys.readouterr().out

    def test_insecure_server_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            main(["--server", "http://search.example.com", "-t", "x", "status"])
        assert "HTTPS is required" in capsys.readouterr().out

    def test_server_error_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-t", "secret", "full"], transport=_transport([], status_code=409))

        assert exc_info.value.code == 1
        assert "Server returned 409" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        main([])
        assert "moviesync-admin" in capsys.readouterr().out
