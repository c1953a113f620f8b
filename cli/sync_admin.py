"""Operator CLI for the MovieSync admin API."""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

TOKEN_ENV = "MOVIESYNC_ADMIN_TOKEN"
SERVER_ENV = "MOVIESYNC_SERVER"
DEFAULT_SERVER = "http://localhost:8000"

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


class SyncAdminClient:
    """Thin wrapper over the ``/api/sync`` endpoints."""

    def __init__(
        self,
        server_url: str,
        token: str,
        *,
        timeout: float = 600.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncAdminClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = self.client.request(method, path, **kwargs)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def full_sync(self) -> dict[str, Any]:
        return self._request("POST", "/api/sync/full")

    def incremental_sync(self) -> dict[str, Any]:
        return self._request("POST", "/api/sync/incremental")

    def sync_batch(self, slugs: list[str]) -> dict[str, Any]:
        return self._request("POST", "/api/sync/batch", json={"movie_slugs": slugs})

    def status(self) -> dict[str, Any]:
        return self._request("GET", "/api/sync/status")


def _print_run(result: dict[str, Any]) -> None:
    counts = result.get("result", {})
    print(result.get("message", ""))
    print(f"  Movies:   {counts.get('movies', 0)}")
    print(f"  Episodes: {counts.get('episodes', 0)}")
    for error in counts.get("errors", []):
        print(f"  Error: {error}")


def _print_status(status: dict[str, Any]) -> None:
    validation = status.get("validation", {})
    print("Sync Status:")
    print(f"  Last sync:         {status.get('last_sync') or 'never'}")
    print(f"  Full sync running: {'yes' if status.get('is_full_sync_running') else 'no'}")
    print(f"  Auto sync:         {'on' if status.get('auto_sync') else 'off'}")
    metadata = status.get("metadata") or {}
    if metadata:
        print(f"  Sync count:        {metadata.get('syncCount', 0)}")
        print(f"  Last full sync:    {metadata.get('lastFullSync') or 'never'}")
        if metadata.get("lastError"):
            print(f"  Last error:        {metadata['lastError']}")
    print(
        f"  Movies:            {validation.get('db_movies', 0)} in DB, "
        f"{validation.get('es_movies', 0)} indexed"
    )
    print(
        f"  Episodes:          {validation.get('db_episodes', 0)} in DB, "
        f"{validation.get('es_episodes', 0)} indexed"
    )
    print(f"  In sync:           {'yes' if validation.get('is_in_sync') else 'NO'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="moviesync-admin",
        description="Trigger and inspect MovieSync search index syncs",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get(SERVER_ENV, DEFAULT_SERVER),
        help=f"Server URL (default: ${SERVER_ENV} or {DEFAULT_SERVER})",
    )
    parser.add_argument("--token", "-t", help=f"Admin API token (default: ${TOKEN_ENV})")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("full", help="Drop and rebuild the search index")
    subparsers.add_parser("incremental", help="Index movies changed since the last sync")
    batch = subparsers.add_parser("batch", help="Re-index specific movies")
    batch.add_argument("slugs", nargs="+", metavar="SLUG")
    subparsers.add_parser("status", help="Show sync status and index drift")
    return parser


def main(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    token = args.token or os.environ.get(TOKEN_ENV)
    if not token:
        print(f"Error: No admin token. Pass --token or set {TOKEN_ENV}.")
        sys.exit(1)

    with SyncAdminClient(server_url, token, transport=transport) as client:
        try:
            if args.command == "full":
                _print_run(client.full_sync())
            elif args.command == "incremental":
                _print_run(client.incremental_sync())
            elif args.command == "batch":
                result = client.sync_batch(args.slugs)
                print(
                    f"Synced {result.get('success', 0)}/{result.get('total', 0)} movie(s), "
                    f"{result.get('failed', 0)} failed"
                )
                for error in result.get("errors", []):
                    print(f"  Error: {error}")
            elif args.command == "status":
                _print_status(client.status())
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            print(f"Error: Server returned {exc.response.status_code}: {detail}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: Request failed: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
