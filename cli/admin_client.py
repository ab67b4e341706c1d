"""CLI admin client for the lookup optimizer server."""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}
API_KEY_ENV = "LOOKUP_ADMIN_API_KEY"


class AdminClient:
    """Thin wrapper over the admin HTTP API."""

    def __init__(
        self,
        server_url: str,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.Client(
            base_url=self.server_url,
            headers=headers,
            timeout=120.0,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> AdminClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def login(self, api_key: str) -> str:
        """Exchange the admin API key for an access token and use it."""
        resp = self.client.post("/api/auth/token", json={"api_key": api_key})
        resp.raise_for_status()
        token: str = resp.json()["access_token"]
        self.client.headers["Authorization"] = f"Bearer {token}"
        return token

    def _get(self, path: str, **params: Any) -> Any:
        resp = self.client.get(path, params={k: v for k, v in params.items() if v is not None})
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, body: dict[str, Any] | None = None) -> Any:
        resp = self.client.post(path, json=body)
        resp.raise_for_status()
        return resp.json() if resp.content else None

    def sync_status(self) -> dict[str, Any]:
        result: dict[str, Any] = self._get("/api/admin/sync")
        return result

    def run_sync(self) -> dict[str, Any]:
        result: dict[str, Any] = self._post("/api/admin/sync/run")
        return result

    def index_stats(self) -> dict[str, Any]:
        result: dict[str, Any] = self._get("/api/admin/index")
        return result

    def rebuild_index(self, batch_size: int | None = None) -> int:
        return int(self._post("/api/admin/index/rebuild", {"batch_size": batch_size})["count"])

    def bulk_sync_index(self, limit: int | None = None) -> int:
        return int(self._post("/api/admin/index/bulk-sync", {"limit": limit})["count"])

    def cleanup_index(self) -> int:
        return int(self._post("/api/admin/index/cleanup")["count"])

    def cache_stats(self) -> dict[str, Any]:
        result: dict[str, Any] = self._get("/api/admin/cache")
        return result

    def purge_cache(self) -> dict[str, int]:
        removed: dict[str, int] = self._post("/api/admin/cache/purge")["removed"]
        return removed

    def cleanup_cache(self) -> int:
        return int(self._post("/api/admin/cache/cleanup")["count"])

    def warm_cache(self, limit: int) -> int:
        return int(self._post("/api/admin/cache/warm", {"limit": limit})["count"])

    def lookup(self, value: str) -> dict[str, Any]:
        key = "url" if urlparse(value).scheme in {"http", "https"} else "path"
        result: dict[str, Any] = self._get("/api/lookup", **{key: value})
        return result


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


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lookup-admin",
        description="Administer a lookup optimizer server",
    )
    parser.add_argument("--server", "-s", default="http://localhost:8000", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--api-key", help=f"Admin API key (default: ${API_KEY_ENV})")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("status", help="Show upload sync status")
    subparsers.add_parser("sync", help="Run one upload sync batch now")
    subparsers.add_parser("index-stats", help="Show lookup index statistics")
    rebuild = subparsers.add_parser("index-rebuild", help="Drop and repopulate the lookup index")
    rebuild.add_argument("--batch-size", type=int)
    bulk = subparsers.add_parser("index-bulk-sync", help="Index attachments missing from the index")
    bulk.add_argument("--limit", type=int)
    subparsers.add_parser("index-cleanup", help="Remove index rows without an attachment")
    subparsers.add_parser("cache-stats", help="Show lookup cache statistics")
    subparsers.add_parser("cache-purge", help="Empty every cache tier")
    subparsers.add_parser("cache-cleanup", help="Expire stale durable cache entries")
    warm = subparsers.add_parser("cache-warm", help="Pre-resolve recently created attachments")
    warm.add_argument("--limit", type=int, default=100)
    lookup = subparsers.add_parser("lookup", help="Resolve a path or URL")
    lookup.add_argument("value")
    return parser


def run_command(client: AdminClient, args: argparse.Namespace) -> Any:
    """Dispatch one parsed command; returns what should be printed."""
    if args.command == "status":
        return client.sync_status()
    if args.command == "sync":
        return client.run_sync()
    if args.command == "index-stats":
        return client.index_stats()
    if args.command == "index-rebuild":
        return {"indexed": client.rebuild_index(args.batch_size)}
    if args.command == "index-bulk-sync":
        return {"indexed": client.bulk_sync_index(args.limit)}
    if args.command == "index-cleanup":
        return {"removed": client.cleanup_index()}
    if args.command == "cache-stats":
        return client.cache_stats()
    if args.command == "cache-purge":
        return {"removed": client.purge_cache()}
    if args.command == "cache-cleanup":
        return {"removed": client.cleanup_cache()}
    if args.command == "cache-warm":
        return {"warmed": client.warm_cache(args.limit)}
    if args.command == "lookup":
        return client.lookup(args.value)
    msg = f"Unknown command: {args.command}"
    raise ValueError(msg)


def main(argv: list[str] | None = None) -> None:
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

    with AdminClient(server_url) as client:
        if args.command != "lookup":
            api_key = args.api_key or os.environ.get(API_KEY_ENV)
            if not api_key:
                print(f"Error: --api-key or ${API_KEY_ENV} is required")
                sys.exit(1)
            try:
                client.login(api_key)
            except httpx.HTTPStatusError as exc:
                print(f"Error: Login failed ({exc.response.status_code})")
                sys.exit(1)
        try:
            _print_json(run_command(client, args))
        except httpx.HTTPStatusError as exc:
            print(f"Error: {exc.response.status_code} {exc.response.text}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
