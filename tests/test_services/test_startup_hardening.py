"""Tests for startup hardening and global exception handlers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from lookup_optimizer.config import Settings
from lookup_optimizer.exceptions import InternalServerError
from lookup_optimizer.main import create_app, ensure_sqlite_dir, lifespan
from lookup_optimizer.services.index_maintenance import REQUIRED_INDEXES

if TYPE_CHECKING:
    from pathlib import Path

    from fastapi import FastAPI


def _settings(tmp_path: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {
        "secret_key": "test-secret-key-min-32-characters-long",
        "admin_api_key": "test-admin-key-0123456789",
        "debug": True,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'db' / 'lookup.db'}",
        "uploads_dir": tmp_path / "uploads",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def _get(app: FastAPI, path: str) -> tuple[int, dict[str, object]]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.get(path)
    return resp.status_code, resp.json()


class TestGlobalExceptionHandlers:
    """Global exception handlers return structured JSON instead of crashing."""

    async def test_os_error_returns_500(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path))

        @app.get("/test-os-error")
        async def _raise_os_error() -> None:
            raise OSError("disk full")

        assert await _get(app, "/test-os-error") == (500, {"detail": "Storage operation failed"})

    async def test_value_error_returns_422_with_message(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path))

        @app.get("/test-value-error")
        async def _raise_value_error() -> None:
            raise ValueError("bad path")

        assert await _get(app, "/test-value-error") == (422, {"detail": "bad path"})

    async def test_internal_error_hides_details(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path))

        @app.get("/test-internal")
        async def _raise_internal() -> None:
            raise InternalServerError("secret connection string")

        assert await _get(app, "/test-internal") == (500, {"detail": "Internal server error"})

    async def test_json_error_returns_500(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path))

        @app.get("/test-json")
        async def _raise_json() -> None:
            json.loads("{broken")

        assert await _get(app, "/test-json") == (500, {"detail": "Data integrity error"})

    async def test_operational_error_returns_503(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path))

        @app.get("/test-db")
        async def _raise_db() -> None:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        status, body = await _get(app, "/test-db")
        assert status == 503
        assert body == {"detail": "Database temporarily unavailable"}


class TestLifespan:
    async def test_startup_prepares_schema_indexes_and_lookup_table(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, remote_sync_enabled=False)
        app = create_app(settings)

        async with lifespan(app):
            components = app.state.components
            assert await components.index.table_exists()
            for name, definition in REQUIRED_INDEXES.items():
                assert await components.maintenance.index_exists(name, definition.table)
            assert components.timer.active is False

        assert (tmp_path / "db" / "lookup.db").exists()

    async def test_startup_backfills_existing_attachments(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, remote_sync_enabled=False)
        app = create_app(settings)
        async with lifespan(app):
            attachment = await app.state.components.store.create(file_path="a.jpg")
            await app.state.components.index.drop_table()

        app = create_app(settings)
        async with lifespan(app):
            assert await app.state.components.index.lookup("a.jpg") == attachment.id

    async def test_timer_started_when_remote_sync_enabled(self, tmp_path: Path) -> None:
        settings = _settings(
            tmp_path,
            remote_sync_enabled=True,
            storage_zone="zone",
            storage_api_key="key",
            sync_interval_seconds=3600,
        )
        app = create_app(settings)

        async with lifespan(app):
            assert app.state.components.timer.active is True
        assert app.state.components.timer.active is False

    async def test_insecure_production_settings_refuse_to_start(self, tmp_path: Path) -> None:
        app = create_app(_settings(tmp_path, debug=False, secret_key="short"))
        with pytest.raises(ValueError, match="SECRET_KEY"):
            async with lifespan(app):
                pass


class TestEnsureSqliteDir:
    def test_creates_parent(self, tmp_path: Path) -> None:
        ensure_sqlite_dir(f"sqlite+aiosqlite:///{tmp_path / 'a' / 'b' / 'x.db'}")
        assert (tmp_path / "a" / "b").is_dir()

    def test_ignores_other_databases(self) -> None:
        ensure_sqlite_dir("postgresql+asyncpg://user@host/db")
        ensure_sqlite_dir("sqlite+aiosqlite:///:memory:")
