"""Shared test fixtures for the lookup optimizer."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from lookup_optimizer.config import Settings
from lookup_optimizer.database import create_engine
from lookup_optimizer.main import create_app
from lookup_optimizer.models.attachment import Attachment
from lookup_optimizer.models.base import Base
from lookup_optimizer.services.auth_service import create_access_token
from lookup_optimizer.services.container import Components, build_components, close_components

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_ADMIN_KEY = "test-admin-key-0123456789"
TEST_BASE_URL = "https://example.com/uploads"


@dataclass
class FakeStorage:
    """In-memory stand-in for the storage HTTP API, served via MockTransport."""

    objects: dict[str, bytes] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    fail_names: set[str] = field(default_factory=set)
    status_code: int = 201

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        name = request.url.path.split("/", 2)[-1]
        if request.headers.get("AccessKey") != "test-storage-key":
            return httpx.Response(401, text="bad key")
        if request.method == "PUT":
            if name in self.fail_names:
                return httpx.Response(500, text="storage failure")
            self.objects[name] = request.content
            return httpx.Response(self.status_code, json={"Message": "File uploaded."})
        if request.method == "DELETE":
            if self.objects.pop(name, None) is None:
                return httpx.Response(404)
            return httpx.Response(200)
        return httpx.Response(405)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def admin_headers(settings: Settings) -> dict[str, str]:
    token = create_access_token({"sub": "admin", "role": "admin"}, settings.secret_key)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, uploads_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        admin_api_key=TEST_ADMIN_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        uploads_dir=uploads_dir,
        uploads_base_url=TEST_BASE_URL,
        redis_url="",
        remote_sync_enabled=True,
        auto_sync_enabled=False,
        storage_zone="testzone",
        storage_api_key="test-storage-key",
        sync_item_delay_seconds=0,
    )


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
async def db(
    test_settings: Settings,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]]]:
    """Engine and session factory over a freshly created schema."""
    engine, session_factory = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine, session_factory
    await engine.dispose()


@pytest.fixture
async def components(
    db: tuple[AsyncEngine, async_sessionmaker[AsyncSession]],
    test_settings: Settings,
    fake_storage: FakeStorage,
) -> AsyncGenerator[Components]:
    engine, session_factory = db
    built = build_components(engine, session_factory, test_settings, fake_storage.transport)
    yield built
    await close_components(built)


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    storage: FakeStorage | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (schema, components,
    index table) because ASGITransport does not trigger it. The sync timer is
    not started.
    """
    app = create_app(settings)
    settings.validate_runtime_security()

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    components = build_components(
        engine,
        session_factory,
        settings,
        storage.transport if storage is not None else None,
    )
    app.state.components = components
    await components.index.ensure_table()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await close_components(components)
    await engine.dispose()


@pytest.fixture
def insert_attachment(
    db: tuple[AsyncEngine, async_sessionmaker[AsyncSession]],
) -> Callable[..., Awaitable[int]]:
    """Insert an attachment row directly, bypassing the store and its events."""
    _engine, session_factory = db

    async def _insert(
        file_path: str | None,
        *,
        sizes: Sequence[str] = (),
        created_at: datetime | None = None,
        remote_url: str | None = None,
    ) -> int:
        attachment = Attachment(
            title="",
            file_path=file_path,
            sizes=json.dumps(list(sizes)),
            created_at=created_at or datetime.now(UTC),
            remote_url=remote_url,
        )
        async with session_factory() as session:
            session.add(attachment)
            await session.commit()
            return attachment.id

    return _insert
