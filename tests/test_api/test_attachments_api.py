"""API tests for attachment records and their effect on lookups."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from lookup_optimizer.services.auth_service import create_access_token
from tests.conftest import admin_headers, create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from lookup_optimizer.config import Settings
    from tests.conftest import FakeStorage


@pytest.fixture
async def client(test_settings: Settings, fake_storage: FakeStorage) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, fake_storage) as ac:
        yield ac


class TestAccessControl:
    async def test_requires_token(self, client: AsyncClient) -> None:
        resp = await client.post("/api/attachments", json={"file_path": "a.jpg"})
        assert resp.status_code == 401

    async def test_requires_admin_role(self, client: AsyncClient, test_settings: Settings) -> None:
        token = create_access_token({"sub": "viewer", "role": "viewer"}, test_settings.secret_key)
        resp = await client.post(
            "/api/attachments",
            json={"file_path": "a.jpg"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 403

    async def test_invalid_token(self, client: AsyncClient) -> None:
        resp = await client.get("/api/attachments/1", headers={"Authorization": "Bearer junk"})
        assert resp.status_code == 401


class TestCrud:
    async def test_create_and_get(self, client: AsyncClient, test_settings: Settings) -> None:
        headers = admin_headers(test_settings)
        resp = await client.post(
            "/api/attachments",
            json={
                "file_path": "/2024/a.jpg",
                "title": "A",
                "sizes": ["a-150x150.jpg"],
                "created_at": "2024-05-01 10:30:00",
            },
            headers=headers,
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["file_path"] == "2024/a.jpg"
        assert created["sizes"] == ["a-150x150.jpg"]
        assert created["created_at"].startswith("2024-05-01T10:30:00")

        resp = await client.get(f"/api/attachments/{created['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["title"] == "A"

    async def test_invalid_created_at(self, client: AsyncClient, test_settings: Settings) -> None:
        resp = await client.post(
            "/api/attachments",
            json={"file_path": "a.jpg", "created_at": "not a date"},
            headers=admin_headers(test_settings),
        )
        assert resp.status_code == 422

    @pytest.mark.parametrize("file_path", ["../etc/passwd", "a/../../b.jpg", "a\\..\\b.jpg"])
    async def test_traversal_rejected(
        self, client: AsyncClient, test_settings: Settings, file_path: str
    ) -> None:
        resp = await client.post(
            "/api/attachments",
            json={"file_path": file_path},
            headers=admin_headers(test_settings),
        )
        assert resp.status_code == 422

    async def test_patch_moves_lookup(self, client: AsyncClient, test_settings: Settings) -> None:
        headers = admin_headers(test_settings)
        owner_id = (
            await client.post("/api/attachments", json={"file_path": "old.jpg"}, headers=headers)
        ).json()["id"]
        assert (await client.get("/api/lookup", params={"path": "old.jpg"})).json()["found"]

        resp = await client.patch(
            f"/api/attachments/{owner_id}", json={"file_path": "new.jpg"}, headers=headers
        )

        assert resp.status_code == 200
        assert (await client.get("/api/lookup", params={"path": "old.jpg"})).json()["found"] is False
        new = (await client.get("/api/lookup", params={"path": "new.jpg"})).json()
        assert new["owner_id"] == owner_id

    async def test_patch_title_keeps_file(self, client: AsyncClient, test_settings: Settings) -> None:
        headers = admin_headers(test_settings)
        owner_id = (
            await client.post("/api/attachments", json={"file_path": "a.jpg"}, headers=headers)
        ).json()["id"]

        resp = await client.patch(
            f"/api/attachments/{owner_id}", json={"title": "Renamed"}, headers=headers
        )

        assert resp.status_code == 200
        assert resp.json()["file_path"] == "a.jpg"
        assert resp.json()["title"] == "Renamed"

    async def test_patch_null_file_path_clears_it(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        headers = admin_headers(test_settings)
        owner_id = (
            await client.post("/api/attachments", json={"file_path": "a.jpg"}, headers=headers)
        ).json()["id"]

        resp = await client.patch(
            f"/api/attachments/{owner_id}", json={"file_path": None}, headers=headers
        )

        assert resp.status_code == 200
        assert resp.json()["file_path"] is None
        assert (await client.get("/api/lookup", params={"path": "a.jpg"})).json()["found"] is False

    async def test_delete(self, client: AsyncClient, test_settings: Settings) -> None:
        headers = admin_headers(test_settings)
        owner_id = (
            await client.post("/api/attachments", json={"file_path": "a.jpg"}, headers=headers)
        ).json()["id"]

        assert (await client.delete(f"/api/attachments/{owner_id}", headers=headers)).status_code == 204
        assert (await client.delete(f"/api/attachments/{owner_id}", headers=headers)).status_code == 404
        assert (await client.get(f"/api/attachments/{owner_id}", headers=headers)).status_code == 404
        assert (await client.get("/api/lookup", params={"path": "a.jpg"})).json()["found"] is False

    async def test_patch_unknown(self, client: AsyncClient, test_settings: Settings) -> None:
        resp = await client.patch(
            "/api/attachments/999", json={"title": "x"}, headers=admin_headers(test_settings)
        )
        assert resp.status_code == 404
