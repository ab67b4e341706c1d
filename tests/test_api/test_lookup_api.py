"""API tests for path and URL lookups."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.conftest import TEST_BASE_URL, admin_headers, create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from lookup_optimizer.config import Settings
    from tests.conftest import FakeStorage


@pytest.fixture
async def client(test_settings: Settings, fake_storage: FakeStorage) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, fake_storage) as ac:
        yield ac


async def _create(client: AsyncClient, settings: Settings, file_path: str, **extra: object) -> int:
    resp = await client.post(
        "/api/attachments",
        json={"file_path": file_path, **extra},
        headers=admin_headers(settings),
    )
    assert resp.status_code == 201, resp.text
    owner_id: int = resp.json()["id"]
    return owner_id


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert data["lookup_table"] == "ok"
        assert data["sync_timer"] == "stopped"


class TestLookup:
    async def test_lookup_by_path(self, client: AsyncClient, test_settings: Settings) -> None:
        owner_id = await _create(client, test_settings, "2024/05/photo.jpg")

        resp = await client.get("/api/lookup", params={"path": "/2024/05/photo.jpg"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["owner_id"] == owner_id
        assert data["found"] is True
        assert data["source"] == "index"

    async def test_lookup_by_url(self, client: AsyncClient, test_settings: Settings) -> None:
        owner_id = await _create(client, test_settings, "2024/05/photo.jpg")

        resp = await client.get(
            "/api/lookup", params={"url": f"{TEST_BASE_URL}/2024/05/photo.jpg?ver=1"}
        )

        assert resp.status_code == 200
        assert resp.json()["owner_id"] == owner_id
        assert resp.json()["path"] == "2024/05/photo.jpg"

    async def test_not_found_is_not_an_error(self, client: AsyncClient) -> None:
        resp = await client.get("/api/lookup", params={"path": "nope.jpg"})
        assert resp.status_code == 200
        assert resp.json()["found"] is False
        assert resp.json()["owner_id"] is None

    @pytest.mark.parametrize(
        "params",
        [{}, {"path": "a.jpg", "url": f"{TEST_BASE_URL}/a.jpg"}],
    )
    async def test_exactly_one_parameter_required(
        self, client: AsyncClient, params: dict[str, str]
    ) -> None:
        resp = await client.get("/api/lookup", params=params)
        assert resp.status_code == 422

    async def test_empty_path_rejected(self, client: AsyncClient) -> None:
        resp = await client.get("/api/lookup", params={"path": "/"})
        assert resp.status_code == 422
        assert "non-empty" in resp.json()["detail"]


class TestBatchLookup:
    async def test_batch(self, client: AsyncClient, test_settings: Settings) -> None:
        first = await _create(client, test_settings, "a.jpg")
        second = await _create(client, test_settings, "b/c.jpg")

        resp = await client.post(
            "/api/lookup/batch",
            json={"items": ["a.jpg", f"{TEST_BASE_URL}/b/c.jpg", "missing.jpg"]},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["results"] == {
            "a.jpg": first,
            f"{TEST_BASE_URL}/b/c.jpg": second,
            "missing.jpg": None,
        }
        assert (data["found"], data["not_found"]) == (2, 1)

    async def test_empty_batch_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/lookup/batch", json={"items": []})
        assert resp.status_code == 422


class TestOwnerUrls:
    async def test_owner_urls(self, client: AsyncClient, test_settings: Settings) -> None:
        owner_id = await _create(client, test_settings, "2024/a.jpg", sizes=["a-150x150.jpg"])

        resp = await client.get(f"/api/lookup/owners/{owner_id}/urls")

        assert resp.status_code == 200
        assert resp.json()["urls"] == [
            f"{TEST_BASE_URL}/2024/a.jpg",
            f"{TEST_BASE_URL}/2024/a-150x150.jpg",
        ]

    async def test_unknown_owner(self, client: AsyncClient) -> None:
        resp = await client.get("/api/lookup/owners/999/urls")
        assert resp.status_code == 404
