"""Remote object storage client (Bunny storage zones served through the CDN)."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import posixpath
import re
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote, unquote, urlsplit

import httpx

if TYPE_CHECKING:
    from pathlib import Path

    from lookup_optimizer.config import Settings

logger = logging.getLogger(__name__)

_MIN_UPLOAD_TIMEOUT = 30.0
_MAX_UPLOAD_TIMEOUT = 120.0
_BYTES_PER_EXTRA_SECOND = 100 * 1024
_DELETE_TIMEOUT = 30.0


class RemoteStore(Protocol):
    """What the upload scheduler needs from a remote object store."""

    def is_enabled(self) -> bool: ...

    async def upload(self, local_path: Path, remote_name: str, owner_id: int) -> str | None: ...

    async def delete(self, remote_name: str) -> bool: ...


def sanitize_storage_zone(value: str) -> str:
    """Reduce a pasted zone URL or hostname to the bare zone name."""
    zone = value.strip().lower()
    zone = re.sub(r"^[a-z][a-z0-9+.-]*://", "", zone)
    if zone.startswith("storage.bunnycdn.com/"):
        zone = zone.split("/", 1)[1]
    zone = zone.split("/", 1)[0].removesuffix(".b-cdn.net")
    return re.sub(r"[^a-z0-9-]", "", zone)


def build_cdn_url(zone: str, remote_name: str, hostname: str = "") -> str:
    host = hostname.strip().rstrip("/") or f"{zone}.b-cdn.net"
    host = re.sub(r"^https?://", "", host)
    return f"https://{host}/{quote(remote_name.lstrip('/'), safe='/')}"


def extract_filename_from_url(url: str) -> str:
    return unquote(posixpath.basename(urlsplit(url).path))


def upload_timeout(size_bytes: int) -> float:
    """Thirty seconds plus one per 100 KiB, capped at two minutes."""
    seconds = _MIN_UPLOAD_TIMEOUT + size_bytes / _BYTES_PER_EXTRA_SECOND
    return max(_MIN_UPLOAD_TIMEOUT, min(_MAX_UPLOAD_TIMEOUT, seconds))


class BunnyStorageClient:
    """Uploads files with ``PUT {api_base}/{zone}/{name}``.

    Any non-2xx response, transport error or timeout is reported as a failed
    upload (``None``); retrying is left to the next scheduler run. When more
    than ``max_concurrent_uploads`` uploads are in flight, further uploads
    fail immediately instead of queueing.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self.zone = sanitize_storage_zone(settings.storage_zone)
        self._client = httpx.AsyncClient(transport=transport, timeout=_MIN_UPLOAD_TIMEOUT)
        self._in_flight = 0

    def is_enabled(self) -> bool:
        return bool(self._settings.remote_sync_enabled and self.zone and self._settings.storage_api_key)

    def _object_url(self, remote_name: str) -> str:
        base = self._settings.storage_api_base.rstrip("/")
        return f"{base}/{self.zone}/{quote(remote_name.lstrip('/'), safe='/')}"

    def _headers(self) -> dict[str, str]:
        return {"AccessKey": self._settings.storage_api_key}

    def public_url(self, remote_name: str) -> str:
        return build_cdn_url(self.zone, remote_name, self._settings.cdn_hostname)

    async def upload(self, local_path: Path, remote_name: str, owner_id: int) -> str | None:
        if not self.is_enabled():
            logger.warning("Remote store not configured; cannot upload owner %d", owner_id)
            return None
        if self._in_flight >= self._settings.max_concurrent_uploads:
            logger.warning(
                "Upload for owner %d rejected: %d uploads already in flight",
                owner_id,
                self._in_flight,
            )
            return None

        self._in_flight += 1
        try:
            try:
                body = await asyncio.to_thread(local_path.read_bytes)
            except OSError as exc:
                logger.warning("Cannot read %s for owner %d: %s", local_path, owner_id, exc)
                return None

            content_type = mimetypes.guess_type(remote_name)[0] or "application/octet-stream"
            headers = {**self._headers(), "Content-Type": content_type}
            try:
                response = await self._client.put(
                    self._object_url(remote_name),
                    content=body,
                    headers=headers,
                    timeout=upload_timeout(len(body)),
                )
            except httpx.HTTPError as exc:
                logger.warning("Upload of %s for owner %d failed: %s", remote_name, owner_id, exc)
                return None
        finally:
            self._in_flight -= 1

        if not response.is_success:
            logger.warning(
                "Upload of %s for owner %d rejected (HTTP %d): %s",
                remote_name,
                owner_id,
                response.status_code,
                response.text[:200],
            )
            return None
        url = self.public_url(remote_name)
        logger.info("Uploaded owner %d to %s", owner_id, url)
        return url

    async def delete(self, remote_name: str) -> bool:
        """Delete a remote object. A missing object counts as deleted."""
        if not self.is_enabled():
            return False
        try:
            response = await self._client.delete(
                self._object_url(remote_name), headers=self._headers(), timeout=_DELETE_TIMEOUT
            )
        except httpx.HTTPError as exc:
            logger.warning("Remote delete of %s failed: %s", remote_name, exc)
            return False
        if response.status_code == httpx.codes.NOT_FOUND:
            return True
        if not response.is_success:
            logger.warning("Remote delete of %s rejected (HTTP %d)", remote_name, response.status_code)
        return response.is_success

    async def close(self) -> None:
        await self._client.aclose()
