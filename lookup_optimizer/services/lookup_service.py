"""Lookup entry points used by the API: paths or URLs in, owner ids out."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lookup_optimizer.services.url_service import attachment_urls, normalize_path, url_to_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.attachment_store import AttachmentStore
    from lookup_optimizer.services.invalidation import InvalidationPropagator
    from lookup_optimizer.services.lookup_cache import LookupResult, TieredLookupCache

logger = logging.getLogger(__name__)


class LookupService:
    def __init__(
        self,
        cache: TieredLookupCache,
        store: AttachmentStore,
        propagator: InvalidationPropagator,
        settings: Settings,
    ) -> None:
        self._cache = cache
        self._store = store
        self._propagator = propagator
        self._settings = settings

    def to_path(self, path_or_url: str) -> str:
        """Accept a relative path or a URL under the uploads base URL."""
        return url_to_path(path_or_url, self._settings.uploads_base_url)

    async def lookup(self, path_or_url: str) -> LookupResult:
        path = self.to_path(path_or_url)
        if not normalize_path(path):
            msg = "A non-empty path or URL is required"
            raise ValueError(msg)
        return await self._cache.resolve(path)

    async def batch_lookup(self, values: Iterable[str]) -> dict[str, int | None]:
        """Resolve several paths or URLs; unresolved values map to None."""
        paths = {value: self.to_path(value) for value in dict.fromkeys(values)}
        resolved = await self._cache.batch_get_owner(path for path in paths.values() if path)
        return {value: resolved.get(path) for value, path in paths.items()}

    async def owner_urls(self, owner_id: int) -> list[str] | None:
        """Every URL of the owner's file; None if the owner does not exist."""
        cached = await self._cache.get_urls(owner_id)
        if cached is not None:
            return cached
        epoch = self._cache.epoch
        attachment = await self._store.get(owner_id)
        if attachment is None:
            return None
        urls = attachment_urls(attachment, self._settings.uploads_base_url)
        await self._cache.set_urls(owner_id, urls, epoch)
        return urls

    async def warm(self, limit: int = 100) -> int:
        """Pre-resolve recently created owners; falls back to the newest ones.

        Returns the number of owners whose path and URLs were cached.
        """
        owner_ids = await self._propagator.recent_owner_ids(limit)
        if not owner_ids:
            owner_ids = await self._store.newest_ids(limit)
        warmed = 0
        for owner_id in owner_ids:
            attachment = await self._store.get(owner_id)
            if attachment is None or not attachment.file_path:
                continue
            await self._cache.resolve(attachment.file_path)
            await self.owner_urls(owner_id)
            warmed += 1
        logger.info("Warmed lookup cache for %d owners", warmed)
        return warmed
