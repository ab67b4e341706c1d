"""Keeps the lookup index and the lookup cache in step with owner mutations.

Every handler swallows and logs its own failures: a write to an attachment
must not fail because the index or a cache tier is degraded.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from lookup_optimizer.exceptions import DuplicatePathError
from lookup_optimizer.services.registry import BoundedRegistry
from lookup_optimizer.services.url_service import url_to_path

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.lookup_cache import TieredLookupCache
    from lookup_optimizer.services.lookup_index import LookupIndex
    from lookup_optimizer.services.option_store import OptionStore

logger = logging.getLogger(__name__)

RECENT_OWNERS_OPTION = "recent_owner_registry"


class InvalidationPropagator:
    def __init__(
        self,
        index: LookupIndex,
        cache: TieredLookupCache,
        options: OptionStore,
        settings: Settings,
    ) -> None:
        self._index = index
        self._cache = cache
        self._options = options
        self._settings = settings

    async def _step(self, action: str, owner_id: int, awaitable: Awaitable[Any]) -> bool:
        try:
            await awaitable
        except DuplicatePathError:
            # Already logged by the index with the conflicting path.
            return False
        except Exception:
            logger.exception("Invalidation step %r failed for owner %d", action, owner_id)
            return False
        return True

    def _paths(self, paths: Iterable[str | None], urls: Iterable[str]) -> list[str]:
        base_url = self._settings.uploads_base_url
        collected = [path for path in paths if path]
        collected.extend(url_to_path(url, base_url) for url in urls)
        return list(dict.fromkeys(path for path in collected if path))

    async def on_created(self, owner_id: int, path: str | None) -> None:
        if path and self._index.enabled:
            await self._step("index put", owner_id, self._index.put(owner_id, path))
        if path:
            # Drop a "not found" cached before the file existed.
            await self._step("cache invalidate path", owner_id, self._cache.invalidate_path(path))
        await self._step("register recent owner", owner_id, self._register_recent(owner_id))

    async def on_path_changed(
        self,
        owner_id: int,
        old_path: str | None,
        new_path: str | None,
        old_urls: Iterable[str] = (),
    ) -> None:
        """Handle a change to the owner's file reference or its sync record.

        ``old_urls`` must be collected before the change is committed so stale
        derivative URLs can be evicted too.
        """
        if self._index.enabled:
            if new_path:
                await self._step("index put", owner_id, self._index.put(owner_id, new_path))
            else:
                await self._step("index delete", owner_id, self._index.delete(owner_id))
        paths = self._paths([old_path, new_path], old_urls)
        await self._step("cache invalidate", owner_id, self._cache.invalidate(owner_id, paths))

    async def on_deleted(self, owner_id: int, path: str | None, urls: Iterable[str] = ()) -> None:
        if self._index.enabled:
            await self._step("index delete", owner_id, self._index.delete(owner_id))
        paths = self._paths([path], urls)
        await self._step("cache invalidate", owner_id, self._cache.invalidate(owner_id, paths))
        await self._step("forget recent owner", owner_id, self._forget_recent(owner_id))

    async def _load_recent(self) -> BoundedRegistry:
        data = await self._options.get(RECENT_OWNERS_OPTION, [])
        return BoundedRegistry.from_list(data, self._settings.owner_registry_max_size)

    async def _register_recent(self, owner_id: int) -> None:
        # Entries past the retention window are dropped here rather than by a sweep.
        now = datetime.now(UTC).timestamp()
        registry = await self._load_recent()
        registry.pop_expired(now)
        registry.add(
            str(owner_id),
            str(owner_id),
            expires_at=now + self._settings.owner_registry_retention_seconds,
            created_at=now,
        )
        await self._options.set(RECENT_OWNERS_OPTION, registry.to_list())

    async def _forget_recent(self, owner_id: int) -> None:
        registry = await self._load_recent()
        if registry.remove(str(owner_id)):
            await self._options.set(RECENT_OWNERS_OPTION, registry.to_list())

    async def recent_owner_ids(self, limit: int | None = None) -> list[int]:
        """Owners registered within the retention window, newest first."""
        registry = await self._load_recent()
        now = datetime.now(UTC).timestamp()
        owner_ids = [int(entry.tier_key) for entry in reversed(registry.entries()) if entry.expires_at > now]
        return owner_ids[:limit] if limit is not None else owner_ids
