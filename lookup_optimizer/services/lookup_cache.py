"""Tiered path -> owner cache in front of the lookup index and the slow scan.

Keys are derived from the canonical path, so every leading-separator variant
of a path shares one cache entry. Values are the owner id, ``False`` for a
path known not to resolve, or a list of URLs for ``urls_`` keys.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from lookup_optimizer.exceptions import CacheTierError, DuplicatePathError
from lookup_optimizer.services.url_service import normalize_path

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.cache_tiers import CacheTier
    from lookup_optimizer.services.lookup_index import LookupIndex

logger = logging.getLogger(__name__)

NOT_FOUND = False

SOURCE_INDEX = "index"
SOURCE_SCAN = "scan"
SOURCE_NONE = "none"


def path_key(path: str) -> str:
    digest = hashlib.sha256(normalize_path(path).encode("utf-8")).hexdigest()
    return f"path_{digest}"


def urls_key(owner_id: int) -> str:
    return f"urls_{owner_id}"


def owner_paths_key(owner_id: int) -> str:
    return f"owner_paths_{owner_id}"


class SlowScan(Protocol):
    """Unindexed fallback consulted only after the cache and the index miss."""

    async def scan_for_path(self, path: str) -> int | None: ...

    async def scan_for_paths(self, paths: Iterable[str]) -> dict[str, int]: ...


@dataclass(frozen=True)
class CachedOwner:
    """A cache hit. ``owner_id`` is None when the path is cached as not found."""

    owner_id: int | None

    @property
    def found(self) -> bool:
        return self.owner_id is not None


@dataclass(frozen=True)
class LookupResult:
    owner_id: int | None
    source: str


def _decode_owner(value: Any) -> CachedOwner | None:
    if value is NOT_FOUND:
        return CachedOwner(None)
    if isinstance(value, int) and not isinstance(value, bool):
        return CachedOwner(value)
    return None


class TieredLookupCache:
    """Read-through cache over an ordered list of tiers.

    A tier that raises ``CacheTierError`` is logged and treated as a miss, so a
    degraded tier costs latency but never changes an answer.

    Every invalidation advances ``epoch``. A write-back carries the epoch taken
    before its read; if an invalidation ran in between, the write is dropped
    and anything already written for the key is evicted again, so a value
    read before an invalidation is never served after it returns.
    """

    def __init__(
        self,
        tiers: Sequence[CacheTier],
        index: LookupIndex,
        scan: SlowScan | None,
        settings: Settings,
    ) -> None:
        self.tiers = list(tiers)
        self._index = index
        self._scan = scan
        self._settings = settings
        self.counters: dict[str, int] = {}
        self._epoch = 0
        self.reset_stats()

    @property
    def epoch(self) -> int:
        return self._epoch

    def _current(self, epoch: int | None) -> bool:
        return epoch is None or epoch == self._epoch

    def reset_stats(self) -> None:
        self.counters = {
            "lookups": 0,
            "found": 0,
            "not_found": 0,
            "index_hits": 0,
            "scan_hits": 0,
            "tier_errors": 0,
            "stale_writes_dropped": 0,
            **{f"{tier.name}_hits": 0 for tier in self.tiers},
        }

    def _ttl(self, tier: CacheTier, ttl_seconds: int) -> int:
        if tier.native_ttl:
            return ttl_seconds
        return min(ttl_seconds, self._settings.transient_ttl_seconds)

    async def _guarded(self, tier: CacheTier, action: Callable[[], Awaitable[Any]], default: Any) -> Any:
        try:
            return await action()
        except CacheTierError as exc:
            self.counters["tier_errors"] += 1
            logger.warning("Cache tier %s unavailable: %s", tier.name, exc)
            return default

    async def _write(
        self,
        tiers: Iterable[CacheTier],
        key: str,
        value: Any,
        ttl_seconds: int,
        epoch: int | None = None,
    ) -> bool:
        """Write ``key`` to ``tiers``; False if an invalidation overtook ``epoch``."""
        for tier in tiers:
            if not self._current(epoch):
                break
            ttl = self._ttl(tier, ttl_seconds)
            await self._guarded(tier, lambda t=tier, ttl=ttl: t.set(key, value, ttl), None)
        if self._current(epoch):
            return True
        self.counters["stale_writes_dropped"] += 1
        logger.debug("Dropped cache write for %s: invalidated during lookup", key)
        await self._delete([key])
        return False

    async def _delete(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        for tier in self.tiers:
            await self._guarded(tier, lambda t=tier: t.delete_many(keys), 0)

    def _owner_ttl(self, cached: CachedOwner) -> int:
        if cached.found:
            return self._settings.cache_ttl_seconds
        return self._settings.not_found_ttl_seconds

    async def _read_tiers(self, path: str, epoch: int) -> tuple[CachedOwner, str] | None:
        key = path_key(path)
        for position, tier in enumerate(self.tiers):
            value = await self._guarded(tier, lambda t=tier: t.get(key), None)
            cached = _decode_owner(value)
            if cached is None:
                continue
            self.counters[f"{tier.name}_hits"] += 1
            if not await self._write(self.tiers[:position], key, value, self._owner_ttl(cached), epoch):
                return None
            return cached, tier.name
        return None

    async def get_owner(self, path: str) -> CachedOwner | None:
        """Check the tiers only. Returns None on a miss in every tier.

        A hit in a slower tier is copied into the faster tiers above it.
        """
        hit = await self._read_tiers(path, self._epoch)
        return hit[0] if hit is not None else None

    async def set_owner(self, path: str, owner_id: int | None, epoch: int | None = None) -> None:
        """Cache a resolution in every tier.

        Pass the ``epoch`` read before the resolution was looked up to drop
        the write if the owner was invalidated meanwhile.
        """
        key = path_key(path)
        if owner_id is None:
            await self._write(self.tiers, key, NOT_FOUND, self._settings.not_found_ttl_seconds, epoch)
            return
        if await self._write(self.tiers, key, owner_id, self._settings.cache_ttl_seconds, epoch):
            await self._track_owner_path(owner_id, normalize_path(path), epoch)

    async def _track_owner_path(self, owner_id: int, canonical: str, epoch: int | None) -> None:
        key = owner_paths_key(owner_id)
        for tier in self.tiers:
            known = await self._guarded(tier, lambda t=tier: t.get(key), None) or []
            if canonical in known:
                continue
            if not await self._write([tier], key, [*known, canonical], self._settings.cache_ttl_seconds, epoch):
                return

    async def _backfill_index(self, owner_id: int, path: str, epoch: int) -> None:
        if not self._index.enabled or not self._current(epoch):
            return
        try:
            await self._index.put(owner_id, path)
        except DuplicatePathError:
            pass
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning("Could not back-fill lookup index for owner %d (%r): %s", owner_id, path, exc)

    def _count(self, owner_id: int | None) -> None:
        self.counters["lookups"] += 1
        self.counters["found" if owner_id is not None else "not_found"] += 1

    async def resolve(self, path: str) -> LookupResult:
        """Resolve a path through cache, index and slow scan, in that order."""
        epoch = self._epoch
        hit = await self._read_tiers(path, epoch)
        if hit is not None:
            cached, tier_name = hit
            self._count(cached.owner_id)
            return LookupResult(cached.owner_id, tier_name)

        owner_id = await self._index.lookup(path)
        source = SOURCE_INDEX
        if owner_id is None and self._scan is not None:
            owner_id = await self._scan.scan_for_path(path)
            source = SOURCE_SCAN
            if owner_id is not None:
                await self._backfill_index(owner_id, path, epoch)
        if owner_id is None:
            source = SOURCE_NONE
        else:
            self.counters[f"{source}_hits"] += 1

        await self.set_owner(path, owner_id, epoch)
        self._count(owner_id)
        return LookupResult(owner_id, source)

    async def batch_get_owner(self, paths: Iterable[str]) -> dict[str, int]:
        """Resolve many paths; returns only the paths that resolved.

        Each tier is asked once for every key still missing, then the index
        is queried once for the remainder, then the slow scan.
        """
        epoch = self._epoch
        wanted = [path for path in dict.fromkeys(paths) if path]
        keys = {path: path_key(path) for path in wanted}
        resolved: dict[str, int] = {}
        known_missing: set[str] = set()
        pending = list(wanted)

        for position, tier in enumerate(self.tiers):
            if not pending:
                break
            found = await self._guarded(
                tier, lambda t=tier: t.get_many(keys[p] for p in pending), {}
            )
            still_pending = []
            for path in pending:
                value = found.get(keys[path])
                cached = _decode_owner(value)
                if cached is None:
                    still_pending.append(path)
                    continue
                self.counters[f"{tier.name}_hits"] += 1
                if cached.found:
                    resolved[path] = cached.owner_id  # type: ignore[assignment]
                else:
                    known_missing.add(path)
                await self._write(self.tiers[:position], keys[path], value, self._owner_ttl(cached), epoch)
            pending = still_pending

        if pending:
            from_index = await self._index.batch_lookup(pending)
            self.counters["index_hits"] += len(from_index)
            from_scan: dict[str, int] = {}
            remainder = [path for path in pending if path not in from_index]
            if remainder and self._scan is not None:
                from_scan = await self._scan.scan_for_paths(remainder)
                self.counters["scan_hits"] += len(from_scan)
                for path, owner_id in from_scan.items():
                    await self._backfill_index(owner_id, path, epoch)
            for path in pending:
                owner_id = from_index.get(path, from_scan.get(path))
                await self.set_owner(path, owner_id, epoch)
                if owner_id is not None:
                    resolved[path] = owner_id

        for path in wanted:
            self._count(resolved.get(path))
        return resolved

    async def get_urls(self, owner_id: int) -> list[str] | None:
        epoch = self._epoch
        key = urls_key(owner_id)
        for position, tier in enumerate(self.tiers):
            value = await self._guarded(tier, lambda t=tier: t.get(key), None)
            if isinstance(value, list):
                if not await self._write(
                    self.tiers[:position], key, value, self._settings.cache_ttl_seconds, epoch
                ):
                    return None
                return [str(url) for url in value]
        return None

    async def set_urls(self, owner_id: int, urls: Sequence[str], epoch: int | None = None) -> None:
        await self._write(self.tiers, urls_key(owner_id), list(urls), self._settings.cache_ttl_seconds, epoch)

    async def invalidate(self, owner_id: int, paths: Iterable[str] = ()) -> None:
        """Evict the owner's URL set and every path cached for it.

        ``paths`` adds paths the caller knows about (old and new file paths)
        on top of those tracked when the owner's paths were cached.
        """
        self._epoch += 1
        try:
            await self._evict_owner(owner_id, paths)
        finally:
            self._epoch += 1

    async def _evict_owner(self, owner_id: int, paths: Iterable[str]) -> None:
        canonical = {normalize_path(path) for path in paths if path}
        tracking_key = owner_paths_key(owner_id)
        for tier in self.tiers:
            known = await self._guarded(tier, lambda t=tier: t.get(tracking_key), None)
            if isinstance(known, list):
                canonical.update(str(path) for path in known)
        keys = [path_key(path) for path in sorted(canonical)]
        await self._delete([*keys, urls_key(owner_id), tracking_key])
        logger.debug("Invalidated owner %d (%d paths)", owner_id, len(keys))

    async def invalidate_path(self, path: str) -> None:
        self._epoch += 1
        try:
            await self._delete([path_key(path)])
        finally:
            self._epoch += 1

    async def purge(self) -> dict[str, int]:
        """Empty every tier; returns the number of entries removed per tier."""
        removed: dict[str, int] = {}
        for tier in self.tiers:
            removed[tier.name] = await self._guarded(tier, tier.clear, 0)
        logger.info("Lookup cache purged: %s", removed)
        return removed

    async def cleanup(self) -> int:
        """Expire entries in tiers that cannot expire entries on their own."""
        removed = 0
        for tier in self.tiers:
            cleanup_expired = getattr(tier, "cleanup_expired", None)
            if tier.native_ttl or cleanup_expired is None:
                continue
            removed += await self._guarded(tier, cleanup_expired, 0)
        return removed

    async def stats(self) -> dict[str, Any]:
        tiers: dict[str, Any] = {}
        for tier in self.tiers:
            tiers[tier.name] = await self._guarded(tier, tier.stats, {"reachable": False})
        return {"counters": dict(self.counters), "tiers": tiers}
