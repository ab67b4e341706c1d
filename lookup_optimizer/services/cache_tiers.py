"""Cache tiers consulted by the lookup cache, fastest first.

Every tier stores JSON-compatible values and returns ``None`` on a miss, so
``None`` itself is never stored. Tiers raise ``CacheTierError`` when their
backend is unreachable; the lookup cache treats that as a miss.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections import OrderedDict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from lookup_optimizer.exceptions import CacheTierError
from lookup_optimizer.services.registry import BoundedRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from lookup_optimizer.services.option_store import OptionStore

logger = logging.getLogger(__name__)

TRANSIENT_PREFIX = "lc_"
TRANSIENT_REGISTRY_OPTION = "lookup_transient_registry"
# Longer names are replaced by a digest so they fit the host's option-name limit.
MAX_TRANSIENT_KEY_LENGTH = 172


@runtime_checkable
class CacheTier(Protocol):
    """One layer of the lookup cache."""

    name: str
    native_ttl: bool

    async def get(self, key: str) -> Any | None: ...

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> int: ...

    async def clear(self) -> int: ...

    async def stats(self) -> dict[str, Any]: ...


class MemoryTier:
    """In-process tier with per-entry expiry and a size cap.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    No method awaits between reading and mutating the store.
    """

    name = "memory"
    native_ttl = True

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def _now(self) -> float:
        return datetime.now(UTC).timestamp()

    def _read(self, key: str, now: float) -> Any | None:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= now:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def get(self, key: str) -> Any | None:
        return self._read(key, self._now())

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        now = self._now()
        found: dict[str, Any] = {}
        for key in keys:
            value = self._read(key, now)
            if value is not None:
                found[key] = value
        return found

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._now() + ttl_seconds, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def delete_many(self, keys: Iterable[str]) -> int:
        return sum(1 for key in keys if self._entries.pop(key, None) is not None)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    async def stats(self) -> dict[str, Any]:
        return {"entries": len(self._entries), "max_entries": self.max_entries}


class RedisTier:
    """Shared tier backed by Redis; expiry is delegated to Redis itself."""

    name = "redis"
    native_ttl = True

    def __init__(self, url: str, key_prefix: str = "lookup:") -> None:
        self.key_prefix = key_prefix
        self._client = aioredis.Redis.from_url(url)

    def _k(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(self._k(key))
        except (RedisError, OSError) as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        return json.loads(raw) if raw is not None else None

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}
        try:
            raws = await self._client.mget([self._k(key) for key in wanted])
        except (RedisError, OSError) as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        return {key: json.loads(raw) for key, raw in zip(wanted, raws, strict=True) if raw is not None}

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._client.set(self._k(key), json.dumps(value), ex=max(1, int(ttl_seconds)))
        except (RedisError, OSError) as exc:
            raise CacheTierError(self.name, str(exc)) from exc

    async def delete_many(self, keys: Iterable[str]) -> int:
        names = [self._k(key) for key in dict.fromkeys(keys)]
        if not names:
            return 0
        try:
            return int(await self._client.delete(*names))
        except (RedisError, OSError) as exc:
            raise CacheTierError(self.name, str(exc)) from exc

    async def clear(self) -> int:
        deleted = 0
        try:
            batch: list[bytes] = []
            async for name in self._client.scan_iter(match=f"{self.key_prefix}*", count=500):
                batch.append(name)
                if len(batch) >= 500:
                    deleted += int(await self._client.delete(*batch))
                    batch = []
            if batch:
                deleted += int(await self._client.delete(*batch))
        except (RedisError, OSError) as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        return deleted

    async def stats(self) -> dict[str, Any]:
        try:
            await self._client.ping()
        except (RedisError, OSError):
            logger.warning("Redis cache tier unreachable", exc_info=True)
            return {"reachable": False}
        return {"reachable": True, "key_prefix": self.key_prefix}

    async def close(self) -> None:
        await self._client.aclose()


class TransientTier:
    """Durable, slow tier stored in the options table.

    The options table checks expiry on read but never evicts, and offers no
    cheap way to list what this tier wrote. Every entry is therefore tracked
    in a ``BoundedRegistry`` persisted next to the entries; expired and
    over-capacity entries are deleted through it.

    Several workers may share the options table, so the registry is re-read
    from storage before every change and never cached between calls.
    """

    name = "transient"
    native_ttl = False

    def __init__(self, options: OptionStore, registry_max_size: int = 1_000) -> None:
        self._options = options
        self._registry_max_size = registry_max_size
        self._registry_lock = asyncio.Lock()
        self.counters = {
            "transients_created": 0,
            "transients_deleted": 0,
            "registry_evictions": 0,
            "registry_cleanups": 0,
        }

    @staticmethod
    def tier_key(key: str) -> str:
        """Map a logical cache key to its option name."""
        tier_key = f"{TRANSIENT_PREFIX}{key}"
        if len(tier_key) > MAX_TRANSIENT_KEY_LENGTH:
            digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
            tier_key = f"{TRANSIENT_PREFIX}h_{digest}"
        return tier_key

    async def _load_registry(self) -> BoundedRegistry:
        data = await self._options.get(TRANSIENT_REGISTRY_OPTION, [])
        return BoundedRegistry.from_list(data, self._registry_max_size)

    async def _save_registry(self, registry: BoundedRegistry) -> None:
        await self._options.set(TRANSIENT_REGISTRY_OPTION, registry.to_list())

    async def get(self, key: str) -> Any | None:
        try:
            return await self._options.get(self.tier_key(key))
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        by_tier_key = {self.tier_key(key): key for key in keys}
        try:
            found = await self._options.get_many(by_tier_key)
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        return {by_tier_key[tier_key]: value for tier_key, value in found.items()}

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        tier_key = self.tier_key(key)
        try:
            expires_at = await self._options.set(tier_key, value, ttl_seconds)
            async with self._registry_lock:
                registry = await self._load_registry()
                evicted = registry.add(tier_key, key, expires_at or 0.0)
                if evicted:
                    await self._options.delete_many(entry.tier_key for entry in evicted)
                    self.counters["registry_evictions"] += len(evicted)
                await self._save_registry(registry)
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        self.counters["transients_created"] += 1

    async def delete_many(self, keys: Iterable[str]) -> int:
        tier_keys = [self.tier_key(key) for key in keys]
        if not tier_keys:
            return 0
        try:
            deleted = await self._options.delete_many(tier_keys)
            async with self._registry_lock:
                registry = await self._load_registry()
                changed = [tier_key for tier_key in tier_keys if registry.remove(tier_key)]
                if changed:
                    await self._save_registry(registry)
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        self.counters["transients_deleted"] += deleted
        return deleted

    async def cleanup_expired(self) -> int:
        """Delete entries whose registry expiry has passed."""
        try:
            async with self._registry_lock:
                registry = await self._load_registry()
                expired = registry.pop_expired()
                if expired:
                    await self._options.delete_many(entry.tier_key for entry in expired)
                await self._save_registry(registry)
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        self.counters["registry_cleanups"] += 1
        self.counters["transients_deleted"] += len(expired)
        if expired:
            logger.info("Transient cleanup removed %d expired entries", len(expired))
        return len(expired)

    async def clear(self) -> int:
        try:
            async with self._registry_lock:
                deleted = await self._options.delete_prefix(TRANSIENT_PREFIX)
                await self._options.delete(TRANSIENT_REGISTRY_OPTION)
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        self.counters["transients_deleted"] += deleted
        return deleted

    async def stats(self) -> dict[str, Any]:
        try:
            count, size = await self._options.prefix_stats(TRANSIENT_PREFIX)
            registry = await self._load_registry()
        except SQLAlchemyError as exc:
            raise CacheTierError(self.name, str(exc)) from exc
        return {
            **self.counters,
            "current_transients": count,
            "storage_size_bytes": size,
            "registry_size": len(registry),
            "registry_max_size": registry.max_size,
        }
