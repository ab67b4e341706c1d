"""Builds the lookup optimizer's components and wires their collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from lookup_optimizer.services.attachment_store import AttachmentScanner, AttachmentStore
from lookup_optimizer.services.cache_tiers import MemoryTier, RedisTier, TransientTier
from lookup_optimizer.services.content_rewriter import DisabledContentRewriter
from lookup_optimizer.services.index_maintenance import IndexMaintenance
from lookup_optimizer.services.invalidation import InvalidationPropagator
from lookup_optimizer.services.lookup_cache import TieredLookupCache
from lookup_optimizer.services.lookup_index import LookupIndex
from lookup_optimizer.services.lookup_service import LookupService
from lookup_optimizer.services.option_store import OptionStore
from lookup_optimizer.services.remote_store import BunnyStorageClient
from lookup_optimizer.services.sync_service import SyncTimer, UploadSyncScheduler

if TYPE_CHECKING:
    import httpx
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.cache_tiers import CacheTier

logger = logging.getLogger(__name__)


@dataclass
class Components:
    options: OptionStore
    index: LookupIndex
    cache: TieredLookupCache
    propagator: InvalidationPropagator
    store: AttachmentStore
    lookup: LookupService
    remote: BunnyStorageClient
    scheduler: UploadSyncScheduler
    timer: SyncTimer
    maintenance: IndexMaintenance
    redis_tier: RedisTier | None = None


def build_tiers(settings: Settings, options: OptionStore) -> tuple[list[CacheTier], RedisTier | None]:
    """Fastest first: process memory, then Redis, then the options table."""
    tiers: list[CacheTier] = [MemoryTier(settings.memory_cache_max_entries)]
    redis_tier = None
    if settings.redis_url:
        redis_tier = RedisTier(settings.redis_url)
        tiers.append(redis_tier)
    if settings.transient_cache_enabled:
        tiers.append(TransientTier(options, settings.transient_registry_max_size))
    return tiers, redis_tier


def build_components(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    remote_transport: httpx.AsyncBaseTransport | None = None,
) -> Components:
    options = OptionStore(session_factory)
    index = LookupIndex(engine, session_factory, options, settings)
    tiers, redis_tier = build_tiers(settings, options)
    cache = TieredLookupCache(tiers, index, AttachmentScanner(session_factory), settings)
    propagator = InvalidationPropagator(index, cache, options, settings)
    remote = BunnyStorageClient(settings, transport=remote_transport)
    store = AttachmentStore(session_factory, propagator, settings, remote)
    scheduler = UploadSyncScheduler(store, remote, DisabledContentRewriter(), options, settings)
    logger.debug("Lookup cache tiers: %s", [tier.name for tier in tiers])
    return Components(
        options=options,
        index=index,
        cache=cache,
        propagator=propagator,
        store=store,
        lookup=LookupService(cache, store, propagator, settings),
        remote=remote,
        scheduler=scheduler,
        timer=SyncTimer(scheduler, settings.sync_interval_seconds),
        maintenance=IndexMaintenance(engine, options),
        redis_tier=redis_tier,
    )


async def close_components(components: Components) -> None:
    await components.timer.stop()
    await components.remote.close()
    if components.redis_tier is not None:
        await components.redis_tier.close()
