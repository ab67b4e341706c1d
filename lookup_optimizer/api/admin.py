"""Admin API endpoints: sync, index and cache maintenance, runtime settings."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from lookup_optimizer.api.deps import get_components, get_settings, require_admin
from lookup_optimizer.config import Settings
from lookup_optimizer.exceptions import SyncInProgressError
from lookup_optimizer.schemas.admin import (
    BulkSyncRequest,
    CachePurgeResponse,
    CacheStatsResponse,
    CountResponse,
    IndexStatsResponse,
    PendingCountResponse,
    RebuildRequest,
    RuntimeSettings,
    RuntimeSettingsUpdate,
    SyncStatsResponse,
    SyncStatusResponse,
    WarmRequest,
)
from lookup_optimizer.services.admin_service import get_runtime_settings, update_runtime_settings
from lookup_optimizer.services.container import Components

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

AdminDep = Annotated[dict[str, Any], Depends(require_admin)]
ComponentsDep = Annotated[Components, Depends(get_components)]


@router.get("/sync", response_model=SyncStatusResponse)
async def sync_status(components: ComponentsDep, _admin: AdminDep) -> SyncStatusResponse:
    """Last run statistics, pending count and timer state."""
    status_ = await components.scheduler.get_status(components.timer)
    return SyncStatusResponse(
        stats=SyncStatsResponse(**asdict(status_.stats)),
        pending_count=status_.pending_count,
        remote_enabled=status_.remote_enabled,
        running=status_.running,
        timer_active=status_.timer_active,
        next_run=status_.next_run,
    )


@router.get("/sync/pending", response_model=PendingCountResponse)
async def sync_pending(components: ComponentsDep, _admin: AdminDep) -> PendingCountResponse:
    return PendingCountResponse(pending_count=await components.store.count_pending())


@router.post("/sync/run", response_model=SyncStatsResponse)
async def sync_run(components: ComponentsDep, _admin: AdminDep) -> SyncStatsResponse:
    """Run one upload batch now and return its statistics."""
    try:
        stats = await components.scheduler.manual_sync()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.info("Manual upload sync: %s", asdict(stats))
    return SyncStatsResponse(**asdict(stats))


@router.get("/index", response_model=IndexStatsResponse)
async def index_stats(components: ComponentsDep, _admin: AdminDep) -> IndexStatsResponse:
    return IndexStatsResponse(**asdict(await components.index.get_stats()))


@router.post("/index/rebuild", response_model=CountResponse)
async def index_rebuild(
    components: ComponentsDep,
    _admin: AdminDep,
    body: RebuildRequest | None = None,
) -> CountResponse:
    """Drop and repopulate the lookup table."""
    batch_size = body.batch_size if body is not None else None
    return CountResponse(count=await components.index.rebuild(batch_size))


@router.post("/index/bulk-sync", response_model=CountResponse)
async def index_bulk_sync(
    components: ComponentsDep,
    _admin: AdminDep,
    body: BulkSyncRequest | None = None,
) -> CountResponse:
    """Index attachments that have no lookup row yet."""
    limit = body.limit if body is not None else None
    return CountResponse(count=await components.index.bulk_sync(limit))


@router.post("/index/cleanup", response_model=CountResponse)
async def index_cleanup(components: ComponentsDep, _admin: AdminDep) -> CountResponse:
    return CountResponse(count=await components.index.cleanup_orphans())


@router.get("/cache", response_model=CacheStatsResponse)
async def cache_stats(components: ComponentsDep, _admin: AdminDep) -> CacheStatsResponse:
    return CacheStatsResponse(**await components.cache.stats())


@router.post("/cache/purge", response_model=CachePurgeResponse)
async def cache_purge(components: ComponentsDep, _admin: AdminDep) -> CachePurgeResponse:
    return CachePurgeResponse(removed=await components.cache.purge())


@router.post("/cache/cleanup", response_model=CountResponse)
async def cache_cleanup(components: ComponentsDep, _admin: AdminDep) -> CountResponse:
    """Expire entries in tiers without native expiry."""
    return CountResponse(count=await components.cache.cleanup())


@router.post("/cache/warm", response_model=CountResponse)
async def cache_warm(
    components: ComponentsDep,
    _admin: AdminDep,
    body: WarmRequest | None = None,
) -> CountResponse:
    limit = body.limit if body is not None else WarmRequest().limit
    return CountResponse(count=await components.lookup.warm(limit))


@router.post("/cache/stats/reset", status_code=status.HTTP_204_NO_CONTENT)
async def cache_stats_reset(components: ComponentsDep, _admin: AdminDep) -> None:
    components.cache.reset_stats()


@router.get("/settings", response_model=RuntimeSettings)
async def read_runtime_settings(
    settings: Annotated[Settings, Depends(get_settings)],
    _admin: AdminDep,
) -> RuntimeSettings:
    return RuntimeSettings(**get_runtime_settings(settings))


@router.put("/settings", response_model=RuntimeSettings)
async def write_runtime_settings(
    body: RuntimeSettingsUpdate,
    settings: Annotated[Settings, Depends(get_settings)],
    components: ComponentsDep,
    _admin: AdminDep,
) -> RuntimeSettings:
    """Apply and persist runtime settings. Invalid combinations return 422."""
    current = await update_runtime_settings(
        components.options,
        settings,
        body.model_dump(exclude_none=True),
    )
    return RuntimeSettings(**current)
