"""Admin request/response schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SyncStatsResponse(BaseModel):
    """Snapshot of the last upload sync run."""

    last_run: str | None
    processed: int
    successful: int
    failed: int
    total_runs: int


class SyncStatusResponse(BaseModel):
    stats: SyncStatsResponse
    pending_count: int
    remote_enabled: bool
    running: bool
    timer_active: bool
    next_run: str | None


class PendingCountResponse(BaseModel):
    pending_count: int


class IndexStatsResponse(BaseModel):
    enabled: bool
    table_exists: bool
    total_mappings: int
    created_at: str | None
    version: str | None


class CountResponse(BaseModel):
    """Number of rows or entries affected by a maintenance action."""

    count: int


class BulkSyncRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=100_000)


class RebuildRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=100_000)


class WarmRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=10_000)


class CachePurgeResponse(BaseModel):
    removed: dict[str, int]


class CacheStatsResponse(BaseModel):
    counters: dict[str, int]
    tiers: dict[str, dict[str, Any]]


class RuntimeSettings(BaseModel):
    """Settings that may be changed without a restart."""

    sync_batch_size: int
    sync_item_delay_seconds: float
    auto_sync_enabled: bool
    offload_enabled: bool
    cache_ttl_seconds: int
    not_found_ttl_seconds: int
    transient_ttl_seconds: int


class RuntimeSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    sync_batch_size: int | None = Field(default=None, ge=1, le=500)
    sync_item_delay_seconds: float | None = Field(default=None, ge=0, le=10)
    auto_sync_enabled: bool | None = None
    offload_enabled: bool | None = None
    cache_ttl_seconds: int | None = Field(default=None, ge=1)
    not_found_ttl_seconds: int | None = Field(default=None, ge=1)
    transient_ttl_seconds: int | None = Field(default=None, ge=300, le=604_800)
