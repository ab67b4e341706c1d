"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings that may be changed at runtime through the admin API.
RUNTIME_TUNABLE_FIELDS = (
    "sync_batch_size",
    "sync_item_delay_seconds",
    "auto_sync_enabled",
    "offload_enabled",
    "cache_ttl_seconds",
    "not_found_ttl_seconds",
    "transient_ttl_seconds",
)


class Settings(BaseSettings):
    """Lookup optimizer settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    # Core
    secret_key: str = "change-me-in-production"
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/lookup.db"

    # Local files
    uploads_dir: Path = Path("./uploads")
    uploads_base_url: str = "http://localhost:8000/uploads"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Auth
    admin_api_key: str = "change-me-admin-key"
    access_token_expire_minutes: int = Field(default=15, ge=1)
    auth_max_failures: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)

    # Secondary index
    lookup_table_enabled: bool = True
    rebuild_batch_size: int = Field(default=10_000, ge=1)
    bulk_sync_limit: int = Field(default=1_000, ge=1)

    # Lookup cache
    cache_ttl_seconds: int = Field(default=43_200, ge=1)
    not_found_ttl_seconds: int = Field(default=300, ge=1)
    memory_cache_max_entries: int = Field(default=10_000, ge=1)
    redis_url: str = ""
    transient_cache_enabled: bool = True
    transient_ttl_seconds: int = Field(default=86_400, ge=300, le=604_800)
    transient_registry_max_size: int = Field(default=1_000, ge=1)
    owner_registry_retention_seconds: int = Field(default=604_800, ge=60)
    owner_registry_max_size: int = Field(default=1_000, ge=1)

    # Upload synchronization
    remote_sync_enabled: bool = False
    auto_sync_enabled: bool = True
    sync_batch_size: int = Field(default=25, ge=1, le=500)
    sync_interval_seconds: float = Field(default=60.0, gt=0)
    sync_item_delay_seconds: float = Field(default=0.1, ge=0)
    offload_enabled: bool = False
    content_rewrite_enabled: bool = False

    # Remote object store
    storage_api_base: str = "https://storage.bunnycdn.com"
    storage_zone: str = ""
    storage_api_key: str = ""
    cdn_hostname: str = ""
    max_concurrent_uploads: int = Field(default=3, ge=1)

    def validate_cache_lifetimes(self) -> None:
        """Reject configurations where misses outlive hits."""
        if self.not_found_ttl_seconds >= self.cache_ttl_seconds:
            msg = (
                "NOT_FOUND_TTL_SECONDS must be shorter than CACHE_TTL_SECONDS "
                f"({self.not_found_ttl_seconds} >= {self.cache_ttl_seconds})"
            )
            raise ValueError(msg)

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        self.validate_cache_lifetimes()
        if self.debug:
            return

        violations: list[str] = []
        if self.secret_key == "change-me-in-production" or len(self.secret_key) < 32:
            violations.append(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars)"
            )
        if self.admin_api_key == "change-me-admin-key" or len(self.admin_api_key) < 16:
            violations.append("ADMIN_API_KEY must be overridden with a strong value (>=16 chars)")
        if self.remote_sync_enabled and not (self.storage_zone and self.storage_api_key):
            violations.append("STORAGE_ZONE and STORAGE_API_KEY are required for remote sync")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
