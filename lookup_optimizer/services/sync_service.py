"""Upload synchronization: push pending attachments to the remote store.

One run takes a bounded batch of attachments without a remote URL, uploads
each, records the outcome and optionally deletes the local copies. Runs do
not overlap within a process; a run that finds another in progress is
skipped.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from lookup_optimizer.exceptions import RemoteSyncUnavailableError, SyncInProgressError
from lookup_optimizer.services.datetime_service import format_iso, now_utc
from lookup_optimizer.services.url_service import normalize_path, size_variants, variant_paths

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from lookup_optimizer.config import Settings
    from lookup_optimizer.models.attachment import Attachment
    from lookup_optimizer.services.attachment_store import AttachmentStore
    from lookup_optimizer.services.content_rewriter import ContentRewriter
    from lookup_optimizer.services.option_store import OptionStore
    from lookup_optimizer.services.remote_store import RemoteStore

logger = logging.getLogger(__name__)

SYNC_STATS_OPTION = "sync_stats"

STATUS_SUCCESS = "success"
STATUS_ALREADY_SYNCED = "already_synced"
STATUS_MISSING_FILE = "missing_file"
STATUS_UPLOAD_FAILED = "upload_failed"
STATUS_ERROR = "error"


@dataclass
class SyncStats:
    """Snapshot of the last run plus the cumulative run counter."""

    last_run: str | None = None
    processed: int = 0
    successful: int = 0
    failed: int = 0
    total_runs: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SyncStats:
        if not data:
            return cls()
        return cls(
            last_run=data.get("last_run"),
            processed=int(data.get("processed", 0)),
            successful=int(data.get("successful", 0)),
            failed=int(data.get("failed", 0)),
            total_runs=int(data.get("total_runs", 0)),
        )


@dataclass
class SyncStatus:
    stats: SyncStats
    pending_count: int
    remote_enabled: bool
    running: bool
    timer_active: bool
    next_run: str | None


def resolve_local_path(uploads_dir: Path, file_path: str | None) -> Path | None:
    """Resolve a stored path within uploads_dir, returning None on traversal."""
    if not file_path:
        return None
    root = uploads_dir.resolve()
    local_path = (root / normalize_path(file_path)).resolve()
    if not local_path.is_relative_to(root):
        return None
    return local_path


def unique_remote_name(filename: str, owner_id: int) -> str:
    """``photo.JPG`` for owner 42 becomes ``photo_42.jpg``."""
    pure = PurePosixPath(filename)
    stem = re.sub(r"[^A-Za-z0-9._-]+", "-", pure.stem).strip("-.") or "file"
    suffix = re.sub(r"[^A-Za-z0-9.]", "", pure.suffix.lower())
    return f"{stem}_{owner_id}{suffix}"


def _is_url(value: object) -> bool:
    return isinstance(value, str) and value.startswith(("https://", "http://"))


class UploadSyncScheduler:
    def __init__(
        self,
        store: AttachmentStore,
        remote: RemoteStore,
        rewriter: ContentRewriter,
        options: OptionStore,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._remote = remote
        self._rewriter = rewriter
        self._options = options
        self._settings = settings
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def auto_sync_active(self) -> bool:
        return self._settings.auto_sync_enabled and self._remote.is_enabled()

    async def run(self) -> SyncStats | None:
        """Run one batch. Returns None if another run is in progress."""
        if self._lock.locked():
            logger.info("Upload sync already running; skipping")
            return None
        async with self._lock:
            return await self._run_batch()

    async def manual_sync(self) -> SyncStats:
        """Operator-triggered run; the caller is responsible for authorization."""
        if not self._remote.is_enabled():
            msg = "Remote storage is not configured"
            raise RemoteSyncUnavailableError(msg)
        stats = await self.run()
        if stats is None:
            msg = "An upload sync run is already in progress"
            raise SyncInProgressError(msg)
        return stats

    async def _run_batch(self) -> SyncStats:
        processed = successful = failed = 0
        try:
            batch = await self._store.select_pending(self._settings.sync_batch_size)
            for position, attachment in enumerate(batch):
                if position:
                    await self._sleep(self._settings.sync_item_delay_seconds)
                processed += 1
                try:
                    ok = await self._process(attachment)
                except Exception:
                    logger.exception("Unexpected error syncing owner %d", attachment.id)
                    await self._record_status(attachment.id, STATUS_ERROR)
                    ok = False
                if ok:
                    successful += 1
                else:
                    failed += 1
        except Exception:
            logger.exception("Upload sync run aborted after %d items", processed)

        stats = await self._save_stats(processed, successful, failed)
        logger.info(
            "Upload sync run %d: processed=%d successful=%d failed=%d",
            stats.total_runs,
            processed,
            successful,
            failed,
        )
        return stats

    async def _process(self, attachment: Attachment) -> bool:
        owner_id = attachment.id
        if await self._store.is_synced(owner_id):
            logger.info("Owner %d was synced concurrently; skipping upload", owner_id)
            return True

        local_path = resolve_local_path(self._settings.uploads_dir, attachment.file_path)
        if local_path is None or not local_path.is_file():
            logger.warning("Owner %d: local file missing (%r)", owner_id, attachment.file_path)
            await self._record_status(owner_id, STATUS_MISSING_FILE)
            return False

        remote_name = unique_remote_name(local_path.name, owner_id)
        remote_url = await self._remote.upload(local_path, remote_name, owner_id)
        if not _is_url(remote_url):
            logger.warning("Owner %d: upload of %s failed", owner_id, remote_name)
            await self._record_status(owner_id, STATUS_UPLOAD_FAILED)
            return False

        await self._store.record_upload(owner_id, remote_url, remote_name)  # type: ignore[arg-type]
        await self._record_status(owner_id, STATUS_SUCCESS)
        await self._rewrite(owner_id, remote_url)  # type: ignore[arg-type]
        if self._settings.offload_enabled:
            await self.offload(attachment, local_path)
        return True

    async def _record_status(self, owner_id: int, status: str) -> None:
        try:
            await self._store.record_upload_status(owner_id, status)
        except SQLAlchemyError as exc:
            logger.warning("Could not record upload status for owner %d: %s", owner_id, exc)

    async def _rewrite(self, owner_id: int, remote_url: str) -> None:
        if not self._settings.content_rewrite_enabled:
            return
        try:
            result = await self._rewriter.rewrite(owner_id, remote_url)
        except Exception:
            logger.warning("Content rewrite failed for owner %d", owner_id, exc_info=True)
            return
        if result.enabled:
            logger.info(
                "Rewrote %d references in %d records for owner %d",
                result.replacement_count,
                result.updated_count,
                owner_id,
            )

    async def offload(self, attachment: Attachment, main_path: Path) -> bool:
        """Delete the local main file and its derivatives, then mark offloaded.

        If the main file cannot be deleted nothing else is touched and the
        owner stays not offloaded. Derivative failures, and a failure to record
        the offload, are logged only.
        """
        owner_id = attachment.id
        try:
            main_path.unlink()
        except OSError as exc:
            logger.warning("Offload aborted for owner %d: cannot delete %s: %s", owner_id, main_path, exc)
            return False

        for relative in variant_paths(attachment.file_path or "", size_variants(attachment)):
            variant = resolve_local_path(self._settings.uploads_dir, relative)
            if variant is None:
                logger.warning("Owner %d: skipping unsafe derivative path %r", owner_id, relative)
                continue
            try:
                variant.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Owner %d: cannot delete derivative %s: %s", owner_id, variant, exc)

        try:
            await self._store.mark_offloaded(owner_id)
        except SQLAlchemyError as exc:
            # The upload is already recorded and stands.
            logger.warning("Owner %d: local files deleted but offload not recorded: %s", owner_id, exc)
            return False
        logger.info("Offloaded local files for owner %d", owner_id)
        return True

    async def get_stats(self) -> SyncStats:
        return SyncStats.from_dict(await self._options.get(SYNC_STATS_OPTION))

    async def _save_stats(self, processed: int, successful: int, failed: int) -> SyncStats:
        try:
            previous = await self.get_stats()
        except SQLAlchemyError:
            logger.exception("Could not load previous sync stats")
            previous = SyncStats()
        stats = SyncStats(
            last_run=format_iso(now_utc()),
            processed=processed,
            successful=successful,
            failed=failed,
            total_runs=previous.total_runs + 1,
        )
        try:
            await self._options.set(SYNC_STATS_OPTION, asdict(stats))
        except SQLAlchemyError:
            logger.exception("Could not persist sync stats")
        return stats

    async def get_status(self, timer: SyncTimer | None = None) -> SyncStatus:
        next_run = timer.next_run_at if timer is not None and timer.active else None
        return SyncStatus(
            stats=await self.get_stats(),
            pending_count=await self._store.count_pending(),
            remote_enabled=self._remote.is_enabled(),
            running=self.running,
            timer_active=timer.active if timer is not None else False,
            next_run=format_iso(next_run) if next_run is not None else None,
        )


class SyncTimer:
    """Fires ``UploadSyncScheduler.run`` every ``interval_seconds`` on a task."""

    def __init__(self, scheduler: UploadSyncScheduler, interval_seconds: float) -> None:
        self._scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.next_run_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.create_task(self._loop(), name="upload-sync-timer")
        logger.info("Upload sync timer started (every %.1fs)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.next_run_at = None

    async def _loop(self) -> None:
        while True:
            try:
                self.next_run_at = now_utc() + timedelta(seconds=self.interval_seconds)
                await asyncio.sleep(self.interval_seconds)
                if self._scheduler.auto_sync_active():
                    await self._scheduler.run()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Upload sync timer firing failed")
