"""Tests for the upload sync scheduler and its timer."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from lookup_optimizer.exceptions import RemoteSyncUnavailableError, SyncInProgressError
from lookup_optimizer.services.attachment_store import AttachmentStore
from lookup_optimizer.services.content_rewriter import RewriteResult
from lookup_optimizer.services.sync_service import (
    STATUS_MISSING_FILE,
    STATUS_SUCCESS,
    STATUS_UPLOAD_FAILED,
    SyncTimer,
    UploadSyncScheduler,
    resolve_local_path,
    unique_remote_name,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from lookup_optimizer.config import Settings
    from lookup_optimizer.models.attachment import Attachment
    from lookup_optimizer.services.container import Components
    from tests.conftest import FakeStorage


async def _create_with_file(
    components: Components,
    uploads_dir: Path,
    name: str,
    sizes: tuple[str, ...] = (),
    write: bool = True,
) -> Attachment:
    if write:
        (uploads_dir / name).write_bytes(b"image-bytes-" + name.encode())
        for size in sizes:
            (uploads_dir / size).write_bytes(b"derivative")
    return await components.store.create(file_path=name, sizes=sizes)


class RecordingRewriter:
    def __init__(self) -> None:
        self.calls: list[tuple[int, str]] = []

    async def rewrite(self, owner_id: int, new_remote_url: str) -> RewriteResult:
        self.calls.append((owner_id, new_remote_url))
        return RewriteResult(enabled=True, updated_count=1, replacement_count=2)


class TestHelpers:
    def test_unique_remote_name(self) -> None:
        assert unique_remote_name("photo.JPG", 42) == "photo_42.jpg"
        assert unique_remote_name("my photo (1).png", 7) == "my-photo-1_7.png"
        assert unique_remote_name("...", 3) == "file_3"

    def test_resolve_local_path_rejects_traversal(self, uploads_dir: Path) -> None:
        assert resolve_local_path(uploads_dir, "../secret.txt") is None
        assert resolve_local_path(uploads_dir, None) is None
        resolved = resolve_local_path(uploads_dir, "/2024/a.jpg")
        assert resolved == (uploads_dir / "2024" / "a.jpg").resolve()


class TestRunBatch:
    async def test_missing_file_counts_as_failure(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
    ) -> None:
        a = await _create_with_file(components, uploads_dir, "a.jpg")
        b = await _create_with_file(components, uploads_dir, "b.jpg", write=False)
        c = await _create_with_file(components, uploads_dir, "c.jpg")

        stats = await components.scheduler.run()

        assert stats is not None
        assert (stats.processed, stats.successful, stats.failed) == (3, 2, 1)
        assert stats.total_runs == 1
        assert set(fake_storage.objects) == {f"a_{a.id}.jpg", f"c_{c.id}.jpg"}

        missing = await components.store.get(b.id)
        assert missing is not None
        assert missing.remote_url is None
        assert missing.last_upload_status == STATUS_MISSING_FILE

        synced = await components.store.get(a.id)
        assert synced is not None
        assert synced.remote_url == f"https://testzone.b-cdn.net/a_{a.id}.jpg"
        assert synced.last_upload_status == STATUS_SUCCESS

    async def test_rerun_never_reselects_synced_owners(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
    ) -> None:
        await _create_with_file(components, uploads_dir, "a.jpg")
        await _create_with_file(components, uploads_dir, "b.jpg", write=False)
        await components.scheduler.run()
        uploads_before = len(fake_storage.requests)

        stats = await components.scheduler.run()

        assert stats is not None
        assert (stats.processed, stats.successful, stats.failed) == (1, 0, 1)
        assert stats.total_runs == 2
        assert len(fake_storage.requests) == uploads_before

    async def test_upload_failure_is_recorded(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
    ) -> None:
        attachment = await _create_with_file(components, uploads_dir, "a.jpg")
        fake_storage.fail_names.add(f"a_{attachment.id}.jpg")

        stats = await components.scheduler.run()

        assert stats is not None
        assert stats.failed == 1
        stored = await components.store.get(attachment.id)
        assert stored is not None
        assert stored.remote_url is None
        assert stored.last_upload_status == STATUS_UPLOAD_FAILED
        assert stored.upload_attempts == 1

    async def test_empty_batch_still_records_a_run(self, components: Components) -> None:
        stats = await components.scheduler.run()
        assert stats is not None
        assert (stats.processed, stats.total_runs) == (0, 1)
        assert (await components.scheduler.get_stats()).last_run is not None

    async def test_batch_size_and_delay(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
        test_settings: Settings,
    ) -> None:
        for index in range(4):
            await _create_with_file(components, uploads_dir, f"{index}.jpg")
        test_settings.sync_batch_size = 3
        test_settings.sync_item_delay_seconds = 0.25
        delays: list[float] = []

        async def record_sleep(seconds: float) -> None:
            delays.append(seconds)

        scheduler = UploadSyncScheduler(
            components.store,
            components.remote,
            RecordingRewriter(),
            components.options,
            test_settings,
            sleep=record_sleep,
        )
        stats = await scheduler.run()

        assert stats is not None
        assert stats.processed == 3
        assert delays == [0.25, 0.25]
        assert await components.store.count_pending() == 1

    async def test_concurrently_synced_owner_is_not_uploaded(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
    ) -> None:
        attachment = await _create_with_file(components, uploads_dir, "a.jpg")
        [selected] = await components.store.select_pending(1)
        await components.store.record_upload(attachment.id, "https://other/a.jpg", "a.jpg")

        assert await components.scheduler._process(selected) is True
        assert fake_storage.requests == []

    async def test_rewriter_called_when_enabled(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
        test_settings: Settings,
    ) -> None:
        attachment = await _create_with_file(components, uploads_dir, "a.jpg")
        test_settings.content_rewrite_enabled = True
        rewriter = RecordingRewriter()
        scheduler = UploadSyncScheduler(
            components.store, components.remote, rewriter, components.options, test_settings
        )

        await scheduler.run()

        assert rewriter.calls == [
            (attachment.id, f"https://testzone.b-cdn.net/a_{attachment.id}.jpg")
        ]


class TestOffload:
    async def test_offload_deletes_local_files(
        self,
        components: Components,
        uploads_dir: Path,
        fake_storage: FakeStorage,
        test_settings: Settings,
    ) -> None:
        test_settings.offload_enabled = True
        attachment = await _create_with_file(
            components, uploads_dir, "a.jpg", sizes=("a-150x150.jpg", "a-300x300.jpg")
        )

        await components.scheduler.run()

        assert not (uploads_dir / "a.jpg").exists()
        assert not (uploads_dir / "a-150x150.jpg").exists()
        assert not (uploads_dir / "a-300x300.jpg").exists()
        stored = await components.store.get(attachment.id)
        assert stored is not None
        assert stored.offloaded is True
        assert stored.offloaded_at is not None

    async def test_failed_main_delete_leaves_everything(
        self,
        components: Components,
        uploads_dir: Path,
    ) -> None:
        attachment = await _create_with_file(
            components, uploads_dir, "a.jpg", sizes=("a-150x150.jpg",)
        )

        ok = await components.scheduler.offload(attachment, uploads_dir / "not-there.jpg")

        assert ok is False
        assert (uploads_dir / "a-150x150.jpg").exists()
        stored = await components.store.get(attachment.id)
        assert stored is not None
        assert stored.offloaded is False

    async def test_missing_derivative_is_not_an_error(
        self,
        components: Components,
        uploads_dir: Path,
    ) -> None:
        attachment = await _create_with_file(components, uploads_dir, "a.jpg")
        attachment_with_sizes = await components.store.update_file(
            attachment.id, "a.jpg", sizes=["a-never-made.jpg"]
        )
        assert attachment_with_sizes is not None

        assert await components.scheduler.offload(attachment_with_sizes, uploads_dir / "a.jpg")
        assert not (uploads_dir / "a.jpg").exists()

    async def test_unrecorded_offload_keeps_the_upload_successful(
        self,
        components: Components,
        uploads_dir: Path,
        test_settings: Settings,
    ) -> None:
        test_settings.offload_enabled = True
        attachment = await _create_with_file(components, uploads_dir, "a.jpg")
        failure = OperationalError("UPDATE", {}, Exception("database is locked"))

        with patch.object(AttachmentStore, "mark_offloaded", AsyncMock(side_effect=failure)):
            stats = await components.scheduler.run()

        assert stats is not None
        assert (stats.processed, stats.successful, stats.failed) == (1, 1, 0)
        stored = await components.store.get(attachment.id)
        assert stored is not None
        assert stored.remote_url == f"https://testzone.b-cdn.net/a_{attachment.id}.jpg"
        assert stored.last_upload_status == STATUS_SUCCESS
        assert stored.offloaded is False


class TestSingleFlight:
    async def test_overlapping_run_is_skipped(self, components: Components) -> None:
        async with components.scheduler._lock:
            assert components.scheduler.running is True
            assert await components.scheduler.run() is None
            with pytest.raises(SyncInProgressError):
                await components.scheduler.manual_sync()
        assert components.scheduler.running is False

    async def test_manual_sync_requires_remote(
        self, components: Components, test_settings: Settings
    ) -> None:
        test_settings.storage_api_key = ""
        with pytest.raises(RemoteSyncUnavailableError):
            await components.scheduler.manual_sync()

    async def test_manual_sync_runs_a_batch(self, components: Components) -> None:
        stats = await components.scheduler.manual_sync()
        assert stats.total_runs == 1


class TestStatus:
    async def test_status_reports_pending_and_timer(
        self,
        components: Components,
        insert_attachment: Callable[..., Awaitable[int]],
    ) -> None:
        await insert_attachment("a.jpg")

        status = await components.scheduler.get_status(components.timer)

        assert status.pending_count == 1
        assert status.remote_enabled is True
        assert status.running is False
        assert status.timer_active is False
        assert status.next_run is None
        assert status.stats.total_runs == 0


class FakeScheduler:
    def __init__(self, active: bool = True) -> None:
        self.active = active
        self.runs = 0
        self.fired = asyncio.Event()

    def auto_sync_active(self) -> bool:
        return self.active

    async def run(self) -> None:
        self.runs += 1
        self.fired.set()


class TestSyncTimer:
    async def test_fires_and_stops(self) -> None:
        scheduler = FakeScheduler()
        timer = SyncTimer(scheduler, 0.01)  # type: ignore[arg-type]

        timer.start()
        assert timer.active is True
        await asyncio.wait_for(scheduler.fired.wait(), timeout=2)
        assert timer.next_run_at is not None
        await timer.stop()

        assert timer.active is False
        assert timer.next_run_at is None
        assert scheduler.runs >= 1

    async def test_inactive_scheduler_is_not_run(self) -> None:
        scheduler = FakeScheduler(active=False)
        timer = SyncTimer(scheduler, 0.01)  # type: ignore[arg-type]

        timer.start()
        await asyncio.sleep(0.05)
        await timer.stop()

        assert scheduler.runs == 0

    async def test_start_is_idempotent(self) -> None:
        timer = SyncTimer(FakeScheduler(), 60)  # type: ignore[arg-type]
        timer.start()
        task = timer._task
        timer.start()
        assert timer._task is task
        await timer.stop()
