"""Attachment records: the source of truth the lookup index mirrors."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from lookup_optimizer.models.attachment import Attachment
from lookup_optimizer.services.datetime_service import now_utc
from lookup_optimizer.services.remote_store import extract_filename_from_url
from lookup_optimizer.services.url_service import attachment_urls, normalize_path, path_variants

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from sqlalchemy.sql.elements import ColumnElement

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.invalidation import InvalidationPropagator
    from lookup_optimizer.services.remote_store import RemoteStore

logger = logging.getLogger(__name__)


def _pending_filter() -> ColumnElement[bool]:
    return or_(Attachment.remote_url.is_(None), Attachment.remote_url == "")


class AttachmentScanner:
    """Slow fallback that matches paths against ``attachments.file_path``.

    The column is unindexed until index maintenance has run, so every call
    may be a full table scan.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def scan_for_path(self, path: str) -> int | None:
        if not path:
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.id)
                .where(Attachment.file_path.in_(path_variants(path)))
                .order_by(Attachment.id)
                .limit(1)
            )
            owner_id = result.scalar_one_or_none()
        return int(owner_id) if owner_id is not None else None

    async def scan_for_paths(self, paths: Iterable[str]) -> dict[str, int]:
        wanted = [path for path in dict.fromkeys(paths) if path]
        if not wanted:
            return {}
        by_canonical: dict[str, list[str]] = {}
        for path in wanted:
            by_canonical.setdefault(normalize_path(path), []).append(path)
        candidates = {variant for path in wanted for variant in path_variants(path)}
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.id, Attachment.file_path)
                .where(Attachment.file_path.in_(candidates))
                .order_by(Attachment.id)
            )
            rows = result.all()
        resolved: dict[str, int] = {}
        for owner_id, file_path in rows:
            for path in by_canonical.get(normalize_path(file_path or ""), []):
                resolved.setdefault(path, int(owner_id))
        return resolved


class AttachmentStore:
    """CRUD over attachments that reports every change to the propagator.

    Changes are committed first and propagated afterwards. URLs that may be
    cached for the old state are collected before the commit. Deleting an
    uploaded attachment also removes its copy from ``remote``, best effort.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        propagator: InvalidationPropagator,
        settings: Settings,
        remote: RemoteStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._propagator = propagator
        self._settings = settings
        self._remote = remote

    def _urls(self, attachment: Attachment) -> list[str]:
        return attachment_urls(attachment, self._settings.uploads_base_url)

    async def create(
        self,
        *,
        file_path: str | None,
        title: str = "",
        sizes: Sequence[str] = (),
        created_at: datetime | None = None,
    ) -> Attachment:
        canonical = normalize_path(file_path) if file_path else None
        attachment = Attachment(
            title=title,
            file_path=canonical,
            sizes=json.dumps(list(sizes)),
            created_at=created_at or now_utc(),
        )
        async with self._session_factory() as session:
            session.add(attachment)
            await session.commit()
            await session.refresh(attachment)
        await self._propagator.on_created(attachment.id, canonical)
        logger.debug("Created attachment %d (%r)", attachment.id, canonical)
        return attachment

    async def get(self, owner_id: int) -> Attachment | None:
        async with self._session_factory() as session:
            return await session.get(Attachment, owner_id)

    async def get_file_path(self, owner_id: int) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.file_path).where(Attachment.id == owner_id)
            )
            return result.scalar_one_or_none()

    async def update_file(
        self,
        owner_id: int,
        file_path: str | None,
        sizes: Sequence[str] | None = None,
        title: str | None = None,
    ) -> Attachment | None:
        """Change the file reference. Returns None if the owner does not exist."""
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, owner_id)
            if attachment is None:
                return None
            old_path = attachment.file_path
            old_urls = self._urls(attachment)
            attachment.file_path = normalize_path(file_path) if file_path else None
            if sizes is not None:
                attachment.sizes = json.dumps(list(sizes))
            if title is not None:
                attachment.title = title
            await session.commit()
        await self._propagator.on_path_changed(owner_id, old_path, attachment.file_path, old_urls)
        return attachment

    async def delete(self, owner_id: int) -> bool:
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, owner_id)
            if attachment is None:
                return False
            path = attachment.file_path
            urls = self._urls(attachment)
            remote_name = attachment.remote_filename or (
                extract_filename_from_url(attachment.remote_url) if attachment.remote_url else None
            )
            await session.delete(attachment)
            await session.commit()
        await self._propagator.on_deleted(owner_id, path, urls)
        if remote_name:
            await self._delete_remote(owner_id, remote_name)
        logger.debug("Deleted attachment %d", owner_id)
        return True

    async def _delete_remote(self, owner_id: int, remote_name: str) -> None:
        if self._remote is None or not self._remote.is_enabled():
            logger.info(
                "Remote copy %s of owner %d kept: remote storage disabled", remote_name, owner_id
            )
            return
        if await self._remote.delete(remote_name):
            logger.info("Deleted remote copy %s of owner %d", remote_name, owner_id)
        else:
            logger.warning("Could not delete remote copy %s of owner %d", remote_name, owner_id)

    async def select_pending(self, limit: int) -> list[Attachment]:
        """Up to ``limit`` owners without a remote URL, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment)
                .where(_pending_filter())
                .order_by(Attachment.created_at.desc(), Attachment.id.desc())
                .limit(limit)
            )
            return list(result.scalars())

    async def count_pending(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count(Attachment.id)).where(_pending_filter()))
            return int(result.scalar_one())

    async def is_synced(self, owner_id: int) -> bool:
        """Point read of the remote URL, used to detect a concurrent upload."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.remote_url).where(Attachment.id == owner_id)
            )
            return bool(result.scalar_one_or_none())

    async def record_upload(self, owner_id: int, remote_url: str, remote_filename: str) -> None:
        """Store the sync record and invalidate what was cached for the owner."""
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, owner_id)
            if attachment is None:
                msg = f"Attachment {owner_id} not found"
                raise ValueError(msg)
            old_urls = self._urls(attachment)
            attachment.remote_url = remote_url
            attachment.remote_filename = remote_filename
            attachment.uploaded_at = now_utc()
            await session.commit()
            path = attachment.file_path
        await self._propagator.on_path_changed(owner_id, path, path, old_urls)

    async def record_upload_status(self, owner_id: int, status: str) -> None:
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, owner_id)
            if attachment is None:
                return
            attachment.upload_attempts += 1
            attachment.last_upload_status = status
            attachment.last_upload_at = now_utc()
            await session.commit()

    async def mark_offloaded(self, owner_id: int) -> None:
        async with self._session_factory() as session:
            attachment = await session.get(Attachment, owner_id)
            if attachment is None:
                return
            attachment.offloaded = True
            attachment.offloaded_at = now_utc()
            await session.commit()

    async def newest_ids(self, limit: int) -> list[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.id)
                .where(Attachment.file_path.is_not(None))
                .order_by(Attachment.created_at.desc(), Attachment.id.desc())
                .limit(limit)
            )
            return [int(owner_id) for owner_id in result.scalars()]
