"""Secondary index mapping normalized file paths to owner ids."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, inspect, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError

from lookup_optimizer.exceptions import DuplicatePathError
from lookup_optimizer.models.attachment import Attachment
from lookup_optimizer.models.lookup import LOOKUP_TABLE_NAME, LookupEntry
from lookup_optimizer.services.datetime_service import format_iso, now_utc
from lookup_optimizer.services.url_service import normalize_path, path_variants

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.engine import Row
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.option_store import OptionStore

logger = logging.getLogger(__name__)

LOOKUP_TABLE_VERSION = "1.0"
VERSION_OPTION = "lookup_table_version"
CREATED_OPTION = "lookup_table_created"

# Raised by readers while rebuild() has the table dropped.
_MISSING_TABLE_ERRORS = (OperationalError, ProgrammingError)


@dataclass
class IndexStats:
    enabled: bool
    table_exists: bool
    total_mappings: int
    created_at: str | None
    version: str | None


class LookupIndex:
    """Uniquely keyed ``path -> owner_id`` table kept in step with attachments.

    Writes are delete-then-insert per owner, never update-in-place. Paths are
    stored in canonical form; reads still try the leading-separator variants
    for rows written before normalization.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        options: OptionStore,
        settings: Settings,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._options = options
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.lookup_table_enabled

    async def table_exists(self) -> bool:
        async with self._engine.connect() as conn:
            return bool(
                await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(LOOKUP_TABLE_NAME))
            )

    async def create_table(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(LookupEntry.__table__.create, checkfirst=True)
        await self._options.set(VERSION_OPTION, LOOKUP_TABLE_VERSION)
        await self._options.set(CREATED_OPTION, format_iso(now_utc()))
        logger.info("Lookup table created: %s", LOOKUP_TABLE_NAME)

    async def drop_table(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(LookupEntry.__table__.drop, checkfirst=True)
        await self._options.delete(VERSION_OPTION)
        logger.info("Lookup table dropped: %s", LOOKUP_TABLE_NAME)

    async def ensure_table(self) -> bool:
        """Create the table if missing. Returns True when it was created."""
        if await self.table_exists():
            return False
        await self.create_table()
        return True

    async def put(self, owner_id: int, path: str) -> None:
        """Replace the owner's mapping with ``path``.

        Raises ``DuplicatePathError`` if another owner holds the path. The
        owner's previous mapping is removed either way.
        """
        canonical = normalize_path(path)
        if not canonical:
            msg = f"Cannot index an empty path for owner {owner_id}"
            raise ValueError(msg)

        async with self._session_factory() as session:
            await session.execute(delete(LookupEntry).where(LookupEntry.owner_id == owner_id))
            session.add(LookupEntry(owner_id=owner_id, path=canonical, updated_at=now_utc()))
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                await session.execute(delete(LookupEntry).where(LookupEntry.owner_id == owner_id))
                await session.commit()
                logger.warning(
                    "Lookup index conflict: path %r for owner %d is already mapped",
                    canonical,
                    owner_id,
                )
                raise DuplicatePathError(owner_id, canonical) from exc

    async def delete(self, owner_id: int) -> int:
        """Remove the owner's mapping. Missing rows are not an error."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(LookupEntry).where(LookupEntry.owner_id == owner_id)
            )
            await session.commit()
            return int(result.rowcount or 0)

    async def lookup(self, path: str) -> int | None:
        """Return the owner of ``path``, or None.

        Tries the exact string, then with a leading ``/``, then without;
        stops at the first query that returns a row.
        """
        if not self.enabled or not path:
            return None
        try:
            async with self._session_factory() as session:
                for candidate in path_variants(path):
                    result = await session.execute(
                        select(LookupEntry.owner_id).where(LookupEntry.path == candidate).limit(1)
                    )
                    owner_id = result.scalar_one_or_none()
                    if owner_id is not None:
                        return int(owner_id)
        except _MISSING_TABLE_ERRORS:
            logger.debug("Lookup table unavailable while resolving %r", path, exc_info=True)
        return None

    async def batch_lookup(self, paths: Iterable[str]) -> dict[str, int]:
        """Resolve many paths with a single query.

        Each path is resolved with the same variant priority as ``lookup``.
        Unresolved paths are absent from the result.
        """
        wanted = [path for path in dict.fromkeys(paths) if path]
        if not self.enabled or not wanted:
            return {}
        variants = {path: path_variants(path) for path in wanted}
        candidates = {candidate for options in variants.values() for candidate in options}
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(LookupEntry.path, LookupEntry.owner_id).where(
                        LookupEntry.path.in_(candidates)
                    )
                )
                by_path = {row.path: int(row.owner_id) for row in result}
        except _MISSING_TABLE_ERRORS:
            logger.debug("Lookup table unavailable during batch lookup", exc_info=True)
            return {}

        resolved: dict[str, int] = {}
        for path, options in variants.items():
            for candidate in options:
                if candidate in by_path:
                    resolved[path] = by_path[candidate]
                    break
        return resolved

    async def _put_rows(self, rows: Sequence[Row[tuple[int, str | None]]]) -> int:
        synced = 0
        for owner_id, file_path in rows:
            if not file_path:
                continue
            try:
                await self.put(owner_id, file_path)
            except DuplicatePathError:
                continue
            except (SQLAlchemyError, ValueError) as exc:
                logger.error("Failed to index owner %d (%r): %s", owner_id, file_path, exc)
                continue
            synced += 1
        return synced

    async def bulk_sync(self, limit: int | None = None) -> int:
        """Index up to ``limit`` owners that have a path but no mapping."""
        if limit is None:
            limit = self._settings.bulk_sync_limit
        await self.ensure_table()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Attachment.id, Attachment.file_path)
                .outerjoin(LookupEntry, LookupEntry.owner_id == Attachment.id)
                .where(
                    LookupEntry.id.is_(None),
                    Attachment.file_path.is_not(None),
                    Attachment.file_path != "",
                )
                .order_by(Attachment.id)
                .limit(limit)
            )
            rows = result.all()
        synced = await self._put_rows(rows)
        logger.info("Lookup index bulk sync: %d of %d candidates indexed", synced, len(rows))
        return synced

    async def rebuild(self, batch_size: int | None = None) -> int:
        """Drop, recreate and repopulate the table in keyset-paged batches.

        Concurrent readers get "not found" while the table is missing.
        """
        if batch_size is None:
            batch_size = self._settings.rebuild_batch_size
        await self.drop_table()
        await self.create_table()

        synced = 0
        last_id = 0
        while True:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Attachment.id, Attachment.file_path)
                    .where(
                        Attachment.id > last_id,
                        Attachment.file_path.is_not(None),
                        Attachment.file_path != "",
                    )
                    .order_by(Attachment.id)
                    .limit(batch_size)
                )
                rows = result.all()
            if not rows:
                break
            synced += await self._put_rows(rows)
            last_id = rows[-1][0]
            if len(rows) < batch_size:
                break

        logger.info("Lookup table rebuilt: %d mappings", synced)
        return synced

    async def cleanup_orphans(self) -> int:
        """Delete mappings whose owner no longer exists."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(LookupEntry).where(LookupEntry.owner_id.not_in(select(Attachment.id)))
            )
            await session.commit()
            deleted = int(result.rowcount or 0)
        if deleted:
            logger.info("Removed %d orphaned lookup mappings", deleted)
        return deleted

    async def get_stats(self) -> IndexStats:
        exists = await self.table_exists()
        total = 0
        if exists:
            async with self._session_factory() as session:
                result = await session.execute(select(func.count(LookupEntry.id)))
                total = int(result.scalar_one())
        return IndexStats(
            enabled=self.enabled,
            table_exists=exists,
            total_mappings=total,
            created_at=await self._options.get(CREATED_OPTION),
            version=await self._options.get(VERSION_OPTION),
        )
