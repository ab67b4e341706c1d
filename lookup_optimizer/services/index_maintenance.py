"""Creates the database indexes the lookup path relies on, once per version."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

from lookup_optimizer.models.attachment import Attachment
from lookup_optimizer.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from lookup_optimizer.services.option_store import OptionStore

logger = logging.getLogger(__name__)

VERSION_MARKER_OPTION = "db_checked_version"
INDEX_CREATED_PREFIX = "index_created_"


@dataclass(frozen=True)
class IndexDefinition:
    table: str
    columns: tuple[str, ...]


REQUIRED_INDEXES: dict[str, IndexDefinition] = {
    "idx_attached_file": IndexDefinition(Attachment.__tablename__, ("file_path",)),
    "idx_attachments_pending": IndexDefinition(
        Attachment.__tablename__,
        ("remote_url", "created_at"),
    ),
}


class IndexMaintenance:
    def __init__(self, engine: AsyncEngine, options: OptionStore) -> None:
        self._engine = engine
        self._options = options

    async def index_exists(self, name: str, table_name: str) -> bool:
        async with self._engine.connect() as conn:
            indexes = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_indexes(table_name))
        return any(index["name"] == name for index in indexes)

    async def ensure_index(self, name: str, definition: IndexDefinition) -> bool:
        """Create the index unless it exists. Returns True when it was created."""
        if await self.index_exists(name, definition.table):
            return False
        async with self._engine.begin() as conn:
            quote = conn.dialect.identifier_preparer.quote
            columns = ", ".join(quote(column) for column in definition.columns)
            await conn.execute(
                text(f"CREATE INDEX {quote(name)} ON {quote(definition.table)} ({columns})")
            )
        created_at = format_iso(now_utc())
        await self._options.set(f"{INDEX_CREATED_PREFIX}{name}", created_at)
        logger.info("Created index %s on %s%s", name, definition.table, definition.columns)
        return True

    async def ensure_indexes(
        self,
        version: str,
        indexes: dict[str, IndexDefinition] | None = None,
    ) -> list[str]:
        """Run ``ensure_index`` for every required index, once per version.

        Returns the names of indexes created by this call.
        """
        if await self._options.get(VERSION_MARKER_OPTION) == version:
            return []
        created = [
            name
            for name, definition in (indexes or REQUIRED_INDEXES).items()
            if await self.ensure_index(name, definition)
        ]
        await self._options.set(VERSION_MARKER_OPTION, version)
        logger.info("Index check for version %s complete (%d created)", version, len(created))
        return created

    async def index_created_at(self, name: str) -> str | None:
        return await self._options.get(f"{INDEX_CREATED_PREFIX}{name}")
