"""Durable option storage with optional per-entry expiry.

Expiry is checked lazily on read. Nothing sweeps expired rows on its own;
callers that need eviction keep their own registry of names.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from lookup_optimizer.models.option import Option

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _now() -> float:
    return datetime.now(UTC).timestamp()


class OptionStore:
    """JSON values keyed by name, one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, name: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` if missing or expired."""
        async with self._session_factory() as session:
            row = await session.get(Option, name)
            if row is None:
                return default
            if row.expires_at is not None and row.expires_at <= _now():
                await session.delete(row)
                await session.commit()
                return default
            return json.loads(row.value)

    async def get_many(self, names: Iterable[str]) -> dict[str, Any]:
        """Return live values for the given names in a single query."""
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return {}
        now = _now()
        async with self._session_factory() as session:
            result = await session.execute(select(Option).where(Option.name.in_(wanted)))
            found: dict[str, Any] = {}
            for row in result.scalars():
                if row.expires_at is not None and row.expires_at <= now:
                    continue
                found[row.name] = json.loads(row.value)
            return found

    async def set(self, name: str, value: Any, ttl_seconds: float | None = None) -> float | None:
        """Store a value; returns the absolute expiry timestamp (or None)."""
        now = _now()
        expires_at = now + ttl_seconds if ttl_seconds is not None else None
        async with self._session_factory() as session:
            await session.merge(
                Option(
                    name=name,
                    value=json.dumps(value),
                    expires_at=expires_at,
                    updated_at=now,
                )
            )
            await session.commit()
        return expires_at

    async def delete(self, name: str) -> bool:
        """Delete one option. Returns whether a row existed."""
        return await self.delete_many([name]) > 0

    async def delete_many(self, names: Iterable[str]) -> int:
        """Delete several options in one statement."""
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(delete(Option).where(Option.name.in_(wanted)))
            await session.commit()
            return int(result.rowcount or 0)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every option whose name starts with ``prefix``."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Option).where(Option.name.startswith(prefix, autoescape=True))
            )
            await session.commit()
            deleted = int(result.rowcount or 0)
        logger.debug("Deleted %d options with prefix %r", deleted, prefix)
        return deleted

    async def prefix_stats(self, prefix: str) -> tuple[int, int]:
        """Return (row count, total value bytes) for names under ``prefix``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(Option.name), func.coalesce(func.sum(func.length(Option.value)), 0))
                .where(Option.name.startswith(prefix, autoescape=True))
            )
            count, size = result.one()
            return int(count), int(size)
