"""Bounded, insertion-ordered registry of keys with expiry timestamps."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class RegistryEntry:
    """Bookkeeping for one key stored in a tier without native enumeration."""

    tier_key: str
    logical_key: str
    expires_at: float
    created_at: float


class BoundedRegistry:
    """Fixed-capacity map of tier keys, oldest-created first.

    Re-adding a key refreshes it to the newest position. When an addition
    pushes the size past ``max_size`` the oldest entries are evicted and
    returned so the caller can delete what they track.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    Every method is synchronous, so no interleaving can occur mid-update.
    """

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            msg = f"Registry max_size must be positive, got {max_size}"
            raise ValueError(msg)
        self.max_size = max_size
        self._entries: OrderedDict[str, RegistryEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tier_key: object) -> bool:
        return tier_key in self._entries

    def get(self, tier_key: str) -> RegistryEntry | None:
        return self._entries.get(tier_key)

    def entries(self) -> list[RegistryEntry]:
        """Entries from oldest to newest."""
        return list(self._entries.values())

    def add(
        self,
        tier_key: str,
        logical_key: str,
        expires_at: float,
        created_at: float | None = None,
    ) -> list[RegistryEntry]:
        """Track a key; returns the entries evicted to stay within the bound."""
        if created_at is None:
            created_at = datetime.now(UTC).timestamp()
        self._entries.pop(tier_key, None)
        self._entries[tier_key] = RegistryEntry(
            tier_key=tier_key,
            logical_key=logical_key,
            expires_at=expires_at,
            created_at=created_at,
        )
        evicted: list[RegistryEntry] = []
        while len(self._entries) > self.max_size:
            _key, oldest = self._entries.popitem(last=False)
            evicted.append(oldest)
        return evicted

    def remove(self, tier_key: str) -> bool:
        return self._entries.pop(tier_key, None) is not None

    def pop_expired(self, now: float | None = None) -> list[RegistryEntry]:
        """Remove and return every entry whose expiry has passed."""
        if now is None:
            now = datetime.now(UTC).timestamp()
        expired = [entry for entry in self._entries.values() if entry.expires_at <= now]
        for entry in expired:
            del self._entries[entry.tier_key]
        return expired

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize in age order for persistence."""
        return [asdict(entry) for entry in self._entries.values()]

    @classmethod
    def from_list(cls, data: list[dict[str, Any]] | None, max_size: int) -> BoundedRegistry:
        """Restore a registry, keeping the newest ``max_size`` entries."""
        registry = cls(max_size)
        for item in sorted(data or [], key=lambda d: float(d.get("created_at", 0))):
            registry.add(
                tier_key=str(item["tier_key"]),
                logical_key=str(item.get("logical_key", "")),
                expires_at=float(item.get("expires_at", 0)),
                created_at=float(item.get("created_at", 0)),
            )
        return registry
