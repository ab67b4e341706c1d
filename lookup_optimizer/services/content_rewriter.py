"""Hook for rewriting stored content after a file moves to the CDN."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RewriteResult:
    enabled: bool
    updated_count: int = 0
    replacement_count: int = 0


class ContentRewriter(Protocol):
    async def rewrite(self, owner_id: int, new_remote_url: str) -> RewriteResult: ...


class DisabledContentRewriter:
    """Rewriter used when content rewriting is turned off."""

    async def rewrite(self, owner_id: int, new_remote_url: str) -> RewriteResult:
        return RewriteResult(enabled=False)
